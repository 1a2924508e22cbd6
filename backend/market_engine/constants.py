"""
Protocol constants shared by the aggregation and metrics services.
"""
from decimal import Decimal

# Fixed-point convention for assets, shares and prices
WEI_DECIMALS = 18
WEI = 10 ** WEI_DECIMALS
WEI_DECIMAL = Decimal(WEI)

# Bonding curves
LINEAR_CURVE_ID = 1

# Spot price used when a vault has no shares and reports no price
PRICE_FLOOR = 0.1

# Atom that marks a claim as a distrust signal
DISTRUST_ATOM_ID = "0x0000000000000000000000000000000000000000000000000000000000003a74"

# Placeholder label for an unresolved claim predicate
DEFAULT_PREDICATE_LABEL = "LINK"

# Number of identifier characters kept in a fallback label
FALLBACK_LABEL_LENGTH = 8

MS_PER_DAY = 24 * 60 * 60 * 1000
