"""
Numeric normalization for heterogeneous amount encodings.

The indexer and the chain return amounts either as fixed-point integers in
base units (18 decimals, as decimal strings of arbitrary length) or as
already-scaled decimal strings. These helpers turn both into display floats
or exact base-unit integers without ever raising.
"""
from decimal import Decimal, InvalidOperation
from typing import Any
import logging
import math

from market_engine.constants import WEI, WEI_DECIMAL

logger = logging.getLogger(__name__)


def _finite_or_zero(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def safe_parse_units(value: Any) -> float:
    """
    Convert an amount in either encoding to a display-scale float.

    - Strings containing a decimal point are parsed as decimals as-is.
    - Other strings are parsed as base-10 integers and divided by 10^18.
    - Ints are base units; floats and Decimals are already scaled.
    - None, empty, non-numeric or non-finite input yields 0.0, as do
      strings with `_` digit separators.

    Args:
        value: Raw amount

    Returns:
        Float amount in display units, never NaN or infinite
    """
    if value is None or isinstance(value, bool):
        return 0.0

    try:
        if isinstance(value, int):
            return _finite_or_zero(value / WEI)
        if isinstance(value, float):
            return _finite_or_zero(value)
        if isinstance(value, Decimal):
            return _finite_or_zero(float(value))
        if not isinstance(value, str):
            return 0.0

        raw = value.strip()
        if not raw or raw == "0" or "_" in raw:
            return 0.0
        if "." in raw:
            return _finite_or_zero(float(Decimal(raw)))
        return _finite_or_zero(int(raw, 10) / WEI)

    except (ValueError, InvalidOperation, OverflowError) as e:
        logger.debug(f"Unparseable amount {value!r}: {e}")
        return 0.0


def to_base_units(value: Any) -> int:
    """
    Convert an amount to exact non-negative base units.

    Used wherever amounts are summed, so that totals are computed on
    integers rather than accumulated floats.

    Args:
        value: Raw amount (base-unit int/string, or scaled decimal string/float)

    Returns:
        Base units as int; 0 for malformed or negative input
    """
    if value is None or isinstance(value, bool):
        return 0

    try:
        if isinstance(value, int):
            units = value
        elif isinstance(value, (float, Decimal)):
            units = int(Decimal(str(value)) * WEI_DECIMAL)
        elif isinstance(value, str):
            raw = value.strip()
            if not raw or "_" in raw:
                return 0
            if "." in raw:
                units = int(Decimal(raw) * WEI_DECIMAL)
            else:
                units = int(raw, 10)
        else:
            return 0
    except (ValueError, InvalidOperation, OverflowError) as e:
        logger.debug(f"Unparseable base-unit amount {value!r}: {e}")
        return 0

    return max(units, 0)


def format_units(base_units: int) -> float:
    """Convert exact base units to a display float."""
    return safe_parse_units(int(base_units))
