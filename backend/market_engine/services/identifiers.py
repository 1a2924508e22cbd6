"""
Identifier normalization.

Term ids and account addresses show up in several case and padding
conventions across the indexer, the chain and the local cache (checksummed
vs lower-case, 20-byte addresses vs 32-byte left-padded words). Identifier
equality is case-insensitive everywhere.
"""
import string
from typing import List, Optional

from market_engine.constants import FALLBACK_LABEL_LENGTH

ADDRESS_HEX_LENGTH = 42
WORD_HEX_LENGTH = 66
_WORD_PAD_PREFIX = "0x" + "0" * 24


def normalize_id(value: Optional[str]) -> str:
    """Lower-case and trim an identifier; None becomes an empty string."""
    return value.strip().lower() if value else ""


def ids_equal(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive identifier comparison (empty ids never match)."""
    na, nb = normalize_id(a), normalize_id(b)
    return bool(na) and na == nb


def prepare_query_ids(identifier: Optional[str]) -> List[str]:
    """
    Build the set of equivalent representations used when querying by id.

    Returns the exact and lower-cased forms, plus the 32-byte padded form of a
    20-byte address, or the unpadded address of a padded 32-byte word.

    Args:
        identifier: Term id or address

    Returns:
        List of distinct variants (empty for empty input)
    """
    if not identifier:
        return []

    base = identifier.strip()
    variants = [base, base.lower()]

    if base.lower().startswith("0x"):
        if len(base) == ADDRESS_HEX_LENGTH:
            padded = _WORD_PAD_PREFIX + base[2:]
            variants += [padded, padded.lower()]
        if len(base) == WORD_HEX_LENGTH and base.lower().startswith(_WORD_PAD_PREFIX):
            unpadded = "0x" + base[26:]
            variants += [unpadded, unpadded.lower()]

    # dict preserves insertion order
    return list(dict.fromkeys(variants))


def to_bytes32_hex(identifier: str) -> str:
    """
    Left-pad a hex identifier to a 32-byte word (64 hex chars, no 0x prefix).

    Raises:
        ValueError: If the identifier is not hex or longer than 32 bytes
    """
    raw = identifier.strip()
    if raw.lower().startswith("0x"):
        raw = raw[2:]
    if len(raw) > 64:
        raise ValueError(f"Identifier longer than 32 bytes: {identifier}")
    int(raw or "0", 16)
    return raw.lower().rjust(64, "0")


def truncate_id(identifier: Optional[str], length: int = FALLBACK_LABEL_LENGTH) -> str:
    """Fallback display label: identifier prefix followed by an ellipsis."""
    return f"{(identifier or '')[:length]}..."


def is_address(value: Optional[str]) -> bool:
    """True for a 0x-prefixed 20-byte hex account address."""
    if not value or len(value) != ADDRESS_HEX_LENGTH or not value.lower().startswith("0x"):
        return False
    return all(c in string.hexdigits for c in value[2:])
