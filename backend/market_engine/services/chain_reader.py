"""
Live chain reads from the multi-vault contract.

Share balances and redeem quotes read here are authoritative over the
indexed values. Calls go out as raw JSON-RPC `eth_call` requests with
hand-encoded calldata; both reads return base-unit integers, or None when
the read failed so callers can tell an outage from a real zero balance.
"""
from typing import Any, Dict, List, Optional
import logging

import requests

from market_engine.config import settings
from market_engine.constants import LINEAR_CURVE_ID
from market_engine.exceptions import ChainReadError
from market_engine.services.identifiers import to_bytes32_hex

logger = logging.getLogger(__name__)

GET_SHARES_SELECTOR = "0xee3abe38"      # getShares(address,bytes32,uint256)
PREVIEW_REDEEM_SELECTOR = "0x2db27075"  # previewRedeem(bytes32,uint256,uint256)

WORD_HEX_LENGTH = 64


def encode_uint256(value: int) -> str:
    """ABI-encode an unsigned integer as one 32-byte word (no 0x prefix)."""
    if value < 0:
        raise ValueError(f"uint256 cannot be negative: {value}")
    return format(value, "x").rjust(WORD_HEX_LENGTH, "0")


def encode_address(address: str) -> str:
    """ABI-encode a 20-byte address as one left-padded word."""
    raw = address[2:] if address.lower().startswith("0x") else address
    if len(raw) != 40:
        raise ValueError(f"Not a 20-byte address: {address}")
    int(raw, 16)
    return raw.lower().rjust(WORD_HEX_LENGTH, "0")


def decode_words(result: Optional[str]) -> List[int]:
    """Split an eth_call result into its 32-byte words as integers."""
    if not result or result == "0x":
        return []
    raw = result[2:] if result.startswith("0x") else result
    return [
        int(raw[i:i + WORD_HEX_LENGTH], 16)
        for i in range(0, len(raw) - WORD_HEX_LENGTH + 1, WORD_HEX_LENGTH)
    ]


class ChainReader:
    """Read-only access to vault share balances and redeem quotes."""

    def __init__(
        self,
        rpc_url: str = None,
        contract_address: str = None,
        timeout: float = None,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url or str(settings.rpc_url)
        self.contract_address = contract_address or settings.multi_vault_address
        self.timeout = timeout or settings.rpc_timeout_seconds
        self._session = session or requests.Session()
        self._request_id = 0

    def _eth_call(self, call_data: str) -> List[int]:
        """
        Make a JSON-RPC eth_call against the multi-vault contract.

        Raises:
            ChainReadError: On transport failure, RPC error or empty result
        """
        self._request_id += 1
        payload: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": "eth_call",
            "params": [{"to": self.contract_address, "data": call_data}, "latest"],
            "id": self._request_id,
        }

        try:
            response = self._session.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ChainReadError(f"eth_call transport failure: {e}")

        if not isinstance(body, dict):
            raise ChainReadError("eth_call returned an unexpected response")
        if body.get("error"):
            raise ChainReadError(f"eth_call reverted: {body['error']}")

        words = decode_words(body.get("result"))
        if not words:
            raise ChainReadError("eth_call returned no data")
        return words

    def get_shares(self, account: str, term_id: str, curve_id: int = LINEAR_CURVE_ID) -> Optional[int]:
        """
        Live share balance of an account in one vault.

        Args:
            account: Holder address
            term_id: Entity identifier (padded to bytes32)
            curve_id: Bonding curve of the vault

        Returns:
            Shares in base units, None on failure
        """
        try:
            call_data = (
                GET_SHARES_SELECTOR
                + encode_address(account)
                + to_bytes32_hex(term_id)
                + encode_uint256(curve_id)
            )
            return self._eth_call(call_data)[0]
        except (ChainReadError, ValueError) as e:
            logger.warning(f"getShares failed for {account} in {term_id} (curve {curve_id}): {e}")
            return None

    def preview_redeem(self, shares: int, term_id: str, curve_id: int = LINEAR_CURVE_ID) -> Optional[int]:
        """
        Quote the assets (after fees) paid out for redeeming `shares`.

        Args:
            shares: Shares in base units
            term_id: Entity identifier
            curve_id: Bonding curve of the vault

        Returns:
            Assets in base units (0 for a zero amount), None on failure
        """
        if shares <= 0:
            return 0
        try:
            call_data = (
                PREVIEW_REDEEM_SELECTOR
                + to_bytes32_hex(term_id)
                + encode_uint256(curve_id)
                + encode_uint256(shares)
            )
            return self._eth_call(call_data)[0]
        except (ChainReadError, ValueError) as e:
            logger.warning(f"previewRedeem failed for {term_id} (curve {curve_id}): {e}")
            return None
