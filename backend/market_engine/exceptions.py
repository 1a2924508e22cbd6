"""
Exceptions raised inside the remote clients.

None of these escape the service layer: clients catch them at their boundary
and degrade to "no data".
"""


class MarketEngineError(Exception):
    """Base exception for the market engine."""
    pass


class RemoteQueryError(MarketEngineError):
    """
    Raised when the indexing service returns an error payload or an
    undecodable response.
    """
    pass


class ChainReadError(MarketEngineError):
    """
    Raised when a JSON-RPC call fails or returns malformed data.
    """
    pass
