"""
GraphQL client for the remote indexer.

All market and history reads go through `GraphQLClient.execute`. Failures
never propagate: a response with `errors`, an unreadable body or a transport
failure after the retries yields None, and `last_error` keeps the reason so
callers can flag their result as stale.
"""
import time
from typing import Any, Dict, Optional
import logging

import requests

from market_engine.config import settings
from market_engine.exceptions import RemoteQueryError

logger = logging.getLogger(__name__)


class GraphQLClient:
    """Minimal JSON-over-HTTP GraphQL client with bounded retries."""

    def __init__(
        self,
        url: str = None,
        timeout: float = None,
        max_retries: int = None,
        backoff_seconds: float = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url or str(settings.graphql_url)
        self.timeout = timeout or settings.graphql_timeout_seconds
        self.max_retries = settings.graphql_max_retries if max_retries is None else max_retries
        self.backoff_seconds = settings.graphql_backoff_seconds if backoff_seconds is None else backoff_seconds
        self._session = session or requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        self.last_error: Optional[str] = None

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self._session.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteQueryError(f"Non-JSON response from indexer: {e}")

        if not isinstance(body, dict):
            raise RemoteQueryError("Unexpected response shape from indexer")
        if body.get("errors"):
            raise RemoteQueryError(f"Indexer returned errors: {body['errors']}")
        return body.get("data") or {}

    def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Run a query against the indexer.

        Transport and HTTP failures are retried with linear backoff
        (backoff_seconds x attempt). Timeouts and GraphQL-level errors are
        not retried.

        Args:
            query: GraphQL document
            variables: Query variables

        Returns:
            The `data` object, or None if the query failed
        """
        payload = {"query": query, "variables": variables or {}}
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                logger.debug(f"GraphQL request to {self.url} (attempt {attempt}/{attempts})")
                data = self._post(payload)
                self.last_error = None
                return data

            except requests.exceptions.Timeout as e:
                self.last_error = f"timeout: {e}"
                logger.warning(f"GraphQL request timed out after {self.timeout}s, not retrying")
                return None

            except RemoteQueryError as e:
                self.last_error = str(e)
                logger.warning(f"GraphQL query failed: {e}")
                return None

            except requests.exceptions.RequestException as e:
                self.last_error = str(e)
                if attempt < attempts:
                    wait_time = self.backoff_seconds * attempt
                    logger.warning(
                        f"GraphQL request failed (attempt {attempt}/{attempts}): {e}. "
                        f"Retrying in {wait_time} seconds..."
                    )
                    time.sleep(wait_time)
                else:
                    logger.error(f"GraphQL request failed after {attempts} attempts: {e}")

        return None
