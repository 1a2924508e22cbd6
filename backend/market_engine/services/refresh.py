"""
Refresh coordination.

- RefreshGuard: at most one outstanding fetch per scope; triggers that
  arrive while one is running are dropped, never queued.
- PaginatedFeed: infinite-scroll list state whose results are tagged with a
  freshness token, so a reset supersedes any page still in flight.
- PollingScheduler: periodic ticks with an explicit start/stop lifecycle.
"""
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Set
import logging
import threading

from market_engine.config import settings
from market_engine.schemas.market import EntityView, MarketPage
from market_engine.services.identifiers import normalize_id

logger = logging.getLogger(__name__)


class RefreshGuard:
    """Per-scope in-flight latch."""

    def __init__(self):
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, scope: str) -> bool:
        """Mark a scope busy; False if a fetch for it is already outstanding."""
        with self._lock:
            if scope in self._in_flight:
                return False
            self._in_flight.add(scope)
            return True

    def release(self, scope: str) -> None:
        with self._lock:
            self._in_flight.discard(scope)

    def is_running(self, scope: str) -> bool:
        with self._lock:
            return scope in self._in_flight

    @contextmanager
    def run(self, scope: str) -> Iterator[bool]:
        """
        Hold the scope for the duration of the block.

        Yields:
            True if the scope was acquired; False if the trigger was dropped
        """
        acquired = self.try_acquire(scope)
        if not acquired:
            logger.debug(f"Refresh for {scope} already in flight, dropping trigger")
        try:
            yield acquired
        finally:
            if acquired:
                self.release(scope)


class PaginatedFeed:
    """
    Infinite-scroll state over a paged market listing.

    `reset()` reloads the first page and bumps the freshness token; a
    `load_more()` result that comes back under an older token is discarded.
    `load_more()` is refused while a reset or another page fetch is running.
    """

    def __init__(self, fetch_page: Callable[[int, int], MarketPage], page_size: int = None):
        self._fetch_page = fetch_page
        self.page_size = page_size or settings.market_page_size
        self.items: List[EntityView] = []
        self.offset = 0
        self.has_more = True
        self.stale = False
        self._token = 0
        self._resetting = False
        self._loading = False
        self._lock = threading.Lock()

    @property
    def token(self) -> int:
        """Current freshness token."""
        return self._token

    def reset(self) -> bool:
        """
        Reload from the first page, superseding in-flight pagination.

        Returns:
            True if the first page was applied
        """
        with self._lock:
            self._token += 1
            token = self._token
            self._resetting = True

        try:
            page = self._fetch_page(self.page_size, 0)
        finally:
            with self._lock:
                if token == self._token:
                    self._resetting = False

        return self._apply(page, token, request_offset=0, replace=True)

    def load_more(self) -> bool:
        """
        Fetch the next page.

        Returns:
            True if a page was fetched and applied; False when refused,
            exhausted or superseded by a reset
        """
        with self._lock:
            if self._resetting or self._loading or not self.has_more:
                return False
            self._loading = True
            token = self._token
            request_offset = self.offset

        try:
            page = self._fetch_page(self.page_size, request_offset)
        finally:
            with self._lock:
                self._loading = False

        return self._apply(page, token, request_offset=request_offset, replace=False)

    def _apply(self, page: MarketPage, token: int, request_offset: int, replace: bool) -> bool:
        with self._lock:
            if token != self._token:
                logger.debug(f"Discarding page at offset {request_offset}: token {token} superseded by {self._token}")
                return False

            if replace:
                self.items = list(page.items)
            else:
                seen = {normalize_id(item.id) for item in self.items}
                self.items.extend(item for item in page.items if normalize_id(item.id) not in seen)

            self.offset = request_offset + self.page_size
            self.has_more = page.has_more
            self.stale = page.stale
            return True


class PollingScheduler:
    """
    Run a task every `interval` seconds on a background thread.

    Ticks go through a RefreshGuard, so a tick that fires while the previous
    one is still running is dropped. Task exceptions are logged and the
    schedule continues.
    """

    def __init__(
        self,
        task: Callable[[], Any],
        interval: float = None,
        guard: Optional[RefreshGuard] = None,
        scope: str = "poll",
        run_immediately: bool = True,
    ):
        self.task = task
        self.interval = interval or settings.poll_interval_seconds
        self.guard = guard or RefreshGuard()
        self.scope = scope
        self.run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> bool:
        """
        Run the task once unless a previous run is still in flight.

        Returns:
            True if the task ran and completed without error
        """
        with self.guard.run(self.scope) as acquired:
            if not acquired:
                return False
            try:
                self.task()
                return True
            except Exception as e:
                logger.error(f"Polling task {self.scope} failed: {e}", exc_info=True)
                return False

    def _loop(self) -> None:
        if self.run_immediately:
            self.tick()
        while not self._stop_event.wait(self.interval):
            self.tick()

    def start(self) -> None:
        """Start ticking; no-op if already running."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=f"poll-{self.scope}", daemon=True)
        self._thread.start()
        logger.info(f"Polling scheduler {self.scope} started (every {self.interval}s)")

    def stop(self, timeout: float = None) -> None:
        """Stop ticking and wait for the current tick to finish."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info(f"Polling scheduler {self.scope} stopped")
