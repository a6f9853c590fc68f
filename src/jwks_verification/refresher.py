"""Periodic key set refresh in a background thread.

Keeps the KeyCache warm so request threads almost never pay for a fetch.
This is the one place that retries: after a failure the next attempt is
scheduled with exponential backoff instead of the regular interval.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Final

from .errors import KeyFetchError

if TYPE_CHECKING:
    from .key_cache import KeyCache

logger = logging.getLogger(__name__)

_INITIAL_BACKOFF: Final[float] = 5.0


class KeyRefresher:
    """Daemon thread calling ``KeyCache.refresh_now()`` on a schedule.

    Args:
        cache: The cache to refresh.
        interval: Seconds between refreshes while the provider is healthy.
        max_backoff: Upper bound on the delay between failed attempts.
    """

    def __init__(
        self,
        cache: KeyCache,
        *,
        interval: float = 300.0,
        max_backoff: float = 300.0,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if max_backoff <= 0:
            raise ValueError(f"max_backoff must be positive, got {max_backoff}")

        self._cache = cache
        self._interval = interval
        self._max_backoff = max_backoff
        self._failures = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._run, name="jwks-refresher", daemon=True
            )
            self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        self._stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def run_once(self) -> float:
        """Refresh once and return the delay before the next attempt."""
        try:
            self._cache.refresh_now()
        except KeyFetchError as e:
            delay = self._backoff()
            logger.warning(
                "key_refresh_backoff",
                extra={"failures": self._failures, "delay": delay, "cause": e.cause},
            )
            return delay

        self._failures = 0
        return self._interval

    def _backoff(self) -> float:
        self._failures += 1
        return min(_INITIAL_BACKOFF * 2 ** (self._failures - 1), self._max_backoff)

    def _run(self) -> None:
        delay = 0.0
        while not self._stop.wait(delay):
            try:
                delay = self.run_once()
            except Exception:
                # unexpected errors must not end the thread
                delay = self._backoff()
                logger.exception("key_refresh_crashed", extra={"delay": delay})
