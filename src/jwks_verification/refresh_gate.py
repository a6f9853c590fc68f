"""Rate limiting for key set refresh operations.

This module implements RefreshGate, a thread-safe limiter that bounds how
often the key cache may start a new fetch. The cache uses two gates:

1. One for refreshes triggered by an unknown ``kid``, so attacker-supplied
   key identifiers cannot turn into outbound request amplification.
2. One for retrying after a failed fetch, so an unreachable provider is not
   hit on every request.

The gate allows at most one refresh per configured interval, rejecting
additional attempts and logging once denials reach an alert threshold.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Final

logger = logging.getLogger(__name__)

_DEFAULT_INTERVAL: Final[float] = 10
"""Default minimum interval between refreshes in seconds."""

_DEFAULT_ALERT_THRESHOLD: Final[int] = 40
"""Default number of denials before alerting (per interval)."""


class RefreshGate:
    """Thread-safe rate limiter for key set refresh operations.

    Thread Safety:
        All operations are protected by an internal lock.

    Attributes:
        _name: Label used in log records.
        _min_interval: Minimum seconds between allowed refreshes.
        _alert_threshold: Number of denials before a warning is logged.
        _lock: Thread synchronization lock.
        _next_allowed_at: Unix timestamp when next refresh is allowed.
        _retry_attempts: Count of denied attempts since last allow.
    """

    def __init__(
        self,
        min_interval: float = _DEFAULT_INTERVAL,
        alert_threshold: int = _DEFAULT_ALERT_THRESHOLD,
        *,
        name: str = "refresh",
    ) -> None:
        """Initialize the refresh gate.

        Args:
            min_interval: Minimum seconds between allowed refreshes. Zero
                disables throttling.
            alert_threshold: Number of denied attempts before a warning is
                logged.
            name: Label for log records ("miss", "retry", ...).

        Raises:
            ValueError: If min_interval or alert_threshold are invalid.
        """
        if min_interval < 0:
            raise ValueError(f"min_interval must not be negative, got {min_interval}")
        if alert_threshold < 1:
            raise ValueError(f"alert_threshold must be at least 1, got {alert_threshold}")

        self._name = name
        self._min_interval = min_interval
        self._alert_threshold = alert_threshold

        self._lock = threading.Lock()
        self._next_allowed_at: float = 0.0
        self._retry_attempts: int = 0

    @property
    def denied(self) -> int:
        """Denials since the last allowed refresh."""
        return self._retry_attempts

    def allow(self) -> bool:
        """Check if a refresh operation is allowed now.

        Returns:
            True if refresh is allowed (and the interval restarts).
            False if refresh is denied (too soon since last refresh).
        """
        now = time.time()

        with self._lock:
            if now < self._next_allowed_at:
                self._retry_attempts += 1
                if self._retry_attempts == self._alert_threshold:
                    logger.warning(
                        "key_refresh_throttled",
                        extra={"gate": self._name, "denied": self._retry_attempts},
                    )
                else:
                    logger.debug(
                        "key_refresh_denied",
                        extra={"gate": self._name, "denied": self._retry_attempts},
                    )
                return False

            self._next_allowed_at = now + self._min_interval
            self._retry_attempts = 0
            return True

    def hold(self) -> None:
        """Start a new interval now; refreshes are denied until it elapses."""
        with self._lock:
            self._next_allowed_at = time.time() + self._min_interval

    def reset(self) -> None:
        """Allow the next refresh immediately."""
        with self._lock:
            self._next_allowed_at = 0.0
            self._retry_attempts = 0
