"""Key cache with coalesced refresh and a staleness policy.

The cache holds exactly one immutable KeySet snapshot. Readers take the
current reference without locking; a refresh builds a complete new snapshot
and replaces the reference in one assignment, so nobody ever observes a
half-updated set.

Refresh triggers:
- Cold start or a stale snapshot: refreshed synchronously before the lookup.
  On failure a snapshot that has not passed ``max_age`` keeps being served.
- Unknown ``kid``: one refresh, then the new snapshot is checked once. An
  identifier that is still absent is an UnknownKey failure, never a loop.

All triggers go through one SingleFlight, so any number of concurrent
callers share a single fetch.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Final

from .errors import KeyFetchError, UnknownKey
from .models import KeySet, SigningKey
from .refresh_gate import RefreshGate
from .single_flight import FlightRejected, SingleFlight

if TYPE_CHECKING:
    from .protocols import KeySource

logger = logging.getLogger(__name__)

_MIN_HINT_SECONDS: Final[float] = 60.0
"""Cache-Control hints below this are raised to it."""

_KID_LOG_LIMIT: Final[int] = 64


class KeyCache:
    """Process-wide cache of the identity provider's signing keys.

    Create one per process at startup and hand it to every verifier; it is
    not a singleton and holds no global state.

    Thread Safety:
        ``get_key`` on a fresh snapshot takes no lock. Refreshes are
        serialized by a SingleFlight; waiters block on the shared result.

    Attributes:
        _source: KeySource performing the actual fetch.
        _max_staleness: Seconds after which a snapshot is refreshed before use.
        _max_age: Seconds after which a snapshot may no longer be served,
            even when the provider is unreachable.
        _miss_gate: Throttles fetches started by unknown kids.
        _retry_gate: Throttles cold-start/stale fetch attempts after a failure;
            held on every failed fetch, never consulted while fetches succeed.
    """

    def __init__(
        self,
        source: KeySource,
        *,
        max_staleness: float = 600.0,
        max_age: float = 3600.0,
        miss_refresh_interval: float = 10.0,
        retry_interval: float = 30.0,
    ) -> None:
        """Initialize the cache. Nothing is fetched until first use.

        Raises:
            ValueError: If the freshness bounds are inconsistent.
        """
        if max_staleness <= 0:
            raise ValueError(f"max_staleness must be positive, got {max_staleness}")
        if max_age < max_staleness:
            raise ValueError("max_age must be greater than or equal to max_staleness")

        self._source = source
        self._max_staleness = float(max_staleness)
        self._max_age = float(max_age)
        self._snapshot: KeySet | None = None
        self._last_error: KeyFetchError | None = None
        self._flight: SingleFlight[KeySet] = SingleFlight()
        self._miss_gate = RefreshGate(min_interval=miss_refresh_interval, name="miss")
        self._retry_gate = RefreshGate(min_interval=retry_interval, name="retry")

    @property
    def snapshot(self) -> KeySet | None:
        """The current snapshot, or None before the first successful fetch."""
        return self._snapshot

    def get_key(self, kid: str) -> SigningKey:
        """Resolve the signing key for ``kid``.

        Raises:
            UnknownKey: ``kid`` is absent after one refresh attempt (or the
                miss refresh was throttled).
            KeyFetchError: No usable snapshot exists and fetching failed.
        """
        snapshot, attempted = self._usable_snapshot()
        key = snapshot.get(kid)
        if key is not None:
            return key
        if attempted:
            # a fetch already ran for this lookup, successful or not
            raise self._unknown(kid)
        return self._get_after_miss(kid, snapshot)

    def refresh_now(self) -> KeySet:
        """Fetch the key set now, joining a fetch already in progress.

        Not throttled: intended for startup warm-up and scheduled refreshes.

        Raises:
            KeyFetchError: The fetch failed; the current snapshot is kept.
        """
        return self._flight.do(self._fetch)

    def is_stale(self, snapshot: KeySet) -> bool:
        return time.time() >= snapshot.fetched_at + self._refresh_after(snapshot)

    def is_expired(self, snapshot: KeySet) -> bool:
        return time.time() >= snapshot.fetched_at + self._max_age

    def close(self) -> None:
        close = getattr(self._source, "close", None)
        if callable(close):
            close()

    # ------------------------------------------------------------------

    def _usable_snapshot(self) -> tuple[KeySet, bool]:
        """Return a snapshot fit to serve and whether a fetch was attempted for it."""
        snapshot = self._snapshot
        if snapshot is not None and not self.is_stale(snapshot):
            return snapshot, False

        try:
            fresh = self._flight.do(
                lambda: self._refresh_if_unchanged(snapshot),
                admit=self._retry_allowed,
            )
        except FlightRejected:
            cause = self._last_error.cause if self._last_error else "key set unavailable"
            return self._fallback(snapshot, KeyFetchError(cause)), False
        except KeyFetchError as e:
            return self._fallback(snapshot, e), True
        return fresh, True

    def _retry_allowed(self) -> bool:
        # only a failed fetch arms the retry gate
        return self._last_error is None or self._retry_gate.allow()

    def _get_after_miss(self, kid: str, seen: KeySet) -> SigningKey:
        current = self._snapshot
        if current is not None and current is not seen:
            # someone refreshed since we looked; that counts as our refresh
            key = current.get(kid)
            if key is None:
                raise self._unknown(kid)
            return key

        try:
            snapshot = self._flight.do(
                lambda: self._refresh_if_unchanged(seen),
                admit=self._miss_gate.allow,
            )
        except FlightRejected:
            raise self._unknown(kid) from None
        except KeyFetchError:
            # ``seen`` passed _usable_snapshot, so availability is preserved
            raise self._unknown(kid) from None

        key = snapshot.get(kid)
        if key is None:
            raise self._unknown(kid)
        return key

    def _refresh_if_unchanged(self, seen: KeySet | None) -> KeySet:
        current = self._snapshot
        if current is not None and current is not seen and not self.is_stale(current):
            return current
        return self._fetch()

    def _fetch(self) -> KeySet:
        try:
            key_set = self._source.fetch_key_set()
        except KeyFetchError as e:
            self._last_error = e
            self._retry_gate.hold()
            logger.warning("key_set_fetch_failed", extra={"cause": e.cause})
            raise

        if not isinstance(key_set, KeySet):
            raise TypeError(f"KeySource returned {type(key_set).__name__}, expected KeySet")

        self._snapshot = key_set
        self._last_error = None
        logger.debug("key_set_installed", extra={"kids": sorted(key_set.kids)})
        return key_set

    def _fallback(self, snapshot: KeySet | None, error: KeyFetchError) -> KeySet:
        if snapshot is None or self.is_expired(snapshot):
            raise error
        logger.debug(
            "serving_stale_key_set",
            extra={"age": time.time() - snapshot.fetched_at, "cause": error.cause},
        )
        return snapshot

    def _refresh_after(self, snapshot: KeySet) -> float:
        hint = snapshot.max_age_hint
        if hint is None:
            return self._max_staleness
        return min(self._max_staleness, max(hint, _MIN_HINT_SECONDS))

    @staticmethod
    def _unknown(kid: str) -> UnknownKey:
        logger.info("unknown_kid", extra={"kid": kid[:_KID_LOG_LIMIT]})
        return UnknownKey(f"No signing key for kid {kid[:_KID_LOG_LIMIT]!r}")
