"""Single-flight coalescing of concurrent operations.

The first caller to arrive becomes the leader and runs the operation; callers
arriving while it is in flight block on the leader's Future and receive the
same result (or the same exception). Used by the key cache so that a burst
of requests carrying a freshly rotated ``kid`` produces one JWKS fetch, not
one per request.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Generic, TypeVar

T = TypeVar("T")


class FlightRejected(Exception):  # noqa: N818
    """Raised when no flight is running and ``admit`` refused to start one."""


class SingleFlight(Generic[T]):
    """Coalesce concurrent calls into a single execution.

    The internal lock is held only long enough to elect a leader; the
    operation itself runs outside it. A waiter that stops waiting does not
    cancel the operation: the leader always runs it to completion.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inflight: Future[T] | None = None

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    def do(self, fn: Callable[[], T], *, admit: Callable[[], bool] | None = None) -> T:
        """Run ``fn`` or join the execution already in progress.

        Args:
            fn: The operation to run when this caller is elected leader.
            admit: Consulted only when a new flight would start. Returning
                False raises FlightRejected instead of starting one. Joining
                an existing flight is always allowed.

        Returns:
            The result of the (shared) execution.

        Raises:
            FlightRejected: No flight in progress and ``admit`` refused.
            Exception: Whatever ``fn`` raised, re-raised in every caller.
        """
        with self._lock:
            future = self._inflight
            leader = future is None
            if leader:
                if admit is not None and not admit():
                    raise FlightRejected("no flight in progress and start was not admitted")
                future = Future()
                self._inflight = future

        if not leader:
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight = None
