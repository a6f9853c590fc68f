"""Request-facing verification contract.

The gate is what an HTTP layer calls once per request. It never raises for
expected failures: every AuthError becomes a Failure value the caller maps to
a 401, and the internal cause only goes to the log.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .errors import AuthError, ClaimRejected
from .extractors import BearerExtractor
from .models import Failure, FailureReason

if TYPE_CHECKING:
    from types import TracebackType

    from .key_cache import KeyCache
    from .models import VerificationResult
    from .protocols import Extractor, Headers, TokenVerifier
    from .refresher import KeyRefresher

logger = logging.getLogger(__name__)


class VerificationGate:
    """Turn request headers into an Identity or a classified Failure.

    Usage:
        gate = VerificationGate(verifier, key_cache=cache)
        result = gate.authenticate(request.headers)
        if isinstance(result, Failure):
            return 401

    Only unexpected programming errors propagate as exceptions.
    """

    def __init__(
        self,
        verifier: TokenVerifier,
        extractor: Extractor | None = None,
        *,
        key_cache: KeyCache | None = None,
        refresher: KeyRefresher | None = None,
    ) -> None:
        self._verifier = verifier
        self._extractor: Extractor = extractor or BearerExtractor()
        self._key_cache = key_cache
        self._refresher = refresher

    @property
    def key_cache(self) -> KeyCache | None:
        return self._key_cache

    def authenticate(self, headers: Headers) -> VerificationResult:
        """Extract the bearer token from ``headers`` and verify it."""
        try:
            token = self._extractor.extract(headers)
        except AuthError as e:
            return self._failure(e)
        return self.authenticate_token(token)

    def authenticate_token(self, token: str) -> VerificationResult:
        """Verify an already-extracted token."""
        try:
            return self._verifier.verify(token)
        except AuthError as e:
            return self._failure(e)

    def close(self) -> None:
        """Stop background refresh and release the key source."""
        if self._refresher is not None:
            self._refresher.stop()
        if self._key_cache is not None:
            self._key_cache.close()

    def __enter__(self) -> VerificationGate:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @staticmethod
    def _failure(error: AuthError) -> Failure:
        failure = Failure(
            reason=error.reason,
            claim=error.claim if isinstance(error, ClaimRejected) else None,
            detail=str(error),
        )
        level = logging.WARNING if failure.reason is FailureReason.FETCH_ERROR else logging.INFO
        logger.log(
            level,
            "authentication_failed",
            extra={
                "reason": str(failure.reason),
                "claim": failure.claim,
                "detail": failure.detail,
            },
        )
        return failure
