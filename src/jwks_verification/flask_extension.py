"""Flask extension for bearer-token authentication.

This module is the reference HTTP boundary for the verification gate. It
implements a decorator-based approach for protecting routes.

Security Model:
1. Hand the request headers to the VerificationGate
2. On Identity: store it in flask.g.identity (claims in flask.g.jwt)
3. On Failure: answer 401 with a generic description and a
   ``WWW-Authenticate: Bearer`` challenge; the internal cause stays in logs
"""

from __future__ import annotations

from functools import wraps
from typing import TYPE_CHECKING, Any, Final

from flask import Flask, g, request
from werkzeug.datastructures import WWWAuthenticate
from werkzeug.exceptions import Unauthorized

from .config import GateSettings, build_gate
from .models import Failure, FailureReason

if TYPE_CHECKING:
    from collections.abc import Callable

    from .gate import VerificationGate
    from .models import Identity
    from .protocols import ViewFunc

_EXT_KEY: Final[str] = "jwks_verification"
"""Flask extensions registry key for AuthExtension."""


class AuthExtension:
    """
    Flask decorator glue for the verification gate.

    Responsibilities:
    - Pass request headers to the gate
    - Store the verified Identity in `flask.g.identity`
    - Convert Failure values to HTTP 401 responses

    Pattern:
        auth = AuthExtension()
        auth.init_app(app)          # gate built from app.config (JWKS_*)

    Usage:
        auth = AuthExtension(gate)
        @app.get("/todos")
        @auth.require()
        def todos(): ...
    """

    def __init__(self, gate: VerificationGate | None = None, app: Flask | None = None) -> None:
        self._gate: VerificationGate | None = gate
        if app is not None:
            self.init_app(app)

    @property
    def gate(self) -> VerificationGate:
        if self._gate is None:
            raise RuntimeError("AuthExtension has no gate; call init_app() first")
        return self._gate

    def init_app(self, app: Flask, *, gate: VerificationGate | None = None) -> None:
        """Register the extension, building the gate from ``app.config`` if needed.

        Args:
            app (Flask): The Flask application instance.
            gate (VerificationGate | None, optional): Gate to use instead of
                the current one. Defaults to None.

        Raises:
            ConfigError: No gate was supplied and ``app.config`` lacks the
                required JWKS_* settings.
        """
        if gate is not None:
            self._gate = gate
        if self._gate is None:
            self._gate = build_gate(GateSettings.from_mapping(app.config))

        app.extensions[_EXT_KEY] = self

    def require(self) -> Callable[[ViewFunc], ViewFunc]:
        """Decorator rejecting requests without a valid bearer token.

        Side Effects:
            - Writes the Identity to ``flask.g.identity`` and its claims to
              ``flask.g.jwt`` before calling the view.
            - Terminates request handling with 401 on any Failure.
        """

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                result = self.gate.authenticate(request.headers)
                if isinstance(result, Failure):
                    _reject(result)
                _bind(result)
                return view(*args, **kwargs)

            return wrapper

        return decorator

    def optional(self) -> Callable[[ViewFunc], ViewFunc]:
        """Decorator for routes that serve anonymous and authenticated callers.

        Requests without a bearer credential proceed with
        ``flask.g.identity = None``. A credential that is present but fails
        verification is still rejected with 401.
        """

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                result = self.gate.authenticate(request.headers)
                if isinstance(result, Failure):
                    if result.reason is not FailureReason.MISSING_CREDENTIAL:
                        _reject(result)
                    _bind(None)
                else:
                    _bind(result)
                return view(*args, **kwargs)

            return wrapper

        return decorator


def current_identity() -> Identity | None:
    """Identity verified for the current request, or None for anonymous callers."""
    return g.get("identity")


def _bind(identity: Identity | None) -> None:
    g.identity = identity
    g.jwt = identity.claims if identity is not None else None


def _reject(failure: Failure) -> None:
    # RFC 6750: no error code when the request carried no credential
    if failure.reason is FailureReason.MISSING_CREDENTIAL:
        challenge = WWWAuthenticate("Bearer")
    else:
        challenge = WWWAuthenticate("Bearer", {"error": "invalid_token"})
    raise Unauthorized(description=failure.public_message, www_authenticate=challenge)
