"""Settings for the verification gate and the factory that wires it.

Settings come from environment variables (a ``.env`` file is honoured via
python-dotenv) or from any mapping such as ``flask.Flask.config``. All keys
share a prefix, ``JWKS_`` by default:

    JWKS_ISSUER_URL=https://tenant.example.com/
    JWKS_AUDIENCE=https://api.example.com
    JWKS_LEEWAY=30

Validation happens once, at startup; a bad value raises ConfigError instead
of surfacing later as mysterious 401s.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from dotenv import load_dotenv

from .errors import ConfigError
from .gate import VerificationGate
from .key_cache import KeyCache
from .key_sources import OIDCKeySource
from .refresher import KeyRefresher
from .verifier import JWTVerifier, JWTVerifyOptions

if TYPE_CHECKING:
    import httpx

    from .protocols import KeySource

DEFAULT_PREFIX: Final[str] = "JWKS_"

_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True, slots=True)
class GateSettings:
    """Everything the verification core needs from the outside world.

    Attributes:
        issuer_url: Identity provider base URL (discovery starts here).
        audience: Expected `aud` value (your API identifier).
        issuer: Expected `iss` claim. Defaults to ``issuer_url`` verbatim.
        jwks_uri: Explicit key set URL; skips discovery when set.
        algorithms: Signing algorithm allow-list.
        leeway: Clock skew tolerance in seconds.
        max_staleness: Seconds before a cached key set is refreshed on use.
        max_age: Seconds a key set may be served while the provider is down.
        miss_refresh_interval: Minimum seconds between unknown-kid refreshes.
        retry_interval: Minimum seconds between attempts after a failed fetch.
        http_timeout: Per-request timeout for the provider, in seconds.
        background_refresh: Start a KeyRefresher thread.
        refresh_interval: Seconds between background refreshes.
    """

    issuer_url: str
    audience: str
    issuer: str | None = None
    jwks_uri: str | None = None
    algorithms: tuple[str, ...] = ("RS256",)
    leeway: float = 30.0
    max_staleness: float = 600.0
    max_age: float = 3600.0
    miss_refresh_interval: float = 10.0
    retry_interval: float = 30.0
    http_timeout: float = 5.0
    background_refresh: bool = False
    refresh_interval: float = 300.0

    def __post_init__(self) -> None:
        if not self.issuer_url:
            raise ConfigError("issuer_url is required")
        if not self.audience:
            raise ConfigError("audience is required")
        for name in (
            "leeway",
            "max_staleness",
            "max_age",
            "miss_refresh_interval",
            "retry_interval",
            "http_timeout",
            "refresh_interval",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if self.max_staleness == 0 or self.http_timeout == 0 or self.refresh_interval == 0:
            raise ConfigError("max_staleness, http_timeout and refresh_interval must be positive")
        if self.max_age < self.max_staleness:
            raise ConfigError("max_age must be greater than or equal to max_staleness")

    @property
    def expected_issuer(self) -> str:
        return self.issuer or self.issuer_url

    @classmethod
    def from_mapping(
        cls, mapping: Mapping[str, Any], prefix: str = DEFAULT_PREFIX
    ) -> GateSettings:
        """Read settings from ``mapping`` (``os.environ``, ``app.config``, ...).

        Raises:
            ConfigError: A required key is missing or a value does not parse.
        """

        def get(key: str) -> Any:
            value = mapping.get(f"{prefix}{key}")
            if isinstance(value, str):
                value = value.strip()
                return value or None
            return value

        missing = [f"{prefix}{key}" for key in ("ISSUER_URL", "AUDIENCE") if not get(key)]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

        values: dict[str, Any] = {
            "issuer_url": str(get("ISSUER_URL")),
            "audience": str(get("AUDIENCE")),
            "issuer": get("ISSUER"),
            "jwks_uri": get("URI"),
        }

        algorithms = get("ALGORITHMS")
        if algorithms is not None:
            values["algorithms"] = _parse_list(f"{prefix}ALGORITHMS", algorithms)

        for key, field_name in (
            ("LEEWAY", "leeway"),
            ("MAX_STALENESS", "max_staleness"),
            ("MAX_AGE", "max_age"),
            ("MISS_REFRESH_INTERVAL", "miss_refresh_interval"),
            ("RETRY_INTERVAL", "retry_interval"),
            ("HTTP_TIMEOUT", "http_timeout"),
            ("REFRESH_INTERVAL", "refresh_interval"),
        ):
            raw = get(key)
            if raw is not None:
                values[field_name] = _parse_float(f"{prefix}{key}", raw)

        background = get("BACKGROUND_REFRESH")
        if background is not None:
            values["background_refresh"] = _parse_bool(f"{prefix}BACKGROUND_REFRESH", background)

        return cls(**values)

    @classmethod
    def from_env(
        cls,
        prefix: str = DEFAULT_PREFIX,
        *,
        dotenv_path: str | os.PathLike[str] | None = None,
    ) -> GateSettings:
        """Load ``.env`` (without overriding real environment variables) and read settings."""
        load_dotenv(dotenv_path)
        return cls.from_mapping(os.environ, prefix)


def build_gate(
    settings: GateSettings,
    *,
    client: httpx.Client | None = None,
    source: KeySource | None = None,
) -> VerificationGate:
    """Wire key source, cache, verifier and gate from ``settings``.

    Args:
        settings: Validated settings.
        client: HTTP client for the OIDC key source (tests inject a mock
            transport here).
        source: Replaces the OIDC key source entirely.
    """
    if source is None:
        source = OIDCKeySource(
            settings.issuer_url,
            jwks_uri=settings.jwks_uri,
            client=client,
            timeout=settings.http_timeout,
        )

    cache = KeyCache(
        source,
        max_staleness=settings.max_staleness,
        max_age=settings.max_age,
        miss_refresh_interval=settings.miss_refresh_interval,
        retry_interval=settings.retry_interval,
    )
    verifier = JWTVerifier(
        cache,
        JWTVerifyOptions(
            issuer=settings.expected_issuer,
            audience=settings.audience,
            algorithms=settings.algorithms,
            leeway=settings.leeway,
        ),
    )

    refresher = None
    if settings.background_refresh:
        refresher = KeyRefresher(cache, interval=settings.refresh_interval)
        refresher.start()

    return VerificationGate(verifier, key_cache=cache, refresher=refresher)


def _parse_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _parse_list(key: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",")]
    elif isinstance(value, list | tuple):
        items = [str(item).strip() for item in value]
    else:
        raise ConfigError(f"{key} must be a comma separated string or a list")
    items = [item for item in items if item]
    if not items:
        raise ConfigError(f"{key} must not be empty")
    return tuple(items)
