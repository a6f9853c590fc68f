"""
OpenID-Connect key source.

Discovers the provider's ``jwks_uri`` from its discovery document and fetches
the published key set over HTTPS.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Final
from urllib.parse import urlsplit

import httpx

from ..errors import KeyFetchError
from ..models import KeySet
from ._jwks import parse_key_set

logger = logging.getLogger(__name__)

_DISCOVERY_PATH: Final[str] = "/.well-known/openid-configuration"


class OIDCKeySource:
    """
    Fetches signing keys from an OpenID-Connect identity provider.

    Fetch Strategy
    --------------
    1) Discovery (first fetch, or after a failed key-set fetch)
        - GET `{issuer}/.well-known/openid-configuration`
        - The document's `issuer` must match the configured issuer.
        - Its `jwks_uri` must be an absolute https URL.

    2) Key set
        - GET `jwks_uri`, require a 2xx JSON response.
        - Validate every entry; keep usable public signing keys only.
        - `Cache-Control: max-age` becomes the snapshot's freshness hint.

    3) Failure
        - Any problem raises KeyFetchError. No retries happen here; the
          KeyCache and the KeyRefresher own that policy.

    Parameters
    ----------
    issuer_url : str
        Issuer base URL (e.g., "https://tenant.example.com/").

    jwks_uri : str | None
        Explicit key set URL. Skips discovery entirely.

    client : httpx.Client | None
        HTTP client to use. A client created here is closed by `close()`;
        an injected one is left to its owner.

    timeout : float
        Per-request timeout in seconds for the internally created client.

    require_https : bool
        Reject plain-http endpoints. Only switch off for local test IdPs.
    """

    def __init__(
        self,
        issuer_url: str,
        *,
        jwks_uri: str | None = None,
        client: httpx.Client | None = None,
        timeout: float = 5.0,
        require_https: bool = True,
    ) -> None:
        if not issuer_url:
            raise ValueError("OIDC issuer URL is required for key discovery")

        self._require_https = require_https
        self._issuer_url = issuer_url.rstrip("/")
        if not self._acceptable_url(self._issuer_url):
            raise ValueError(f"Issuer URL is not an acceptable endpoint: {issuer_url}")
        if jwks_uri is not None and not self._acceptable_url(jwks_uri):
            raise ValueError(f"JWKS URI is not an acceptable endpoint: {jwks_uri}")

        self._configured_jwks_uri = jwks_uri
        self._jwks_uri: str | None = jwks_uri
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=False)

    @property
    def discovery_url(self) -> str:
        return f"{self._issuer_url}{_DISCOVERY_PATH}"

    @property
    def jwks_uri(self) -> str | None:
        """The key set URL in use, or None until discovery has succeeded."""
        return self._jwks_uri

    def fetch_key_set(self) -> KeySet:
        jwks_uri = self._jwks_uri or self._discover()
        try:
            document, max_age_hint = self._get_json(jwks_uri, "key set")
            key_set = parse_key_set(
                document, fetched_at=time.time(), max_age_hint=max_age_hint
            )
        except KeyFetchError:
            # rediscover next time; the provider may have moved its key set
            if self._configured_jwks_uri is None:
                self._jwks_uri = None
            raise

        logger.info(
            "key_set_fetched",
            extra={"jwks_uri": jwks_uri, "kids": sorted(key_set.kids)},
        )
        return key_set

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _discover(self) -> str:
        document, _ = self._get_json(self.discovery_url, "discovery document")
        if not isinstance(document, dict):
            raise KeyFetchError("discovery document is not a JSON object")

        issuer = document.get("issuer")
        if not isinstance(issuer, str) or issuer.rstrip("/") != self._issuer_url:
            raise KeyFetchError("discovery document issuer does not match")

        jwks_uri = document.get("jwks_uri")
        if not isinstance(jwks_uri, str) or not self._acceptable_url(jwks_uri):
            raise KeyFetchError("discovery document has no usable jwks_uri")

        logger.info("oidc_discovery_success", extra={"jwks_uri": jwks_uri})
        self._jwks_uri = jwks_uri
        return jwks_uri

    def _get_json(self, url: str, what: str) -> tuple[Any, float | None]:
        try:
            response = self._client.get(url, headers={"Accept": "application/json"})
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise KeyFetchError(f"{what} request failed: {e.__class__.__name__}") from e

        if not response.is_success:
            raise KeyFetchError(f"{what} returned HTTP {response.status_code}")
        if not _is_json(response.headers.get("content-type")):
            raise KeyFetchError(f"{what} has unexpected content type")

        try:
            document = response.json()
        except ValueError as e:
            raise KeyFetchError(f"{what} is not valid JSON") from e

        return document, _max_age(response.headers.get("cache-control"))

    def _acceptable_url(self, url: str) -> bool:
        parts = urlsplit(url)
        schemes = ("https",) if self._require_https else ("https", "http")
        return parts.scheme in schemes and bool(parts.netloc)


def _is_json(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def _max_age(cache_control: str | None) -> float | None:
    """Freshness hint from a Cache-Control header, in seconds."""
    if not cache_control:
        return None

    for directive in cache_control.split(","):
        name, _, value = directive.strip().partition("=")
        name = name.strip().lower()
        if name in ("no-store", "no-cache"):
            return 0.0
        if name == "max-age":
            try:
                return float(max(int(value.strip().strip('"')), 0))
            except ValueError:
                return None
    return None
