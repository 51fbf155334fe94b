from __future__ import annotations

import http.client
import json
import logging
import textwrap
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable
from typing import Any, Protocol, cast

from cryptography import x509
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_pem_public_key,
)
from jwt import algorithms
from jwt import exceptions as jwt_exceptions

from .config import DEFAULT_JWKS_MAX_BYTES, DEFAULT_JWKS_TIMEOUT, GatekeeperConfig
from .errors import KeyNotFoundError, KeySetUnavailableError
from .version import USER_AGENT

logger = logging.getLogger(__name__)

_CERT_BEGIN = "-----BEGIN CERTIFICATE-----"
_CERT_END = "-----END CERTIFICATE-----"

JWKSFetcher = Callable[[str], dict[str, Any]]


class KeyResolver(Protocol):
    """Maps a token's key identifier to PEM-encoded verification key material."""

    def resolve(self, kid: str | None) -> str: ...


def fetch_jwks(
    url: str,
    *,
    timeout: float = DEFAULT_JWKS_TIMEOUT,
    max_bytes: int = DEFAULT_JWKS_MAX_BYTES,
) -> dict[str, Any]:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        raise KeySetUnavailableError("key set url must be http(s)")

    req = urllib.request.Request(
        url, headers={"Accept": "application/json", "User-Agent": USER_AGENT}
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            body = response.read(max_bytes + 1)
    except urllib.error.HTTPError as exc:
        raise KeySetUnavailableError(f"key set endpoint returned HTTP {exc.code}") from exc
    except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
        reason = getattr(exc, "reason", exc)
        raise KeySetUnavailableError(f"failed to fetch key set: {reason}") from exc
    if len(body) > max_bytes:
        raise KeySetUnavailableError("key set response too large")

    try:
        parsed_json = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise KeySetUnavailableError("key set endpoint did not return valid JSON") from exc
    if not isinstance(parsed_json, dict):
        raise KeySetUnavailableError("key set must be an object")
    if not isinstance(parsed_json.get("keys"), list):
        raise KeySetUnavailableError("key set keys must be a list")
    return cast(dict[str, Any], parsed_json)


def pem_from_x5c(cert_b64: str) -> str:
    body = "".join(cert_b64.split())
    return "\n".join([_CERT_BEGIN, *textwrap.wrap(body, 64), _CERT_END])


def _pem_from_jwk_params(jwk: dict[str, Any]) -> str | None:
    kty = jwk.get("kty")
    jwk_json = json.dumps(jwk)
    try:
        if kty == "RSA":
            key_any: Any = algorithms.RSAAlgorithm.from_jwk(jwk_json)
        elif kty == "EC":
            key_any = algorithms.ECAlgorithm.from_jwk(jwk_json)
        else:
            return None
    except (jwt_exceptions.InvalidKeyError, ValueError, KeyError):
        return None
    key = key_any.public_key() if hasattr(key_any, "public_key") else key_any
    return key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo).decode("ascii")


def select_pem(jwks: dict[str, Any], kid: str | None) -> str | None:
    """Return PEM material for ``kid``, or ``None`` when the set has no such key."""
    if not kid:
        return None
    for item in jwks.get("keys", []):
        if not isinstance(item, dict) or item.get("kid") != kid:
            continue
        x5c = item.get("x5c")
        if isinstance(x5c, list) and x5c and isinstance(x5c[0], str) and x5c[0].strip():
            return pem_from_x5c(x5c[0])
        pem = _pem_from_jwk_params(cast(dict[str, Any], item))
        if pem is None:
            raise KeyNotFoundError(f"key {kid} has no usable key material")
        return pem
    return None


def load_verification_key(pem_text: str) -> Any:
    data = pem_text.encode("utf-8")
    if _CERT_BEGIN in pem_text:
        try:
            return x509.load_pem_x509_certificate(data).public_key()
        except ValueError as exc:
            raise KeyNotFoundError("published certificate could not be loaded") from exc
    try:
        return load_pem_public_key(data)
    except ValueError as exc:
        raise KeyNotFoundError("published key could not be loaded") from exc


class KeySetCache:
    """In-memory key set documents, each kept for at most ``ttl`` seconds."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}

    def get(self, url: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            fetched_at, jwks = entry
            if self._clock() - fetched_at >= self.ttl:
                del self._entries[url]
                return None
            return jwks

    def put(self, url: str, jwks: dict[str, Any]) -> None:
        with self._lock:
            self._entries[url] = (self._clock(), jwks)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class JWKSKeyResolver:
    """Resolves keys from the tenant's published ``.well-known`` key set.

    Without a cache every call fetches the key set. With one, a kid that is
    missing from the cached document forces a single fresh fetch so rotated
    keys are picked up immediately.
    """

    def __init__(
        self,
        config: GatekeeperConfig,
        *,
        fetcher: JWKSFetcher | None = None,
        cache: KeySetCache | None = None,
    ) -> None:
        self.config = config
        self._fetcher = fetcher or self._default_fetch
        if cache is None and config.jwks_cache_ttl > 0:
            cache = KeySetCache(config.jwks_cache_ttl)
        self.cache = cache

    def _default_fetch(self, url: str) -> dict[str, Any]:
        return fetch_jwks(
            url,
            timeout=self.config.jwks_timeout,
            max_bytes=self.config.jwks_max_bytes,
        )

    def _fetch(self) -> dict[str, Any]:
        url = self.config.jwks_url
        logger.debug("fetching key set from %s", url)
        jwks = self._fetcher(url)
        if self.cache is not None:
            self.cache.put(url, jwks)
        return jwks

    def resolve(self, kid: str | None) -> str:
        url = self.config.jwks_url
        cached = self.cache.get(url) if self.cache is not None else None
        if cached is not None:
            pem = select_pem(cached, kid)
            if pem is not None:
                return pem
            logger.debug("kid %s not in cached key set; refreshing", kid)

        pem = select_pem(self._fetch(), kid)
        if pem is None:
            raise KeyNotFoundError(f"unable to find appropriate key (kid: {kid})")
        return pem
