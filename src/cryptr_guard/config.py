from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .errors import ConfigError

# Keys are fetched from a published set, so only asymmetric algorithms make sense.
SUPPORTED_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512"}
)

DEFAULT_ALGORITHM = "RS256"
DEFAULT_JWKS_TIMEOUT = 3.0
DEFAULT_JWKS_MAX_BYTES = 512 * 1024

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class GatekeeperConfig:
    """Process-wide verifier settings, fixed at startup.

    ``audience``, ``base_url`` and ``tenant_domain`` are required. The issuer
    and key-set URL are both derived from ``base_url`` and ``tenant_domain``.
    """

    audience: str
    base_url: str
    tenant_domain: str
    algorithm: str = DEFAULT_ALGORITHM
    leeway: int = 0
    jwks_timeout: float = DEFAULT_JWKS_TIMEOUT
    jwks_max_bytes: int = DEFAULT_JWKS_MAX_BYTES
    jwks_cache_ttl: float = 0.0
    require_iat: bool = True

    def __post_init__(self) -> None:
        for field_name in ("audience", "base_url", "tenant_domain"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"{field_name} is required")
        object.__setattr__(self, "base_url", self.base_url.strip().rstrip("/"))
        object.__setattr__(self, "tenant_domain", self.tenant_domain.strip().strip("/"))
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            supported = ", ".join(sorted(SUPPORTED_ALGORITHMS))
            raise ConfigError(f"unsupported algorithm: {self.algorithm} (supported: {supported})")
        if self.leeway < 0:
            raise ConfigError("leeway must be a non-negative integer")
        if self.jwks_timeout <= 0:
            raise ConfigError("jwks_timeout must be positive")
        if self.jwks_max_bytes <= 0:
            raise ConfigError("jwks_max_bytes must be positive")
        if self.jwks_cache_ttl < 0:
            raise ConfigError("jwks_cache_ttl must be non-negative")

    @property
    def issuer(self) -> str:
        return f"{self.base_url}/t/{self.tenant_domain}"

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatekeeperConfig:
        env = os.environ if environ is None else environ
        missing = [
            name
            for name in ("CRYPTR_AUDIENCE", "CRYPTR_BASE_URL", "CRYPTR_TENANT_DOMAIN")
            if not env.get(name, "").strip()
        ]
        if missing:
            raise ConfigError(f"missing required environment variables: {', '.join(missing)}")
        return cls(
            audience=env["CRYPTR_AUDIENCE"],
            base_url=env["CRYPTR_BASE_URL"],
            tenant_domain=env["CRYPTR_TENANT_DOMAIN"],
            algorithm=env.get("CRYPTR_ALGORITHM", "").strip() or DEFAULT_ALGORITHM,
            leeway=_env_number(env, "CRYPTR_LEEWAY", int, 0),
            jwks_timeout=_env_number(env, "CRYPTR_JWKS_TIMEOUT", float, DEFAULT_JWKS_TIMEOUT),
            jwks_cache_ttl=_env_number(env, "CRYPTR_JWKS_CACHE_TTL", float, 0.0),
            require_iat=_env_bool(env, "CRYPTR_REQUIRE_IAT", True),
        )


def _env_number(env: Mapping[str, str], name: str, kind: type, default: float) -> Any:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number (got {raw!r})") from None


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean (got {raw!r})")
