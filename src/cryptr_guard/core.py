from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import jwt
from jwt import exceptions as jwt_exceptions

from .config import GatekeeperConfig
from .errors import (
    AlgorithmMismatchError,
    InvalidAudienceError,
    InvalidIssuedAtError,
    InvalidIssuerError,
    InvalidSignatureError,
    TokenExpiredError,
    TokenParseError,
)
from .keys import JWKSKeyResolver, KeyResolver, load_verification_key

logger = logging.getLogger(__name__)

_NO_CLAIM_CHECKS = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


@dataclass(frozen=True)
class VerifiedToken:
    header: dict[str, Any] = field(default_factory=dict)
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def subject(self) -> str | None:
        sub = self.claims.get("sub")
        return sub if isinstance(sub, str) else None

    @property
    def kid(self) -> str | None:
        kid = self.header.get("kid")
        return kid if isinstance(kid, str) else None

    @property
    def algorithm(self) -> str | None:
        alg = self.header.get("alg")
        return alg if isinstance(alg, str) else None


def decode_token(token: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Parse header and claims without checking the signature or any claim."""
    try:
        header = jwt.get_unverified_header(token)
        payload = jwt.decode(token, options=dict(_NO_CLAIM_CHECKS))
    except jwt_exceptions.PyJWTError as exc:
        raise TokenParseError(f"invalid token format: {exc}") from exc
    if not isinstance(payload, dict):
        raise TokenParseError("token payload must be a JSON object")
    return header, payload


def _numeric_date(value: Any) -> float | None:
    # NumericDate may carry a fraction; bool is an int subclass but never a timestamp.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _validate_exp(claims: dict[str, Any], *, now: float, leeway: float) -> None:
    if "exp" not in claims:
        raise TokenExpiredError("exp claim missing")
    exp = _numeric_date(claims["exp"])
    if exp is None:
        raise TokenExpiredError("exp claim is not a number")
    if exp <= now - leeway:
        raise TokenExpiredError()


def _validate_iat(
    claims: dict[str, Any], *, now: float, leeway: float, required: bool
) -> None:
    if "iat" not in claims:
        if required:
            raise InvalidIssuedAtError("iat claim missing")
        return
    iat = _numeric_date(claims["iat"])
    if iat is None:
        raise InvalidIssuedAtError("iat claim is not a number")
    if iat > now + leeway:
        raise InvalidIssuedAtError()


def _validate_iss(claims: dict[str, Any], expected: str) -> None:
    if claims.get("iss") != expected:
        raise InvalidIssuerError(f"iss claim mismatch (expected: {expected})")


def _validate_aud(claims: dict[str, Any], expected: str) -> None:
    aud = claims.get("aud")
    if isinstance(aud, str) and aud == expected:
        return
    if isinstance(aud, list) and expected in aud:
        return
    raise InvalidAudienceError(f"aud claim mismatch (expected: {expected})")


def validate_claims(claims: dict[str, Any], config: GatekeeperConfig, *, now: float) -> None:
    """Check exp, iat, iss and aud, in that order, stopping at the first failure."""
    leeway = float(config.leeway)
    _validate_exp(claims, now=now, leeway=leeway)
    _validate_iat(claims, now=now, leeway=leeway, required=config.require_iat)
    _validate_iss(claims, config.issuer)
    _validate_aud(claims, config.audience)


class Verifier:
    """Runs the full check pipeline for one bearer token.

    Order is fixed: parse, claims (exp, iat, iss, aud), key resolution,
    algorithm match, signature. The first failing step raises its
    ``AuthError`` subclass and nothing after it runs.
    """

    def __init__(
        self,
        config: GatekeeperConfig,
        *,
        key_resolver: KeyResolver | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.key_resolver = key_resolver or JWKSKeyResolver(config)
        self._clock = clock

    def verify(self, token: str) -> VerifiedToken:
        header, claims = decode_token(token)
        validate_claims(claims, self.config, now=self._clock())

        pem = self.key_resolver.resolve(header.get("kid"))
        key = load_verification_key(pem)

        expected_alg = self.config.algorithm
        if header.get("alg") != expected_alg:
            raise AlgorithmMismatchError(expected_alg, header.get("alg"))

        try:
            jwt.PyJWS().decode(token, key=key, algorithms=[expected_alg])
        except (jwt_exceptions.PyJWTError, TypeError) as exc:
            # TypeError: published key type cannot serve the configured algorithm.
            raise InvalidSignatureError() from exc
        logger.debug("token verified (kid: %s)", header.get("kid"))
        return VerifiedToken(header=header, claims=claims)
