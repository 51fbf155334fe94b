"""Offline demo issuer material: a self-signed RSA key, its key set, and tokens.

Used by the ``sample`` CLI command, the smoke script and the test suite to
stand in for a real tenant without any network access.
"""

from __future__ import annotations

import base64
import datetime
import json
import time
from typing import Any

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from jwt import algorithms

from .config import GatekeeperConfig

DEFAULT_KID = "demo-k1"
DEMO_CONFIG = {
    "audience": "http://localhost:8081",
    "base_url": "http://127.0.0.1:9000",
    "tenant_domain": "demo-tenant",
}


def _rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _private_pem(private_key: rsa.RSAPrivateKey) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


def self_signed_certificate(
    private_key: rsa.RSAPrivateKey, common_name: str, days: int = 30
) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=days))
        .sign(private_key, hashes.SHA256())
    )


def jwk_for_certificate(cert: x509.Certificate, kid: str) -> dict[str, Any]:
    jwk = json.loads(algorithms.RSAAlgorithm.to_jwk(cert.public_key()))
    der = cert.public_bytes(serialization.Encoding.DER)
    jwk.update(
        {
            "kid": kid,
            "use": "sig",
            "alg": "RS256",
            "x5c": [base64.b64encode(der).decode("ascii")],
        }
    )
    return jwk


def demo_claims(
    config: GatekeeperConfig, *, exp_seconds: int = 3600, now: int | None = None
) -> dict[str, Any]:
    issued_at = int(time.time()) if now is None else int(now)
    return {
        "sub": "demo-user",
        "email": "demo@example.com",
        "aud": config.audience,
        "iss": config.issuer,
        "iat": issued_at,
        "exp": issued_at + int(exp_seconds),
    }


def mint_token(
    claims: dict[str, Any],
    private_pem: str,
    *,
    kid: str | None = DEFAULT_KID,
    alg: str = "RS256",
    headers: dict[str, Any] | None = None,
) -> str:
    merged_headers: dict[str, Any] = dict(headers or {})
    if kid:
        merged_headers["kid"] = kid
    return jwt.encode(claims, key=private_pem, algorithm=alg, headers=merged_headers or None)


class DemoIssuer:
    """One signing key plus the key set document that publishes it."""

    def __init__(self, config: GatekeeperConfig, kid: str = DEFAULT_KID) -> None:
        self.config = config
        self.kid = kid
        self._private_key = _rsa_private_key()
        self.private_pem = _private_pem(self._private_key)
        self.certificate = self_signed_certificate(self._private_key, config.tenant_domain)
        self.jwk = jwk_for_certificate(self.certificate, kid)

    @property
    def jwks(self) -> dict[str, Any]:
        return {"keys": [self.jwk]}

    def token(self, *, exp_seconds: int = 3600, **overrides: Any) -> str:
        claims = demo_claims(self.config, exp_seconds=exp_seconds)
        for name, value in overrides.items():
            if value is None:
                claims.pop(name, None)
            else:
                claims[name] = value
        return mint_token(claims, self.private_pem, kid=self.kid)


def generate_sample(
    config: GatekeeperConfig | None = None,
    *,
    kid: str = DEFAULT_KID,
    exp_seconds: int = 3600,
) -> dict[str, Any]:
    config = config or GatekeeperConfig(**DEMO_CONFIG)
    issuer = DemoIssuer(config, kid=kid)
    token = issuer.token(exp_seconds=exp_seconds)
    return {
        "token": token,
        "kid": kid,
        "alg": "RS256",
        "audience": config.audience,
        "issuer": config.issuer,
        "jwks_url": config.jwks_url,
        "jwks": issuer.jwks,
        "private_key": issuer.private_pem,
    }
