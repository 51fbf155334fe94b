from .config import GatekeeperConfig
from .core import Verifier, VerifiedToken, decode_token, validate_claims
from .errors import AuthError, ConfigError
from .middleware import JWTMiddleware, MiddlewareOptions
from .version import __version__

__all__ = [
    "AuthError",
    "ConfigError",
    "GatekeeperConfig",
    "JWTMiddleware",
    "MiddlewareOptions",
    "VerifiedToken",
    "Verifier",
    "__version__",
    "decode_token",
    "validate_claims",
]
