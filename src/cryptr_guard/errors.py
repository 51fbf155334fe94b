from __future__ import annotations


class ConfigError(ValueError):
    """Invalid or missing verifier configuration (raised at startup)."""


class AuthError(ValueError):
    """Base class for request-scoped authentication failures.

    Every failure in the extraction/verification pipeline rejects the single
    request that triggered it. ``kind`` names the failure category so callers
    can branch without matching on message text.
    """

    kind = "AuthError"
    default_message = "authentication failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class MalformedHeaderError(AuthError):
    kind = "MalformedHeader"
    default_message = "authorization header format must be Bearer {token}"


class MissingCredentialsError(AuthError):
    kind = "MissingCredentials"
    default_message = "required authorization token not found"


class TokenParseError(AuthError):
    kind = "ParseError"
    default_message = "invalid token format"


class TokenExpiredError(AuthError):
    kind = "TokenExpired"
    default_message = "token is expired"


class InvalidIssuedAtError(AuthError):
    kind = "InvalidIssuedAt"
    default_message = "iat is in the future"


class InvalidIssuerError(AuthError):
    kind = "InvalidIssuer"
    default_message = "iss claim mismatch"


class InvalidAudienceError(AuthError):
    kind = "InvalidAudience"
    default_message = "aud claim mismatch"


class KeySetUnavailableError(AuthError):
    kind = "KeySetUnavailable"
    default_message = "unable to fetch key set"


class KeyNotFoundError(AuthError):
    kind = "KeyNotFound"
    default_message = "unable to find appropriate key"


class AlgorithmMismatchError(AuthError):
    kind = "AlgorithmMismatch"
    default_message = "token algorithm does not match the expected signing method"

    def __init__(self, expected: str, actual: object) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} signing method but token specified {actual}")


class InvalidSignatureError(AuthError):
    kind = "InvalidSignature"
    default_message = "signature verification failed"
