from __future__ import annotations

import io
import logging
from types import SimpleNamespace
from typing import Any

import pytest

from cryptr_guard.core import VerifiedToken
from cryptr_guard.errors import (
    AuthError,
    KeySetUnavailableError,
    MalformedHeaderError,
    MissingCredentialsError,
    TokenExpiredError,
)
from cryptr_guard.extract import CookieExtractor
from cryptr_guard.middleware import (
    JSONErrorHandler,
    JWTMiddleware,
    MiddlewareOptions,
    UnauthorizedErrorHandler,
)

TOKEN = "header.payload.signature"
VERIFIED = VerifiedToken(header={"alg": "RS256", "kid": "demo-k1"}, claims={"sub": "max"})


class _RecordingErrorHandler:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, str]] = []

    def handle(self, request: Any, message: str) -> None:
        self.calls.append((request, message))


class _StubVerifier:
    def __init__(self, error: AuthError | None = None) -> None:
        self.error = error
        self.tokens: list[str] = []

    def verify(self, token: str) -> VerifiedToken:
        self.tokens.append(token)
        if self.error is not None:
            raise self.error
        return VERIFIED


class _ResponseRecorder:
    """Enough of BaseHTTPRequestHandler for the error handlers."""

    def __init__(self, headers: dict[str, str] | None = None, command: str = "GET") -> None:
        self.headers = headers or {}
        self.command = command
        self.status: int | None = None
        self.sent_headers: dict[str, str] = {}
        self.wfile = io.BytesIO()

    def send_response(self, status: int) -> None:
        self.status = int(status)

    def send_header(self, name: str, value: str) -> None:
        self.sent_headers[name] = value

    def end_headers(self) -> None:
        return None


def _request(headers: dict[str, str] | None = None, command: str = "GET") -> SimpleNamespace:
    return SimpleNamespace(headers=headers or {}, command=command)


def _middleware(
    verifier: _StubVerifier | None = None, **options: Any
) -> tuple[JWTMiddleware, _RecordingErrorHandler]:
    errors = _RecordingErrorHandler()
    middleware = JWTMiddleware(
        verifier or _StubVerifier(),  # type: ignore[arg-type]
        MiddlewareOptions(error_handler=errors, **options),
    )
    return middleware, errors


def test_success_attaches_token_and_calls_next_once() -> None:
    verifier = _StubVerifier()
    middleware, errors = _middleware(verifier)
    request = _request({"Authorization": f"Bearer {TOKEN}"})
    calls: list[Any] = []

    result = middleware.handler_with_next(request, lambda r: calls.append(r) or "done")

    assert result == "done"
    assert calls == [request]
    assert request.user is VERIFIED
    assert verifier.tokens == [TOKEN]
    assert errors.calls == []


def test_custom_user_property() -> None:
    middleware, _ = _middleware(user_property="identity")
    request = _request({"Authorization": f"Bearer {TOKEN}"})
    assert middleware.check_jwt(request) is VERIFIED
    assert request.identity is VERIFIED
    assert not hasattr(request, "user")


def test_basic_scheme_is_malformed_and_halts() -> None:
    verifier = _StubVerifier()
    middleware, errors = _middleware(verifier)
    request = _request({"Authorization": "Basic xyz"})
    calls: list[Any] = []

    with pytest.raises(MalformedHeaderError):
        middleware.check_jwt(request)
    assert middleware.handler_with_next(request, calls.append) is None

    assert calls == []
    assert verifier.tokens == []
    assert errors.calls == [(request, "authorization header format must be Bearer {token}")] * 2


def test_missing_credentials_when_required() -> None:
    middleware, errors = _middleware()
    request = _request()
    calls: list[Any] = []

    middleware.handler_with_next(request, calls.append)

    assert calls == []
    assert errors.calls == [(request, "required authorization token not found")]
    with pytest.raises(MissingCredentialsError):
        middleware.check_jwt(request)


def test_missing_credentials_when_optional() -> None:
    verifier = _StubVerifier()
    middleware, errors = _middleware(verifier, credentials_optional=True)
    request = _request()
    calls: list[Any] = []

    middleware.handler_with_next(request, calls.append)

    assert calls == [request]
    assert not hasattr(request, "user")
    assert verifier.tokens == []
    assert errors.calls == []


def test_present_but_invalid_token_fails_even_when_optional() -> None:
    middleware, errors = _middleware(
        _StubVerifier(TokenExpiredError()), credentials_optional=True
    )
    calls: list[Any] = []
    middleware.handler_with_next(_request({"Authorization": f"Bearer {TOKEN}"}), calls.append)
    assert calls == []
    assert [message for _, message in errors.calls] == ["token is expired"]


@pytest.mark.parametrize(
    "error",
    [TokenExpiredError(), KeySetUnavailableError("failed to fetch key set: refused")],
)
def test_verifier_failure_is_reported_and_halts(error: AuthError) -> None:
    middleware, errors = _middleware(_StubVerifier(error))
    request = _request({"Authorization": f"Bearer {TOKEN}"})
    calls: list[Any] = []

    middleware.handler_with_next(request, calls.append)

    assert calls == []
    assert errors.calls == [(request, str(error))]
    assert not hasattr(request, "user")


def test_preflight_skips_verification_by_default() -> None:
    verifier = _StubVerifier()
    middleware, errors = _middleware(verifier)
    calls: list[Any] = []
    middleware.handler_with_next(_request(command="OPTIONS"), calls.append)
    assert len(calls) == 1
    assert verifier.tokens == []
    assert errors.calls == []


def test_preflight_checked_when_enabled() -> None:
    middleware, errors = _middleware(enable_auth_on_options=True)
    calls: list[Any] = []
    middleware.handler_with_next(_request(command="OPTIONS"), calls.append)
    assert calls == []
    assert len(errors.calls) == 1


def test_next_is_optional() -> None:
    middleware, _ = _middleware()
    assert middleware.handler_with_next(_request({"Authorization": f"Bearer {TOKEN}"})) is None


def test_protect_decorator() -> None:
    middleware, errors = _middleware()

    @middleware.protect
    def view(request: Any, suffix: str) -> str:
        return f"{request.user.claims['sub']}{suffix}"

    assert view(_request({"Authorization": f"Bearer {TOKEN}"}), "!") == "max!"
    assert view(_request(), "!") is None
    assert len(errors.calls) == 1
    assert view.__name__ == "view"


def test_alternate_extractor() -> None:
    verifier = _StubVerifier()
    middleware, _ = _middleware(verifier, extractor=CookieExtractor("access_token"))
    request = _request({"Cookie": f"access_token={TOKEN}"})
    assert middleware.check_jwt(request) is VERIFIED
    assert verifier.tokens == [TOKEN]


def test_debug_logging_names_reason_without_token(caplog: pytest.LogCaptureFixture) -> None:
    middleware, _ = _middleware(_StubVerifier(TokenExpiredError()), debug=True)
    with caplog.at_level(logging.DEBUG, logger="cryptr_guard.middleware"):
        middleware.handler_with_next(_request({"Authorization": f"Bearer {TOKEN}"}))
    assert "TokenExpired" in caplog.text
    assert TOKEN not in caplog.text


def test_no_logging_without_debug(caplog: pytest.LogCaptureFixture) -> None:
    middleware, _ = _middleware(_StubVerifier(TokenExpiredError()))
    with caplog.at_level(logging.DEBUG, logger="cryptr_guard.middleware"):
        middleware.handler_with_next(_request({"Authorization": f"Bearer {TOKEN}"}))
    assert caplog.records == []


def test_default_error_handler_is_plain_401() -> None:
    middleware = JWTMiddleware(_StubVerifier())  # type: ignore[arg-type]
    assert isinstance(middleware.options.error_handler, UnauthorizedErrorHandler)
    request = _ResponseRecorder()

    middleware.handler_with_next(request, lambda r: pytest.fail("handler must not run"))

    assert request.status == 401
    assert request.wfile.getvalue() == b"required authorization token not found\n"
    assert request.sent_headers["Content-Type"].startswith("text/plain")
    assert request.sent_headers["WWW-Authenticate"].startswith("Bearer")


def test_json_error_handler() -> None:
    request = _ResponseRecorder()
    JSONErrorHandler().handle(request, "token is expired")
    assert request.status == 401
    assert request.wfile.getvalue() == b'{"error": "token is expired"}'
    assert request.sent_headers["Content-Length"] == str(len(request.wfile.getvalue()))


def test_error_response_carries_request_cors_headers() -> None:
    request = _ResponseRecorder()
    request.send_cors_headers = lambda: request.send_header(  # type: ignore[attr-defined]
        "Access-Control-Allow-Origin", "http://localhost:8081"
    )
    JSONErrorHandler().handle(request, "token is expired")
    assert request.status == 401
    assert request.sent_headers["Access-Control-Allow-Origin"] == "http://localhost:8081"
