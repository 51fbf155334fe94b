from __future__ import annotations

import functools
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Protocol, TypeVar

from .core import VerifiedToken, Verifier
from .errors import AuthError, MissingCredentialsError
from .extract import BearerHeaderExtractor, TokenExtractor

logger = logging.getLogger(__name__)

R = TypeVar("R")


class ErrorHandler(Protocol):
    """Produces the client-visible response for a rejected request."""

    def handle(self, request: Any, message: str) -> None: ...


def _write_response(
    request: Any, status: HTTPStatus, body: bytes, content_type: str
) -> None:
    request.send_response(status)
    request.send_header("Content-Type", content_type)
    request.send_header("Content-Length", str(len(body)))
    request.send_header("WWW-Authenticate", 'Bearer error="invalid_token"')
    request.send_header("Cache-Control", "no-store")
    send_cors_headers = getattr(request, "send_cors_headers", None)
    if callable(send_cors_headers):
        send_cors_headers()
    request.end_headers()
    request.wfile.write(body)


class UnauthorizedErrorHandler:
    def handle(self, request: Any, message: str) -> None:
        _write_response(
            request,
            HTTPStatus.UNAUTHORIZED,
            (message + "\n").encode("utf-8"),
            "text/plain; charset=utf-8",
        )


class JSONErrorHandler:
    def handle(self, request: Any, message: str) -> None:
        _write_response(
            request,
            HTTPStatus.UNAUTHORIZED,
            json.dumps({"error": message}).encode("utf-8"),
            "application/json",
        )


@dataclass
class MiddlewareOptions:
    extractor: TokenExtractor = field(default_factory=BearerHeaderExtractor)
    error_handler: ErrorHandler = field(default_factory=UnauthorizedErrorHandler)
    user_property: str = "user"
    credentials_optional: bool = False
    debug: bool = False
    enable_auth_on_options: bool = False


class JWTMiddleware:
    """Guards request handlers with bearer token verification.

    Requests are ``BaseHTTPRequestHandler``-shaped: a ``headers`` mapping, a
    ``command`` attribute holding the method, and the response-writing methods
    the configured error handler uses. On success the ``VerifiedToken`` is set
    on the request under ``options.user_property``.
    """

    def __init__(self, verifier: Verifier, options: MiddlewareOptions | None = None) -> None:
        self.verifier = verifier
        self.options = options or MiddlewareOptions()

    def _logf(self, msg: str, *args: Any) -> None:
        if self.options.debug:
            logger.debug(msg, *args)

    def _reject(self, request: Any, exc: AuthError) -> None:
        self._logf("rejecting request (%s): %s", exc.kind, exc)
        self.options.error_handler.handle(request, str(exc))

    def check_jwt(self, request: Any) -> VerifiedToken | None:
        """Authenticate ``request``.

        Returns the verified token, or ``None`` when the request may proceed
        without one (skipped preflight, optional credentials). Any failure is
        reported through the error handler and then re-raised.
        """
        method = getattr(request, "command", None)
        if method == "OPTIONS" and not self.options.enable_auth_on_options:
            return None

        try:
            token = self.options.extractor.extract(request)
        except AuthError as exc:
            self._logf("error extracting token: %s", exc)
            self._reject(request, exc)
            raise

        if not token:
            if self.options.credentials_optional:
                self._logf("no credentials found (credentials_optional=True)")
                return None
            missing = MissingCredentialsError()
            self._reject(request, missing)
            raise missing

        try:
            verified = self.verifier.verify(token)
        except AuthError as exc:
            self._reject(request, exc)
            raise

        setattr(request, self.options.user_property, verified)
        return verified

    def handler_with_next(
        self, request: Any, next_: Callable[[Any], R] | None = None
    ) -> R | None:
        try:
            self.check_jwt(request)
        except AuthError:
            # Already answered by the error handler.
            return None
        if next_ is None:
            return None
        return next_(request)

    def protect(self, view: Callable[..., R]) -> Callable[..., R | None]:
        """Wrap ``view(request, ...)`` so it only runs for authenticated requests."""

        @functools.wraps(view)
        def wrapper(request: Any, *args: Any, **kwargs: Any) -> R | None:
            try:
                self.check_jwt(request)
            except AuthError:
                return None
            return view(request, *args, **kwargs)

        return wrapper
