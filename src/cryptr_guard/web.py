from __future__ import annotations

import json
import logging
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from .config import GatekeeperConfig
from .core import VerifiedToken, Verifier
from .middleware import JSONErrorHandler, JWTMiddleware, MiddlewareOptions
from .version import USER_AGENT

logger = logging.getLogger(__name__)

_ALLOW_HEADERS = "authorization,content-type,sentry-trace"


class ProtectedAPIHandler(BaseHTTPRequestHandler):
    """Demo API: ``/api/v1/whoami`` behind the JWT middleware, ``/healthz`` open."""

    server_version = USER_AGENT
    middleware: JWTMiddleware
    allow_origin: str = "*"

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("%s - %s", self.address_string(), format % args)

    def _send_json(self, payload: dict[str, Any], status: HTTPStatus = HTTPStatus.OK) -> None:
        data = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.send_header("Cache-Control", "no-store")
        self.send_cors_headers()
        self.end_headers()
        self.wfile.write(data)

    def send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", self.allow_origin)
        self.send_header("Access-Control-Allow-Headers", _ALLOW_HEADERS)

    def _whoami(self) -> None:
        user: VerifiedToken | None = getattr(self, self.middleware.options.user_property, None)
        if user is None:
            self._send_json({"authenticated": False})
            return
        self._send_json(
            {
                "authenticated": True,
                "subject": user.subject,
                "header": user.header,
                "claims": user.claims,
            }
        )

    def do_OPTIONS(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        self.send_response(HTTPStatus.NO_CONTENT)
        self.send_cors_headers()
        self.send_header("Access-Control-Allow-Methods", "GET, OPTIONS")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        path = self.path.split("?", 1)[0]
        if path == "/healthz":
            self._send_json({"status": "ok"})
            return
        if path == "/api/v1/whoami":
            self.middleware.handler_with_next(self, ProtectedAPIHandler._whoami)
            return
        self._send_json({"error": "not found"}, status=HTTPStatus.NOT_FOUND)


def build_middleware(
    config: GatekeeperConfig,
    *,
    verifier: Verifier | None = None,
    credentials_optional: bool = False,
    debug: bool = False,
) -> JWTMiddleware:
    options = MiddlewareOptions(
        error_handler=JSONErrorHandler(),
        credentials_optional=credentials_optional,
        debug=debug,
    )
    return JWTMiddleware(verifier or Verifier(config), options)


def make_handler(
    config: GatekeeperConfig, middleware: JWTMiddleware
) -> type[ProtectedAPIHandler]:
    return type(
        "ConfiguredAPIHandler",
        (ProtectedAPIHandler,),
        {"middleware": middleware, "allow_origin": config.audience},
    )


def make_server(
    config: GatekeeperConfig,
    host: str = "127.0.0.1",
    port: int = 8000,
    *,
    middleware: JWTMiddleware | None = None,
    debug: bool = False,
) -> ThreadingHTTPServer:
    middleware = middleware or build_middleware(config, debug=debug)
    return ThreadingHTTPServer((host, port), make_handler(config, middleware))


def serve(
    config: GatekeeperConfig,
    host: str = "127.0.0.1",
    port: int = 8000,
    *,
    debug: bool = False,
) -> None:
    server = make_server(config, host, port, debug=debug)
    print(f"cryptr-guard demo API running on http://{host}:{port} (issuer {config.issuer})")
    try:
        server.serve_forever()
    finally:
        server.server_close()
