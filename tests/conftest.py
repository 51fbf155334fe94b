from __future__ import annotations

import json
import socket
import threading
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import pytest

from cryptr_guard.config import GatekeeperConfig
from cryptr_guard.samples import DemoIssuer

AUDIENCE = "http://localhost:8081"
TENANT = "shark-academy"


class KeySetEndpoint:
    """Loopback stand-in for ``<base_url>/t/<tenant>/.well-known``."""

    def __init__(self) -> None:
        self.document: dict[str, Any] = {"keys": []}
        self.raw_body: bytes | None = None
        self.status = 200
        self.hits = 0
        self.user_agent: str | None = None
        self._lock = threading.Lock()
        endpoint = self

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
                return

            def do_GET(self) -> None:  # noqa: N802
                with endpoint._lock:
                    endpoint.hits += 1
                    endpoint.user_agent = self.headers.get("User-Agent")
                if self.path != f"/t/{TENANT}/.well-known":
                    self.send_response(404)
                    self.send_header("Content-Length", "0")
                    self.end_headers()
                    return
                body = endpoint.raw_body
                if body is None:
                    body = json.dumps(endpoint.document).encode("utf-8")
                self.send_response(endpoint.status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        host, port = self.server.server_address[:2]
        host_text = host.decode("ascii") if isinstance(host, bytes) else host
        self.base_url = f"http://{host_text}:{port}"
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self.server.shutdown()
        self.server.server_close()
        self._thread.join(timeout=5)


def unused_base_url() -> str:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = int(sock.getsockname()[1])
    return f"http://127.0.0.1:{port}"


@pytest.fixture(scope="session")
def keyset_endpoint() -> Iterator[KeySetEndpoint]:
    endpoint = KeySetEndpoint()
    endpoint.start()
    try:
        yield endpoint
    finally:
        endpoint.stop()


@pytest.fixture(scope="session")
def config(keyset_endpoint: KeySetEndpoint) -> GatekeeperConfig:
    return GatekeeperConfig(
        audience=AUDIENCE, base_url=keyset_endpoint.base_url, tenant_domain=TENANT
    )


@pytest.fixture(scope="session")
def issuer(config: GatekeeperConfig) -> DemoIssuer:
    return DemoIssuer(config)


@pytest.fixture(autouse=True)
def _reset_endpoint(request: pytest.FixtureRequest) -> None:
    # Only touch the endpoint for tests that already depend on it.
    if "keyset_endpoint" not in request.fixturenames:
        return
    endpoint: KeySetEndpoint = request.getfixturevalue("keyset_endpoint")
    issuer: DemoIssuer = request.getfixturevalue("issuer")
    endpoint.document = issuer.jwks
    endpoint.raw_body = None
    endpoint.status = 200
    endpoint.hits = 0
    endpoint.user_agent = None
