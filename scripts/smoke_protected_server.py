"""End-to-end smoke: local key set endpoint + `cryptr-guard serve` subprocess."""

from __future__ import annotations

import json
import os
import socket
import subprocess
import sys
import threading
import time
import urllib.error
import urllib.request
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from cryptr_guard.config import GatekeeperConfig
from cryptr_guard.samples import DemoIssuer

TENANT = "smoke-tenant"
AUDIENCE = "http://localhost:8081"


def _pick_port() -> int:
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = int(sock.getsockname()[1])
    sock.close()
    return port


def _get(url: str, token: str | None = None) -> tuple[int, dict[str, Any]]:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    req = urllib.request.Request(url, headers=headers)
    try:
        with urllib.request.urlopen(req, timeout=5) as resp:
            return int(resp.status), json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        return int(exc.code), json.loads(exc.read().decode("utf-8"))


def main() -> int:
    jwks_holder: dict[str, Any] = {}

    class KeySetHandler(BaseHTTPRequestHandler):
        def log_message(self, fmt: str, *args: Any) -> None:
            return

        def do_GET(self) -> None:  # noqa: N802
            if self.path == f"/t/{TENANT}/.well-known":
                body = json.dumps(jwks_holder["jwks"]).encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)
                return
            self.send_response(404)
            self.end_headers()

    keyset = ThreadingHTTPServer(("127.0.0.1", 0), KeySetHandler)
    keyset_thread = threading.Thread(target=keyset.serve_forever, daemon=True)
    keyset_thread.start()
    keyset_host, keyset_port = keyset.server_address[:2]
    base_url = f"http://{keyset_host}:{keyset_port}"

    config = GatekeeperConfig(audience=AUDIENCE, base_url=base_url, tenant_domain=TENANT)
    issuer = DemoIssuer(config)
    jwks_holder["jwks"] = issuer.jwks

    serve_port = _pick_port()
    env = dict(os.environ)
    env.update(
        {
            "CRYPTR_AUDIENCE": AUDIENCE,
            "CRYPTR_BASE_URL": base_url,
            "CRYPTR_TENANT_DOMAIN": TENANT,
        }
    )
    proc = subprocess.Popen(
        [sys.executable, "-m", "cryptr_guard", "serve", "--port", str(serve_port)],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        env=env,
    )

    try:
        base = f"http://127.0.0.1:{serve_port}"
        for _ in range(50):
            try:
                urllib.request.urlopen(base + "/healthz", timeout=0.2).read()
                break
            except (urllib.error.URLError, OSError):
                time.sleep(0.1)
        else:
            raise RuntimeError("serve did not become ready")

        status, body = _get(base + "/api/v1/whoami")
        if status != 401 or body.get("error") != "required authorization token not found":
            raise RuntimeError(f"expected missing-credentials rejection, got {status}: {body}")

        status, body = _get(base + "/api/v1/whoami", issuer.token())
        if status != 200 or body.get("subject") != "demo-user":
            raise RuntimeError(f"expected authenticated whoami, got {status}: {body}")
    finally:
        proc.terminate()
        try:
            proc.wait(timeout=3)
        except subprocess.TimeoutExpired:
            proc.kill()
        keyset.shutdown()
        keyset.server_close()
        keyset_thread.join(timeout=5)

    print("ok")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
