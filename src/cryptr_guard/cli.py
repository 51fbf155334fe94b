from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from .config import GatekeeperConfig
from .core import Verifier, decode_token
from .errors import AuthError, ConfigError
from .samples import DEFAULT_KID, DEMO_CONFIG, generate_sample
from .version import __version__
from .web import serve


def _print_json(obj: object) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _load_token(token_arg: str) -> str:
    if token_arg != "-":
        return token_arg
    token = sys.stdin.read().strip()
    if not token:
        raise ValueError("stdin is empty; expected JWT")
    return token


def _config_from_args(
    args: argparse.Namespace, *, defaults: dict[str, str] | None = None
) -> GatekeeperConfig:
    env: dict[str, str] = {}
    for key, value in (defaults or {}).items():
        env[f"CRYPTR_{key.upper()}"] = value
    env.update({k: v for k, v in os.environ.items() if k.startswith("CRYPTR_")})

    overrides = {
        "CRYPTR_AUDIENCE": getattr(args, "audience", None),
        "CRYPTR_BASE_URL": getattr(args, "base_url", None),
        "CRYPTR_TENANT_DOMAIN": getattr(args, "tenant_domain", None),
        "CRYPTR_ALGORITHM": getattr(args, "alg", None),
        "CRYPTR_LEEWAY": getattr(args, "leeway", None),
        "CRYPTR_JWKS_TIMEOUT": getattr(args, "timeout", None),
        "CRYPTR_JWKS_CACHE_TTL": getattr(args, "cache_ttl", None),
    }
    for name, value in overrides.items():
        if value is not None:
            env[name] = str(value)
    return GatekeeperConfig.from_env(env)


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--audience", help="Expected aud claim (env: CRYPTR_AUDIENCE)")
    parser.add_argument("--base-url", help="Authority base URL (env: CRYPTR_BASE_URL)")
    parser.add_argument("--tenant-domain", help="Tenant domain segment (env: CRYPTR_TENANT_DOMAIN)")


def _cmd_decode(args: argparse.Namespace) -> int:
    header, payload = decode_token(_load_token(args.token))
    _print_json({"header": header, "payload": payload})
    return 0


def _cmd_verify(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    verified = Verifier(config).verify(_load_token(args.token))
    _print_json({"valid": True, "header": verified.header, "payload": verified.claims})
    return 0


def _cmd_sample(args: argparse.Namespace) -> int:
    config = _config_from_args(args, defaults=DEMO_CONFIG)
    _print_json(generate_sample(config, kid=args.kid, exp_seconds=int(args.exp_seconds)))
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    serve(config, host=args.host, port=args.port, debug=args.debug)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="cryptr-guard")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("--debug", action="store_true", help="Log each rejection reason")

    sub = parser.add_subparsers(dest="cmd", required=True)

    p_decode = sub.add_parser("decode", help="Decode a JWT without verifying anything")
    p_decode.add_argument("--token", required=True, help="JWT string (use '-' to read from stdin)")
    p_decode.set_defaults(func=_cmd_decode)

    p_verify = sub.add_parser(
        "verify", help="Verify a JWT against the tenant's published key set (network)"
    )
    p_verify.add_argument("--token", required=True, help="JWT string (use '-' to read from stdin)")
    _add_config_args(p_verify)
    p_verify.add_argument("--alg", help="Expected signing algorithm (default: RS256)")
    p_verify.add_argument(
        "--leeway", type=int, help="Clock skew in seconds for exp/iat checks (default: 0)"
    )
    p_verify.add_argument(
        "--timeout", type=float, help="Key set fetch timeout in seconds (default: 3)"
    )
    p_verify.set_defaults(func=_cmd_verify)

    p_sample = sub.add_parser(
        "sample", help="Generate an offline demo key set and a token it verifies (no network)"
    )
    _add_config_args(p_sample)
    p_sample.add_argument("--kid", default=DEFAULT_KID, help=f"Key id (default: {DEFAULT_KID})")
    p_sample.add_argument(
        "--exp-seconds",
        type=int,
        default=3600,
        help="Expiration seconds from now (default: 3600)",
    )
    p_sample.set_defaults(func=_cmd_sample)

    p_serve = sub.add_parser("serve", help="Run the demo API with /api/v1/whoami protected")
    _add_config_args(p_serve)
    p_serve.add_argument(
        "--cache-ttl", type=float, help="Key set cache TTL in seconds (default: 0, no cache)"
    )
    p_serve.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    p_serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    p_serve.set_defaults(func=_cmd_serve)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130
    except (AuthError, ConfigError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
