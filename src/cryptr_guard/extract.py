from __future__ import annotations

from collections.abc import Mapping
from http.cookies import CookieError, SimpleCookie
from typing import Any, Protocol

from .errors import MalformedHeaderError


class TokenExtractor(Protocol):
    """Pulls a raw token string out of a request.

    Returns an empty string when the request carries no credentials at all;
    raises an ``AuthError`` subclass when credentials are present but unusable.
    """

    def extract(self, request: Any) -> str: ...


def _header(request: Any, name: str) -> str | None:
    headers: Mapping[str, str] | None = getattr(request, "headers", None)
    if headers is None:
        return None
    return headers.get(name)


def token_from_auth_header(value: str | None) -> str:
    if not value:
        return ""
    parts = value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise MalformedHeaderError()
    return parts[1]


class BearerHeaderExtractor:
    def __init__(self, header_name: str = "Authorization") -> None:
        self.header_name = header_name

    def extract(self, request: Any) -> str:
        return token_from_auth_header(_header(request, self.header_name))


class CookieExtractor:
    def __init__(self, cookie_name: str) -> None:
        if not cookie_name:
            raise ValueError("cookie name is required")
        self.cookie_name = cookie_name

    def extract(self, request: Any) -> str:
        raw = _header(request, "Cookie")
        if not raw:
            return ""
        cookies: SimpleCookie = SimpleCookie()
        try:
            cookies.load(raw)
        except CookieError:
            raise MalformedHeaderError("cookie header could not be parsed") from None
        morsel = cookies.get(self.cookie_name)
        return morsel.value.strip() if morsel is not None else ""


class FirstOfExtractor:
    """Tries each extractor in order; the first non-empty token wins."""

    def __init__(self, *extractors: TokenExtractor) -> None:
        if not extractors:
            raise ValueError("at least one extractor is required")
        self.extractors = extractors

    def extract(self, request: Any) -> str:
        for extractor in self.extractors:
            token = extractor.extract(request)
            if token:
                return token
        return ""
