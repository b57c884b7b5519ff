"""Cookie handling on top of aiohttp's CookieJar.

The jar owns domain matching, paths and expiry. This module feeds it raw
``Set-Cookie`` headers one cookie per header, renders the ``Cookie``
request header with values exactly as the server sent them, and turns
the jar into a JSON-friendly snapshot and back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from http.cookies import CookieError, Morsel, SimpleCookie
from typing import Any

import aiohttp
from yarl import URL

_LOGGER = logging.getLogger(__name__)

# Attributes a Morsel can carry; anything else (Priority, Partitioned, ...)
# is dropped rather than mistaken for a cookie.
_VALUE_ATTRIBUTES = frozenset({"domain", "path", "expires", "max-age", "samesite"})
_FLAG_ATTRIBUTES = frozenset({"secure", "httponly"})
_SNAPSHOT_ATTRIBUTES = ("domain", "path", "expires", "max-age", "secure", "httponly")

_DECODER = SimpleCookie()


def _make_morsel(name: str, raw_value: str) -> Morsel[str]:
    value, coded_value = _DECODER.value_decode(raw_value)
    morsel: Morsel[str] = Morsel()
    morsel.set(name, value, coded_value)
    return morsel


def parse_set_cookie(header: str) -> Morsel[str] | None:
    """Parse one ``Set-Cookie`` header value into a Morsel.

    The first ``name=value`` pair is the cookie; every later token is an
    attribute. The raw value is kept as ``coded_value`` so quoted values
    are sent back untouched.

    Returns:
        The cookie, or None when the header carries no valid cookie.
    """
    pair, *attributes = header.split(";")
    name, sep, raw_value = pair.partition("=")
    name = name.strip()
    if not sep or not name:
        return None
    try:
        morsel = _make_morsel(name, raw_value.strip())
    except CookieError:
        return None

    for attribute in attributes:
        key, _, value = attribute.partition("=")
        key = key.strip().lower()
        if key in _FLAG_ATTRIBUTES:
            morsel[key] = True
        elif key in _VALUE_ATTRIBUTES:
            morsel[key] = value.strip()
    return morsel


def update_from_headers(
    jar: aiohttp.CookieJar, headers: Iterable[str], response_url: str | URL
) -> int:
    """Replay ``Set-Cookie`` header values received from ``response_url``.

    Returns:
        Number of cookies handed to the jar (deletions included).
    """
    cookies: list[tuple[str, Morsel[str]]] = []
    for header in headers:
        morsel = parse_set_cookie(header)
        if morsel is None:
            _LOGGER.debug("Ignoring malformed Set-Cookie header: %s", header)
            continue
        cookies.append((morsel.key, morsel))
    if cookies:
        jar.update_cookies(cookies, URL(response_url))
    return len(cookies)


def set_cookie(
    jar: aiohttp.CookieJar,
    name: str,
    value: str,
    domain: str,
    *,
    path: str = "/",
) -> None:
    """Store a cookie for ``domain`` and its subdomains."""
    domain = domain.lstrip(".").lower()
    morsel = _make_morsel(name, value)
    morsel["domain"] = domain
    morsel["path"] = path
    jar.update_cookies([(name, morsel)], URL.build(scheme="https", host=domain))


def cookie_header(jar: aiohttp.CookieJar, url: str | URL) -> str:
    """Build a ``Cookie`` request header value for ``url``."""
    cookies = jar.filter_cookies(URL(url))
    return "; ".join(f"{morsel.key}={morsel.coded_value}" for morsel in cookies.values())


def cookie_value(jar: aiohttp.CookieJar, name: str, url: str | URL) -> str | None:
    """Return the decoded value of cookie ``name`` as sent to ``url``."""
    morsel = jar.filter_cookies(URL(url)).get(name)
    return morsel.value if morsel is not None else None


def snapshot(jar: aiohttp.CookieJar) -> list[dict[str, Any]]:
    """Snapshot every live cookie as plain dicts.

    ``value`` is the raw value as received. A Max-Age lifetime restarts
    when the snapshot is restored.
    """
    items = []
    for morsel in jar:
        item: dict[str, Any] = {"name": morsel.key, "value": morsel.coded_value}
        for attribute in _SNAPSHOT_ATTRIBUTES:
            if morsel[attribute]:
                item[attribute] = morsel[attribute]
        items.append(item)
    return items


def restore(jar: aiohttp.CookieJar, items: Iterable[dict[str, Any]]) -> None:
    """Load cookies produced by :func:`snapshot` into ``jar``."""
    for item in items:
        domain = str(item.get("domain", "")).lstrip(".").lower()
        if not domain:
            _LOGGER.debug("Skipping stored cookie without domain: %s", item.get("name"))
            continue
        try:
            morsel = _make_morsel(item["name"], item["value"])
        except (CookieError, KeyError):
            _LOGGER.debug("Skipping malformed stored cookie: %s", item)
            continue
        for attribute in _SNAPSHOT_ATTRIBUTES:
            if attribute in item:
                morsel[attribute] = item[attribute]
        morsel["domain"] = domain
        jar.update_cookies([(morsel.key, morsel)], URL.build(scheme="https", host=domain))
