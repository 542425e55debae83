from __future__ import annotations

import re
from urllib.parse import urlsplit

from ..errors import InvalidUrlError

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.I)
_FALLBACK_RE = re.compile(r"^(?:[a-z][a-z0-9+.-]*://)?(?:www\.)?", re.I)


def extract_domain(url: str) -> str:
    """
    Canonical host for a URL: no scheme, no leading `www.`, no port/path/query, lowercase.

    Bare hosts are accepted (`sub.example.com` -> `sub.example.com`).
    """
    raw = (url or "").strip()
    if not raw:
        raise InvalidUrlError("Cannot derive a domain from an empty url")

    candidate = raw if _SCHEME_RE.match(raw) else f"https://{raw}"
    try:
        host = urlsplit(candidate).hostname or ""
    except ValueError:
        host = ""

    if not host:
        # urlsplit rejects some malformed input (e.g. unbalanced brackets); strip by hand.
        host = _FALLBACK_RE.sub("", raw).split("/", 1)[0].split(":", 1)[0].lower()

    if host.startswith("www."):
        host = host[4:]
    host = host.rstrip(".")
    if not host:
        raise InvalidUrlError(f"Cannot derive a domain from url {url!r}")
    return host
