from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit

from loguru import logger

from pagecrawler.errors import InvalidURL


VALID_TLDS = frozenset({
    "com", "org", "net", "edu", "gov", "mil",
    "int", "eu", "uk", "us", "ca", "au", "de",
    "fr", "jp", "ru", "ch", "it", "nl", "se",
    "no", "es", "pl", "br", "in", "cn",
})

BLOCKED_SCHEMES = (
    "ftp:", "mailto:", "javascript:", "data:",
    "file:", "tel:", "sms:", "ws:", "wss:",
)

DEFAULT_PORTS = {"http": 80, "https": 443}

_URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)
_HOSTNAME_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?)*$"
)


def _reject(url: str, reason: str) -> bool:
    logger.debug(f"Rejected URL {url!r}: {reason}")
    return False


def validate_url(url: str) -> bool:
    """Return True when ``url`` is an absolute http(s) address worth crawling.

    Never raises; every failure is reported as False.
    """
    if not url or not url.strip():
        return _reject(url, "empty")

    if not _URL_RE.match(url):
        return _reject(url, "invalid format")

    if url.lower().startswith(BLOCKED_SCHEMES):
        return _reject(url, "blocked scheme")

    try:
        parsed = urlsplit(url)
        port = parsed.port
    except ValueError:
        return _reject(url, "unparseable")

    if parsed.scheme.lower() not in DEFAULT_PORTS:
        return _reject(url, "invalid scheme")

    hostname = parsed.hostname or ""
    if ".." in hostname or not _HOSTNAME_RE.match(hostname):
        return _reject(url, "invalid hostname")

    tld = hostname.rsplit(".", 1)[-1].lower()
    if tld not in VALID_TLDS:
        return _reject(url, "invalid TLD")

    if port is not None and not 1 <= port <= 65535:
        return _reject(url, "invalid port")

    return True


def _remove_dot_segments(path: str) -> str:
    output: list[str] = []
    for segment in path.split("/")[1:]:
        if segment == ".":
            continue
        if segment == "..":
            if output:
                output.pop()
            continue
        output.append(segment)
    return "/" + "/".join(output)


def normalize_url(url: str) -> str:
    """Canonical form of an absolute http(s) URL, used as the dedup key.

    Lower-cases the host, drops default ports, credentials and fragment,
    collapses repeated slashes, resolves dot segments and strips a single
    trailing slash. The query string is kept verbatim. Idempotent.
    """
    if not url or not url.strip():
        raise InvalidURL("Invalid URL: empty")

    try:
        parsed = urlsplit(url.strip())
        port = parsed.port
    except ValueError as exc:
        raise InvalidURL(f"Invalid URL: {url}") from exc

    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise InvalidURL("Invalid URL: Only HTTP and HTTPS protocols are supported")

    host = parsed.hostname
    if not host:
        raise InvalidURL(f"Invalid URL: missing host in {url}")

    netloc = f"[{host}]" if ":" in host else host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"

    path = re.sub(r"/{2,}", "/", parsed.path or "/")
    if not path.startswith("/"):
        path = "/" + path
    path = _remove_dot_segments(path)
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    return urlunsplit((scheme, netloc, path, parsed.query, ""))


def origin_of(url: str) -> str:
    parsed = urlsplit(url)
    return f"{parsed.scheme}://{parsed.netloc}"
