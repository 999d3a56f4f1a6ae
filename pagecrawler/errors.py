from __future__ import annotations

import asyncio
import socket
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    TIMEOUT = "TIMEOUT"
    DNS_ERROR = "DNS_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    CONTENT_EXTRACTION_ERROR = "CONTENT_EXTRACTION_ERROR"
    LINK_EXTRACTION_ERROR = "LINK_EXTRACTION_ERROR"
    PAGE_CLOSE_ERROR = "PAGE_CLOSE_ERROR"
    ROBOTS_TXT_BLOCKED = "ROBOTS_TXT_BLOCKED"
    BROWSER_ERROR = "BROWSER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class InvalidURL(ValueError):
    """Raised when a URL cannot be normalized to an absolute http(s) address."""


class CrawlerError(Exception):
    code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, *, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NavigationError(CrawlerError):
    code = ErrorCode.NETWORK_ERROR


class ContentExtractionError(CrawlerError):
    code = ErrorCode.CONTENT_EXTRACTION_ERROR


class LinkExtractionError(CrawlerError):
    code = ErrorCode.LINK_EXTRACTION_ERROR


class PageCloseError(CrawlerError):
    code = ErrorCode.PAGE_CLOSE_ERROR


class RobotsBlockedError(CrawlerError):
    code = ErrorCode.ROBOTS_TXT_BLOCKED


class BrowserError(CrawlerError):
    code = ErrorCode.BROWSER_ERROR


class PoolExhaustedError(BrowserError):
    """Raised when no page could be acquired before the pool wait timed out."""


# Ordered: the first matching group wins.
_MESSAGE_PATTERNS = (
    (ErrorCode.CONNECTION_REFUSED, ("net::err_connection_refused", "connection refused")),
    (ErrorCode.TIMEOUT, ("net::err_connection_timed_out", "timed out", "timeout")),
    (ErrorCode.DNS_ERROR, ("net::err_name_not_resolved", "dns lookup failed", "name resolution")),
    (ErrorCode.NETWORK_ERROR, ("net::err_failed", "network error", "net::err_")),
    (ErrorCode.CONTENT_EXTRACTION_ERROR, ("content extraction failed", "failed to extract content")),
    (ErrorCode.LINK_EXTRACTION_ERROR, ("link extraction failed", "failed to extract links")),
    (ErrorCode.PAGE_CLOSE_ERROR, ("failed to close page", "page close error")),
    (ErrorCode.ROBOTS_TXT_BLOCKED, ("blocked by robots.txt",)),
    (ErrorCode.BROWSER_ERROR, ("failed to get browser", "browser error", "browser has been closed")),
)


def classify_message(message: str) -> ErrorCode:
    """Map an opaque driver error message to an error code.

    Only used for errors that carry no structured cause.
    """
    lowered = (message or "").lower()
    for code, patterns in _MESSAGE_PATTERNS:
        if any(pattern in lowered for pattern in patterns):
            return code
    return ErrorCode.UNKNOWN_ERROR


def classify_error(exc: BaseException) -> ErrorCode:
    if isinstance(exc, CrawlerError):
        return exc.code
    if isinstance(exc, ConnectionRefusedError):
        return ErrorCode.CONNECTION_REFUSED
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCode.TIMEOUT
    if isinstance(exc, socket.gaierror):
        return ErrorCode.DNS_ERROR
    return classify_message(str(exc))
