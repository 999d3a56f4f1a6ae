from __future__ import annotations

from typing import Iterable, List
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup


def extract_title(html: str) -> str:
    soup = BeautifulSoup(html, "lxml")
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return ""


def extract_text(html: str) -> str:
    """Visible text of a rendered page with markup stripped and whitespace collapsed."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    text = soup.get_text(separator=" ", strip=True)
    return " ".join(text.split())


def absolute_http_links(base_url: str, hrefs: Iterable[str]) -> List[str]:
    """
    Resolve anchors against ``base_url`` and keep unique http/https targets, in page order.
    """
    seen = set()
    links = []

    for href in hrefs:
        if not href or not href.strip():
            continue

        full_url, _ = urldefrag(urljoin(base_url, href.strip()))
        parsed = urlparse(full_url)

        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            continue

        if full_url not in seen:
            seen.add(full_url)
            links.append(full_url)

    return links
