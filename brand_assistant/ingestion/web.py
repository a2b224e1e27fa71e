"""Scrape a brand website into documents ready for ingestion."""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup

from ..models import Document

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"User-Agent": "BrandAssistant-Scraper/1.0 (Content Ingestion Bot)"}
STRIP_TAGS = ["script", "style", "noscript", "header", "footer", "nav", "iframe", "svg"]
SKIP_SCHEMES = ("mailto:", "tel:", "javascript:", "#")
MIN_PAGE_LENGTH = 100


def normalise_url(url: str) -> str:
    """Drop the query string and fragment so each page is visited once."""

    parts = urlparse(url)
    return urlunparse((parts.scheme, parts.netloc, parts.path or "/", "", "", ""))


def page_links(soup: BeautifulSoup, page_url: str) -> List[str]:
    links: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(SKIP_SCHEMES):
            continue
        link = normalise_url(urljoin(page_url, href))
        if link not in links:
            links.append(link)
    return links


def page_text(soup: BeautifulSoup) -> str:
    """Visible text of the main content area, whitespace collapsed."""

    for tag in soup(STRIP_TAGS):
        tag.decompose()
    root = soup.find("main") or soup.find("article") or soup.body or soup
    return " ".join(root.get_text(" ", strip=True).split())


def parse_page(url: str, html: str) -> Tuple[Optional[Document], List[str]]:
    """Return the page's document, or ``None`` when too short, and its links."""

    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.string.strip() if soup.title and soup.title.string else url
    links = page_links(soup, url)
    text = page_text(soup)
    if len(text) < MIN_PAGE_LENGTH:
        logger.info("Skipping %s: too little content (%d chars)", url, len(text))
        return None, links
    document = Document(
        id=url,
        source="web",
        content=text,
        metadata={"url": url, "title": title, "type": "webpage"},
    )
    return document, links


def fetch_html(http: requests.Session, url: str) -> Optional[str]:
    try:
        response = http.get(url, headers=DEFAULT_HEADERS, timeout=15)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Skipping %s: %s", url, exc)
        return None
    content_type = response.headers.get("Content-Type", "text/html")
    if "text/html" not in content_type:
        logger.info("Skipping %s: not HTML (%s)", url, content_type)
        return None
    return response.text


def crawl_website(
    base_url: str,
    *,
    max_pages: int = 50,
    delay: float = 0.5,
    allowed_paths: Optional[Iterable[str]] = None,
    session: Optional[requests.Session] = None,
) -> List[Document]:
    """Breadth-first crawl of one host, returning a document per useful page.

    Parameters
    ----------
    base_url:
        Start page. Only links on the same host are followed.
    max_pages:
        Stop once this many documents have been collected.
    delay:
        Pause in seconds between requests.
    allowed_paths:
        Optional path prefixes that followed links must start with.
    session:
        Optional ``requests.Session`` to reuse HTTP connections.
    """

    host = urlparse(base_url).netloc
    prefixes = tuple(allowed_paths or ())
    http = session or requests.Session()

    pending = deque([normalise_url(base_url)])
    visited = set()
    documents: List[Document] = []

    while pending and len(documents) < max_pages:
        url = pending.popleft()
        if url in visited:
            continue
        visited.add(url)

        html = fetch_html(http, url)
        if html is None:
            continue

        document, links = parse_page(url, html)
        if document is not None:
            documents.append(document)
            logger.info("Scraped %s (%d chars)", url, len(document.content))

        for link in links:
            parsed = urlparse(link)
            if parsed.netloc != host or link in visited:
                continue
            if prefixes and not parsed.path.startswith(prefixes):
                continue
            pending.append(link)

        if pending and len(documents) < max_pages:
            time.sleep(max(0.0, delay))

    return documents
