from __future__ import annotations

import asyncio
import logging
import urllib.parse
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Protocol, Set, Tuple

import httpx
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .browser import BrowserSession
from .errors import CrawlPageError, InvalidSeedUrl, ValidationError
from .events import EventType, Phase, ProgressCallback, ProgressEvent
from .settings import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)


# -----------------------------
# Tunables / defaults
# -----------------------------

DEFAULT_MAX_PAGES: int = 10
DEFAULT_CRAWL_TIMEOUT_S: float = 30.0
MAX_LINKS_PER_PAGE: int = 20

_DEFAULT_PORTS = {"http": 80, "https": 443}

_SKIP_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg",
    ".zip", ".rar", ".7z", ".tar", ".gz",
    ".mp4", ".mov", ".avi", ".mp3", ".wav",
    ".css", ".js", ".xml",
)

Origin = Tuple[str, str, int]


# -----------------------------
# URL utilities
# -----------------------------

def _normalize_url(url: str) -> str:
    """Normalize URL for dedupe: strip fragment, lowercase host, drop default port, default path."""
    parsed = urllib.parse.urlparse(url)
    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    if parsed.port is not None and parsed.port == _DEFAULT_PORTS.get(scheme):
        netloc = netloc.rsplit(":", 1)[0]
    path = parsed.path or "/"
    return urllib.parse.urlunparse((scheme, netloc, path, parsed.params, parsed.query, ""))


def origin_of(url: str) -> Origin:
    """(scheme, host, port) with the scheme's default port filled in.

    Raises ValueError for URLs without an http(s) scheme, host, or valid port.
    """
    parsed = urllib.parse.urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise ValueError(f"unsupported scheme: {scheme or '(none)'}")
    host = parsed.hostname
    if not host:
        raise ValueError("missing host")
    port = parsed.port or _DEFAULT_PORTS[scheme]
    return scheme, host, port


def parse_seed_url(url: object) -> str:
    """Validate a seed URL and return its normalized form."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidSeedUrl("URL required")
    candidate = url.strip()
    try:
        origin_of(candidate)
    except ValueError as exc:
        raise InvalidSeedUrl(f"Invalid URL format: {exc}") from exc
    return _normalize_url(candidate)


def _should_skip_url(url: str) -> bool:
    path = (urllib.parse.urlparse(url).path or "").lower()
    return any(path.endswith(ext) for ext in _SKIP_EXTENSIONS)


def extract_links(base_url: str, html: str, origin: Origin, limit: int = MAX_LINKS_PER_PAGE) -> List[str]:
    """
    Same-origin links of a document, resolved against ``base_url``, in
    document order, truncated to the first ``limit`` after filtering.
    Hrefs that fail to resolve are dropped.
    """
    soup = BeautifulSoup(html or "", "lxml")
    links: List[str] = []
    for a in soup.find_all("a", href=True):
        href = (a.get("href") or "").strip()
        if not href:
            continue
        try:
            abs_url = _normalize_url(urllib.parse.urljoin(base_url, href))
            if origin_of(abs_url) != origin:
                continue
        except ValueError:
            continue
        if _should_skip_url(abs_url):
            continue
        links.append(abs_url)
        if len(links) >= limit:
            break
    return links


# -----------------------------
# Page loaders
# -----------------------------

@dataclass
class LoadedPage:
    url: str  # final URL after redirects
    html: str


class PageLoader(Protocol):
    async def load(self, url: str) -> LoadedPage: ...

    async def aclose(self) -> None: ...


LoaderFactory = Callable[[], PageLoader]


class HttpPageLoader:
    """Plain HTTP fetch; no script execution."""

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_CRAWL_TIMEOUT_S,
        user_agent: str = DEFAULT_USER_AGENT,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ) -> None:
        self.timeout_s = float(timeout_s)
        if client_factory is not None:
            self._client = client_factory()
        else:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": user_agent},
                timeout=httpx.Timeout(timeout_s),
                follow_redirects=True,
            )

    async def load(self, url: str) -> LoadedPage:
        try:
            resp = await asyncio.wait_for(self._client.get(url), self.timeout_s)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise CrawlPageError(f"timeout after {self.timeout_s:g}s") from exc
        except httpx.HTTPError as exc:
            raise CrawlPageError(str(exc) or type(exc).__name__) from exc
        if resp.status_code >= 400:
            raise CrawlPageError(f"HTTP {resp.status_code}")
        return LoadedPage(url=str(resp.url), html=resp.text or "")

    async def aclose(self) -> None:
        await self._client.aclose()


class PlaywrightPageLoader(BrowserSession):
    """Loads pages in one reused Chromium tab, waiting for DOMContentLoaded."""

    def __init__(self, *, timeout_s: float = DEFAULT_CRAWL_TIMEOUT_S, user_agent: str = DEFAULT_USER_AGENT) -> None:
        super().__init__(user_agent=user_agent)
        self.timeout_s = float(timeout_s)
        self._page: Optional[Page] = None

    async def _ensure_page(self) -> Page:
        if self._page is None or self._page.is_closed():
            ctx = await self._new_context()
            self._page = await ctx.new_page()
        return self._page

    async def load(self, url: str) -> LoadedPage:
        try:
            page = await self._ensure_page()
            resp = await page.goto(url, wait_until="domcontentloaded", timeout=int(self.timeout_s * 1000))
            if resp is not None and resp.status >= 400:
                raise CrawlPageError(f"HTTP {resp.status}")
            html = await page.content()
            return LoadedPage(url=page.url, html=html)
        except PlaywrightError as exc:
            raise CrawlPageError(exc.message) from exc

    async def aclose(self) -> None:
        self._page = None
        await super().aclose()


# -----------------------------
# Crawler
# -----------------------------

class Crawler:
    """
    Breadth-first, origin-bounded discovery of pages from a seed URL.

    Pages are loaded one at a time. A page that fails to load is skipped and
    reported; only an invalid seed URL aborts the crawl.
    """

    def __init__(self, loader_factory: LoaderFactory, *, max_links_per_page: int = MAX_LINKS_PER_PAGE) -> None:
        self._loader_factory = loader_factory
        self.max_links_per_page = int(max_links_per_page)

    async def crawl(
        self,
        seed_url: str,
        max_pages: int = DEFAULT_MAX_PAGES,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[str]:
        seed_url = parse_seed_url(seed_url)
        origin = origin_of(seed_url)
        if max_pages < 1:
            raise ValidationError("max_pages must be positive")

        async def emit(phase: Phase, current: int, total: int, url: str, message: str) -> None:
            if on_progress is not None:
                await on_progress(
                    ProgressEvent(EventType.PROGRESS, phase, current=current, total=total, url=url, message=message)
                )

        visited: Dict[str, None] = {}  # insertion-ordered set
        frontier: Deque[str] = deque([seed_url])
        queued: Set[str] = {seed_url}

        loader = self._loader_factory()
        try:
            while frontier and len(visited) < max_pages:
                url = frontier.popleft()
                queued.discard(url)
                if url in visited:
                    continue

                logger.info("Crawling: %s", url)
                await emit(Phase.CRAWLING, len(visited) + 1, max_pages, url, f"Crawling: {url}")

                try:
                    page = await loader.load(url)
                except CrawlPageError as exc:
                    logger.warning("Skipped: %s (%s)", url, exc)
                    await emit(Phase.CRAWLING, len(visited), max_pages, url, f"Skipped: {url} - {exc}")
                    continue

                visited[url] = None

                for link in extract_links(page.url, page.html, origin, self.max_links_per_page):
                    if link in visited or link in queued:
                        continue
                    frontier.append(link)
                    queued.add(link)
        finally:
            await loader.aclose()

        found = len(visited)
        logger.info("Crawling completed. Pages found: %d", found)
        await emit(Phase.COMPLETED, found, found, "", f"Crawling completed. Found {found} pages.")
        return list(visited)
