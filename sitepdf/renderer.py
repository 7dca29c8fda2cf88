from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, Tuple

from playwright.async_api import BrowserContext
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .browser import BrowserSession
from .errors import RenderError
from .settings import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

DEFAULT_RENDER_TIMEOUT_S: float = 45.0
DEFAULT_SETTLE_MS: int = 3000

# Embedded audio/video markers
_MEDIA_PROBE_JS = """() => (
    document.querySelector("video") !== null ||
    document.querySelector("audio") !== null ||
    document.querySelector("iframe[src*='youtube']") !== null ||
    document.querySelector("iframe[src*='vimeo']") !== null
)"""

_PDF_MARGIN = {"top": "20px", "bottom": "20px", "left": "20px", "right": "20px"}


class PageRenderer(Protocol):
    async def render(self, url: str) -> Tuple[bytes, bool]:
        """Return (pdf_bytes, media_detected); raise RenderError on failure."""
        ...

    async def aclose(self) -> None: ...


RendererFactory = Callable[[], PageRenderer]


class PlaywrightPageRenderer(BrowserSession):
    """
    Prints pages to A4 PDF with headless Chromium.

    One browser per instance; each page gets a fresh context so cookies and
    storage from one page never leak into the next.
    """

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_RENDER_TIMEOUT_S,
        settle_ms: int = DEFAULT_SETTLE_MS,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        super().__init__(user_agent=user_agent)
        self.timeout_s = float(timeout_s)
        self.settle_ms = int(settle_ms)

    async def render(self, url: str) -> Tuple[bytes, bool]:
        ctx: Optional[BrowserContext] = None
        page: Optional[Page] = None
        logger.info("Generating PDF: %s", url)
        try:
            ctx = await self._new_context()
            page = await ctx.new_page()

            resp = await page.goto(url, wait_until="networkidle", timeout=int(self.timeout_s * 1000))
            if resp is not None and resp.status >= 400:
                raise RenderError(f"PDF failed for {url}: HTTP {resp.status}")

            if self.settle_ms > 0:
                await page.wait_for_timeout(self.settle_ms)

            media_detected = bool(await page.evaluate(_MEDIA_PROBE_JS))
            pdf = await page.pdf(
                format="A4",
                print_background=True,
                margin=_PDF_MARGIN,
                prefer_css_page_size=False,
            )
        except PlaywrightError as exc:
            raise RenderError(f"PDF failed for {url}: {exc.message}") from exc
        finally:
            if page:
                try:
                    await page.close()
                except PlaywrightError:
                    pass
            if ctx:
                try:
                    await ctx.close()
                except PlaywrightError:
                    pass

        logger.info("PDF rendered: %s (%d bytes, media=%s)", url, len(pdf), media_detected)
        return pdf, media_detected
