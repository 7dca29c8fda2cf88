from __future__ import annotations

import asyncio
import logging
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from .settings import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)


class BrowserSession:
    """
    Lazily started headless Chromium shared by one crawl or one render loop.
    Subclasses call ``_ensure_playwright()`` before touching ``_browser`` and
    must be closed with ``aclose()``.
    """

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT) -> None:
        self.user_agent = user_agent
        self._pw: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._pw_lock = asyncio.Lock()

    async def _ensure_playwright(self) -> None:
        async with self._pw_lock:
            if self._pw and self._browser:
                return
            self._pw = await async_playwright().start()
            self._browser = await self._pw.chromium.launch(
                headless=True,
                args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
            )
            logger.debug("Chromium started for %s", type(self).__name__)

    async def _new_context(self) -> BrowserContext:
        await self._ensure_playwright()
        assert self._browser is not None
        return await self._browser.new_context(user_agent=self.user_agent)

    async def aclose(self) -> None:
        async with self._pw_lock:
            if self._browser:
                try:
                    await self._browser.close()
                except Exception:
                    logger.debug("Browser already closed", exc_info=True)
            self._browser = None
            if self._pw:
                try:
                    await self._pw.stop()
                except Exception:
                    logger.debug("Playwright already stopped", exc_info=True)
            self._pw = None
