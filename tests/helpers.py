from __future__ import annotations

import io
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import httpx
from pypdf import PdfWriter

from sitepdf.crawler import HttpPageLoader
from sitepdf.errors import RenderError


def make_pdf(pages: int = 1, width: float = 200, height: float = 200) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=width, height=height)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


SITE: Dict[str, str] = {
    "https://example.test/": (
        '<a href="/a">A</a>'
        '<a href="https://other.test/b">B</a>'
        '<a href="mailto:team@example.test">mail</a>'
    ),
    "https://example.test/a": '<a href="/">home</a><a href="c">C</a>',
    "https://example.test/c": "<p>leaf</p>",
}


def site_loader_factory(pages: Dict[str, str], unreachable: Iterable[str] = ()) -> Callable[[], HttpPageLoader]:
    """Loader factory backed by an in-memory site; unknown URLs return 404."""
    down = set(unreachable)
    requested: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requested.append(url)
        if url in down:
            raise httpx.ConnectError("connection refused", request=request)
        html = pages.get(url)
        if html is None:
            return httpx.Response(404)
        return httpx.Response(200, text=html, headers={"content-type": "text/html"})

    transport = httpx.MockTransport(handler)

    def factory() -> HttpPageLoader:
        return HttpPageLoader(client_factory=lambda: httpx.AsyncClient(transport=transport))

    factory.requested = requested  # type: ignore[attr-defined]
    return factory


class FakeRenderer:
    def __init__(
        self,
        *,
        fail_on: Iterable[str] = (),
        media_on: Iterable[str] = (),
        pages_per_pdf: int = 1,
        calls: Optional[List[str]] = None,
    ) -> None:
        self.fail_on = set(fail_on)
        self.media_on = set(media_on)
        self.pages_per_pdf = pages_per_pdf
        self.calls = calls if calls is not None else []
        self.closed = False

    async def render(self, url: str) -> Tuple[bytes, bool]:
        self.calls.append(url)
        if url in self.fail_on:
            raise RenderError(f"PDF failed for {url}: navigation timeout")
        return make_pdf(self.pages_per_pdf), url in self.media_on

    async def aclose(self) -> None:
        self.closed = True
