from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from pathlib import Path
from typing import Any, List, Optional, Set, Tuple

from .crawler import Crawler, HttpPageLoader, LoaderFactory, PlaywrightPageLoader, origin_of, parse_seed_url
from .errors import ConversionError, ValidationError
from .events import EventType, Phase, ProgressEvent
from .merger import DocumentMerger, PdfMerger
from .registry import CrawlJob, JobRegistry, JobStatus, PageResult, ProgressSnapshot
from .renderer import PlaywrightPageRenderer, RendererFactory
from .settings import Settings
from .storage import MERGED_FILENAME, OutputStore, page_filename

logger = logging.getLogger(__name__)


class JobPipeline:
    """
    Crawl -> render each page -> merge, for one job at a time per task.

    Within a job every step is sequential: page N+1 is never loaded or
    rendered before page N finishes, and page order is discovery order.
    """

    def __init__(
        self,
        registry: JobRegistry,
        store: OutputStore,
        *,
        loader_factory: LoaderFactory,
        renderer_factory: RendererFactory,
        merger: Optional[DocumentMerger] = None,
        default_max_pages: int = 10,
        max_pages_limit: int = 200,
        max_links_per_page: int = 20,
        max_concurrent_jobs: int = 2,
    ) -> None:
        self.registry = registry
        self.store = store
        self._loader_factory = loader_factory
        self._renderer_factory = renderer_factory
        self._merger: DocumentMerger = merger or PdfMerger()
        self.default_max_pages = int(default_max_pages)
        self.max_pages_limit = int(max_pages_limit)
        self.max_links_per_page = int(max_links_per_page)
        self._slots = asyncio.Semaphore(int(max_concurrent_jobs))
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings, registry: JobRegistry) -> "JobPipeline":
        if settings.CRAWL_ENGINE == "http":
            loader_factory: LoaderFactory = lambda: HttpPageLoader(
                timeout_s=settings.CRAWL_TIMEOUT_S, user_agent=settings.USER_AGENT
            )
        else:
            loader_factory = lambda: PlaywrightPageLoader(
                timeout_s=settings.CRAWL_TIMEOUT_S, user_agent=settings.USER_AGENT
            )
        return cls(
            registry,
            OutputStore(settings.OUTPUT_DIR),
            loader_factory=loader_factory,
            renderer_factory=lambda: PlaywrightPageRenderer(
                timeout_s=settings.RENDER_TIMEOUT_S,
                settle_ms=settings.RENDER_SETTLE_MS,
                user_agent=settings.USER_AGENT,
            ),
            default_max_pages=settings.DEFAULT_MAX_PAGES,
            max_pages_limit=settings.MAX_PAGES_LIMIT,
            max_links_per_page=settings.MAX_LINKS_PER_PAGE,
            max_concurrent_jobs=settings.MAX_CONCURRENT_JOBS,
        )

    # -----------------------------
    # Public API
    # -----------------------------

    def validate_request(self, url: Any, max_pages: Any = None) -> Tuple[str, int]:
        seed_url = parse_seed_url(url)
        if max_pages is None:
            return seed_url, self.default_max_pages
        if isinstance(max_pages, bool) or not isinstance(max_pages, int):
            raise ValidationError("maxPages must be an integer")
        if not 1 <= max_pages <= self.max_pages_limit:
            raise ValidationError(f"maxPages must be between 1 and {self.max_pages_limit}")
        return seed_url, max_pages

    async def start(self, url: Any, max_pages: Any = None) -> CrawlJob:
        """Validate, register and schedule a job; returns immediately."""
        job, _task = await self._start(url, max_pages)
        return job

    async def run_conversion(self, url: Any, max_pages: Any = None) -> CrawlJob:
        """
        Run a job to completion and return its final state.

        Raises the job's error if it failed. Cancelling the caller does not
        cancel the job.
        """
        job, task = await self._start(url, max_pages)
        error = await asyncio.shield(task)
        if error is not None:
            raise error
        return await self.registry.get(job.job_id)

    async def aclose(self) -> None:
        """Wait for in-flight jobs (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -----------------------------
    # Execution
    # -----------------------------

    async def _start(self, url: Any, max_pages: Any) -> Tuple[CrawlJob, "asyncio.Task[Optional[ConversionError]]"]:
        seed_url, budget = self.validate_request(url, max_pages)
        job = CrawlJob(
            job_id=str(uuid.uuid4()),
            seed_url=seed_url,
            origin=origin_of(seed_url),
            max_pages=budget,
            progress=ProgressSnapshot(total=budget, message="Starting crawl..."),
        )
        await self.registry.add(job)
        logger.info("Job %s accepted: %s (max_pages=%d)", job.job_id, seed_url, budget)
        self._publish(job.job_id, EventType.STATUS, Phase.STARTED, total=budget, message="Starting crawl...")

        task = asyncio.create_task(self._run_job(job.job_id), name=f"conversion-{job.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job.snapshot(), task

    async def _run_job(self, job_id: str) -> Optional[ConversionError]:
        """Execute a job; failures are recorded on the job and returned, never raised."""
        async with self._slots:
            try:
                await self._execute(job_id)
                return None
            except Exception as exc:
                if isinstance(exc, ConversionError):
                    error = exc
                else:
                    error = ConversionError(f"{type(exc).__name__}: {exc}")
                    error.__cause__ = exc
                error.job_id = job_id
                logger.exception("Conversion failed for job %s", job_id)

                def fail(rec: CrawlJob) -> None:
                    rec.status = JobStatus.FAILED
                    rec.error = error.message
                    rec.progress = dataclasses.replace(rec.progress, message=error.message)

                await self.registry.update(job_id, fail)
                self._publish(job_id, EventType.STATUS, Phase.FAILED, message=error.message)
                return error

    async def _execute(self, job_id: str) -> None:
        job = await self.registry.get(job_id)
        await asyncio.to_thread(self.store.create_job_dir, job_id)

        # ---- Crawl ----
        await self._set_status(job_id, JobStatus.CRAWLING)
        self._publish(job_id, EventType.STATUS, Phase.CRAWLING, total=job.max_pages, message="Crawling website...")

        async def on_progress(event: ProgressEvent) -> None:
            await self._set_progress(job_id, event.total, event.current, event.url, event.message)
            self.registry.publish(job_id, event)

        crawler = Crawler(self._loader_factory, max_links_per_page=self.max_links_per_page)
        urls = await crawler.crawl(job.seed_url, job.max_pages, on_progress=on_progress)

        # ---- Render ----
        total = len(urls)
        await self._set_status(job_id, JobStatus.RENDERING_PAGES)
        self._publish(
            job_id,
            EventType.STATUS,
            Phase.RENDERING,
            total=total,
            message=f"Found {total} pages, starting PDF generation...",
        )
        pdf_paths = await self._render_pages(job_id, urls)

        # ---- Merge ----
        await self._set_status(job_id, JobStatus.MERGING)
        self._publish(job_id, EventType.STATUS, Phase.MERGING, current=total, total=total, message="Merging PDFs...")
        merged = await asyncio.to_thread(self._merger.merge_files, pdf_paths)
        await asyncio.to_thread(self.store.write_merged, job_id, merged)
        merged_rel = self.store.relative(job_id, MERGED_FILENAME)

        def complete(rec: CrawlJob) -> None:
            rec.merged_pdf = merged_rel
            rec.status = JobStatus.COMPLETED
            rec.progress = ProgressSnapshot(total=total, processed=total, message="Processing completed!")

        await self.registry.update(job_id, complete)
        logger.info("Job %s completed: %d pages -> %s", job_id, total, merged_rel)
        self._publish(job_id, EventType.STATUS, Phase.COMPLETED, current=total, total=total, message="Processing completed!")

    async def _render_pages(self, job_id: str, urls: List[str]) -> List[Path]:
        total = len(urls)
        pdf_paths: List[Path] = []
        renderer = self._renderer_factory()
        try:
            for index, url in enumerate(urls, start=1):
                message = f"Generating PDF for page {index} of {total}"
                await self._set_progress(job_id, total, index, url, message)
                self._publish(job_id, EventType.PAGE, Phase.RENDERING, current=index, total=total, url=url, message=message)

                try:
                    pdf, media_detected = await renderer.render(url)
                except ConversionError as exc:
                    await self._add_page(job_id, PageResult(url=url, pdf=None, error=exc.message))
                    raise

                path = await asyncio.to_thread(self.store.write_page, job_id, index, pdf)
                await self._add_page(
                    job_id,
                    PageResult(
                        url=url,
                        pdf=self.store.relative(job_id, page_filename(index)),
                        media_detected=media_detected,
                    ),
                )
                pdf_paths.append(path)
        finally:
            await renderer.aclose()
        return pdf_paths

    # -----------------------------
    # Job record helpers (single writer: the job's own task)
    # -----------------------------

    async def _set_status(self, job_id: str, status: JobStatus) -> None:
        def apply(rec: CrawlJob) -> None:
            rec.status = status

        await self.registry.update(job_id, apply)
        logger.info("Job %s -> %s", job_id, status.value)

    async def _set_progress(self, job_id: str, total: int, processed: int, url: str, message: str) -> None:
        snapshot = ProgressSnapshot(total=total, processed=processed, current_url=url, message=message)

        def apply(rec: CrawlJob) -> None:
            rec.progress = snapshot

        await self.registry.update(job_id, apply)

    async def _add_page(self, job_id: str, page: PageResult) -> None:
        def apply(rec: CrawlJob) -> None:
            rec.pages.append(page)

        await self.registry.update(job_id, apply)

    def _publish(
        self,
        job_id: str,
        event: EventType,
        phase: Phase,
        *,
        current: int = 0,
        total: int = 0,
        url: str = "",
        message: str = "",
    ) -> None:
        self.registry.publish(
            job_id, ProgressEvent(event, phase, current=current, total=total, url=url, message=message)
        )
