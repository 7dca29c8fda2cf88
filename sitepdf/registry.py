from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .crawler import Origin
from .errors import NotFoundError
from .events import EventType, Phase, ProgressEvent

logger = logging.getLogger(__name__)

DEFAULT_EVENT_QUEUE_SIZE: int = 1000


# -----------------------------
# Data models
# -----------------------------

class JobStatus(str, Enum):
    STARTED = "started"
    CRAWLING = "crawling"
    RENDERING_PAGES = "processing_pages"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PageResult:
    url: str
    pdf: Optional[str]  # "<job_id>/page_<n>.pdf"; None when rendering failed
    media_detected: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class ProgressSnapshot:
    total: int = 0
    processed: int = 0
    current_url: str = ""
    message: str = ""


@dataclass
class CrawlJob:
    job_id: str
    seed_url: str
    origin: Origin
    max_pages: int
    status: JobStatus = JobStatus.STARTED
    pages: List[PageResult] = field(default_factory=list)
    progress: ProgressSnapshot = field(default_factory=ProgressSnapshot)
    merged_pdf: Optional[str] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def snapshot(self) -> "CrawlJob":
        # PageResult and ProgressSnapshot are immutable; copying the list is enough.
        return dataclasses.replace(self, pages=list(self.pages))


# -----------------------------
# Registry
# -----------------------------

class JobRegistry:
    """
    Process-wide table of conversion jobs plus per-job progress fan-out.

    Writes go through ``update()`` under a lock; readers get copies, so a
    reader never observes a half-applied change. Events are delivered
    best-effort: a subscriber whose queue is full misses events, and events
    published while nobody is subscribed are dropped.
    """

    def __init__(self, *, event_queue_size: int = DEFAULT_EVENT_QUEUE_SIZE) -> None:
        self._jobs: Dict[str, CrawlJob] = {}
        self._jobs_lock = asyncio.Lock()
        self._subscribers: Dict[str, List[asyncio.Queue[ProgressEvent]]] = {}
        self._event_queue_size = int(event_queue_size)

    def __len__(self) -> int:
        return len(self._jobs)

    async def add(self, job: CrawlJob) -> None:
        async with self._jobs_lock:
            self._jobs[job.job_id] = job

    async def get(self, job_id: str) -> CrawlJob:
        async with self._jobs_lock:
            rec = self._jobs.get(job_id)
            if rec is None:
                raise NotFoundError("Job not found")
            return rec.snapshot()

    async def update(self, job_id: str, mutate: Callable[[CrawlJob], None]) -> CrawlJob:
        async with self._jobs_lock:
            rec = self._jobs.get(job_id)
            if rec is None:
                raise NotFoundError("Job not found")
            mutate(rec)
            rec.updated_at = time.time()
            return rec.snapshot()

    async def status(self, job_id: str) -> Dict[str, Any]:
        rec = await self.get(job_id)
        return {
            "job_id": rec.job_id,
            "status": rec.status.value,
            "total": rec.progress.total,
            "processed": rec.progress.processed,
            "current_url": rec.progress.current_url,
            "message": rec.progress.message,
            "pages": list(rec.pages),
            "merged_pdf": rec.merged_pdf,
            "error": rec.error,
        }

    # -----------------------------
    # Pub/sub
    # -----------------------------

    def subscribe(self, job_id: str) -> asyncio.Queue[ProgressEvent]:
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=self._event_queue_size)
        self._subscribers.setdefault(job_id, []).append(queue)
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue[ProgressEvent]) -> None:
        subscribers = self._subscribers.get(job_id)
        if not subscribers:
            return
        if queue in subscribers:
            subscribers.remove(queue)
        if not subscribers:
            self._subscribers.pop(job_id, None)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    def publish(self, job_id: str, event: ProgressEvent) -> None:
        for queue in list(self._subscribers.get(job_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # drop events under pressure
                logger.debug("Dropped %s event for job %s (subscriber queue full)", event.phase.value, job_id)

    async def stream(self, job_id: str) -> AsyncIterator[ProgressEvent]:
        """Yield events for ``job_id`` until its terminal status event."""
        rec = await self.get(job_id)
        queue = self.subscribe(job_id)
        try:
            if rec.status in (JobStatus.COMPLETED, JobStatus.FAILED):
                # Late subscriber: nothing more will be published for this job.
                yield _final_event(rec)
                return
            while True:
                evt = await queue.get()
                yield evt
                if evt.is_terminal:
                    return
        finally:
            self.unsubscribe(job_id, queue)


def _final_event(rec: CrawlJob) -> ProgressEvent:
    if rec.status is JobStatus.COMPLETED:
        return ProgressEvent(
            EventType.STATUS, Phase.COMPLETED, rec.progress.processed, rec.progress.total, message="Processing completed!"
        )
    return ProgressEvent(
        EventType.STATUS, Phase.FAILED, rec.progress.processed, rec.progress.total, message=rec.error or "Conversion failed"
    )
