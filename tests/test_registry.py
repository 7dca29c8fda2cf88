import asyncio
from contextlib import aclosing

import pytest

from sitepdf.errors import NotFoundError
from sitepdf.events import EventType, Phase, ProgressEvent
from sitepdf.registry import CrawlJob, JobRegistry, JobStatus, PageResult, ProgressSnapshot


def _job(job_id: str = "job-1") -> CrawlJob:
    return CrawlJob(
        job_id=job_id,
        seed_url="https://example.test/",
        origin=("https", "example.test", 443),
        max_pages=3,
    )


def _event(event=EventType.PROGRESS, phase=Phase.CRAWLING, message="") -> ProgressEvent:
    return ProgressEvent(event, phase, message=message)


async def _wait_for_subscriber(registry: JobRegistry, job_id: str) -> None:
    for _ in range(100):
        if registry.subscriber_count(job_id):
            return
        await asyncio.sleep(0)
    raise AssertionError("stream never subscribed")


@pytest.mark.asyncio
async def test_unknown_job_raises_not_found():
    registry = JobRegistry()

    with pytest.raises(NotFoundError):
        await registry.get("missing")
    with pytest.raises(NotFoundError):
        await registry.status("missing")
    with pytest.raises(NotFoundError):
        await registry.update("missing", lambda rec: None)


@pytest.mark.asyncio
async def test_status_reports_progress_and_pages():
    registry = JobRegistry()
    await registry.add(_job())

    def apply(rec):
        rec.status = JobStatus.RENDERING_PAGES
        rec.progress = ProgressSnapshot(total=3, processed=1, current_url="https://example.test/", message="m")
        rec.pages.append(PageResult(url="https://example.test/", pdf="job-1/page_1.pdf"))

    await registry.update("job-1", apply)
    st = await registry.status("job-1")

    assert st["status"] == "processing_pages"
    assert (st["total"], st["processed"], st["current_url"]) == (3, 1, "https://example.test/")
    assert st["pages"] == [PageResult(url="https://example.test/", pdf="job-1/page_1.pdf")]
    assert st["merged_pdf"] is None
    assert st["error"] is None


@pytest.mark.asyncio
async def test_snapshots_are_isolated_from_the_record():
    registry = JobRegistry()
    job = _job()
    await registry.add(job)
    before = job.updated_at

    snap = await registry.get("job-1")
    snap.pages.append(PageResult(url="https://example.test/x", pdf=None))
    updated = await registry.update("job-1", lambda rec: setattr(rec, "status", JobStatus.CRAWLING))

    assert updated.pages == []
    assert (await registry.get("job-1")).pages == []
    assert updated.status is JobStatus.CRAWLING
    assert updated.updated_at >= before


@pytest.mark.asyncio
async def test_publish_fans_out_to_every_subscriber():
    registry = JobRegistry()
    q1 = registry.subscribe("job-1")
    q2 = registry.subscribe("job-1")
    evt = _event(message="Crawling: https://example.test/")

    registry.publish("job-1", evt)

    assert q1.get_nowait() == evt
    assert q2.get_nowait() == evt


@pytest.mark.asyncio
async def test_events_without_subscribers_are_dropped():
    registry = JobRegistry()

    registry.publish("job-1", _event())
    queue = registry.subscribe("job-1")

    assert queue.empty()


@pytest.mark.asyncio
async def test_full_queue_drops_newer_events():
    registry = JobRegistry(event_queue_size=2)
    slow = registry.subscribe("job-1")
    fast = registry.subscribe("job-1")

    for i in range(3):
        registry.publish("job-1", _event(message=str(i)))
        if i < 2:
            fast.get_nowait()

    assert [slow.get_nowait().message for _ in range(slow.qsize())] == ["0", "1"]
    assert fast.get_nowait().message == "2"


@pytest.mark.asyncio
async def test_unsubscribe_detaches_queue():
    registry = JobRegistry()
    queue = registry.subscribe("job-1")

    registry.unsubscribe("job-1", queue)
    registry.unsubscribe("job-1", queue)
    registry.publish("job-1", _event())

    assert registry.subscriber_count("job-1") == 0
    assert queue.empty()


@pytest.mark.asyncio
async def test_stream_ends_after_terminal_status_event():
    registry = JobRegistry()
    await registry.add(_job())
    received = []

    async def consume():
        async for evt in registry.stream("job-1"):
            received.append(evt)

    consumer = asyncio.create_task(consume())
    await _wait_for_subscriber(registry, "job-1")

    # The crawl's own completion is a progress event and must not end the stream.
    registry.publish("job-1", _event(EventType.PROGRESS, Phase.COMPLETED, "Crawling completed. Found 1 pages."))
    registry.publish("job-1", _event(EventType.PAGE, Phase.RENDERING, "Generating PDF for page 1 of 1"))
    registry.publish("job-1", _event(EventType.STATUS, Phase.COMPLETED, "Processing completed!"))
    registry.publish("job-1", _event(EventType.STATUS, Phase.STARTED, "after the end"))
    await asyncio.wait_for(consumer, timeout=1)

    assert [e.message for e in received] == [
        "Crawling completed. Found 1 pages.",
        "Generating PDF for page 1 of 1",
        "Processing completed!",
    ]
    assert registry.subscriber_count("job-1") == 0


@pytest.mark.asyncio
async def test_stream_of_unknown_job_raises():
    registry = JobRegistry()

    with pytest.raises(NotFoundError):
        async for _ in registry.stream("missing"):
            pass


@pytest.mark.asyncio
async def test_late_subscriber_gets_final_status():
    registry = JobRegistry()
    await registry.add(_job("done"))
    await registry.add(_job("broken"))

    def complete(rec):
        rec.status = JobStatus.COMPLETED
        rec.progress = ProgressSnapshot(total=2, processed=2, message="Processing completed!")

    def fail(rec):
        rec.status = JobStatus.FAILED
        rec.error = "PDF failed for https://example.test/: boom"

    await registry.update("done", complete)
    await registry.update("broken", fail)

    done = [e async for e in registry.stream("done")]
    broken = [e async for e in registry.stream("broken")]

    assert [(e.event, e.phase, e.current, e.total, e.message) for e in done] == [
        (EventType.STATUS, Phase.COMPLETED, 2, 2, "Processing completed!")
    ]
    assert [(e.phase, e.message) for e in broken] == [
        (Phase.FAILED, "PDF failed for https://example.test/: boom")
    ]
    assert registry.subscriber_count("done") == 0


@pytest.mark.asyncio
async def test_closing_stream_early_unsubscribes():
    registry = JobRegistry()
    await registry.add(_job())

    async with aclosing(registry.stream("job-1")) as events:
        pending = asyncio.create_task(events.__anext__())
        await _wait_for_subscriber(registry, "job-1")
        registry.publish("job-1", _event(message="Crawling: https://example.test/"))
        first = await asyncio.wait_for(pending, timeout=1)
        assert registry.subscriber_count("job-1") == 1

    assert first.message == "Crawling: https://example.test/"
    assert registry.subscriber_count("job-1") == 0
