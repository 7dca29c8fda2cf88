from __future__ import annotations

import logging
from contextlib import aclosing, asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sitepdf.errors import ConversionError, NotFoundError
from sitepdf.models import (
    ConvertRequest,
    ConvertResponse,
    ErrorResponse,
    JobStatusResponse,
    JobSubmitResponse,
    PageOut,
)
from sitepdf.pipeline import JobPipeline
from sitepdf.registry import JobRegistry
from sitepdf.settings import Settings, configure_logging, get_settings

logger = logging.getLogger("sitepdf.api")


def create_app(settings: Optional[Settings] = None, pipeline: Optional[JobPipeline] = None) -> FastAPI:
    settings = settings or get_settings()
    if pipeline is None:
        registry = JobRegistry(event_queue_size=settings.EVENT_QUEUE_SIZE)
        pipeline = JobPipeline.from_settings(settings, registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL)
        logger.info("Output directory: %s", pipeline.store.root)
        yield
        await pipeline.aclose()

    app = FastAPI(title="sitepdf", lifespan=lifespan)
    app.state.pipeline = pipeline
    app.state.registry = pipeline.registry

    # -----------------------
    # Error mapping
    # -----------------------

    @app.exception_handler(ConversionError)
    async def conversion_error_handler(request: Request, exc: ConversionError) -> JSONResponse:
        body = ErrorResponse(error=exc.message, job_id=exc.job_id)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(by_alias=True, exclude_none=True))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": detail})

    # -----------------------
    # Basic endpoints
    # -----------------------

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    # --------------------------------------------------------------
    # Single-shot conversion (waits for the merged PDF)
    # --------------------------------------------------------------

    @app.post("/api/convert", response_model=ConvertResponse)
    async def convert(payload: ConvertRequest) -> ConvertResponse:
        job = await pipeline.run_conversion(payload.url, payload.max_pages)
        return ConvertResponse.from_job(job)

    # --------------------------------------------------------------
    # Async-first job endpoints
    # --------------------------------------------------------------

    @app.post("/api/jobs", response_model=JobSubmitResponse, status_code=202)
    async def create_job(payload: ConvertRequest) -> JobSubmitResponse:
        job = await pipeline.start(payload.url, payload.max_pages)
        return JobSubmitResponse(job_id=job.job_id, status=job.status.value)

    @app.get("/api/jobs/{job_id}", response_model=JobStatusResponse)
    async def job_status(job_id: str) -> JobStatusResponse:
        st = await pipeline.registry.status(job_id)
        st["pages"] = [PageOut.from_result(p) for p in st["pages"]]
        return JobStatusResponse(**st)

    @app.websocket("/api/jobs/{job_id}/events")
    async def job_events(websocket: WebSocket, job_id: str) -> None:
        await websocket.accept()
        try:
            async with aclosing(pipeline.registry.stream(job_id)) as events:
                async for evt in events:
                    await websocket.send_json(evt.to_dict())
        except NotFoundError:
            await websocket.close(code=4404, reason="Job not found")
            return
        except WebSocketDisconnect:
            logger.debug("Progress subscriber for job %s disconnected", job_id)
            return
        await websocket.close()

    return app


app = create_app()
