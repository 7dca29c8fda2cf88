from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .registry import CrawlJob, PageResult


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConvertRequest(_CamelModel):
    # Checked by JobPipeline.validate_request.
    url: Optional[str] = Field(default=None, description="Seed URL (http/https).")
    max_pages: Any = Field(
        default=None,
        description="Maximum number of pages to crawl. Defaults to 10.",
    )


class PageOut(_CamelModel):
    page_url: str
    pdf: Optional[str] = None
    video_detected: bool = False
    error: Optional[str] = None

    @classmethod
    def from_result(cls, page: PageResult) -> "PageOut":
        return cls(page_url=page.url, pdf=page.pdf, video_detected=page.media_detected, error=page.error)


class ConvertResponse(_CamelModel):
    job_id: str
    pages: List[PageOut]
    merged_pdf: str

    @classmethod
    def from_job(cls, job: CrawlJob) -> "ConvertResponse":
        return cls(
            job_id=job.job_id,
            pages=[PageOut.from_result(p) for p in job.pages],
            merged_pdf=job.merged_pdf or "",
        )


class JobSubmitResponse(_CamelModel):
    job_id: str
    status: str


class JobStatusResponse(_CamelModel):
    job_id: str
    status: str
    total: int
    processed: int
    current_url: str
    message: str = ""
    pages: List[PageOut]
    merged_pdf: Optional[str] = None
    error: Optional[str] = None


class ErrorResponse(_CamelModel):
    error: str
    job_id: Optional[str] = None
