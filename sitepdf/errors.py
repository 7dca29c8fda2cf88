from __future__ import annotations

from typing import Optional


class ConversionError(Exception):
    """Base class for every error raised by the conversion pipeline."""

    status_code: int = 500

    def __init__(self, message: str, *, job_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class ValidationError(ConversionError):
    """Malformed or missing request input. No job is created."""

    status_code = 400


class InvalidSeedUrl(ValidationError):
    pass


class CrawlPageError(ConversionError):
    """A single page could not be loaded during crawling (recovered locally)."""


class RenderError(ConversionError):
    """A page could not be rendered to PDF. Fatal to the job."""


class MergeError(ConversionError):
    """Rendered PDFs could not be concatenated. Fatal to the job."""


class EmptyInputError(MergeError):
    pass


class NotFoundError(ConversionError):
    status_code = 404
