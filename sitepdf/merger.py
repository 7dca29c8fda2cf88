from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Protocol, Sequence

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

from .errors import EmptyInputError, MergeError

logger = logging.getLogger(__name__)


class DocumentMerger(Protocol):
    def merge(self, blobs: Sequence[bytes]) -> bytes:
        """Concatenate PDFs in order; raise EmptyInputError / MergeError."""
        ...

    def merge_files(self, paths: Sequence[Path]) -> bytes: ...


def count_pages(blob: bytes) -> int:
    try:
        return len(PdfReader(io.BytesIO(blob)).pages)
    except (PyPdfError, ValueError) as exc:
        raise MergeError(f"Unreadable PDF: {exc}") from exc


class PdfMerger:
    """Page-preserving concatenation of PDF documents with pypdf."""

    def merge(self, blobs: Sequence[bytes]) -> bytes:
        if not blobs:
            raise EmptyInputError("PDF list is required and cannot be empty")

        writer = PdfWriter()
        for index, blob in enumerate(blobs, start=1):
            try:
                reader = PdfReader(io.BytesIO(blob))
                if reader.is_encrypted:
                    reader.decrypt("")
                for page in reader.pages:
                    writer.add_page(page)
            except (PyPdfError, ValueError) as exc:
                raise MergeError(f"Error processing PDF #{index}: {exc}") from exc

        out = io.BytesIO()
        writer.write(out)
        logger.debug("Merged %d PDFs (%d pages)", len(blobs), len(writer.pages))
        return out.getvalue()

    def merge_files(self, paths: Sequence[Path]) -> bytes:
        blobs = []
        for path in paths:
            if not path.exists():
                raise MergeError(f"Input PDF file does not exist: {path}")
            blobs.append(path.read_bytes())
        return self.merge(blobs)
