from __future__ import annotations

import os
import re
from pathlib import Path

from .errors import ValidationError

MERGED_FILENAME = "merged.pdf"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(filename: str) -> str:
    """Restrict a file name to ``[a-zA-Z0-9.-]`` to prevent path traversal."""
    return _UNSAFE_CHARS.sub("_", filename)


def page_filename(index: int) -> str:
    return sanitize_filename(f"page_{index}.pdf")


class OutputStore:
    """
    Job output layout on local disk::

        <root>/<job_id>/page_1.pdf
        <root>/<job_id>/page_2.pdf
        <root>/<job_id>/merged.pdf

    Paths handed back to callers are relative to ``root`` (``<job_id>/<name>``).
    Methods are blocking; the pipeline runs them in a worker thread.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    def job_dir(self, job_id: str) -> Path:
        safe = sanitize_filename(job_id)
        if not safe.strip("."):
            raise ValidationError(f"Invalid job id: {job_id!r}")
        return self.root / safe

    def create_job_dir(self, job_id: str) -> Path:
        path = self.job_dir(job_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def relative(self, job_id: str, filename: str) -> str:
        return f"{self.job_dir(job_id).name}/{sanitize_filename(filename)}"

    def write_page(self, job_id: str, index: int, data: bytes) -> Path:
        path = self.create_job_dir(job_id) / page_filename(index)
        path.write_bytes(data)
        return path

    def write_merged(self, job_id: str, data: bytes) -> Path:
        """Write ``merged.pdf`` via a temp file so a partial file is never visible."""
        target = self.create_job_dir(job_id) / MERGED_FILENAME
        tmp = target.with_name(MERGED_FILENAME + ".part")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return target

