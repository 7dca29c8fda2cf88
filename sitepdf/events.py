from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict


class EventType(str, Enum):
    PROGRESS = "progress"  # crawl-time
    PAGE = "page"  # render-time
    STATUS = "status"  # lifecycle


class Phase(str, Enum):
    STARTED = "started"
    CRAWLING = "crawling"
    RENDERING = "rendering"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    event: EventType
    phase: Phase
    current: int = 0
    total: int = 0
    url: str = ""
    message: str = ""

    @property
    def is_terminal(self) -> bool:
        # The crawl sub-phase also ends with Phase.COMPLETED, but as a progress event.
        return self.event is EventType.STATUS and self.phase in (Phase.COMPLETED, Phase.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event.value,
            "phase": self.phase.value,
            "current": self.current,
            "total": self.total,
            "url": self.url,
            "message": self.message,
        }


ProgressCallback = Callable[[ProgressEvent], Awaitable[None]]
