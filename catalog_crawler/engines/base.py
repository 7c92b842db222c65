from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple
from abc import ABC, abstractmethod


class Role(str, Enum):
    """Declared role of a queued page; decides which classifier branch handles it."""

    LISTING_ROOT = "listing-root"
    LISTING_PAGE = "listing-page"
    ITEM_DETAIL = "item-detail"


class Priority(str, Enum):
    HIGH = "high"  # front of queue
    NORMAL = "normal"


@dataclass(frozen=True)
class CrawlTask:
    url: str
    role: Role
    # Only meaningful for listing-page tasks.
    stop_marker: Optional[str] = None
    # Bookkeeping filled in by the frontier when the task is handed out.
    retry_count: int = 0
    error_messages: Tuple[str, ...] = ()


@dataclass
class CrawlReport:
    handled: int = 0
    failed: int = 0
    records: int = 0
    items_enqueued: int = 0
    suspended: bool = False
    pending: int = 0

    def to_dict(self) -> dict:
        return {
            "handled": self.handled,
            "failed": self.failed,
            "records": self.records,
            "items_enqueued": self.items_enqueued,
            "suspended": self.suspended,
            "pending": self.pending,
        }


class CrawlEngine(ABC):
    """
    Abstract engine interface. Implementations own the crawl lifecycle.
    """
    @abstractmethod
    async def crawl(self) -> CrawlReport:  # pragma: no cover - interface
        ...
