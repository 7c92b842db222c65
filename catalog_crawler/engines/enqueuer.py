from __future__ import annotations

import logging
from typing import Optional, Protocol

from .admission import AdmissionGate
from .base import CrawlTask, Priority, Role
from ..adapters.base import SiteAdapter

logger = logging.getLogger(__name__)


class Frontier(Protocol):
    def add(self, task: CrawlTask, *, forefront: bool = False) -> bool:
        ...


class FrontierEnqueuer:
    """
    Turns classifier decisions into frontier insertions.
    The frontier deduplicates by URL, so enqueueing a known URL is a no-op
    and ``enqueue`` reports False for it.
    """

    def __init__(self, frontier: Frontier) -> None:
        self.frontier = frontier

    def enqueue(self, url: str, role: Role, priority: Priority, stop_marker: Optional[str] = None) -> bool:
        task = CrawlTask(url=url, role=role, stop_marker=stop_marker)
        added = self.frontier.add(task, forefront=priority is Priority.HIGH)
        if added:
            logger.debug("Enqueued %s %s (%s)", role.value, url, priority.value)
        else:
            logger.debug("Already known, skipped %s", url)
        return added

    def enqueue_item(self, url: str) -> bool:
        # Item pages jump the queue so details are scraped before the rest of the listing breadth.
        return self.enqueue(url, Role.ITEM_DETAIL, Priority.HIGH)

    def enqueue_listing(self, url: str, stop_marker: Optional[str]) -> bool:
        return self.enqueue(url, Role.LISTING_PAGE, Priority.NORMAL, stop_marker=stop_marker)

    def enqueue_seed(self, url: str, adapter: SiteAdapter, gate: AdmissionGate) -> bool:
        """
        Queue a start URL as an item-detail page when the adapter recognises an
        item URL (subject to the admission gate), otherwise as a listing root.
        """
        if adapter.is_item_url(url):
            if not gate.admitted():
                return False
            if self.enqueue_item(url):
                gate.record_admission()
                return True
            return False
        return self.enqueue(url, Role.LISTING_ROOT, Priority.NORMAL)
