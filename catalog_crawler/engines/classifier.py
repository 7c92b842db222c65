from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict

from .admission import AdmissionGate
from .base import Role
from .enqueuer import FrontierEnqueuer
from .extractor import RecordExtractor
from .pagination import first_item_marker, is_wrapped, next_page_url, page_number
from ..adapters.base import Page
from ..adapters.registry import AdapterRegistry
from ..export.base import RecordSink

logger = logging.getLogger(__name__)


class PageClassifier:
    """
    Page-type state machine. Decides, for each fetched page, what follow-up
    work to enqueue and when a listing chain ends.

    Between an ``admitted()`` check and its ``record_admission()`` there is no
    ``await``, so coroutines classifying other pages cannot interleave and
    overshoot the item limit.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        enqueuer: FrontierEnqueuer,
        gate: AdmissionGate,
        extractor: RecordExtractor,
        sink: RecordSink,
    ) -> None:
        self.registry = registry
        self.enqueuer = enqueuer
        self.gate = gate
        self.extractor = extractor
        self.sink = sink
        self.records_written = 0
        self._branches: Dict[Role, Callable[[Page], Awaitable[None]]] = {
            Role.LISTING_ROOT: self._listing_root,
            Role.LISTING_PAGE: self._listing_page,
            Role.ITEM_DETAIL: self._item_detail,
        }
        missing = set(Role) - set(self._branches)
        if missing:  # pragma: no cover - guards future roles
            raise RuntimeError(f"No classifier branch for roles: {sorted(r.value for r in missing)}")

    async def classify(self, page: Page) -> None:
        try:
            branch = self._branches[page.task.role]
        except KeyError:
            raise ValueError(f"Unknown page role {page.task.role!r} for {page.task.url}") from None
        await branch(page)

    # ---- Branches -----------------------------------------------------------

    async def _listing_root(self, page: Page) -> None:
        adapter = self.registry.match(page.task.url)
        links = adapter.item_links(page)
        if not links:
            logger.debug("No item links on listing root %s", page.url)
            return

        # No marker when the gate is already closed; the next page then ends the chain.
        stop_marker = first_item_marker(links) if self.gate.admitted() else None
        for link in links:
            if not self.gate.admitted():
                break
            if self.enqueuer.enqueue_item(link.url):
                self.gate.record_admission()

        self.enqueuer.enqueue_listing(next_page_url(page.task.url), stop_marker)

    async def _listing_page(self, page: Page) -> None:
        stop_marker = page.task.stop_marker
        adapter = self.registry.match(page.task.url)
        links = adapter.item_links(page)
        if not stop_marker or not links:
            logger.debug("End of listing at %s (marker=%r, links=%s)", page.url, stop_marker, len(links))
            return

        for link in links:
            if not self.gate.admitted():
                break
            if is_wrapped(link, stop_marker):
                logger.info("Listing wrapped around at %s (item %s); stopping pagination", page.url, stop_marker)
                return
            if self.enqueuer.enqueue_item(link.url):
                self.gate.record_admission()

        if page_number(page.task.url) is None:
            return
        if not self.gate.admitted():
            logger.debug("Item limit reached; not paginating past %s", page.url)
            return
        self.enqueuer.enqueue_listing(next_page_url(page.task.url), stop_marker)

    async def _item_detail(self, page: Page) -> None:
        adapter = self.registry.match(page.task.url)
        record = await self.extractor.extract(page, adapter)
        self.sink.write(record)
        self.records_written += 1
