from __future__ import annotations

import logging
from typing import List
from importlib import metadata

from .base import SiteAdapter
from .farfetch import FarfetchAdapter
from .generic import MicrodataAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """
    Registry for available adapters.
    Supports built-ins, config-defined dotted classes, and entry-point plugins.
    """
    def __init__(self) -> None:
        self._adapters: List[SiteAdapter] = [MicrodataAdapter(), FarfetchAdapter()]

    # ---- Introspection / Management ----

    def register(self, adapter: SiteAdapter) -> None:
        self._adapters.append(adapter)

    @property
    def adapters(self) -> List[SiteAdapter]:
        return list(self._adapters)

    def match(self, url: str) -> SiteAdapter:
        # Prefer specific adapters over generic fallback (kept first in list).
        # Later registrations win so plugins can override built-ins.
        for a in reversed(self._adapters[1:]):
            if a.matches(url):
                return a
        return self._adapters[0]  # generic

    # ---- Discovery ----

    def discover_entry_points(self, group: str = "catalog_crawler.adapters") -> int:
        """
        Discover third-party adapters installed as entry points.
        Returns count of newly registered adapters.
        """
        added = 0
        for ep in metadata.entry_points().select(group=group):
            try:
                adapter_cls = ep.load()
                self.register(adapter_cls())
            except Exception as exc:
                # Plugins are optional; a broken one must not stop the crawl.
                logger.warning("Failed to load adapter entry point %s: %r", ep.name, exc)
                continue
            added += 1
        return added
