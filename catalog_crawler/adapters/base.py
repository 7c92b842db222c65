from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from bs4 import BeautifulSoup

from ..engines.base import CrawlTask


@dataclass
class Page:
    """A fetched page: the request that produced it plus its parsed document."""

    task: CrawlTask
    url: str  # loaded URL, after redirects
    html: str
    status: int = 200
    document: BeautifulSoup = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.document = BeautifulSoup(self.html, "html.parser")


@dataclass(frozen=True)
class ItemLink:
    url: str
    item_id: Optional[str] = None


@dataclass
class ItemDetails:
    """Fields scraped from an item-detail page."""

    name: Optional[str] = None
    item_id: Optional[str] = None
    color: Optional[str] = None
    sizes: List[str] = field(default_factory=list)
    price: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "itemId": self.item_id,
            "color": self.color,
            "sizes": list(self.sizes),
            "price": self.price,
        }


class SiteAdapter(Protocol):
    """
    Interface for site-specific parsing logic.
    Keep this small and stable so adapters rarely break across upgrades.
    """

    name: str
    domains: List[str]  # e.g. ["example.com", "www.example.com"]

    def matches(self, url: str) -> bool:
        """Return True if this adapter should handle the given URL."""
        ...

    def is_item_url(self, url: str) -> bool:
        """Return True if the URL already points at a single item-detail page."""
        ...

    def item_links(self, page: Page) -> List[ItemLink]:
        """
        Ordered item links found on a listing page. Empty when the listing is
        empty or the markup did not match.
        Engine owns the HTTP, queueing, and pagination control.
        """
        ...

    def item_details(self, page: Page) -> ItemDetails:
        """Extract the item fields from an item-detail page."""
        ...
