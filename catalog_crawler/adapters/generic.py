from __future__ import annotations

from typing import List

from .base import ItemDetails, ItemLink, Page
from ..utils.parsing import (
    absolute_url,
    attr_of,
    is_product_like,
    jsonld_item_details,
    option_texts,
    text_of,
)


class MicrodataAdapter:
    """
    A generic, domain-agnostic adapter reading schema.org microdata.
    Acts as a safe fallback when no specific adapter matches a URL.
    Site adapters subclass it and override the selectors.
    """
    name = "microdata"
    domains: List[str] = []  # matches any

    item_link_selector = "a[itemprop=itemListElement][href]"
    item_id_attr = "itemid"
    name_selector = "[itemprop=name]"
    item_id_selector = "[itemprop=productID]"
    color_selector = "[itemprop=color]"
    price_selector = "[itemprop=price]"
    size_select_selector = "select[name*=size]"

    def matches(self, url: str) -> bool:  # pragma: no cover - trivial
        return True

    def is_item_url(self, url: str) -> bool:
        return is_product_like(url)

    def item_links(self, page: Page) -> List[ItemLink]:
        links: List[ItemLink] = []
        for anchor in page.document.select(self.item_link_selector):
            href = anchor.get("href")
            if not href:
                continue
            item_id = anchor.get(self.item_id_attr)
            links.append(ItemLink(url=absolute_url(href, page.url), item_id=item_id or None))
        return links

    def item_details(self, page: Page) -> ItemDetails:
        soup = page.document
        details = ItemDetails(
            name=text_of(soup, self.name_selector),
            item_id=attr_of(soup, self.item_id_selector, "content"),
            color=attr_of(soup, self.color_selector, "content"),
            sizes=option_texts(soup, self.size_select_selector),
            price=self._price(page),
        )
        if details.name is None and details.item_id is None:
            # No microdata at all; JSON-LD is the usual alternative.
            fallback = jsonld_item_details(soup)
            if fallback:
                fallback.sizes = details.sizes
                return fallback
        return details

    def _price(self, page: Page) -> str | None:
        return attr_of(page.document, self.price_selector, "content") or text_of(
            page.document, self.price_selector
        )
