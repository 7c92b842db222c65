from __future__ import annotations

import re
from urllib.parse import urlparse

from .base import Page
from .generic import MicrodataAdapter
from ..utils.parsing import text_of

# Item pages end in "<numeric id>.aspx", e.g. /shopping/women/dress-item-12345678.aspx
_ITEM_PATH = re.compile(r"\d+\.aspx")

_PRODUCT_INFO = '[aria-label="[Product information]"]'


class FarfetchAdapter(MicrodataAdapter):
    """Adapter for farfetch.com listing and item pages."""

    name = "farfetch"
    domains = ["farfetch.com", "www.farfetch.com"]

    name_selector = "span[itemprop=name]"
    size_select_selector = f"{_PRODUCT_INFO} select"

    def matches(self, url: str) -> bool:
        netloc = urlparse(url).netloc.lower()
        return netloc == "farfetch.com" or netloc.endswith(".farfetch.com")

    def is_item_url(self, url: str) -> bool:
        return bool(_ITEM_PATH.search(urlparse(url).path))

    def _price(self, page: Page) -> str | None:
        return text_of(page.document, f'{_PRODUCT_INFO} [data-tstid="priceInfo-original"]')
