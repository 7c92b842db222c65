from __future__ import annotations

from typing import Iterable, List, Optional, Any
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup
import json

from ..adapters.base import ItemDetails


def normalize_url(url: str) -> str:
    """
    Normalize URL by removing fragments, resolving dot segments, etc.
    """
    parts = list(urlparse(url))
    parts[5] = ""  # strip fragment
    return urlunparse(parts)


def absolute_url(href: str, base_url: str) -> str:
    return normalize_url(urljoin(base_url, href))


def is_product_like(url: str) -> bool:
    """
    A simple, extensible heuristic to detect product pages.
    Upgrade by adding regexes or ML classifiers later.
    """
    path = urlparse(url).path.lower()
    return any(p in path for p in ("/product/", "/products/", "/p/", "/item/", "/sku/"))


def text_of(soup: BeautifulSoup, selector: str) -> Optional[str]:
    """Concatenated, stripped text of every node matching ``selector``."""
    nodes = soup.select(selector)
    if not nodes:
        return None
    text = "".join(node.get_text() for node in nodes).strip()
    return text or None


def attr_of(soup: BeautifulSoup, selector: str, attr: str) -> Optional[str]:
    node = soup.select_one(selector)
    if node is None:
        return None
    value = node.get(attr)
    return value.strip() if isinstance(value, str) else None


def option_texts(soup: BeautifulSoup, selector: str, *, skip_first: bool = True) -> List[str]:
    """
    Text of every <option> under ``selector``. The first option of a size picker
    is a prompt ("Select a size"), so it is skipped by default.
    """
    options = soup.select(f"{selector} option")
    if skip_first:
        options = options[1:]
    return [op.get_text().strip() for op in options]


def jsonld_item_details(soup: BeautifulSoup) -> Optional[ItemDetails]:
    """Extract item details from the first JSON-LD Product block, if any."""

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        payload = script.string or ""
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            continue

        for item in _iter_jsonld_items(data):
            details = _details_from_jsonld(item)
            if details:
                return details
    return None


def _iter_jsonld_items(data: Any) -> Iterable[Any]:
    if isinstance(data, list):
        for item in data:
            yield from _iter_jsonld_items(item)
    elif isinstance(data, dict):
        if "@graph" in data:
            yield from _iter_jsonld_items(data["@graph"])
        else:
            yield data


def _details_from_jsonld(item: Any) -> ItemDetails | None:
    if not isinstance(item, dict):
        return None

    type_field = item.get("@type")
    if isinstance(type_field, list):
        is_product = any(t.lower() == "product" for t in type_field if isinstance(t, str))
    elif isinstance(type_field, str):
        is_product = type_field.lower() == "product"
    else:
        is_product = False

    if not is_product:
        return None

    offers = item.get("offers", {}) if isinstance(item.get("offers"), dict) else {}
    if isinstance(item.get("offers"), list) and item["offers"]:
        offers = item["offers"][0]

    price = None
    if isinstance(offers, dict):
        price = offers.get("price") or offers.get("lowPrice")

    item_id = item.get("productID") or item.get("sku")
    return ItemDetails(
        name=item.get("name"),
        item_id=str(item_id) if item_id is not None else None,
        color=item.get("color"),
        price=str(price) if price is not None else None,
    )
