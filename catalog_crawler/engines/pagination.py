"""
Listing pagination helpers.

A listing chain starts at a listing-root page. The identifier of the first item
on that page becomes the chain's stop marker and is handed, unchanged, to every
following listing page. Seeing the marker again means the catalog has wrapped
around and the chain ends.
"""
from __future__ import annotations

from typing import Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from ..adapters.base import ItemLink

PAGE_PARAM = "page"


def page_number(url: str) -> Optional[int]:
    """The ``page`` query parameter as an int, or None when absent or not numeric."""
    for key, value in parse_qsl(urlparse(url).query, keep_blank_values=True):
        if key == PAGE_PARAM:
            try:
                return int(value)
            except ValueError:
                return None
    return None


def next_page_url(url: str, default: int = 2) -> str:
    """Same URL with ``page`` incremented, or set to ``default`` when missing."""
    parsed = urlparse(url)
    current = page_number(url)
    page = current + 1 if current is not None else default
    params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != PAGE_PARAM]
    # page keeps its original position in the query string
    index = next(
        (i for i, (k, _) in enumerate(parse_qsl(parsed.query, keep_blank_values=True)) if k == PAGE_PARAM),
        len(params),
    )
    params.insert(index, (PAGE_PARAM, str(page)))
    return urlunparse(parsed._replace(query=urlencode(params), fragment=""))


def is_wrapped(link: ItemLink, marker: Optional[str]) -> bool:
    """True when ``link`` is the item that started the chain."""
    return marker is not None and link.item_id == marker


def first_item_marker(links: Sequence[ItemLink]) -> Optional[str]:
    """Identifier of the first item on a listing-root page, or None when it has none."""
    return links[0].item_id if links else None
