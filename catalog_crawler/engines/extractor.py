from __future__ import annotations

import hashlib
import inspect
import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from bs4 import BeautifulSoup

from ..adapters.base import Page, SiteAdapter
from ..errors import ExtensionContractError

logger = logging.getLogger(__name__)

# (document) -> mapping, or an awaitable resolving to one.
Extension = Callable[[BeautifulSoup], Any]


def request_debug_info(page: Page) -> Dict[str, Any]:
    task = page.task
    return {
        "requestId": hashlib.sha256(task.url.encode("utf-8")).hexdigest()[:15],
        "url": task.url,
        "loadedUrl": page.url,
        "method": "GET",
        "retryCount": task.retry_count,
        "errorMessages": list(task.error_messages),
        "statusCode": page.status,
    }


class RecordExtractor:
    """
    Maps an item-detail page to an output record, merged with the user
    extension's fields when one is configured.
    """

    def __init__(self, extension: Optional[Extension] = None) -> None:
        self.extension = extension

    async def extract(self, page: Page, adapter: SiteAdapter) -> Dict[str, Any]:
        record: Dict[str, Any] = {"url": page.task.url}
        record.update(adapter.item_details(page).to_dict())
        record["#debug"] = request_debug_info(page)

        if self.extension is not None:
            user_result = self.extension(page.document)
            if inspect.isawaitable(user_result):
                user_result = await user_result
            if not isinstance(user_result, Mapping):
                raise ExtensionContractError(
                    f"extend_output_function has to return a mapping, got {type(user_result).__name__} "
                    f"for {page.task.url}"
                )
            record.update(user_result)

        return record
