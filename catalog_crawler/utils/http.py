from __future__ import annotations

import itertools
from typing import Iterator, Optional, Tuple
from aiohttp import ClientSession, ClientTimeout
import aiohttp
import logging

from ..adapters.base import Page
from ..config import CrawlConfig
from ..engines.base import CrawlTask

logger = logging.getLogger(__name__)


async def fetch_text(
    session: ClientSession,
    url: str,
    *,
    timeout: float = 30.0,
    user_agent: Optional[str] = None,
    proxy: Optional[str] = None,
) -> Tuple[str, str, int]:
    """
    Fetch a URL and return (loaded_url, body_text, status).
    Raises on network errors and HTTP error statuses; retrying is the frontier's job.
    """
    headers = {}
    if user_agent:
        headers["User-Agent"] = user_agent

    async with session.get(url, headers=headers, proxy=proxy, timeout=ClientTimeout(total=timeout)) as resp:
        resp.raise_for_status()
        return str(resp.url), await resp.text(), resp.status


def create_session() -> ClientSession:
    """
    Create a shared aiohttp ClientSession.
    """
    # Note: caller is responsible for closing the session (await session.close()).
    connector = aiohttp.TCPConnector(limit=0)  # unlimited; concurrency managed by the worker pool
    return aiohttp.ClientSession(connector=connector)


class HttpFetcher:
    """Fetches pages over HTTP, rotating through the configured proxies."""

    def __init__(self, config: CrawlConfig) -> None:
        self.config = config
        self._session: Optional[ClientSession] = None
        self._proxies: Optional[Iterator[str]] = itertools.cycle(config.proxy_urls) if config.proxy_urls else None

    async def fetch(self, task: CrawlTask) -> Page:
        if self._session is None:
            self._session = create_session()
        proxy = next(self._proxies) if self._proxies else None
        loaded_url, html, status = await fetch_text(
            self._session,
            task.url,
            timeout=self.config.request_timeout,
            user_agent=self.config.user_agent,
            proxy=proxy,
        )
        logger.debug("Fetched %s (%s, %s bytes)", task.url, status, len(html))
        return Page(task=task, url=loaded_url, html=html, status=status)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
