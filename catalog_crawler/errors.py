from __future__ import annotations


class CrawlerError(Exception):
    """Base class for errors raised by the crawl controller."""


class ConfigError(CrawlerError, ValueError):
    """Invalid startup configuration. Raised before any crawling begins."""


class ExtensionContractError(CrawlerError):
    """
    The user extension returned something other than a mapping.
    Fatal for the whole run: merging nothing would silently produce incomplete records.
    """
