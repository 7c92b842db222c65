from __future__ import annotations

import logging
import os

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers that are only interesting when debugging the crawler itself.
_NOISY = ("aiohttp", "asyncio", "charset_normalizer")


def setup_logging(level: str | int | None = None) -> None:
    """Configure root logging. Falls back to CRAWLER_LOG_LEVEL, then INFO."""
    if level is None:
        level = os.getenv("CRAWLER_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=_FORMAT)
    if level > logging.DEBUG:
        for name in _NOISY:
            logging.getLogger(name).setLevel(logging.WARNING)
