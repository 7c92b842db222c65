from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List

from ..config import CrawlConfig
from ..errors import ConfigError, ExtensionContractError
from ..utils.logging import setup_logging
from ..utils.loader import load_symbol
from ..adapters.registry import AdapterRegistry
from ..engines.base import CrawlReport
from ..engines.catalog_engine import CatalogCrawlEngine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_EXTENSION_ERROR = 1
EXIT_CONFIG_ERROR = 2


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Catalog crawler CLI")
    p.add_argument("urls", nargs="*", help="Start URLs: listing pages or item pages (space-separated)")
    p.add_argument("--config", type=str, help="Path to config JSON (snake_case or actor-style input)", default=None)
    p.add_argument("--max-items", type=int, default=None, help="Maximum number of item pages to enqueue")
    p.add_argument("--min-concurrency", type=int, default=None, help="Min concurrency (default from config)")
    p.add_argument("--max-concurrency", type=int, default=None, help="Max concurrency (default from config)")
    p.add_argument("--max-retries", type=int, default=None, help="Retries per failed page before giving up")
    p.add_argument("--delay", type=float, default=None, help="Seconds to wait before processing each page")
    p.add_argument("--extend-output-function", type=str, default=None,
                   help="Python source or module:function returning extra fields for each item")
    p.add_argument("--proxy", action="append", default=None, help="Proxy URL (repeat to rotate through several)")
    p.add_argument("--exporter", type=str, default=None, help="Exporter dotted path (module:ClassName)")
    p.add_argument("--extra-adapters", type=str, default=None,
                   help="Comma-separated dotted paths for additional adapters")
    p.add_argument("--output", type=str, default=None, help="Output file path")
    p.add_argument("--storage-dir", type=str, default=None,
                   help="Directory holding the request queue and checkpoint; reuse it to resume")
    p.add_argument("--log-level", type=str, default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--serve", action="store_true", help="Run REST API server instead of CLI crawl")
    p.add_argument("--host", type=str, default="127.0.0.1", help="API host (when --serve)")
    p.add_argument("--port", type=int, default=8000, help="API port (when --serve)")
    return p


def _load_config(args: argparse.Namespace) -> CrawlConfig:
    if args.config:
        cfg = CrawlConfig.from_file(args.config)
    else:
        cfg = CrawlConfig.from_env()

    if args.urls:
        cfg.start_urls = list(args.urls)
    if args.max_items is not None:
        cfg.max_items = args.max_items
    if args.min_concurrency is not None:
        cfg.min_concurrency = args.min_concurrency
    if args.max_concurrency is not None:
        cfg.max_concurrency = args.max_concurrency
    if args.max_retries is not None:
        cfg.max_request_retries = args.max_retries
    if args.delay is not None:
        cfg.request_delay = args.delay
    if args.extend_output_function:
        cfg.extend_output_function = args.extend_output_function
    if args.proxy:
        cfg.proxy_urls = list(args.proxy)
    if args.exporter:
        cfg.exporter = args.exporter
    if args.extra_adapters:
        cfg.extra_adapters = [a.strip() for a in args.extra_adapters.split(",") if a.strip()]
    if args.output:
        cfg.output_path = args.output
    if args.storage_dir:
        cfg.storage_dir = args.storage_dir

    cfg.validate()
    return cfg


def build_registry(cfg: CrawlConfig) -> AdapterRegistry:
    registry = AdapterRegistry()
    # Allow runtime registration of additional adapters
    for dotted in cfg.extra_adapters:
        try:
            adapter_cls = load_symbol(dotted)
        except (ImportError, AttributeError, ValueError) as exc:
            raise ConfigError(f"Failed to load adapter {dotted}: {exc!r}") from exc
        registry.register(adapter_cls())
    return registry


def run_server(host: str, port: int) -> None:
    try:
        import uvicorn
    except ImportError as exc:
        raise SystemExit("--serve needs the api extra: pip install 'catalog-crawler[api]'") from exc
    uvicorn.run("catalog_crawler.apis.app:app", host=host, port=port)


def run_cli(argv: List[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.serve:
        run_server(args.host, args.port)
        return EXIT_OK

    try:
        cfg = _load_config(args)
        registry = build_registry(cfg)
    except (ValueError, OSError) as exc:
        # ConfigError is a ValueError, as is a malformed JSON config file.
        logger.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR

    if cfg.log_level and not args.log_level:
        logging.getLogger().setLevel(cfg.log_level.upper())
    logger.info("Input: %s", cfg.to_dict())

    async def _run() -> CrawlReport:
        engine = CatalogCrawlEngine(cfg, registry=registry)
        return await engine.crawl()

    try:
        report: CrawlReport = asyncio.run(_run())
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR
    except ExtensionContractError as exc:
        logger.error("Stopping: %s", exc)
        return EXIT_EXTENSION_ERROR

    logger.info("Handled: %s | Failed: %s | Records: %s | Output: %s",
                report.handled,
                report.failed,
                report.records,
                cfg.output_path)
    if report.suspended:
        logger.info("Run suspended; start again with --storage-dir %s to resume.", cfg.storage_dir)
    return EXIT_OK
