from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ..config import CrawlConfig
from ..errors import ConfigError, ExtensionContractError
from ..engines.base import CrawlReport
from ..engines.catalog_engine import CatalogCrawlEngine
from ..ui.cli import build_registry
from ..version import __version__

logger = logging.getLogger(__name__)

app = FastAPI(title="catalog_crawler API", version=__version__)


class CrawlRequest(BaseModel):
    start_urls: List[str]
    max_items: Optional[int] = None
    max_concurrency: Optional[int] = None
    extend_output_function: Optional[str] = None
    output_path: Optional[str] = None
    storage_dir: Optional[str] = None


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/crawl")
async def crawl(req: CrawlRequest) -> Dict[str, Any]:
    cfg = CrawlConfig.from_env()
    cfg.start_urls = req.start_urls or cfg.start_urls
    if req.max_items is not None:
        cfg.max_items = req.max_items
    if req.max_concurrency is not None:
        cfg.max_concurrency = req.max_concurrency
        cfg.min_concurrency = min(cfg.min_concurrency, req.max_concurrency)
    if req.extend_output_function:
        cfg.extend_output_function = req.extend_output_function
    if req.output_path:
        cfg.output_path = req.output_path
    if req.storage_dir:
        cfg.storage_dir = req.storage_dir

    try:
        cfg.validate()
        logger.info("API crawl requested for %s start URL(s)", len(cfg.start_urls))
        # The server's own event loop handles signals; the engine must not take them over.
        engine = CatalogCrawlEngine(cfg, registry=build_registry(cfg), handle_signals=False)
        report: CrawlReport = await engine.crawl()
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ExtensionContractError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {**report.to_dict(), "output_path": cfg.output_path}
