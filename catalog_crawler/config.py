from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any
from pathlib import Path
import os
import json

from .errors import ConfigError
from .version import __version__, CONFIG_SCHEMA_VERSION


@dataclass
class CrawlConfig:
    """
    Canonical configuration object passed throughout the system.
    Keep it dataclass-only (no heavy deps) to stay upgrade-friendly.
    """
    schema_version: int = CONFIG_SCHEMA_VERSION
    start_urls: List[str] = field(default_factory=list)
    # None means "no limit" on admitted item-detail pages.
    max_items: Optional[int] = None
    min_concurrency: int = 2
    max_concurrency: int = 5
    max_request_retries: int = 1
    handle_page_timeout: float = 60.0
    request_timeout: float = 30.0
    # Fixed pause before each page is processed, in seconds.
    request_delay: float = 1.0
    user_agent: str = f"catalog_crawler/{__version__}"
    proxy_urls: List[str] = field(default_factory=list)
    # Either "module:function" or Python source of a page -> mapping function.
    extend_output_function: Optional[str] = None
    # Extra adapters (dotted class paths) to register at startup
    extra_adapters: List[str] = field(default_factory=list)
    # Dotted paths for fetcher/exporter to allow runtime swapping without code changes.
    fetcher: str = "catalog_crawler.utils.http:HttpFetcher"
    exporter: str = "catalog_crawler.export.jsonl_exporter:JSONLinesExporter"
    # Where to append result records
    output_path: str = "output/items.jsonl"
    # Frontier database and checkpoint files live here; reuse it to resume a run.
    storage_dir: str = "storage"
    log_level: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    # ---------- Loaders ----------

    @classmethod
    def from_env(cls) -> "CrawlConfig":
        """
        Build config from environment variables (all optional).
        """
        urls = os.getenv("CRAWLER_START_URLS", "")
        start_urls = [u.strip() for u in urls.split(",") if u.strip()]

        def _get(name: str, default: str) -> str:
            return os.getenv(name, default)

        max_items = _get("CRAWLER_MAX_ITEMS", "").strip()

        return cls(
            start_urls=start_urls,
            max_items=int(max_items) if max_items else None,
            min_concurrency=int(_get("CRAWLER_MIN_CONCURRENCY", "2")),
            max_concurrency=int(_get("CRAWLER_MAX_CONCURRENCY", "5")),
            max_request_retries=int(_get("CRAWLER_MAX_REQUEST_RETRIES", "1")),
            handle_page_timeout=float(_get("CRAWLER_HANDLE_PAGE_TIMEOUT", "60.0")),
            request_timeout=float(_get("CRAWLER_REQUEST_TIMEOUT", "30.0")),
            request_delay=float(_get("CRAWLER_REQUEST_DELAY", "1.0")),
            user_agent=_get("CRAWLER_USER_AGENT", f"catalog_crawler/{__version__}"),
            proxy_urls=[p.strip() for p in _get("CRAWLER_PROXY_URLS", "").split(",") if p.strip()],
            extend_output_function=_get("CRAWLER_EXTEND_OUTPUT_FUNCTION", "") or None,
            extra_adapters=[a.strip() for a in _get("CRAWLER_EXTRA_ADAPTERS", "").split(",") if a.strip()],
            fetcher=_get("CRAWLER_FETCHER", "catalog_crawler.utils.http:HttpFetcher"),
            exporter=_get("CRAWLER_EXPORTER", "catalog_crawler.export.jsonl_exporter:JSONLinesExporter"),
            output_path=_get("CRAWLER_OUTPUT_PATH", "output/items.jsonl"),
            storage_dir=_get("CRAWLER_STORAGE_DIR", "storage"),
            log_level=os.getenv("CRAWLER_LOG_LEVEL"),
        )

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> "CrawlConfig":
        """
        Load configuration from a JSON file. Supports schema migration, including
        actor-style input files (startUrls / maxItems / extendOutputFunction).
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object.")
        data = migrate_config(data)
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")
        return cls(**data)

    # ---------- Validation ----------

    def validate(self) -> None:
        if not self.start_urls:
            raise ConfigError("Invalid input, it needs to contain at least one url in 'start_urls'.")
        for url in self.start_urls:
            if not isinstance(url, str) or not url.strip():
                raise ConfigError(f"start_urls entries must be non-empty strings, got {url!r}")
        if self.max_items is not None and self.max_items < 0:
            raise ConfigError("max_items must be >= 0")
        if self.min_concurrency <= 0 or self.max_concurrency <= 0:
            raise ConfigError("concurrency limits must be > 0")
        if self.min_concurrency > self.max_concurrency:
            raise ConfigError("min_concurrency cannot exceed max_concurrency")
        if self.max_request_retries < 0:
            raise ConfigError("max_request_retries must be >= 0")
        if self.request_delay < 0:
            raise ConfigError("request_delay must be >= 0")
        if self.handle_page_timeout <= 0 or self.request_timeout <= 0:
            raise ConfigError("timeouts must be > 0")
        # Validate output path parent exists or is creatable
        parent = Path(self.output_path).parent
        parent.mkdir(parents=True, exist_ok=True)


# Actor-style input keys and their snake_case counterparts.
_LEGACY_KEYS = {
    "startUrls": "start_urls",
    "maxItems": "max_items",
    "extendOutputFunction": "extend_output_function",
    "maxConcurrency": "max_concurrency",
    "minConcurrency": "min_concurrency",
    "maxRequestRetries": "max_request_retries",
}


def migrate_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Migrate config dict to the latest schema version.
    Keep this pure and additive. Add migrations here as you bump schema.
    """
    raw = dict(raw)
    schema = raw.get("schema_version", 0 if any(k in raw for k in _LEGACY_KEYS) else CONFIG_SCHEMA_VERSION)

    if schema == 0:
        for old, new in _LEGACY_KEYS.items():
            if old in raw:
                raw.setdefault(new, raw.pop(old))
        proxy = raw.pop("proxyConfiguration", None)
        if isinstance(proxy, dict) and proxy.get("proxyUrls"):
            raw.setdefault("proxy_urls", list(proxy["proxyUrls"]))
        raw["schema_version"] = 1

    # startUrls entries may be request objects: {"url": "..."}
    if "start_urls" in raw and isinstance(raw["start_urls"], list):
        raw["start_urls"] = [u.get("url", "") if isinstance(u, dict) else u for u in raw["start_urls"]]

    # An empty or whitespace-only function body means "no extension".
    ext = raw.get("extend_output_function")
    if isinstance(ext, str) and not ext.strip():
        raw["extend_output_function"] = None

    # Ensure a schema_version is present
    raw.setdefault("schema_version", CONFIG_SCHEMA_VERSION)
    return raw
