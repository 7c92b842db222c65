from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Set

from .admission import AdmissionGate
from .base import CrawlEngine, CrawlReport, CrawlTask
from .classifier import PageClassifier
from .enqueuer import FrontierEnqueuer
from .extractor import RecordExtractor
from ..adapters.base import Page
from ..adapters.registry import AdapterRegistry
from ..config import CrawlConfig
from ..errors import ExtensionContractError
from ..export.base import RecordSink
from ..storage.checkpoint import KeyValueStore
from ..storage.frontier import RequestQueue
from ..utils.loader import load_extension, load_symbol
from ..utils.parsing import normalize_url

logger = logging.getLogger(__name__)

# Signals announcing that the process is about to be torn down (e.g. migrated).
SUSPEND_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class Fetcher(Protocol):
    async def fetch(self, task: CrawlTask) -> Page:
        ...

    async def close(self) -> None:
        ...


class CatalogCrawlEngine(CrawlEngine):
    """
    Bounded, resumable catalog crawler.
    - The frontier owns queueing, deduplication and retry bookkeeping.
    - The classifier owns what each page leads to.
    - A small worker pool, sized between min and max concurrency, drives both.
    """

    poll_interval = 0.1

    def __init__(
        self,
        config: CrawlConfig,
        registry: AdapterRegistry | None = None,
        *,
        fetcher: Optional[Fetcher] = None,
        sink: Optional[RecordSink] = None,
        queue: Optional[RequestQueue] = None,
        store: Optional[KeyValueStore] = None,
        handle_signals: bool = True,
    ) -> None:
        self.config = config
        self.registry = registry or AdapterRegistry()
        # Try entry-point discovery; broken plugins are logged and skipped.
        self.registry.discover_entry_points()
        self.fetcher = fetcher
        self.sink = sink
        self.queue = queue
        self.store = store
        self.handle_signals = handle_signals
        self.gate: Optional[AdmissionGate] = None
        self.report = CrawlReport()
        self._stop: Optional[asyncio.Event] = None
        self._workers: Set[asyncio.Task] = set()
        self._fatal: Optional[BaseException] = None
        self._previous_handlers: Dict[int, Any] = {}

    async def crawl(self) -> CrawlReport:
        cfg = self.config
        # Configuration problems surface before anything is queued or fetched.
        extension = load_extension(cfg.extend_output_function)

        storage = Path(cfg.storage_dir)
        owns_queue = self.queue is None
        if self.queue is None:
            self.queue = RequestQueue(storage / "request_queue.sqlite", max_retries=cfg.max_request_retries)
        if self.store is None:
            self.store = KeyValueStore(storage / "key_value_store")
        if self.fetcher is None:
            self.fetcher = load_symbol(cfg.fetcher)(cfg)
        if self.sink is None:
            self.sink = load_symbol(cfg.exporter)()

        self.gate = AdmissionGate.restore(self.store, cfg.max_items)
        enqueuer = FrontierEnqueuer(self.queue)
        classifier = PageClassifier(self.registry, enqueuer, self.gate, RecordExtractor(extension), self.sink)

        for url in cfg.start_urls:
            if not self.gate.admitted():
                break
            url = normalize_url(url.strip())
            enqueuer.enqueue_seed(url, self.registry.match(url), self.gate)

        self._stop = asyncio.Event()
        self.sink.open(cfg.output_path)
        if self.handle_signals:
            self._install_signal_handlers()
        try:
            await self._run_pool(classifier)
        finally:
            if self.handle_signals:
                self._remove_signal_handlers()
            self.sink.close()
            await self.fetcher.close()
            self.report.records = classifier.records_written
            self.report.items_enqueued = self.gate.items_enqueued
            self.report.pending = self.queue.pending_count() + self.queue.in_progress_count()
            if owns_queue:
                self.queue.close()

        if self._fatal is not None:
            raise self._fatal

        logger.info(
            "Crawler %s. Handled: %s | Failed: %s | Records: %s | Items enqueued: %s",
            "suspended" if self.report.suspended else "finished",
            self.report.handled,
            self.report.failed,
            self.report.records,
            self.report.items_enqueued,
        )
        return self.report

    def suspend(self) -> None:
        """
        Flush the admission counter to the checkpoint store, then stop the pool.
        Safe to call from a signal handler; the flush completes before it returns.
        """
        if self.gate is not None and self.store is not None:
            self.gate.persist(self.store)
        self.report.suspended = True
        self._request_stop()

    # ---- Worker pool --------------------------------------------------------

    async def _run_pool(self, classifier: PageClassifier) -> None:
        cfg = self.config
        queue = self.queue
        try:
            while not self._stop.is_set():
                done = {w for w in self._workers if w.done()}
                self._workers -= done
                crashed = _first_exception(done)
                if crashed is not None:
                    logger.error("Worker crashed, stopping the crawl: %r", crashed)
                    self._fatal = self._fatal or crashed
                    break
                if not self._workers and queue.is_finished():
                    break
                desired = min(cfg.max_concurrency, max(cfg.min_concurrency, queue.pending_count()))
                while len(self._workers) < desired:
                    self._workers.add(asyncio.create_task(self._worker(classifier)))
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            for w in self._workers:
                w.cancel()
            results = await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = set()
            for result in results:
                if isinstance(result, Exception) and self._fatal is None:
                    logger.error("Worker crashed while stopping: %r", result)
                    self._fatal = result

    async def _worker(self, classifier: PageClassifier) -> None:
        queue = self.queue
        while not self._stop.is_set():
            task = queue.fetch_next()
            if task is None:
                if queue.is_finished():
                    return
                # Other workers are still in flight and may enqueue more.
                await asyncio.sleep(self.poll_interval)
                continue
            await self._process(task, classifier)

    async def _process(self, task: CrawlTask, classifier: PageClassifier) -> None:
        queue = self.queue
        try:
            await asyncio.wait_for(self._handle(task, classifier), timeout=self.config.handle_page_timeout)
        except ExtensionContractError as exc:
            logger.error("extend_output_function has to return a mapping! %s", exc)
            self._fatal = exc
            self._request_stop()
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            if queue.reclaim(task.url, error):
                logger.warning("Request %s failed and will be retried: %s", task.url, error)
            else:
                self.report.failed += 1
                logger.error(
                    "Request %s failed %s times, giving up: %s",
                    task.url,
                    self.config.max_request_retries + 1,
                    error,
                )
        else:
            queue.mark_handled(task.url)
            self.report.handled += 1

    async def _handle(self, task: CrawlTask, classifier: PageClassifier) -> None:
        if self.config.request_delay:
            await asyncio.sleep(self.config.request_delay)
        logger.info("Processing %s (%s)...", task.url, task.role.value)
        page = await self.fetcher.fetch(task)
        await classifier.classify(page)

    def _request_stop(self) -> None:
        if self._stop is not None:
            self._stop.set()
        current = asyncio.current_task() if _in_loop() else None
        for w in self._workers:
            if w is not current:
                w.cancel()

    # ---- Signals ------------------------------------------------------------

    def _on_signal(self, signum: int) -> None:
        logger.warning("Received %s; checkpointing and stopping", signal.Signals(signum).name)
        self.suspend()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in SUSPEND_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except NotImplementedError:
                # Event loops without signal support (Windows): plain handler, hop back onto the loop.
                try:
                    self._previous_handlers[sig] = signal.signal(
                        sig, lambda signum, _frame: loop.call_soon_threadsafe(self._on_signal, signum)
                    )
                except ValueError:
                    logger.debug("Cannot install handler for %s outside the main thread", sig)
            except (RuntimeError, ValueError):
                logger.debug("Cannot install handler for %s outside the main thread", sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in SUSPEND_SIGNALS:
            if sig in self._previous_handlers:
                signal.signal(sig, self._previous_handlers.pop(sig))
                continue
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


def _in_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _first_exception(tasks: Set[asyncio.Task]) -> Optional[BaseException]:
    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            return task.exception()
    return None
