import asyncio
import json
import os
import signal
import sys

import pytest

from catalog_crawler.config import CrawlConfig
from catalog_crawler.engines.base import Role
from catalog_crawler.engines.catalog_engine import CatalogCrawlEngine
from catalog_crawler.errors import ExtensionContractError
from catalog_crawler.storage.checkpoint import KeyValueStore
from catalog_crawler.storage.frontier import RequestQueue

from fakes import LISTING, FixtureFetcher, MemorySink, item_html, item_url, listing_html, urls


def make_config(tmp_path, **overrides):
    values = dict(
        start_urls=[LISTING],
        storage_dir=str(tmp_path / "storage"),
        output_path=str(tmp_path / "out" / "items.jsonl"),
        request_delay=0,
        min_concurrency=1,
        max_concurrency=3,
        handle_page_timeout=5,
    )
    values.update(overrides)
    cfg = CrawlConfig(**values)
    cfg.validate()
    return cfg


def catalog(pages_of_ids):
    """Listing root + listing pages built from lists of ids, plus every item page."""
    pages = {}
    for n, ids in enumerate(pages_of_ids, start=1):
        url = LISTING if n == 1 else f"{LISTING}?page={n}"
        pages[url] = listing_html(ids)
        for i in ids:
            pages[item_url(i)] = item_html(i)
    return pages


def run(cfg, fetcher, sink=None, store=None):
    sink = sink if sink is not None else MemorySink()
    engine = CatalogCrawlEngine(cfg, fetcher=fetcher, sink=sink, store=store, handle_signals=False)
    engine.poll_interval = 0.01
    report = asyncio.run(engine.crawl())
    return engine, report, sink


def listing_tasks(cfg):
    queue = RequestQueue(os.path.join(cfg.storage_dir, "request_queue.sqlite"))
    try:
        return [t.url for t in queue.tasks(Role.LISTING_PAGE)]
    finally:
        queue.close()


def test_single_listing_with_three_items(tmp_path):
    pages = catalog([["1001", "1002", "1003"], []])
    cfg = make_config(tmp_path)
    fetcher = FixtureFetcher(pages=pages)

    _, report, sink = run(cfg, fetcher)

    assert urls(sink.records) == sorted(item_url(i) for i in ["1001", "1002", "1003"])
    assert listing_tasks(cfg) == [f"{LISTING}?page=2"]
    assert report.handled == 5
    assert report.failed == 0
    assert report.records == 3
    assert report.items_enqueued == 3
    assert not report.suspended
    assert fetcher.closed


def test_item_limit_bounds_everything_enqueued(tmp_path):
    pages = catalog([["1001", "1002", "1003", "1004"], ["2001", "2002"], ["3001"]])
    cfg = make_config(tmp_path, max_items=3)

    _, report, sink = run(cfg, FixtureFetcher(pages=pages))

    assert report.items_enqueued == 3
    assert len(sink.records) == 3
    assert f"{LISTING}?page=3" not in listing_tasks(cfg)


def test_wrapped_pagination_stops_without_duplicates(tmp_path):
    pages = catalog([["1001", "1002", "1003"], ["2001", "1001", "1002"], ["3001"]])
    cfg = make_config(tmp_path)
    fetcher = FixtureFetcher(pages=pages)

    _, report, sink = run(cfg, fetcher)

    assert urls(sink.records) == sorted(item_url(i) for i in ["1001", "1002", "1003", "2001"])
    assert f"{LISTING}?page=3" not in fetcher.fetched
    assert report.items_enqueued == 4


def test_resume_admits_only_the_remainder(tmp_path):
    pages = catalog([[str(1000 + i) for i in range(10)], []])
    cfg = make_config(tmp_path, max_items=5)
    store = KeyValueStore(tmp_path / "storage" / "key_value_store")
    store.set_value("detailsEnqueued", 2)

    _, report, sink = run(cfg, FixtureFetcher(pages=pages), store=store)

    assert len(sink.records) == 3
    assert report.items_enqueued == 5


def test_item_seed_is_counted(tmp_path):
    pages = {item_url("4242"): item_html("4242")}
    cfg = make_config(tmp_path, start_urls=[item_url("4242")], max_items=1)

    _, report, sink = run(cfg, FixtureFetcher(pages=pages))

    assert [r["itemId"] for r in sink.records] == ["4242"]
    assert report.items_enqueued == 1


def test_item_seeds_beyond_limit_are_skipped(tmp_path):
    pages = {item_url(i): item_html(i) for i in ("1", "2", "3")}
    cfg = make_config(tmp_path, start_urls=[item_url(i) for i in ("1", "2", "3")], max_items=2)

    _, report, sink = run(cfg, FixtureFetcher(pages=pages))

    assert len(sink.records) == 2


def test_extension_fields_are_merged(tmp_path):
    pages = catalog([["1001", "1002"], []])
    cfg = make_config(tmp_path, extend_output_function='lambda doc: {"brand": "X"}')

    _, _, sink = run(cfg, FixtureFetcher(pages=pages))

    assert len(sink.records) == 2
    for record in sink.records:
        assert record["brand"] == "X"
        assert {"url", "name", "itemId", "color", "sizes", "price", "#debug"} <= set(record)


def test_extension_returning_string_is_fatal(tmp_path):
    pages = catalog([["1001", "1002", "1003"], []])
    cfg = make_config(tmp_path, extend_output_function='lambda doc: "brand: X"', max_concurrency=1)
    sink = MemorySink()

    with pytest.raises(ExtensionContractError):
        run(cfg, FixtureFetcher(pages=pages), sink=sink)

    assert sink.records == []


def test_transient_failure_is_retried(tmp_path):
    pages = catalog([["1001"], []])
    cfg = make_config(tmp_path, max_request_retries=1)
    fetcher = FixtureFetcher(pages=pages, failures={item_url("1001"): 1})

    _, report, sink = run(cfg, fetcher)

    assert len(sink.records) == 1
    assert sink.records[0]["#debug"]["retryCount"] == 1
    assert fetcher.fetched.count(item_url("1001")) == 2
    assert report.failed == 0


def test_exhausted_retries_abandon_only_that_task(tmp_path):
    pages = catalog([["1001", "1002"], []])
    cfg = make_config(tmp_path, max_request_retries=1)
    fetcher = FixtureFetcher(pages=pages, failures={item_url("1001"): 5})

    _, report, sink = run(cfg, fetcher)

    assert urls(sink.records) == [item_url("1002")]
    assert fetcher.fetched.count(item_url("1001")) == 2
    assert report.failed == 1


def test_slow_page_times_out(tmp_path):
    class SlowFetcher(FixtureFetcher):
        async def fetch(self, task):
            if task.url == item_url("1001"):
                await asyncio.sleep(1)
            return await super().fetch(task)

    pages = catalog([["1001", "1002"], []])
    cfg = make_config(tmp_path, handle_page_timeout=0.05, max_request_retries=0)

    _, report, sink = run(cfg, SlowFetcher(pages=pages))

    assert urls(sink.records) == [item_url("1002")]
    assert report.failed == 1


def test_records_reach_the_jsonl_output(tmp_path):
    pages = catalog([["1001", "1002"], []])
    cfg = make_config(tmp_path)
    engine = CatalogCrawlEngine(cfg, fetcher=FixtureFetcher(pages=pages), handle_signals=False)
    engine.poll_interval = 0.01

    asyncio.run(engine.crawl())

    with open(cfg.output_path, "r", encoding="utf-8") as f:
        lines = [json.loads(line) for line in f if line.strip()]
    assert sorted(line["itemId"] for line in lines) == ["1001", "1002"]


def test_suspend_checkpoints_and_run_resumes(tmp_path):
    pages = catalog([["1001", "1002", "1003"], []])
    cfg = make_config(tmp_path, max_items=3, max_concurrency=1)
    holder = {}

    class SuspendingFetcher(FixtureFetcher):
        async def fetch(self, task):
            if task.url == item_url("1003"):
                holder["engine"].suspend()
            return await super().fetch(task)

    first_sink = MemorySink()
    engine = CatalogCrawlEngine(cfg, fetcher=SuspendingFetcher(pages=pages), sink=first_sink,
                                handle_signals=False)
    engine.poll_interval = 0.01
    holder["engine"] = engine
    report = asyncio.run(engine.crawl())

    assert report.suspended
    store = KeyValueStore(tmp_path / "storage" / "key_value_store")
    assert store.get_value("detailsEnqueued") == 3

    _, resumed, second_sink = run(cfg, FixtureFetcher(pages=pages))

    assert not resumed.suspended
    assert resumed.items_enqueued == 3
    seen = {r["url"] for r in first_sink.records + second_sink.records}
    assert seen == {item_url(i) for i in ["1001", "1002", "1003"]}


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_sigterm_flushes_counter(tmp_path):
    pages = catalog([["1001", "1002"], []])
    cfg = make_config(tmp_path, max_concurrency=1)

    class SignallingFetcher(FixtureFetcher):
        async def fetch(self, task):
            if task.url == item_url("1002"):
                os.kill(os.getpid(), signal.SIGTERM)
                await asyncio.sleep(0.05)
            return await super().fetch(task)

    engine = CatalogCrawlEngine(cfg, fetcher=SignallingFetcher(pages=pages), sink=MemorySink())
    engine.poll_interval = 0.01
    report = asyncio.run(engine.crawl())

    assert report.suspended
    assert KeyValueStore(tmp_path / "storage" / "key_value_store").get_value("detailsEnqueued") == 2


def test_frontier_failure_outside_page_handling_ends_the_run(tmp_path):
    class LockedQueue(RequestQueue):
        calls = 0

        def mark_handled(self, url):
            LockedQueue.calls += 1
            if LockedQueue.calls == 2:
                raise RuntimeError("database is locked")
            super().mark_handled(url)

    pages = catalog([["1001", "1002", "1003"], []])
    cfg = make_config(tmp_path)
    queue = LockedQueue(":memory:")
    engine = CatalogCrawlEngine(cfg, fetcher=FixtureFetcher(pages=pages), sink=MemorySink(),
                                queue=queue, handle_signals=False)
    engine.poll_interval = 0.01

    try:
        with pytest.raises(RuntimeError, match="database is locked"):
            asyncio.run(asyncio.wait_for(engine.crawl(), timeout=5))
    finally:
        queue.close()
