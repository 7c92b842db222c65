from catalog_crawler.engines.base import CrawlTask, Role
from catalog_crawler.storage.frontier import RequestQueue


def _task(url, role=Role.ITEM_DETAIL, marker=None):
    return CrawlTask(url=url, role=role, stop_marker=marker)


def test_add_deduplicates_by_url(tmp_path):
    queue = RequestQueue(tmp_path / "queue.sqlite")
    try:
        assert queue.add(_task("https://shop.example/a")) is True
        assert queue.add(_task("https://shop.example/a")) is False
        assert queue.add(_task("https://shop.example/a", Role.LISTING_ROOT), forefront=True) is False
        assert queue.pending_count() == 1
    finally:
        queue.close()


def test_forefront_tasks_are_served_first():
    queue = RequestQueue(":memory:")
    queue.add(_task("https://shop.example/list?page=2", Role.LISTING_PAGE, "1"))
    queue.add(_task("https://shop.example/list?page=3", Role.LISTING_PAGE, "1"))
    queue.add(_task("https://shop.example/item-1"), forefront=True)
    queue.add(_task("https://shop.example/item-2"), forefront=True)

    order = []
    while True:
        task = queue.fetch_next()
        if task is None:
            break
        order.append(task.url)
        queue.mark_handled(task.url)

    assert order == [
        "https://shop.example/item-2",
        "https://shop.example/item-1",
        "https://shop.example/list?page=2",
        "https://shop.example/list?page=3",
    ]
    assert queue.is_finished()


def test_task_round_trips_role_and_marker():
    queue = RequestQueue(":memory:")
    queue.add(_task("https://shop.example/list?page=2", Role.LISTING_PAGE, "999"))
    task = queue.fetch_next()
    assert task.role is Role.LISTING_PAGE
    assert task.stop_marker == "999"
    assert task.retry_count == 0


def test_reclaim_respects_retry_bound():
    queue = RequestQueue(":memory:", max_retries=1)
    queue.add(_task("https://shop.example/item-1"))

    task = queue.fetch_next()
    assert queue.reclaim(task.url, "timeout") is True
    retried = queue.fetch_next()
    assert retried.retry_count == 1
    assert retried.error_messages == ("timeout",)

    assert queue.reclaim(retried.url, "timeout again") is False
    assert queue.fetch_next() is None
    assert queue.is_finished()
    assert queue.stats()["failed"] == 1


def test_in_flight_not_finished():
    queue = RequestQueue(":memory:")
    queue.add(_task("https://shop.example/item-1"))
    queue.fetch_next()
    assert queue.pending_count() == 0
    assert queue.in_progress_count() == 1
    assert not queue.is_finished()


def test_reopen_requeues_interrupted_tasks(tmp_path):
    path = tmp_path / "queue.sqlite"
    queue = RequestQueue(path)
    queue.add(_task("https://shop.example/item-1"))
    queue.add(_task("https://shop.example/item-2"))
    queue.fetch_next()
    queue.close()

    reopened = RequestQueue(path)
    try:
        assert reopened.pending_count() == 2
        assert reopened.in_progress_count() == 0
        # Known URLs stay known across restarts.
        assert reopened.add(_task("https://shop.example/item-1")) is False
    finally:
        reopened.close()


def test_tasks_filters_by_role():
    queue = RequestQueue(":memory:")
    queue.add(_task("https://shop.example/list", Role.LISTING_ROOT))
    queue.add(_task("https://shop.example/item-1"), forefront=True)
    assert [t.url for t in queue.tasks(Role.LISTING_ROOT)] == ["https://shop.example/list"]
    assert len(queue.tasks()) == 2
