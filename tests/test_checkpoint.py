import pytest

from catalog_crawler.storage.checkpoint import KeyValueStore


def test_missing_key_returns_default(tmp_path):
    store = KeyValueStore(tmp_path / "kv")
    assert store.get_value("detailsEnqueued") is None
    assert store.get_value("detailsEnqueued", 0) == 0


def test_set_value_persists_across_instances(tmp_path):
    KeyValueStore(tmp_path).set_value("detailsEnqueued", 42)
    assert KeyValueStore(tmp_path).get_value("detailsEnqueued") == 42
    assert (tmp_path / "detailsEnqueued.json").read_text(encoding="utf-8") == "42"
    assert not list(tmp_path.glob("*.tmp"))


def test_rejects_path_like_keys(tmp_path):
    with pytest.raises(ValueError):
        KeyValueStore(tmp_path).set_value("../escape", 1)
