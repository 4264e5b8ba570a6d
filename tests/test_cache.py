from pathlib import Path

from assess.engine.cache import (
    KIND_ATTEMPT,
    KIND_DRAFT,
    CacheKey,
    DurableCache,
)


def test_values_survive_reopen(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    key = CacheKey("asmt-1", "sum-pair", KIND_DRAFT)

    cache = DurableCache(path)
    cache.set(key, {"code": "print(1)"})

    reopened = DurableCache(path)
    assert reopened.get(key) == {"code": "print(1)"}
    assert reopened.keys() == [key]


def test_remove_and_default(tmp_path: Path) -> None:
    cache = DurableCache(tmp_path / "cache.json")
    key = CacheKey("asmt-1", "mcq-1", KIND_DRAFT)
    cache.set(key, 1)
    cache.remove(key)
    cache.remove(key)
    assert cache.get(key, "missing") == "missing"
    assert cache.keys() == []


def test_update_is_read_modify_write(tmp_path: Path) -> None:
    cache = DurableCache(tmp_path / "cache.json")
    key = CacheKey("asmt-1", "_attempt", KIND_ATTEMPT)

    assert cache.update(key, lambda current: (current or 0) + 1) == 1
    assert cache.update(key, lambda current: (current or 0) + 1) == 2
    assert cache.update(key, lambda current: None) is None
    assert cache.get(key) is None


def test_malformed_file_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")
    assert DurableCache(path).keys() == []

    path.write_text("[1, 2]", encoding="utf-8")
    assert DurableCache(path).keys() == []


def test_key_encoding() -> None:
    key = CacheKey("asmt-1", "sum-pair", KIND_DRAFT)
    assert CacheKey.decode(key.encode()) == key
    assert CacheKey.decode("no-separators") is None
