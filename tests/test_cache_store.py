from __future__ import annotations

import json
import threading

from backend.cache_store import CacheStore


def test_get_after_set_returns_value(cache) -> None:
    payload = {"symbol": "PTT.BK", "currentPrice": 33.25, "tags": ["a", "b"]}
    cache.set("quote_PTT.BK", payload)
    assert cache.get("quote_PTT.BK") == payload


def test_unseen_key_is_absent(cache) -> None:
    assert cache.get("quote_NOPE") is None


def test_expired_entry_is_removed_and_can_be_set_again(cache, clock) -> None:
    cache.set("quote_AAPL", {"p": 1})
    clock.advance(3599)
    assert cache.get("quote_AAPL") == {"p": 1}
    clock.advance(1)
    assert cache.get("quote_AAPL") is None
    assert len(cache) == 0

    cache.set("quote_AAPL", {"p": 2})
    assert cache.get("quote_AAPL") == {"p": 2}


def test_fx_keys_use_short_ttl(cache, clock) -> None:
    cache.set("fx_USDTHB", 35.1)
    cache.set("quote_PTT", {"p": 1})
    clock.advance(900)
    assert cache.get("fx_USDTHB") is None
    assert cache.get("quote_PTT") == {"p": 1}
    assert cache.ttl_for("fx_GBPTHB") == 900
    assert cache.ttl_for("history_PTT_90d_today") == 3600


def test_snapshot_written_and_reloaded(tmp_path, clock) -> None:
    path = tmp_path / "nested" / "cache.json"
    first = CacheStore(str(path), clock=clock)
    first.set("quote_PTT.BK", {"currentPrice": 33.0})
    first.set("fx_USDTHB", 36.2)

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["fx_USDTHB"]["value"] == 36.2
    assert on_disk["quote_PTT.BK"]["timestamp"] == clock.now

    second = CacheStore(str(path), clock=clock)
    assert second.get("quote_PTT.BK") == {"currentPrice": 33.0}
    assert second.get("fx_USDTHB") == 36.2


def test_expiry_removal_is_persisted(tmp_path, clock) -> None:
    path = tmp_path / "cache.json"
    store = CacheStore(str(path), clock=clock)
    store.set("fx_USDTHB", 35.0)
    clock.advance(901)
    assert store.get("fx_USDTHB") is None
    assert "fx_USDTHB" not in json.loads(path.read_text(encoding="utf-8"))


def test_unreadable_snapshot_is_ignored(tmp_path, clock) -> None:
    path = tmp_path / "cache.json"
    path.write_text("<html>not json</html>", encoding="utf-8")
    store = CacheStore(str(path), clock=clock)
    assert len(store) == 0
    store.set("quote_X", 1)
    assert store.get("quote_X") == 1


def test_malformed_entries_are_skipped(tmp_path, clock) -> None:
    path = tmp_path / "cache.json"
    path.write_text(
        json.dumps({
            "good": {"value": 1, "timestamp": clock.now},
            "no_ts": {"value": 2},
            "not_dict": 3,
        }),
        encoding="utf-8",
    )
    store = CacheStore(str(path), clock=clock)
    assert store.get("good") == 1
    assert store.get("no_ts") is None
    assert len(store) == 1


def test_disk_failure_never_fails_caller(tmp_path, clock) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    store = CacheStore(str(blocker / "cache.json"), clock=clock)

    store.set("quote_PTT", {"p": 1})
    assert store.get("quote_PTT") == {"p": 1}


def test_purge_expired(cache, clock) -> None:
    cache.set("fx_USDTHB", 35.0)
    cache.set("quote_PTT", {"p": 1})
    clock.advance(1000)
    assert cache.purge_expired() == 1
    assert cache.stats()["entries"] == 1
    assert cache.purge_expired() == 0


def test_concurrent_writers_keep_every_key(tmp_path) -> None:
    path = tmp_path / "cache.json"
    store = CacheStore(str(path))

    def writer(n: int) -> None:
        for i in range(20):
            store.set(f"quote_T{n}_{i}", {"n": n, "i": i})

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store) == 120
    assert store.get("quote_T3_7") == {"n": 3, "i": 7}
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert len(on_disk) == 120
