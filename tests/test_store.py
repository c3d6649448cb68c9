"""
Tests for the file-backed history store.

Timers are given a long delay and flushed explicitly with flush_now(), except
for the one test that checks the timer really fires.
"""
from __future__ import annotations

import json
import logging
import threading
import time

import pytest

from multisearch.models import HistoryEntry
from multisearch.store import HistoryStore, StoreStartupError


@pytest.fixture
def store(tmp_path):
    s = HistoryStore(tmp_path / "data" / "history.json", flush_delay=60)
    s.ensure_exists()
    yield s
    s.flush_now()


def _entry(q: str, engine: str = "google", ts: int = 1) -> HistoryEntry:
    return HistoryEntry(q=q, engine=engine, ts=ts)


class TestStoreLoading:
    """Tests for seed creation and lazy loading."""

    def test_seed_file_created(self, tmp_path):
        path = tmp_path / "nested" / "history.json"
        HistoryStore(path).ensure_exists()
        assert json.loads(path.read_text()) == {"version": 1, "users": {}}

    def test_existing_file_not_overwritten(self, tmp_path):
        path = tmp_path / "history.json"
        doc = {"version": 1, "users": {"bob": [{"q": "cats", "engine": "bing", "ts": 5}]}}
        path.write_text(json.dumps(doc))
        store = HistoryStore(path)
        store.ensure_exists()
        assert store.entries("bob") == [_entry("cats", "bing", 5)]

    def test_seed_failure_is_fatal(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(StoreStartupError):
            HistoryStore(blocker / "history.json").ensure_exists()

    def test_invalid_json_is_fatal(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("{not json")
        with pytest.raises(StoreStartupError):
            HistoryStore(path).load()

    def test_non_object_root_is_fatal(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("[]")
        with pytest.raises(StoreStartupError):
            HistoryStore(path).load()

    def test_missing_file_is_fatal(self, tmp_path):
        with pytest.raises(StoreStartupError):
            HistoryStore(tmp_path / "absent.json").load()

    def test_missing_users_repaired(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text(json.dumps({"version": 1}))
        assert HistoryStore(path).load()["users"] == {}

    def test_malformed_entries_skipped(self, tmp_path):
        path = tmp_path / "history.json"
        doc = {"version": 1, "users": {"bob": [None, {"engine": "x"}, {"q": "ok", "engine": "g", "ts": 3}]}}
        path.write_text(json.dumps(doc))
        assert HistoryStore(path).entries("bob") == [_entry("ok", "g", 3)]

    def test_file_read_only_once(self, store):
        store.load()
        store.path.write_text(json.dumps({"version": 1, "users": {"bob": [{"q": "late", "ts": 1}]}}))
        assert store.entries("bob") == []


class TestStoreMutation:
    """Tests for mutate() and snapshot()."""

    def test_mutate_replaces_user_list(self, store):
        with store.mutate("bob") as entries:
            entries.append(_entry("a"))
        assert store.entries("bob") == [_entry("a")]

    def test_failed_mutation_discarded(self, store):
        with pytest.raises(RuntimeError):
            with store.mutate("bob") as entries:
                entries.append(_entry("a"))
                raise RuntimeError("boom")
        assert store.entries("bob") == []

    def test_users_isolated(self, store):
        with store.mutate("alice") as entries:
            entries.append(_entry("a"))
        with store.mutate("bob") as entries:
            entries.append(_entry("b"))
        assert store.entries("alice") == [_entry("a")]
        assert store.entries("bob") == [_entry("b")]

    def test_entries_returns_copy(self, store):
        with store.mutate("bob") as entries:
            entries.append(_entry("a"))
        store.entries("bob").clear()
        assert len(store.entries("bob")) == 1


class TestStoreFlush:
    """Tests for debounced and forced flushes."""

    def test_schedule_is_debounced(self, store):
        store.load()
        store.schedule_flush()
        first = store._timer
        store.schedule_flush()
        store.schedule_flush()
        assert store.flush_pending
        assert store._timer is first

    def test_flush_now_writes_pretty_json(self, store):
        with store.mutate("bob") as entries:
            entries.append(_entry("cats", "duck", 7))
        store.schedule_flush()
        assert store.flush_now() is True
        assert not store.flush_pending

        text = store.path.read_text()
        assert '\n  "users"' in text
        assert json.loads(text) == {
            "version": 1,
            "users": {"bob": [{"q": "cats", "engine": "duck", "ts": 7}]},
        }
        assert not store.path.with_name("history.json.tmp").exists()

    def test_timer_writes_after_delay(self, tmp_path):
        store = HistoryStore(tmp_path / "history.json", flush_delay=0.01)
        store.ensure_exists()
        with store.mutate("bob") as entries:
            entries.append(_entry("dogs"))
        store.schedule_flush()

        deadline = time.time() + 5
        while time.time() < deadline:
            if "dogs" in store.path.read_text():
                break
            time.sleep(0.02)
        assert json.loads(store.path.read_text())["users"]["bob"][0]["q"] == "dogs"
        assert not store.flush_pending

    def test_write_failure_logged_not_raised(self, store, tmp_path, caplog):
        with store.mutate("bob") as entries:
            entries.append(_entry("a"))
        store.path = tmp_path / "gone" / "history.json"

        with caplog.at_level(logging.ERROR, logger="multisearch.store"):
            assert store.flush_now() is False
        assert "Failed to write history store" in caplog.text
        assert store.entries("bob") == [_entry("a")]

    def test_flush_before_load_is_noop(self, tmp_path):
        store = HistoryStore(tmp_path / "history.json")
        assert store.flush_now() is True
        assert not store.path.exists()

    def test_flushes_land_in_snapshot_order(self, tmp_path, monkeypatch):
        store = HistoryStore(tmp_path / "history.json", flush_delay=0.01)
        store.ensure_exists()
        with store.mutate("bob") as entries:
            entries.append(_entry("old"))

        taken = threading.Event()
        release = threading.Event()
        original = store.snapshot

        def paused_snapshot():
            doc = original()
            if not taken.is_set():
                taken.set()
                release.wait(5)
            return doc

        monkeypatch.setattr(store, "snapshot", paused_snapshot)
        store.schedule_flush()
        assert taken.wait(5)

        def newer_write() -> None:
            with store.mutate("bob") as entries:
                entries.insert(0, _entry("new", ts=2))
            store.flush_now()

        writer = threading.Thread(target=newer_write)
        writer.start()
        time.sleep(0.1)
        release.set()
        writer.join(5)

        doc = json.loads(store.path.read_text())
        assert [e["q"] for e in doc["users"]["bob"]] == ["new", "old"]

    def test_flush_drops_malformed_entries_from_file(self, tmp_path):
        path = tmp_path / "history.json"
        doc = {"version": 1, "users": {"bob": [None, {"engine": "x"}, {"q": "ok", "engine": "g", "ts": 3}]}}
        path.write_text(json.dumps(doc))
        store = HistoryStore(path)
        store.load()

        assert store.flush_now() is True
        assert json.loads(path.read_text()) == {
            "version": 1,
            "users": {"bob": [{"q": "ok", "engine": "g", "ts": 3}]},
        }
