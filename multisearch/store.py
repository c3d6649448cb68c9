"""
File-backed history store.

Holds every user's history in memory and mirrors it to a single JSON file:
  data/history.json -> {"version": 1, "users": {<user>: [{q, engine, ts}, ...]}}

The file is read once, on first access. After that the in-memory copy is
authoritative and the file is rewritten whole, on a debounce timer, after
mutations. Durability is best effort: a crash before the timer fires loses
the pending writes.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from multisearch.models import HistoryEntry

logger = logging.getLogger(__name__)

STORE_VERSION = 1
DEFAULT_FLUSH_DELAY_SEC = 0.15


class StoreStartupError(RuntimeError):
    """The backing file could not be created or read. Fatal for the process."""


class HistoryStore:
    """
    Thread-safe in-memory user -> entries mapping with a debounced file mirror.

    Route handlers run in a threadpool, so every read-modify-write of a
    user's list goes through ``mutate()`` under a single lock. Flushes are
    serialized by the debounce timer (at most one pending) plus a write lock.
    """

    def __init__(
        self,
        path: Union[str, Path],
        flush_delay: float = DEFAULT_FLUSH_DELAY_SEC,
    ):
        self.path = Path(path)
        self.flush_delay = flush_delay
        self.version = STORE_VERSION
        self._users: Optional[Dict[str, List[HistoryEntry]]] = None
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    def ensure_exists(self) -> None:
        """Create the data directory and seed file if they are missing."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                seed = {"version": STORE_VERSION, "users": {}}
                self.path.write_text(json.dumps(seed, indent=2), encoding="utf-8")
                logger.info(f"Created empty history store at {self.path}")
        except OSError as e:
            raise StoreStartupError(f"Cannot create history store {self.path}: {e}") from e

    def load(self) -> Dict[str, Any]:
        """
        Return the in-memory store, reading the backing file on first call only.

        Raises:
            StoreStartupError: If the file is missing, unreadable or not a
                JSON object. Never falls back to an empty store silently.
        """
        with self._lock:
            if self._users is None:
                self._users = self._read_file()
            return {"version": self.version, "users": self._users}

    def _read_file(self) -> Dict[str, List[HistoryEntry]]:
        """
        Parse the backing file into HistoryEntry lists.

        Malformed entries are skipped and only logged. They are not kept in
        memory, so the next flush rewrites the file without them.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreStartupError(f"Cannot read history store {self.path}: {e}") from e
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreStartupError(f"History store {self.path} is not valid JSON: {e}") from e
        if not isinstance(doc, dict):
            raise StoreStartupError(f"History store {self.path} must hold a JSON object")

        self.version = doc.get("version") or STORE_VERSION
        raw_users = doc.get("users")
        if not isinstance(raw_users, dict):
            raw_users = {}

        users: Dict[str, List[HistoryEntry]] = {}
        skipped = 0
        for user_id, items in raw_users.items():
            entries = []
            for item in items if isinstance(items, list) else []:
                entry = HistoryEntry.from_dict(item)
                if entry is None:
                    skipped += 1
                    continue
                entries.append(entry)
            users[str(user_id)] = entries
        if skipped:
            logger.warning(
                f"Skipped {skipped} malformed history entries in {self.path}; "
                f"the next flush drops them from the file"
            )
        logger.info(f"Loaded history for {len(users)} users from {self.path}")
        return users

    def entries(self, user_id: str) -> List[HistoryEntry]:
        """Return a copy of one user's entries, most recent first."""
        users = self.load()["users"]
        with self._lock:
            return list(users.get(user_id, []))

    @contextmanager
    def mutate(self, user_id: str) -> Iterator[List[HistoryEntry]]:
        """
        Hold the store lock while the caller edits a copy of the user's list.

        The edited list replaces the stored one when the block exits cleanly.
        """
        users = self.load()["users"]
        with self._lock:
            working = list(users.get(user_id, []))
            yield working
            users[user_id] = working

    def snapshot(self) -> Dict[str, Any]:
        """Serializable copy of the whole store."""
        users = self.load()["users"]
        with self._lock:
            return {
                "version": self.version,
                "users": {
                    user_id: [e.to_dict() for e in entries]
                    for user_id, entries in users.items()
                },
            }

    @property
    def flush_pending(self) -> bool:
        with self._timer_lock:
            return self._timer is not None

    def schedule_flush(self) -> None:
        """Write the store after the debounce delay. No-op if a write is already pending."""
        with self._timer_lock:
            if self._timer is not None:
                return
            timer = threading.Timer(self.flush_delay, self._flush_from_timer)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _flush_from_timer(self) -> None:
        with self._timer_lock:
            self._timer = None
        self._write()

    def flush_now(self) -> bool:
        """Cancel any pending timer and write synchronously. Used at shutdown and in tests."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        return self._write()

    def _write(self) -> bool:
        if self._users is None:
            return True
        try:
            # Snapshot under the write lock so files land in snapshot order
            with self._write_lock:
                payload = json.dumps(self.snapshot(), indent=2, ensure_ascii=False)
                tmp_path = self.path.with_name(self.path.name + ".tmp")
                tmp_path.write_text(payload, encoding="utf-8")
                os.replace(tmp_path, self.path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write history store {self.path}: {e}", exc_info=True)
            return False
