"""
Per-user query history on top of HistoryStore.
"""
from __future__ import annotations

import logging
import time
from typing import Any, List, Optional

from multisearch.models import HistoryEntry
from multisearch.normalize import norm_engine, norm_query, norm_user
from multisearch.store import HistoryStore

logger = logging.getLogger(__name__)

MAX_HISTORY = 1000
RECENT_LIMIT = 50
MATCH_LIMIT = 6


class ValidationError(ValueError):
    """Caller input that cannot be stored. Reported as HTTP 400."""


def _now_ms() -> int:
    return int(time.time() * 1000)


class HistoryService:
    """Read, append and clear history. Every mutation schedules a store flush."""

    def __init__(
        self,
        store: HistoryStore,
        max_history: int = MAX_HISTORY,
        recent_limit: int = RECENT_LIMIT,
    ):
        self.store = store
        self.max_history = max_history
        self.recent_limit = recent_limit

    def get_recent(self, raw_user: Any, limit: Optional[int] = None) -> List[HistoryEntry]:
        """Latest entries for the user, most recent first."""
        user_id = norm_user(raw_user)
        return self.store.entries(user_id)[: self.recent_limit if limit is None else limit]

    def append(self, raw_user: Any, raw_query: Any, raw_engine: Any) -> HistoryEntry:
        """
        Remember a query, moving an existing identical query to the front.

        Raises:
            ValidationError: If the query is empty after trimming.
        """
        user_id = norm_user(raw_user)
        q = norm_query(raw_query)
        if not q:
            raise ValidationError("Empty query")

        entry = HistoryEntry(q=q, engine=norm_engine(raw_engine), ts=_now_ms())
        with self.store.mutate(user_id) as entries:
            entries[:] = [entry] + [e for e in entries if e.q != q]
            del entries[self.max_history:]

        self.store.schedule_flush()
        return entry

    def clear(self, raw_user: Any) -> None:
        user_id = norm_user(raw_user)
        with self.store.mutate(user_id) as entries:
            entries.clear()
        self.store.schedule_flush()
        logger.info(f"Cleared history for user {user_id}")

    def matching(self, raw_user: Any, term: str, limit: int = MATCH_LIMIT) -> List[str]:
        """
        Stored queries containing ``term`` (case-insensitive), newest first.

        Scans the full history, not the recent window, so queries typed on
        another device long ago are still recalled.
        """
        needle = term.lower()
        out: List[str] = []
        for entry in self.store.entries(norm_user(raw_user)):
            if needle in entry.q.lower():
                out.append(entry.q)
                if len(out) >= limit:
                    break
        return out
