"""
Data structures for stored history and HTTP request bodies.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class HistoryEntry:
    """One remembered query. Replaced wholesale, never edited."""
    q: str
    engine: str
    ts: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["HistoryEntry"]:
        """
        Build an entry from a stored dict, or None if the record is unusable.

        Unusable records are dropped from the store, and from the file at the
        next flush.
        """
        if not isinstance(data, dict) or not data.get("q"):
            return None
        try:
            ts = int(data.get("ts") or 0)
        except (TypeError, ValueError):
            ts = 0
        return cls(q=str(data["q"]), engine=str(data.get("engine") or ""), ts=ts)


class HistoryWriteRequest(BaseModel):
    """Body of POST /api/history. Fields are clamped later, not validated here."""
    u: Optional[Any] = Field(default=None, description="Caller user identifier")
    q: Optional[Any] = Field(default=None, description="Query text to remember")
    engine: Optional[Any] = Field(default=None, description="Engine the query was sent to")
