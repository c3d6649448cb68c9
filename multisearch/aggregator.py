"""
Suggestion aggregation: one provider's suggestions followed by matching
history, deduplicated and capped.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from multisearch.history_service import MATCH_LIMIT, HistoryService
from multisearch.normalize import norm_query
from multisearch.providers import DEFAULT_PROVIDER, SuggestionClient

logger = logging.getLogger(__name__)

SUGGEST_LIMIT = 12


def merge_unique(items: Iterable[Any], limit: int = SUGGEST_LIMIT) -> List[str]:
    """Trimmed, non-empty, first-occurrence-wins list of at most ``limit`` strings."""
    out: List[str] = []
    seen = set()
    for item in items:
        text = str(item or "").strip()
        if not text or text in seen:
            continue
        seen.add(text)
        out.append(text)
        if len(out) >= limit:
            break
    return out


class SuggestionAggregator:
    """Answers as-you-type requests. Never fails because of a provider."""

    def __init__(
        self,
        history: HistoryService,
        client: SuggestionClient,
        default_engine: str = DEFAULT_PROVIDER,
        match_limit: int = MATCH_LIMIT,
        limit: int = SUGGEST_LIMIT,
    ):
        self.history = history
        self.client = client
        self.default_engine = default_engine
        self.match_limit = match_limit
        self.limit = limit

    def suggest(self, raw_user: Any, engine: Optional[Any], raw_query: Any) -> Dict[str, Any]:
        """
        Merge provider suggestions with the user's matching history.

        Returns:
            {"suggestions": [...], "from": <requested engine>}. ``from`` echoes
            the requested name even when an unknown engine fell back to the
            default provider.
        """
        engine_label = str(engine) if engine else self.default_engine
        q = norm_query(raw_query)
        if not q:
            return {"suggestions": [], "from": engine_label}

        history_matches = self.history.matching(raw_user, q, self.match_limit)
        remote = self._fetch_remote(engine_label, q)

        return {
            "suggestions": merge_unique(remote + history_matches, self.limit),
            "from": engine_label,
        }

    def _fetch_remote(self, engine: str, q: str) -> List[str]:
        try:
            result = self.client.fetch(engine, q)
        except Exception as e:
            logger.error(f"Suggestion fetch for {engine} raised: {e}", exc_info=True)
            return []
        return list(result.suggestions) if result.ok else []
