"""
Input clamping shared by every HTTP entry point.
"""
from __future__ import annotations

import re
from typing import Any

DEFAULT_USER = "default"
MAX_USER_LEN = 40
MAX_QUERY_LEN = 200
MAX_ENGINE_LEN = 32

_UNSAFE_USER_CHARS = re.compile(r"[^A-Za-z0-9_.@-]")


def norm_user(raw: Any) -> str:
    """Map a caller-supplied identifier to a safe partition key."""
    s = "" if raw is None else str(raw).strip()
    if not s:
        s = DEFAULT_USER
    return _UNSAFE_USER_CHARS.sub("_", s[:MAX_USER_LEN])


def norm_query(raw: Any) -> str:
    return str(raw or "").strip()[:MAX_QUERY_LEN]


def norm_engine(raw: Any) -> str:
    return str(raw or "")[:MAX_ENGINE_LEN]
