from __future__ import annotations

import re
from typing import Iterable
from typing import TypeVar

from presence.models import SourceKind

ZERO_START_TIME = "0001-01-01T00:00:00Z"

_SERVER_URL_RE = re.compile(r"^https?://[^/\s]+$", re.IGNORECASE)

T = TypeVar("T")


def normalize_key(value: str | None) -> str:
    return str(value or "").strip().lower()


def normalize_server_url(value: str | None) -> str | None:
    raw = str(value or "").strip().rstrip("/")
    if not raw or not _SERVER_URL_RE.match(raw):
        return None
    return raw.lower()


def normalize_entity_key(source: SourceKind, value: str | None) -> str | None:
    if source == SourceKind.SERVER:
        return normalize_server_url(value)
    key = normalize_key(value)
    # streamer handles: strip a pasted profile URL or leading @
    key = re.sub(r"^https?://(www\.)?(twitch\.tv|kick\.com)/", "", key).strip("/@ ")
    if not key or not re.fullmatch(r"[a-z0-9_\-]{1,64}", key):
        return None
    return key


def derive_session_key(started_at: str | None, title: str | None) -> str:
    # Without a usable start time a title edit looks like a new session.
    start = str(started_at or "").strip()
    if start and start != ZERO_START_TIME:
        return start
    return f"live:{title or ''}"


def chunked(items: Iterable[T], size: int) -> list[list[T]]:
    values = list(items)
    if size <= 0:
        return [values] if values else []
    return [values[i : i + size] for i in range(0, len(values), size)]
