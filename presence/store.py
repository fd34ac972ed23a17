from __future__ import annotations

import asyncio
import hashlib
import json
import os
import sqlite3
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from presence.models import SourceKind
from presence.state_document import StateDocument


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


# =========================
# SQLITE (default)
# =========================


def load_state_payload_sync(conn: sqlite3.Connection) -> dict[str, Any] | None:
    cur = conn.cursor()
    cur.execute("SELECT payload_json FROM presence_state_documents WHERE id = 1 LIMIT 1")
    row = cur.fetchone()
    if row is None:
        return None
    try:
        payload = json.loads(row[0] or "{}")
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Stored presence state is not valid JSON: {e}") from e
    return payload if isinstance(payload, dict) else None


def save_state_payload_sync(conn: sqlite3.Connection, payload: dict[str, Any], *, now_ts: int) -> None:
    # `with conn` commits on success and rolls back on error: the previous row
    # survives any failure mid-write.
    with conn:
        conn.execute(
            """
            INSERT INTO presence_state_documents (id, version, payload_json, updated_at_utc, updated_ts)
            VALUES (1, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                version = excluded.version,
                payload_json = excluded.payload_json,
                updated_at_utc = excluded.updated_at_utc,
                updated_ts = excluded.updated_ts
            """,
            (int(payload.get("version") or 0), _dumps(payload), _utc_now_iso(), int(now_ts)),
        )


def legacy_import_done_sync(conn: sqlite3.Connection, source_path: str) -> bool:
    cur = conn.cursor()
    cur.execute("SELECT 1 FROM presence_legacy_imports WHERE source_path = ? LIMIT 1", (source_path,))
    return cur.fetchone() is not None


def mark_legacy_import_sync(conn: sqlite3.Connection, source_path: str, checksum: str) -> None:
    with conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO presence_legacy_imports (source_path, checksum, imported_at_utc)
            VALUES (?, ?, ?)
            """,
            (source_path, checksum, _utc_now_iso()),
        )


def read_json_file(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    raw = json.loads(path.read_text(encoding="utf-8"))
    return raw if isinstance(raw, dict) else None


def load_seed_file(path: str | None) -> dict[str, Any] | None:
    """Read the optional YAML seed; a missing file is not an error."""
    if not path:
        return None
    p = Path(path)
    if not p.exists():
        return None
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if raw is not None and not isinstance(raw, dict):
        raise RuntimeError(f"Seed file {path} must be a mapping at the top level")
    return raw


class SqliteStateStore:
    def __init__(self, *, db_lock: asyncio.Lock, db_conn: sqlite3.Connection, legacy_json_path: str | None = None):
        self.db_lock = db_lock
        self.db_conn = db_conn
        self.legacy_json_path = str(legacy_json_path) if legacy_json_path else None

    async def load(self) -> StateDocument:
        async with self.db_lock:
            payload = await asyncio.to_thread(load_state_payload_sync, self.db_conn)
        if payload is not None:
            return StateDocument.from_payload(payload)

        legacy = await self._load_legacy()
        if legacy is not None:
            raw, checksum = legacy
            document = StateDocument.from_payload(raw)
            print(
                f"[Store] imported legacy state from {self.legacy_json_path} "
                f"(twitch={len(document.tracked_keys(SourceKind.TWITCH))} "
                f"kick={len(document.tracked_keys(SourceKind.KICK))} "
                f"servers={len(document.tracked_keys(SourceKind.SERVER))})"
            )
            # marked only once the document is stored, so a failed save retries the import
            await self.save(document)
            async with self.db_lock:
                await asyncio.to_thread(mark_legacy_import_sync, self.db_conn, str(Path(self.legacy_json_path)), checksum)
            return document
        return StateDocument()

    async def _load_legacy(self) -> tuple[dict[str, Any], str] | None:
        if not self.legacy_json_path:
            return None
        path = Path(self.legacy_json_path)
        async with self.db_lock:
            if await asyncio.to_thread(legacy_import_done_sync, self.db_conn, str(path)):
                return None
        try:
            raw = await asyncio.to_thread(read_json_file, path)
        except (OSError, json.JSONDecodeError) as e:
            print(f"[Store] legacy import skipped ({path}): {e}")
            return None
        if raw is None:
            return None
        return (raw, hashlib.sha256(_dumps(raw).encode("utf-8")).hexdigest())

    async def save(self, document: StateDocument) -> None:
        payload = document.to_payload()
        now_ts = int(datetime.now(timezone.utc).timestamp())
        async with self.db_lock:
            await asyncio.to_thread(save_state_payload_sync, self.db_conn, payload, now_ts=now_ts)


# =========================
# JSON FILE
# =========================


def write_json_atomic_sync(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2, sort_keys=True)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class JsonFileStateStore:
    """State document in a single JSON file, replaced atomically on save.

    Reads legacy (version-less) files transparently; the first save rewrites
    them in the current layout.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def load(self) -> StateDocument:
        async with self._lock:
            raw = await asyncio.to_thread(read_json_file, self.path)
        if raw is None:
            document = StateDocument()
            await self.save(document)
            return document
        return StateDocument.from_payload(raw)

    async def save(self, document: StateDocument) -> None:
        payload = document.to_payload()
        async with self._lock:
            await asyncio.to_thread(write_json_atomic_sync, self.path, payload)
