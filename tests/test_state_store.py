from __future__ import annotations

import asyncio
import json
import sqlite3
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from db.migrate import apply_sqlite_migrations
from db.migrate import list_applied_migrations_sync
from presence.models import MessageLifecycleState
from presence.models import SourceKind
from presence.state_document import StateDocument
from presence.store import JsonFileStateStore
from presence.store import SqliteStateStore
from presence.store import load_seed_file
from presence.store import load_state_payload_sync

MIGRATIONS_DIR = str(Path(__file__).resolve().parents[1] / "migrations")


def _conn() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    apply_sqlite_migrations(conn, MIGRATIONS_DIR)
    return conn


class MigrationTests(unittest.TestCase):
    def test_migrations_are_idempotent(self):
        conn = _conn()
        self.assertEqual(apply_sqlite_migrations(conn, MIGRATIONS_DIR), [])
        versions = [v for (v, _n, _a) in list_applied_migrations_sync(conn)]
        self.assertIn("0001", versions)
        cur = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='presence_state_documents'")
        self.assertIsNotNone(cur.fetchone())

    def test_only_sql_files_are_migrations(self):
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "0001_init.sql").write_text("CREATE TABLE t (id INTEGER);", encoding="utf-8")
            (Path(tmp) / "0002_backfill.py").write_text("raise SystemExit('never imported')\n", encoding="utf-8")
            conn = sqlite3.connect(":memory:")
            self.assertEqual(apply_sqlite_migrations(conn, tmp), ["0001_init.sql"])

    def test_changed_migration_is_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "0001_init.sql"
            path.write_text("CREATE TABLE t (id INTEGER);", encoding="utf-8")
            conn = sqlite3.connect(":memory:")
            self.assertEqual(apply_sqlite_migrations(conn, tmp), ["0001_init.sql"])
            path.write_text("CREATE TABLE t (id INTEGER, extra TEXT);", encoding="utf-8")
            with self.assertRaises(RuntimeError):
                apply_sqlite_migrations(conn, tmp)


class SqliteStateStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_empty_database_loads_defaults(self):
        store = SqliteStateStore(db_lock=asyncio.Lock(), db_conn=_conn())
        doc = await store.load()
        self.assertEqual(doc.to_payload(), StateDocument().to_payload())

    async def test_save_then_load(self):
        conn = _conn()
        store = SqliteStateStore(db_lock=asyncio.Lock(), db_conn=conn)
        doc = StateDocument()
        doc.add_entity(SourceKind.TWITCH, "alpha", 222222222222222222)
        doc.set_lifecycle(SourceKind.TWITCH, "alpha", MessageLifecycleState(1, 2, "s1", 3))
        await store.save(doc)
        doc.add_entity(SourceKind.KICK, "bravo")
        await store.save(doc)

        loaded = await store.load()
        self.assertEqual(loaded.to_payload(), doc.to_payload())
        self.assertEqual(conn.execute("SELECT COUNT(*) FROM presence_state_documents").fetchone()[0], 1)

    async def test_legacy_file_is_imported_once(self):
        with tempfile.TemporaryDirectory() as tmp:
            legacy = Path(tmp) / "data.json"
            legacy.write_text(
                json.dumps({"settings": {"notifyChannelId": "111111111111111111"}, "twitch": {"streamers": [{"login": "alpha"}]}}),
                encoding="utf-8",
            )
            conn = _conn()
            store = SqliteStateStore(db_lock=asyncio.Lock(), db_conn=conn, legacy_json_path=str(legacy))

            doc = await store.load()
            self.assertEqual(doc.tracked_keys(SourceKind.TWITCH), ["alpha"])
            self.assertIsNotNone(load_state_payload_sync(conn))

            # later edits win over the legacy file on every following boot
            doc.remove_entity(SourceKind.TWITCH, "alpha")
            await store.save(doc)
            again = await store.load()
            self.assertEqual(again.tracked_keys(SourceKind.TWITCH), [])

    async def test_failed_first_save_keeps_legacy_import_pending(self):
        with tempfile.TemporaryDirectory() as tmp:
            legacy = Path(tmp) / "data.json"
            legacy.write_text(json.dumps({"twitch": {"streamers": [{"login": "alpha"}]}}), encoding="utf-8")
            conn = _conn()

            first = SqliteStateStore(db_lock=asyncio.Lock(), db_conn=conn, legacy_json_path=str(legacy))
            with mock.patch.object(first, "save", side_effect=sqlite3.OperationalError("database is locked")):
                with self.assertRaises(sqlite3.OperationalError):
                    await first.load()
            self.assertIsNone(load_state_payload_sync(conn))

            second = SqliteStateStore(db_lock=asyncio.Lock(), db_conn=conn, legacy_json_path=str(legacy))
            doc = await second.load()
            self.assertEqual(doc.tracked_keys(SourceKind.TWITCH), ["alpha"])
            self.assertIsNotNone(load_state_payload_sync(conn))


class JsonFileStateStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_missing_file_is_created(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "state.json"
            store = JsonFileStateStore(str(path))
            doc = await store.load()
            self.assertTrue(path.exists())
            self.assertEqual(json.loads(path.read_text(encoding="utf-8"))["version"], doc.version)

    async def test_save_replaces_file_and_leaves_no_temp_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "state.json"
            store = JsonFileStateStore(str(path))
            doc = StateDocument()
            doc.add_entity(SourceKind.SERVER, "http://127.0.0.1:30120")
            await store.save(doc)
            await store.save(doc)

            loaded = await store.load()
            self.assertEqual(loaded.tracked_keys(SourceKind.SERVER), ["http://127.0.0.1:30120"])
            self.assertEqual(sorted(p.name for p in Path(tmp).iterdir()), ["state.json"])

    async def test_reads_legacy_layout(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "data.json"
            path.write_text(json.dumps({"kick": {"streamers": [{"slug": "kickster"}]}}), encoding="utf-8")
            doc = await JsonFileStateStore(str(path)).load()
            self.assertEqual(doc.tracked_keys(SourceKind.KICK), ["kickster"])


class SeedFileTests(unittest.TestCase):
    def test_yaml_seed_is_read(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "presence.yml"
            path.write_text("settings:\n  discovery_mode: true\ntwitch:\n  - key: alpha\n", encoding="utf-8")
            seed = load_seed_file(str(path))
            self.assertEqual(seed["twitch"], [{"key": "alpha"}])
            self.assertIsNone(load_seed_file(str(Path(tmp) / "missing.yml")))

    def test_bundled_seed_parses(self):
        seed = load_seed_file(str(Path(__file__).resolve().parents[1] / "config" / "presence.yml"))
        self.assertIsInstance(seed, dict)
        self.assertEqual(seed["twitch"], [])


if __name__ == "__main__":
    unittest.main()
