from __future__ import annotations

import hashlib
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path


MIGRATION_RE = re.compile(r"^(\d{4})_([a-zA-Z0-9_]+)\.(sql)$")


@dataclass(frozen=True, slots=True)
class MigrationFile:
    version: str
    name: str
    ext: str
    path: Path

    @property
    def label(self) -> str:
        return f"{self.version}_{self.name}.{self.ext}"

    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ensure_migration_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            checksum TEXT NOT NULL,
            applied_at_utc TEXT NOT NULL
        )
        """
    )
    conn.commit()


def discover_migrations(migrations_dir: str) -> list[MigrationFile]:
    base = Path(migrations_dir)
    if not base.exists():
        raise RuntimeError(f"Migrations directory not found: {migrations_dir}")
    found: list[MigrationFile] = []
    for p in sorted(base.iterdir()):
        m = MIGRATION_RE.match(p.name) if p.is_file() else None
        if m:
            found.append(MigrationFile(version=m.group(1), name=m.group(2), ext=m.group(3), path=p))
    versions = [f.version for f in found]
    dupes = sorted({v for v in versions if versions.count(v) > 1})
    if dupes:
        raise RuntimeError(f"Duplicate migration versions: {', '.join(dupes)}")
    return found


def list_applied_migrations_sync(conn: sqlite3.Connection) -> list[tuple[str, str, str]]:
    _ensure_migration_table(conn)
    cur = conn.execute("SELECT version, name, applied_at_utc FROM schema_migrations ORDER BY version")
    return [(str(v), str(n), str(a)) for (v, n, a) in cur.fetchall()]



def apply_sqlite_migrations(conn: sqlite3.Connection, migrations_dir: str) -> list[str]:
    """Apply pending migrations in version order; returns the labels applied.

    An already-applied version whose file content or name changed is an error,
    never silently re-run.
    """
    _ensure_migration_table(conn)
    applied = {
        str(v): (str(n), str(c))
        for (v, n, c) in conn.execute("SELECT version, name, checksum FROM schema_migrations").fetchall()
    }

    done: list[str] = []
    for migration in discover_migrations(migrations_dir):
        checksum = migration.checksum()
        existing = applied.get(migration.version)
        if existing:
            if existing != (migration.name, checksum):
                raise RuntimeError(
                    f"Migration version {migration.version} already applied with different content "
                    f"(existing name={existing[0]}, file name={migration.name})."
                )
            continue

        print(f"[DB] Applying migration {migration.label}")
        conn.executescript(migration.path.read_text(encoding="utf-8"))

        conn.execute(
            "INSERT INTO schema_migrations (version, name, checksum, applied_at_utc) VALUES (?, ?, ?, ?)",
            (migration.version, migration.name, checksum, _utc_now_iso()),
        )
        conn.commit()
        done.append(migration.label)
    return done
