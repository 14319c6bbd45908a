from __future__ import annotations

import json
import logging
import shutil
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredRecord:
    kind: str
    identifier: str
    institution: str
    payload: Any
    updated_at: str


class StateStore:
    def __init__(self, db_path: str, *, institution: str = "") -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.institution = institution
        self._backup_path = self.db_path.with_name(self.db_path.name + ".bak")

        # Self-heal on corrupted/missing DB: restore from backup when possible.
        self._conn = self._open_or_restore()
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

        self._maybe_backup(if_missing=True)

    def close(self) -> None:
        self._conn.close()

    def _open_or_restore(self) -> sqlite3.Connection:
        """
        Open the state DB. If it looks corrupted, move it aside and restore from the last-known-good backup.

        The portal remains the source of truth; this DB only caches what we last saw there.
        """
        if self.db_path.exists():
            try:
                conn = sqlite3.connect(self.db_path)
                if self._connection_is_healthy(conn):
                    return conn
                conn.close()
                raise sqlite3.DatabaseError("SQLite quick_check failed")
            except sqlite3.DatabaseError as e:
                logger.warning("State DB appears corrupted/unreadable; attempting restore from backup. (%s)", e)
                self._quarantine_db_files()

                if self._backup_path.exists():
                    try:
                        shutil.copy2(self._backup_path, self.db_path)
                        conn = sqlite3.connect(self.db_path)
                        if self._connection_is_healthy(conn):
                            logger.warning("Restored state DB from backup: %s", self._backup_path)
                            return conn
                        conn.close()
                    except (OSError, sqlite3.DatabaseError):
                        logger.warning("Failed to restore state DB from backup; creating a fresh DB.", exc_info=True)
                else:
                    logger.warning("No state DB backup found; creating a fresh DB.")

        return sqlite3.connect(self.db_path)

    def _connection_is_healthy(self, conn: sqlite3.Connection) -> bool:
        try:
            # Touch schema_version to fail fast on "file is not a database".
            _ = conn.execute("PRAGMA schema_version;").fetchone()
            row = conn.execute("PRAGMA quick_check;").fetchone()
            return bool(row and row[0] == "ok")
        except sqlite3.DatabaseError:
            return False

    def _quarantine_db_files(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        for p in (self.db_path, Path(str(self.db_path) + "-wal"), Path(str(self.db_path) + "-shm")):
            try:
                if p.exists():
                    p.replace(p.with_name(p.name + f".corrupt-{stamp}"))
            except OSError:
                logger.debug("Failed to quarantine path=%s", p, exc_info=True)

    def _maybe_backup(self, *, if_missing: bool) -> None:
        if if_missing and self._backup_path.exists():
            return
        try:
            self.backup()
        except (OSError, sqlite3.Error):
            logger.debug("Failed to write state DB backup.", exc_info=True)

    def backup(self) -> None:
        """
        Write/refresh a last-known-good backup of the state DB at `<db_path>.bak`.
        """
        out = self._backup_path
        out.parent.mkdir(parents=True, exist_ok=True)
        tmp = out.with_name(out.name + ".tmp")
        if tmp.exists():
            tmp.unlink()

        # SQLite online backup API gives a consistent snapshot.
        dst = sqlite3.connect(tmp)
        try:
            self._conn.backup(dst)
            dst.commit()
        finally:
            dst.close()

        tmp.replace(out)

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
              kind TEXT NOT NULL,
              identifier TEXT NOT NULL,
              institution TEXT NOT NULL DEFAULT '',
              payload TEXT NOT NULL,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL,
              PRIMARY KEY (institution, kind, identifier)
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              institution TEXT NOT NULL DEFAULT '',
              operation TEXT NOT NULL,
              started_at TEXT NOT NULL,
              finished_at TEXT,
              ok INTEGER,
              message TEXT
            );
            """
        )
        self._conn.commit()

    def upsert_record(self, kind: str, identifier: str, payload: Any) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._conn.execute(
            """
            INSERT INTO records(kind, identifier, institution, payload, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(institution, kind, identifier) DO UPDATE SET
              payload = excluded.payload,
              updated_at = excluded.updated_at;
            """,
            (kind, identifier, self.institution, json.dumps(payload, sort_keys=True, default=str), now, now),
        )
        self._conn.commit()

    def get_record(self, kind: str, identifier: str) -> Optional[Any]:
        row = self._conn.execute(
            "SELECT payload FROM records WHERE institution = ? AND kind = ? AND identifier = ?;",
            (self.institution, kind, identifier),
        ).fetchone()
        if not row:
            return None
        return json.loads(row[0])

    def list_records(self, kind: str) -> list[StoredRecord]:
        rows = self._conn.execute(
            """
            SELECT kind, identifier, institution, payload, updated_at FROM records
            WHERE institution = ? AND kind = ? ORDER BY identifier;
            """,
            (self.institution, kind),
        ).fetchall()
        return [
            StoredRecord(kind=r[0], identifier=r[1], institution=r[2], payload=json.loads(r[3]), updated_at=r[4])
            for r in rows
        ]

    def record_run_start(self, operation: str) -> int:
        now = datetime.now(timezone.utc).isoformat()
        cur = self._conn.execute(
            "INSERT INTO runs(institution, operation, started_at) VALUES (?, ?, ?);",
            (self.institution, operation, now),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def record_run_finish(self, run_id: int, *, ok: bool, message: Optional[str] = None) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._conn.execute(
            "UPDATE runs SET finished_at = ?, ok = ?, message = ? WHERE id = ?;",
            (now, 1 if ok else 0, message, run_id),
        )
        self._conn.commit()

        # Only snapshot after a successful run.
        if ok:
            self._maybe_backup(if_missing=False)
