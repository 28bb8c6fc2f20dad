"""SQLite-backed forensic store.

Records are kept as a JSON payload with the lookup keys in indexed columns.
Writes for the same ``access_id`` collapse through ``ON CONFLICT``; a
per-store ``asyncio.Lock`` serializes the read-merge-write of upserts and
updates. Blocking database calls run in a worker thread.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import asyncio
import json
import logging
import sqlite3

from linkforensics.core.record import ForensicRecord
from linkforensics.store.base import (
    ForensicStore,
    StoreResult,
    merge_records,
    unknown_update_fields,
)

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS forensic_records (
  access_id TEXT PRIMARY KEY,
  link_id TEXT NOT NULL,
  resource_audit_id TEXT NOT NULL,
  public_ip TEXT NOT NULL,
  downloaded INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  payload_json TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_forensic_link ON forensic_records(link_id);
CREATE INDEX IF NOT EXISTS idx_forensic_resource ON forensic_records(resource_audit_id);
"""

UPSERT_SQL = """
INSERT INTO forensic_records
  (access_id, link_id, resource_audit_id, public_ip, downloaded, created_at, payload_json)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(access_id) DO UPDATE SET
  link_id = excluded.link_id,
  resource_audit_id = excluded.resource_audit_id,
  public_ip = excluded.public_ip,
  downloaded = excluded.downloaded,
  created_at = excluded.created_at,
  payload_json = excluded.payload_json
"""


def _row_values(record: ForensicRecord) -> tuple:
    return (
        record.access_id,
        record.link_id,
        record.resource_audit_id,
        record.network_identity.public_ip,
        int(record.session.downloaded),
        record.created_at.isoformat(),
        json.dumps(record.to_dict(), sort_keys=True),
    )


class SQLiteForensicStore(ForensicStore):
    """Forensic store in a local SQLite database file."""

    name = "sqlite"

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self._lock = asyncio.Lock()

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA)
        return conn

    # === Blocking operations (worker thread) ===

    def _load(self, conn: sqlite3.Connection, access_id: str) -> Optional[ForensicRecord]:
        row = conn.execute(
            "SELECT payload_json FROM forensic_records WHERE access_id=?", (access_id,)
        ).fetchone()
        return ForensicRecord.from_dict(json.loads(row[0])) if row else None

    def _upsert_sync(self, record: ForensicRecord) -> ForensicRecord:
        conn = self._connect()
        try:
            existing = self._load(conn, record.access_id)
            if existing is not None:
                record = merge_records(existing, record)
            conn.execute(UPSERT_SQL, _row_values(record))
            conn.commit()
            return record
        finally:
            conn.close()

    def _update_sync(self, access_id: str, partial: Dict[str, Any]) -> bool:
        conn = self._connect()
        try:
            existing = self._load(conn, access_id)
            if existing is None:
                return False
            conn.execute(UPSERT_SQL, _row_values(existing.with_updates(partial)))
            conn.commit()
            return True
        finally:
            conn.close()

    def _query_sync(self, column: str, value: str) -> List[ForensicRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT payload_json FROM forensic_records WHERE {column}=? "
                "ORDER BY created_at DESC",
                (value,),
            ).fetchall()
            return [ForensicRecord.from_dict(json.loads(row[0])) for row in rows]
        finally:
            conn.close()

    def _get_sync(self, access_id: str) -> Optional[ForensicRecord]:
        conn = self._connect()
        try:
            return self._load(conn, access_id)
        finally:
            conn.close()

    # === Async interface ===

    async def upsert(self, record: ForensicRecord) -> StoreResult:
        try:
            async with self._lock:
                stored = await asyncio.to_thread(self._upsert_sync, record)
        except (sqlite3.Error, OSError, ValueError) as e:
            logger.error("SQLite upsert failed for %s: %s", record.access_id, e)
            return StoreResult(persisted=False, record_id=record.access_id, error=str(e))
        return StoreResult(persisted=True, record_id=stored.access_id)

    async def update(self, access_id: str, partial: Dict[str, Any]) -> bool:
        unknown = unknown_update_fields(partial)
        if unknown:
            logger.error("Rejected update for %s: unknown fields %s", access_id, unknown)
            return False
        try:
            async with self._lock:
                updated = await asyncio.to_thread(self._update_sync, access_id, partial)
        except (sqlite3.Error, OSError, ValueError, KeyError, TypeError) as e:
            logger.error("SQLite update failed for %s: %s", access_id, e)
            return False
        if not updated:
            logger.warning("Update for unknown access %s", access_id)
        return updated

    async def get(self, access_id: str) -> Optional[ForensicRecord]:
        try:
            return await asyncio.to_thread(self._get_sync, access_id)
        except (sqlite3.Error, OSError) as e:
            logger.error("SQLite read failed for %s: %s", access_id, e)
            return None

    async def list_by_link(self, link_id: str) -> List[ForensicRecord]:
        return await self._query("link_id", link_id)

    async def list_by_resource(self, resource_audit_id: str) -> List[ForensicRecord]:
        return await self._query("resource_audit_id", resource_audit_id)

    async def _query(self, column: str, value: str) -> List[ForensicRecord]:
        try:
            return await asyncio.to_thread(self._query_sync, column, value)
        except (sqlite3.Error, OSError) as e:
            logger.error("SQLite query on %s failed: %s", column, e)
            return []
