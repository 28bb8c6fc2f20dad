"""In-process stores."""

from typing import Any, Dict, List, Optional
import asyncio
import logging

from linkforensics.core.errors import PersistenceUnavailable
from linkforensics.core.record import ForensicRecord
from linkforensics.store.base import (
    ForensicStore,
    StoreResult,
    merge_records,
    unknown_update_fields,
)

logger = logging.getLogger(__name__)


class NullForensicStore(ForensicStore):
    """Stand-in used when no store is configured. Persists nothing."""

    name = "null"
    configured = False

    async def upsert(self, record: ForensicRecord) -> StoreResult:
        error = str(PersistenceUnavailable("no store configured"))
        logger.warning("Record %s not persisted: %s", record.access_id, error)
        return StoreResult(persisted=False, record_id=record.access_id, error=error)

    async def update(self, access_id: str, partial: Dict[str, Any]) -> bool:
        logger.warning("Update for %s dropped: no store configured", access_id)
        return False

    async def get(self, access_id: str) -> Optional[ForensicRecord]:
        return None

    async def list_by_link(self, link_id: str) -> List[ForensicRecord]:
        return []

    async def list_by_resource(self, resource_audit_id: str) -> List[ForensicRecord]:
        return []


class InMemoryForensicStore(ForensicStore):
    """Dictionary-backed store.

    Upserts and updates are serialized with an ``asyncio.Lock``.
    """

    name = "memory"

    def __init__(self):
        self._records: Dict[str, ForensicRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def upsert(self, record: ForensicRecord) -> StoreResult:
        async with self._lock:
            existing = self._records.get(record.access_id)
            if existing is not None:
                record = merge_records(existing, record)
            self._records[record.access_id] = record
        return StoreResult(persisted=True, record_id=record.access_id)

    async def update(self, access_id: str, partial: Dict[str, Any]) -> bool:
        unknown = unknown_update_fields(partial)
        if unknown:
            logger.error("Rejected update for %s: unknown fields %s", access_id, unknown)
            return False

        async with self._lock:
            existing = self._records.get(access_id)
            if existing is None:
                logger.warning("Update for unknown access %s", access_id)
                return False
            try:
                self._records[access_id] = existing.with_updates(partial)
            except (ValueError, KeyError, TypeError) as e:
                logger.error("Rejected update for %s: %s", access_id, e)
                return False
        return True

    async def get(self, access_id: str) -> Optional[ForensicRecord]:
        return self._records.get(access_id)

    async def list_by_link(self, link_id: str) -> List[ForensicRecord]:
        return self._newest_first(r for r in self._records.values() if r.link_id == link_id)

    async def list_by_resource(self, resource_audit_id: str) -> List[ForensicRecord]:
        return self._newest_first(
            r for r in self._records.values() if r.resource_audit_id == resource_audit_id
        )

    @staticmethod
    def _newest_first(records) -> List[ForensicRecord]:
        return sorted(records, key=lambda r: r.created_at, reverse=True)
