"""Forensic record store interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from linkforensics.core.record import UNKNOWN_IP, UPDATABLE_FIELDS, ForensicRecord


@dataclass(frozen=True)
class StoreResult:
    """Outcome of an upsert.

    Attributes:
        persisted: Whether the record reached the store
        record_id: Key the record is stored under
        error: Failure description when not persisted
    """

    persisted: bool
    record_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"persisted": self.persisted, "record_id": self.record_id, "error": self.error}


def merge_records(existing: ForensicRecord, incoming: ForensicRecord) -> ForensicRecord:
    """Combine a stored record with a re-captured one for the same access.

    Captured signals come from ``incoming``. What was recorded after the
    first capture (focus history, download completion, session end) and the
    original creation time are kept from ``existing``.
    """
    session = incoming.session
    if existing.session.downloaded and not session.downloaded:
        session = replace(
            session,
            downloaded=True,
            download_time=existing.session.download_time,
        )
    if existing.session.end and not session.end:
        session = replace(session, end=existing.session.end)

    return replace(
        incoming,
        session=session,
        focus_events=existing.focus_events + tuple(
            e for e in incoming.focus_events if e not in existing.focus_events
        ),
        created_at=existing.created_at,
        access_count=max(existing.access_count, incoming.access_count),
    )


def unknown_update_fields(partial: Dict[str, Any]) -> List[str]:
    return sorted(set(partial) - UPDATABLE_FIELDS)


def compute_stats(records: List[ForensicRecord]) -> Dict[str, Any]:
    """Aggregate access statistics for a set of records.

    Returns:
        Dictionary with total_accesses, unique_ips, total_downloads and
        last_access (ISO timestamp or None)
    """
    ips = {
        r.network_identity.public_ip
        for r in records
        if r.network_identity.public_ip != UNKNOWN_IP
    }
    last = max((r.created_at for r in records), default=None)
    return {
        "total_accesses": len(records),
        "unique_ips": len(ips),
        "total_downloads": sum(1 for r in records if r.session.downloaded),
        "last_access": last.isoformat() if last else None,
    }


class ForensicStore(ABC):
    """Persistence for forensic records, keyed by ``access_id``.

    Implementations never raise from ``upsert`` or ``update``; failures are
    reported through the return value.
    """

    name: str = "store"
    configured: bool = True

    @abstractmethod
    async def upsert(self, record: ForensicRecord) -> StoreResult:
        """Insert the record or merge it into the one with the same key."""
        pass

    @abstractmethod
    async def update(self, access_id: str, partial: Dict[str, Any]) -> bool:
        """Apply a partial update to a stored record.

        Args:
            access_id: Record key
            partial: Updatable fields; ``focus_events`` values are appended

        Returns:
            True if the record was found and updated
        """
        pass

    @abstractmethod
    async def get(self, access_id: str) -> Optional[ForensicRecord]:
        pass

    @abstractmethod
    async def list_by_link(self, link_id: str) -> List[ForensicRecord]:
        """Records for a share link, newest first."""
        pass

    @abstractmethod
    async def list_by_resource(self, resource_audit_id: str) -> List[ForensicRecord]:
        """Records for a shared resource, newest first."""
        pass

    async def stats(self, resource_audit_id: str) -> Dict[str, Any]:
        """Access statistics for a shared resource."""
        return compute_stats(await self.list_by_resource(resource_audit_id))

    async def close(self) -> None:
        pass
