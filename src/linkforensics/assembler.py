"""Forensic record assembly.

``ForensicRecordAssembler.capture`` runs the network probe, the device
fingerprinter and the location triangulator concurrently, scores the
result and returns the record immediately; persistence happens in a
background task. A failing component contributes its default instead of
failing the capture.
"""

from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple
import asyncio
import logging
import secrets
import string
import time

from linkforensics.capabilities.base import CapabilitySet, EnvironmentInfo
from linkforensics.core.errors import ProbeUnavailable
from linkforensics.core.record import (
    UNKNOWN_IP,
    BestLocation,
    DeviceFingerprint,
    ForensicRecord,
    NetworkIdentity,
    SessionInfo,
    utc_now,
)
from linkforensics.device.fingerprint import DeviceFingerprinter
from linkforensics.integrations.logging import CaptureMetrics, ForensicLogger
from linkforensics.location.triangulator import LocationTriangulator
from linkforensics.network.probe import NetworkIdentityProbe
from linkforensics.network.providers import HttpClient
from linkforensics.scoring import TrustScorer
from linkforensics.store.base import ForensicStore, StoreResult
from linkforensics.store.memory import NullForensicStore

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def generate_access_id(now: Optional[datetime] = None) -> str:
    """Build an access id: ``access-<epoch ms>-<6 base36 chars>``."""
    now = now or utc_now()
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"access-{millis}-{suffix}"


class ForensicRecordAssembler:
    """Captures one ``ForensicRecord`` per access.

    Example:
        >>> assembler = ForensicRecordAssembler(probe, fingerprinter, triangulator,
        ...                                     store=InMemoryForensicStore())
        >>> record = await assembler.capture("link-1", "audit-1", capabilities)
        >>> await assembler.drain()
    """

    def __init__(
        self,
        probe: NetworkIdentityProbe,
        fingerprinter: DeviceFingerprinter,
        triangulator: LocationTriangulator,
        scorer: Optional[TrustScorer] = None,
        store: Optional[ForensicStore] = None,
        events: Optional[ForensicLogger] = None,
        metrics: Optional[CaptureMetrics] = None,
        clock: Callable[[], datetime] = utc_now,
        http: Optional[HttpClient] = None,
    ):
        """Initialize the assembler.

        Args:
            probe: Network identity probe
            fingerprinter: Device fingerprinter
            triangulator: Location triangulator
            scorer: Trust scorer
            store: Record store; unconfigured when omitted
            events: Structured event logger
            metrics: Capture metrics
            clock: Source of aware UTC timestamps
            http: HTTP client owned by this assembler, closed by ``close``
        """
        self.probe = probe
        self.fingerprinter = fingerprinter
        self.triangulator = triangulator
        self.scorer = scorer or TrustScorer()
        self.store = store if store is not None else NullForensicStore()
        self.events = events
        self.metrics = metrics
        self.clock = clock
        self.http = http
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def capture(
        self,
        link_id: str,
        resource_audit_id: str,
        capabilities: CapabilitySet,
        access_id: Optional[str] = None,
    ) -> ForensicRecord:
        """Capture the forensic record of one access. Never raises.

        Args:
            link_id: Share link being accessed
            resource_audit_id: Shared resource being accessed
            capabilities: Capabilities of the accessing client
            access_id: Reuse an existing access id (retries); generated when omitted

        Returns:
            The assembled record; persistence continues in the background
        """
        started = time.perf_counter()
        session_start = self.clock()
        access_id = access_id or generate_access_id(session_start)
        if self.events:
            self.events.capture_started(access_id, link_id)

        identity, fingerprint, location = await self._collect(access_id, capabilities)
        environment = self._environment(capabilities)

        if identity.identification_failed and self.events:
            self.events.identification_failed(access_id)

        record = ForensicRecord(
            access_id=access_id,
            link_id=link_id,
            resource_audit_id=resource_audit_id,
            network_identity=identity,
            device_fingerprint=fingerprint,
            best_location=location,
            trust_score=self.scorer.score_signals(identity, location),
            session=SessionInfo(
                start=session_start,
                referrer=environment.referrer or "direct",
            ),
            created_at=session_start,
            user_agent=environment.user_agent,
            page_visibility=environment.page_visibility,
        )

        self._schedule_persist(record)

        latency_ms = (time.perf_counter() - started) * 1000
        if self.metrics:
            self.metrics.record_capture(
                latency_ms,
                record.trust_score,
                list(location.sources) if location else [],
                identity.identification_failed,
            )
        if self.events:
            self.events.capture_completed(
                access_id,
                record.trust_score,
                location.method.value if location else None,
                latency_ms,
            )
        return record

    async def _collect(
        self, access_id: str, capabilities: CapabilitySet
    ) -> Tuple[NetworkIdentity, DeviceFingerprint, Optional[BestLocation]]:
        identity, fingerprint, location = await asyncio.gather(
            self.probe.identify(capabilities),
            asyncio.to_thread(self.fingerprinter.fingerprint, capabilities),
            self.triangulator.triangulate(capabilities),
            return_exceptions=True,
        )

        if isinstance(identity, BaseException):
            self._component_failed(access_id, "network_probe", identity)
            identity = NetworkIdentity(public_ip=UNKNOWN_IP, identification_failed=True)
        if isinstance(fingerprint, BaseException):
            self._component_failed(access_id, "fingerprinter", fingerprint)
            fingerprint = DeviceFingerprint()
        if isinstance(location, BaseException):
            self._component_failed(access_id, "triangulator", location)
            location = None

        return identity, fingerprint, location

    def _component_failed(self, access_id: str, component: str, error: BaseException) -> None:
        logger.error("%s failed for %s: %r", component, access_id, error)
        if self.events:
            self.events.component_failed(access_id, component, repr(error))

    @staticmethod
    def _environment(capabilities: CapabilitySet) -> EnvironmentInfo:
        try:
            return capabilities.environment.read()
        except ProbeUnavailable:
            return EnvironmentInfo()
        except Exception as e:
            logger.warning("Environment read failed: %r", e)
            return EnvironmentInfo()

    def _schedule_persist(self, record: ForensicRecord) -> None:
        task = asyncio.create_task(self._persist(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        if self.metrics:
            self.metrics.set_pending_writes(len(self._pending))

    async def _persist(self, record: ForensicRecord) -> StoreResult:
        try:
            result = await self.store.upsert(record)
        except Exception as e:
            logger.error("Store %s raised for %s: %s", self.store.name, record.access_id, e)
            result = StoreResult(persisted=False, record_id=record.access_id, error=str(e))

        if self.metrics:
            self.metrics.record_persistence(result.persisted)
        if self.events:
            if result.persisted:
                self.events.record_persisted(record.access_id, self.store.name)
            else:
                self.events.persistence_failed(record.access_id, self.store.name, result.error)
        return result

    async def drain(self) -> List[StoreResult]:
        """Wait for all background writes started so far."""
        if not self._pending:
            return []
        results = await asyncio.gather(*list(self._pending))
        if self.metrics:
            self.metrics.set_pending_writes(len(self._pending))
        return list(results)

    async def close(self) -> None:
        """Drain pending writes and release owned resources."""
        await self.drain()
        await self.store.close()
        if self.http:
            await self.http.close()
