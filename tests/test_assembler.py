"""Tests for forensic record assembly."""

import asyncio
import re

from linkforensics import ForensicRecordAssembler, generate_access_id
from linkforensics.capabilities.base import (
    CapabilitySet,
    EnvironmentInfo,
    GeoPosition,
    StaticEnvironment,
)
from linkforensics.core.record import UNKNOWN_IP, UNAVAILABLE_HASH, LocationMethod, PageVisibility
from linkforensics.device import DeviceFingerprinter
from linkforensics.integrations.logging import CaptureMetrics, ForensicEventType, ForensicLogger
from linkforensics.location import GpsStrategy, IpStrategy, LocationTriangulator
from linkforensics.network import IpIdentity, NetworkIdentityProbe, PositionEstimate, ProviderChain
from linkforensics.store import InMemoryForensicStore

from helpers import (
    T0,
    BrokenEnvironment,
    DeniedGeolocation,
    FailingProvider,
    FakeGeolocation,
    FakeRaster,
    FixedStrategy,
    StaticProvider,
)

ACCESS_ID_RE = re.compile(r"^access-\d+-[0-9a-z]{6}$")


class ExplodingProbe(NetworkIdentityProbe):
    def __init__(self):
        super().__init__(ProviderChain("public_ip", []))

    async def identify(self, capabilities):
        raise RuntimeError("probe crashed")


class ExplodingStore(InMemoryForensicStore):
    name = "exploding"

    async def upsert(self, record):
        raise RuntimeError("disk on fire")


def make_assembler(ip_providers=(), strategies=(), **kwargs):
    return ForensicRecordAssembler(
        probe=NetworkIdentityProbe(ProviderChain("public_ip", list(ip_providers), timeout=0.5)),
        fingerprinter=DeviceFingerprinter(),
        triangulator=LocationTriangulator(list(strategies)),
        clock=lambda: T0,
        **kwargs,
    )


# ============================================================================
# Access Id Tests
# ============================================================================

class TestGenerateAccessId:
    """Tests for access id generation."""

    def test_format(self):
        access_id = generate_access_id(T0)
        assert ACCESS_ID_RE.match(access_id)
        assert access_id.startswith("access-1714564800000-")

    def test_unique(self):
        assert len({generate_access_id(T0) for _ in range(200)}) == 200


# ============================================================================
# Capture Tests
# ============================================================================

class TestCapture:
    """Tests for ForensicRecordAssembler.capture."""

    def test_minimal_capture(self):
        """Permission denied and all providers down still yields a record."""
        async def scenario():
            store = InMemoryForensicStore()
            events = ForensicLogger(name="test.assembler.minimal")
            assembler = make_assembler(
                ip_providers=[FailingProvider("ipapi"), FailingProvider("ipinfo")],
                strategies=[GpsStrategy()],
                store=store,
                events=events,
            )
            record = await assembler.capture("link-1", "audit-1", CapabilitySet(geolocation=DeniedGeolocation()))
            await assembler.drain()
            return record, store, events

        record, store, events = asyncio.run(scenario())

        assert ACCESS_ID_RE.match(record.access_id)
        assert record.best_location is None
        assert record.network_identity.public_ip == UNKNOWN_IP
        assert record.network_identity.identification_failed is True
        assert record.trust_score == 100
        assert record.device_fingerprint.canvas_hash == UNAVAILABLE_HASH
        assert len(store) == 1
        assert events.get_recent_events(event_type=ForensicEventType.IDENTIFICATION_FAILED)

    def test_full_capture(self):
        async def scenario():
            assembler = make_assembler(
                ip_providers=[StaticProvider("ipinfo", IpIdentity(ip="88.12.34.56", country="ES"))],
                strategies=[
                    GpsStrategy(),
                    IpStrategy(ProviderChain("ip_geolocation", [StaticProvider("ipapi", PositionEstimate(40.4, -3.7, 5000.0))])),
                ],
            )
            environment = EnvironmentInfo(
                timezone="Europe/Madrid",
                user_agent="Mozilla/5.0 (Macintosh)",
                referrer="https://mail.example.com",
                page_visibility=PageVisibility.HIDDEN,
            )
            capabilities = CapabilitySet(
                geolocation=FakeGeolocation(GeoPosition(40.4168, -3.7038, 20.0)),
                raster=FakeRaster(b"ab"),
                environment=StaticEnvironment(environment),
            )
            record = await assembler.capture("link-1", "audit-1", capabilities)
            await assembler.close()
            return record

        record = asyncio.run(scenario())

        assert record.network_identity.public_ip == "88.12.34.56"
        assert record.best_location.method is LocationMethod.GPS
        assert record.best_location.sources == ("gps", "ip")
        # 100 + hybrid 15 + floor(50 / 4), clamped
        assert record.trust_score == 100
        assert record.device_fingerprint.canvas_hash == "c21"
        assert record.session.start == T0
        assert record.created_at == T0
        assert record.session.referrer == "https://mail.example.com"
        assert record.user_agent == "Mozilla/5.0 (Macintosh)"
        assert record.page_visibility is PageVisibility.HIDDEN

    def test_component_failure_uses_defaults(self):
        async def scenario():
            events = ForensicLogger(name="test.assembler.component")
            assembler = ForensicRecordAssembler(
                probe=ExplodingProbe(),
                fingerprinter=DeviceFingerprinter(),
                triangulator=LocationTriangulator([FixedStrategy(LocationMethod.IP, 5000.0)]),
                events=events,
            )
            record = await assembler.capture("link-1", "audit-1", CapabilitySet())
            await assembler.drain()
            return record, events

        record, events = asyncio.run(scenario())

        assert record.network_identity.public_ip == UNKNOWN_IP
        assert record.network_identity.identification_failed is True
        assert record.best_location.method is LocationMethod.IP
        failed = events.get_recent_events(event_type=ForensicEventType.COMPONENT_FAILED)
        assert failed[0].details["component"] == "network_probe"

    def test_broken_environment(self):
        """An environment read failure falls back to defaults without losing the IP."""
        async def scenario():
            events = ForensicLogger(name="test.assembler.environment")
            assembler = make_assembler(
                ip_providers=[StaticProvider("ipinfo", IpIdentity(ip="88.12.34.56"))],
                events=events,
            )
            record = await assembler.capture("link-1", "audit-1", CapabilitySet(environment=BrokenEnvironment()))
            await assembler.drain()
            return record, events

        record, events = asyncio.run(scenario())

        assert record.network_identity.public_ip == "88.12.34.56"
        assert record.network_identity.identification_failed is False
        assert record.user_agent == ""
        assert record.session.referrer == "direct"
        assert not events.get_recent_events(event_type=ForensicEventType.COMPONENT_FAILED)

    def test_concurrent_captures_same_access(self):
        """Two captures racing on one access id leave one stored record."""
        async def scenario():
            store = InMemoryForensicStore()
            assembler = make_assembler(
                ip_providers=[StaticProvider("ipapi", IpIdentity(ip="1.2.3.4"))],
                strategies=[FixedStrategy(LocationMethod.IP, 5000.0)],
                store=store,
            )
            access_id = generate_access_id(T0)
            await asyncio.gather(
                assembler.capture("link-1", "audit-1", CapabilitySet(), access_id=access_id),
                assembler.capture("link-1", "audit-1", CapabilitySet(), access_id=access_id),
            )
            results = await assembler.drain()
            return store, results

        store, results = asyncio.run(scenario())
        assert len(store) == 1
        assert all(r.persisted for r in results)


# ============================================================================
# Persistence Tests
# ============================================================================

class TestPersistence:
    """Tests for background persistence."""

    def test_unconfigured_store(self):
        async def scenario():
            metrics = CaptureMetrics()
            assembler = make_assembler(metrics=metrics)
            record = await assembler.capture("link-1", "audit-1", CapabilitySet())
            return record, await assembler.drain(), metrics

        record, results, metrics = asyncio.run(scenario())
        assert results[0].persisted is False
        assert results[0].record_id == record.access_id
        assert metrics.get_summary()["persistence"]["failed"] == 1

    def test_store_exception_is_reported(self):
        async def scenario():
            events = ForensicLogger(name="test.assembler.store")
            assembler = make_assembler(store=ExplodingStore(), events=events)
            record = await assembler.capture("link-1", "audit-1", CapabilitySet())
            return record, await assembler.drain(), events

        record, results, events = asyncio.run(scenario())
        assert record.access_id
        assert results[0].persisted is False
        assert "disk on fire" in results[0].error
        failed = events.get_recent_events(event_type=ForensicEventType.PERSISTENCE_FAILED)
        assert failed[0].details["store"] == "exploding"

    def test_capture_returns_before_write(self):
        async def scenario():
            store = InMemoryForensicStore()
            assembler = make_assembler(store=store)
            record = await assembler.capture("link-1", "audit-1", CapabilitySet())
            pending = assembler.pending_writes
            await assembler.drain()
            return record, pending, assembler.pending_writes, await store.get(record.access_id)

        record, pending_before, pending_after, stored = asyncio.run(scenario())
        assert pending_before == 1
        assert pending_after == 0
        assert stored == record

    def test_metrics(self):
        async def scenario():
            metrics = CaptureMetrics()
            assembler = make_assembler(
                strategies=[FixedStrategy(LocationMethod.GPS, 10.0), FixedStrategy(LocationMethod.WIFI, 50.0)],
                store=InMemoryForensicStore(),
                metrics=metrics,
            )
            await assembler.capture("link-1", "audit-1", CapabilitySet())
            await assembler.capture("link-1", "audit-1", CapabilitySet())
            await assembler.drain()
            return metrics.get_summary()

        summary = asyncio.run(scenario())
        assert summary["captures"]["total"] == 2
        assert summary["captures"]["identification_failed"] == 2
        assert summary["location_sources"] == {"gps": 2, "wifi": 2}
        assert summary["persistence"] == {"total": 2, "failed": 0, "failure_rate": 0}
