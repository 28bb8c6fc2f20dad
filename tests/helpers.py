"""Fakes shared by the test modules."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from linkforensics.capabilities.base import (
    BleBeacon,
    BluetoothScanCapability,
    ConnectionInfo,
    ConnectionInfoCapability,
    EnvironmentCapability,
    EnvironmentInfo,
    GeolocationCapability,
    GeoPosition,
    IceGatheringCapability,
    RasterCapability,
    RasterPattern,
    WifiAccessPoint,
    WifiScanCapability,
)
from linkforensics.core.errors import ProbeUnavailable
from linkforensics.core.record import (
    DeviceFingerprint,
    ForensicRecord,
    LocationFix,
    LocationMethod,
    NetworkIdentity,
    SessionInfo,
)
from linkforensics.location.strategies import LocationStrategy
from linkforensics.network.providers import Provider

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Providers
# ============================================================================

class StaticProvider(Provider):
    """Always returns the same answer and counts calls."""

    def __init__(self, name: str, answer: Any):
        self.name = name
        self.answer = answer
        self.calls = 0

    async def fetch(self, request):
        self.calls += 1
        return self.answer


class FailingProvider(Provider):
    def __init__(self, name: str, error: Optional[Exception] = None):
        self.name = name
        self.error = error or ConnectionError("unreachable")
        self.calls = 0

    async def fetch(self, request):
        self.calls += 1
        raise self.error


class HangingProvider(Provider):
    """Never answers within any reasonable timeout."""

    def __init__(self, name: str):
        self.name = name
        self.calls = 0

    async def fetch(self, request):
        self.calls += 1
        await asyncio.sleep(3600)


class FakeHttp:
    """Stands in for ``HttpClient``, returning canned JSON per URL."""

    def __init__(self, responses: Optional[dict] = None):
        self.responses = responses or {}
        self.requests: List[tuple] = []

    async def get_json(self, url: str):
        self.requests.append(("GET", url, None))
        return self._answer(url)

    async def post_json(self, url: str, body):
        self.requests.append(("POST", url, body))
        return self._answer(url)

    def _answer(self, url: str):
        answer = self.responses.get(url)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def close(self):
        pass


# ============================================================================
# Capabilities
# ============================================================================

class FakeGeolocation(GeolocationCapability):
    def __init__(self, position: Optional[GeoPosition] = None, error: Optional[Exception] = None):
        self.position = position
        self.error = error
        self.requests: List[tuple] = []

    async def request(self, high_accuracy: bool, timeout: float) -> GeoPosition:
        self.requests.append((high_accuracy, timeout))
        if self.error:
            raise self.error
        return self.position


class DeniedGeolocation(GeolocationCapability):
    async def request(self, high_accuracy: bool, timeout: float) -> GeoPosition:
        raise ProbeUnavailable("geolocation", "permission denied")


class HangingGeolocation(GeolocationCapability):
    async def request(self, high_accuracy: bool, timeout: float) -> GeoPosition:
        await asyncio.sleep(3600)


class FakeIce(IceGatheringCapability):
    def __init__(self, candidates: List[str]):
        self.candidates = candidates

    async def gather_candidates(self) -> List[str]:
        return list(self.candidates)


class HangingIce(IceGatheringCapability):
    async def gather_candidates(self) -> List[str]:
        await asyncio.sleep(3600)


class FakeWifi(WifiScanCapability):
    def __init__(self, access_points: List[WifiAccessPoint]):
        self.access_points = access_points

    async def scan(self) -> List[WifiAccessPoint]:
        return list(self.access_points)


class FakeBluetooth(BluetoothScanCapability):
    def __init__(self, beacons: List[BleBeacon]):
        self.beacons = beacons

    async def scan(self) -> List[BleBeacon]:
        return list(self.beacons)


class FakeConnection(ConnectionInfoCapability):
    def __init__(self, info: ConnectionInfo):
        self.info = info

    def read(self) -> ConnectionInfo:
        return self.info


class BrokenEnvironment(EnvironmentCapability):
    """Environment whose read fails with an unexpected error."""

    def read(self) -> EnvironmentInfo:
        raise RuntimeError("navigator gone")


class FakeRaster(RasterCapability):
    def __init__(self, buffer: bytes = b"", error: Optional[Exception] = None):
        self.buffer = buffer
        self.error = error

    def render(self, pattern: RasterPattern) -> bytes:
        if self.error:
            raise self.error
        return self.buffer


def access_points(*strengths: float) -> List[WifiAccessPoint]:
    return [
        WifiAccessPoint(bssid=f"AA:BB:CC:DD:EE:{i:02X}", signal_strength=s, channel=6)
        for i, s in enumerate(strengths)
    ]


# ============================================================================
# Location strategies
# ============================================================================

class FixedStrategy(LocationStrategy):
    """Strategy returning a preset fix (or raising) after an optional delay."""

    def __init__(
        self,
        method: LocationMethod,
        accuracy: Optional[float] = None,
        latitude: float = 40.0,
        longitude: float = -3.0,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        timeout: float = 5.0,
    ):
        self.method = method
        self.accuracy = accuracy
        self.latitude = latitude
        self.longitude = longitude
        self.error = error
        self.delay = delay
        self.timeout = timeout

    async def locate(self, capabilities) -> Optional[LocationFix]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        if self.accuracy is None:
            return None
        return LocationFix(
            method=self.method,
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy_meters=self.accuracy,
        )


# ============================================================================
# Records
# ============================================================================

def make_record(
    access_id: str = "access-1714564800000-abc123",
    link_id: str = "link-1",
    resource_audit_id: str = "audit-1",
    public_ip: str = "203.0.113.7",
    created_at: datetime = T0,
    **kwargs,
) -> ForensicRecord:
    fields = dict(
        access_id=access_id,
        link_id=link_id,
        resource_audit_id=resource_audit_id,
        network_identity=NetworkIdentity(public_ip=public_ip),
        device_fingerprint=DeviceFingerprint(canvas_hash="1a2b3c"),
        trust_score=100,
        session=SessionInfo(start=created_at),
        created_at=created_at,
    )
    fields.update(kwargs)
    return ForensicRecord(**fields)


class StepClock:
    """Clock returning preset times in order, repeating the last one."""

    def __init__(self, *times: datetime):
        self.times = list(times)
        self.index = 0

    def __call__(self) -> datetime:
        value = self.times[min(self.index, len(self.times) - 1)]
        self.index += 1
        return value


def seconds(n: float) -> timedelta:
    return timedelta(seconds=n)
