"""Capabilities backed by the signal payload posted by the client page.

The browser collects raw signals (position, ICE candidates, scans,
connection metadata, canvas output) and posts them as one JSON document.
``capabilities_from_client`` turns that document into a ``CapabilitySet``;
any section the client omitted becomes the unsupported variant.

Example payload::

    {
        "environment": {"timezone": "Europe/Madrid", "languages": ["es-ES"], ...},
        "geolocation": {"latitude": 40.4, "longitude": -3.7, "accuracy": 20},
        "iceCandidates": ["candidate:1 1 udp 2122260223 192.168.1.20 54321 typ host"],
        "wifi": [{"bssid": "AA:BB:CC:DD:EE:01", "signalStrength": -48, "channel": 6}],
        "bluetooth": [{"id": "beacon-001", "rssi": -45, "txPower": -59}],
        "connection": {"effectiveType": "4g", "rtt": 150, "downlink": 12.5},
        "canvas": "data:image/png;base64,iVBORw0..."
    }
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple
import base64
import binascii
import logging
import math

from linkforensics.capabilities.base import (
    BleBeacon,
    BluetoothScanCapability,
    CapabilitySet,
    CellTower,
    ConnectionInfo,
    ConnectionInfoCapability,
    EnvironmentInfo,
    GeolocationCapability,
    GeoPosition,
    IceGatheringCapability,
    RasterCapability,
    RasterPattern,
    StaticEnvironment,
    WifiAccessPoint,
    WifiScanCapability,
)
from linkforensics.core.errors import ProbeTimeout, ProbeUnavailable
from linkforensics.core.record import PageVisibility, ScreenInfo

logger = logging.getLogger(__name__)

# beacon/tower id -> (latitude, longitude)
Registry = Mapping[str, Tuple[float, float]]


def _number(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Coerce a client-supplied number, falling back to ``default``."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _integer(value: Any, default: int) -> int:
    number = _number(value)
    return int(number) if number is not None else default


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _entries(section: str, value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        logger.debug("Ignoring %s section: expected a list, got %s", section, type(value).__name__)
        return []
    entries = [entry for entry in value if isinstance(entry, dict)]
    if len(entries) < len(value):
        logger.debug("Skipped %d non-object %s entries", len(value) - len(entries), section)
    return entries


def _registered(
    entry: Dict[str, Any], entry_id: str, registry: Registry
) -> Tuple[Optional[float], Optional[float]]:
    latitude = _number(entry.get("latitude"))
    longitude = _number(entry.get("longitude"))
    if (latitude is None or longitude is None) and entry_id in registry:
        latitude, longitude = registry[entry_id]
    return latitude, longitude


class ClientGeolocation(GeolocationCapability):
    """Replays the position (or error) the client obtained."""

    def __init__(self, data: Dict[str, Any]):
        self.data = data

    async def request(self, high_accuracy: bool, timeout: float) -> GeoPosition:
        error = self.data.get("error")
        if error == "timeout":
            raise ProbeTimeout("geolocation", timeout)
        if error:
            raise ProbeUnavailable("geolocation", str(error))

        latitude = _number(self.data.get("latitude"))
        longitude = _number(self.data.get("longitude"))
        accuracy = _number(self.data.get("accuracy"))
        if latitude is None or longitude is None or accuracy is None:
            raise ProbeUnavailable("geolocation", "malformed position")
        return GeoPosition(
            latitude=latitude,
            longitude=longitude,
            accuracy_meters=accuracy,
            altitude=_number(self.data.get("altitude")),
            heading=_number(self.data.get("heading")),
            speed=_number(self.data.get("speed")),
        )


class ClientIceGathering(IceGatheringCapability):
    def __init__(self, candidates: List[str]):
        self.candidates = [c for c in candidates if isinstance(c, str)]

    async def gather_candidates(self) -> List[str]:
        return list(self.candidates)


class ClientWifiScan(WifiScanCapability):
    def __init__(self, access_points: List[WifiAccessPoint]):
        self.access_points = access_points

    async def scan(self) -> List[WifiAccessPoint]:
        return list(self.access_points)


class ClientBluetoothScan(BluetoothScanCapability):
    def __init__(self, beacons: List[BleBeacon]):
        self.beacons = beacons

    async def scan(self) -> List[BleBeacon]:
        return list(self.beacons)


class ClientConnectionInfo(ConnectionInfoCapability):
    def __init__(self, info: ConnectionInfo):
        self.info = info

    def read(self) -> ConnectionInfo:
        return self.info


class ClientRaster(RasterCapability):
    """Returns the buffer the client produced for the fixed pattern."""

    def __init__(self, data_url: str):
        self.data_url = data_url

    def render(self, pattern: RasterPattern) -> bytes:
        _, _, encoded = self.data_url.partition(",")
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProbeUnavailable("raster", f"undecodable canvas data: {e}") from e


def parse_environment(data: Dict[str, Any]) -> EnvironmentInfo:
    """Build ``EnvironmentInfo`` from the client's environment section.

    Values of the wrong type fall back to the field defaults.
    """
    data = _mapping(data)
    screen = _mapping(data.get("screen"))
    language = _text(data.get("language"))
    languages = data.get("languages")
    if isinstance(languages, list):
        languages = tuple(lang for lang in languages if isinstance(lang, str))
    else:
        languages = (language,) if language else ()
    try:
        page_visibility = PageVisibility(data.get("visibility", "visible"))
    except (ValueError, TypeError):
        page_visibility = PageVisibility.VISIBLE

    return EnvironmentInfo(
        screen=ScreenInfo(
            width=_integer(screen.get("width"), 0),
            height=_integer(screen.get("height"), 0),
            color_depth=_integer(screen.get("colorDepth"), 24),
            pixel_ratio=_number(screen.get("pixelRatio"), 1.0),
        ),
        timezone=_text(data.get("timezone")) or "unknown",
        languages=languages,
        language=language,
        platform=_text(data.get("platform")) or "unknown",
        hardware_concurrency=_integer(data.get("hardwareConcurrency"), 0),
        device_memory=_number(data.get("deviceMemory")),
        cookie_enabled=data.get("cookieEnabled") is True,
        do_not_track=data.get("doNotTrack") in (True, "1", "yes"),
        user_agent=_text(data.get("userAgent")) or "",
        referrer=_text(data.get("referrer")) or "direct",
        page_visibility=page_visibility,
    )


def parse_wifi(entries: List[Dict[str, Any]]) -> List[WifiAccessPoint]:
    """Parse scanned access points, skipping entries without a BSSID or signal."""
    access_points = []
    for entry in _entries("wifi", entries):
        bssid = _text(entry.get("bssid"))
        signal = _number(entry.get("signalStrength"))
        if bssid is None or signal is None:
            logger.debug("Skipping malformed wifi entry: %r", entry)
            continue
        frequency = _number(entry.get("frequency"))
        channel = _number(entry.get("channel"))
        if channel is None and frequency is not None:
            channel = frequency_to_channel(int(frequency))
        access_points.append(
            WifiAccessPoint(
                bssid=bssid.upper(),
                signal_strength=signal,
                channel=int(channel) if channel is not None else 6,
                ssid=_text(entry.get("ssid")) or "",
                frequency=int(frequency) if frequency is not None else None,
            )
        )
    return access_points


def parse_bluetooth(
    entries: List[Dict[str, Any]],
    registry: Optional[Registry] = None,
) -> List[BleBeacon]:
    registry = registry or {}
    beacons = []
    for entry in _entries("bluetooth", entries):
        rssi = _number(entry.get("rssi"))
        if entry.get("id") is None or rssi is None:
            logger.debug("Skipping malformed bluetooth entry: %r", entry)
            continue
        beacon_id = str(entry["id"])
        latitude, longitude = _registered(entry, beacon_id, registry)
        beacons.append(
            BleBeacon(
                beacon_id=beacon_id,
                rssi=rssi,
                tx_power=_number(entry.get("txPower"), -59.0),
                latitude=latitude,
                longitude=longitude,
            )
        )
    return beacons


def parse_connection(data: Dict[str, Any], registry: Optional[Registry] = None) -> ConnectionInfo:
    data = _mapping(data)
    registry = registry or {}
    towers = []
    for entry in _entries("towers", data.get("towers") or []):
        if entry.get("id") is None:
            logger.debug("Skipping cell tower without id: %r", entry)
            continue
        tower_id = str(entry["id"])
        latitude, longitude = _registered(entry, tower_id, registry)
        towers.append(
            CellTower(
                tower_id=tower_id,
                strength=_number(entry.get("strength"), 0.0),
                mcc=str(entry.get("mcc", "")),
                mnc=str(entry.get("mnc", "")),
                lac=str(entry.get("lac", "")),
                cid=str(entry.get("cid", "")),
                latitude=latitude,
                longitude=longitude,
            )
        )

    return ConnectionInfo(
        connection_type=_text(data.get("type")),
        effective_type=_text(data.get("effectiveType")),
        rtt_ms=_number(data.get("rtt")),
        downlink_mbps=_number(data.get("downlink")),
        save_data=data.get("saveData") is True,
        towers=tuple(towers),
    )


def frequency_to_channel(frequency: int) -> int:
    """Convert a WiFi frequency in MHz to its channel number."""
    if 2412 <= frequency <= 2472:
        return round((frequency - 2412) / 5) + 1
    if 5170 <= frequency <= 5825:
        return round((frequency - 5170) / 5) + 34
    return 6


def capabilities_from_client(
    payload: Dict[str, Any],
    beacon_registry: Optional[Registry] = None,
    tower_registry: Optional[Registry] = None,
    raster: Optional[RasterCapability] = None,
) -> CapabilitySet:
    """Build a ``CapabilitySet`` from a client signal payload.

    The payload comes from the visitor's browser and is not trusted:
    malformed entries are skipped and a section of the wrong shape is
    treated as omitted.

    Args:
        payload: Decoded JSON posted by the client page
        beacon_registry: Known BLE beacon positions
        tower_registry: Known cell tower positions
        raster: Renderer used when the client sent no canvas output

    Returns:
        Capability set; omitted sections are unsupported
    """
    payload = _mapping(payload)
    capabilities = CapabilitySet(
        environment=StaticEnvironment(parse_environment(payload.get("environment")))
    )

    if isinstance(payload.get("geolocation"), dict):
        capabilities.geolocation = ClientGeolocation(payload["geolocation"])
    if isinstance(payload.get("iceCandidates"), list):
        capabilities.ice = ClientIceGathering(payload["iceCandidates"])
    if isinstance(payload.get("wifi"), list):
        capabilities.wifi = ClientWifiScan(parse_wifi(payload["wifi"]))
    if isinstance(payload.get("bluetooth"), list):
        capabilities.bluetooth = ClientBluetoothScan(
            parse_bluetooth(payload["bluetooth"], beacon_registry)
        )
    if isinstance(payload.get("connection"), dict):
        capabilities.connection = ClientConnectionInfo(
            parse_connection(payload["connection"], tower_registry)
        )
    if _text(payload.get("canvas")):
        capabilities.raster = ClientRaster(payload["canvas"])
    elif raster is not None:
        capabilities.raster = raster

    return capabilities
