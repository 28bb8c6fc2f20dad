"""Capability interfaces consumed by the capture engine.

Every platform capability (geolocation, ICE gathering, wireless scans,
connection metadata, rendering, environment attributes) is an interface with
an explicit ``supported`` flag. Unsupported variants raise
``ProbeUnavailable`` when used. A ``CapabilitySet`` is assembled once per
access and passed to the components that need it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from linkforensics.core.errors import ProbeUnavailable
from linkforensics.core.record import PageVisibility, ScreenInfo


@dataclass(frozen=True)
class GeoPosition:
    """Position reported by a device location service."""

    latitude: float
    longitude: float
    accuracy_meters: float
    altitude: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None


@dataclass(frozen=True)
class WifiAccessPoint:
    """A scanned WiFi access point.

    Attributes:
        bssid: Access point MAC address (``AA:BB:CC:DD:EE:FF``)
        signal_strength: Signal strength in dBm
        channel: WiFi channel
        ssid: Network name
        frequency: Frequency in MHz
    """

    bssid: str
    signal_strength: float
    channel: int
    ssid: str = ""
    frequency: Optional[int] = None


@dataclass(frozen=True)
class BleBeacon:
    """A scanned Bluetooth LE beacon.

    Attributes:
        beacon_id: Beacon identifier
        rssi: Received signal strength in dBm
        tx_power: Calibrated transmit power at 1 m in dBm
        latitude: Known beacon latitude, if registered
        longitude: Known beacon longitude, if registered
    """

    beacon_id: str
    rssi: float
    tx_power: float = -59.0
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def located(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class CellTower:
    """A serving or neighbouring cell tower."""

    tower_id: str
    strength: float
    mcc: str = ""
    mnc: str = ""
    lac: str = ""
    cid: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def located(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class ConnectionInfo:
    """Network connection metadata.

    Attributes:
        connection_type: Physical link type (wifi, cellular, ethernet)
        effective_type: Estimated connection class (4g, 3g, ...)
        rtt_ms: Round-trip time estimate
        downlink_mbps: Downlink bandwidth estimate
        save_data: Reduced data usage requested
        towers: Cell towers visible to the device
    """

    connection_type: Optional[str] = None
    effective_type: Optional[str] = None
    rtt_ms: Optional[float] = None
    downlink_mbps: Optional[float] = None
    save_data: bool = False
    towers: Tuple[CellTower, ...] = ()


@dataclass(frozen=True)
class EnvironmentInfo:
    """Declarative browser/device environment attributes."""

    screen: ScreenInfo = field(default_factory=ScreenInfo)
    timezone: str = "unknown"
    languages: Tuple[str, ...] = ()
    language: Optional[str] = None
    platform: str = "unknown"
    hardware_concurrency: int = 0
    device_memory: Optional[float] = None
    cookie_enabled: bool = False
    do_not_track: bool = False
    user_agent: str = ""
    referrer: str = ""
    page_visibility: PageVisibility = PageVisibility.VISIBLE


@dataclass(frozen=True)
class DrawOp:
    """One drawing instruction of a raster pattern."""

    kind: str  # "rect" or "text"
    x: int
    y: int
    color: Tuple[int, int, int, int]
    width: int = 0
    height: int = 0
    text: str = ""
    font_size: int = 14


@dataclass(frozen=True)
class RasterPattern:
    """A fixed drawing to render on an offscreen surface."""

    width: int
    height: int
    ops: Tuple[DrawOp, ...]


class GeolocationCapability(ABC):
    """Device location service."""

    supported = True

    @abstractmethod
    async def request(self, high_accuracy: bool, timeout: float) -> GeoPosition:
        """Request the current position.

        Raises:
            ProbeUnavailable: Permission denied or service missing
            ProbeTimeout: No position within ``timeout`` seconds
        """
        pass


class IceGatheringCapability(ABC):
    """Peer-connection ICE candidate gathering."""

    supported = True

    @abstractmethod
    async def gather_candidates(self) -> List[str]:
        """Return raw ICE candidate strings."""
        pass


class WifiScanCapability(ABC):
    """Nearby WiFi access point scan."""

    supported = True

    @abstractmethod
    async def scan(self) -> List[WifiAccessPoint]:
        pass


class BluetoothScanCapability(ABC):
    """Nearby Bluetooth LE beacon scan."""

    supported = True

    @abstractmethod
    async def scan(self) -> List[BleBeacon]:
        pass


class ConnectionInfoCapability(ABC):
    """Network connection metadata."""

    supported = True

    @abstractmethod
    def read(self) -> ConnectionInfo:
        pass


class RasterCapability(ABC):
    """Offscreen 2D rendering."""

    supported = True

    @abstractmethod
    def render(self, pattern: RasterPattern) -> bytes:
        """Render ``pattern`` and return the encoded pixel buffer."""
        pass


class EnvironmentCapability(ABC):
    """Declarative environment attributes."""

    supported = True

    @abstractmethod
    def read(self) -> EnvironmentInfo:
        pass


class UnsupportedGeolocation(GeolocationCapability):
    supported = False

    async def request(self, high_accuracy: bool, timeout: float) -> GeoPosition:
        raise ProbeUnavailable("geolocation")


class UnsupportedIceGathering(IceGatheringCapability):
    supported = False

    async def gather_candidates(self) -> List[str]:
        raise ProbeUnavailable("ice_gathering")


class UnsupportedWifiScan(WifiScanCapability):
    supported = False

    async def scan(self) -> List[WifiAccessPoint]:
        raise ProbeUnavailable("wifi_scan")


class UnsupportedBluetoothScan(BluetoothScanCapability):
    supported = False

    async def scan(self) -> List[BleBeacon]:
        raise ProbeUnavailable("bluetooth_scan")


class UnsupportedConnectionInfo(ConnectionInfoCapability):
    supported = False

    def read(self) -> ConnectionInfo:
        raise ProbeUnavailable("connection_info")


class UnsupportedRaster(RasterCapability):
    supported = False

    def render(self, pattern: RasterPattern) -> bytes:
        raise ProbeUnavailable("raster")


class StaticEnvironment(EnvironmentCapability):
    """Environment capability backed by a fixed ``EnvironmentInfo``."""

    def __init__(self, info: Optional[EnvironmentInfo] = None):
        self.info = info or EnvironmentInfo()

    def read(self) -> EnvironmentInfo:
        return self.info


@dataclass
class CapabilitySet:
    """All capabilities available for one access.

    Missing capabilities default to their unsupported variants.
    """

    geolocation: GeolocationCapability = field(default_factory=UnsupportedGeolocation)
    ice: IceGatheringCapability = field(default_factory=UnsupportedIceGathering)
    wifi: WifiScanCapability = field(default_factory=UnsupportedWifiScan)
    bluetooth: BluetoothScanCapability = field(default_factory=UnsupportedBluetoothScan)
    connection: ConnectionInfoCapability = field(default_factory=UnsupportedConnectionInfo)
    raster: RasterCapability = field(default_factory=UnsupportedRaster)
    environment: EnvironmentCapability = field(default_factory=StaticEnvironment)

    def describe(self) -> Dict[str, Any]:
        """Report which capabilities are supported."""
        return {
            "geolocation": self.geolocation.supported,
            "ice": self.ice.supported,
            "wifi": self.wifi.supported,
            "bluetooth": self.bluetooth.supported,
            "connection": self.connection.supported,
            "raster": self.raster.supported,
            "environment": self.environment.supported,
        }
