"""Location strategies.

Each strategy turns one capability (or provider chain) into at most one
``LocationFix``. Strategies may raise; ``LocationTriangulator`` converts
every failure or timeout into "no fix".
"""

from abc import ABC, abstractmethod
from typing import List, Optional
import logging

from linkforensics.capabilities.base import CapabilitySet, CellTower, WifiAccessPoint
from linkforensics.core.errors import ProbeUnavailable
from linkforensics.core.record import LocationFix, LocationMethod
from linkforensics.location.bluetooth import locate_from_beacons
from linkforensics.network.providers import PositionEstimate, ProviderChain

logger = logging.getLogger(__name__)


class LocationStrategy(ABC):
    """One location acquisition technique."""

    method: LocationMethod
    timeout: float = 5.0

    @abstractmethod
    async def locate(self, capabilities: CapabilitySet) -> Optional[LocationFix]:
        """Attempt a fix.

        Returns:
            A fix, or None when the technique found nothing usable

        Raises:
            ProbeUnavailable: The underlying capability is missing
            ProbeTimeout: The capability did not answer in time
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(timeout={self.timeout})"


class GpsStrategy(LocationStrategy):
    """Device location service in high-accuracy mode."""

    method = LocationMethod.GPS

    def __init__(self, timeout: float = 15.0):
        self.timeout = timeout

    async def locate(self, capabilities: CapabilitySet) -> Optional[LocationFix]:
        if not capabilities.geolocation.supported:
            raise ProbeUnavailable("geolocation")

        position = await capabilities.geolocation.request(high_accuracy=True, timeout=self.timeout)
        detail = {
            key: value
            for key, value in (
                ("altitude", position.altitude),
                ("heading", position.heading),
                ("speed", position.speed),
            )
            if value is not None
        }
        return LocationFix(
            method=self.method,
            latitude=position.latitude,
            longitude=position.longitude,
            accuracy_meters=position.accuracy_meters,
            detail=detail,
        )


def select_access_points(
    access_points: List[WifiAccessPoint],
    min_signal_dbm: float = -90.0,
    max_networks: int = 10,
) -> List[WifiAccessPoint]:
    """Drop weak access points and keep the strongest ``max_networks``."""
    usable = [ap for ap in access_points if ap.signal_strength > min_signal_dbm]
    usable.sort(key=lambda ap: ap.signal_strength, reverse=True)
    return usable[:max_networks]


class WifiStrategy(LocationStrategy):
    """WiFi scan resolved through the WiFi positioning providers."""

    method = LocationMethod.WIFI

    def __init__(
        self,
        chain: ProviderChain[List[WifiAccessPoint], PositionEstimate],
        scan_timeout: float = 5.0,
        min_networks: int = 2,
        max_networks: int = 10,
        min_signal_dbm: float = -90.0,
    ):
        self.chain = chain
        self.scan_timeout = scan_timeout
        self.min_networks = min_networks
        self.max_networks = max_networks
        self.min_signal_dbm = min_signal_dbm
        self.timeout = scan_timeout + chain.timeout * max(len(chain), 1)

    async def locate(self, capabilities: CapabilitySet) -> Optional[LocationFix]:
        if not capabilities.wifi.supported:
            raise ProbeUnavailable("wifi_scan")

        scanned = await capabilities.wifi.scan()
        access_points = select_access_points(scanned, self.min_signal_dbm, self.max_networks)
        if len(access_points) < self.min_networks:
            logger.debug(
                "WiFi positioning needs %d networks, %d usable", self.min_networks, len(access_points)
            )
            return None

        estimate, provider = await self.chain.first(access_points)
        return LocationFix(
            method=self.method,
            latitude=estimate.latitude,
            longitude=estimate.longitude,
            accuracy_meters=estimate.accuracy_meters,
            detail={"networks": len(access_points), "provider": provider},
        )


class BluetoothStrategy(LocationStrategy):
    """BLE beacon scan resolved with the path-loss model."""

    method = LocationMethod.BLUETOOTH

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    async def locate(self, capabilities: CapabilitySet) -> Optional[LocationFix]:
        if not capabilities.bluetooth.supported:
            raise ProbeUnavailable("bluetooth_scan")

        beacons = await capabilities.bluetooth.scan()
        position = locate_from_beacons(beacons)
        if position is None:
            return None
        return LocationFix(
            method=self.method,
            latitude=position.latitude,
            longitude=position.longitude,
            accuracy_meters=position.accuracy_meters,
            detail={
                "beacons": position.beacon_count,
                "trilaterated": position.trilaterated,
            },
        )


def cell_accuracy(strength: float) -> float:
    """Accuracy band for a cell tower signal strength."""
    if strength > 20:
        return 500.0
    if strength > 10:
        return 1000.0
    return 2000.0


class CellularStrategy(LocationStrategy):
    """Coarse estimate from the strongest located cell tower."""

    method = LocationMethod.CELL

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout

    async def locate(self, capabilities: CapabilitySet) -> Optional[LocationFix]:
        if not capabilities.connection.supported:
            raise ProbeUnavailable("connection_info")

        info = capabilities.connection.read()
        located: List[CellTower] = [t for t in info.towers if t.located]
        if not located:
            return None

        tower = max(located, key=lambda t: t.strength)
        return LocationFix(
            method=self.method,
            latitude=tower.latitude,
            longitude=tower.longitude,
            accuracy_meters=cell_accuracy(tower.strength),
            detail={
                "tower_id": tower.tower_id,
                "strength": tower.strength,
                "connection_type": info.connection_type,
            },
        )


class IpStrategy(LocationStrategy):
    """IP geolocation through the ordered IP geolocation providers."""

    method = LocationMethod.IP

    def __init__(self, chain: ProviderChain[None, PositionEstimate]):
        self.chain = chain
        self.timeout = chain.timeout * max(len(chain), 1)

    async def locate(self, capabilities: CapabilitySet) -> Optional[LocationFix]:
        estimate, provider = await self.chain.first(None)
        detail = {"provider": provider}
        if estimate.isp:
            detail["isp"] = estimate.isp
        return LocationFix(
            method=self.method,
            latitude=estimate.latitude,
            longitude=estimate.longitude,
            accuracy_meters=estimate.accuracy_meters,
            detail=detail,
        )
