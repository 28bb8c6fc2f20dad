"""Platform capability interfaces and adapters."""

from linkforensics.capabilities.base import (
    GeoPosition,
    WifiAccessPoint,
    BleBeacon,
    CellTower,
    ConnectionInfo,
    EnvironmentInfo,
    DrawOp,
    RasterPattern,
    GeolocationCapability,
    IceGatheringCapability,
    WifiScanCapability,
    BluetoothScanCapability,
    ConnectionInfoCapability,
    RasterCapability,
    EnvironmentCapability,
    StaticEnvironment,
    CapabilitySet,
)
from linkforensics.capabilities.client import (
    capabilities_from_client,
    frequency_to_channel,
)
from linkforensics.capabilities.raster import PillowRaster

__all__ = [
    "GeoPosition",
    "WifiAccessPoint",
    "BleBeacon",
    "CellTower",
    "ConnectionInfo",
    "EnvironmentInfo",
    "DrawOp",
    "RasterPattern",
    "GeolocationCapability",
    "IceGatheringCapability",
    "WifiScanCapability",
    "BluetoothScanCapability",
    "ConnectionInfoCapability",
    "RasterCapability",
    "EnvironmentCapability",
    "StaticEnvironment",
    "CapabilitySet",
    "capabilities_from_client",
    "frequency_to_channel",
    "PillowRaster",
]
