"""Location triangulation from GPS, WiFi, Bluetooth, cellular and IP sources."""

from linkforensics.location.bluetooth import (
    BeaconPosition,
    rssi_to_distance,
    trilaterate,
    locate_from_beacons,
)
from linkforensics.location.strategies import (
    LocationStrategy,
    GpsStrategy,
    WifiStrategy,
    BluetoothStrategy,
    CellularStrategy,
    IpStrategy,
    cell_accuracy,
    select_access_points,
)
from linkforensics.location.triangulator import (
    METHOD_RANK,
    LocationTriangulator,
    better_fix,
    is_valid_fix,
    location_confidence,
)

__all__ = [
    "BeaconPosition",
    "rssi_to_distance",
    "trilaterate",
    "locate_from_beacons",
    "LocationStrategy",
    "GpsStrategy",
    "WifiStrategy",
    "BluetoothStrategy",
    "CellularStrategy",
    "IpStrategy",
    "cell_accuracy",
    "select_access_points",
    "METHOD_RANK",
    "LocationTriangulator",
    "better_fix",
    "is_valid_fix",
    "location_confidence",
]
