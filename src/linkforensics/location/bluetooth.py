"""Bluetooth LE beacon positioning.

Distances come from the log-distance path-loss model::

    d = 10 ** ((tx_power - rssi) / (10 * n))

with ``n = 2`` for indoor environments, clamped to [1, 100] meters. Only
beacons with a known position contribute coordinates; with three or more
of them the position is a least-squares trilateration in a local tangent
plane, otherwise the strongest located beacon's position is used. The
strongest beacon's distance is the accuracy bound.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import math

import numpy as np

from linkforensics.capabilities.base import BleBeacon

PATH_LOSS_EXPONENT = 2.0
MIN_DISTANCE_M = 1.0
MAX_DISTANCE_M = 100.0
MIN_RSSI_DBM = -90.0
EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True)
class BeaconPosition:
    """Result of beacon positioning."""

    latitude: float
    longitude: float
    accuracy_meters: float
    beacon_count: int
    trilaterated: bool


def rssi_to_distance(rssi: float, tx_power: float, n: float = PATH_LOSS_EXPONENT) -> float:
    """Estimate distance in meters from RSSI and calibrated transmit power."""
    distance = 10 ** ((tx_power - rssi) / (10 * n))
    return max(MIN_DISTANCE_M, min(distance, MAX_DISTANCE_M))


def _to_local(lat: float, lng: float, lat0: float, lng0: float) -> Tuple[float, float]:
    x = math.radians(lng - lng0) * EARTH_RADIUS_M * math.cos(math.radians(lat0))
    y = math.radians(lat - lat0) * EARTH_RADIUS_M
    return x, y


def _to_geo(x: float, y: float, lat0: float, lng0: float) -> Tuple[float, float]:
    lat = lat0 + math.degrees(y / EARTH_RADIUS_M)
    lng = lng0 + math.degrees(x / (EARTH_RADIUS_M * math.cos(math.radians(lat0))))
    return lat, lng


def trilaterate(anchors: Sequence[Tuple[float, float, float]]) -> Optional[Tuple[float, float]]:
    """Least-squares position from ``(lat, lng, distance)`` anchors.

    Subtracting the first circle equation from the others linearizes the
    system; the solution is found with ``numpy.linalg.lstsq``.

    Returns:
        ``(lat, lng)``, or None for fewer than three anchors or a degenerate
        (collinear) geometry
    """
    if len(anchors) < 3:
        return None

    lat0 = sum(a[0] for a in anchors) / len(anchors)
    lng0 = sum(a[1] for a in anchors) / len(anchors)
    points = np.array([_to_local(a[0], a[1], lat0, lng0) for a in anchors])
    distances = np.array([a[2] for a in anchors])

    x0, y0 = points[0]
    d0 = distances[0]
    A = 2 * (points[1:] - points[0])
    b = (
        d0 ** 2
        - distances[1:] ** 2
        + np.sum(points[1:] ** 2, axis=1)
        - (x0 ** 2 + y0 ** 2)
    )

    solution, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
    if rank < 2 or not np.all(np.isfinite(solution)):
        return None
    return _to_geo(float(solution[0]), float(solution[1]), lat0, lng0)


def locate_from_beacons(beacons: List[BleBeacon]) -> Optional[BeaconPosition]:
    """Position the device from scanned beacons.

    Returns:
        Beacon position, or None when no usable beacon has a known position
    """
    usable = [b for b in beacons if b.rssi > MIN_RSSI_DBM and b.located]
    if not usable:
        return None

    strongest = max(usable, key=lambda b: b.rssi)
    accuracy = rssi_to_distance(strongest.rssi, strongest.tx_power)

    anchors = [(b.latitude, b.longitude, rssi_to_distance(b.rssi, b.tx_power)) for b in usable]
    position = trilaterate(anchors)
    if position is not None:
        return BeaconPosition(
            latitude=position[0],
            longitude=position[1],
            accuracy_meters=accuracy,
            beacon_count=len(usable),
            trilaterated=True,
        )

    return BeaconPosition(
        latitude=strongest.latitude,
        longitude=strongest.longitude,
        accuracy_meters=accuracy,
        beacon_count=len(usable),
        trilaterated=False,
    )
