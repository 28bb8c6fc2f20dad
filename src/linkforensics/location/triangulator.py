"""Location triangulation.

All strategies run concurrently. Each successful fix is folded into the
running best as soon as it arrives, so the result does not depend on the
order in which strategies complete.
"""

from typing import Callable, Dict, List, Optional, Sequence
import asyncio
import logging
import math

from linkforensics.capabilities.base import CapabilitySet
from linkforensics.core.errors import AllProvidersExhausted, ProbeTimeout, ProbeUnavailable
from linkforensics.core.record import BestLocation, LocationFix, LocationMethod
from linkforensics.location.strategies import LocationStrategy

logger = logging.getLogger(__name__)

# Equal-accuracy ties go to the earlier method
METHOD_RANK = {
    LocationMethod.GPS: 0,
    LocationMethod.WIFI: 1,
    LocationMethod.BLUETOOTH: 2,
    LocationMethod.CELL: 3,
    LocationMethod.IP: 4,
}

CONFIDENCE_PER_SOURCE = 25

# (method value, reason)
StrategyFailureCallback = Callable[[str, str], None]


def better_fix(current: Optional[LocationFix], candidate: LocationFix) -> LocationFix:
    """Pick the more accurate of two fixes."""
    if current is None:
        return candidate
    key_current = (current.accuracy_meters, METHOD_RANK[current.method])
    key_candidate = (candidate.accuracy_meters, METHOD_RANK[candidate.method])
    return candidate if key_candidate < key_current else current


def is_valid_fix(fix: LocationFix) -> bool:
    """Reject fixes with out-of-range coordinates or a non-positive radius."""
    values = (fix.latitude, fix.longitude, fix.accuracy_meters)
    if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
        return False
    return -90 <= fix.latitude <= 90 and -180 <= fix.longitude <= 180 and fix.accuracy_meters > 0


def location_confidence(source_count: int) -> int:
    return min(100, CONFIDENCE_PER_SOURCE * source_count)


class LocationTriangulator:
    """Runs the location strategies and reduces them to one ``BestLocation``.

    Example:
        >>> triangulator = LocationTriangulator([GpsStrategy(), IpStrategy(chain)])
        >>> best = await triangulator.triangulate(capabilities)
        >>> best.method, best.confidence
        (<LocationMethod.GPS: 'gps'>, 50)
    """

    def __init__(
        self,
        strategies: Sequence[LocationStrategy],
        on_failure: Optional[StrategyFailureCallback] = None,
    ):
        """Initialize the triangulator.

        Args:
            strategies: Strategies to run, at most one per method
            on_failure: Called with the method and reason of each failed strategy
        """
        self.strategies = list(strategies)
        self.on_failure = on_failure

    async def triangulate(self, capabilities: CapabilitySet) -> Optional[BestLocation]:
        """Acquire the best available location.

        Args:
            capabilities: Capabilities of the accessing client

        Returns:
            Best location, or None when no strategy produced a fix
        """
        tasks = [
            asyncio.ensure_future(self._run(strategy, capabilities))
            for strategy in self.strategies
        ]

        best: Optional[LocationFix] = None
        fixes: Dict[LocationMethod, LocationFix] = {}
        for completed in asyncio.as_completed(tasks):
            fix = await completed
            if fix is None:
                continue
            fixes[fix.method] = fix
            best = better_fix(best, fix)

        if best is None:
            logger.info("No location strategy produced a fix")
            return None

        ordered: List[LocationMethod] = sorted(fixes, key=METHOD_RANK.__getitem__)
        return BestLocation(
            latitude=best.latitude,
            longitude=best.longitude,
            accuracy_meters=best.accuracy_meters,
            method=best.method,
            confidence=location_confidence(len(fixes)),
            sources=tuple(m.value for m in ordered),
            triangulation={m.value: fixes[m] for m in ordered},
        )

    async def _run(
        self, strategy: LocationStrategy, capabilities: CapabilitySet
    ) -> Optional[LocationFix]:
        method = strategy.method.value
        try:
            fix = await asyncio.wait_for(strategy.locate(capabilities), strategy.timeout)
        except asyncio.TimeoutError:
            self._failed(method, str(ProbeTimeout(method, strategy.timeout)))
            return None
        except (ProbeUnavailable, ProbeTimeout, AllProvidersExhausted) as e:
            self._failed(method, str(e))
            return None
        except Exception as e:
            logger.warning("Location strategy %s raised: %s", method, e)
            self._failed(method, f"{type(e).__name__}: {e}")
            return None

        if fix is None:
            return None
        if not is_valid_fix(fix):
            self._failed(method, "invalid fix")
            return None
        logger.debug("%s fix: ±%.0fm", method, fix.accuracy_meters)
        return fix

    def _failed(self, method: str, reason: str) -> None:
        logger.debug("Location strategy %s failed: %s", method, reason)
        if self.on_failure:
            self.on_failure(method, reason)
