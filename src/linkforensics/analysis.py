"""Analysis helpers for stored forensic records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from itertools import combinations
from typing import Any, Dict, List, Optional
import math
import re

from linkforensics.core.record import ForensicRecord, utc_now

EARTH_RADIUS_KM = 6371.0
MIN_SESSION_SECONDS = 2.0

_BOT_RE = re.compile(r"bot|crawler|spider|crawling", re.IGNORECASE)
_MOBILE_RE = re.compile(r"mobile|android|iphone|ipad", re.IGNORECASE)
# Edge and Opera also carry "Chrome"; Chrome also carries "Safari"
_BROWSER_RES = (
    ("edge", re.compile(r"\bedg(?:e|a|ios)?/", re.IGNORECASE)),
    ("opera", re.compile(r"\bopr/|\bopera\b", re.IGNORECASE)),
    ("firefox", re.compile(r"\bfirefox/|\bfxios/", re.IGNORECASE)),
    ("chrome", re.compile(r"\bchrome/|\bcrios/", re.IGNORECASE)),
    ("safari", re.compile(r"\bsafari/", re.IGNORECASE)),
)
_OS_RES = (
    ("android", re.compile(r"android", re.IGNORECASE)),
    ("ios", re.compile(r"iphone|ipad|ipod|\bios\b", re.IGNORECASE)),
    ("windows", re.compile(r"windows", re.IGNORECASE)),
    ("mac", re.compile(r"macintosh|mac os", re.IGNORECASE)),
    ("linux", re.compile(r"linux|x11", re.IGNORECASE)),
)


class SuspicionKind(Enum):
    """Suspicious access patterns."""

    BOT = "bot"
    ANONYMIZED = "anonymized"
    FAST_ACCESS = "fast_access"
    LOCATION_DISAGREEMENT = "location_disagreement"


@dataclass
class SuspicionWarning:
    """A suspicious pattern found in a record."""

    kind: SuspicionKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


def parse_user_agent(user_agent: str) -> Dict[str, Any]:
    """Classify a user agent string.

    Returns:
        Dictionary with is_bot, is_mobile, browser and os
    """
    user_agent = user_agent or ""
    browser = next((name for name, rx in _BROWSER_RES if rx.search(user_agent)), "unknown")
    os_name = next((name for name, rx in _OS_RES if rx.search(user_agent)), "unknown")
    return {
        "is_bot": bool(_BOT_RE.search(user_agent)),
        "is_mobile": bool(_MOBILE_RE.search(user_agent)),
        "browser": browser,
        "os": os_name,
    }


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def session_seconds(record: ForensicRecord, now: Optional[datetime] = None) -> float:
    """Session length; open sessions are measured up to ``now``."""
    end = record.session.end or now or utc_now()
    return (end - record.session.start).total_seconds()


def detect_suspicious_activity(
    record: ForensicRecord,
    now: Optional[datetime] = None,
) -> List[SuspicionWarning]:
    """Find suspicious patterns in a record.

    Args:
        record: Record to inspect
        now: Reference time for sessions that have not ended

    Returns:
        Warnings, possibly empty
    """
    warnings: List[SuspicionWarning] = []

    agent = parse_user_agent(record.user_agent)
    if agent["is_bot"]:
        warnings.append(
            SuspicionWarning(SuspicionKind.BOT, "Possible bot detected", {"user_agent": record.user_agent})
        )

    identity = record.network_identity
    if identity.vpn_detected or identity.webrtc_leak:
        warnings.append(
            SuspicionWarning(
                SuspicionKind.ANONYMIZED,
                "Proxy/VPN use detected",
                {
                    "vpn_provider": identity.vpn_provider,
                    "timezone_mismatch": identity.timezone_mismatch,
                    "leaked_public_ip": identity.leaked_public_ip,
                },
            )
        )

    duration = session_seconds(record, now)
    if duration < MIN_SESSION_SECONDS:
        warnings.append(
            SuspicionWarning(
                SuspicionKind.FAST_ACCESS,
                "Extremely fast access",
                {"session_seconds": duration},
            )
        )

    if record.best_location:
        fixes = record.best_location.triangulation
        for a, b in combinations(sorted(fixes), 2):
            first, second = fixes[a], fixes[b]
            distance_m = 1000 * haversine_km(
                first.latitude, first.longitude, second.latitude, second.longitude
            )
            if distance_m > first.accuracy_meters + second.accuracy_meters:
                warnings.append(
                    SuspicionWarning(
                        SuspicionKind.LOCATION_DISAGREEMENT,
                        f"{a} and {b} locations disagree by {distance_m / 1000:.1f} km",
                        {"methods": [a, b], "distance_m": distance_m},
                    )
                )

    return warnings
