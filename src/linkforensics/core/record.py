"""Forensic record data structures.

One ``ForensicRecord`` is produced per access to a shared link. Records and
their parts are frozen; later changes (focus history, download completion)
produce a new record through ``ForensicRecord.with_updates``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple


UNKNOWN_IP = "unknown"
UNAVAILABLE_HASH = "unavailable"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class LocationMethod(Enum):
    """Location acquisition techniques."""

    GPS = "gps"
    WIFI = "wifi"
    BLUETOOTH = "bluetooth"
    CELL = "cell"
    IP = "ip"


class FocusKind(Enum):
    """Page focus transitions."""

    FOCUS = "focus"
    BLUR = "blur"


class PageVisibility(Enum):
    """Document visibility state at capture time."""

    VISIBLE = "visible"
    HIDDEN = "hidden"
    PRERENDER = "prerender"


@dataclass(frozen=True)
class ConnectionFingerprint:
    """Connection metadata reported by the client.

    Attributes:
        effective_type: Estimated connection class (4g, 3g, ...)
        rtt_ms: Round-trip time estimate in milliseconds
        downlink_mbps: Downlink bandwidth estimate
        save_data: Whether the client requested reduced data usage
        possible_vpn: High RTT combined with high throughput
    """

    effective_type: Optional[str] = None
    rtt_ms: Optional[float] = None
    downlink_mbps: Optional[float] = None
    save_data: bool = False
    possible_vpn: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "effective_type": self.effective_type,
            "rtt_ms": self.rtt_ms,
            "downlink_mbps": self.downlink_mbps,
            "save_data": self.save_data,
            "possible_vpn": self.possible_vpn,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionFingerprint":
        return cls(**data)


@dataclass(frozen=True)
class NetworkIdentity:
    """Network-level identity of the accessing client.

    Attributes:
        public_ip: IP seen by external lookup services, or ``"unknown"``
        local_ip: Private-range address disclosed by ICE gathering
        leaked_public_ip: Public address disclosed by ICE gathering
        vpn_detected: VPN/proxy heuristics fired (network match or timezone mismatch)
        known_vpn_network: ASN table or provider flags identify a VPN/hosting network
        vpn_provider: Known provider name or reported organization
        isp: Reported ISP/organization
        asn: Reported autonomous system number (``AS1234``)
        country: ISO country code reported for the public IP
        timezone_mismatch: Browser timezone outside the country's set
        identification_failed: Every IP provider failed
        connection: Connection-timing fingerprint
    """

    public_ip: str = UNKNOWN_IP
    local_ip: Optional[str] = None
    leaked_public_ip: Optional[str] = None
    vpn_detected: bool = False
    known_vpn_network: bool = False
    vpn_provider: Optional[str] = None
    isp: Optional[str] = None
    asn: Optional[str] = None
    country: Optional[str] = None
    timezone_mismatch: bool = False
    identification_failed: bool = False
    connection: Optional[ConnectionFingerprint] = None

    @property
    def webrtc_leak(self) -> bool:
        """True when ICE gathering disclosed a public IP other than ``public_ip``."""
        return bool(self.leaked_public_ip) and self.leaked_public_ip != self.public_ip

    def to_dict(self) -> Dict[str, Any]:
        return {
            "public_ip": self.public_ip,
            "local_ip": self.local_ip,
            "leaked_public_ip": self.leaked_public_ip,
            "vpn_detected": self.vpn_detected,
            "known_vpn_network": self.known_vpn_network,
            "vpn_provider": self.vpn_provider,
            "isp": self.isp,
            "asn": self.asn,
            "country": self.country,
            "timezone_mismatch": self.timezone_mismatch,
            "identification_failed": self.identification_failed,
            "connection": self.connection.to_dict() if self.connection else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkIdentity":
        data = dict(data)
        connection = data.pop("connection", None)
        return cls(
            connection=ConnectionFingerprint.from_dict(connection) if connection else None,
            **data,
        )


@dataclass(frozen=True)
class ScreenInfo:
    """Screen geometry."""

    width: int = 0
    height: int = 0
    color_depth: int = 24
    pixel_ratio: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "color_depth": self.color_depth,
            "pixel_ratio": self.pixel_ratio,
        }


@dataclass(frozen=True)
class DeviceFingerprint:
    """Rendering hash plus declarative device attributes.

    Attributes:
        canvas_hash: Hash of the rendered fingerprint pattern
        screen: Screen geometry
        timezone: IANA timezone name
        languages: Preferred languages, most preferred first
        platform: Platform string
        hardware_concurrency: Logical core count
        device_memory: Device memory hint in GiB
        language: Primary language
        cookie_enabled: Cookies enabled
        do_not_track: Do-Not-Track requested
    """

    canvas_hash: str = UNAVAILABLE_HASH
    screen: ScreenInfo = field(default_factory=ScreenInfo)
    timezone: str = "unknown"
    languages: Tuple[str, ...] = ()
    platform: str = "unknown"
    hardware_concurrency: int = 0
    device_memory: Optional[float] = None
    language: Optional[str] = None
    cookie_enabled: bool = False
    do_not_track: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canvas_hash": self.canvas_hash,
            "screen": self.screen.to_dict(),
            "timezone": self.timezone,
            "languages": list(self.languages),
            "platform": self.platform,
            "hardware_concurrency": self.hardware_concurrency,
            "device_memory": self.device_memory,
            "language": self.language,
            "cookie_enabled": self.cookie_enabled,
            "do_not_track": self.do_not_track,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceFingerprint":
        data = dict(data)
        screen = ScreenInfo(**data.pop("screen", {}))
        languages = tuple(data.pop("languages", ()))
        return cls(screen=screen, languages=languages, **data)


@dataclass(frozen=True)
class LocationFix:
    """A single location strategy result.

    Attributes:
        method: Technique that produced the fix
        latitude: Latitude in degrees
        longitude: Longitude in degrees
        accuracy_meters: Accuracy radius in meters
        detail: Strategy-specific extras (beacon count, ISP, altitude, ...)
    """

    method: LocationMethod
    latitude: float
    longitude: float
    accuracy_meters: float
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy_meters": self.accuracy_meters,
            "detail": dict(self.detail),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocationFix":
        return cls(
            method=LocationMethod(data["method"]),
            latitude=data["latitude"],
            longitude=data["longitude"],
            accuracy_meters=data["accuracy_meters"],
            detail=dict(data.get("detail") or {}),
        )


@dataclass(frozen=True)
class BestLocation:
    """Most accurate fix plus corroboration data.

    Attributes:
        latitude: Latitude of the winning fix
        longitude: Longitude of the winning fix
        accuracy_meters: Accuracy of the winning fix
        method: Technique of the winning fix
        confidence: 0-100, grows with the number of successful sources
        sources: Every technique that returned a fix
        triangulation: Every successful fix keyed by method value
    """

    latitude: float
    longitude: float
    accuracy_meters: float
    method: LocationMethod
    confidence: int
    sources: Tuple[str, ...] = ()
    triangulation: Dict[str, LocationFix] = field(default_factory=dict)

    @property
    def is_hybrid(self) -> bool:
        """More than one technique contributed."""
        return len(self.sources) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy_meters": self.accuracy_meters,
            "method": self.method.value,
            "confidence": self.confidence,
            "sources": list(self.sources),
            "triangulation": {k: v.to_dict() for k, v in self.triangulation.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BestLocation":
        return cls(
            latitude=data["latitude"],
            longitude=data["longitude"],
            accuracy_meters=data["accuracy_meters"],
            method=LocationMethod(data["method"]),
            confidence=data["confidence"],
            sources=tuple(data.get("sources", ())),
            triangulation={
                k: LocationFix.from_dict(v)
                for k, v in (data.get("triangulation") or {}).items()
            },
        )


@dataclass(frozen=True)
class SessionInfo:
    """Session metadata for one access."""

    start: datetime
    referrer: str = "direct"
    end: Optional[datetime] = None
    downloaded: bool = False
    download_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": _iso(self.start),
            "referrer": self.referrer,
            "end": _iso(self.end),
            "downloaded": self.downloaded,
            "download_time": _iso(self.download_time),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionInfo":
        return cls(
            start=_parse_iso(data["start"]),
            referrer=data.get("referrer", "direct"),
            end=_parse_iso(data.get("end")),
            downloaded=data.get("downloaded", False),
            download_time=_parse_iso(data.get("download_time")),
        )


@dataclass(frozen=True)
class FocusEvent:
    """A focus or blur transition."""

    timestamp: datetime
    kind: FocusKind

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "kind": self.kind.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FocusEvent":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            kind=FocusKind(data["kind"]),
        )


# Keys accepted by ForensicRecord.with_updates
UPDATABLE_FIELDS = frozenset(
    {
        "downloaded",
        "download_time",
        "session_end",
        "focus_events",
        "page_visibility",
        "access_count",
    }
)


@dataclass(frozen=True)
class ForensicRecord:
    """Composite forensic record for one access event.

    Attributes:
        access_id: Unique access identifier (primary key)
        link_id: Opaque share-link identifier
        resource_audit_id: Opaque identifier of the shared resource
        network_identity: Network identity signals
        device_fingerprint: Device fingerprint
        best_location: Best location fix, None when no strategy succeeded
        trust_score: 0-100 trust score
        session: Session metadata
        focus_events: Ordered focus/blur history
        created_at: Record creation time
        user_agent: Client user agent string
        page_visibility: Visibility state at capture time
        access_count: Number of accesses recorded under this access_id
    """

    access_id: str
    link_id: str
    resource_audit_id: str
    network_identity: NetworkIdentity
    device_fingerprint: DeviceFingerprint
    trust_score: int
    session: SessionInfo
    best_location: Optional[BestLocation] = None
    focus_events: Tuple[FocusEvent, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    user_agent: str = ""
    page_visibility: PageVisibility = PageVisibility.VISIBLE
    access_count: int = 1

    def with_updates(self, partial: Dict[str, Any]) -> "ForensicRecord":
        """Return a copy with a partial update applied.

        ``focus_events`` values are appended to the existing history and must
        not predate its last event; every other key replaces its field. Fields
        not named are untouched.

        Args:
            partial: Mapping of updatable field names to new values

        Returns:
            Updated record

        Raises:
            ValueError: If ``partial`` names a field that cannot be updated or
                appends focus events out of time order
        """
        unknown = set(partial) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        session_changes: Dict[str, Any] = {}
        if "downloaded" in partial:
            session_changes["downloaded"] = bool(partial["downloaded"])
        if "download_time" in partial:
            session_changes["download_time"] = partial["download_time"]
        if "session_end" in partial:
            session_changes["end"] = partial["session_end"]

        changes: Dict[str, Any] = {}
        if session_changes:
            changes["session"] = replace(self.session, **session_changes)
        if "focus_events" in partial:
            events = self.focus_events + tuple(_coerce_focus_events(partial["focus_events"]))
            for earlier, later in zip(events, events[1:]):
                if later.timestamp < earlier.timestamp:
                    raise ValueError(
                        f"Focus event at {later.timestamp.isoformat()} precedes "
                        f"{earlier.timestamp.isoformat()}"
                    )
            changes["focus_events"] = events
        if "page_visibility" in partial:
            changes["page_visibility"] = PageVisibility(partial["page_visibility"])
        if "access_count" in partial:
            changes["access_count"] = int(partial["access_count"])

        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to a JSON-compatible dictionary."""
        return {
            "access_id": self.access_id,
            "link_id": self.link_id,
            "resource_audit_id": self.resource_audit_id,
            "network_identity": self.network_identity.to_dict(),
            "device_fingerprint": self.device_fingerprint.to_dict(),
            "best_location": self.best_location.to_dict() if self.best_location else None,
            "trust_score": self.trust_score,
            "session": self.session.to_dict(),
            "focus_events": [e.to_dict() for e in self.focus_events],
            "created_at": self.created_at.isoformat(),
            "user_agent": self.user_agent,
            "page_visibility": self.page_visibility.value,
            "access_count": self.access_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForensicRecord":
        """Create a record from ``to_dict`` output."""
        best_location = data.get("best_location")
        return cls(
            access_id=data["access_id"],
            link_id=data["link_id"],
            resource_audit_id=data["resource_audit_id"],
            network_identity=NetworkIdentity.from_dict(data["network_identity"]),
            device_fingerprint=DeviceFingerprint.from_dict(data["device_fingerprint"]),
            best_location=BestLocation.from_dict(best_location) if best_location else None,
            trust_score=data["trust_score"],
            session=SessionInfo.from_dict(data["session"]),
            focus_events=tuple(FocusEvent.from_dict(e) for e in data.get("focus_events", [])),
            created_at=datetime.fromisoformat(data["created_at"]),
            user_agent=data.get("user_agent", ""),
            page_visibility=PageVisibility(data.get("page_visibility", "visible")),
            access_count=data.get("access_count", 1),
        )

    def __str__(self) -> str:
        location = (
            f"{self.best_location.method.value}±{self.best_location.accuracy_meters:.0f}m"
            if self.best_location
            else "none"
        )
        return (
            f"ForensicRecord(access_id={self.access_id}, ip={self.network_identity.public_ip}, "
            f"trust={self.trust_score}, location={location})"
        )


def _coerce_focus_events(events: Iterable[Any]) -> Iterable[FocusEvent]:
    for event in events:
        if isinstance(event, FocusEvent):
            yield event
        else:
            yield FocusEvent.from_dict(event)
