"""Core data model and error taxonomy."""

from linkforensics.core.errors import (
    ForensicsError,
    ProbeTimeout,
    ProbeUnavailable,
    AllProvidersExhausted,
    PersistenceUnavailable,
    ConfigurationError,
)
from linkforensics.core.record import (
    UNKNOWN_IP,
    UNAVAILABLE_HASH,
    LocationMethod,
    FocusKind,
    PageVisibility,
    ConnectionFingerprint,
    NetworkIdentity,
    ScreenInfo,
    DeviceFingerprint,
    LocationFix,
    BestLocation,
    SessionInfo,
    FocusEvent,
    ForensicRecord,
    utc_now,
)

__all__ = [
    "ForensicsError",
    "ProbeTimeout",
    "ProbeUnavailable",
    "AllProvidersExhausted",
    "PersistenceUnavailable",
    "ConfigurationError",
    "UNKNOWN_IP",
    "UNAVAILABLE_HASH",
    "LocationMethod",
    "FocusKind",
    "PageVisibility",
    "ConnectionFingerprint",
    "NetworkIdentity",
    "ScreenInfo",
    "DeviceFingerprint",
    "LocationFix",
    "BestLocation",
    "SessionInfo",
    "FocusEvent",
    "ForensicRecord",
    "utc_now",
]
