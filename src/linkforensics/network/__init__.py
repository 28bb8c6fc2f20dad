"""Network identity: provider chains, reference tables and the probe."""

from linkforensics.network.providers import (
    IpIdentity,
    PositionEstimate,
    Provider,
    ProviderChain,
    HttpClient,
    IpIdentityEndpoint,
    IpGeolocationEndpoint,
    WifiPositioningEndpoint,
    normalize_asn,
    parse_ip_identity,
    parse_coordinates,
    default_ip_identity_providers,
    default_ip_geolocation_providers,
    default_wifi_providers,
)
from linkforensics.network.reference import ReferenceData
from linkforensics.network.probe import (
    NetworkIdentityProbe,
    classify_candidates,
    connection_fingerprint,
)

__all__ = [
    "IpIdentity",
    "PositionEstimate",
    "Provider",
    "ProviderChain",
    "HttpClient",
    "IpIdentityEndpoint",
    "IpGeolocationEndpoint",
    "WifiPositioningEndpoint",
    "normalize_asn",
    "parse_ip_identity",
    "parse_coordinates",
    "default_ip_identity_providers",
    "default_ip_geolocation_providers",
    "default_wifi_providers",
    "ReferenceData",
    "NetworkIdentityProbe",
    "classify_candidates",
    "connection_fingerprint",
]
