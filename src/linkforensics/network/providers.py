"""Ordered provider chains and HTTP JSON providers.

Every redundant external lookup (public IP identification, WiFi
positioning, IP geolocation) goes through ``ProviderChain``: providers are
tried in order, each under its own timeout, and the first acceptable
answer wins. Concrete providers are thin ``aiohttp`` JSON calls with a
per-endpoint response parser.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar
import asyncio
import logging
import re

import aiohttp

from linkforensics.capabilities.base import WifiAccessPoint
from linkforensics.core.errors import AllProvidersExhausted, ProbeTimeout

logger = logging.getLogger(__name__)

Req = TypeVar("Req")
Resp = TypeVar("Resp")

# (chain name, provider name, reason)
FailureCallback = Callable[[str, str, str], None]


@dataclass(frozen=True)
class IpIdentity:
    """Answer of an IP identification endpoint."""

    ip: str
    country: Optional[str] = None
    isp: Optional[str] = None
    asn: Optional[str] = None
    proxy: bool = False
    hosting: bool = False
    timezone: Optional[str] = None


@dataclass(frozen=True)
class PositionEstimate:
    """Answer of a WiFi-positioning or IP-geolocation endpoint."""

    latitude: float
    longitude: float
    accuracy_meters: float
    provider: str = ""
    isp: Optional[str] = None


class Provider(ABC, Generic[Req, Resp]):
    """One interchangeable external service."""

    name: str = "provider"

    @abstractmethod
    async def fetch(self, request: Req) -> Optional[Resp]:
        """Query the service.

        Returns:
            Parsed answer, or None when the service had nothing to say
        """
        pass


class ProviderChain(Generic[Req, Resp]):
    """Tries providers in priority order until one answers.

    Example:
        >>> chain = ProviderChain("public_ip", [ipapi, ipinfo], timeout=5.0)
        >>> identity, provider = await chain.first(None)
    """

    def __init__(
        self,
        name: str,
        providers: Sequence[Provider[Req, Resp]],
        timeout: float = 5.0,
        accept: Optional[Callable[[Resp], bool]] = None,
        on_failure: Optional[FailureCallback] = None,
    ):
        """Initialize the chain.

        Args:
            name: Chain name used in logs and errors
            providers: Providers in priority order
            timeout: Per-provider time bound in seconds
            accept: Predicate an answer must satisfy to win
            on_failure: Called for every provider that fails
        """
        self.name = name
        self.providers = list(providers)
        self.timeout = timeout
        self.accept = accept or (lambda result: result is not None)
        self.on_failure = on_failure

    def __len__(self) -> int:
        return len(self.providers)

    async def first(self, request: Req) -> Tuple[Resp, str]:
        """Return the first acceptable answer and the provider that gave it.

        Raises:
            AllProvidersExhausted: If no provider produced an acceptable answer
        """
        failures: List[str] = []

        for provider in self.providers:
            try:
                result = await asyncio.wait_for(provider.fetch(request), self.timeout)
            except asyncio.TimeoutError:
                reason = str(ProbeTimeout(provider.name, self.timeout))
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"
            else:
                if result is not None and self.accept(result):
                    return result, provider.name
                reason = "empty response"

            failures.append(f"{provider.name}: {reason}")
            logger.debug("%s provider %s failed: %s", self.name, provider.name, reason)
            if self.on_failure:
                self.on_failure(self.name, provider.name, reason)

        raise AllProvidersExhausted(self.name, failures)


class HttpClient:
    """Owns the ``aiohttp`` session shared by all HTTP providers of an engine."""

    def __init__(self, timeout: float = 10.0, headers: Optional[Dict[str, str]] = None):
        self.timeout = timeout
        self.headers = headers or {"Accept": "application/json"}
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.headers,
            )
        return self._session

    async def get_json(self, url: str) -> Any:
        async with self._get_session().get(url) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def post_json(self, url: str, body: Dict[str, Any]) -> Any:
        async with self._get_session().post(url, json=body) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


_ASN_RE = re.compile(r"^(AS\d+)\b", re.IGNORECASE)


def normalize_asn(value: Any) -> Optional[str]:
    """Normalize ``15169``, ``"as15169"`` or ``"AS15169 Google LLC"`` to ``"AS15169"``."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return f"AS{value}"
    text = str(value).strip()
    if text.isdigit():
        return f"AS{text}"
    match = _ASN_RE.match(text)
    return match.group(1).upper() if match else None


def parse_ip_identity(data: Dict[str, Any]) -> Optional[IpIdentity]:
    """Map the common IP-lookup response shapes onto ``IpIdentity``."""
    if not isinstance(data, dict):
        return None
    ip = data.get("ip") or data.get("query") or data.get("ipAddress")
    if not ip:
        return None

    country = data.get("country_code") or data.get("countryCode")
    if not country and isinstance(data.get("country"), str) and len(data["country"]) == 2:
        country = data["country"]
    org = data.get("org") or data.get("organization")
    isp = data.get("isp") or org
    asn = normalize_asn(data.get("asn")) or normalize_asn(org)
    security = data.get("security") or {}

    return IpIdentity(
        ip=str(ip),
        country=country.upper() if country else None,
        isp=isp,
        asn=asn,
        proxy=bool(data.get("proxy") or security.get("proxy") or security.get("vpn")),
        hosting=bool(data.get("hosting") or security.get("hosting")),
        timezone=data.get("timezone") if isinstance(data.get("timezone"), str) else None,
    )


def parse_coordinates(data: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """Extract ``(lat, lng)`` from the common IP-geolocation response shapes."""
    if not isinstance(data, dict):
        return None
    lat = data.get("latitude", data.get("lat"))
    lng = data.get("longitude", data.get("lng", data.get("lon")))
    if (lat is None or lng is None) and isinstance(data.get("loc"), str):
        parts = data["loc"].split(",")
        if len(parts) == 2:
            lat, lng = parts
    if lat is None or lng is None:
        return None
    try:
        return float(lat), float(lng)
    except (TypeError, ValueError):
        return None


class IpIdentityEndpoint(Provider[None, IpIdentity]):
    """GET endpoint returning the caller's public IP."""

    def __init__(self, name: str, url: str, http: HttpClient):
        self.name = name
        self.url = url
        self.http = http

    async def fetch(self, request: None) -> Optional[IpIdentity]:
        return parse_ip_identity(await self.http.get_json(self.url))


class IpGeolocationEndpoint(Provider[None, PositionEstimate]):
    """GET endpoint returning coordinates for the caller's IP."""

    def __init__(self, name: str, url: str, http: HttpClient, accuracy_meters: float):
        self.name = name
        self.url = url
        self.http = http
        self.accuracy_meters = accuracy_meters

    async def fetch(self, request: None) -> Optional[PositionEstimate]:
        data = await self.http.get_json(self.url)
        coords = parse_coordinates(data)
        if coords is None:
            return None
        return PositionEstimate(
            latitude=coords[0],
            longitude=coords[1],
            accuracy_meters=self.accuracy_meters,
            provider=self.name,
            isp=data.get("org") or data.get("isp"),
        )


class WifiPositioningEndpoint(Provider[List[WifiAccessPoint], PositionEstimate]):
    """POST endpoint speaking the geolocate protocol (``wifiAccessPoints``)."""

    def __init__(self, name: str, url: str, http: HttpClient, default_accuracy: float = 150.0):
        self.name = name
        self.url = url
        self.http = http
        self.default_accuracy = default_accuracy

    @staticmethod
    def build_body(access_points: List[WifiAccessPoint]) -> Dict[str, Any]:
        return {
            "considerIp": False,
            "wifiAccessPoints": [
                {
                    "macAddress": ap.bssid.replace(":", "").upper(),
                    "signalStrength": ap.signal_strength,
                    "channel": ap.channel,
                }
                for ap in access_points[:10]
            ],
        }

    async def fetch(self, request: List[WifiAccessPoint]) -> Optional[PositionEstimate]:
        data = await self.http.post_json(self.url, self.build_body(request))
        location = data.get("location") if isinstance(data, dict) else None
        if not location:
            return None
        return PositionEstimate(
            latitude=float(location["lat"]),
            longitude=float(location["lng"]),
            accuracy_meters=float(data.get("accuracy") or self.default_accuracy),
            provider=self.name,
        )


def default_ip_identity_providers(http: HttpClient) -> List[Provider[None, IpIdentity]]:
    """Public IP endpoints, detail-rich services first."""
    return [
        IpIdentityEndpoint("ipapi", "https://ipapi.co/json/", http),
        IpIdentityEndpoint("ipinfo", "https://ipinfo.io/json", http),
        IpIdentityEndpoint("ipsb", "https://api.ip.sb/geoip", http),
        IpIdentityEndpoint("ipify", "https://api.ipify.org?format=json", http),
    ]


def default_ip_geolocation_providers(http: HttpClient) -> List[Provider[None, PositionEstimate]]:
    """IP geolocation endpoints with their assumed accuracy radius."""
    return [
        IpGeolocationEndpoint("ipapi", "https://ipapi.co/json/", http, accuracy_meters=5000.0),
        IpGeolocationEndpoint("ipinfo", "https://ipinfo.io/json", http, accuracy_meters=3000.0),
        IpGeolocationEndpoint("myip", "https://api.my-ip.io/v2/ip.json", http, accuracy_meters=10000.0),
    ]


def default_wifi_providers(
    http: HttpClient,
    google_api_key: Optional[str] = None,
) -> List[Provider[List[WifiAccessPoint], PositionEstimate]]:
    """WiFi positioning endpoints in fallback order."""
    providers: List[Provider[List[WifiAccessPoint], PositionEstimate]] = []
    if google_api_key:
        providers.append(
            WifiPositioningEndpoint(
                "google",
                f"https://www.googleapis.com/geolocation/v1/geolocate?key={google_api_key}",
                http,
                default_accuracy=150.0,
            )
        )
    providers.append(
        WifiPositioningEndpoint(
            "beacondb",
            "https://api.beacondb.net/v1/geolocate",
            http,
            default_accuracy=200.0,
        )
    )
    return providers
