"""Network identity probe.

Resolves the public IP through an ordered provider chain, inspects ICE
candidates for local and leaked public addresses, reads connection timing,
and applies the VPN/proxy heuristics.
"""

from typing import List, Optional, Tuple
import asyncio
import ipaddress
import logging
import re

from linkforensics.capabilities.base import CapabilitySet, ConnectionInfo
from linkforensics.core.errors import AllProvidersExhausted, ProbeTimeout, ProbeUnavailable
from linkforensics.core.record import UNKNOWN_IP, ConnectionFingerprint, NetworkIdentity
from linkforensics.network.providers import IpIdentity, ProviderChain
from linkforensics.network.reference import ReferenceData

logger = logging.getLogger(__name__)

_IPV4_RE = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")

_PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def classify_candidates(candidates: List[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split ICE candidate addresses into local and public.

    Args:
        candidates: Raw ICE candidate strings

    Returns:
        (first private-range address, first other routable address)
    """
    local_ip = None
    public_ip = None

    for candidate in candidates:
        for text in _IPV4_RE.findall(candidate):
            try:
                address = ipaddress.IPv4Address(text)
            except ValueError:
                continue
            if any(address in net for net in _PRIVATE_NETWORKS):
                local_ip = local_ip or text
            elif not (
                address.is_loopback
                or address.is_link_local
                or address.is_unspecified
                or address.is_multicast
            ):
                public_ip = public_ip or text

    return local_ip, public_ip


def connection_fingerprint(
    info: ConnectionInfo,
    rtt_threshold_ms: float = 100.0,
    downlink_threshold_mbps: float = 10.0,
) -> ConnectionFingerprint:
    """Derive the connection-timing fingerprint.

    A tunnel adds latency without reducing bandwidth, so high RTT together
    with high downlink is flagged as VPN-typical.
    """
    possible_vpn = (
        info.rtt_ms is not None
        and info.downlink_mbps is not None
        and info.rtt_ms > rtt_threshold_ms
        and info.downlink_mbps > downlink_threshold_mbps
    )
    return ConnectionFingerprint(
        effective_type=info.effective_type,
        rtt_ms=info.rtt_ms,
        downlink_mbps=info.downlink_mbps,
        save_data=info.save_data,
        possible_vpn=possible_vpn,
    )


class NetworkIdentityProbe:
    """Collects network identity signals for one access.

    Example:
        >>> probe = NetworkIdentityProbe(ip_chain)
        >>> identity = await probe.identify(capabilities)
        >>> identity.public_ip
        '203.0.113.7'
    """

    def __init__(
        self,
        ip_chain: ProviderChain[None, IpIdentity],
        reference: Optional[ReferenceData] = None,
        ice_timeout: float = 5.0,
        rtt_threshold_ms: float = 100.0,
        downlink_threshold_mbps: float = 10.0,
    ):
        """Initialize the probe.

        Args:
            ip_chain: Ordered public-IP providers
            reference: VPN ASN and country timezone tables
            ice_timeout: Bound on ICE candidate gathering in seconds
            rtt_threshold_ms: RTT above which timing looks tunnelled
            downlink_threshold_mbps: Downlink above which timing looks tunnelled
        """
        self.ip_chain = ip_chain
        self.reference = reference or ReferenceData()
        self.ice_timeout = ice_timeout
        self.rtt_threshold_ms = rtt_threshold_ms
        self.downlink_threshold_mbps = downlink_threshold_mbps

    async def identify(self, capabilities: CapabilitySet) -> NetworkIdentity:
        """Collect network identity. Never raises.

        Args:
            capabilities: Capabilities of the accessing client

        Returns:
            Network identity; ``public_ip`` is ``"unknown"`` and
            ``identification_failed`` is set when every provider failed
        """
        try:
            return await self._identify(capabilities)
        except Exception as e:
            logger.error("Network identification failed unexpectedly: %s", e)
            return NetworkIdentity(public_ip=UNKNOWN_IP, identification_failed=True)

    async def _identify(self, capabilities: CapabilitySet) -> NetworkIdentity:
        identity, candidates = await asyncio.gather(
            self._lookup_public_ip(),
            self._gather_candidates(capabilities),
        )
        local_ip, leaked_public_ip = classify_candidates(candidates)
        connection = self._read_connection(capabilities)
        browser_timezone = self._browser_timezone(capabilities)

        if identity is None:
            logger.warning("Public IP could not be identified by any provider")
            return NetworkIdentity(
                public_ip=UNKNOWN_IP,
                local_ip=local_ip,
                leaked_public_ip=leaked_public_ip,
                identification_failed=True,
                connection=connection,
            )

        known_provider = self.reference.vpn_provider_for(identity.asn)
        known_vpn_network = bool(known_provider) or identity.proxy or identity.hosting
        timezone_mismatch = self.reference.timezone_mismatch(identity.country, browser_timezone)
        vpn_detected = known_vpn_network or timezone_mismatch

        logger.debug(
            "Timezone check: browser=%s country=%s mismatch=%s",
            browser_timezone,
            identity.country,
            timezone_mismatch,
        )

        return NetworkIdentity(
            public_ip=identity.ip,
            local_ip=local_ip,
            leaked_public_ip=leaked_public_ip,
            vpn_detected=vpn_detected,
            known_vpn_network=known_vpn_network,
            vpn_provider=known_provider or (identity.isp if known_vpn_network else None),
            isp=identity.isp,
            asn=identity.asn,
            country=identity.country,
            timezone_mismatch=timezone_mismatch,
            connection=connection,
        )

    async def _lookup_public_ip(self) -> Optional[IpIdentity]:
        try:
            identity, provider = await self.ip_chain.first(None)
        except AllProvidersExhausted as e:
            logger.warning("%s", e)
            return None
        logger.debug("Public IP %s resolved by %s", identity.ip, provider)
        return identity

    async def _gather_candidates(self, capabilities: CapabilitySet) -> List[str]:
        if not capabilities.ice.supported:
            return []
        try:
            return await asyncio.wait_for(
                capabilities.ice.gather_candidates(), self.ice_timeout
            )
        except asyncio.TimeoutError:
            logger.debug("%s", ProbeTimeout("ice_gathering", self.ice_timeout))
        except ProbeUnavailable as e:
            logger.debug("%s", e)
        except Exception as e:
            logger.warning("ICE gathering failed: %s", e)
        return []

    def _read_connection(self, capabilities: CapabilitySet) -> Optional[ConnectionFingerprint]:
        if not capabilities.connection.supported:
            return None
        try:
            info = capabilities.connection.read()
        except ProbeUnavailable as e:
            logger.debug("%s", e)
            return None
        except Exception as e:
            logger.warning("Connection info read failed: %r", e)
            return None
        return connection_fingerprint(
            info, self.rtt_threshold_ms, self.downlink_threshold_mbps
        )

    @staticmethod
    def _browser_timezone(capabilities: CapabilitySet) -> Optional[str]:
        try:
            timezone = capabilities.environment.read().timezone
        except ProbeUnavailable:
            return None
        except Exception as e:
            logger.warning("Environment read failed: %r", e)
            return None
        return timezone if timezone and timezone != "unknown" else None
