"""Trust scoring.

The score starts at 100, loses points for anonymization indicators and
gains points for corroborated location evidence::

    VPN/proxy network         -30
    timezone mismatch         -20
    WebRTC leak               -25
    suspicious timing         -15
    WiFi location             +10
    multi-source location     +15
    location confidence       +floor(confidence / 4)

The result is clamped to [0, 100]. An access with no signals at all keeps
the full 100; scoring rewards corroboration but never penalizes absence.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from linkforensics.core.record import BestLocation, LocationMethod, NetworkIdentity

BASE_SCORE = 100


@dataclass(frozen=True)
class ScoreWeights:
    """Point values of each trust indicator."""

    vpn: int = -30
    timezone_mismatch: int = -20
    webrtc_leak: int = -25
    tcp_suspicious: int = -15
    wifi_location: int = 10
    hybrid_location: int = 15
    confidence_divisor: int = 4

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vpn": self.vpn,
            "timezone_mismatch": self.timezone_mismatch,
            "webrtc_leak": self.webrtc_leak,
            "tcp_suspicious": self.tcp_suspicious,
            "wifi_location": self.wifi_location,
            "hybrid_location": self.hybrid_location,
            "confidence_divisor": self.confidence_divisor,
        }


@dataclass(frozen=True)
class TrustFlags:
    """Inputs of the trust score.

    Attributes:
        vpn_detected: Known VPN/hosting network or provider-reported proxy
        timezone_mismatch: Browser timezone outside the IP country's set
        webrtc_leak: ICE gathering disclosed a different public IP
        tcp_suspicious: Connection timing looks tunnelled
        wifi_location: WiFi positioning contributed a fix
        hybrid_location: More than one location source succeeded
        confidence: Location confidence (0-100)
    """

    vpn_detected: bool = False
    timezone_mismatch: bool = False
    webrtc_leak: bool = False
    tcp_suspicious: bool = False
    wifi_location: bool = False
    hybrid_location: bool = False
    confidence: int = 0

    @classmethod
    def from_signals(
        cls,
        identity: NetworkIdentity,
        location: Optional[BestLocation] = None,
    ) -> "TrustFlags":
        """Derive flags from collected signals.

        The VPN flag uses the network match only; timezone mismatch is its
        own flag so it is counted once.
        """
        connection = identity.connection
        return cls(
            vpn_detected=identity.known_vpn_network,
            timezone_mismatch=identity.timezone_mismatch,
            webrtc_leak=identity.webrtc_leak,
            tcp_suspicious=bool(connection and connection.possible_vpn),
            wifi_location=bool(location and LocationMethod.WIFI.value in location.sources),
            hybrid_location=bool(location and location.is_hybrid),
            confidence=location.confidence if location else 0,
        )


class TrustScorer:
    """Pure mapping from ``TrustFlags`` to a 0-100 score."""

    def __init__(self, weights: Optional[ScoreWeights] = None):
        self.weights = weights or ScoreWeights()

    def score(self, flags: TrustFlags) -> int:
        w = self.weights
        score = BASE_SCORE

        if flags.vpn_detected:
            score += w.vpn
        if flags.timezone_mismatch:
            score += w.timezone_mismatch
        if flags.webrtc_leak:
            score += w.webrtc_leak
        if flags.tcp_suspicious:
            score += w.tcp_suspicious
        if flags.wifi_location:
            score += w.wifi_location
        if flags.hybrid_location:
            score += w.hybrid_location

        confidence = max(0, min(int(flags.confidence), 100))
        score += confidence // w.confidence_divisor

        return max(0, min(score, 100))

    def score_signals(
        self,
        identity: NetworkIdentity,
        location: Optional[BestLocation] = None,
    ) -> int:
        """Score collected signals directly."""
        return self.score(TrustFlags.from_signals(identity, location))
