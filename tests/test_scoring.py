"""Tests for trust scoring."""

import pytest

from linkforensics.core.record import (
    BestLocation,
    ConnectionFingerprint,
    LocationMethod,
    NetworkIdentity,
)
from linkforensics.scoring import ScoreWeights, TrustFlags, TrustScorer


def hybrid_location(sources=("gps", "wifi"), confidence=50) -> BestLocation:
    return BestLocation(40.4, -3.7, 20.0, LocationMethod.GPS, confidence, sources=sources)


class TestTrustScorer:
    """Tests for TrustScorer.score."""

    def test_no_signals_keeps_full_score(self):
        """Absence of signals is not penalized."""
        assert TrustScorer().score(TrustFlags()) == 100

    def test_every_indicator(self):
        """All penalties plus WiFi, hybrid and confidence 80 give 55."""
        flags = TrustFlags(
            vpn_detected=True,
            timezone_mismatch=True,
            webrtc_leak=True,
            tcp_suspicious=True,
            wifi_location=True,
            hybrid_location=True,
            confidence=80,
        )
        assert TrustScorer().score(flags) == 55

    @pytest.mark.parametrize(
        "flags,expected",
        [
            (TrustFlags(vpn_detected=True), 70),
            (TrustFlags(timezone_mismatch=True), 80),
            (TrustFlags(webrtc_leak=True), 75),
            (TrustFlags(tcp_suspicious=True), 85),
            (TrustFlags(vpn_detected=True, webrtc_leak=True, confidence=25), 51),
        ],
    )
    def test_single_penalties(self, flags, expected):
        assert TrustScorer().score(flags) == expected

    def test_clamped_to_range(self):
        scorer = TrustScorer()
        penalties = TrustFlags(
            vpn_detected=True, timezone_mismatch=True, webrtc_leak=True, tcp_suspicious=True
        )
        assert scorer.score(penalties) == 10
        assert scorer.score(TrustFlags(wifi_location=True, hybrid_location=True, confidence=100)) == 100
        assert scorer.score(TrustFlags(confidence=400)) == 100
        assert scorer.score(TrustFlags(vpn_detected=True, confidence=-50)) == 70

    def test_custom_weights(self):
        scorer = TrustScorer(ScoreWeights(vpn=-100))
        assert scorer.score(TrustFlags(vpn_detected=True)) == 0

    def test_score_in_range_for_all_flag_combinations(self):
        scorer = TrustScorer()
        for mask in range(64):
            bits = [bool(mask & (1 << i)) for i in range(6)]
            for confidence in (0, 25, 50, 75, 100):
                score = scorer.score(TrustFlags(*bits, confidence=confidence))
                assert 0 <= score <= 100


class TestTrustFlags:
    """Tests for deriving flags from collected signals."""

    def test_vpn_flag_uses_network_match_only(self):
        """A timezone mismatch alone does not also count as a VPN network."""
        identity = NetworkIdentity(public_ip="1.2.3.4", vpn_detected=True, timezone_mismatch=True)
        flags = TrustFlags.from_signals(identity)

        assert flags.vpn_detected is False
        assert flags.timezone_mismatch is True
        assert TrustScorer().score(flags) == 80

    def test_from_signals(self):
        identity = NetworkIdentity(
            public_ip="1.2.3.4",
            leaked_public_ip="5.6.7.8",
            known_vpn_network=True,
            vpn_detected=True,
            connection=ConnectionFingerprint(rtt_ms=200, downlink_mbps=50, possible_vpn=True),
        )
        flags = TrustFlags.from_signals(identity, hybrid_location(confidence=50))

        assert flags == TrustFlags(
            vpn_detected=True,
            webrtc_leak=True,
            tcp_suspicious=True,
            wifi_location=True,
            hybrid_location=True,
            confidence=50,
        )

    def test_without_location(self):
        flags = TrustFlags.from_signals(NetworkIdentity())
        assert (flags.wifi_location, flags.hybrid_location, flags.confidence) == (False, False, 0)

    def test_score_signals(self):
        location = hybrid_location(sources=("gps",), confidence=25)
        assert TrustScorer().score_signals(NetworkIdentity(public_ip="1.2.3.4"), location) == 100
