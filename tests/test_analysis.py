"""Tests for record analysis helpers."""

import pytest

from linkforensics.analysis import (
    SuspicionKind,
    detect_suspicious_activity,
    haversine_km,
    parse_user_agent,
    session_seconds,
)
from linkforensics.core.record import (
    BestLocation,
    LocationFix,
    LocationMethod,
    NetworkIdentity,
    SessionInfo,
)

from helpers import T0, make_record, seconds

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/124.0.2478.51"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0"
GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


def kinds(warnings):
    return [w.kind for w in warnings]


class TestParseUserAgent:
    """Tests for user agent classification."""

    @pytest.mark.parametrize(
        "user_agent,browser,os_name,mobile",
        [
            (CHROME_WINDOWS, "chrome", "windows", False),
            (EDGE_WINDOWS, "edge", "windows", False),
            (SAFARI_IPHONE, "safari", "ios", True),
            (FIREFOX_LINUX, "firefox", "linux", False),
            ("", "unknown", "unknown", False),
        ],
    )
    def test_classification(self, user_agent, browser, os_name, mobile):
        info = parse_user_agent(user_agent)
        assert info["browser"] == browser
        assert info["os"] == os_name
        assert info["is_mobile"] is mobile
        assert info["is_bot"] is False

    def test_bot(self):
        assert parse_user_agent(GOOGLEBOT)["is_bot"] is True


class TestGeometry:
    """Tests for distance and duration helpers."""

    def test_haversine(self):
        # Madrid to Barcelona
        assert haversine_km(40.4168, -3.7038, 41.3874, 2.1686) == pytest.approx(505, abs=5)
        assert haversine_km(1.0, 1.0, 1.0, 1.0) == 0.0

    def test_session_seconds(self):
        closed = make_record(session=SessionInfo(start=T0, end=T0 + seconds(42)))
        assert session_seconds(closed) == 42
        assert session_seconds(make_record(), now=T0 + seconds(5)) == 5


class TestDetectSuspiciousActivity:
    """Tests for suspicious activity detection."""

    def test_clean_record(self):
        record = make_record(user_agent=CHROME_WINDOWS)
        assert detect_suspicious_activity(record, now=T0 + seconds(60)) == []

    def test_bot_and_fast_access(self):
        record = make_record(
            user_agent=GOOGLEBOT,
            session=SessionInfo(start=T0, end=T0 + seconds(0.5)),
        )
        warnings = detect_suspicious_activity(record)
        assert kinds(warnings) == [SuspicionKind.BOT, SuspicionKind.FAST_ACCESS]
        assert warnings[0].message == "Possible bot detected"

    def test_anonymized(self):
        leak = make_record(network_identity=NetworkIdentity(public_ip="1.2.3.4", leaked_public_ip="5.6.7.8"))
        vpn = make_record(network_identity=NetworkIdentity(public_ip="1.2.3.4", vpn_detected=True))

        for record in (leak, vpn):
            warnings = detect_suspicious_activity(record, now=T0 + seconds(60))
            assert kinds(warnings) == [SuspicionKind.ANONYMIZED]
            assert warnings[0].message == "Proxy/VPN use detected"

    def test_location_disagreement(self):
        gps = LocationFix(LocationMethod.GPS, 40.4168, -3.7038, 20.0)
        ip_far = LocationFix(LocationMethod.IP, 41.3874, 2.1686, 5000.0)
        wifi_near = LocationFix(LocationMethod.WIFI, 40.4170, -3.7040, 100.0)
        location = BestLocation(
            40.4168, -3.7038, 20.0, LocationMethod.GPS, 75,
            sources=("gps", "wifi", "ip"),
            triangulation={"gps": gps, "wifi": wifi_near, "ip": ip_far},
        )
        warnings = detect_suspicious_activity(make_record(best_location=location), now=T0 + seconds(60))

        disagreements = [w for w in warnings if w.kind is SuspicionKind.LOCATION_DISAGREEMENT]
        assert sorted(tuple(w.details["methods"]) for w in disagreements) == [("gps", "ip"), ("ip", "wifi")]
        assert disagreements[0].to_dict()["kind"] == "location_disagreement"
