#!/usr/bin/env python3
"""
Forensic Capture Demo

This demo walks through one access to a shared link:
1. Capturing a forensic record from a client signal payload
2. Inspecting the location triangulation and trust score
3. Tracking focus history and the download
4. Querying stored records and flagging suspicious activity

Network lookups are served by canned providers so the demo runs offline.

Run this demo:
    python examples/capture_demo.py
"""

import asyncio
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from linkforensics import ForensicRecordAssembler, SessionEventTracker, capabilities_from_client
from linkforensics.analysis import detect_suspicious_activity, parse_user_agent
from linkforensics.capabilities import PillowRaster
from linkforensics.device import DeviceFingerprinter
from linkforensics.integrations import CaptureMetrics, ForensicLogger
from linkforensics.location import (
    BluetoothStrategy,
    CellularStrategy,
    GpsStrategy,
    IpStrategy,
    LocationTriangulator,
    WifiStrategy,
)
from linkforensics.network import IpIdentity, NetworkIdentityProbe, PositionEstimate, Provider, ProviderChain
from linkforensics.store import InMemoryForensicStore

console = Console()


class CannedProvider(Provider):
    """Provider returning a fixed answer."""

    def __init__(self, name, answer):
        self.name = name
        self.answer = answer

    async def fetch(self, request) -> Optional[object]:
        return self.answer


class DownProvider(Provider):
    """Provider that is always unreachable."""

    def __init__(self, name):
        self.name = name

    async def fetch(self, request):
        raise ConnectionError("connection refused")


CLIENT_PAYLOAD = {
    "environment": {
        "userAgent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36",
        "timezone": "Europe/Madrid",
        "languages": ["es-ES", "en-US"],
        "platform": "Win32",
        "hardwareConcurrency": 8,
        "screen": {"width": 1920, "height": 1080, "colorDepth": 24, "pixelRatio": 1},
    },
    "geolocation": {"latitude": 40.4168, "longitude": -3.7038, "accuracy": 25},
    "iceCandidates": ["candidate:1 1 udp 2122260223 192.168.1.20 54321 typ host"],
    "wifi": [
        {"bssid": "AA:BB:CC:DD:EE:01", "signalStrength": -48, "channel": 6},
        {"bssid": "AA:BB:CC:DD:EE:02", "signalStrength": -61, "channel": 11},
        {"bssid": "AA:BB:CC:DD:EE:03", "signalStrength": -95, "channel": 1},
    ],
    "bluetooth": [
        {"id": "lobby-1", "rssi": -62, "txPower": -59},
        {"id": "lobby-2", "rssi": -70, "txPower": -59},
        {"id": "lobby-3", "rssi": -75, "txPower": -59},
    ],
    "connection": {"type": "wifi", "effectiveType": "4g", "rtt": 50, "downlink": 10},
}

BEACON_REGISTRY = {
    "lobby-1": (40.41680, -3.70380),
    "lobby-2": (40.41690, -3.70370),
    "lobby-3": (40.41675, -3.70395),
}


def build_demo_assembler(store, events, metrics) -> ForensicRecordAssembler:
    ip_chain = ProviderChain(
        "public_ip",
        [
            DownProvider("ipapi"),
            CannedProvider(
                "ipinfo",
                IpIdentity(ip="88.12.34.56", country="ES", isp="Telefonica", asn="AS3352"),
            ),
        ],
        on_failure=events.provider_failed,
    )
    wifi_chain = ProviderChain(
        "wifi_positioning",
        [CannedProvider("beacondb", PositionEstimate(40.4170, -3.7035, 120.0, "beacondb"))],
    )
    ip_geo_chain = ProviderChain(
        "ip_geolocation",
        [CannedProvider("ipapi", PositionEstimate(40.4, -3.7, 5000.0, "ipapi", "Telefonica"))],
    )

    return ForensicRecordAssembler(
        probe=NetworkIdentityProbe(ip_chain),
        fingerprinter=DeviceFingerprinter(),
        triangulator=LocationTriangulator(
            [
                GpsStrategy(),
                WifiStrategy(wifi_chain),
                BluetoothStrategy(),
                CellularStrategy(),
                IpStrategy(ip_geo_chain),
            ],
            on_failure=events.location_strategy_failed,
        ),
        store=store,
        events=events,
        metrics=metrics,
    )


def show_record(record):
    identity = record.network_identity
    console.print(
        Panel(
            f"Access: {record.access_id}\n"
            f"Public IP: {identity.public_ip} ({identity.isp}, {identity.asn})\n"
            f"Local IP: {identity.local_ip}\n"
            f"VPN detected: {identity.vpn_detected}\n"
            f"Canvas hash: {record.device_fingerprint.canvas_hash}\n"
            f"Trust score: [bold]{record.trust_score}[/bold]",
            title="Forensic Record",
        )
    )

    if record.best_location is None:
        console.print("[red]No location available")
        return

    table = Table(title="Location Triangulation")
    table.add_column("Method", style="cyan")
    table.add_column("Latitude")
    table.add_column("Longitude")
    table.add_column("Accuracy (m)", justify="right")
    for method, fix in record.best_location.triangulation.items():
        marker = " *" if method == record.best_location.method.value else ""
        table.add_row(
            method + marker,
            f"{fix.latitude:.5f}",
            f"{fix.longitude:.5f}",
            f"{fix.accuracy_meters:.0f}",
        )
    console.print(table)
    console.print(f"Confidence: {record.best_location.confidence}")


async def demo_capture():
    console.print("\n[bold cyan]=" * 60)
    console.print("[bold cyan]Forensic capture")
    console.print("[bold cyan]=" * 60)

    store = InMemoryForensicStore()
    events = ForensicLogger(level="WARNING")
    metrics = CaptureMetrics()
    assembler = build_demo_assembler(store, events, metrics)

    capabilities = capabilities_from_client(
        CLIENT_PAYLOAD, beacon_registry=BEACON_REGISTRY, raster=PillowRaster()
    )
    console.print(f"Capabilities: {capabilities.describe()}")

    record = await assembler.capture("link-123", "audit-456", capabilities)
    await assembler.drain()
    show_record(record)

    console.print("\n[yellow]Tracking session...")
    tracker = SessionEventTracker(record.access_id, store, events=events)
    tracker.on_blur()
    tracker.on_focus()
    await tracker.record_download()
    await tracker.flush()

    stored = await store.get(record.access_id)
    console.print(
        f"Stored focus events: {len(stored.focus_events)}, downloaded: {stored.session.downloaded}"
    )

    stats = await store.stats("audit-456")
    console.print(f"Resource stats: {stats}")

    console.print(f"User agent: {parse_user_agent(stored.user_agent)}")
    warnings = detect_suspicious_activity(stored)
    for warning in warnings:
        console.print(f"[red]Warning:[/red] {warning.message}")
    if not warnings:
        console.print("[green]No suspicious activity")

    failures = [e.message for e in events.get_recent_events() if e.event_type.value == "provider_failed"]
    console.print(f"Provider failures: {failures}")
    console.print(f"Metrics: {metrics.get_summary()['captures']}")


def main():
    console.print(Panel.fit("[bold]Link Forensics Capture Demo[/bold]"))
    asyncio.run(demo_capture())


if __name__ == "__main__":
    main()
