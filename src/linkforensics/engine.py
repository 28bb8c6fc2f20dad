"""Engine construction from configuration.

Every component is built explicitly from a validated
``LinkForensicsConfig``; nothing is created at import time.
"""

from datetime import datetime
from typing import Callable, List, Optional, Sequence, TypeVar

from linkforensics.core.errors import ConfigurationError
from linkforensics.core.record import LocationMethod, utc_now
from linkforensics.device.fingerprint import DeviceFingerprinter
from linkforensics.integrations.config import LinkForensicsConfig, validate_config
from linkforensics.integrations.logging import (
    CaptureMetrics,
    ForensicLogger,
    configure_logging,
)
from linkforensics.location.strategies import (
    BluetoothStrategy,
    CellularStrategy,
    GpsStrategy,
    IpStrategy,
    LocationStrategy,
    WifiStrategy,
)
from linkforensics.location.triangulator import LocationTriangulator
from linkforensics.network.probe import NetworkIdentityProbe
from linkforensics.network.providers import (
    FailureCallback,
    HttpClient,
    Provider,
    ProviderChain,
    default_ip_geolocation_providers,
    default_ip_identity_providers,
    default_wifi_providers,
)
from linkforensics.network.reference import ReferenceData
from linkforensics.assembler import ForensicRecordAssembler
from linkforensics.session import SessionEventTracker
from linkforensics.store.base import ForensicStore
from linkforensics.store.memory import InMemoryForensicStore, NullForensicStore
from linkforensics.store.sqlite import SQLiteForensicStore

P = TypeVar("P", bound=Provider)


def select_providers(available: Sequence[P], names: Sequence[str]) -> List[P]:
    """Keep the named providers, in the order the names are given."""
    by_name = {p.name: p for p in available}
    return [by_name[name] for name in names if name in by_name]


def provider_failure_callback(
    events: Optional[ForensicLogger] = None,
    metrics: Optional[CaptureMetrics] = None,
) -> Optional[FailureCallback]:
    """Report provider failures to the event log and the metrics, when present."""
    if events is None and metrics is None:
        return None

    def on_failure(chain: str, provider: str, reason: str) -> None:
        if events:
            events.provider_failed(chain, provider, reason)
        if metrics:
            metrics.record_provider_failure(chain, provider)

    return on_failure


def build_store(config: LinkForensicsConfig) -> ForensicStore:
    backend = config.store.backend
    if backend == "sqlite":
        return SQLiteForensicStore(config.store.sqlite_path)
    if backend == "memory":
        return InMemoryForensicStore()
    return NullForensicStore()


def build_strategies(
    config: LinkForensicsConfig,
    http: HttpClient,
    events: Optional[ForensicLogger] = None,
    metrics: Optional[CaptureMetrics] = None,
) -> List[LocationStrategy]:
    """Build the enabled location strategies."""
    location = config.location
    on_failure = provider_failure_callback(events, metrics)
    strategies: List[LocationStrategy] = []

    for method in location.methods:
        method = LocationMethod(method)
        if method is LocationMethod.GPS:
            strategies.append(GpsStrategy(timeout=location.gps_timeout))
        elif method is LocationMethod.WIFI:
            chain = ProviderChain(
                "wifi_positioning",
                select_providers(
                    default_wifi_providers(http, location.google_api_key),
                    location.wifi_providers,
                ),
                timeout=location.provider_timeout,
                on_failure=on_failure,
            )
            strategies.append(
                WifiStrategy(
                    chain,
                    scan_timeout=location.wifi_scan_timeout,
                    min_networks=location.min_wifi_networks,
                    max_networks=location.max_wifi_networks,
                    min_signal_dbm=location.min_wifi_signal_dbm,
                )
            )
        elif method is LocationMethod.BLUETOOTH:
            strategies.append(BluetoothStrategy(timeout=location.bluetooth_timeout))
        elif method is LocationMethod.CELL:
            strategies.append(CellularStrategy(timeout=location.cell_timeout))
        elif method is LocationMethod.IP:
            chain = ProviderChain(
                "ip_geolocation",
                select_providers(default_ip_geolocation_providers(http), location.ip_geo_providers),
                timeout=location.provider_timeout,
                on_failure=on_failure,
            )
            strategies.append(IpStrategy(chain))

    return strategies


def build_assembler(
    config: Optional[LinkForensicsConfig] = None,
    http: Optional[HttpClient] = None,
    store: Optional[ForensicStore] = None,
    events: Optional[ForensicLogger] = None,
    metrics: Optional[CaptureMetrics] = None,
) -> ForensicRecordAssembler:
    """Build a capture engine from configuration.

    Args:
        config: Engine configuration (defaults when omitted)
        http: Shared HTTP client; created and owned by the assembler when omitted
        store: Record store overriding ``config.store``
        events: Structured event logger overriding ``config.monitoring``
        metrics: Metrics overriding ``config.monitoring``

    Returns:
        Ready-to-use assembler

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    config = config or LinkForensicsConfig()
    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    monitoring = config.monitoring
    if events is None and monitoring.enabled:
        if monitoring.json_output or monitoring.log_file:
            events = configure_logging(
                monitoring.log_level,
                monitoring.json_output,
                monitoring.log_file,
                max_history=monitoring.event_history,
            )
        else:
            events = ForensicLogger(
                level=monitoring.log_level, max_history=monitoring.event_history
            )
    if metrics is None and monitoring.metrics_enabled:
        metrics = CaptureMetrics()

    owned_http = None
    if http is None:
        http = owned_http = HttpClient(timeout=config.probe.http_timeout)

    probe_config = config.probe
    if probe_config.reference_file:
        reference = ReferenceData.load(
            probe_config.reference_file, extend_defaults=probe_config.extend_reference
        )
    else:
        reference = ReferenceData()

    ip_chain = ProviderChain(
        "public_ip",
        select_providers(default_ip_identity_providers(http), probe_config.ip_providers),
        timeout=probe_config.provider_timeout,
        on_failure=provider_failure_callback(events, metrics),
    )
    probe = NetworkIdentityProbe(
        ip_chain,
        reference=reference,
        ice_timeout=probe_config.ice_timeout,
        rtt_threshold_ms=probe_config.rtt_threshold_ms,
        downlink_threshold_mbps=probe_config.downlink_threshold_mbps,
    )

    triangulator = LocationTriangulator(
        build_strategies(config, http, events, metrics),
        on_failure=events.location_strategy_failed if events else None,
    )

    return ForensicRecordAssembler(
        probe=probe,
        fingerprinter=DeviceFingerprinter(),
        triangulator=triangulator,
        store=store if store is not None else build_store(config),
        events=events,
        metrics=metrics,
        http=owned_http,
    )


def build_tracker(
    config: Optional[LinkForensicsConfig],
    access_id: str,
    store: ForensicStore,
    events: Optional[ForensicLogger] = None,
    clock: Callable[[], datetime] = utc_now,
) -> SessionEventTracker:
    """Build the session tracker for one captured access.

    ``config.session.checkpoint_interval`` sets how many focus events may
    accumulate before they are written to ``store``.

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    config = config or LinkForensicsConfig()
    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    return SessionEventTracker(
        access_id,
        store,
        clock=clock,
        checkpoint_interval=config.session.checkpoint_interval,
        events=events,
    )
