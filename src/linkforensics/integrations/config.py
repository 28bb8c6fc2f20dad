"""Configuration management for the capture engine.

Nested dataclass sections under ``LinkForensicsConfig`` with environment
variable, file and runtime overrides. ``validate_config`` is the
construction-time check; components are built from a validated config by
``linkforensics.engine.build_assembler``.
"""

import os
import json
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Union
from pathlib import Path
from enum import Enum

from linkforensics.core.record import LocationMethod


KNOWN_IP_PROVIDERS = ("ipapi", "ipinfo", "ipsb", "ipify")
KNOWN_IP_GEO_PROVIDERS = ("ipapi", "ipinfo", "myip")
KNOWN_WIFI_PROVIDERS = ("google", "beacondb")
STORE_BACKENDS = ("none", "memory", "sqlite")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigSource(Enum):
    """Configuration source types."""

    DEFAULT = "default"
    FILE = "file"
    ENVIRONMENT = "environment"
    RUNTIME = "runtime"


@dataclass
class ProbeConfig:
    """Network identity probe configuration.

    Attributes:
        ip_providers: Public IP providers in priority order
        provider_timeout: Per-provider time bound in seconds
        ice_timeout: ICE gathering time bound in seconds
        http_timeout: Overall aiohttp request timeout in seconds
        rtt_threshold_ms: RTT above which timing looks tunnelled
        downlink_threshold_mbps: Downlink above which timing looks tunnelled
        reference_file: Optional JSON file with VPN ASN and timezone tables
        extend_reference: Merge the file into the built-in tables
    """

    ip_providers: List[str] = field(default_factory=lambda: list(KNOWN_IP_PROVIDERS))
    provider_timeout: float = 5.0
    ice_timeout: float = 5.0
    http_timeout: float = 10.0
    rtt_threshold_ms: float = 100.0
    downlink_threshold_mbps: float = 10.0
    reference_file: Optional[str] = None
    extend_reference: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LocationConfig:
    """Location triangulation configuration.

    Attributes:
        methods: Enabled location methods
        gps_timeout: Device geolocation time bound in seconds
        wifi_scan_timeout: WiFi scan time bound in seconds
        bluetooth_timeout: Beacon scan time bound in seconds
        cell_timeout: Connection metadata time bound in seconds
        provider_timeout: Per-provider time bound for WiFi and IP lookups
        wifi_providers: WiFi positioning providers in priority order
        ip_geo_providers: IP geolocation providers in priority order
        google_api_key: Key for the Google geolocation endpoint
        min_wifi_networks: Minimum usable access points
        max_wifi_networks: Maximum access points sent to providers
        min_wifi_signal_dbm: Access points at or below this are dropped
    """

    methods: List[str] = field(default_factory=lambda: [m.value for m in LocationMethod])
    gps_timeout: float = 15.0
    wifi_scan_timeout: float = 5.0
    bluetooth_timeout: float = 10.0
    cell_timeout: float = 2.0
    provider_timeout: float = 5.0
    wifi_providers: List[str] = field(default_factory=lambda: list(KNOWN_WIFI_PROVIDERS))
    ip_geo_providers: List[str] = field(default_factory=lambda: list(KNOWN_IP_GEO_PROVIDERS))
    google_api_key: Optional[str] = None
    min_wifi_networks: int = 2
    max_wifi_networks: int = 10
    min_wifi_signal_dbm: float = -90.0

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        # Never write credentials back to disk
        result["google_api_key"] = None
        return result


@dataclass
class StoreConfig:
    """Persistence configuration.

    Attributes:
        backend: none, memory or sqlite
        sqlite_path: Database file for the sqlite backend
    """

    backend: str = "memory"
    sqlite_path: str = "forensics.db"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionConfig:
    """Session tracking configuration.

    Attributes:
        checkpoint_interval: Focus events between checkpoints (0 disables)
    """

    checkpoint_interval: int = 10

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MonitoringConfig:
    """Monitoring configuration.

    Attributes:
        enabled: Emit structured forensic events
        log_level: Logging level
        metrics_enabled: Collect capture metrics
        json_output: Bare-message console output for log shippers
        log_file: Optional log file path
        event_history: Events kept in memory
    """

    enabled: bool = True
    log_level: str = "INFO"
    metrics_enabled: bool = True
    json_output: bool = False
    log_file: Optional[str] = None
    event_history: int = 1000

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LinkForensicsConfig:
    """Complete capture engine configuration."""

    probe: ProbeConfig = field(default_factory=ProbeConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    config_source: ConfigSource = ConfigSource.DEFAULT
    config_version: str = "1.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "probe": self.probe.to_dict(),
            "location": self.location.to_dict(),
            "store": self.store.to_dict(),
            "session": self.session.to_dict(),
            "monitoring": self.monitoring.to_dict(),
            "config_source": self.config_source.value,
            "config_version": self.config_version,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration to a JSON file."""
        Path(path).write_text(self.to_json())

    def copy(self) -> "LinkForensicsConfig":
        """Independent copy, credentials included."""
        clone = LinkForensicsConfig.from_dict(self.to_dict())
        clone.location.google_api_key = self.location.google_api_key
        return clone

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkForensicsConfig":
        """Create from a dictionary; missing sections keep their defaults."""
        config = cls()

        if "probe" in data:
            config.probe = ProbeConfig(**data["probe"])
        if "location" in data:
            config.location = LocationConfig(**data["location"])
        if "store" in data:
            config.store = StoreConfig(**data["store"])
        if "session" in data:
            config.session = SessionConfig(**data["session"])
        if "monitoring" in data:
            config.monitoring = MonitoringConfig(**data["monitoring"])
        if "config_source" in data:
            config.config_source = ConfigSource(data["config_source"])
        if "config_version" in data:
            config.config_version = data["config_version"]

        return config

    @classmethod
    def load(cls, path: Union[str, Path]) -> "LinkForensicsConfig":
        """Load configuration from a JSON file."""
        with open(Path(path)) as f:
            data = json.load(f)
        config = cls.from_dict(data)
        config.config_source = ConfigSource.FILE
        return config


def _check_positive(errors: List[str], name: str, value: float) -> None:
    if value <= 0:
        errors.append(f"{name} must be positive: {value}")


def _check_names(errors: List[str], name: str, values: List[str], known: tuple) -> None:
    unknown = [v for v in values if v not in known]
    if unknown:
        errors.append(f"Unknown {name}: {unknown} (known: {list(known)})")


def validate_config(config: LinkForensicsConfig) -> List[str]:
    """Validate a configuration.

    Returns:
        List of validation errors (empty if valid)
    """
    errors: List[str] = []

    probe = config.probe
    _check_names(errors, "IP providers", probe.ip_providers, KNOWN_IP_PROVIDERS)
    _check_positive(errors, "probe.provider_timeout", probe.provider_timeout)
    _check_positive(errors, "probe.ice_timeout", probe.ice_timeout)
    _check_positive(errors, "probe.http_timeout", probe.http_timeout)
    if probe.reference_file and not Path(probe.reference_file).exists():
        errors.append(f"Reference file not found: {probe.reference_file}")

    location = config.location
    _check_names(errors, "location methods", location.methods, tuple(m.value for m in LocationMethod))
    _check_names(errors, "WiFi providers", location.wifi_providers, KNOWN_WIFI_PROVIDERS)
    _check_names(errors, "IP geolocation providers", location.ip_geo_providers, KNOWN_IP_GEO_PROVIDERS)
    for name in ("gps_timeout", "wifi_scan_timeout", "bluetooth_timeout", "cell_timeout", "provider_timeout"):
        _check_positive(errors, f"location.{name}", getattr(location, name))
    if location.min_wifi_networks < 1:
        errors.append(f"location.min_wifi_networks must be at least 1: {location.min_wifi_networks}")
    if location.max_wifi_networks < location.min_wifi_networks:
        errors.append("location.max_wifi_networks must not be below min_wifi_networks")

    if config.store.backend not in STORE_BACKENDS:
        errors.append(f"Invalid store backend: {config.store.backend}")
    if config.store.backend == "sqlite" and not config.store.sqlite_path:
        errors.append("store.sqlite_path is required for the sqlite backend")

    if config.session.checkpoint_interval < 0:
        errors.append(f"session.checkpoint_interval must not be negative: {config.session.checkpoint_interval}")

    if config.monitoring.log_level.upper() not in LOG_LEVELS:
        errors.append(f"Invalid log level: {config.monitoring.log_level}")
    if config.monitoring.event_history < 1:
        errors.append("monitoring.event_history must be positive")

    return errors


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class ConfigManager:
    """Configuration manager with environment variable support.

    Priority: runtime > environment > file > default.
    """

    ENV_PREFIX = "LINKFORENSICS_"

    ENV_MAPPINGS = {
        # Probe
        "IP_PROVIDERS": ("probe", "ip_providers", list),
        "PROVIDER_TIMEOUT": ("probe", "provider_timeout", float),
        "ICE_TIMEOUT": ("probe", "ice_timeout", float),
        "HTTP_TIMEOUT": ("probe", "http_timeout", float),
        "REFERENCE_FILE": ("probe", "reference_file", str),
        # Location
        "LOCATION_METHODS": ("location", "methods", list),
        "GPS_TIMEOUT": ("location", "gps_timeout", float),
        "WIFI_PROVIDERS": ("location", "wifi_providers", list),
        "IP_GEO_PROVIDERS": ("location", "ip_geo_providers", list),
        "GOOGLE_API_KEY": ("location", "google_api_key", str),
        # Store
        "STORE_BACKEND": ("store", "backend", str),
        "SQLITE_PATH": ("store", "sqlite_path", str),
        # Session
        "CHECKPOINT_INTERVAL": ("session", "checkpoint_interval", int),
        # Monitoring
        "MONITORING_ENABLED": ("monitoring", "enabled", bool),
        "LOG_LEVEL": ("monitoring", "log_level", str),
        "METRICS_ENABLED": ("monitoring", "metrics_enabled", bool),
        "LOG_JSON": ("monitoring", "json_output", bool),
        "LOG_FILE": ("monitoring", "log_file", str),
    }

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        load_env: bool = True,
        base: Optional[LinkForensicsConfig] = None,
    ):
        """Initialize configuration manager.

        Args:
            config_file: Optional path to a JSON config file
            load_env: Whether to apply environment variables
            base: Starting configuration (defaults when omitted)
        """
        self._config: LinkForensicsConfig = base.copy() if base else LinkForensicsConfig()
        self._overrides: Dict[str, Any] = {}

        if config_file:
            self._load_from_file(config_file)
        if load_env:
            self._load_from_env()

    def _load_from_file(self, path: Union[str, Path]) -> None:
        path = Path(path)
        if path.exists():
            self._config = LinkForensicsConfig.load(path)

    def _load_from_env(self) -> None:
        for env_key, (section, key, type_) in self.ENV_MAPPINGS.items():
            value = os.environ.get(f"{self.ENV_PREFIX}{env_key}")
            if value is None:
                continue

            if type_ == bool:
                value = value.lower() in ("true", "1", "yes")
            elif type_ == float:
                value = float(value)
            elif type_ == int:
                value = int(value)
            elif type_ == list:
                value = _parse_list(value)

            setattr(getattr(self._config, section), key, value)
            self._config.config_source = ConfigSource.ENVIRONMENT

    @property
    def config(self) -> LinkForensicsConfig:
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key (e.g. ``"store.backend"``)."""
        if key in self._overrides:
            return self._overrides[key]

        obj: Any = self._config
        for part in key.split("."):
            if not hasattr(obj, part):
                return default
            obj = getattr(obj, part)
        return obj

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value at runtime.

        Raises:
            KeyError: If ``key`` does not name a section field
        """
        parts = key.split(".")
        if len(parts) != 2 or not hasattr(getattr(self._config, parts[0], None), parts[1]):
            raise KeyError(f"Unknown configuration key: {key}")

        setattr(getattr(self._config, parts[0]), parts[1], value)
        self._overrides[key] = value
        self._config.config_source = ConfigSource.RUNTIME

    def reset(self) -> None:
        self._config = LinkForensicsConfig()
        self._overrides.clear()

    def validate(self) -> List[str]:
        return validate_config(self._config)


PROFILES = {
    "development": LinkForensicsConfig(
        store=StoreConfig(backend="memory"),
        monitoring=MonitoringConfig(log_level="DEBUG"),
    ),
    "production": LinkForensicsConfig(
        store=StoreConfig(backend="sqlite", sqlite_path="forensics.db"),
        session=SessionConfig(checkpoint_interval=5),
        monitoring=MonitoringConfig(log_level="INFO"),
    ),
    # No outbound lookups: device-local signals only
    "offline": LinkForensicsConfig(
        probe=ProbeConfig(ip_providers=[]),
        location=LocationConfig(
            methods=["gps", "bluetooth", "cell"],
            wifi_providers=[],
            ip_geo_providers=[],
        ),
        store=StoreConfig(backend="memory"),
    ),
}


def get_config(profile: str = "production") -> LinkForensicsConfig:
    """Get a copy of a configuration profile (defaults for unknown names)."""
    if profile in PROFILES:
        return PROFILES[profile].copy()
    return LinkForensicsConfig()


def create_config_manager(
    config_file: Optional[str] = None,
    profile: Optional[str] = None,
    load_env: bool = True,
) -> ConfigManager:
    """Create a configured ConfigManager.

    Args:
        config_file: Optional path to a JSON config file
        profile: Optional profile to start from
        load_env: Whether to apply environment variables

    Returns:
        Configured ConfigManager
    """
    base = PROFILES.get(profile) if profile else None
    return ConfigManager(config_file=config_file, load_env=load_env, base=base)
