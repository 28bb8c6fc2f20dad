"""Link Forensics Integrations Module.

Production deployment utilities:
- Configuration management with environment variables
- Structured forensic event logging
- Capture metrics collection
"""

from linkforensics.integrations.config import (
    ConfigSource,
    ProbeConfig,
    LocationConfig,
    StoreConfig,
    SessionConfig,
    MonitoringConfig,
    LinkForensicsConfig,
    ConfigManager,
    PROFILES,
    get_config,
    validate_config,
    create_config_manager,
)

from linkforensics.integrations.logging import (
    ForensicEventType,
    ForensicEvent,
    ForensicLogger,
    MetricsCollector,
    CaptureMetrics,
    configure_logging,
)


__all__ = [
    # Configuration
    "ConfigSource",
    "ProbeConfig",
    "LocationConfig",
    "StoreConfig",
    "SessionConfig",
    "MonitoringConfig",
    "LinkForensicsConfig",
    "ConfigManager",
    "PROFILES",
    "get_config",
    "validate_config",
    "create_config_manager",
    # Logging
    "ForensicEventType",
    "ForensicEvent",
    "ForensicLogger",
    "MetricsCollector",
    "CaptureMetrics",
    "configure_logging",
]
