"""Tests for Link Forensics integrations module."""

import asyncio
import json
import logging
import pytest

from linkforensics.capabilities.base import CapabilitySet
from linkforensics.core.errors import ConfigurationError
from linkforensics.core.record import LocationMethod
from linkforensics.engine import (
    build_assembler,
    build_store,
    build_strategies,
    build_tracker,
    provider_failure_callback,
    select_providers,
)
from linkforensics.integrations import (
    ConfigSource,
    LinkForensicsConfig,
    ConfigManager,
    PROFILES,
    get_config,
    validate_config,
    create_config_manager,
    ForensicEventType,
    ForensicEvent,
    ForensicLogger,
    MetricsCollector,
    CaptureMetrics,
    configure_logging,
)
from linkforensics.location import IpStrategy, WifiStrategy
from linkforensics.network import default_ip_identity_providers
from linkforensics.store import InMemoryForensicStore, NullForensicStore, SQLiteForensicStore

from helpers import FakeHttp, make_record


# ============================================================================
# Configuration Tests
# ============================================================================

class TestLinkForensicsConfig:
    """Tests for LinkForensicsConfig."""

    def test_defaults(self):
        """Test default configuration."""
        config = LinkForensicsConfig()

        assert config.probe.ip_providers == ["ipapi", "ipinfo", "ipsb", "ipify"]
        assert config.location.methods == ["gps", "wifi", "bluetooth", "cell", "ip"]
        assert config.location.gps_timeout == 15.0
        assert config.store.backend == "memory"
        assert config.session.checkpoint_interval == 10
        assert validate_config(config) == []

    def test_round_trip(self, tmp_path):
        """Test save and load."""
        config = LinkForensicsConfig()
        config.store.backend = "sqlite"
        config.location.methods = ["gps", "ip"]
        path = tmp_path / "config.json"

        config.save(path)
        loaded = LinkForensicsConfig.load(path)

        assert loaded.store.backend == "sqlite"
        assert loaded.location.methods == ["gps", "ip"]
        assert loaded.config_source == ConfigSource.FILE

    def test_api_key_not_written(self, tmp_path):
        """Credentials stay out of serialized config."""
        config = LinkForensicsConfig()
        config.location.google_api_key = "secret"
        path = tmp_path / "config.json"
        config.save(path)

        assert "secret" not in path.read_text()
        assert json.loads(config.to_json())["location"]["google_api_key"] is None
        assert config.copy().location.google_api_key == "secret"

    def test_partial_dict(self):
        config = LinkForensicsConfig.from_dict({"session": {"checkpoint_interval": 2}})
        assert config.session.checkpoint_interval == 2
        assert config.store.backend == "memory"


class TestValidateConfig:
    """Tests for validate_config."""

    @pytest.mark.parametrize(
        "section,key,value,fragment",
        [
            ("probe", "ip_providers", ["ipapi", "nope"], "IP providers"),
            ("probe", "provider_timeout", 0, "probe.provider_timeout"),
            ("location", "methods", ["gps", "sonar"], "location methods"),
            ("location", "wifi_providers", ["skyhook"], "WiFi providers"),
            ("location", "gps_timeout", -1, "location.gps_timeout"),
            ("location", "min_wifi_networks", 0, "min_wifi_networks"),
            ("store", "backend", "postgres", "store backend"),
            ("session", "checkpoint_interval", -1, "checkpoint_interval"),
            ("monitoring", "log_level", "LOUD", "log level"),
        ],
    )
    def test_invalid_values(self, section, key, value, fragment):
        config = LinkForensicsConfig()
        setattr(getattr(config, section), key, value)

        errors = validate_config(config)
        assert any(fragment in e for e in errors)

    def test_missing_reference_file(self, tmp_path):
        config = LinkForensicsConfig()
        config.probe.reference_file = str(tmp_path / "missing.json")
        assert any("Reference file" in e for e in validate_config(config))


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_get_dotted_key(self):
        """Test getting values by dotted key."""
        manager = ConfigManager(load_env=False)

        assert manager.get("store.backend") == "memory"
        assert manager.get("location.cell_timeout") == 2.0
        assert manager.get("nonexistent.key", "default") == "default"

    def test_set_and_reset(self):
        manager = ConfigManager(load_env=False)

        manager.set("store.backend", "none")
        assert manager.get("store.backend") == "none"
        assert manager.config.config_source == ConfigSource.RUNTIME

        manager.reset()
        assert manager.get("store.backend") == "memory"

    def test_set_unknown_key(self):
        manager = ConfigManager(load_env=False)
        with pytest.raises(KeyError):
            manager.set("store.nonexistent", 1)
        with pytest.raises(KeyError):
            manager.set("backend", "sqlite")

    def test_environment_overrides(self, monkeypatch):
        """Test environment variables override defaults."""
        monkeypatch.setenv("LINKFORENSICS_STORE_BACKEND", "sqlite")
        monkeypatch.setenv("LINKFORENSICS_IP_PROVIDERS", "ipinfo, ipsb")
        monkeypatch.setenv("LINKFORENSICS_CHECKPOINT_INTERVAL", "3")
        monkeypatch.setenv("LINKFORENSICS_LOG_JSON", "true")
        monkeypatch.setenv("LINKFORENSICS_GPS_TIMEOUT", "7.5")

        config = ConfigManager().config

        assert config.store.backend == "sqlite"
        assert config.probe.ip_providers == ["ipinfo", "ipsb"]
        assert config.session.checkpoint_interval == 3
        assert config.monitoring.json_output is True
        assert config.location.gps_timeout == 7.5
        assert config.config_source == ConfigSource.ENVIRONMENT

    def test_file_then_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        LinkForensicsConfig.from_dict({"store": {"backend": "none"}, "session": {"checkpoint_interval": 4}}).save(path)
        monkeypatch.setenv("LINKFORENSICS_CHECKPOINT_INTERVAL", "8")

        manager = ConfigManager(config_file=path)

        assert manager.get("store.backend") == "none"
        assert manager.get("session.checkpoint_interval") == 8

    def test_validate(self):
        manager = ConfigManager(load_env=False)
        assert manager.validate() == []

        manager.config.location.max_wifi_networks = 1
        manager.config.location.min_wifi_networks = 3
        assert any("max_wifi_networks" in e for e in manager.validate())


class TestProfiles:
    """Tests for configuration profiles."""

    def test_profiles(self):
        assert set(PROFILES) == {"development", "production", "offline"}
        assert PROFILES["production"].store.backend == "sqlite"
        assert PROFILES["production"].session.checkpoint_interval == 5
        assert PROFILES["offline"].probe.ip_providers == []
        for config in PROFILES.values():
            assert validate_config(config) == []

    def test_get_config_returns_copy(self):
        config = get_config("production")
        config.store.backend = "none"
        assert PROFILES["production"].store.backend == "sqlite"

    def test_unknown_profile(self):
        assert get_config("nonexistent").store.backend == "memory"

    def test_create_config_manager(self):
        manager = create_config_manager(profile="development", load_env=False)
        assert manager.get("monitoring.log_level") == "DEBUG"

        manager.set("monitoring.log_level", "ERROR")
        assert PROFILES["development"].monitoring.log_level == "DEBUG"


# ============================================================================
# Logging Tests
# ============================================================================

class TestForensicLogger:
    """Tests for ForensicLogger."""

    def test_event_history(self):
        logger = ForensicLogger(name="test.integrations.history")

        logger.capture_started("access-1", "link-1")
        logger.capture_completed("access-1", 85, "gps", 120.5)

        events = logger.get_recent_events(count=10)
        assert [e.event_type for e in events] == [
            ForensicEventType.CAPTURE_STARTED,
            ForensicEventType.CAPTURE_COMPLETED,
        ]
        assert events[1].access_id == "access-1"
        assert events[1].details["location_method"] == "gps"

    def test_history_bounded(self):
        logger = ForensicLogger(name="test.integrations.bounded", max_history=3)
        for i in range(5):
            logger.record_persisted(f"access-{i}", "memory")

        events = logger.get_recent_events()
        assert [e.access_id for e in events] == ["access-2", "access-3", "access-4"]

    def test_filter_by_type(self):
        logger = ForensicLogger(name="test.integrations.filter")

        logger.provider_failed("public_ip", "ipapi", "timeout")
        logger.location_strategy_failed("gps", "permission denied")
        logger.provider_failed("public_ip", "ipinfo", "timeout")

        failures = logger.get_recent_events(event_type=ForensicEventType.PROVIDER_FAILED)
        assert [e.details["provider"] for e in failures] == ["ipapi", "ipinfo"]

    def test_event_callback(self):
        logger = ForensicLogger(name="test.integrations.callback")
        received = []

        logger.add_callback(received.append)
        logger.download_recorded("access-1", True)

        assert len(received) == 1
        assert received[0].details == {"persisted": True}

    def test_failing_callback_does_not_break_logging(self):
        logger = ForensicLogger(name="test.integrations.broken_callback")

        def broken(event):
            raise RuntimeError("callback bug")

        logger.add_callback(broken)
        logger.persistence_failed("access-1", "sqlite", "disk full")

        assert logger.get_recent_events()[0].severity == "ERROR"

    def test_event_json(self):
        event = ForensicEvent(ForensicEventType.CONFIG_LOADED, message="loaded", details={"profile": "offline"})
        data = json.loads(event.to_json())
        assert data["event_type"] == "config_loaded"
        assert data["details"] == {"profile": "offline"}

    def test_configure_logging_replaces_handlers(self, tmp_path):
        """Reconfiguring closes the previous handlers instead of stacking new ones."""
        log_file = str(tmp_path / "events.log")
        first = configure_logging(log_file=log_file, name="test.integrations.configure")
        first_file = [h for h in first.logger.handlers if isinstance(h, logging.FileHandler)][0]

        second = configure_logging(log_file=log_file, name="test.integrations.configure", max_history=5)

        assert len(second.logger.handlers) == 2
        assert first_file not in second.logger.handlers
        assert first_file.stream is None
        assert second._max_history == 5

        for handler in list(second.logger.handlers):
            second.logger.removeHandler(handler)
            handler.close()


class TestMetrics:
    """Tests for MetricsCollector and CaptureMetrics."""

    def test_counters_and_labels(self):
        collector = MetricsCollector()

        collector.increment("requests", labels={"method": "GET"})
        collector.increment("requests", labels={"method": "GET"})
        collector.increment("requests", 5)

        assert collector.get_counter("requests", labels={"method": "GET"}) == 2
        assert collector.get_counter("requests") == 5

    def test_histogram(self):
        collector = MetricsCollector(max_samples=50)
        for i in range(100):
            collector.observe("latency", i)

        stats = collector.get_histogram_stats("latency")
        assert stats["count"] == 50
        assert stats["min"] == 50
        assert stats["max"] == 99

    def test_capture_summary(self):
        metrics = CaptureMetrics()

        metrics.record_capture(120.0, 85, ["gps", "ip"], identification_failed=False)
        metrics.record_capture(80.0, 100, [], identification_failed=True)
        metrics.record_provider_failure("public_ip", "ipapi")
        metrics.record_persistence(True)
        metrics.record_persistence(False)
        metrics.set_pending_writes(3)

        summary = metrics.get_summary()
        assert summary["captures"]["total"] == 2
        assert summary["captures"]["without_location"] == 1
        assert summary["captures"]["identification_failed"] == 1
        assert summary["captures"]["latency"]["avg"] == 100.0
        assert summary["location_sources"] == {"gps": 1, "ip": 1}
        assert summary["persistence"]["failure_rate"] == 0.5
        assert summary["pending_writes"] == 3


# ============================================================================
# Engine Construction Tests
# ============================================================================

class TestEngine:
    """Tests for building the engine from configuration."""

    def test_invalid_config_rejected(self):
        config = LinkForensicsConfig()
        config.store.backend = "postgres"

        with pytest.raises(ConfigurationError) as info:
            build_assembler(config, http=FakeHttp())
        assert any("postgres" in e for e in info.value.errors)

    def test_select_providers_keeps_requested_order(self):
        providers = default_ip_identity_providers(FakeHttp())
        selected = select_providers(providers, ["ipify", "ipapi", "unknown"])
        assert [p.name for p in selected] == ["ipify", "ipapi"]

    @pytest.mark.parametrize(
        "backend,store_type",
        [("none", NullForensicStore), ("memory", InMemoryForensicStore), ("sqlite", SQLiteForensicStore)],
    )
    def test_build_store(self, backend, store_type, tmp_path):
        config = LinkForensicsConfig()
        config.store.backend = backend
        config.store.sqlite_path = str(tmp_path / "records.db")
        assert isinstance(build_store(config), store_type)

    def test_build_strategies(self):
        config = LinkForensicsConfig()
        config.location.methods = ["ip", "wifi"]
        config.location.wifi_providers = ["beacondb"]

        strategies = build_strategies(config, FakeHttp())

        assert [s.method for s in strategies] == [LocationMethod.IP, LocationMethod.WIFI]
        assert isinstance(strategies[0], IpStrategy)
        assert isinstance(strategies[1], WifiStrategy)
        assert len(strategies[1].chain) == 1

    def test_provider_failure_callback(self):
        events = ForensicLogger(name="test.integrations.provider_callback")
        metrics = CaptureMetrics()

        assert provider_failure_callback() is None
        provider_failure_callback(events, metrics)("public_ip", "ipapi", "timeout")

        assert events.get_recent_events(event_type=ForensicEventType.PROVIDER_FAILED)
        assert metrics.collector.get_counter(
            "provider_failures", labels={"chain": "public_ip", "provider": "ipapi"}
        ) == 1

    def test_offline_profile_capture(self):
        """The offline profile captures without any outbound lookup."""
        async def scenario():
            http = FakeHttp()
            store = InMemoryForensicStore()
            assembler = build_assembler(get_config("offline"), http=http, store=store)
            record = await assembler.capture("link-1", "audit-1", CapabilitySet())
            await assembler.close()
            return record, http, store

        record, http, store = asyncio.run(scenario())

        assert record.network_identity.identification_failed is True
        assert record.best_location is None
        assert http.requests == []
        assert len(store) == 1

    def test_provider_failures_reach_metrics(self):
        async def scenario():
            config = LinkForensicsConfig()
            config.probe.ip_providers = ["ipapi"]
            config.location.methods = ["ip"]
            config.location.ip_geo_providers = ["myip"]
            metrics = CaptureMetrics()
            assembler = build_assembler(config, http=FakeHttp(), metrics=metrics)
            await assembler.capture("link-1", "audit-1", CapabilitySet())
            await assembler.close()
            return metrics

        metrics = asyncio.run(scenario())
        collector = metrics.collector
        assert collector.get_counter("provider_failures", labels={"chain": "public_ip", "provider": "ipapi"}) == 1
        assert collector.get_counter("provider_failures", labels={"chain": "ip_geolocation", "provider": "myip"}) == 1

    def test_repeated_builds_do_not_stack_handlers(self, tmp_path):
        config = LinkForensicsConfig()
        config.monitoring.log_file = str(tmp_path / "events.log")

        for _ in range(3):
            assembler = build_assembler(config, http=FakeHttp(), store=NullForensicStore())

        target = assembler.events.logger
        try:
            assert len(target.handlers) == 2
        finally:
            for handler in list(target.handlers):
                target.removeHandler(handler)
                handler.close()

    def test_build_tracker_uses_checkpoint_interval(self):
        """The production profile checkpoints every five focus events."""
        async def scenario():
            store = InMemoryForensicStore()
            record = make_record()
            await store.upsert(record)
            tracker = build_tracker(get_config("production"), record.access_id, store)
            for _ in range(5):
                tracker.on_blur()
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            return tracker, await store.get(record.access_id)

        tracker, stored = asyncio.run(scenario())
        assert tracker.checkpoint_interval == 5
        assert tracker.pending_count == 0
        assert len(stored.focus_events) == 5

    def test_build_tracker_defaults_and_validation(self):
        tracker = build_tracker(None, "access-1", NullForensicStore())
        assert tracker.checkpoint_interval == LinkForensicsConfig().session.checkpoint_interval

        config = LinkForensicsConfig()
        config.session.checkpoint_interval = -1
        with pytest.raises(ConfigurationError):
            build_tracker(config, "access-1", NullForensicStore())
