"""Structured forensic event logging and capture metrics.

``ForensicLogger`` emits one structured ``ForensicEvent`` per notable step
of a capture (start, completion, provider failure, persistence outcome) on
top of the standard ``logging`` module, keeping a bounded history and
notifying registered callbacks. ``MetricsCollector`` and ``CaptureMetrics``
aggregate counters, gauges and histograms for monitoring.
"""

import logging
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from enum import Enum
from datetime import datetime
from collections import defaultdict
import threading

from linkforensics.core.record import utc_now


class ForensicEventType(Enum):
    """Types of forensic events."""

    # Capture lifecycle
    CAPTURE_STARTED = "capture_started"
    CAPTURE_COMPLETED = "capture_completed"
    COMPONENT_FAILED = "component_failed"

    # Signal acquisition
    PROVIDER_FAILED = "provider_failed"
    LOCATION_STRATEGY_FAILED = "location_strategy_failed"
    IDENTIFICATION_FAILED = "identification_failed"

    # Persistence
    RECORD_PERSISTED = "record_persisted"
    PERSISTENCE_FAILED = "persistence_failed"

    # Session
    DOWNLOAD_RECORDED = "download_recorded"
    SESSION_FLUSHED = "session_flushed"

    # Audit
    CONFIG_LOADED = "config_loaded"


@dataclass
class ForensicEvent:
    """A structured forensic event.

    Attributes:
        event_type: Type of event
        timestamp: Event timestamp
        severity: DEBUG, INFO, WARNING, ERROR or CRITICAL
        message: Human-readable message
        details: Additional event details
        access_id: Related access if applicable
        source: Emitting component
    """

    event_type: ForensicEventType
    timestamp: datetime = field(default_factory=utc_now)
    severity: str = "INFO"
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    access_id: Optional[str] = None
    source: str = "linkforensics"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity,
            "message": self.message,
            "details": self.details,
            "access_id": self.access_id,
            "source": self.source,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class ForensicLogger:
    """Structured forensic event logger.

    Example:
        >>> events = ForensicLogger()
        >>> events.add_callback(lambda e: print(e.event_type.value))
        >>> events.capture_started("access-1", "link-1")
        capture_started
    """

    def __init__(
        self,
        name: str = "linkforensics.events",
        level: str = "INFO",
        handlers: Optional[List[logging.Handler]] = None,
        max_history: int = 1000,
    ):
        """Initialize the forensic logger.

        Args:
            name: Logger name
            level: Logging level
            handlers: Optional custom handlers
            max_history: Number of events kept in memory
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        if not handlers and not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            self.logger.addHandler(handler)
        elif handlers:
            for handler in handlers:
                self.logger.addHandler(handler)

        self._event_callbacks: List[Callable[[ForensicEvent], None]] = []
        self._event_history: List[ForensicEvent] = []
        self._max_history = max_history
        self._lock = threading.Lock()

    def log_event(self, event: ForensicEvent) -> None:
        """Log an event, record it in history and notify callbacks."""
        log_func = getattr(self.logger, event.severity.lower(), self.logger.info)
        log_func(
            f"[{event.event_type.value}] {event.message}",
            extra={"event_data": event.to_dict()},
        )

        with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history:]

        for callback in self._event_callbacks:
            try:
                callback(event)
            except Exception:
                self.logger.exception("Event callback failed for %s", event.event_type.value)

    def capture_started(self, access_id: str, link_id: str) -> None:
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.CAPTURE_STARTED,
                message=f"Capture {access_id} started for link {link_id}",
                access_id=access_id,
                details={"link_id": link_id},
            )
        )

    def capture_completed(
        self,
        access_id: str,
        trust_score: int,
        location_method: Optional[str],
        latency_ms: float,
    ) -> None:
        """Log a completed capture."""
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.CAPTURE_COMPLETED,
                message=(
                    f"Capture {access_id} completed in {latency_ms:.1f}ms "
                    f"(trust {trust_score}, location {location_method or 'none'})"
                ),
                access_id=access_id,
                details={
                    "trust_score": trust_score,
                    "location_method": location_method,
                    "latency_ms": latency_ms,
                },
            )
        )

    def component_failed(self, access_id: str, component: str, error: str) -> None:
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.COMPONENT_FAILED,
                severity="ERROR",
                message=f"{component} failed during capture {access_id}: {error}",
                access_id=access_id,
                details={"component": component, "error": error},
            )
        )

    def provider_failed(self, chain: str, provider: str, reason: str) -> None:
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.PROVIDER_FAILED,
                severity="DEBUG",
                message=f"{chain} provider {provider} failed: {reason}",
                details={"chain": chain, "provider": provider, "reason": reason},
            )
        )

    def location_strategy_failed(self, method: str, reason: str) -> None:
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.LOCATION_STRATEGY_FAILED,
                severity="DEBUG",
                message=f"Location strategy {method} failed: {reason}",
                details={"method": method, "reason": reason},
            )
        )

    def identification_failed(self, access_id: str) -> None:
        """Log that no provider could identify the public IP."""
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.IDENTIFICATION_FAILED,
                severity="WARNING",
                message=f"Public IP of access {access_id} could not be identified",
                access_id=access_id,
            )
        )

    def record_persisted(self, access_id: str, store: str) -> None:
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.RECORD_PERSISTED,
                message=f"Record {access_id} persisted to {store}",
                access_id=access_id,
                details={"store": store},
            )
        )

    def persistence_failed(self, access_id: str, store: str, error: Optional[str]) -> None:
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.PERSISTENCE_FAILED,
                severity="ERROR",
                message=f"Record {access_id} not persisted to {store}: {error}",
                access_id=access_id,
                details={"store": store, "error": error},
            )
        )

    def download_recorded(self, access_id: str, persisted: bool) -> None:
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.DOWNLOAD_RECORDED,
                severity="INFO" if persisted else "WARNING",
                message=f"Download for {access_id} recorded (persisted={persisted})",
                access_id=access_id,
                details={"persisted": persisted},
            )
        )

    def session_flushed(self, access_id: str, events: int, persisted: bool) -> None:
        self.log_event(
            ForensicEvent(
                event_type=ForensicEventType.SESSION_FLUSHED,
                severity="DEBUG" if persisted else "WARNING",
                message=f"Flushed {events} focus events for {access_id} (persisted={persisted})",
                access_id=access_id,
                details={"events": events, "persisted": persisted},
            )
        )

    def add_callback(self, callback: Callable[[ForensicEvent], None]) -> None:
        self._event_callbacks.append(callback)

    def get_recent_events(
        self,
        count: int = 100,
        event_type: Optional[ForensicEventType] = None,
    ) -> List[ForensicEvent]:
        """Get recent events.

        Args:
            count: Number of events to look back over
            event_type: Optional filter by event type

        Returns:
            List of recent events, oldest first
        """
        with self._lock:
            events = self._event_history[-count:]
            if event_type:
                events = [e for e in events if e.event_type == event_type]
            return events


class MetricsCollector:
    """Counters, gauges and histograms keyed by name and labels."""

    def __init__(self, max_samples: int = 10000):
        self._counters: Dict[str, float] = defaultdict(float)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, List[float]] = defaultdict(list)
        self._max_samples = max_samples
        self._lock = threading.Lock()
        self._start_time = time.time()

    def increment(self, name: str, value: float = 1.0, labels: Optional[Dict] = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += value

    def set_gauge(self, name: str, value: float, labels: Optional[Dict] = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def observe(self, name: str, value: float, labels: Optional[Dict] = None) -> None:
        """Record a histogram sample."""
        key = self._make_key(name, labels)
        with self._lock:
            samples = self._histograms[key]
            samples.append(value)
            if len(samples) > self._max_samples:
                del samples[: len(samples) - self._max_samples]

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict] = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def get_counter(self, name: str, labels: Optional[Dict] = None) -> float:
        return self._counters.get(self._make_key(name, labels), 0.0)

    def get_gauge(self, name: str, labels: Optional[Dict] = None) -> Optional[float]:
        return self._gauges.get(self._make_key(name, labels))

    def get_histogram_stats(self, name: str, labels: Optional[Dict] = None) -> Dict[str, float]:
        """Get histogram statistics.

        Returns:
            Dictionary with count, sum, avg, min, max, p50, p95, p99
        """
        values = list(self._histograms.get(self._make_key(name, labels), []))
        if not values:
            return {}

        ordered = sorted(values)
        n = len(ordered)
        return {
            "count": n,
            "sum": sum(ordered),
            "avg": sum(ordered) / n,
            "min": ordered[0],
            "max": ordered[-1],
            "p50": ordered[int(n * 0.5)],
            "p95": ordered[min(int(n * 0.95), n - 1)],
            "p99": ordered[min(int(n * 0.99), n - 1)],
        }

    def get_all_metrics(self) -> Dict[str, Any]:
        with self._lock:
            keys = list(self._histograms.keys())
            snapshot = {
                "uptime_seconds": time.time() - self._start_time,
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
            }
        snapshot["histograms"] = {k: self.get_histogram_stats(k) for k in keys}
        return snapshot

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


class CaptureMetrics:
    """Capture-level metrics on top of a ``MetricsCollector``."""

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self.collector = collector or MetricsCollector()

    def record_capture(
        self,
        latency_ms: float,
        trust_score: int,
        location_sources: List[str],
        identification_failed: bool,
    ) -> None:
        """Record one completed capture."""
        self.collector.increment("capture_total")
        self.collector.observe("capture_latency_ms", latency_ms)
        self.collector.observe("trust_score", trust_score)
        self.collector.observe("location_source_count", len(location_sources))
        if not location_sources:
            self.collector.increment("capture_without_location")
        for source in location_sources:
            self.collector.increment("location_source", labels={"method": source})
        if identification_failed:
            self.collector.increment("identification_failed")

    def record_provider_failure(self, chain: str, provider: str) -> None:
        self.collector.increment("provider_failures", labels={"chain": chain, "provider": provider})

    def record_persistence(self, persisted: bool) -> None:
        self.collector.increment("persist_total")
        if not persisted:
            self.collector.increment("persist_failed")

    def set_pending_writes(self, count: int) -> None:
        self.collector.set_gauge("pending_writes", count)

    def get_summary(self) -> Dict[str, Any]:
        """Summarize capture metrics."""
        metrics = self.collector.get_all_metrics()
        counters = metrics["counters"]

        total = counters.get("capture_total", 0)
        persisted_total = counters.get("persist_total", 0)
        persist_failed = counters.get("persist_failed", 0)

        return {
            "uptime_seconds": metrics["uptime_seconds"],
            "captures": {
                "total": total,
                "without_location": counters.get("capture_without_location", 0),
                "identification_failed": counters.get("identification_failed", 0),
                "latency": metrics["histograms"].get("capture_latency_ms", {}),
            },
            "trust_score": metrics["histograms"].get("trust_score", {}),
            "location_sources": {
                key[len("location_source{method="):-1]: value
                for key, value in counters.items()
                if key.startswith("location_source{")
            },
            "persistence": {
                "total": persisted_total,
                "failed": persist_failed,
                "failure_rate": persist_failed / persisted_total if persisted_total > 0 else 0,
            },
            "pending_writes": metrics["gauges"].get("pending_writes", 0),
        }


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    name: str = "linkforensics.events",
    max_history: int = 1000,
) -> ForensicLogger:
    """Configure a forensic event logger.

    Handlers already attached to the named logger are closed and replaced,
    so configuring twice does not duplicate output or leak file handles.

    Args:
        level: Logging level
        json_output: Emit bare messages for JSON log shippers
        log_file: Optional log file path
        name: Logger name
        max_history: Number of events kept in memory

    Returns:
        Configured ForensicLogger
    """
    target = logging.getLogger(name)
    for handler in list(target.handlers):
        target.removeHandler(handler)
        handler.close()

    text_format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handlers: List[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(message)s") if json_output else text_format)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(text_format)
        handlers.append(file_handler)

    return ForensicLogger(name=name, level=level, handlers=handlers, max_history=max_history)
