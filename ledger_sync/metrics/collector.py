"""
Metrics Collector

Counts backend requests, cache hits and load times so the cost of a feed
session can be inspected.

DESIGN DECISION: There is no module-level singleton created at import
time. `init_metrics()` creates the collector explicitly, `get_metrics()`
returns it (and raises if nobody initialized it), and components receive
the collector through their constructors.
"""

import time
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field


logger = structlog.get_logger(__name__)


class MetricType(str, Enum):
    """Kinds of recorded metric events."""
    REQUEST = "request"
    CACHE = "cache"
    LOAD = "load"


class MetricEvent(BaseModel):
    """One recorded metric event."""

    timestamp: datetime = Field(default_factory=datetime.utcnow)
    type: MetricType
    operation: str
    duration_ms: Optional[float] = None
    details: dict[str, Any] = Field(default_factory=dict)


class LoadTimeStats(BaseModel):
    count: int = 0
    avg_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0


class MetricsReport(BaseModel):
    """Summary of everything recorded since the last reset."""

    session_seconds: float
    total_requests: int
    cache_hits: int
    cache_misses: int
    cache_hit_rate: float = Field(description="Hits / (hits + misses), 0.0 when no lookups")
    load_times: LoadTimeStats
    events: list[MetricEvent] = Field(default_factory=list)


class MetricsCollector:
    """
    In-process metrics collector.

    Every backend request counts as a cache miss; `log_cache_hit` is for
    callers that answer from local state instead.

    Counters cover the whole session. Only the last `max_events` events are
    kept, so the event list and load-time stats describe recent activity.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_events: int = 1000,
    ):
        self._clock = clock
        self._max_events = max_events
        self.reset()

    def reset(self) -> None:
        """Discard all recorded events and restart the session clock."""
        self._events: deque[MetricEvent] = deque(maxlen=self._max_events)
        self._request_count = 0
        self._cache_hits = 0
        self._cache_misses = 0
        self._session_start = self._clock()

    @property
    def request_count(self) -> int:
        return self._request_count

    def log_request(self, operation: str, details: Optional[dict[str, Any]] = None) -> None:
        self._request_count += 1
        self._cache_misses += 1
        self._events.append(
            MetricEvent(type=MetricType.REQUEST, operation=operation, details=details or {})
        )
        logger.debug(
            "metrics_request",
            operation=operation,
            request_number=self._request_count,
            details=details or {},
        )

    def log_cache_hit(self, operation: str) -> None:
        self._cache_hits += 1
        self._events.append(MetricEvent(type=MetricType.CACHE, operation=operation))
        logger.debug("metrics_cache_hit", operation=operation)

    def log_load_time(self, operation: str, duration_ms: float) -> None:
        self._events.append(
            MetricEvent(type=MetricType.LOAD, operation=operation, duration_ms=duration_ms)
        )
        logger.debug("metrics_load_time", operation=operation, duration_ms=round(duration_ms, 1))

    def get_report(self) -> MetricsReport:
        """Build a report of the current session."""
        load_times = [
            e.duration_ms or 0.0 for e in self._events if e.type == MetricType.LOAD
        ]
        lookups = self._cache_hits + self._cache_misses

        return MetricsReport(
            session_seconds=round(self._clock() - self._session_start, 1),
            total_requests=self._request_count,
            cache_hits=self._cache_hits,
            cache_misses=self._cache_misses,
            cache_hit_rate=self._cache_hits / lookups if lookups else 0.0,
            load_times=LoadTimeStats(
                count=len(load_times),
                avg_ms=sum(load_times) / len(load_times) if load_times else 0.0,
                min_ms=min(load_times, default=0.0),
                max_ms=max(load_times, default=0.0),
            ),
            events=list(self._events),
        )

    def export_json(self) -> str:
        return self.get_report().model_dump_json(indent=2)


_collector: Optional[MetricsCollector] = None


def init_metrics(collector: Optional[MetricsCollector] = None) -> MetricsCollector:
    """
    Initialize the process-wide collector.

    Calling it again replaces the collector (useful between test runs).
    """
    global _collector
    _collector = collector or MetricsCollector()
    return _collector


def get_metrics() -> MetricsCollector:
    """
    Return the collector created by init_metrics().

    Raises:
        RuntimeError: If init_metrics() has not been called
    """
    if _collector is None:
        raise RuntimeError("Metrics not initialized; call init_metrics() first")
    return _collector
