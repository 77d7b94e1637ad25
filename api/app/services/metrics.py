from __future__ import annotations

import logging
import resource
import threading
import time
import uuid
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..config import ALERT_THRESHOLDS, METRICS_MEMORY_BUDGET_MB, PRECOMPUTE_ACTIVE_DAYS
from ..errors import StoreUnavailable

logger = logging.getLogger(__name__)

QUERY_HISTORY = 1000
ERROR_HISTORY = 100
ALERT_HISTORY = 50
ALERT_WINDOW_SECONDS = 3600

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"


def process_memory_usage(budget_mb: float = METRICS_MEMORY_BUDGET_MB) -> float:
    # ru_maxrss is reported in kilobytes on Linux.
    peak_mb = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss / 1024.0
    return round(peak_mb / budget_mb, 4) if budget_mb > 0 else 0.0


def _ratio(num: float, den: float) -> float:
    if den <= 0:
        return 0.0
    return num / den


class PerformanceMonitor:
    """In-process counters for the matching path plus threshold alerts.

    Histories are bounded; samples and alerts are persisted through an
    optional metrics store, and a store outage only loses that sample.
    """

    def __init__(
        self,
        metrics_store=None,
        thresholds: dict[str, float] | None = None,
        clock: Callable[[], float] = time.time,
        memory_gauge: Callable[[], float] = process_memory_usage,
    ) -> None:
        self._store = metrics_store
        self.thresholds = {**ALERT_THRESHOLDS, **(thresholds or {})}
        self._clock = clock
        self._memory_gauge = memory_gauge
        self._lock = threading.Lock()
        self.started_at = clock()

        self.queries: deque[dict[str, Any]] = deque(maxlen=QUERY_HISTORY)
        self.errors: deque[dict[str, Any]] = deque(maxlen=ERROR_HISTORY)
        self.alerts: deque[dict[str, Any]] = deque(maxlen=ALERT_HISTORY)
        self.cache_hits = 0
        self.cache_misses = 0
        self.total_matches = 0
        self.successful_matches = 0
        self.memory_usage = 0.0
        self.total_users = 0
        self.active_users = 0
        self.last_collected: float | None = None

    def record_query(self, name: str, duration_ms: float, success: bool = True) -> None:
        with self._lock:
            self.queries.append({"name": name, "duration_ms": duration_ms, "success": success, "at": self._clock()})
        if duration_ms > self.thresholds["max_query_time_ms"]:
            logger.warning("[METRICS] slow query name=%s duration_ms=%.1f", name, duration_ms)
            self.record_alert("slow_query", f"Query {name} took {duration_ms:.0f}ms", SEVERITY_WARNING)
        if not success:
            self.record_alert("query_failure", f"Query {name} failed", SEVERITY_WARNING)

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self.cache_misses += 1

    def record_match(self, success: bool) -> None:
        with self._lock:
            self.total_matches += 1
            if success:
                self.successful_matches += 1

    def record_error(self, context: str, message: str) -> None:
        with self._lock:
            self.errors.append({"context": context, "message": message, "at": self._clock()})
        logger.error("[METRICS] error context=%s message=%s", context, message)
        error_rate = self.error_rate()
        if error_rate > self.thresholds["max_error_rate"]:
            self.record_alert("high_error_rate", f"Error rate is {error_rate * 100:.2f}%", SEVERITY_CRITICAL)

    def avg_query_time_ms(self) -> float:
        with self._lock:
            durations = [q["duration_ms"] for q in self.queries]
        return sum(durations) / len(durations) if durations else 0.0

    def cache_hit_rate(self) -> float:
        return _ratio(self.cache_hits, self.cache_hits + self.cache_misses)

    def match_success_rate(self) -> float:
        return _ratio(self.successful_matches, self.total_matches)

    def error_rate(self) -> float:
        cutoff = self._clock() - ALERT_WINDOW_SECONDS
        with self._lock:
            recent = sum(1 for e in self.errors if e["at"] > cutoff)
        return recent / max(self.total_matches, 1)

    def engagement_rate(self) -> float:
        return _ratio(self.active_users, self.total_users)

    def collect(self, profile_store=None, cache=None) -> dict[str, Any]:
        """Refresh gauges, persist one sample per gauge and return the snapshot."""
        self.memory_usage = self._memory_gauge()
        if profile_store is not None:
            since = datetime.now(timezone.utc) - timedelta(days=PRECOMPUTE_ACTIVE_DAYS)
            try:
                self.total_users = profile_store.count_complete_profiles()
                self.active_users = profile_store.count_active_profiles(since)
            except StoreUnavailable as exc:
                self.record_error("metrics.collect", str(exc))
        if cache is not None:
            stats = cache.stats()
            with self._lock:
                self.cache_hits = int(stats["hits"])
                self.cache_misses = int(stats["misses"])
        self.last_collected = self._clock()

        snapshot = self.metrics()
        self._persist(
            [
                ("avg_query_time", snapshot["avg_query_time_ms"], "ms"),
                ("cache_hit_rate", snapshot["cache_hit_rate"], "ratio"),
                ("match_success_rate", snapshot["match_success_rate"], "ratio"),
                ("error_rate", snapshot["error_rate"], "ratio"),
                ("memory_usage", snapshot["memory_usage"], "ratio"),
                ("user_engagement", snapshot["engagement_rate"], "ratio"),
            ]
        )
        return snapshot

    def check_alerts(self) -> list[dict[str, Any]]:
        raised: list[dict[str, Any]] = []
        t = self.thresholds

        avg = self.avg_query_time_ms()
        if avg > t["max_query_time_ms"]:
            raised.append(self.record_alert("slow_queries", f"Average query time is {avg:.2f}ms", SEVERITY_WARNING))
        if self.cache_hits + self.cache_misses and self.cache_hit_rate() < t["min_cache_hit_rate"]:
            raised.append(
                self.record_alert("low_cache_hit_rate", f"Cache hit rate is {self.cache_hit_rate() * 100:.2f}%", SEVERITY_WARNING)
            )
        if self.memory_usage > t["max_memory_usage"]:
            raised.append(
                self.record_alert("high_memory_usage", f"Memory usage is {self.memory_usage * 100:.2f}%", SEVERITY_CRITICAL)
            )
        if self.total_users and self.engagement_rate() < t["min_user_engagement"]:
            raised.append(
                self.record_alert("low_user_engagement", f"User engagement is {self.engagement_rate() * 100:.2f}%", SEVERITY_WARNING)
            )
        if self.total_matches and self.match_success_rate() < t["min_match_success_rate"]:
            raised.append(
                self.record_alert(
                    "low_match_success", f"Match success rate is {self.match_success_rate() * 100:.2f}%", SEVERITY_WARNING
                )
            )
        return raised

    def record_alert(self, alert_type: str, message: str, severity: str = SEVERITY_INFO) -> dict[str, Any]:
        alert = {"type": alert_type, "message": message, "severity": severity, "at": self._clock()}
        with self._lock:
            self.alerts.append(alert)
        log = logger.error if severity == SEVERITY_CRITICAL else logger.warning
        log("[METRICS] alert type=%s severity=%s message=%s", alert_type, severity, message)
        self._persist([(f"alert_{alert_type}", 1, "count")])
        return alert

    def recent_alerts(self) -> list[dict[str, Any]]:
        cutoff = self._clock() - ALERT_WINDOW_SECONDS
        with self._lock:
            return [a for a in self.alerts if a["at"] > cutoff]

    def system_status(self) -> str:
        severities = {a["severity"] for a in self.recent_alerts()}
        if SEVERITY_CRITICAL in severities:
            return "critical"
        if SEVERITY_WARNING in severities:
            return "warning"
        return "healthy"

    def metrics(self) -> dict[str, Any]:
        return {
            "avg_query_time_ms": round(self.avg_query_time_ms(), 2),
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": round(self.cache_hit_rate(), 4),
            "total_matches": self.total_matches,
            "successful_matches": self.successful_matches,
            "match_success_rate": round(self.match_success_rate(), 4),
            "error_rate": round(self.error_rate(), 4),
            "memory_usage": self.memory_usage,
            "total_users": self.total_users,
            "active_users": self.active_users,
            "engagement_rate": round(self.engagement_rate(), 4),
        }

    def summary(self) -> dict[str, Any]:
        m = self.metrics()
        return {
            "status": self.system_status(),
            "performance": {
                "avg_query_time_ms": round(m["avg_query_time_ms"]),
                "cache_hit_rate": round(m["cache_hit_rate"] * 100),
                "match_success_rate": round(m["match_success_rate"] * 100),
                "error_rate": round(m["error_rate"] * 100),
            },
            "engagement": {
                "total_users": m["total_users"],
                "active_users": m["active_users"],
                "engagement_rate": round(m["engagement_rate"] * 100),
            },
            "system": {
                "memory_usage": round(m["memory_usage"] * 100),
                "uptime_seconds": round(self._clock() - self.started_at),
                "alerts": len(self.recent_alerts()),
            },
        }

    def _persist(self, samples: list[tuple[str, float, str]]) -> None:
        if self._store is None:
            return
        now = datetime.now(timezone.utc)
        rows = [
            {"id": str(uuid.uuid4()), "metric_name": name, "metric_value": float(value), "metric_unit": unit, "recorded_at": now}
            for name, value, unit in samples
        ]
        try:
            self._store.insert_metrics(rows)
        except StoreUnavailable as exc:
            logger.warning("[METRICS] could not persist %s samples: %s", len(rows), exc)
