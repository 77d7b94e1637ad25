from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..config import (
    MAINTENANCE_INTERVALS,
    PRECOMPUTE_ACTIVE_DAYS,
    PRECOMPUTE_BATCH_SIZE,
    PRECOMPUTE_BUDGET_SECONDS,
)
from ..errors import ProfileNotFound

logger = logging.getLogger(__name__)


@dataclass
class PeriodicTask:
    name: str
    interval_seconds: float
    fn: Callable[[], Any]
    runs: int = 0
    failures: int = 0
    last_result: Any = None
    last_error: str | None = None
    last_run_at: datetime | None = None
    _thread: threading.Thread | None = field(default=None, repr=False)

    def run(self) -> Any:
        self.last_run_at = datetime.now(timezone.utc)
        self.runs += 1
        result = self.fn()
        self.last_result = result
        self.last_error = None
        return result

    def status(self) -> dict[str, Any]:
        return {
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "failures": self.failures,
            "last_result": self.last_result,
            "last_error": self.last_error,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }


class BackgroundMaintainer:
    """Supervises the periodic maintenance tasks, one daemon thread each.

    A failing run is logged, counted and recorded in the monitor; the task keeps
    its schedule and other tasks are unaffected.
    """

    def __init__(
        self,
        engine,
        match_lifecycle,
        cache,
        monitor,
        profile_store,
        intervals: dict[str, float] | None = None,
        batch_size: int = PRECOMPUTE_BATCH_SIZE,
        active_days: int = PRECOMPUTE_ACTIVE_DAYS,
        budget_seconds: float = PRECOMPUTE_BUDGET_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine = engine
        self.lifecycle = match_lifecycle
        self.cache = cache
        self.monitor = monitor
        self.profiles = profile_store
        self.batch_size = batch_size
        self.active_days = active_days
        self.budget_seconds = budget_seconds
        self._monotonic = monotonic
        self._stop = threading.Event()

        intervals = {**MAINTENANCE_INTERVALS, **(intervals or {})}
        self.tasks: dict[str, PeriodicTask] = {
            "precompute": PeriodicTask("precompute", intervals["precompute"], self.precompute),
            "cache_sweep": PeriodicTask("cache_sweep", intervals["cache_sweep"], self.sweep_cache),
            "match_sweep": PeriodicTask("match_sweep", intervals["match_sweep"], self.sweep_matches),
            "metrics": PeriodicTask("metrics", intervals["metrics"], self.collect_metrics),
        }

    @property
    def running(self) -> bool:
        return any(t._thread is not None and t._thread.is_alive() for t in self.tasks.values())

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        for task in self.tasks.values():
            task._thread = threading.Thread(target=self._loop, args=(task,), name=f"maint-{task.name}", daemon=True)
            task._thread.start()
        logger.info("[MAINT] started tasks=%s", sorted(self.tasks))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for task in self.tasks.values():
            if task._thread is not None:
                task._thread.join(timeout=timeout)
                task._thread = None
        logger.info("[MAINT] stopped")

    def run_once(self, name: str) -> Any:
        task = self.tasks.get(name)
        if task is None:
            raise KeyError(name)
        return self._run_isolated(task)

    def status(self) -> dict[str, Any]:
        return {"running": self.running, "tasks": {name: t.status() for name, t in self.tasks.items()}}

    def _loop(self, task: PeriodicTask) -> None:
        while not self._stop.wait(task.interval_seconds):
            self._run_isolated(task)

    def _run_isolated(self, task: PeriodicTask) -> Any:
        try:
            result = task.run()
        except Exception as exc:
            task.failures += 1
            task.last_error = f"{exc.__class__.__name__}: {exc}"
            logger.exception("[MAINT] task=%s failed", task.name)
            if self.monitor is not None:
                self.monitor.record_error(f"maintenance.{task.name}", task.last_error)
            return None
        logger.info("[MAINT] task=%s result=%s", task.name, result)
        return result

    def precompute(self) -> dict[str, int]:
        deadline = self._monotonic() + self.budget_seconds

        def out_of_budget() -> bool:
            return self._monotonic() >= deadline

        since = datetime.now(timezone.utc) - timedelta(days=self.active_days)
        user_ids = self.profiles.list_recently_active_user_ids(since, self.batch_size)
        users = 0
        pairs = 0
        truncated = False
        for user_id in user_ids:
            if out_of_budget():
                truncated = True
                break
            try:
                computed, truncated = self.engine.precompute_for_user(user_id, should_stop=out_of_budget)
                pairs += computed
            except ProfileNotFound:
                logger.info("[MAINT] precompute skipped missing profile user_id=%s", user_id)
            users += 1
            if truncated:
                break
        if truncated:
            logger.info("[MAINT] precompute budget reached after users=%s", users)
        return {"users": users, "pairs": pairs, "truncated": int(truncated)}

    def sweep_cache(self) -> dict[str, int]:
        return {"evicted": self.cache.sweep_expired()}

    def sweep_matches(self) -> dict[str, int]:
        return {"expired": self.lifecycle.sweep_expired()}

    def collect_metrics(self) -> dict[str, Any]:
        snapshot = self.monitor.collect(profile_store=self.profiles, cache=self.cache)
        alerts = self.monitor.check_alerts()
        self.cache.set_metrics_snapshot(snapshot)
        return {"alerts": len(alerts), "status": self.monitor.system_status()}
