from datetime import timedelta

from conftest import FakeMatchStore, FakeMetricsStore, FakeProfileStore, make_profile

from app.services.candidates import CandidateFilter
from app.services.lifecycle import MatchLifecycleManager
from app.services.maintenance import BackgroundMaintainer
from app.services.matching import MatchingEngine
from app.services.metrics import PerformanceMonitor
from app.services.scoring import CompatibilityScorer, compute_compatibility


class StepClock:
    """Monotonic clock that advances a fixed step on every read."""

    def __init__(self, step: float) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


def _maintainer(profiles, cache, clock, monotonic=None, budget=30.0):
    store = FakeProfileStore(profiles)
    matches = FakeMatchStore()
    monitor = PerformanceMonitor(FakeMetricsStore(), memory_gauge=lambda: 0.1)
    lifecycle = MatchLifecycleManager(matches, clock=clock)
    engine = MatchingEngine(store, cache, CandidateFilter(store, matches), CompatibilityScorer(rng=None), lifecycle, monitor)
    kwargs = {"monotonic": monotonic} if monotonic else {}
    maintainer = BackgroundMaintainer(engine, lifecycle, cache, monitor, store, budget_seconds=budget, **kwargs)
    return maintainer, store, matches, lifecycle


def _people(n):
    return [make_profile(f"u{i}", gender="Male" if i % 2 else "Female") for i in range(n)]


def test_precompute_scores_and_caches_all_pairs(cache, clock):
    maintainer, *_ = _maintainer(_people(4), cache, clock)

    result = maintainer.run_once("precompute")

    assert result == {"users": 4, "pairs": 6, "truncated": 0}
    assert cache.get_compatibility("u0", "u3") is not None
    assert maintainer.run_once("precompute")["pairs"] == 0


def test_precompute_stops_at_budget(cache, clock):
    maintainer, *_ = _maintainer(_people(6), cache, clock, monotonic=StepClock(10.0), budget=30.0)

    result = maintainer.run_once("precompute")

    assert result["truncated"] == 1
    assert result["users"] < 6


def test_precompute_reports_truncation_inside_last_user(cache, clock):
    maintainer, store, *_ = _maintainer(_people(6), cache, clock, monotonic=StepClock(10.0), budget=30.0)
    store.active_ids = ["u0"]

    result = maintainer.run_once("precompute")

    assert result == {"users": 1, "pairs": 1, "truncated": 1}


def test_match_sweep_expires_stale_matches(cache, clock):
    maintainer, _store, matches, lifecycle = _maintainer(_people(2), cache, clock)
    match = lifecycle.create("u0", "u1", compute_compatibility(make_profile("u0"), make_profile("u1")))
    clock.advance(timedelta(hours=25))

    assert maintainer.run_once("match_sweep") == {"expired": 1}
    assert matches.get_match(match.id).status == "expired"


def test_cache_sweep_and_metrics_tasks(cache, clock):
    maintainer, *_ = _maintainer(_people(2), cache, clock)

    assert maintainer.run_once("cache_sweep") == {"evicted": 0}
    result = maintainer.run_once("metrics")

    assert result["status"] in {"healthy", "warning", "critical"}
    assert cache.get_metrics_snapshot()["total_users"] == 2


def test_failing_task_is_isolated_and_recorded(cache, clock):
    maintainer, store, *_ = _maintainer(_people(2), cache, clock)

    def boom():
        raise RuntimeError("disk on fire")

    maintainer.tasks["cache_sweep"].fn = boom

    assert maintainer.run_once("cache_sweep") is None
    assert maintainer.tasks["cache_sweep"].failures == 1
    assert "disk on fire" in maintainer.tasks["cache_sweep"].last_error
    assert maintainer.monitor.errors[-1]["context"] == "maintenance.cache_sweep"
    assert maintainer.run_once("match_sweep") == {"expired": 0}


def test_start_and_stop_threads(cache, clock):
    maintainer, *_ = _maintainer(_people(2), cache, clock)
    maintainer.tasks["metrics"].interval_seconds = 3600

    maintainer.start()
    assert maintainer.running
    maintainer.stop(timeout=2.0)
    assert not maintainer.running
