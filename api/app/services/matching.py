from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from ..config import MIN_MATCH_SCORE
from ..entities import CompatibilityResult, Match, Profile, SearchPreference
from ..errors import InvalidPreferences, PairAlreadyMatched, ProfileNotFound, StoreUnavailable
from .cache import ScoreCache
from .candidates import CandidateFilter
from .lifecycle import MatchLifecycleManager
from .metrics import PerformanceMonitor
from .scoring import CompatibilityScorer

logger = logging.getLogger(__name__)


@dataclass
class ScoredCandidate:
    profile: Profile
    result: CompatibilityResult


def pick_best(scored: list[ScoredCandidate], min_score: int = MIN_MATCH_SCORE) -> ScoredCandidate | None:
    eligible = [s for s in scored if s.result.score >= min_score]
    if not eligible:
        return None
    return min(eligible, key=lambda s: (-s.result.score, s.profile.user_id))


class MatchingEngine:
    """One matching attempt per call: filter, score through the cache, pick, create."""

    def __init__(
        self,
        profile_store,
        cache: ScoreCache,
        candidate_filter: CandidateFilter,
        scorer: CompatibilityScorer,
        lifecycle: MatchLifecycleManager,
        monitor: PerformanceMonitor | None = None,
        min_score: int = MIN_MATCH_SCORE,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.profiles = profile_store
        self.cache = cache
        self.candidates = candidate_filter
        self.scorer = scorer
        self.lifecycle = lifecycle
        self.monitor = monitor
        self.min_score = min_score
        self._timer = timer

    def get_profile(self, user_id: str) -> Profile:
        cached = self.cache.get_profile(user_id)
        if cached is not None:
            return cached
        profile = self.profiles.get_profile(user_id)
        if profile is None:
            raise ProfileNotFound()
        self.cache.set_profile(profile)
        self.cache.set_interests(user_id, list(profile.interests))
        return profile

    def get_preferences(self, user_id: str) -> SearchPreference:
        cached = self.cache.get_preferences(user_id)
        if cached is not None:
            return cached
        try:
            prefs = SearchPreference.from_row(self.profiles.get_search_preferences(user_id))
        except InvalidPreferences as exc:
            logger.warning("[MATCHING] invalid preferences user_id=%s, using defaults: %s", user_id, exc.detail)
            prefs = SearchPreference.defaults()
        self.cache.set_preferences(user_id, prefs)
        return prefs

    def score_pair(self, a: Profile, b: Profile) -> CompatibilityResult:
        cached = self.cache.get_compatibility(a.user_id, b.user_id)
        if cached is not None:
            return cached
        result = self.scorer.score(a, b)
        self.cache.set_compatibility(a.user_id, b.user_id, result)
        return result

    def find_matches(self, user_id: str) -> list[Match]:
        started = self._timer()
        try:
            requester = self.get_profile(user_id)
            prefs = self.get_preferences(user_id)
            candidates = self.candidates.filter_candidates(user_id, requester, prefs)
            scored = [ScoredCandidate(c, self.score_pair(requester, c)) for c in candidates]
            best = pick_best(scored, self.min_score)
            matches: list[Match] = []
            if best is not None:
                try:
                    matches.append(self.lifecycle.create(user_id, best.profile.user_id, best.result))
                except PairAlreadyMatched:
                    logger.info("[MATCHING] pair already matched user_id=%s partner_id=%s", user_id, best.profile.user_id)
        except StoreUnavailable as exc:
            self._record("find_matches", started, success=False)
            if self.monitor is not None:
                self.monitor.record_error("find_matches", str(exc))
            raise

        self._record("find_matches", started, success=True)
        if self.monitor is not None:
            self.monitor.record_match(bool(matches))
        logger.info(
            "[MATCHING] user_id=%s candidates=%s matched=%s best_score=%s",
            user_id,
            len(scored),
            bool(matches),
            best.result.score if best else None,
        )
        return matches

    def precompute_for_user(self, user_id: str, should_stop: Callable[[], bool] = lambda: False) -> tuple[int, bool]:
        """Score and cache every uncached pair for one user's candidates.

        Returns the number of pairs computed and whether ``should_stop`` cut the run short.
        """
        requester = self.get_profile(user_id)
        prefs = self.get_preferences(user_id)
        computed = 0
        for candidate in self.candidates.filter_candidates(user_id, requester, prefs):
            if should_stop():
                return computed, True
            if self.cache.get_compatibility(user_id, candidate.user_id) is not None:
                continue
            self.cache.set_compatibility(user_id, candidate.user_id, self.scorer.score(requester, candidate))
            computed += 1
        return computed, False

    def invalidate_user(self, user_id: str) -> int:
        return self.cache.invalidate(user_id)

    def _record(self, name: str, started: float, success: bool) -> None:
        if self.monitor is not None:
            self.monitor.record_query(name, (self._timer() - started) * 1000.0, success=success)
