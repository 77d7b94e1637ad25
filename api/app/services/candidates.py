import logging

from ..config import CANDIDATE_LIMIT_TIERS
from ..entities import Profile, SearchPreference
from ..repo import ProfileSearch
from .scoring import haversine_miles, shared_interests

logger = logging.getLogger(__name__)


def candidate_limit(total_profiles: int, tiers: list[tuple[int | None, int]] = CANDIDATE_LIMIT_TIERS) -> int:
    for bound, limit in tiers:
        if bound is None or total_profiles < bound:
            return limit
    return tiers[-1][1]


def _within_distance(requester: Profile, candidate: Profile, max_distance: float | None) -> bool:
    if max_distance is None or not requester.has_coordinates or not candidate.has_coordinates:
        return True
    return haversine_miles(requester.latitude, requester.longitude, candidate.latitude, candidate.longitude) <= max_distance


class CandidateFilter:
    """Turns a requester's preferences into a bounded, newest-first candidate list.

    Age, gender, city, completeness and prior-partner exclusion are pushed into
    the store query. Distance and the shared-interest minimum are applied here
    after a single batch interest lookup.
    """

    def __init__(self, profile_store, match_store, tiers: list[tuple[int | None, int]] = CANDIDATE_LIMIT_TIERS) -> None:
        self._profiles = profile_store
        self._matches = match_store
        self._tiers = tiers

    def candidate_limit(self, total_profiles: int) -> int:
        return candidate_limit(total_profiles, self._tiers)

    def _gender_ids(self, labels: frozenset[str]) -> set[int]:
        if not labels:
            return set()
        by_label = {label.casefold(): gid for label, gid in self._profiles.get_gender_id_map().items()}
        ids = {by_label[label.casefold()] for label in labels if label.casefold() in by_label}
        if not ids:
            logger.info("[CANDIDATES] no known gender labels in %s, gender filter skipped", sorted(labels))
        return ids

    def filter_candidates(self, requester_id: str, requester: Profile, prefs: SearchPreference) -> list[Profile]:
        limit = self.candidate_limit(self._profiles.count_complete_profiles())
        search = ProfileSearch(
            requester_id=requester_id,
            limit=limit,
            min_age=prefs.min_age,
            max_age=prefs.max_age,
            gender_ids=self._gender_ids(prefs.genders),
            cities=set(prefs.preferred_cities),
            exclude_ids=self._matches.list_partner_ids(requester_id) - {requester_id},
        )
        found = [p for p in self._profiles.search_profiles(search) if p.user_id != requester_id]
        found = [p for p in found if _within_distance(requester, p, prefs.max_distance)]
        if not found:
            return []

        interests = self._profiles.get_interests_for_users([p.user_id for p in found])
        candidates = [p.with_interests(interests.get(p.user_id, [])) for p in found]

        if requester.interests and prefs.min_shared_interests > 0:
            candidates = [c for c in candidates if len(shared_interests(requester, c)) >= prefs.min_shared_interests]

        logger.info(
            "[CANDIDATES] requester_id=%s limit=%s fetched=%s kept=%s",
            requester_id,
            limit,
            len(found),
            len(candidates),
        )
        return candidates
