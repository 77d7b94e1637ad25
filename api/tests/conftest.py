from dataclasses import replace
from datetime import datetime, timezone

import pytest

from app.entities import STATUS_EXPIRED, STATUS_PENDING, Profile
from app.errors import PairAlreadyMatched, StoreUnavailable
from app.services.cache import InMemoryCacheBackend, ScoreCache

GENDER_IDS = {"Male": 1, "Female": 2, "Non-binary": 3}
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_profile(user_id: str, **overrides) -> Profile:
    data = {
        "user_id": user_id,
        "name": f"User {user_id}",
        "age": 30,
        "gender": "Female",
        "city": "New York",
        "bio": "",
        "interests": frozenset({"Hiking", "Art"}),
        "is_profile_complete": True,
        "created_at": NOW,
    }
    data.update(overrides)
    if isinstance(data["interests"], (list, set)):
        data["interests"] = frozenset(data["interests"])
    data.setdefault("gender_id", GENDER_IDS.get(data["gender"]))
    return Profile(**data)


class FakeClock:
    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


class FakeProfileStore:
    def __init__(self, profiles=(), preferences=None) -> None:
        self.profiles = {p.user_id: p for p in profiles}
        self.preferences = dict(preferences or {})
        self.active_ids: list[str] | None = None
        self.interest_lookups: list[list[str]] = []
        self.searches = []
        self.unavailable = False

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailable()

    def get_profile(self, user_id):
        self._check()
        return self.profiles.get(user_id)

    def get_profiles(self, user_ids):
        return [self.profiles[u] for u in user_ids if u in self.profiles]

    def get_search_preferences(self, user_id):
        self._check()
        return self.preferences.get(user_id)

    def count_complete_profiles(self):
        self._check()
        return sum(1 for p in self.profiles.values() if p.is_profile_complete)

    def count_active_profiles(self, since):
        return len(self.active_ids if self.active_ids is not None else self.profiles)

    def list_recently_active_user_ids(self, since, limit):
        ids = self.active_ids if self.active_ids is not None else sorted(self.profiles)
        return list(ids)[:limit]

    def get_gender_id_map(self):
        return dict(GENDER_IDS)

    def search_profiles(self, search):
        self._check()
        self.searches.append(search)
        out = []
        for p in self.profiles.values():
            if not p.is_profile_complete or p.user_id == search.requester_id or p.user_id in search.exclude_ids:
                continue
            if search.min_age is not None and (p.age is None or p.age < search.min_age):
                continue
            if search.max_age is not None and (p.age is None or p.age > search.max_age):
                continue
            if search.gender_ids and p.gender_id not in search.gender_ids:
                continue
            if search.cities and (p.city or "").lower() not in {c.lower() for c in search.cities}:
                continue
            out.append(replace(p, interests=frozenset()))
        out.sort(key=lambda p: (-(p.created_at.timestamp() if p.created_at else 0), p.user_id))
        return out[: search.limit]

    def get_interests_for_users(self, user_ids):
        self.interest_lookups.append(list(user_ids))
        return {u: sorted(self.profiles[u].interests) for u in user_ids if u in self.profiles}


class FakeMatchStore:
    def __init__(self) -> None:
        self.matches = {}
        self.cas_calls = 0
        self.fail_next_cas = 0

    def insert_match(self, match):
        if any((m.user1_id, m.user2_id) == (match.user1_id, match.user2_id) for m in self.matches.values()):
            raise PairAlreadyMatched()
        self.matches[match.id] = match
        return match

    def get_match(self, match_id):
        return self.matches.get(match_id)

    def list_matches_for_user(self, user_id, limit=None):
        rows = [m for m in self.matches.values() if m.is_participant(user_id)]
        rows.sort(key=lambda m: (m.created_at, m.id), reverse=True)
        return rows[:limit] if limit else rows

    def list_partner_ids(self, user_id):
        return {m.partner_of(user_id) for m in self.matches.values() if m.is_participant(user_id)}

    def compare_and_set(self, match_id, expected_version, changes):
        self.cas_calls += 1
        current = self.matches.get(match_id)
        if current is None or current.version != expected_version:
            return False
        if self.fail_next_cas:
            self.fail_next_cas -= 1
            # Simulate a concurrent writer bumping the version first.
            self.matches[match_id] = replace(current, version=current.version + 1)
            return False
        self.matches[match_id] = replace(current, **changes, version=expected_version + 1)
        return True

    def expire_pending_before(self, now):
        count = 0
        for match_id, m in list(self.matches.items()):
            if m.status == STATUS_PENDING and m.expires_at < now:
                self.matches[match_id] = replace(m, status=STATUS_EXPIRED, completed_at=now, version=m.version + 1)
                count += 1
        return count

    def count_by_status(self):
        out = {}
        for m in self.matches.values():
            out[m.status] = out.get(m.status, 0) + 1
        return out


class FakeNotificationStore:
    def __init__(self) -> None:
        self.rows = []
        self.unavailable = False

    def insert_notifications(self, rows):
        if self.unavailable:
            raise StoreUnavailable()
        self.rows.extend(rows)
        return len(rows)


class FakeMetricsStore:
    def __init__(self) -> None:
        self.rows = []

    def insert_metrics(self, rows):
        self.rows.extend(rows)
        return len(rows)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache():
    return ScoreCache(InMemoryCacheBackend(max_entries=1000))
