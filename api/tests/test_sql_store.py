from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.entities import Match
from app.errors import PairAlreadyMatched, StoreUnavailable
from app.models import Gender, Interest, ProfileRow, Pronoun, SearchProfileRow, UserInterest
from app.repo import ProfileSearch, SqlMatchStore, SqlMetricsStore, SqlNotificationStore, SqlProfileStore
from app.services.seeding import seed_sample_profiles

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with factory() as db:
        db.execute(insert(Gender.__table__), [{"id": 1, "label": "Male"}, {"id": 2, "label": "Female"}, {"id": 3, "label": "Non-binary"}])
        db.execute(insert(Pronoun.__table__), [{"id": 1, "label": "he/him"}, {"id": 2, "label": "she/her"}])
        db.execute(insert(Interest.__table__), [{"id": 1, "label": "Hiking"}, {"id": 2, "label": "Art"}, {"id": 3, "label": "Music"}])
        db.execute(
            insert(ProfileRow.__table__),
            [
                _profile("u-a", age=30, gender_id=1, pronouns_id=1, created_at=NOW - timedelta(days=3)),
                _profile("u-b", age=28, gender_id=2, pronouns_id=2, created_at=NOW - timedelta(days=1)),
                _profile("u-c", age=45, gender_id=2, city="Chicago", created_at=NOW - timedelta(days=2)),
                _profile("u-d", age=29, gender_id=2, complete=False, created_at=NOW),
                _profile("u-e", age=31, gender_id=3, created_at=NOW - timedelta(days=5), updated_at=NOW - timedelta(days=30)),
            ],
        )
        db.execute(
            insert(UserInterest.__table__),
            [
                {"user_id": "u-a", "interest_id": 1},
                {"user_id": "u-a", "interest_id": 2},
                {"user_id": "u-b", "interest_id": 1},
                {"user_id": "u-c", "interest_id": 3},
            ],
        )
        db.execute(
            insert(SearchProfileRow.__table__),
            [{"user_id": "u-a", "min_age": 25, "max_age": 35, "genders": ["Female"], "max_distance": 25.0, "min_shared_interests": 1, "preferred_cities": []}],
        )
        db.commit()
    return factory


def _profile(user_id, *, age, gender_id, pronouns_id=None, city="New York", complete=True, created_at=NOW, updated_at=NOW):
    return {
        "user_id": user_id,
        "name": user_id.upper(),
        "age": age,
        "city": city,
        "bio": "",
        "gender_id": gender_id,
        "pronouns_id": pronouns_id,
        "latitude": None,
        "longitude": None,
        "is_profile_complete": complete,
        "created_at": created_at,
        "updated_at": updated_at,
    }


def _match(match_id, user1, user2, expires_at=NOW + timedelta(hours=24), created_at=NOW):
    return Match(
        id=match_id,
        user1_id=user1,
        user2_id=user2,
        score=70,
        reasons=("Gender compatible",),
        breakdown={"gender": 20.0},
        user1_decision="pending",
        user2_decision="pending",
        status="pending",
        created_at=created_at,
        expires_at=expires_at,
    )


def test_get_profile_resolves_labels_and_interests(session_factory):
    store = SqlProfileStore(session_factory)

    profile = store.get_profile("u-a")

    assert profile.gender == "Male"
    assert profile.pronouns == "he/him"
    assert profile.interests == frozenset({"Hiking", "Art"})
    assert profile.created_at == NOW - timedelta(days=3)
    assert store.get_profile("missing") is None


def test_search_profiles_applies_hard_filters_newest_first(session_factory):
    store = SqlProfileStore(session_factory)

    found = store.search_profiles(
        ProfileSearch(requester_id="u-a", limit=10, min_age=25, max_age=50, gender_ids={2}, exclude_ids={"u-x"})
    )

    assert [p.user_id for p in found] == ["u-b", "u-c"]
    assert all(p.interests == frozenset() for p in found)

    by_city = store.search_profiles(ProfileSearch(requester_id="u-a", limit=10, cities={"Chicago"}))
    assert [p.user_id for p in by_city] == ["u-c"]

    by_lower_city = store.search_profiles(ProfileSearch(requester_id="u-a", limit=10, cities={"chicago"}))
    assert [p.user_id for p in by_lower_city] == ["u-c"]

    excluded = store.search_profiles(ProfileSearch(requester_id="u-a", limit=1, exclude_ids={"u-b"}))
    assert [p.user_id for p in excluded] == ["u-c"]


def test_batch_lookups_and_counts(session_factory):
    store = SqlProfileStore(session_factory)

    interests = store.get_interests_for_users(["u-a", "u-b", "u-e"])

    assert sorted(interests["u-a"]) == ["Art", "Hiking"]
    assert interests["u-b"] == ["Hiking"]
    assert "u-e" not in interests
    assert store.get_gender_id_map() == {"Male": 1, "Female": 2, "Non-binary": 3}
    assert store.count_complete_profiles() == 4
    since = NOW - timedelta(days=7)
    assert store.count_active_profiles(since) == 3
    assert set(store.list_recently_active_user_ids(since, 10)) == {"u-a", "u-b", "u-c"}
    assert store.get_search_preferences("u-a")["genders"] == ["Female"]
    assert store.get_search_preferences("u-b") is None


def test_match_store_round_trip_and_partners(session_factory):
    store = SqlMatchStore(session_factory)
    store.insert_match(_match("m1", "u-a", "u-b"))
    store.insert_match(_match("m2", "u-a", "u-c", created_at=NOW + timedelta(minutes=1)))

    loaded = store.get_match("m1")

    assert loaded.reasons == ("Gender compatible",)
    assert loaded.breakdown == {"gender": 20.0}
    assert loaded.expires_at == NOW + timedelta(hours=24)
    assert loaded.version == 1
    assert [m.id for m in store.list_matches_for_user("u-a")] == ["m2", "m1"]
    assert store.list_partner_ids("u-a") == {"u-b", "u-c"}
    assert store.list_partner_ids("u-b") == {"u-a"}


def test_compare_and_set_checks_version(session_factory):
    store = SqlMatchStore(session_factory)
    store.insert_match(_match("m1", "u-a", "u-b"))

    assert store.compare_and_set("m1", 1, {"user1_decision": "accepted"})
    assert not store.compare_and_set("m1", 1, {"user2_decision": "accepted"})

    loaded = store.get_match("m1")
    assert loaded.version == 2
    assert loaded.user1_decision == "accepted"
    assert loaded.user2_decision == "pending"


def test_expire_pending_before_only_touches_stale_pending(session_factory):
    store = SqlMatchStore(session_factory)
    store.insert_match(_match("stale", "u-a", "u-b", expires_at=NOW - timedelta(minutes=1)))
    store.insert_match(_match("fresh", "u-a", "u-c", expires_at=NOW + timedelta(hours=1)))
    store.insert_match(_match("done", "u-b", "u-c", expires_at=NOW - timedelta(hours=1)))
    store.compare_and_set("done", 1, {"status": "rejected", "completed_at": NOW})

    assert store.expire_pending_before(NOW) == 1
    assert store.get_match("stale").status == "expired"
    assert store.get_match("stale").version == 2
    assert store.count_by_status() == {"expired": 1, "pending": 1, "rejected": 1}


def test_notification_and_metric_inserts(session_factory):
    SqlMatchStore(session_factory).insert_match(_match("m1", "u-a", "u-b"))
    notifications = SqlNotificationStore(session_factory)

    written = notifications.insert_notifications(
        [
            {"id": "n1", "user_id": "u-a", "match_id": "m1", "kind": "match_created", "payload": {"score": 70}, "created_at": NOW, "read_at": None},
            {"id": "n2", "user_id": "u-b", "match_id": "m1", "kind": "match_created", "payload": {"score": 70}, "created_at": NOW, "read_at": None},
        ]
    )

    assert written == 2
    rows = notifications.list_notifications("u-a")
    assert [r["id"] for r in rows] == ["n1"]
    assert rows[0]["payload"] == {"score": 70}
    assert SqlMetricsStore(session_factory).insert_metrics(
        [{"id": "x1", "metric_name": "cache_hit_rate", "metric_value": 0.8, "metric_unit": "ratio", "recorded_at": NOW}]
    ) == 1


def test_operational_error_becomes_store_unavailable():
    class BrokenSession:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, *args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    store = SqlProfileStore(lambda: BrokenSession())

    with pytest.raises(StoreUnavailable):
        store.count_complete_profiles()


def test_seed_sample_profiles_is_deterministic(session_factory):
    with session_factory() as db:
        summary = seed_sample_profiles(db, n_users=20, seed=7, reset=True)

    store = SqlProfileStore(session_factory)
    assert summary["profiles"] == 20
    assert store.count_complete_profiles() == summary["complete_profiles"]
    assert sum(len(v) for v in store.get_interests_for_users(store.list_recently_active_user_ids(NOW - timedelta(days=3650), 100)).values()) > 0


def test_second_match_for_same_pair_is_rejected(session_factory):
    store = SqlMatchStore(session_factory)
    store.insert_match(_match("m1", "u-a", "u-b"))

    with pytest.raises(PairAlreadyMatched):
        store.insert_match(_match("m2", "u-a", "u-b"))

    assert [m.id for m in store.list_matches_for_user("u-a")] == ["m1"]
