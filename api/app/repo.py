import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from app.database import SessionLocal
from app.entities import STATUS_EXPIRED, STATUS_PENDING, Match, Profile
from app.errors import PairAlreadyMatched, StoreUnavailable
from app.models import (
    Gender,
    Interest,
    MatchRow,
    NotificationRow,
    PerformanceMetricRow,
    ProfileRow,
    Pronoun,
    SearchProfileRow,
    UserInterest,
)

logger = logging.getLogger(__name__)

_PROFILE_COLUMNS = (
    ProfileRow.user_id,
    ProfileRow.name,
    ProfileRow.age,
    ProfileRow.city,
    ProfileRow.bio,
    ProfileRow.gender_id,
    ProfileRow.latitude,
    ProfileRow.longitude,
    ProfileRow.is_profile_complete,
    ProfileRow.created_at,
    Gender.label.label("gender"),
    Pronoun.label.label("pronouns"),
)


@dataclass
class ProfileSearch:
    requester_id: str
    limit: int
    min_age: int | None = None
    max_age: int | None = None
    gender_ids: set[int] = field(default_factory=set)
    cities: set[str] = field(default_factory=set)
    exclude_ids: set[str] = field(default_factory=set)


def _profile_from_row(row: Any, interests: list[str] | None = None) -> Profile:
    return Profile.from_dict(
        {
            "user_id": row["user_id"],
            "name": row.get("name"),
            "age": row.get("age"),
            "gender": row.get("gender"),
            "gender_id": row.get("gender_id"),
            "pronouns": row.get("pronouns"),
            "city": row.get("city"),
            "latitude": row.get("latitude"),
            "longitude": row.get("longitude"),
            "bio": row.get("bio"),
            "interests": interests or [],
            "is_profile_complete": row.get("is_profile_complete"),
            "created_at": row.get("created_at"),
        }
    )


def _profiles_query():
    return select(*_PROFILE_COLUMNS).select_from(
        ProfileRow.__table__.outerjoin(Gender.__table__, ProfileRow.gender_id == Gender.id).outerjoin(
            Pronoun.__table__, ProfileRow.pronouns_id == Pronoun.id
        )
    )


class _SqlStore:
    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Any]:
        try:
            with self._session_factory() as db:
                yield db
        except OperationalError as exc:
            logger.warning("[STORE] database unavailable: %s", exc.__class__.__name__)
            raise StoreUnavailable() from exc


class SqlProfileStore(_SqlStore):
    def get_profile(self, user_id: str) -> Profile | None:
        with self._session() as db:
            row = db.execute(_profiles_query().where(ProfileRow.user_id == user_id)).mappings().first()
            if not row:
                return None
            interests = self._interests_for(db, [user_id]).get(user_id, [])
        return _profile_from_row(row, interests)

    def get_profiles(self, user_ids: list[str]) -> list[Profile]:
        if not user_ids:
            return []
        with self._session() as db:
            rows = db.execute(_profiles_query().where(ProfileRow.user_id.in_(list(user_ids)))).mappings().all()
            interests = self._interests_for(db, [r["user_id"] for r in rows])
        return [_profile_from_row(r, interests.get(r["user_id"], [])) for r in rows]

    def get_search_preferences(self, user_id: str) -> dict[str, Any] | None:
        with self._session() as db:
            row = db.execute(
                select(
                    SearchProfileRow.min_age,
                    SearchProfileRow.max_age,
                    SearchProfileRow.genders,
                    SearchProfileRow.max_distance,
                    SearchProfileRow.min_shared_interests,
                    SearchProfileRow.preferred_cities,
                ).where(SearchProfileRow.user_id == user_id)
            ).mappings().first()
        return dict(row) if row else None

    def count_complete_profiles(self) -> int:
        with self._session() as db:
            value = db.execute(
                select(func.count()).select_from(ProfileRow).where(ProfileRow.is_profile_complete.is_(True))
            ).scalar()
        return int(value or 0)

    def count_active_profiles(self, since: datetime) -> int:
        with self._session() as db:
            value = db.execute(
                select(func.count())
                .select_from(ProfileRow)
                .where(ProfileRow.is_profile_complete.is_(True), ProfileRow.updated_at >= since)
            ).scalar()
        return int(value or 0)

    def list_recently_active_user_ids(self, since: datetime, limit: int) -> list[str]:
        with self._session() as db:
            rows = db.execute(
                select(ProfileRow.user_id)
                .where(ProfileRow.is_profile_complete.is_(True), ProfileRow.updated_at >= since)
                .order_by(ProfileRow.updated_at.desc(), ProfileRow.user_id)
                .limit(limit)
            ).all()
        return [str(r[0]) for r in rows]

    def get_gender_id_map(self) -> dict[str, int]:
        with self._session() as db:
            rows = db.execute(select(Gender.id, Gender.label)).all()
        return {str(label): int(gid) for gid, label in rows}

    def search_profiles(self, search: ProfileSearch) -> list[Profile]:
        stmt = _profiles_query().where(
            ProfileRow.is_profile_complete.is_(True),
            ProfileRow.user_id != search.requester_id,
        )
        if search.min_age is not None:
            stmt = stmt.where(ProfileRow.age >= search.min_age)
        if search.max_age is not None:
            stmt = stmt.where(ProfileRow.age <= search.max_age)
        if search.gender_ids:
            stmt = stmt.where(ProfileRow.gender_id.in_(sorted(search.gender_ids)))
        if search.cities:
            stmt = stmt.where(func.lower(ProfileRow.city).in_(sorted({c.lower() for c in search.cities})))
        if search.exclude_ids:
            stmt = stmt.where(ProfileRow.user_id.notin_(sorted(search.exclude_ids)))
        stmt = stmt.order_by(ProfileRow.created_at.desc(), ProfileRow.user_id).limit(search.limit)
        with self._session() as db:
            rows = db.execute(stmt).mappings().all()
        return [_profile_from_row(r) for r in rows]

    def get_interests_for_users(self, user_ids: list[str]) -> dict[str, list[str]]:
        if not user_ids:
            return {}
        with self._session() as db:
            return self._interests_for(db, user_ids)

    @staticmethod
    def _interests_for(db, user_ids: list[str]) -> dict[str, list[str]]:
        rows = db.execute(
            select(UserInterest.user_id, Interest.label)
            .join(Interest, Interest.id == UserInterest.interest_id)
            .where(UserInterest.user_id.in_(list(user_ids)))
        ).all()
        out: dict[str, list[str]] = {}
        for user_id, label in rows:
            out.setdefault(str(user_id), []).append(str(label))
        return out


class SqlMatchStore(_SqlStore):
    def insert_match(self, match: Match) -> Match:
        with self._session() as db:
            try:
                db.execute(
                    insert(MatchRow.__table__).values(
                        id=match.id,
                        user1_id=match.user1_id,
                        user2_id=match.user2_id,
                        match_score=match.score,
                        match_reasons=list(match.reasons),
                        score_breakdown=dict(match.breakdown),
                        user1_decision=match.user1_decision,
                        user2_decision=match.user2_decision,
                        status=match.status,
                        version=match.version,
                        created_at=match.created_at,
                        expires_at=match.expires_at,
                        completed_at=match.completed_at,
                    )
                )
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise PairAlreadyMatched() from exc
        return match

    def get_match(self, match_id: str) -> Match | None:
        with self._session() as db:
            row = db.execute(select(MatchRow.__table__).where(MatchRow.id == match_id)).mappings().first()
        return Match.from_row(dict(row)) if row else None

    def list_matches_for_user(self, user_id: str, limit: int | None = None) -> list[Match]:
        stmt = (
            select(MatchRow.__table__)
            .where(or_(MatchRow.user1_id == user_id, MatchRow.user2_id == user_id))
            .order_by(MatchRow.created_at.desc(), MatchRow.id)
        )
        if limit:
            stmt = stmt.limit(limit)
        with self._session() as db:
            rows = db.execute(stmt).mappings().all()
        return [Match.from_row(dict(r)) for r in rows]

    def list_partner_ids(self, user_id: str) -> set[str]:
        with self._session() as db:
            rows = db.execute(
                select(MatchRow.user1_id, MatchRow.user2_id).where(
                    or_(MatchRow.user1_id == user_id, MatchRow.user2_id == user_id)
                )
            ).all()
        return {str(u2) if str(u1) == user_id else str(u1) for u1, u2 in rows}

    def compare_and_set(self, match_id: str, expected_version: int, changes: dict[str, Any]) -> bool:
        with self._session() as db:
            result = db.execute(
                update(MatchRow.__table__)
                .where(MatchRow.id == match_id, MatchRow.version == expected_version)
                .values(**changes, version=expected_version + 1)
            )
            db.commit()
        return result.rowcount == 1

    def expire_pending_before(self, now: datetime) -> int:
        with self._session() as db:
            result = db.execute(
                update(MatchRow.__table__)
                .where(MatchRow.status == STATUS_PENDING, MatchRow.expires_at < now)
                .values(status=STATUS_EXPIRED, completed_at=now, version=MatchRow.version + 1)
            )
            db.commit()
        return int(result.rowcount or 0)

    def count_by_status(self) -> dict[str, int]:
        with self._session() as db:
            rows = db.execute(select(MatchRow.status, func.count()).group_by(MatchRow.status)).all()
        return {str(status): int(c) for status, c in rows}


class SqlNotificationStore(_SqlStore):
    def insert_notifications(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        with self._session() as db:
            db.execute(insert(NotificationRow.__table__), rows)
            db.commit()
        return len(rows)

    def list_notifications(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._session() as db:
            rows = db.execute(
                select(NotificationRow.__table__)
                .where(NotificationRow.user_id == user_id)
                .order_by(NotificationRow.created_at.desc())
                .limit(limit)
            ).mappings().all()
        return [dict(r) for r in rows]


class SqlMetricsStore(_SqlStore):
    def insert_metrics(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        with self._session() as db:
            db.execute(insert(PerformanceMetricRow.__table__), rows)
            db.commit()
        return len(rows)
