from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .config import DEFAULT_SEARCH_PREFERENCES
from .errors import InvalidPreferences

STATUS_PENDING = "pending"
STATUS_MUTUAL = "mutual_match"
STATUS_REJECTED = "rejected"
STATUS_EXPIRED = "expired"
TERMINAL_STATUSES = frozenset({STATUS_MUTUAL, STATUS_REJECTED, STATUS_EXPIRED})

DECISION_PENDING = "pending"
DECISION_ACCEPTED = "accepted"
DECISION_REJECTED = "rejected"
FINAL_DECISIONS = frozenset({DECISION_ACCEPTED, DECISION_REJECTED})


def _as_utc(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Profile:
    user_id: str
    name: str | None = None
    age: int | None = None
    gender: str | None = None
    gender_id: int | None = None
    pronouns: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    bio: str = ""
    interests: frozenset[str] = frozenset()
    is_profile_complete: bool = False
    created_at: datetime | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def with_interests(self, interests: list[str] | set[str] | frozenset[str]) -> "Profile":
        return replace(self, interests=frozenset(interests))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["interests"] = sorted(self.interests)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Profile":
        return cls(
            user_id=str(data["user_id"]),
            name=data.get("name"),
            age=data.get("age"),
            gender=data.get("gender"),
            gender_id=data.get("gender_id"),
            pronouns=data.get("pronouns"),
            city=data.get("city"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            bio=data.get("bio") or "",
            interests=frozenset(data.get("interests") or []),
            is_profile_complete=bool(data.get("is_profile_complete")),
            created_at=_as_utc(data.get("created_at")),
        )

    def public_view(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "name": self.name,
            "age": self.age,
            "gender": self.gender,
            "pronouns": self.pronouns,
            "city": self.city,
            "bio": self.bio,
            "interests": sorted(self.interests),
        }


@dataclass(frozen=True)
class SearchPreference:
    min_age: int = DEFAULT_SEARCH_PREFERENCES["min_age"]
    max_age: int = DEFAULT_SEARCH_PREFERENCES["max_age"]
    genders: frozenset[str] = frozenset(DEFAULT_SEARCH_PREFERENCES["genders"])
    max_distance: float | None = DEFAULT_SEARCH_PREFERENCES["max_distance"]
    min_shared_interests: int = DEFAULT_SEARCH_PREFERENCES["min_shared_interests"]
    preferred_cities: frozenset[str] = frozenset(DEFAULT_SEARCH_PREFERENCES["preferred_cities"])

    @classmethod
    def defaults(cls) -> "SearchPreference":
        return cls()

    @classmethod
    def from_row(cls, row: dict[str, Any] | None) -> "SearchPreference":
        """Build preferences from a stored row, treating null columns as defaults.

        Raises InvalidPreferences for values that cannot be honoured (wrong
        types, negative bounds, an inverted age window).
        """
        if not row:
            return cls.defaults()
        base = cls.defaults()
        try:
            min_age = int(row["min_age"]) if row.get("min_age") is not None else base.min_age
            max_age = int(row["max_age"]) if row.get("max_age") is not None else base.max_age
            max_distance = float(row["max_distance"]) if row.get("max_distance") is not None else base.max_distance
            min_shared = (
                int(row["min_shared_interests"]) if row.get("min_shared_interests") is not None else base.min_shared_interests
            )
        except (TypeError, ValueError) as exc:
            raise InvalidPreferences(f"Search preferences are malformed: {exc}") from exc

        genders = row.get("genders")
        cities = row.get("preferred_cities")
        if genders is not None and not isinstance(genders, (list, tuple, set, frozenset)):
            raise InvalidPreferences("genders must be a list of labels")
        if cities is not None and not isinstance(cities, (list, tuple, set, frozenset)):
            raise InvalidPreferences("preferred_cities must be a list of city names")
        if min_age < 0 or max_age < 0 or min_age > max_age:
            raise InvalidPreferences(f"invalid age window {min_age}-{max_age}")
        if max_distance is not None and max_distance < 0:
            raise InvalidPreferences("max_distance must not be negative")
        if min_shared < 0:
            raise InvalidPreferences("min_shared_interests must not be negative")

        clean_genders = frozenset(str(g).strip() for g in (genders or []) if str(g or "").strip())
        clean_cities = frozenset(str(c).strip() for c in (cities or []) if str(c or "").strip())
        return cls(
            min_age=min_age,
            max_age=max_age,
            genders=clean_genders or base.genders,
            max_distance=max_distance,
            min_shared_interests=min_shared,
            preferred_cities=clean_cities,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_age": self.min_age,
            "max_age": self.max_age,
            "genders": sorted(self.genders),
            "max_distance": self.max_distance,
            "min_shared_interests": self.min_shared_interests,
            "preferred_cities": sorted(self.preferred_cities),
        }


@dataclass(frozen=True)
class CompatibilityResult:
    score: int
    reasons: tuple[str, ...]
    breakdown: dict[str, float]
    insights: dict[str, list[str]] = field(default_factory=dict)
    computed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "reasons": list(self.reasons),
            "breakdown": dict(self.breakdown),
            "insights": {k: list(v) for k, v in self.insights.items()},
            "computed_at": _iso(self.computed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompatibilityResult":
        return cls(
            score=int(data["score"]),
            reasons=tuple(data.get("reasons") or ()),
            breakdown=dict(data.get("breakdown") or {}),
            insights={k: list(v) for k, v in (data.get("insights") or {}).items()},
            computed_at=_as_utc(data.get("computed_at")),
        )


@dataclass(frozen=True)
class Match:
    id: str
    user1_id: str
    user2_id: str
    score: int
    reasons: tuple[str, ...]
    breakdown: dict[str, float]
    user1_decision: str
    user2_decision: str
    status: str
    created_at: datetime
    expires_at: datetime
    completed_at: datetime | None = None
    version: int = 1

    def participants(self) -> tuple[str, str]:
        return (self.user1_id, self.user2_id)

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def partner_of(self, user_id: str) -> str:
        return self.user2_id if user_id == self.user1_id else self.user1_id

    def decision_of(self, user_id: str) -> str:
        return self.user1_decision if user_id == self.user1_id else self.user2_decision

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Match":
        return cls(
            id=str(row["id"]),
            user1_id=str(row["user1_id"]),
            user2_id=str(row["user2_id"]),
            score=int(row["match_score"]),
            reasons=tuple(row.get("match_reasons") or ()),
            breakdown=dict(row.get("score_breakdown") or {}),
            user1_decision=str(row["user1_decision"]),
            user2_decision=str(row["user2_decision"]),
            status=str(row["status"]),
            created_at=_as_utc(row["created_at"]),
            expires_at=_as_utc(row["expires_at"]),
            completed_at=_as_utc(row.get("completed_at")),
            version=int(row.get("version") or 1),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user1_id": self.user1_id,
            "user2_id": self.user2_id,
            "score": self.score,
            "reasons": list(self.reasons),
            "breakdown": dict(self.breakdown),
            "user1_decision": self.user1_decision,
            "user2_decision": self.user2_decision,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "completed_at": _iso(self.completed_at),
        }
