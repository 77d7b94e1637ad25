import uuid
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from .database import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Gender(Base):
    __tablename__ = "genders"

    id = Column(Integer, primary_key=True)
    label = Column(String, nullable=False, unique=True)


class Pronoun(Base):
    __tablename__ = "pronouns"

    id = Column(Integer, primary_key=True)
    label = Column(String, nullable=False, unique=True)


class Interest(Base):
    __tablename__ = "interests"

    id = Column(Integer, primary_key=True)
    label = Column(String, nullable=False, unique=True)


class ProfileRow(Base):
    __tablename__ = "profiles"

    user_id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=True)
    age = Column(Integer, nullable=True)
    city = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    gender_id = Column(Integer, ForeignKey("genders.id"), nullable=True)
    pronouns_id = Column(Integer, ForeignKey("pronouns.id"), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    is_profile_complete = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_profiles_complete_age", "is_profile_complete", "age"),
        Index("idx_profiles_gender_id", "gender_id"),
        Index("idx_profiles_city", "city"),
    )


class UserInterest(Base):
    __tablename__ = "user_interests"

    user_id = Column(String(36), ForeignKey("profiles.user_id", ondelete="CASCADE"), primary_key=True)
    interest_id = Column(Integer, ForeignKey("interests.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (Index("idx_user_interests_user_id", "user_id"),)


class SearchProfileRow(Base):
    __tablename__ = "user_search_profile"

    user_id = Column(String(36), ForeignKey("profiles.user_id", ondelete="CASCADE"), primary_key=True)
    min_age = Column(Integer, nullable=True)
    max_age = Column(Integer, nullable=True)
    genders = Column(JSON, nullable=True)
    max_distance = Column(Float, nullable=True)
    min_shared_interests = Column(Integer, nullable=True)
    preferred_cities = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MatchRow(Base):
    __tablename__ = "matches"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user1_id = Column(String(36), nullable=False)
    user2_id = Column(String(36), nullable=False)
    match_score = Column(Integer, nullable=False)
    match_reasons = Column(JSON, nullable=False, default=list)
    score_breakdown = Column(JSON, nullable=False, default=dict)
    user1_decision = Column(String, nullable=False, default="pending")
    user2_decision = Column(String, nullable=False, default="pending")
    status = Column(String, nullable=False, default="pending")
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("user1_id < user2_id", name="valid_user_order"),
        UniqueConstraint("user1_id", "user2_id", name="uq_matches_pair"),
        Index("idx_matches_user1_id", "user1_id"),
        Index("idx_matches_user2_id", "user2_id"),
        Index("idx_matches_status_expires_at", "status", "expires_at"),
    )


class NotificationRow(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), nullable=False)
    match_id = Column(String(36), ForeignKey("matches.id", ondelete="CASCADE"), nullable=True)
    kind = Column(String, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_notifications_user_id", "user_id"),)


class PerformanceMetricRow(Base):
    __tablename__ = "matching_performance_metrics"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    metric_name = Column(String, nullable=False)
    metric_value = Column(Float, nullable=False)
    metric_unit = Column(String, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_matching_performance_metrics_name", "metric_name", "recorded_at"),)
