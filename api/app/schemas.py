from datetime import datetime
from typing import Any

from pydantic import BaseModel


class DecisionRequest(BaseModel):
    decision: str


class MatchResponse(BaseModel):
    id: str
    user1_id: str
    user2_id: str
    score: int
    reasons: list[str]
    breakdown: dict[str, float]
    user1_decision: str
    user2_decision: str
    status: str
    created_at: datetime
    expires_at: datetime
    completed_at: datetime | None = None
    partner: dict[str, Any] | None = None


class FindMatchesResponse(BaseModel):
    matches: list[MatchResponse]


class MatchListResponse(BaseModel):
    matches: list[MatchResponse]
    count: int


class MaintenanceRunResponse(BaseModel):
    task: str
    result: Any = None
    status: dict[str, Any]


class CacheInvalidateResponse(BaseModel):
    user_id: str
    compatibility_entries_removed: int
