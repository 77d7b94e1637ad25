from typing import Any

from fastapi import APIRouter, Header, HTTPException

from ..config import RL_MATCH_DECISION_LIMIT, RL_MATCH_FIND_LIMIT, RL_WINDOW_SECONDS
from ..deps import http_error, parse_actor_user_id
from ..entities import Match
from ..errors import MatchingError, ProfileNotFound, StoreUnavailable
from ..schemas import DecisionRequest, FindMatchesResponse, MatchListResponse, MatchResponse
from ..services.rate_limit import rate_limit_dependency

router = APIRouter()

RL_MATCH_FIND = rate_limit_dependency("match_find", RL_MATCH_FIND_LIMIT, RL_WINDOW_SECONDS)
RL_MATCH_DECISION = rate_limit_dependency("match_decision", RL_MATCH_DECISION_LIMIT, RL_WINDOW_SECONDS)


def _partner_view(m, match: Match, user_id: str) -> dict[str, Any] | None:
    try:
        return m.services.engine.get_profile(match.partner_of(user_id)).public_view()
    except (ProfileNotFound, StoreUnavailable):
        return None


def _match_payload(m, match: Match, user_id: str) -> MatchResponse:
    return MatchResponse(**match.to_dict(), partner=_partner_view(m, match, user_id))


@router.post("/matches/find", response_model=FindMatchesResponse, dependencies=[RL_MATCH_FIND])
def find_matches(x_actor_user_id: str | None = Header(default=None, alias="X-Actor-User-Id")) -> FindMatchesResponse:
    from .. import main as m

    user_id = parse_actor_user_id(x_actor_user_id)
    try:
        matches = m.services.engine.find_matches(user_id)
    except MatchingError as exc:
        raise http_error(exc)
    return FindMatchesResponse(matches=[_match_payload(m, match, user_id) for match in matches])


@router.get("/matches", response_model=MatchListResponse)
def list_matches(
    limit: int = 50,
    x_actor_user_id: str | None = Header(default=None, alias="X-Actor-User-Id"),
) -> MatchListResponse:
    from .. import main as m

    user_id = parse_actor_user_id(x_actor_user_id)
    if limit < 1 or limit > 200:
        raise HTTPException(status_code=422, detail="limit must be between 1 and 200")
    try:
        matches = m.services.lifecycle.list_for_user(user_id, limit=limit)
    except MatchingError as exc:
        raise http_error(exc)
    return MatchListResponse(matches=[MatchResponse(**match.to_dict()) for match in matches], count=len(matches))


@router.get("/matches/{match_id}", response_model=MatchResponse)
def get_match(match_id: str, x_actor_user_id: str | None = Header(default=None, alias="X-Actor-User-Id")) -> MatchResponse:
    from .. import main as m

    user_id = parse_actor_user_id(x_actor_user_id)
    try:
        match = m.services.lifecycle.get_for_participant(match_id, user_id)
    except MatchingError as exc:
        raise http_error(exc)
    return _match_payload(m, match, user_id)


@router.post("/matches/{match_id}/decision", response_model=MatchResponse, dependencies=[RL_MATCH_DECISION])
def decide_match(
    match_id: str,
    payload: DecisionRequest,
    x_actor_user_id: str | None = Header(default=None, alias="X-Actor-User-Id"),
) -> MatchResponse:
    from .. import main as m

    user_id = parse_actor_user_id(x_actor_user_id)
    try:
        match = m.services.lifecycle.decide(match_id, user_id, payload.decision.strip().lower())
    except MatchingError as exc:
        raise http_error(exc)
    return _match_payload(m, match, user_id)
