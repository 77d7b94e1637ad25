import uuid

from fastapi import HTTPException

from .errors import MatchingError


def validate_admin_token(token: str | None, admin_token: str | None) -> None:
    if not admin_token or not token or token != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def parse_actor_user_id(raw_actor_user_id: str | None) -> str:
    if not raw_actor_user_id:
        raise HTTPException(status_code=401, detail="X-Actor-User-Id header is required")
    value = raw_actor_user_id.strip()
    if not value:
        raise HTTPException(status_code=401, detail="X-Actor-User-Id header is required")
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise HTTPException(status_code=400, detail="X-Actor-User-Id must be a valid UUID")


def http_error(exc: MatchingError) -> HTTPException:
    headers = None
    retry_after = getattr(exc, "retry_after_seconds", None)
    if retry_after:
        headers = {"Retry-After": str(retry_after)}
    return HTTPException(status_code=exc.status_code, detail=exc.detail, headers=headers)
