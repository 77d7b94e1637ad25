import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from ..entities import Match
from ..errors import StoreUnavailable

logger = logging.getLogger(__name__)

KIND_MATCH_CREATED = "match_created"
KIND_MUTUAL_MATCH = "mutual_match"


def _notification_row(user_id: str, match: Match, kind: str, payload: dict[str, Any], now: datetime) -> dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "match_id": match.id,
        "kind": kind,
        "payload": payload,
        "created_at": now,
        "read_at": None,
    }


class NotificationDispatcher:
    """Writes in-app notifications for both participants of a match.

    Delivery is best-effort: a store outage is logged and counted, never
    propagated into the matching or decision flow.
    """

    def __init__(self, store, monitor=None) -> None:
        self._store = store
        self._monitor = monitor

    def match_created(self, match: Match, now: datetime | None = None) -> int:
        payload = {"score": match.score, "expires_at": match.expires_at.isoformat()}
        return self._dispatch(match, KIND_MATCH_CREATED, payload, now)

    def mutual_match(self, match: Match, now: datetime | None = None) -> int:
        payload = {"score": match.score}
        return self._dispatch(match, KIND_MUTUAL_MATCH, payload, now)

    def _dispatch(self, match: Match, kind: str, payload: dict[str, Any], now: datetime | None) -> int:
        now = now or datetime.now(timezone.utc)
        rows = [
            _notification_row(user_id, match, kind, {**payload, "partner_id": match.partner_of(user_id)}, now)
            for user_id in match.participants()
        ]
        try:
            written = self._store.insert_notifications(rows)
        except StoreUnavailable as exc:
            logger.warning("[NOTIFY] dispatch failed kind=%s match_id=%s error=%s", kind, match.id, exc)
            if self._monitor is not None:
                self._monitor.record_error("notification", str(exc))
            return 0
        logger.info("[NOTIFY] kind=%s match_id=%s recipients=%s", kind, match.id, written)
        return written
