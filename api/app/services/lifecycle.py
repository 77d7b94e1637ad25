import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from ..config import DECISION_MAX_RETRIES, MATCH_EXPIRY_HOURS
from ..entities import (
    DECISION_PENDING,
    FINAL_DECISIONS,
    STATUS_EXPIRED,
    STATUS_MUTUAL,
    STATUS_PENDING,
    CompatibilityResult,
    Match,
)
from ..errors import (
    DecisionAlreadyRecorded,
    InvalidDecision,
    MatchConflict,
    MatchExpired,
    MatchNotActive,
    MatchNotFound,
    NotParticipant,
)
from .state_machine import apply_decision, resolve_status

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class MatchLifecycleManager:
    """Creates matches and moves them through pending -> mutual_match/rejected/expired.

    Every write after creation is a compare-and-set on (id, version). A lost
    race re-reads the row and re-runs validation, so a concurrent expiry or a
    partner's decision is seen before this caller's change is applied.
    """

    def __init__(
        self,
        match_store,
        dispatcher=None,
        clock: Callable[[], datetime] = _now_utc,
        expiry_hours: int = MATCH_EXPIRY_HOURS,
        max_retries: int = DECISION_MAX_RETRIES,
    ) -> None:
        self._store = match_store
        self._dispatcher = dispatcher
        self._clock = clock
        self._expiry = timedelta(hours=expiry_hours)
        self._max_retries = max(1, max_retries)

    def create(self, user_a: str, user_b: str, result: CompatibilityResult) -> Match:
        if user_a == user_b:
            raise ValueError("a match needs two distinct users")
        user1_id, user2_id = sorted((str(user_a), str(user_b)))
        now = self._clock()
        match = Match(
            id=str(uuid.uuid4()),
            user1_id=user1_id,
            user2_id=user2_id,
            score=result.score,
            reasons=tuple(result.reasons),
            breakdown=dict(result.breakdown),
            user1_decision=DECISION_PENDING,
            user2_decision=DECISION_PENDING,
            status=STATUS_PENDING,
            created_at=now,
            expires_at=now + self._expiry,
        )
        self._store.insert_match(match)
        logger.info("[LIFECYCLE] created match_id=%s score=%s", match.id, match.score)
        if self._dispatcher is not None:
            self._dispatcher.match_created(match, now=now)
        return match

    def get_for_participant(self, match_id: str, user_id: str) -> Match:
        match = self._store.get_match(match_id)
        if match is None:
            raise MatchNotFound()
        if not match.is_participant(user_id):
            raise NotParticipant()
        return match

    def list_for_user(self, user_id: str, limit: int | None = None) -> list[Match]:
        return self._store.list_matches_for_user(user_id, limit=limit)

    def decide(self, match_id: str, user_id: str, decision: str) -> Match:
        for attempt in range(1, self._max_retries + 1):
            match = self.get_for_participant(match_id, user_id)
            now = self._clock()

            if match.status == STATUS_EXPIRED:
                raise MatchExpired()
            if match.status != STATUS_PENDING:
                raise MatchNotActive(f"Match is already {match.status}")

            if now > match.expires_at:
                self._store.compare_and_set(match.id, match.version, {"status": STATUS_EXPIRED, "completed_at": now})
                logger.info("[LIFECYCLE] expired on decision match_id=%s", match.id)
                raise MatchExpired()

            if decision not in FINAL_DECISIONS:
                raise InvalidDecision()

            current = match.decision_of(user_id)
            if current == decision:
                return match
            if current != DECISION_PENDING:
                raise DecisionAlreadyRecorded()

            side = 1 if user_id == match.user1_id else 2
            user1_decision, user2_decision = apply_decision(match.user1_decision, match.user2_decision, side, decision)
            status = resolve_status(user1_decision, user2_decision, now, match.expires_at)
            changes = {"user1_decision": user1_decision, "user2_decision": user2_decision, "status": status}
            if status != STATUS_PENDING:
                changes["completed_at"] = now

            if self._store.compare_and_set(match.id, match.version, changes):
                updated = self._store.get_match(match.id)
                logger.info(
                    "[LIFECYCLE] decision match_id=%s user_id=%s decision=%s status=%s",
                    match.id,
                    user_id,
                    decision,
                    status,
                )
                if status == STATUS_MUTUAL and self._dispatcher is not None:
                    self._dispatcher.mutual_match(updated, now=now)
                return updated

            logger.info("[LIFECYCLE] version conflict match_id=%s attempt=%s", match.id, attempt)

        raise MatchConflict()

    def sweep_expired(self) -> int:
        expired = self._store.expire_pending_before(self._clock())
        if expired:
            logger.info("[LIFECYCLE] swept expired matches count=%s", expired)
        return expired
