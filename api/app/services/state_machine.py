from datetime import datetime

from ..entities import (
    DECISION_ACCEPTED,
    FINAL_DECISIONS,
    STATUS_EXPIRED,
    STATUS_MUTUAL,
    STATUS_PENDING,
    STATUS_REJECTED,
    TERMINAL_STATUSES,
)


def resolve_status(user1_decision: str, user2_decision: str, now: datetime, expires_at: datetime, current: str = STATUS_PENDING) -> str:
    if current in TERMINAL_STATUSES:
        return current

    if user1_decision in FINAL_DECISIONS and user2_decision in FINAL_DECISIONS:
        if user1_decision == DECISION_ACCEPTED and user2_decision == DECISION_ACCEPTED:
            return STATUS_MUTUAL
        return STATUS_REJECTED

    if now > expires_at:
        return STATUS_EXPIRED

    return STATUS_PENDING


def apply_decision(
    user1_decision: str,
    user2_decision: str,
    side: int,
    decision: str,
) -> tuple[str, str]:
    if side == 1:
        return decision, user2_decision
    return user1_decision, decision

