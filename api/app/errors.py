class MatchingError(Exception):
    status_code = 400
    detail = "Matching request failed"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class ProfileNotFound(MatchingError):
    status_code = 404
    detail = "User profile not found"


class MatchNotFound(MatchingError):
    status_code = 404
    detail = "Match not found"


class NotParticipant(MatchingError):
    status_code = 403
    detail = "User is not part of this match"


class MatchNotActive(MatchingError):
    status_code = 409
    detail = "Match is no longer active"


class MatchExpired(MatchingError):
    status_code = 410
    detail = "Match has expired"


class InvalidDecision(MatchingError):
    status_code = 422
    detail = "Decision must be 'accepted' or 'rejected'"


class DecisionAlreadyRecorded(MatchingError):
    status_code = 409
    detail = "A different decision was already recorded for this user"


class MatchConflict(MatchingError):
    status_code = 409
    detail = "Match was updated concurrently, retry the request"


class StoreUnavailable(MatchingError):
    status_code = 503
    detail = "Profile store is unavailable"
    retry_after_seconds = 2


class InvalidPreferences(MatchingError):
    status_code = 422
    detail = "Search preferences are malformed"


class PairAlreadyMatched(MatchingError):
    status_code = 409
    detail = "These users already have a match"
