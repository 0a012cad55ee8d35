"""
Rule errors raised by the engine.

GameRuleError subclasses ValueError so callers that only know the generic
"bad input" contract keep working; routers map `status_code` and `code`
onto the HTTP response. InvariantViolation is never caught by the engine.
"""
from typing import Any, Dict


class GameRuleError(ValueError):
    status_code = 400
    code = "RULE_VIOLATION"

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


# ── Validation (400) ──────────────────────────────────────────────────────────

class InvalidTeamError(GameRuleError):
    code = "INVALID_TEAM"


class InvalidQuestActionError(GameRuleError):
    code = "INVALID_ACTION"


class InvalidTargetError(GameRuleError):
    code = "INVALID_TARGET"


class InvalidQuizVoteError(GameRuleError):
    code = "INVALID_PLAYER"


class IncompleteVotingError(GameRuleError):
    code = "INCOMPLETE_VOTING"


class RoleConfigError(GameRuleError):
    code = "INVALID_ROLE_CONFIG"


# ── Actor not allowed (403) ───────────────────────────────────────────────────

class NotLeaderError(GameRuleError):
    status_code = 403
    code = "NOT_LEADER"


class NotInGameError(GameRuleError):
    status_code = 403
    code = "NOT_IN_GAME"


class NotTeamMemberError(GameRuleError):
    status_code = 403
    code = "NOT_TEAM_MEMBER"


class NotLadyHolderError(GameRuleError):
    status_code = 403
    code = "NOT_LADY_HOLDER"


class NotAssassinError(GameRuleError):
    status_code = 403
    code = "NOT_ASSASSIN"


class NotQuizEligibleError(GameRuleError):
    status_code = 403
    code = "NOT_ELIGIBLE"


# ── State (404 / 409) ─────────────────────────────────────────────────────────

class GameNotFoundError(GameRuleError):
    status_code = 404
    code = "GAME_NOT_FOUND"


class WrongPhaseError(GameRuleError):
    status_code = 409
    code = "WRONG_PHASE"


class InvalidTransitionError(GameRuleError):
    status_code = 409
    code = "INVALID_TRANSITION"


class AlreadySubmittedError(GameRuleError):
    status_code = 409
    code = "ALREADY_SUBMITTED"


class InvariantViolation(RuntimeError):
    """Internal state is inconsistent. Fatal; surfaces as a 500."""
