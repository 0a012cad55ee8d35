"""
Endgame: Merlin quiz and the assassination/quiz join.

In parallel mode the game sits in `parallel_quiz` until both conditions hold:
  - the Assassin has submitted a guess (waived for an Evil win or when there
    is no Assassin), and
  - the quiz is complete (every eligible player voted, or the timeout passed).

`EndgameBarrier` is the two-condition join; `resolve_endgame` is the single
winner computation. Committing the result exactly once is the orchestrator's
job (compare-and-set on the game version).
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from models.game import (
    _utcnow,
    EndgameOutcome,
    Winner,
    WinReason,
    QuizEligibility,
    QuizEligibilityReason,
    QuizVote,
    SpecialRole,
)
from engine.errors import InvalidQuizVoteError
from engine.win_conditions import check_assassin_guess

QUIZ_TIMEOUT_SECONDS = 60


# ── Eligibility ───────────────────────────────────────────────────────────────

def get_quiz_eligibility(
    special_role: SpecialRole,
    outcome: EndgameOutcome,
    has_morgana: bool,
    has_assassin: bool = True,
) -> QuizEligibility:
    if outcome == EndgameOutcome.GOOD_WIN:
        if not has_assassin:
            return QuizEligibility(
                can_take_quiz=True, reason=QuizEligibilityReason.NO_ASSASSIN_GOOD_WIN
            )
        if special_role == SpecialRole.ASSASSIN:
            return QuizEligibility(
                can_take_quiz=False,
                show_assassination=True,
                reason=QuizEligibilityReason.IS_ASSASSIN,
            )
        return QuizEligibility(can_take_quiz=True, reason=QuizEligibilityReason.IS_ELIGIBLE)

    # Evil win: Merlin knows the answer; Percival only if Morgana muddied the pair
    if special_role == SpecialRole.MERLIN:
        return QuizEligibility(
            can_take_quiz=False, show_waiting=True, reason=QuizEligibilityReason.IS_MERLIN
        )
    if special_role == SpecialRole.PERCIVAL:
        if has_morgana:
            return QuizEligibility(
                can_take_quiz=True, reason=QuizEligibilityReason.IS_PERCIVAL_UNCERTAIN
            )
        return QuizEligibility(
            can_take_quiz=False,
            show_waiting=True,
            reason=QuizEligibilityReason.IS_PERCIVAL_CERTAIN,
        )
    return QuizEligibility(can_take_quiz=True, reason=QuizEligibilityReason.IS_ELIGIBLE)


def count_eligible(
    roles: Sequence[SpecialRole],
    outcome: EndgameOutcome,
    has_morgana: bool,
    has_assassin: bool = True,
) -> int:
    return sum(
        1 for r in roles
        if get_quiz_eligibility(r, outcome, has_morgana, has_assassin).can_take_quiz
    )


# ── Quiz votes ────────────────────────────────────────────────────────────────

def validate_quiz_vote(
    voter_id: str, suspected_id: Optional[str], seating_order: Sequence[str]
) -> None:
    if voter_id not in seating_order:
        raise InvalidQuizVoteError("You are not in this game", code="VOTER_NOT_IN_GAME")
    if suspected_id is None:
        return
    if suspected_id == voter_id:
        raise InvalidQuizVoteError("You cannot vote for yourself", code="CANNOT_VOTE_SELF")
    if suspected_id not in seating_order:
        raise InvalidQuizVoteError("Invalid player", code="INVALID_PLAYER")


def quiz_started_at(votes: Sequence[QuizVote]) -> Optional[datetime]:
    """The quiz clock starts with the first vote."""
    if not votes:
        return None
    return min(v.submitted_at for v in votes)


def is_quiz_complete(
    votes_submitted: int,
    eligible_count: int,
    started_at: Optional[datetime],
    now: Optional[datetime] = None,
    timeout_seconds: int = QUIZ_TIMEOUT_SECONDS,
) -> bool:
    if started_at is None:
        return False
    if votes_submitted >= eligible_count:
        return True
    now = now or _utcnow()
    return now - started_at >= timedelta(seconds=timeout_seconds)


def quiz_remaining_seconds(
    started_at: Optional[datetime],
    now: Optional[datetime] = None,
    timeout_seconds: int = QUIZ_TIMEOUT_SECONDS,
) -> int:
    if started_at is None:
        return timeout_seconds
    elapsed = ((now or _utcnow()) - started_at).total_seconds()
    return max(0, int(timeout_seconds - elapsed))


def calculate_quiz_results(
    votes: Sequence[QuizVote], players: Dict[str, str], merlin_id: str
) -> Dict[str, Any]:
    """
    Aggregate quiz votes.

    `players` maps player id → nickname in seating order. Returns:
    {
        "results": [{player_id, nickname, vote_count, is_most_voted, is_actual_merlin}],
        "actual_merlin_id": str,
        "actual_merlin_nickname": str,
        "total_votes": int,     # skips excluded
        "skipped_count": int,
    }
    """
    counts = {pid: 0 for pid in players}
    skipped = 0
    for v in votes:
        if v.suspected_player_id is None:
            skipped += 1
        else:
            counts[v.suspected_player_id] = counts.get(v.suspected_player_id, 0) + 1
    max_votes = max(counts.values(), default=0)

    results: List[Dict[str, Any]] = [
        {
            "player_id": pid,
            "nickname": nickname,
            "vote_count": counts[pid],
            "is_most_voted": max_votes > 0 and counts[pid] == max_votes,
            "is_actual_merlin": pid == merlin_id,
        }
        for pid, nickname in players.items()
    ]
    results.sort(key=lambda r: r["vote_count"], reverse=True)

    return {
        "results": results,
        "actual_merlin_id": merlin_id,
        "actual_merlin_nickname": players.get(merlin_id, "Unknown"),
        "total_votes": len(votes) - skipped,
        "skipped_count": skipped,
    }


# ── Completion barrier ────────────────────────────────────────────────────────

def can_complete_phase(
    outcome: EndgameOutcome,
    has_assassin: bool,
    assassin_submitted: bool,
    quiz_complete: bool,
) -> bool:
    assassin_done = (
        outcome == EndgameOutcome.EVIL_WIN or not has_assassin or assassin_submitted
    )
    return assassin_done and quiz_complete


class EndgameBarrier(NamedTuple):
    outcome: EndgameOutcome
    has_assassin: bool
    assassin_submitted: bool
    quiz_complete: bool

    def is_open(self) -> bool:
        return can_complete_phase(
            self.outcome, self.has_assassin, self.assassin_submitted, self.quiz_complete
        )

    def waiting_on(self) -> List[str]:
        pending = []
        if not can_complete_phase(self.outcome, self.has_assassin, self.assassin_submitted, True):
            pending.append("assassin")
        if not self.quiz_complete:
            pending.append("quiz")
        return pending


class EndgameResult(NamedTuple):
    winner: Winner
    reason: WinReason


def resolve_endgame(
    outcome: EndgameOutcome,
    assassin_guess_id: Optional[str],
    merlin_id: Optional[str],
) -> EndgameResult:
    if outcome == EndgameOutcome.EVIL_WIN:
        return EndgameResult(Winner.EVIL, WinReason.THREE_QUEST_FAILURES)
    if assassin_guess_id is None or merlin_id is None:
        return EndgameResult(Winner.GOOD, WinReason.THREE_QUEST_SUCCESSES)
    check = check_assassin_guess(assassin_guess_id, merlin_id)
    return EndgameResult(check.winner, check.reason)
