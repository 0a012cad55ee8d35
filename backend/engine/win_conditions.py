"""
Win condition evaluation.

Checked in fixed order after every vote resolution and quest completion:
  1. vote track reached 5       → Evil wins (5 rejections)
  2. 3 quests succeeded         → Good wins, pending the Assassin/quiz
  3. 3 quests failed            → Evil wins, pending the quiz in parallel mode
"""
from typing import NamedTuple, Optional, Sequence

from models.game import EndgameOutcome, Phase, QuestOutcome, Winner, WinReason
from engine.quest_config import MAX_REJECTIONS, QUESTS_TO_WIN


class WinCheck(NamedTuple):
    game_over: bool
    winner: Optional[Winner] = None
    reason: Optional[WinReason] = None


class EndgamePlan(NamedTuple):
    phase: Phase
    outcome: Optional[EndgameOutcome] = None
    winner: Optional[Winner] = None       # set only when phase is game_over
    reason: Optional[WinReason] = None


CONTINUE = WinCheck(False)


def evaluate_win_conditions(
    quest_outcomes: Sequence[QuestOutcome], vote_track: int
) -> WinCheck:
    if vote_track >= MAX_REJECTIONS:
        return WinCheck(True, Winner.EVIL, WinReason.FIVE_REJECTIONS)
    successes = sum(1 for o in quest_outcomes if o == QuestOutcome.SUCCESS)
    fails = sum(1 for o in quest_outcomes if o == QuestOutcome.FAIL)
    if successes >= QUESTS_TO_WIN:
        return WinCheck(True, Winner.GOOD, WinReason.THREE_QUEST_SUCCESSES)
    if fails >= QUESTS_TO_WIN:
        return WinCheck(True, Winner.EVIL, WinReason.THREE_QUEST_FAILURES)
    return CONTINUE


def plan_endgame(
    check: WinCheck, has_merlin: bool, has_assassin: bool, use_parallel_quiz: bool
) -> Optional[EndgamePlan]:
    """Map a win check onto the phase the game moves into. None = keep playing."""
    if not check.game_over:
        return None
    if check.reason == WinReason.THREE_QUEST_SUCCESSES and has_merlin and has_assassin:
        if use_parallel_quiz:
            return EndgamePlan(Phase.PARALLEL_QUIZ, EndgameOutcome.GOOD_WIN)
        return EndgamePlan(Phase.ASSASSIN, EndgameOutcome.GOOD_WIN)
    if check.reason == WinReason.THREE_QUEST_FAILURES and has_merlin and use_parallel_quiz:
        return EndgamePlan(Phase.PARALLEL_QUIZ, EndgameOutcome.EVIL_WIN)
    return EndgamePlan(Phase.GAME_OVER, None, check.winner, check.reason)


def check_assassin_guess(guessed_player_id: str, merlin_id: str) -> WinCheck:
    if guessed_player_id == merlin_id:
        return WinCheck(True, Winner.EVIL, WinReason.ASSASSIN_FOUND_MERLIN)
    return WinCheck(True, Winner.GOOD, WinReason.THREE_QUEST_SUCCESSES)


WIN_REASON_TEXT = {
    WinReason.FIVE_REJECTIONS: "Five team proposals were rejected in a row.",
    WinReason.THREE_QUEST_SUCCESSES: "Good completed three quests and Merlin survived.",
    WinReason.THREE_QUEST_FAILURES: "Evil sabotaged three quests.",
    WinReason.ASSASSIN_FOUND_MERLIN: "The Assassin identified Merlin.",
}


def winner_announcement(winner: Winner, reason: WinReason) -> str:
    side = "Good" if winner == Winner.GOOD else "Evil"
    return f"{side} wins! {WIN_REASON_TEXT[reason]}"
