"""
Phase state machine.

Every phase change in the game goes through `next_phase` (event-driven) or
`assert_transition` (explicit target); anything outside VALID_TRANSITIONS is
rejected with InvalidTransitionError and leaves the game untouched.
"""
from enum import Enum
from typing import Dict, FrozenSet, List, Tuple

from models.game import Phase
from engine.errors import InvalidTransitionError

VALID_TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
    Phase.TEAM_BUILDING: frozenset({Phase.VOTING}),
    Phase.VOTING: frozenset({Phase.TEAM_BUILDING, Phase.QUEST, Phase.GAME_OVER}),
    Phase.QUEST: frozenset({Phase.QUEST_RESULT, Phase.ASSASSIN, Phase.PARALLEL_QUIZ}),
    Phase.QUEST_RESULT: frozenset({
        Phase.TEAM_BUILDING, Phase.LADY_OF_LAKE, Phase.ASSASSIN,
        Phase.PARALLEL_QUIZ, Phase.GAME_OVER,
    }),
    Phase.LADY_OF_LAKE: frozenset({Phase.TEAM_BUILDING}),
    Phase.ASSASSIN: frozenset({Phase.GAME_OVER}),
    Phase.PARALLEL_QUIZ: frozenset({Phase.GAME_OVER}),
    Phase.GAME_OVER: frozenset(),
}


class PhaseEvent(str, Enum):
    TEAM_PROPOSED = "team_proposed"
    PROPOSAL_APPROVED = "proposal_approved"
    PROPOSAL_REJECTED = "proposal_rejected"
    FIFTH_REJECTION = "fifth_rejection"
    QUEST_COMPLETED = "quest_completed"
    ASSASSINATION_OPENED = "assassination_opened"
    PARALLEL_QUIZ_OPENED = "parallel_quiz_opened"
    LADY_SUMMONED = "lady_summoned"
    NEXT_QUEST = "next_quest"
    GAME_DECIDED = "game_decided"


# (from, event) → to. Kept consistent with VALID_TRANSITIONS by the tests.
_EVENT_TABLE: Dict[Tuple[Phase, PhaseEvent], Phase] = {
    (Phase.TEAM_BUILDING, PhaseEvent.TEAM_PROPOSED): Phase.VOTING,
    (Phase.VOTING, PhaseEvent.PROPOSAL_APPROVED): Phase.QUEST,
    (Phase.VOTING, PhaseEvent.PROPOSAL_REJECTED): Phase.TEAM_BUILDING,
    (Phase.VOTING, PhaseEvent.FIFTH_REJECTION): Phase.GAME_OVER,
    (Phase.QUEST, PhaseEvent.QUEST_COMPLETED): Phase.QUEST_RESULT,
    (Phase.QUEST, PhaseEvent.ASSASSINATION_OPENED): Phase.ASSASSIN,
    (Phase.QUEST, PhaseEvent.PARALLEL_QUIZ_OPENED): Phase.PARALLEL_QUIZ,
    (Phase.QUEST_RESULT, PhaseEvent.NEXT_QUEST): Phase.TEAM_BUILDING,
    (Phase.QUEST_RESULT, PhaseEvent.LADY_SUMMONED): Phase.LADY_OF_LAKE,
    (Phase.QUEST_RESULT, PhaseEvent.ASSASSINATION_OPENED): Phase.ASSASSIN,
    (Phase.QUEST_RESULT, PhaseEvent.PARALLEL_QUIZ_OPENED): Phase.PARALLEL_QUIZ,
    (Phase.QUEST_RESULT, PhaseEvent.GAME_DECIDED): Phase.GAME_OVER,
    (Phase.LADY_OF_LAKE, PhaseEvent.NEXT_QUEST): Phase.TEAM_BUILDING,
    (Phase.ASSASSIN, PhaseEvent.GAME_DECIDED): Phase.GAME_OVER,
    (Phase.PARALLEL_QUIZ, PhaseEvent.GAME_DECIDED): Phase.GAME_OVER,
}

PHASE_NAMES: Dict[Phase, str] = {
    Phase.TEAM_BUILDING: "Team Building",
    Phase.VOTING: "Voting",
    Phase.QUEST: "Quest",
    Phase.QUEST_RESULT: "Quest Result",
    Phase.LADY_OF_LAKE: "Lady of the Lake",
    Phase.ASSASSIN: "Assassin's Gambit",
    Phase.PARALLEL_QUIZ: "Final Reckoning",
    Phase.GAME_OVER: "Game Over",
}

PHASE_DESCRIPTIONS: Dict[Phase, str] = {
    Phase.TEAM_BUILDING: "The leader selects players for the quest",
    Phase.VOTING: "All players vote to approve or reject the team",
    Phase.QUEST: "Team members secretly choose success or fail",
    Phase.QUEST_RESULT: "The quest outcome is revealed",
    Phase.LADY_OF_LAKE: "The Lady of the Lake holder investigates a player",
    Phase.ASSASSIN: "The Assassin attempts to identify Merlin",
    Phase.PARALLEL_QUIZ: "The Assassin hunts while everyone else guesses Merlin",
    Phase.GAME_OVER: "The game has ended",
}


def is_valid_transition(src: Phase, dst: Phase) -> bool:
    return dst in VALID_TRANSITIONS.get(src, frozenset())


def assert_transition(src: Phase, dst: Phase) -> None:
    if not is_valid_transition(src, dst):
        raise InvalidTransitionError(
            f"Invalid phase transition: {src.value} → {dst.value}"
        )


def next_phase(current: Phase, event: PhaseEvent) -> Phase:
    dst = _EVENT_TABLE.get((current, event))
    if dst is None:
        raise InvalidTransitionError(
            f"Event {event.value} is not valid in phase {current.value}"
        )
    assert_transition(current, dst)
    return dst


# ── Phase guards ──────────────────────────────────────────────────────────────

def can_propose_team(phase: Phase) -> bool:
    return phase == Phase.TEAM_BUILDING


def can_vote(phase: Phase) -> bool:
    return phase == Phase.VOTING


def can_submit_quest_action(phase: Phase) -> bool:
    return phase == Phase.QUEST


def can_investigate(phase: Phase) -> bool:
    return phase == Phase.LADY_OF_LAKE


def can_guess_assassin(phase: Phase) -> bool:
    return phase in (Phase.ASSASSIN, Phase.PARALLEL_QUIZ)


def can_vote_quiz(phase: Phase) -> bool:
    return phase == Phase.PARALLEL_QUIZ


def is_terminal(phase: Phase) -> bool:
    return not VALID_TRANSITIONS[phase]


def allowed_actions(phase: Phase) -> List[str]:
    """Actions a client may offer in `phase`, in turn order."""
    guards = (
        ("propose", can_propose_team),
        ("vote", can_vote),
        ("quest_action", can_submit_quest_action),
        ("lady_investigate", can_investigate),
        ("assassin_guess", can_guess_assassin),
        ("merlin_quiz", can_vote_quiz),
    )
    actions = [name for name, guard in guards if guard(phase)]
    if phase == Phase.QUEST_RESULT:
        actions.append("continue")
    return actions
