import random

import pytest

from engine.errors import (
    IncompleteVotingError, InvalidQuestActionError, InvalidTeamError, InvariantViolation,
    NotLeaderError,
)
from engine.quest_config import QUEST_CONFIG, get_quest_requirement
from engine.quests import (
    quest_action_constraints, resolve_quest, shuffle_for_display, validate_quest_action,
)
from engine.voting import (
    apply_rejection, check_leader, next_leader_index, normalize_draft_team, resolve_votes,
    validate_draft_selection, validate_proposal,
)
from models.game import (
    Alignment, GameState, ProposalStatus, QuestActionType, QuestOutcome, SpecialRole,
)

SEATS_5 = ["a", "b", "c", "d", "e"]
GAME_5 = GameState(id="T", seating_order=SEATS_5, current_leader_id="a")
S, F = QuestActionType.SUCCESS, QuestActionType.FAIL


# ── Quest config ──────────────────────────────────────────────────────────────

def test_quest_config_covers_every_player_count():
    assert sorted(QUEST_CONFIG) == [5, 6, 7, 8, 9, 10]
    for table in QUEST_CONFIG.values():
        assert len(table) == 5


@pytest.mark.parametrize("players", [7, 8, 9, 10])
def test_fourth_quest_needs_two_fails_at_seven_plus(players):
    assert get_quest_requirement(players, 4).fails == 2


def test_small_games_need_one_fail_everywhere():
    for players in (5, 6):
        assert all(get_quest_requirement(players, q).fails == 1 for q in range(1, 6))


def test_quest_requirement_out_of_range():
    with pytest.raises(InvariantViolation):
        get_quest_requirement(4, 1)
    with pytest.raises(InvariantViolation):
        get_quest_requirement(5, 6)


# ── Proposals ─────────────────────────────────────────────────────────────────

def test_valid_proposal_passes():
    validate_proposal(["a", "b"], 1, "a", GAME_5)


def test_proposal_of_wrong_size_rejected():
    """Quest 1 at 5 players needs exactly 2."""
    with pytest.raises(InvalidTeamError):
        validate_proposal(["a", "b", "c"], 1, "a", GAME_5)
    with pytest.raises(InvalidTeamError):
        validate_proposal(["a"], 1, "a", GAME_5)


def test_proposal_with_duplicates_rejected():
    with pytest.raises(InvalidTeamError) as exc:
        validate_proposal(["a", "a"], 1, "a", GAME_5)
    assert exc.value.code == "DUPLICATE_MEMBER"


def test_proposal_with_unseated_player_rejected():
    with pytest.raises(InvalidTeamError) as exc:
        validate_proposal(["a", "zz"], 1, "a", GAME_5)
    assert exc.value.code == "INVALID_PLAYER"


def test_only_leader_may_propose():
    check_leader("a", "a")
    with pytest.raises(NotLeaderError):
        check_leader("b", "a")
    with pytest.raises(NotLeaderError):
        validate_proposal(["a", "b"], 1, "b", GAME_5)


def test_leader_is_checked_before_the_team():
    with pytest.raises(NotLeaderError):
        validate_proposal(["zz"], 1, "b", GAME_5)


# ── Draft selection ───────────────────────────────────────────────────────────

def test_partial_drafts_are_allowed():
    validate_draft_selection([], 1, SEATS_5)
    validate_draft_selection(["c"], 1, SEATS_5)
    validate_draft_selection(["c", "a"], 1, SEATS_5)


def test_draft_cannot_exceed_team_size():
    with pytest.raises(InvalidTeamError) as exc:
        validate_draft_selection(["a", "b", "c"], 1, SEATS_5)
    assert exc.value.code == "DRAFT_TOO_LARGE"
    validate_draft_selection(["a", "b", "c"], 2, SEATS_5)


def test_draft_members_must_be_seated():
    with pytest.raises(InvalidTeamError) as exc:
        validate_draft_selection(["zz"], 1, SEATS_5)
    assert exc.value.code == "INVALID_PLAYER"


def test_normalize_draft_keeps_first_occurrence_order():
    assert normalize_draft_team(["c", "a", "c", "b", "a"]) == ["c", "a", "b"]
    assert normalize_draft_team([]) == []


# ── Votes ─────────────────────────────────────────────────────────────────────

def test_strict_majority_approves():
    res = resolve_votes(3, 2, 5)
    assert res.status == ProposalStatus.APPROVED
    assert res.approved


def test_tie_rejects():
    assert resolve_votes(3, 3, 6).status == ProposalStatus.REJECTED


def test_incomplete_voting_is_an_error():
    with pytest.raises(IncompleteVotingError):
        resolve_votes(2, 2, 5)


def test_fifth_rejection_flagged():
    assert apply_rejection(3) == (4, False)
    assert apply_rejection(4) == (5, True)


def test_leader_rotation_wraps():
    assert next_leader_index(0, 5) == 1
    assert next_leader_index(4, 5) == 0


# ── Quest actions ─────────────────────────────────────────────────────────────

def test_good_player_cannot_fail():
    with pytest.raises(InvalidQuestActionError) as exc:
        validate_quest_action(Alignment.GOOD, F, SpecialRole.MERLIN)
    assert exc.value.code == "INVALID_ACTION"


def test_evil_player_may_succeed_or_fail():
    validate_quest_action(Alignment.EVIL, S, SpecialRole.ASSASSIN)
    validate_quest_action(Alignment.EVIL, F, SpecialRole.ASSASSIN)


def test_lunatic_must_fail():
    with pytest.raises(InvalidQuestActionError) as exc:
        validate_quest_action(Alignment.EVIL, S, SpecialRole.LUNATIC, 1)
    assert exc.value.code == "LUNATIC_MUST_FAIL"


def test_brute_cannot_fail_late_quests():
    validate_quest_action(Alignment.EVIL, F, SpecialRole.BRUTE, 3)
    for quest in (4, 5):
        with pytest.raises(InvalidQuestActionError) as exc:
            validate_quest_action(Alignment.EVIL, F, SpecialRole.BRUTE, quest)
        assert exc.value.code == "BRUTE_CANNOT_FAIL_LATE_QUEST"


def test_constraints_for_client_buttons():
    assert quest_action_constraints(Alignment.GOOD, SpecialRole.SERVANT, 1)["can_fail"] is False
    lunatic = quest_action_constraints(Alignment.EVIL, SpecialRole.LUNATIC, 1)
    assert lunatic["can_succeed"] is False and lunatic["can_fail"] is True
    assert quest_action_constraints(Alignment.EVIL, SpecialRole.BRUTE, 4)["can_fail"] is False


def test_quest_fails_at_threshold():
    assert resolve_quest([S, S, F], 1).outcome == QuestOutcome.FAIL
    assert resolve_quest([S, S, S], 1).outcome == QuestOutcome.SUCCESS


def test_two_fail_quest_survives_one_fail():
    res = resolve_quest([S, S, S, F], 2)
    assert res.outcome == QuestOutcome.SUCCESS
    assert (res.success_count, res.fail_count) == (3, 1)
    assert resolve_quest([S, S, F, F], 2).outcome == QuestOutcome.FAIL


def test_shuffle_keeps_cards():
    cards = [S, F, S, F, S]
    shuffled = shuffle_for_display(cards, random.Random(7))
    assert sorted(shuffled) == sorted(cards)
    assert cards == [S, F, S, F, S]
