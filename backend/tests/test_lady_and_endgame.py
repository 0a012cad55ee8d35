from datetime import datetime, timedelta, timezone

import pytest

from engine.endgame import (
    EndgameBarrier, calculate_quiz_results, can_complete_phase, count_eligible,
    get_quiz_eligibility, is_quiz_complete, quiz_remaining_seconds, quiz_started_at,
    resolve_endgame, validate_quiz_vote,
)
from engine.errors import InvalidQuizVoteError, InvalidTargetError
from engine.lady_of_lake import (
    designate_lady_holder, should_trigger_lady_phase, valid_targets,
    validate_investigation_target,
)
from models.game import (
    EndgameOutcome, QuizEligibilityReason, QuizVote, SpecialRole, Winner, WinReason,
)

SEATS = ["a", "b", "c", "d", "e", "f", "g"]
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
GOOD_WIN, EVIL_WIN = EndgameOutcome.GOOD_WIN, EndgameOutcome.EVIL_WIN


# ── Lady of the Lake ──────────────────────────────────────────────────────────

def test_holder_sits_after_manager():
    assert designate_lady_holder(SEATS, "c") == "d"
    assert designate_lady_holder(SEATS, "g") == "a"
    assert designate_lady_holder(SEATS, None) == "a"


def test_cannot_investigate_self():
    with pytest.raises(InvalidTargetError, match="Cannot investigate yourself"):
        validate_investigation_target("a", "a", SEATS, [], [])


def test_cannot_investigate_previous_holder():
    with pytest.raises(InvalidTargetError) as exc:
        validate_investigation_target("b", "c", SEATS, ["c"], ["b"])
    assert exc.value.code == "PREVIOUS_LADY_HOLDER"


def test_cannot_investigate_twice():
    with pytest.raises(InvalidTargetError) as exc:
        validate_investigation_target("d", "a", SEATS, ["d"], [])
    assert exc.value.code == "ALREADY_INVESTIGATED"


def test_unseated_target_is_invalid():
    with pytest.raises(InvalidTargetError) as exc:
        validate_investigation_target("zz", "a", SEATS, [], [])
    assert exc.value.code == "INVALID_TARGET"


def test_valid_targets_exclude_holder_history():
    assert valid_targets("c", SEATS, ["c"], ["b"]) == ["a", "d", "e", "f", "g"]


@pytest.mark.parametrize("quest,expected", [(1, False), (2, True), (3, True), (4, True), (5, False)])
def test_lady_only_after_quests_two_to_four(quest, expected):
    assert should_trigger_lady_phase(True, quest, "a", SEATS, [], []) is expected


def test_lady_skipped_when_disabled_or_no_targets():
    assert not should_trigger_lady_phase(False, 2, "a", SEATS, [], [])
    assert not should_trigger_lady_phase(True, 2, None, SEATS, [], [])
    assert not should_trigger_lady_phase(True, 2, "a", ["a", "b"], ["b"], [])


# ── Quiz eligibility ──────────────────────────────────────────────────────────

def test_assassin_hunts_during_good_win():
    e = get_quiz_eligibility(SpecialRole.ASSASSIN, GOOD_WIN, has_morgana=True)
    assert not e.can_take_quiz and e.show_assassination
    assert e.reason == QuizEligibilityReason.IS_ASSASSIN


def test_everyone_else_quizzes_during_good_win():
    for role in (SpecialRole.MERLIN, SpecialRole.PERCIVAL, SpecialRole.MORGANA):
        assert get_quiz_eligibility(role, GOOD_WIN, True).can_take_quiz


def test_merlin_waits_during_evil_win():
    e = get_quiz_eligibility(SpecialRole.MERLIN, EVIL_WIN, False)
    assert not e.can_take_quiz and e.show_waiting
    assert e.reason == QuizEligibilityReason.IS_MERLIN


def test_percival_quizzes_an_evil_win_only_when_morgana_blurs_merlin():
    uncertain = get_quiz_eligibility(SpecialRole.PERCIVAL, EVIL_WIN, True)
    assert uncertain.can_take_quiz and not uncertain.show_waiting
    assert uncertain.reason == QuizEligibilityReason.IS_PERCIVAL_UNCERTAIN

    certain = get_quiz_eligibility(SpecialRole.PERCIVAL, EVIL_WIN, False)
    assert not certain.can_take_quiz and certain.show_waiting
    assert certain.reason == QuizEligibilityReason.IS_PERCIVAL_CERTAIN


def test_good_win_without_assassin_opens_quiz_to_everyone():
    for role in (SpecialRole.MERLIN, SpecialRole.MORGANA, SpecialRole.SERVANT):
        e = get_quiz_eligibility(role, GOOD_WIN, False, has_assassin=False)
        assert e.can_take_quiz
        assert e.reason == QuizEligibilityReason.NO_ASSASSIN_GOOD_WIN


def test_eligible_count():
    roles = [SpecialRole.MERLIN, SpecialRole.PERCIVAL, SpecialRole.SERVANT,
             SpecialRole.ASSASSIN, SpecialRole.MORGANA]
    assert count_eligible(roles, GOOD_WIN, True) == 4
    assert count_eligible(roles, EVIL_WIN, True) == 4
    assert count_eligible(roles, EVIL_WIN, False) == 3
    assert count_eligible(roles, GOOD_WIN, True, has_assassin=False) == 5


# ── Quiz votes and completion ─────────────────────────────────────────────────

def test_quiz_vote_validation():
    validate_quiz_vote("a", None, SEATS)
    validate_quiz_vote("a", "b", SEATS)
    with pytest.raises(InvalidQuizVoteError) as exc:
        validate_quiz_vote("a", "a", SEATS)
    assert exc.value.code == "CANNOT_VOTE_SELF"
    with pytest.raises(InvalidQuizVoteError) as exc:
        validate_quiz_vote("a", "zz", SEATS)
    assert exc.value.code == "INVALID_PLAYER"
    with pytest.raises(InvalidQuizVoteError) as exc:
        validate_quiz_vote("zz", None, SEATS)
    assert exc.value.code == "VOTER_NOT_IN_GAME"


def test_quiz_not_started_without_votes():
    assert not is_quiz_complete(0, 5, None, now=T0 + timedelta(hours=1))
    assert quiz_remaining_seconds(None) == 60


def test_quiz_complete_when_everyone_voted():
    assert is_quiz_complete(5, 5, T0, now=T0)


def test_quiz_times_out_after_sixty_seconds():
    assert not is_quiz_complete(2, 5, T0, now=T0 + timedelta(seconds=59))
    assert is_quiz_complete(2, 5, T0, now=T0 + timedelta(seconds=60))
    assert is_quiz_complete(2, 5, T0, now=T0 + timedelta(seconds=61))


def test_remaining_seconds_counts_down_to_zero():
    assert quiz_remaining_seconds(T0, now=T0 + timedelta(seconds=15)) == 45
    assert quiz_remaining_seconds(T0, now=T0 + timedelta(seconds=90)) == 0


def test_quiz_starts_at_first_vote():
    votes = [
        QuizVote(voter_id="b", submitted_at=T0 + timedelta(seconds=5)),
        QuizVote(voter_id="a", submitted_at=T0),
    ]
    assert quiz_started_at(votes) == T0
    assert quiz_started_at([]) is None


def test_can_complete_phase_needs_both_sides_for_good_win():
    assert not can_complete_phase(GOOD_WIN, True, False, True)
    assert not can_complete_phase(GOOD_WIN, True, True, False)
    assert can_complete_phase(GOOD_WIN, True, True, True)


def test_assassin_waived_for_evil_win_or_no_assassin():
    assert can_complete_phase(EVIL_WIN, True, False, True)
    assert can_complete_phase(GOOD_WIN, False, False, True)
    assert not can_complete_phase(EVIL_WIN, True, False, False)


def test_barrier_reports_what_it_waits_on():
    barrier = EndgameBarrier(GOOD_WIN, True, assassin_submitted=False, quiz_complete=False)
    assert not barrier.is_open()
    assert barrier.waiting_on() == ["assassin", "quiz"]
    assert EndgameBarrier(GOOD_WIN, True, True, False).waiting_on() == ["quiz"]
    assert EndgameBarrier(EVIL_WIN, True, False, True).is_open()


def test_resolve_endgame():
    assert resolve_endgame(EVIL_WIN, None, "m") == (Winner.EVIL, WinReason.THREE_QUEST_FAILURES)
    assert resolve_endgame(GOOD_WIN, "m", "m") == (Winner.EVIL, WinReason.ASSASSIN_FOUND_MERLIN)
    assert resolve_endgame(GOOD_WIN, "x", "m") == (Winner.GOOD, WinReason.THREE_QUEST_SUCCESSES)


def test_quiz_results_tally():
    players = {"a": "Ann", "b": "Bob", "c": "Cat"}
    votes = [
        QuizVote(voter_id="a", suspected_player_id="b"),
        QuizVote(voter_id="c", suspected_player_id="b"),
        QuizVote(voter_id="b", suspected_player_id=None),
    ]
    out = calculate_quiz_results(votes, players, merlin_id="b")
    assert out["total_votes"] == 2
    assert out["skipped_count"] == 1
    top = out["results"][0]
    assert top["player_id"] == "b" and top["vote_count"] == 2
    assert top["is_most_voted"] and top["is_actual_merlin"]
    assert out["actual_merlin_nickname"] == "Bob"
    assert not any(r["is_most_voted"] for r in out["results"][1:])


def test_quiz_results_with_only_skips_have_no_most_voted():
    out = calculate_quiz_results(
        [QuizVote(voter_id="a")], {"a": "Ann", "b": "Bob"}, merlin_id="a"
    )
    assert not any(r["is_most_voted"] for r in out["results"])
