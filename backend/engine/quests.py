"""Quest card validation and outcome resolution."""
import random
from typing import Dict, List, NamedTuple, Optional, Sequence

from models.game import Alignment, QuestActionType, QuestOutcome, SpecialRole
from engine.errors import InvalidQuestActionError

# Brute may fail quests 1-3 only
BRUTE_LAST_FAILABLE_QUEST = 3


class QuestResolution(NamedTuple):
    success_count: int
    fail_count: int
    outcome: QuestOutcome


def validate_quest_action(
    alignment: Alignment,
    action: QuestActionType,
    special_role: Optional[SpecialRole] = None,
    quest_number: int = 1,
) -> None:
    if alignment == Alignment.GOOD and action == QuestActionType.FAIL:
        raise InvalidQuestActionError("Good players must play success", code="INVALID_ACTION")
    if special_role == SpecialRole.LUNATIC and action != QuestActionType.FAIL:
        raise InvalidQuestActionError(
            "The Lunatic must fail every quest", code="LUNATIC_MUST_FAIL"
        )
    if (
        special_role == SpecialRole.BRUTE
        and action == QuestActionType.FAIL
        and quest_number > BRUTE_LAST_FAILABLE_QUEST
    ):
        raise InvalidQuestActionError(
            "The Brute can only fail quests 1-3", code="BRUTE_CANNOT_FAIL_LATE_QUEST"
        )


def quest_action_constraints(
    alignment: Alignment, special_role: Optional[SpecialRole], quest_number: int
) -> Dict[str, object]:
    """Which cards this player may play, for client display."""
    can_success = True
    can_fail = alignment == Alignment.EVIL
    note = ""
    if special_role == SpecialRole.LUNATIC:
        can_success = False
        note = "As the Lunatic, you must fail every quest."
    elif special_role == SpecialRole.BRUTE and quest_number > BRUTE_LAST_FAILABLE_QUEST:
        can_fail = False
        note = "As the Brute, you can only fail quests 1-3."
    return {"can_succeed": can_success, "can_fail": can_fail, "note": note}


def resolve_quest(actions: Sequence[QuestActionType], fails_required: int) -> QuestResolution:
    fail_count = sum(1 for a in actions if a == QuestActionType.FAIL)
    success_count = len(actions) - fail_count
    outcome = QuestOutcome.FAIL if fail_count >= fails_required else QuestOutcome.SUCCESS
    return QuestResolution(success_count, fail_count, outcome)


def shuffle_for_display(
    actions: Sequence[QuestActionType], rng: Optional[random.Random] = None
) -> List[QuestActionType]:
    """Reveal order carries no information about who played what."""
    shuffled = list(actions)
    (rng or random).shuffle(shuffled)
    return shuffled
