"""Team sizes and fail thresholds per player count and quest."""
from typing import Dict, List, NamedTuple

from engine.errors import InvariantViolation


class QuestRequirement(NamedTuple):
    size: int
    fails: int  # fail cards needed for the quest to fail


TOTAL_QUESTS = 5
QUESTS_TO_WIN = 3
MAX_REJECTIONS = 5

QUEST_CONFIG: Dict[int, List[QuestRequirement]] = {
    5: [QuestRequirement(2, 1), QuestRequirement(3, 1), QuestRequirement(2, 1),
        QuestRequirement(3, 1), QuestRequirement(3, 1)],
    6: [QuestRequirement(2, 1), QuestRequirement(3, 1), QuestRequirement(4, 1),
        QuestRequirement(3, 1), QuestRequirement(4, 1)],
    7: [QuestRequirement(2, 1), QuestRequirement(3, 1), QuestRequirement(3, 1),
        QuestRequirement(4, 2), QuestRequirement(4, 1)],
    8: [QuestRequirement(3, 1), QuestRequirement(4, 1), QuestRequirement(4, 1),
        QuestRequirement(5, 2), QuestRequirement(5, 1)],
    9: [QuestRequirement(3, 1), QuestRequirement(4, 1), QuestRequirement(4, 1),
        QuestRequirement(5, 2), QuestRequirement(5, 1)],
    10: [QuestRequirement(3, 1), QuestRequirement(4, 1), QuestRequirement(4, 1),
         QuestRequirement(5, 2), QuestRequirement(5, 1)],
}


def get_quest_requirement(player_count: int, quest_number: int) -> QuestRequirement:
    table = QUEST_CONFIG.get(player_count)
    if table is None or not 1 <= quest_number <= TOTAL_QUESTS:
        raise InvariantViolation(
            f"No quest config for {player_count} players, quest {quest_number}"
        )
    return table[quest_number - 1]
