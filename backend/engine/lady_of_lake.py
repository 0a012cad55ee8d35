"""Lady of the Lake: holder designation, target validation and trigger rule."""
from typing import Iterable, List, Optional, Sequence

from models.game import Alignment
from engine.errors import InvalidTargetError

# The Lady appears after quests 2, 3 and 4 only
LADY_QUESTS = frozenset({2, 3, 4})
LADY_MIN_RECOMMENDED_PLAYERS = 7


def designate_lady_holder(seating_order: Sequence[str], manager_id: Optional[str] = None) -> str:
    """The player seated immediately after the manager (first seat when unknown)."""
    if manager_id in seating_order:
        idx = list(seating_order).index(manager_id)
        return seating_order[(idx + 1) % len(seating_order)]
    return seating_order[0]


def validate_investigation_target(
    target_id: str,
    holder_id: str,
    seating_order: Sequence[str],
    investigated_ids: Iterable[str],
    prior_holder_ids: Iterable[str],
) -> None:
    if target_id == holder_id:
        raise InvalidTargetError("Cannot investigate yourself", code="CANNOT_INVESTIGATE_SELF")
    if target_id not in seating_order:
        raise InvalidTargetError("Invalid player", code="INVALID_TARGET")
    if target_id in set(prior_holder_ids):
        raise InvalidTargetError(
            "This player has already held the Lady", code="PREVIOUS_LADY_HOLDER"
        )
    if target_id in set(investigated_ids):
        raise InvalidTargetError(
            "This player has already been investigated", code="ALREADY_INVESTIGATED"
        )


def valid_targets(
    holder_id: str,
    seating_order: Sequence[str],
    investigated_ids: Iterable[str],
    prior_holder_ids: Iterable[str],
) -> List[str]:
    excluded = {holder_id} | set(investigated_ids) | set(prior_holder_ids)
    return [pid for pid in seating_order if pid not in excluded]


def should_trigger_lady_phase(
    enabled: bool,
    completed_quest: int,
    holder_id: Optional[str],
    seating_order: Sequence[str],
    investigated_ids: Iterable[str],
    prior_holder_ids: Iterable[str],
) -> bool:
    if not enabled or holder_id is None or completed_quest not in LADY_QUESTS:
        return False
    return bool(valid_targets(holder_id, seating_order, investigated_ids, prior_holder_ids))


def investigation_result(target_alignment: Alignment) -> Alignment:
    """Only the alignment is revealed, never the special role."""
    return target_alignment
