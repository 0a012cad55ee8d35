"""Team proposals and drafts, vote resolution and leader rotation."""
from typing import List, NamedTuple, Sequence

from models.game import GameState, ProposalStatus, Vote, VoteChoice
from engine.errors import IncompleteVotingError, InvalidTeamError, NotLeaderError
from engine.quest_config import MAX_REJECTIONS, get_quest_requirement


class VoteResolution(NamedTuple):
    status: ProposalStatus
    approve_count: int
    reject_count: int

    @property
    def approved(self) -> bool:
        return self.status == ProposalStatus.APPROVED


def validate_proposal(
    team_member_ids: Sequence[str], quest_number: int, leader_id: str, game: GameState
) -> None:
    """
    Raise NotLeaderError unless `leader_id` holds the crown, then
    InvalidTeamError unless the team fits the quest exactly.
    """
    check_leader(leader_id, game.current_leader_id)
    required = get_quest_requirement(game.player_count, quest_number).size
    if len(team_member_ids) != required:
        raise InvalidTeamError(
            f"Quest {quest_number} requires exactly {required} team members, "
            f"got {len(team_member_ids)}"
        )
    if len(set(team_member_ids)) != len(team_member_ids):
        raise InvalidTeamError("Team contains duplicate players", code="DUPLICATE_MEMBER")
    _require_seated_members(team_member_ids, game.seating_order)


def check_leader(proposer_id: str, leader_id: str) -> None:
    if proposer_id != leader_id:
        raise NotLeaderError("Only the current leader can propose a team")


def _require_seated_members(team_member_ids: Sequence[str], seating_order: Sequence[str]) -> None:
    seated = set(seating_order)
    unknown = [pid for pid in team_member_ids if pid not in seated]
    if unknown:
        raise InvalidTeamError(
            f"Players not in this game: {', '.join(unknown)}", code="INVALID_PLAYER"
        )


# ── Draft selection ───────────────────────────────────────────────────────────

def normalize_draft_team(team_member_ids: Sequence[str]) -> List[str]:
    """Drop repeated ids, keeping the leader's click order."""
    return list(dict.fromkeys(team_member_ids))


def validate_draft_selection(
    team_member_ids: Sequence[str], quest_number: int, seating_order: Sequence[str]
) -> None:
    """A draft may hold anywhere from nobody up to the quest's team size."""
    required = get_quest_requirement(len(seating_order), quest_number).size
    if len(team_member_ids) > required:
        raise InvalidTeamError(
            f"Quest {quest_number} takes at most {required} team members, "
            f"got {len(team_member_ids)}",
            code="DRAFT_TOO_LARGE",
        )
    if len(set(team_member_ids)) != len(team_member_ids):
        raise InvalidTeamError("Team contains duplicate players", code="DUPLICATE_MEMBER")
    _require_seated_members(team_member_ids, seating_order)


def resolve_votes(approve: int, reject: int, total: int) -> VoteResolution:
    """Strict majority approves; a tie rejects."""
    if approve + reject != total:
        raise IncompleteVotingError(
            f"Incomplete voting: {approve + reject} of {total} votes cast"
        )
    status = ProposalStatus.APPROVED if approve > reject else ProposalStatus.REJECTED
    return VoteResolution(status, approve, reject)


def tally(votes: List[Vote]) -> tuple:
    approve = sum(1 for v in votes if v.choice == VoteChoice.APPROVE)
    return approve, len(votes) - approve


def apply_rejection(vote_track: int) -> tuple:
    """Returns (new_vote_track, is_fifth_rejection)."""
    new_track = vote_track + 1
    return new_track, new_track >= MAX_REJECTIONS


def next_leader_index(leader_index: int, player_count: int) -> int:
    return (leader_index + 1) % player_count
