from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import uuid


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class Alignment(str, Enum):
    GOOD = "good"
    EVIL = "evil"


class SpecialRole(str, Enum):
    MERLIN = "merlin"
    PERCIVAL = "percival"
    SERVANT = "servant"
    ASSASSIN = "assassin"
    MORGANA = "morgana"
    MORDRED = "mordred"
    OBERON_STANDARD = "oberon_standard"  # hidden from evil, visible to Merlin
    OBERON_CHAOS = "oberon_chaos"        # hidden from everyone, including Merlin
    MINION = "minion"
    LUNATIC = "lunatic"                  # must fail every quest
    BRUTE = "brute"                      # may only fail quests 1-3


GOOD_ROLES = frozenset({SpecialRole.MERLIN, SpecialRole.PERCIVAL, SpecialRole.SERVANT})
OBERON_ROLES = frozenset({SpecialRole.OBERON_STANDARD, SpecialRole.OBERON_CHAOS})


class OberonMode(str, Enum):
    STANDARD = "standard"
    CHAOS = "chaos"


class Phase(str, Enum):
    TEAM_BUILDING = "team_building"
    VOTING = "voting"
    QUEST = "quest"
    QUEST_RESULT = "quest_result"
    LADY_OF_LAKE = "lady_of_lake"
    ASSASSIN = "assassin"
    PARALLEL_QUIZ = "parallel_quiz"
    GAME_OVER = "game_over"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VoteChoice(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class QuestActionType(str, Enum):
    SUCCESS = "success"
    FAIL = "fail"


class QuestOutcome(str, Enum):
    SUCCESS = "success"
    FAIL = "fail"


class Winner(str, Enum):
    GOOD = "good"
    EVIL = "evil"


class WinReason(str, Enum):
    FIVE_REJECTIONS = "5_rejections"
    THREE_QUEST_SUCCESSES = "3_quest_successes"
    THREE_QUEST_FAILURES = "3_quest_failures"
    ASSASSIN_FOUND_MERLIN = "assassin_found_merlin"


class EndgameOutcome(str, Enum):
    GOOD_WIN = "good_win"
    EVIL_WIN = "evil_win"


class QuizEligibilityReason(str, Enum):
    IS_ASSASSIN = "is_assassin"
    IS_MERLIN = "is_merlin"
    IS_PERCIVAL_CERTAIN = "is_percival_certain"
    IS_PERCIVAL_UNCERTAIN = "is_percival_uncertain"
    IS_ELIGIBLE = "is_eligible"
    NO_ASSASSIN_GOOD_WIN = "no_assassin_good_win"


# Good/evil split keyed by player count.
ROLE_RATIOS: Dict[int, Dict[str, int]] = {
    5: {"good": 3, "evil": 2},
    6: {"good": 4, "evil": 2},
    7: {"good": 4, "evil": 3},
    8: {"good": 5, "evil": 3},
    9: {"good": 6, "evil": 3},
    10: {"good": 6, "evil": 4},
}

MIN_PLAYERS = 5
MAX_PLAYERS = 10


def alignment_of(role: SpecialRole) -> Alignment:
    return Alignment.GOOD if role in GOOD_ROLES else Alignment.EVIL


# ── Role configuration ────────────────────────────────────────────────────────

class RoleConfig(BaseModel):
    merlin: bool = True
    assassin: bool = True
    percival: bool = False
    morgana: bool = False
    mordred: bool = False
    oberon: Optional[OberonMode] = None
    lunatic: bool = False
    brute: bool = False
    lady_of_lake: bool = False
    # Intel modes (at most one of the first three)
    merlin_decoy: bool = False
    merlin_split_intel: bool = False
    oberon_split_intel: bool = False
    evil_ring: bool = False


class RoleConfigValidation(BaseModel):
    valid: bool
    errors: List[str] = []
    warnings: List[str] = []


# ── Identity & visibility ─────────────────────────────────────────────────────

class PlayerSeat(BaseModel):
    id: str
    nickname: str


class PlayerRole(BaseModel):
    player_id: str
    nickname: str
    alignment: Alignment
    special_role: SpecialRole


class KnownPlayer(BaseModel):
    id: str
    name: str


class SplitIntelGroups(BaseModel):
    certain_evil: List[KnownPlayer] = []
    mixed: List[KnownPlayer] = []  # exactly one evil + one good, unlabelled


class Visibility(BaseModel):
    known_players: List[KnownPlayer] = []
    label: str = ""
    hidden_count: int = 0
    ability_note: str = ""
    has_decoy: bool = False
    decoy_warning: str = ""
    split_intel: Optional[SplitIntelGroups] = None
    ring_teammate: Optional[KnownPlayer] = None


class IntelDraw(BaseModel):
    """Random picks fixed at game start; visibility is recomputed from these."""
    decoy_player_id: Optional[str] = None
    split_certain_ids: List[str] = []
    split_mixed_ids: List[str] = []
    ring_order: List[str] = []


# ── Quest, proposal and endgame records ───────────────────────────────────────

class QuestResult(BaseModel):
    quest_number: int
    outcome: QuestOutcome
    success_count: int
    fail_count: int
    fails_required: int
    team_member_ids: List[str] = []
    shuffled_actions: List[QuestActionType] = []
    completed_at: datetime = Field(default_factory=_utcnow)


class TeamProposal(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    quest_number: int
    proposal_number: int
    leader_id: str
    team_member_ids: List[str]
    status: ProposalStatus = ProposalStatus.PENDING
    approve_count: int = 0
    reject_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class Vote(BaseModel):
    proposal_id: str
    player_id: str
    choice: VoteChoice
    created_at: datetime = Field(default_factory=_utcnow)


class QuestAction(BaseModel):
    quest_number: int
    player_id: str
    action: QuestActionType
    created_at: datetime = Field(default_factory=_utcnow)


class Investigation(BaseModel):
    quest_number: int
    investigator_id: str
    target_id: str
    result: Alignment
    created_at: datetime = Field(default_factory=_utcnow)


class QuizVote(BaseModel):
    voter_id: str
    suspected_player_id: Optional[str] = None  # None = skipped
    submitted_at: datetime = Field(default_factory=_utcnow)


class QuizEligibility(BaseModel):
    can_take_quiz: bool
    show_assassination: bool = False
    show_waiting: bool = False
    reason: QuizEligibilityReason


# ── Game state ────────────────────────────────────────────────────────────────

class GameState(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8].upper())
    phase: Phase = Phase.TEAM_BUILDING
    current_quest: int = 1
    seating_order: List[str]
    player_names: Dict[str, str] = {}
    leader_index: int = 0
    current_leader_id: str
    vote_track: int = 0
    quest_results: List[QuestResult] = []
    current_proposal_id: Optional[str] = None
    draft_team: List[str] = []
    role_config: RoleConfig = Field(default_factory=RoleConfig)
    intel: IntelDraw = Field(default_factory=IntelDraw)
    lady_enabled: bool = False
    lady_holder_id: Optional[str] = None
    use_parallel_quiz: bool = True
    endgame_outcome: Optional[EndgameOutcome] = None
    assassin_guess_id: Optional[str] = None
    winner: Optional[Winner] = None
    win_reason: Optional[WinReason] = None
    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    ended_at: Optional[datetime] = None

    @property
    def player_count(self) -> int:
        return len(self.seating_order)

    def to_public(self) -> Dict[str, Any]:
        """Spectator-safe projection: no roles, no intel, no pending assassin guess."""
        over = self.phase == Phase.GAME_OVER
        return {
            "game_id": self.id,
            "phase": self.phase.value,
            "current_quest": self.current_quest,
            "players": [
                {"id": pid, "nickname": self.player_names.get(pid, pid)}
                for pid in self.seating_order
            ],
            "current_leader_id": self.current_leader_id,
            "vote_track": self.vote_track,
            "quest_results": [
                {
                    "quest_number": r.quest_number,
                    "outcome": r.outcome.value,
                    "fail_count": r.fail_count,
                    "fails_required": r.fails_required,
                    "team_size": len(r.team_member_ids),
                }
                for r in self.quest_results
            ],
            "current_proposal_id": self.current_proposal_id,
            "draft_team": list(self.draft_team),
            "lady_holder_id": self.lady_holder_id if self.lady_enabled else None,
            "use_parallel_quiz": self.use_parallel_quiz,
            "assassin_guess_id": self.assassin_guess_id if over else None,
            "winner": self.winner.value if self.winner else None,
            "win_reason": self.win_reason.value if self.win_reason else None,
            "version": self.version,
        }


class GameEvent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    quest: int
    phase: Phase
    actor: Optional[str] = None
    target: Optional[str] = None
    data: Dict[str, Any] = {}
    visible_in_game: bool = True
    timestamp: datetime = Field(default_factory=_utcnow)


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateGameRequest(BaseModel):
    players: List[PlayerSeat]
    role_config: RoleConfig = Field(default_factory=RoleConfig)
    manager_id: Optional[str] = None  # Lady of the Lake starts to this player's left
    use_parallel_quiz: Optional[bool] = None


class CreateGameResponse(BaseModel):
    game_id: str
    seating_order: List[str]
    current_leader_id: str
    lady_holder_id: Optional[str] = None
    warnings: List[str] = []


class ValidateConfigRequest(BaseModel):
    role_config: RoleConfig
    player_count: int


class DraftTeamRequest(BaseModel):
    team_member_ids: List[str] = []


class ProposeTeamRequest(BaseModel):
    team_member_ids: List[str]


class VoteRequest(BaseModel):
    vote: VoteChoice


class QuestActionRequest(BaseModel):
    action: QuestActionType


class TargetRequest(BaseModel):
    target_id: str


class QuizVoteRequest(BaseModel):
    suspected_player_id: Optional[str] = None
