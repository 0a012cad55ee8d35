"""
Shared fixtures.

`store` swaps the Firestore singleton for an in-memory stand-in with the same
async interface, including create-only submissions and compare-and-set.
"""
import asyncio
import random
from collections import defaultdict
from typing import Dict, List, Optional

import pytest

import services.firestore_service as firestore_module
from agents.game_master import GameMaster
from engine.errors import AlreadySubmittedError
from engine.quest_config import get_quest_requirement
from models.game import (
    Alignment, GameEvent, GameState, Investigation, PlayerRole, PlayerSeat, QuestAction,
    QuestActionType, QuizVote, RoleConfig, SpecialRole, TeamProposal, Vote, VoteChoice,
)


class InMemoryFirestore:
    def __init__(self):
        self.games: Dict[str, dict] = {}
        self.roles: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.proposals: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.votes: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.quest_actions: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.investigations: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.quiz_votes: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.events: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.lose_next_commit = False

    @staticmethod
    def _create(bucket: dict, key: str, data: dict, code: str, message: str):
        if key in bucket:
            raise AlreadySubmittedError(message, code=code)
        bucket[key] = data

    async def create_game(self, game: GameState, roles: List[PlayerRole]):
        self.games[game.id] = game.model_dump(mode="json")
        for r in roles:
            self.roles[game.id][r.player_id] = r.model_dump(mode="json")

    async def get_game(self, game_id: str) -> Optional[GameState]:
        data = self.games.get(game_id)
        return GameState(**data) if data else None

    async def transition_game(self, game: GameState, expected_version: int) -> bool:
        if self.lose_next_commit:
            self.lose_next_commit = False
            return False
        stored = self.games.get(game.id)
        if stored is None or stored["version"] != expected_version:
            return False
        self.games[game.id] = game.model_dump(mode="json")
        return True

    async def get_roles(self, game_id: str) -> List[PlayerRole]:
        return [PlayerRole(**d) for d in self.roles[game_id].values()]

    async def get_role(self, game_id: str, player_id: str) -> Optional[PlayerRole]:
        data = self.roles[game_id].get(player_id)
        return PlayerRole(**data) if data else None

    async def add_proposal(self, game_id: str, proposal: TeamProposal):
        self._create(self.proposals[game_id], proposal.id, proposal.model_dump(mode="json"),
                     "ALREADY_PROPOSED", "A team has already been proposed")

    async def save_proposal(self, game_id: str, proposal: TeamProposal):
        self.proposals[game_id][proposal.id] = proposal.model_dump(mode="json")

    async def get_proposal(self, game_id: str, proposal_id: str) -> Optional[TeamProposal]:
        data = self.proposals[game_id].get(proposal_id)
        return TeamProposal(**data) if data else None

    async def add_vote(self, game_id: str, vote: Vote):
        self._create(self.votes[game_id], f"{vote.proposal_id}:{vote.player_id}",
                     vote.model_dump(mode="json"), "ALREADY_VOTED", "You have already voted")

    async def get_votes(self, game_id: str, proposal_id: str) -> List[Vote]:
        return [Vote(**d) for d in self.votes[game_id].values() if d["proposal_id"] == proposal_id]

    async def add_quest_action(self, game_id: str, action: QuestAction):
        self._create(self.quest_actions[game_id], f"{action.quest_number}:{action.player_id}",
                     action.model_dump(mode="json"), "ALREADY_SUBMITTED",
                     "You have already submitted your quest action")

    async def get_quest_actions(self, game_id: str, quest_number: int) -> List[QuestAction]:
        return [QuestAction(**d) for d in self.quest_actions[game_id].values()
                if d["quest_number"] == quest_number]

    async def add_investigation(self, game_id: str, investigation: Investigation):
        self._create(self.investigations[game_id], str(investigation.quest_number),
                     investigation.model_dump(mode="json"), "ALREADY_INVESTIGATED",
                     "The Lady of the Lake has already been used this quest")

    async def get_investigations(self, game_id: str) -> List[Investigation]:
        return sorted((Investigation(**d) for d in self.investigations[game_id].values()),
                      key=lambda i: i.quest_number)

    async def add_quiz_vote(self, game_id: str, vote: QuizVote):
        self._create(self.quiz_votes[game_id], vote.voter_id, vote.model_dump(mode="json"),
                     "ALREADY_VOTED", "You have already submitted your quiz vote")

    async def get_quiz_votes(self, game_id: str) -> List[QuizVote]:
        return [QuizVote(**d) for d in self.quiz_votes[game_id].values()]

    async def log_event(self, game_id: str, event: GameEvent) -> bool:
        if event.id in self.events[game_id]:
            return False
        self.events[game_id][event.id] = event.model_dump(mode="json")
        return True

    async def get_events(self, game_id: str, quest=None, visible_only=False) -> List[GameEvent]:
        events = [GameEvent(**d) for d in self.events[game_id].values()]
        if quest is not None:
            events = [e for e in events if e.quest == quest]
        if visible_only:
            events = [e for e in events if e.visible_in_game]
        return sorted(events, key=lambda e: e.timestamp)


@pytest.fixture
def store(monkeypatch):
    fake = InMemoryFirestore()
    monkeypatch.setattr(firestore_module, "_firestore_service", fake)
    return fake


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def gm():
    return GameMaster(rng=random.Random(42))


def seats(n: int) -> List[PlayerSeat]:
    return [PlayerSeat(id=f"p{i}", nickname=f"Player {i}") for i in range(1, n + 1)]


class Table:
    """Drives a game through the game master the way a set of clients would."""

    def __init__(self, gm: GameMaster, store: InMemoryFirestore, game_id: str):
        self.gm = gm
        self.store = store
        self.game_id = game_id

    def run(self, coro):
        return asyncio.run(coro)

    @property
    def game(self) -> GameState:
        return self.run(self.store.get_game(self.game_id))

    @property
    def roles(self) -> Dict[str, PlayerRole]:
        return {r.player_id: r for r in self.run(self.store.get_roles(self.game_id))}

    def player_with(self, role: SpecialRole) -> str:
        return next(pid for pid, r in self.roles.items() if r.special_role == role)

    def players_aligned(self, alignment: Alignment) -> List[str]:
        game = self.game
        roles = self.roles
        return [pid for pid in game.seating_order if roles[pid].alignment == alignment]

    def propose(self, team: List[str]):
        return self.run(self.gm.propose_team(self.game_id, self.game.current_leader_id, team))

    def vote_all(self, choice: VoteChoice):
        result = None
        for pid in self.game.seating_order:
            result = self.run(self.gm.submit_vote(self.game_id, pid, choice))
        return result

    def team_for(self, fail: bool) -> List[str]:
        game = self.game
        size = get_quest_requirement(game.player_count, game.current_quest).size
        good = self.players_aligned(Alignment.GOOD)
        evil = self.players_aligned(Alignment.EVIL)
        if fail:
            needed = get_quest_requirement(game.player_count, game.current_quest).fails
            return (evil[:needed] + good)[:size]
        return good[:size]

    def play_quest(self, fail: bool = False):
        """Propose, approve and play one quest. Evil members fail iff `fail`."""
        team = self.team_for(fail)
        self.propose(team)
        self.vote_all(VoteChoice.APPROVE)
        roles = self.roles
        result = None
        for pid in team:
            evil = roles[pid].alignment == Alignment.EVIL
            action = QuestActionType.FAIL if (fail and evil) else QuestActionType.SUCCESS
            result = self.run(self.gm.submit_quest_action(self.game_id, pid, action))
        return result

    def cont(self):
        return self.run(self.gm.continue_game(self.game_id, self.game.seating_order[0]))


@pytest.fixture
def new_table(gm, store):
    def _make(n: int = 5, config: Optional[RoleConfig] = None, **kwargs) -> Table:
        created = asyncio.run(gm.create_game(seats(n), config or RoleConfig(), **kwargs))
        return Table(gm, store, created["game"].id)
    return _make
