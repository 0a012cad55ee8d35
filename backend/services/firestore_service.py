import asyncio
import os
from typing import Optional, List, Any

from models.game import (
    GameState, GameEvent, PlayerRole, TeamProposal, Vote, QuestAction,
    Investigation, QuizVote,
)
from engine.errors import AlreadySubmittedError
from config import settings


class FirestoreService:
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop.

    Layout:
      games/{game_id}                                GameState (versioned)
      games/{game_id}/roles/{player_id}              PlayerRole
      games/{game_id}/proposals/{proposal_id}        TeamProposal
      games/{game_id}/votes/{proposal_id}:{player}   Vote
      games/{game_id}/quest_actions/{quest}:{player} QuestAction
      games/{game_id}/investigations/{quest}         Investigation
      games/{game_id}/quiz_votes/{player_id}         QuizVote
      games/{game_id}/events/{event_id}              GameEvent (append-only)

    Submissions use deterministic document ids written with create(), so a
    second submission by the same actor for the same entity fails with
    AlreadySubmittedError no matter how the requests interleave.
    """

    def __init__(self):
        if settings.firestore_emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
        # Lazy import so the service can be instantiated before GCP creds exist
        from google.cloud import firestore
        self._firestore = firestore
        self.db = firestore.Client(project=settings.google_cloud_project or None)

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    # ── Collection helpers ────────────────────────────────────────────────────

    def _game_ref(self, game_id: str):
        return self.db.collection("games").document(game_id)

    def _sub(self, game_id: str, name: str):
        return self._game_ref(game_id).collection(name)

    async def _create_unique(self, ref, data: dict, code: str, message: str):
        from google.api_core.exceptions import AlreadyExists
        try:
            await self._run(lambda: ref.create(data))
        except AlreadyExists:
            raise AlreadySubmittedError(message, code=code)

    # ── Game ──────────────────────────────────────────────────────────────────

    async def create_game(self, game: GameState, roles: List[PlayerRole]):
        def _write():
            batch = self.db.batch()
            batch.create(self._game_ref(game.id), game.model_dump(mode="json"))
            for r in roles:
                batch.set(self._sub(game.id, "roles").document(r.player_id), r.model_dump(mode="json"))
            batch.commit()
        await self._run(_write)

    async def get_game(self, game_id: str) -> Optional[GameState]:
        doc = await self._run(lambda: self._game_ref(game_id).get())
        if doc.exists:
            return GameState(**doc.to_dict())
        return None

    async def transition_game(self, game: GameState, expected_version: int) -> bool:
        """
        Compare-and-set: write `game` only if the stored version still equals
        `expected_version`. Returns False when another writer got there first.
        """
        ref = self._game_ref(game.id)
        data = game.model_dump(mode="json")
        firestore = self._firestore

        @firestore.transactional
        def _apply(transaction) -> bool:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists or snapshot.get("version") != expected_version:
                return False
            transaction.set(ref, data)
            return True

        return await self._run(lambda: _apply(self.db.transaction()))

    # ── Roles ─────────────────────────────────────────────────────────────────

    async def get_roles(self, game_id: str) -> List[PlayerRole]:
        docs = await self._run(lambda: list(self._sub(game_id, "roles").stream()))
        return [PlayerRole(**d.to_dict()) for d in docs]

    async def get_role(self, game_id: str, player_id: str) -> Optional[PlayerRole]:
        doc = await self._run(lambda: self._sub(game_id, "roles").document(player_id).get())
        if doc.exists:
            return PlayerRole(**doc.to_dict())
        return None

    # ── Proposals & votes ─────────────────────────────────────────────────────

    async def add_proposal(self, game_id: str, proposal: TeamProposal):
        ref = self._sub(game_id, "proposals").document(proposal.id)
        await self._create_unique(
            ref, proposal.model_dump(mode="json"), "ALREADY_PROPOSED",
            "A team has already been proposed",
        )

    async def save_proposal(self, game_id: str, proposal: TeamProposal):
        ref = self._sub(game_id, "proposals").document(proposal.id)
        await self._run(lambda: ref.set(proposal.model_dump(mode="json")))

    async def get_proposal(self, game_id: str, proposal_id: str) -> Optional[TeamProposal]:
        doc = await self._run(lambda: self._sub(game_id, "proposals").document(proposal_id).get())
        if doc.exists:
            return TeamProposal(**doc.to_dict())
        return None

    async def add_vote(self, game_id: str, vote: Vote):
        ref = self._sub(game_id, "votes").document(f"{vote.proposal_id}:{vote.player_id}")
        await self._create_unique(
            ref, vote.model_dump(mode="json"), "ALREADY_VOTED", "You have already voted"
        )

    async def get_votes(self, game_id: str, proposal_id: str) -> List[Vote]:
        query = self._sub(game_id, "votes").where("proposal_id", "==", proposal_id)
        docs = await self._run(lambda: list(query.stream()))
        return [Vote(**d.to_dict()) for d in docs]

    # ── Quest actions ─────────────────────────────────────────────────────────

    async def add_quest_action(self, game_id: str, action: QuestAction):
        ref = self._sub(game_id, "quest_actions").document(
            f"{action.quest_number}:{action.player_id}"
        )
        await self._create_unique(
            ref, action.model_dump(mode="json"), "ALREADY_SUBMITTED",
            "You have already submitted your quest action",
        )

    async def get_quest_actions(self, game_id: str, quest_number: int) -> List[QuestAction]:
        query = self._sub(game_id, "quest_actions").where("quest_number", "==", quest_number)
        docs = await self._run(lambda: list(query.stream()))
        return [QuestAction(**d.to_dict()) for d in docs]

    # ── Lady of the Lake ──────────────────────────────────────────────────────

    async def add_investigation(self, game_id: str, investigation: Investigation):
        ref = self._sub(game_id, "investigations").document(str(investigation.quest_number))
        await self._create_unique(
            ref, investigation.model_dump(mode="json"), "ALREADY_INVESTIGATED",
            "The Lady of the Lake has already been used this quest",
        )

    async def get_investigations(self, game_id: str) -> List[Investigation]:
        docs = await self._run(lambda: list(self._sub(game_id, "investigations").stream()))
        return sorted(
            (Investigation(**d.to_dict()) for d in docs), key=lambda i: i.quest_number
        )

    # ── Merlin quiz ───────────────────────────────────────────────────────────

    async def add_quiz_vote(self, game_id: str, vote: QuizVote):
        ref = self._sub(game_id, "quiz_votes").document(vote.voter_id)
        await self._create_unique(
            ref, vote.model_dump(mode="json"), "ALREADY_VOTED",
            "You have already submitted your quiz vote",
        )

    async def get_quiz_votes(self, game_id: str) -> List[QuizVote]:
        docs = await self._run(lambda: list(self._sub(game_id, "quiz_votes").stream()))
        return [QuizVote(**d.to_dict()) for d in docs]

    # ── Events (append-only audit log) ───────────────────────────────────────

    async def log_event(self, game_id: str, event: GameEvent) -> bool:
        """Append an event. Returns False if an event with this id already exists."""
        from google.api_core.exceptions import AlreadyExists
        ref = self._sub(game_id, "events").document(event.id)
        try:
            await self._run(lambda: ref.create(event.model_dump(mode="json")))
        except AlreadyExists:
            return False
        return True

    async def get_events(
        self, game_id: str, quest: Optional[int] = None, visible_only: bool = False
    ) -> List[GameEvent]:
        ref: Any = self._sub(game_id, "events")
        if quest is not None:
            ref = ref.where("quest", "==", quest)
        if visible_only:
            ref = ref.where("visible_in_game", "==", True)
        docs = await self._run(lambda: list(ref.order_by("timestamp").stream()))
        return [GameEvent(**d.to_dict()) for d in docs]


_firestore_service: Optional["FirestoreService"] = None


def get_firestore_service() -> "FirestoreService":
    """Lazy singleton, initialised on first call rather than at import time.
    This prevents credential errors from crashing the app before FastAPI boots.
    """
    global _firestore_service
    if _firestore_service is None:
        _firestore_service = FirestoreService()
    return _firestore_service
