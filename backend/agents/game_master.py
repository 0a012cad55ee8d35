"""
Game Master: deterministic Avalon orchestration, no LLM.

Responsibilities:
- Game creation (seating, role assignment, Lady of the Lake holder)
- Team drafts and proposals, vote resolution and the rejection track
- Quest actions and quest resolution
- Lady of the Lake investigations
- Endgame: sequential assassination or the parallel assassin + Merlin quiz
- Append-only event log

Every operation reads the game, validates against the pure rules in engine/,
and commits with a compare-and-set on the game version. Losing that race is
not an error: the caller gets the state the winner wrote (`applied=False`).
"""
import logging
import random
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from config import settings
from models.game import (
    _utcnow,
    EndgameOutcome,
    GameEvent,
    GameState,
    Investigation,
    Phase,
    PlayerRole,
    PlayerSeat,
    QuestAction,
    QuestActionType,
    QuestOutcome,
    QuestResult,
    QuizEligibility,
    QuizVote,
    RoleConfig,
    SpecialRole,
    TeamProposal,
    Vote,
    VoteChoice,
)
from engine.errors import (
    AlreadySubmittedError,
    GameNotFoundError,
    InvalidTargetError,
    InvariantViolation,
    NotAssassinError,
    NotInGameError,
    NotLadyHolderError,
    NotQuizEligibleError,
    NotTeamMemberError,
    RoleConfigError,
    WrongPhaseError,
)
from engine.phases import PHASE_NAMES, PhaseEvent, assert_transition, is_terminal, next_phase
from engine.voting import (
    apply_rejection, check_leader, next_leader_index, normalize_draft_team, resolve_votes, tally,
    validate_draft_selection, validate_proposal,
)
from engine.quests import (
    quest_action_constraints, resolve_quest, shuffle_for_display, validate_quest_action,
)
from engine.quest_config import QUESTS_TO_WIN, get_quest_requirement
from engine.win_conditions import (
    check_assassin_guess, evaluate_win_conditions, plan_endgame, winner_announcement,
)
from engine.lady_of_lake import (
    designate_lady_holder, investigation_result, should_trigger_lady_phase,
    validate_investigation_target,
)
from engine.endgame import (
    EndgameBarrier,
    calculate_quiz_results,
    get_quiz_eligibility,
    is_quiz_complete,
    quiz_remaining_seconds,
    quiz_started_at,
    resolve_endgame,
    validate_quiz_vote,
)
from engine.role_config import validate_role_config
from engine.visibility import resolve_visibility
from agents.role_assigner import role_assigner
from services.firestore_service import get_firestore_service

logger = logging.getLogger(__name__)


class GameMaster:
    """
    Deterministic game logic engine.
    All methods read/write Firestore via FirestoreService.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random(settings.rng_seed)

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _load(self, game_id: str) -> GameState:
        game = await get_firestore_service().get_game(game_id)
        if not game:
            raise GameNotFoundError(f"Game {game_id} not found")
        return game

    @staticmethod
    def _require_seated(game: GameState, player_id: str) -> None:
        if player_id not in game.seating_order:
            raise NotInGameError("You are not a player in this game")

    @staticmethod
    def _require_phase(game: GameState, *phases: Phase) -> None:
        if game.phase not in phases:
            expected = " or ".join(PHASE_NAMES[p] for p in phases)
            raise WrongPhaseError(
                f"Not allowed during {PHASE_NAMES[game.phase]} (needs {expected})"
            )

    @staticmethod
    def _rotated_leader(game: GameState) -> Dict[str, Any]:
        idx = next_leader_index(game.leader_index, game.player_count)
        return {"leader_index": idx, "current_leader_id": game.seating_order[idx]}

    @staticmethod
    def _seated_roles(game: GameState, roles: Iterable[PlayerRole]) -> List[PlayerRole]:
        by_id = {r.player_id: r for r in roles}
        missing = [pid for pid in game.seating_order if pid not in by_id]
        if missing:
            raise InvariantViolation(f"[{game.id}] Missing roles for {missing}")
        return [by_id[pid] for pid in game.seating_order]

    @staticmethod
    def _find_role(roles: Iterable[PlayerRole], role: SpecialRole) -> Optional[str]:
        return next((r.player_id for r in roles if r.special_role == role), None)

    async def _role(self, game: GameState, player_id: str) -> PlayerRole:
        role = await get_firestore_service().get_role(game.id, player_id)
        if role is None:
            raise InvariantViolation(f"[{game.id}] No role stored for {player_id}")
        return role

    async def _commit(self, game: GameState, updates: Dict[str, Any]) -> Optional[GameState]:
        """
        Apply `updates` on top of `game` if nobody else wrote since it was read.
        Returns the new state, or None when the race was lost.
        """
        dst = updates.get("phase", game.phase)
        if dst != game.phase:
            assert_transition(game.phase, dst)
        new = game.model_copy(update={**updates, "version": game.version + 1})
        if not await get_firestore_service().transition_game(new, game.version):
            logger.warning(
                "[%s] Lost commit race at version %d (%s)", game.id, game.version, dst.value
            )
            return None
        if dst != game.phase:
            logger.info("[%s] Phase: %s → %s (quest %d)",
                        game.id, game.phase.value, dst.value, new.current_quest)
        return new

    async def _log(self, game: GameState, event_type: str, event_id: Optional[str] = None,
                   **fields) -> None:
        event = GameEvent(
            id=event_id or str(uuid.uuid4()),
            type=event_type,
            quest=game.current_quest,
            phase=game.phase,
            **fields,
        )
        if not await get_firestore_service().log_event(game.id, event):
            logger.debug("[%s] Event %s already logged", game.id, event.id)

    async def _log_game_over(self, game: GameState) -> None:
        await self._log(
            game, "game_over", event_id="game_over",
            data={
                "winner": game.winner.value,
                "reason": game.win_reason.value,
                "announcement": winner_announcement(game.winner, game.win_reason),
            },
        )
        logger.info("[%s] Game over: %s (%s)", game.id, game.winner.value, game.win_reason.value)

    # ── Game creation ─────────────────────────────────────────────────────────

    async def create_game(
        self,
        players: List[PlayerSeat],
        role_config: RoleConfig,
        manager_id: Optional[str] = None,
        use_parallel_quiz: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Seat a confirmed roster, assign roles and persist the new game.

        Returns:
        {
            "game": GameState,
            "assignments": List[PlayerRole],
            "visibility": Dict[player_id, Visibility],
            "warnings": List[str],
        }
        Raises RoleConfigError if the configuration does not fit the roster.
        """
        validation = validate_role_config(role_config, len(players))
        if not validation.valid:
            raise RoleConfigError("; ".join(validation.errors))
        if len({p.id for p in players}) != len(players):
            raise RoleConfigError("Duplicate player ids in roster", code="DUPLICATE_PLAYER")

        game_id = str(uuid.uuid4())[:8].upper()
        by_id = {p.id: p for p in players}
        seating, leader_index = role_assigner.initialize_seating(list(by_id), self.rng)
        assignment = role_assigner.assign_roles(
            [by_id[pid] for pid in seating], role_config, self.rng, game_id=game_id
        )

        game = GameState(
            id=game_id,
            seating_order=seating,
            player_names={p.id: p.nickname for p in players},
            leader_index=leader_index,
            current_leader_id=seating[leader_index],
            role_config=role_config,
            intel=assignment["intel"],
            lady_enabled=role_config.lady_of_lake,
            lady_holder_id=(
                designate_lady_holder(seating, manager_id) if role_config.lady_of_lake else None
            ),
            use_parallel_quiz=(
                settings.use_parallel_quiz if use_parallel_quiz is None else use_parallel_quiz
            ),
        )
        fs = get_firestore_service()
        await fs.create_game(game, assignment["assignments"])
        await self._log(
            game, "game_started", event_id="game_started",
            data={"player_count": game.player_count, "first_leader": game.current_leader_id},
        )
        logger.info("[%s] Game created with %d players, leader %s",
                    game.id, game.player_count, game.current_leader_id)
        return {
            "game": game,
            "assignments": assignment["assignments"],
            "visibility": assignment["visibility"],
            "warnings": validation.warnings,
        }

    # ── Player view ───────────────────────────────────────────────────────────

    def _eligibility(
        self, game: GameState, role: PlayerRole
    ) -> Optional[QuizEligibility]:
        outcome = self._quiz_outcome(game)
        if outcome is None:
            return None
        return get_quiz_eligibility(
            role.special_role, outcome, game.role_config.morgana, game.role_config.assassin
        )

    @staticmethod
    def _quiz_outcome(game: GameState) -> Optional[EndgameOutcome]:
        """
        The outcome the Merlin quiz is judged against. Sequential games that
        end without an endgame phase still quiz at game over, scored by quests.
        """
        if game.endgame_outcome is not None:
            return game.endgame_outcome
        if game.phase != Phase.GAME_OVER or game.use_parallel_quiz:
            return None
        successes = sum(1 for r in game.quest_results if r.outcome == QuestOutcome.SUCCESS)
        return EndgameOutcome.GOOD_WIN if successes >= QUESTS_TO_WIN else EndgameOutcome.EVIL_WIN

    async def get_player_view(self, game_id: str, player_id: str) -> Dict[str, Any]:
        """
        Private state for one player:
        {
            "role": PlayerRole,
            "visibility": Visibility,
            "quest_constraints": Optional[dict],   # only while on a quest team
            "quiz_eligibility": Optional[QuizEligibility],
            "investigations": List[Investigation], # results this player obtained
        }
        """
        game = await self._load(game_id)
        self._require_seated(game, player_id)
        fs = get_firestore_service()
        roles = self._seated_roles(game, await fs.get_roles(game_id))
        me = next(r for r in roles if r.player_id == player_id)

        constraints = None
        if game.phase == Phase.QUEST and game.current_proposal_id:
            proposal = await fs.get_proposal(game_id, game.current_proposal_id)
            if proposal and player_id in proposal.team_member_ids:
                constraints = quest_action_constraints(
                    me.alignment, me.special_role, game.current_quest
                )

        investigations = [
            i for i in await fs.get_investigations(game_id) if i.investigator_id == player_id
        ]
        return {
            "role": me,
            "visibility": resolve_visibility(player_id, roles, game.role_config, game.intel),
            "quest_constraints": constraints,
            "quiz_eligibility": self._eligibility(game, me),
            "investigations": investigations,
        }

    # ── Team proposal & voting ────────────────────────────────────────────────

    async def update_draft_team(
        self, game_id: str, player_id: str, team_member_ids: List[str]
    ) -> Dict[str, Any]:
        """
        Publish the leader's in-progress selection so the table can watch it
        form. No phase change; the draft is cleared once a team is proposed.

        Returns {"applied", "draft_team", "quest_number", "required_size", "game"}.
        """
        game = await self._load(game_id)
        self._require_seated(game, player_id)
        self._require_phase(game, Phase.TEAM_BUILDING)
        check_leader(player_id, game.current_leader_id)
        draft = normalize_draft_team(team_member_ids)
        validate_draft_selection(draft, game.current_quest, game.seating_order)

        new = await self._commit(game, {"draft_team": draft})
        applied = new is not None
        if applied:
            logger.debug("[%s] Draft team: %s", game_id, draft)
        else:
            new = await self._load(game_id)
        return {
            "applied": applied,
            "draft_team": new.draft_team,
            "quest_number": new.current_quest,
            "required_size": get_quest_requirement(new.player_count, new.current_quest).size,
            "game": new,
        }

    async def propose_team(
        self, game_id: str, player_id: str, team_member_ids: List[str]
    ) -> Dict[str, Any]:
        game = await self._load(game_id)
        self._require_seated(game, player_id)
        self._require_phase(game, Phase.TEAM_BUILDING)
        validate_proposal(team_member_ids, game.current_quest, player_id, game)

        # One proposal per (quest, attempt); vote_track counts this quest's rejections
        attempt = game.vote_track + 1
        proposal = TeamProposal(
            id=f"q{game.current_quest}-p{attempt}",
            quest_number=game.current_quest,
            proposal_number=attempt,
            leader_id=player_id,
            team_member_ids=list(team_member_ids),
        )
        fs = get_firestore_service()
        await fs.add_proposal(game_id, proposal)

        new = await self._commit(game, {
            "phase": next_phase(game.phase, PhaseEvent.TEAM_PROPOSED),
            "current_proposal_id": proposal.id,
            "draft_team": [],
        })
        if new is None:
            return {"applied": False, "proposal": proposal, "game": await self._load(game_id)}

        await self._log(new, "team_proposed", actor=player_id,
                        data={"proposal_id": proposal.id, "team": proposal.team_member_ids,
                              "proposal_number": attempt})
        return {"applied": True, "proposal": proposal, "game": new}

    async def submit_vote(self, game_id: str, player_id: str, choice: VoteChoice) -> Dict[str, Any]:
        """
        Record a vote. When the last vote arrives the proposal is resolved.

        Returns {"resolved": False, "votes_cast", "votes_needed"} while waiting, or
        {"resolved": True, "applied", "status", "approve_count", "reject_count",
         "votes": {player_id: choice}, "game"} once resolved.
        """
        game = await self._load(game_id)
        self._require_seated(game, player_id)
        self._require_phase(game, Phase.VOTING)
        if not game.current_proposal_id:
            raise InvariantViolation(f"[{game_id}] Voting phase without a proposal")

        fs = get_firestore_service()
        await fs.add_vote(game_id, Vote(
            proposal_id=game.current_proposal_id, player_id=player_id, choice=choice,
        ))
        votes = await fs.get_votes(game_id, game.current_proposal_id)
        if len(votes) < game.player_count:
            return {
                "resolved": False,
                "votes_cast": len(votes),
                "votes_needed": game.player_count,
            }

        approve, reject = tally(votes)
        resolution = resolve_votes(approve, reject, game.player_count)

        if resolution.approved:
            updates: Dict[str, Any] = {
                "phase": next_phase(game.phase, PhaseEvent.PROPOSAL_APPROVED),
                "vote_track": 0,
            }
        else:
            track, fifth = apply_rejection(game.vote_track)
            if fifth:
                check = evaluate_win_conditions([r.outcome for r in game.quest_results], track)
                updates = {
                    "phase": next_phase(game.phase, PhaseEvent.FIFTH_REJECTION),
                    "vote_track": track,
                    "winner": check.winner,
                    "win_reason": check.reason,
                    "ended_at": _utcnow(),
                }
            else:
                updates = {
                    "phase": next_phase(game.phase, PhaseEvent.PROPOSAL_REJECTED),
                    "vote_track": track,
                    "current_proposal_id": None,
                    **self._rotated_leader(game),
                }

        new = await self._commit(game, updates)
        result = {
            "resolved": True,
            "applied": new is not None,
            "status": resolution.status,
            "approve_count": resolution.approve_count,
            "reject_count": resolution.reject_count,
            "votes": {v.player_id: v.choice.value for v in votes},
        }
        if new is None:
            result["game"] = await self._load(game_id)
            return result

        proposal = await fs.get_proposal(game_id, game.current_proposal_id)
        if proposal:
            await fs.save_proposal(game_id, proposal.model_copy(update={
                "status": resolution.status,
                "approve_count": resolution.approve_count,
                "reject_count": resolution.reject_count,
            }))
        await self._log(new, "votes_revealed", event_id=f"votes_{game.current_proposal_id}",
                        data={"proposal_id": game.current_proposal_id,
                              "status": resolution.status.value,
                              "votes": result["votes"],
                              "vote_track": new.vote_track})
        if new.phase == Phase.GAME_OVER:
            await self._log_game_over(new)
        result["game"] = new
        return result

    # ── Quest ─────────────────────────────────────────────────────────────────

    async def submit_quest_action(
        self, game_id: str, player_id: str, action: QuestActionType
    ) -> Dict[str, Any]:
        game = await self._load(game_id)
        self._require_seated(game, player_id)
        self._require_phase(game, Phase.QUEST)

        fs = get_firestore_service()
        proposal = None
        if game.current_proposal_id:
            proposal = await fs.get_proposal(game_id, game.current_proposal_id)
        if proposal is None:
            raise InvariantViolation(f"[{game_id}] Quest phase without an approved team")
        if player_id not in proposal.team_member_ids:
            raise NotTeamMemberError("Only team members can submit quest actions")

        role = await self._role(game, player_id)
        validate_quest_action(role.alignment, action, role.special_role, game.current_quest)
        await fs.add_quest_action(game_id, QuestAction(
            quest_number=game.current_quest, player_id=player_id, action=action,
        ))

        actions = await fs.get_quest_actions(game_id, game.current_quest)
        team_size = len(proposal.team_member_ids)
        if len(actions) < team_size:
            return {"resolved": False, "actions_submitted": len(actions), "team_size": team_size}

        requirement = get_quest_requirement(game.player_count, game.current_quest)
        played = [a.action for a in actions]
        resolution = resolve_quest(played, requirement.fails)
        result = QuestResult(
            quest_number=game.current_quest,
            outcome=resolution.outcome,
            success_count=resolution.success_count,
            fail_count=resolution.fail_count,
            fails_required=requirement.fails,
            team_member_ids=proposal.team_member_ids,
            shuffled_actions=shuffle_for_display(played, self.rng),
        )
        quest_results = game.quest_results + [result]

        check = evaluate_win_conditions([r.outcome for r in quest_results], game.vote_track)
        plan = plan_endgame(check, game.role_config.merlin, game.role_config.assassin,
                            game.use_parallel_quiz)
        updates: Dict[str, Any] = {"quest_results": quest_results}
        if plan and plan.phase == Phase.ASSASSIN:
            updates["phase"] = next_phase(game.phase, PhaseEvent.ASSASSINATION_OPENED)
            updates["endgame_outcome"] = plan.outcome
        elif plan and plan.phase == Phase.PARALLEL_QUIZ:
            updates["phase"] = next_phase(game.phase, PhaseEvent.PARALLEL_QUIZ_OPENED)
            updates["endgame_outcome"] = plan.outcome
        else:
            # Terminal outcomes without an endgame are shown first, then decided on continue
            updates["phase"] = next_phase(game.phase, PhaseEvent.QUEST_COMPLETED)

        new = await self._commit(game, updates)
        if new is None:
            return {"resolved": True, "applied": False, "result": result,
                    "game": await self._load(game_id)}

        await self._log(new, "quest_completed", event_id=f"quest_{result.quest_number}",
                        data={"outcome": result.outcome.value,
                              "fail_count": result.fail_count,
                              "success_count": result.success_count,
                              "fails_required": result.fails_required,
                              "team": result.team_member_ids})
        logger.info("[%s] Quest %d: %s (%d fail / %d needed)", game_id, result.quest_number,
                    result.outcome.value, result.fail_count, result.fails_required)
        return {"resolved": True, "applied": True, "result": result, "game": new}

    async def continue_game(self, game_id: str, player_id: str) -> Dict[str, Any]:
        """Leave quest_result: decide the game, summon the Lady, or start the next quest."""
        game = await self._load(game_id)
        self._require_seated(game, player_id)
        if is_terminal(game.phase):
            return {"applied": False, "game": game}
        self._require_phase(game, Phase.QUEST_RESULT)

        check = evaluate_win_conditions([r.outcome for r in game.quest_results], game.vote_track)
        plan = plan_endgame(check, game.role_config.merlin, game.role_config.assassin,
                            game.use_parallel_quiz)
        if plan and plan.phase == Phase.GAME_OVER:
            updates: Dict[str, Any] = {
                "phase": next_phase(game.phase, PhaseEvent.GAME_DECIDED),
                "winner": plan.winner,
                "win_reason": plan.reason,
                "ended_at": _utcnow(),
            }
        elif plan:
            event = (PhaseEvent.ASSASSINATION_OPENED if plan.phase == Phase.ASSASSIN
                     else PhaseEvent.PARALLEL_QUIZ_OPENED)
            updates = {"phase": next_phase(game.phase, event), "endgame_outcome": plan.outcome}
        else:
            investigations = await get_firestore_service().get_investigations(game_id)
            if should_trigger_lady_phase(
                game.lady_enabled,
                game.current_quest,
                game.lady_holder_id,
                game.seating_order,
                [i.target_id for i in investigations],
                [i.investigator_id for i in investigations],
            ):
                updates = {"phase": next_phase(game.phase, PhaseEvent.LADY_SUMMONED)}
            else:
                updates = {
                    "phase": next_phase(game.phase, PhaseEvent.NEXT_QUEST),
                    "current_quest": game.current_quest + 1,
                    "current_proposal_id": None,
                    **self._rotated_leader(game),
                }

        new = await self._commit(game, updates)
        if new is None:
            return {"applied": False, "game": await self._load(game_id)}
        if new.phase == Phase.GAME_OVER:
            await self._log_game_over(new)
        return {"applied": True, "game": new}

    # ── Lady of the Lake ──────────────────────────────────────────────────────

    async def investigate(self, game_id: str, player_id: str, target_id: str) -> Dict[str, Any]:
        """
        The holder learns the target's alignment (never the role). The Lady
        then passes to the target and the next quest begins.
        Returns {"target_id", "result": Alignment, "game"}; the result is for
        the holder only.
        """
        game = await self._load(game_id)
        self._require_seated(game, player_id)
        self._require_phase(game, Phase.LADY_OF_LAKE)
        if player_id != game.lady_holder_id:
            raise NotLadyHolderError("Only the Lady of the Lake holder can investigate")

        fs = get_firestore_service()
        investigations = await fs.get_investigations(game_id)
        validate_investigation_target(
            target_id,
            player_id,
            game.seating_order,
            [i.target_id for i in investigations],
            [i.investigator_id for i in investigations],
        )
        target = await self._role(game, target_id)
        investigation = Investigation(
            quest_number=game.current_quest,
            investigator_id=player_id,
            target_id=target_id,
            result=investigation_result(target.alignment),
        )
        await fs.add_investigation(game_id, investigation)

        new = await self._commit(game, {
            "phase": next_phase(game.phase, PhaseEvent.NEXT_QUEST),
            "lady_holder_id": target_id,
            "current_quest": game.current_quest + 1,
            "current_proposal_id": None,
            **self._rotated_leader(game),
        })
        if new is None:
            new = await self._load(game_id)
        else:
            await self._log(game, "lady_investigation", actor=player_id, target=target_id)
            await self._log(game, "lady_result", actor=player_id, target=target_id,
                            data={"result": investigation.result.value}, visible_in_game=False)
        return {"target_id": target_id, "result": investigation.result, "game": new}

    # ── Endgame ───────────────────────────────────────────────────────────────

    async def submit_assassin_guess(
        self, game_id: str, player_id: str, target_id: str
    ) -> Dict[str, Any]:
        game = await self._load(game_id)
        self._require_seated(game, player_id)
        self._require_phase(game, Phase.ASSASSIN, Phase.PARALLEL_QUIZ)
        if game.endgame_outcome != EndgameOutcome.GOOD_WIN:
            raise WrongPhaseError("There is nothing to assassinate after an Evil victory")

        fs = get_firestore_service()
        roles = await fs.get_roles(game_id)
        me = next((r for r in roles if r.player_id == player_id), None)
        if me is None or me.special_role != SpecialRole.ASSASSIN:
            raise NotAssassinError("Only the Assassin can submit a guess")
        if game.assassin_guess_id is not None:
            raise AlreadySubmittedError("The Assassin has already guessed", code="ALREADY_GUESSED")
        if target_id == player_id or target_id not in game.seating_order:
            raise InvalidTargetError("Invalid assassination target")
        merlin_id = self._find_role(roles, SpecialRole.MERLIN)
        if merlin_id is None:
            raise InvariantViolation(f"[{game_id}] Assassination without Merlin")

        if game.phase == Phase.ASSASSIN:
            check = check_assassin_guess(target_id, merlin_id)
            new = await self._commit(game, {
                "phase": next_phase(game.phase, PhaseEvent.GAME_DECIDED),
                "assassin_guess_id": target_id,
                "winner": check.winner,
                "win_reason": check.reason,
                "ended_at": _utcnow(),
            })
            if new is None:
                raise AlreadySubmittedError("The Assassin has already guessed",
                                            code="ALREADY_GUESSED")
            await self._log(game, "assassin_guess", actor=player_id, target=target_id,
                            data={"correct": target_id == merlin_id})
            await self._log_game_over(new)
            return {"recorded": True, "completed": True, "game": new}

        new = await self._commit(game, {"assassin_guess_id": target_id})
        if new is None:
            raise AlreadySubmittedError("The Assassin has already guessed", code="ALREADY_GUESSED")
        # Hidden until the game ends so the quiz is not influenced
        await self._log(game, "assassin_guess", actor=player_id, target=target_id,
                        data={"correct": target_id == merlin_id}, visible_in_game=False)
        completion = await self.complete_parallel_phase(game_id)
        return {"recorded": True, **completion}

    async def submit_quiz_vote(
        self,
        game_id: str,
        player_id: str,
        suspected_player_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Record a Merlin quiz guess. Parallel games quiz during `parallel_quiz`;
        sequential games with a Merlin quiz once the game is over.

        Returns the parallel completion result, or for a game-over quiz
        {"recorded", "completed", "votes_submitted", "eligible_count",
         "quiz_remaining_seconds"}.
        """
        game = await self._load(game_id)
        validate_quiz_vote(player_id, suspected_player_id, game.seating_order)
        if game.use_parallel_quiz:
            self._require_phase(game, Phase.PARALLEL_QUIZ)
        else:
            self._require_phase(game, Phase.GAME_OVER)
            if not game.role_config.merlin:
                raise WrongPhaseError("There is no Merlin in this game", code="NO_MERLIN")

        fs = get_firestore_service()
        roles = self._seated_roles(game, await fs.get_roles(game_id))
        me = next(r for r in roles if r.player_id == player_id)
        eligibility = self._eligibility(game, me)
        if eligibility is None or not eligibility.can_take_quiz:
            raise NotQuizEligibleError("You cannot take the Merlin quiz")

        eligible_count = sum(1 for r in roles if self._eligibility(game, r).can_take_quiz)
        timeout = settings.quiz_timeout_seconds
        votes = await fs.get_quiz_votes(game_id)
        if is_quiz_complete(len(votes), eligible_count, quiz_started_at(votes), now, timeout):
            raise WrongPhaseError("The Merlin quiz has closed", code="QUIZ_CLOSED")

        await fs.add_quiz_vote(game_id, QuizVote(
            voter_id=player_id, suspected_player_id=suspected_player_id,
        ))
        if game.use_parallel_quiz:
            completion = await self.complete_parallel_phase(game_id, now)
            return {"recorded": True, **completion}

        votes = await fs.get_quiz_votes(game_id)
        started = quiz_started_at(votes)
        return {
            "recorded": True,
            "completed": is_quiz_complete(len(votes), eligible_count, started, now, timeout),
            "votes_submitted": len(votes),
            "eligible_count": eligible_count,
            "quiz_remaining_seconds": quiz_remaining_seconds(started, now, timeout),
        }

    async def complete_parallel_phase(
        self, game_id: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Try to close the parallel endgame. Safe to call any number of times
        from any caller: only the first successful commit decides the game.

        Returns {"completed": False, "waiting_on", "quiz_remaining_seconds",
        "votes_submitted", "eligible_count"} while either condition is open,
        otherwise {"completed": True, "already_completed", "winner", "win_reason", "game"}.
        """
        game = await self._load(game_id)
        if game.phase == Phase.GAME_OVER:
            return self._completed(game, already=True)
        self._require_phase(game, Phase.PARALLEL_QUIZ)
        if game.endgame_outcome is None:
            raise InvariantViolation(f"[{game_id}] Parallel quiz without an endgame outcome")

        fs = get_firestore_service()
        roles = self._seated_roles(game, await fs.get_roles(game_id))
        votes = await fs.get_quiz_votes(game_id)
        eligible_count = sum(1 for r in roles if self._eligibility(game, r).can_take_quiz)
        started = quiz_started_at(votes)
        timeout = settings.quiz_timeout_seconds
        barrier = EndgameBarrier(
            outcome=game.endgame_outcome,
            has_assassin=game.role_config.assassin,
            assassin_submitted=game.assassin_guess_id is not None,
            quiz_complete=is_quiz_complete(len(votes), eligible_count, started, now, timeout),
        )
        if not barrier.is_open():
            return {
                "completed": False,
                "waiting_on": barrier.waiting_on(),
                "quiz_remaining_seconds": quiz_remaining_seconds(started, now, timeout),
                "votes_submitted": len(votes),
                "eligible_count": eligible_count,
            }

        outcome = resolve_endgame(
            game.endgame_outcome, game.assassin_guess_id,
            self._find_role(roles, SpecialRole.MERLIN),
        )
        new = await self._commit(game, {
            "phase": next_phase(game.phase, PhaseEvent.GAME_DECIDED),
            "winner": outcome.winner,
            "win_reason": outcome.reason,
            "ended_at": _utcnow(),
        })
        if new is None:
            return self._completed(await self._load(game_id), already=True)
        await self._log_game_over(new)
        return self._completed(new, already=False)

    @staticmethod
    def _completed(game: GameState, already: bool) -> Dict[str, Any]:
        return {
            "completed": True,
            "already_completed": already,
            "winner": game.winner,
            "win_reason": game.win_reason,
            "game": game,
        }

    async def get_quiz_results(
        self, game_id: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        game = await self._load(game_id)
        if game.phase != Phase.GAME_OVER:
            raise WrongPhaseError("Quiz results are available once the game has ended")
        fs = get_firestore_service()
        roles = self._seated_roles(game, await fs.get_roles(game_id))
        merlin_id = self._find_role(roles, SpecialRole.MERLIN)
        if merlin_id is None:
            raise WrongPhaseError("There is no Merlin in this game", code="NO_MERLIN")
        votes = await fs.get_quiz_votes(game_id)
        names = {pid: game.player_names.get(pid, pid) for pid in game.seating_order}

        # A parallel quiz closed with the game; a game-over quiz runs on its own clock
        complete = True
        if not game.use_parallel_quiz:
            eligible_count = sum(1 for r in roles if self._eligibility(game, r).can_take_quiz)
            complete = is_quiz_complete(
                len(votes), eligible_count, quiz_started_at(votes), now,
                settings.quiz_timeout_seconds,
            )
        return {"quiz_complete": complete, **calculate_quiz_results(votes, names, merlin_id)}

    async def get_reveal(self, game_id: str) -> Dict[str, Any]:
        """Post-game role reveal."""
        game = await self._load(game_id)
        if game.phase != Phase.GAME_OVER:
            raise WrongPhaseError("Roles are revealed once the game has ended")
        roles = self._seated_roles(game, await get_firestore_service().get_roles(game_id))
        return {
            "winner": game.winner,
            "win_reason": game.win_reason,
            "roles": roles,
            "assassin_guess_id": game.assassin_guess_id,
        }


# Module-level singleton
game_master = GameMaster()
