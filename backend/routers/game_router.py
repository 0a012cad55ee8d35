"""
Game HTTP endpoints.

Routes:
  POST /api/role-config/validate                 — Preview errors/warnings for a role config
  POST /api/games                                — Create a game from a confirmed roster
  GET  /api/games/{game_id}                      — Public game state (roles hidden)
  GET  /api/games/{game_id}/me                   — Private role card + what this player knows
  PUT  /api/games/{game_id}/draft-team           — Leader shares a partial team selection
  POST /api/games/{game_id}/propose              — Leader proposes a team
  POST /api/games/{game_id}/vote                 — Approve / reject the current team
  POST /api/games/{game_id}/quest/action         — Team member plays success / fail
  POST /api/games/{game_id}/continue             — Leave the quest result screen
  POST /api/games/{game_id}/lady-investigate     — Lady of the Lake holder investigates
  POST /api/games/{game_id}/assassin-guess       — Assassin names Merlin
  POST /api/games/{game_id}/merlin-quiz          — Merlin quiz vote (null = skip)
  POST /api/games/{game_id}/complete-parallel-phase — Close the endgame once both sides are done
  GET  /api/games/{game_id}/merlin-quiz/results  — Quiz tally (after the game)
  GET  /api/games/{game_id}/reveal               — All roles (after the game)
  GET  /api/games/{game_id}/events               — Event log (visible only, or all post-game)

The acting player is identified by the X-Player-ID header.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Header, HTTPException, Query

from models.game import (
    CreateGameRequest, CreateGameResponse, ValidateConfigRequest,
    DraftTeamRequest, ProposeTeamRequest, VoteRequest, QuestActionRequest, TargetRequest,
    QuizVoteRequest,
    Phase,
)
from engine.errors import GameRuleError
from engine.phases import allowed_actions
from engine.role_config import validate_role_config
from services.firestore_service import get_firestore_service
from agents.game_master import game_master
from routers.ws_router import manager as ws_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["games"])


def _http_error(exc: GameRuleError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


def _with_public_game(result: Dict[str, Any]) -> Dict[str, Any]:
    """Replace the full GameState (which carries intel) with the public projection."""
    out = dict(result)
    if "game" in out:
        out["game"] = out["game"].to_public()
    return out


@router.post("/role-config/validate")
async def validate_config(body: ValidateConfigRequest):
    return validate_role_config(body.role_config, body.player_count).model_dump()


@router.post("/games", response_model=CreateGameResponse, status_code=201)
async def create_game(body: CreateGameRequest):
    """Seat the roster, assign roles and open the first team-building phase."""
    try:
        created = await game_master.create_game(
            body.players, body.role_config, body.manager_id, body.use_parallel_quiz,
        )
    except GameRuleError as exc:
        raise _http_error(exc)
    game = created["game"]
    logger.info("Game %s created (%d players)", game.id, game.player_count)
    return CreateGameResponse(
        game_id=game.id,
        seating_order=game.seating_order,
        current_leader_id=game.current_leader_id,
        lady_holder_id=game.lady_holder_id,
        warnings=created["warnings"],
    )


@router.get("/games/{game_id}")
async def get_game(game_id: str):
    """
    Public game state, also served to spectators.
    Player roles are NOT included; those come from /me.
    """
    fs = get_firestore_service()
    game = await fs.get_game(game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")

    public = game.to_public()
    public["allowed_actions"] = allowed_actions(game.phase)
    public["current_proposal"] = None
    if game.current_proposal_id:
        proposal = await fs.get_proposal(game_id, game.current_proposal_id)
        if proposal:
            public["current_proposal"] = {
                "id": proposal.id,
                "leader_id": proposal.leader_id,
                "team_member_ids": proposal.team_member_ids,
                "proposal_number": proposal.proposal_number,
            }
    return public


@router.get("/games/{game_id}/me")
async def get_my_view(game_id: str, x_player_id: str = Header(..., alias="X-Player-ID")):
    try:
        view = await game_master.get_player_view(game_id, x_player_id)
    except GameRuleError as exc:
        raise _http_error(exc)
    return {
        "role": view["role"].model_dump(mode="json"),
        "visibility": view["visibility"].model_dump(mode="json"),
        "quest_constraints": view["quest_constraints"],
        "quiz_eligibility": (
            view["quiz_eligibility"].model_dump(mode="json")
            if view["quiz_eligibility"] else None
        ),
        "investigations": [
            {"quest_number": i.quest_number, "target_id": i.target_id, "result": i.result.value}
            for i in view["investigations"]
        ],
    }


@router.put("/games/{game_id}/draft-team")
async def update_draft_team(
    game_id: str, body: DraftTeamRequest,
    x_player_id: str = Header(..., alias="X-Player-ID"),
):
    try:
        result = await game_master.update_draft_team(game_id, x_player_id, body.team_member_ids)
    except GameRuleError as exc:
        raise _http_error(exc)
    if result["applied"]:
        await ws_manager.broadcast(game_id, {
            "type": "draft_update",
            "draftTeam": result["draft_team"],
            "questNumber": result["quest_number"],
            "requiredSize": result["required_size"],
        })
    return {
        "draft_team": result["draft_team"],
        "quest_number": result["quest_number"],
        "required_size": result["required_size"],
        "applied": result["applied"],
    }


@router.post("/games/{game_id}/propose")
async def propose_team(
    game_id: str, body: ProposeTeamRequest,
    x_player_id: str = Header(..., alias="X-Player-ID"),
):
    try:
        result = await game_master.propose_team(game_id, x_player_id, body.team_member_ids)
    except GameRuleError as exc:
        raise _http_error(exc)
    await ws_manager.broadcast_game_update(game_id, result)
    out = _with_public_game(result)
    out["proposal"] = result["proposal"].model_dump(mode="json")
    return out


@router.post("/games/{game_id}/vote")
async def submit_vote(
    game_id: str, body: VoteRequest,
    x_player_id: str = Header(..., alias="X-Player-ID"),
):
    try:
        result = await game_master.submit_vote(game_id, x_player_id, body.vote)
    except GameRuleError as exc:
        raise _http_error(exc)

    if not result["resolved"]:
        await ws_manager.broadcast(game_id, {
            "type": "vote_submitted",
            "playerId": x_player_id,
            "votesCast": result["votes_cast"],
            "votesNeeded": result["votes_needed"],
        })
        return result

    if result["applied"]:
        await ws_manager.broadcast(game_id, {
            "type": "votes_revealed",
            "status": result["status"].value,
            "votes": result["votes"],
        })
        await ws_manager.broadcast_game_update(game_id, result)
    out = _with_public_game(result)
    out["status"] = result["status"].value
    return out


@router.post("/games/{game_id}/quest/action")
async def submit_quest_action(
    game_id: str, body: QuestActionRequest,
    x_player_id: str = Header(..., alias="X-Player-ID"),
):
    try:
        result = await game_master.submit_quest_action(game_id, x_player_id, body.action)
    except GameRuleError as exc:
        raise _http_error(exc)

    if not result["resolved"]:
        await ws_manager.broadcast(game_id, {
            "type": "action_submitted",
            "submitted": result["actions_submitted"],
            "teamSize": result["team_size"],
        })
        return result

    quest_result = result["result"]
    if result["applied"]:
        await ws_manager.broadcast(game_id, {
            "type": "quest_result",
            "questNumber": quest_result.quest_number,
            "outcome": quest_result.outcome.value,
            "cards": [a.value for a in quest_result.shuffled_actions],
        })
        await ws_manager.broadcast_game_update(game_id, result)
    out = _with_public_game(result)
    out["result"] = quest_result.model_dump(mode="json", exclude={"team_member_ids"})
    return out


@router.post("/games/{game_id}/continue")
async def continue_game(game_id: str, x_player_id: str = Header(..., alias="X-Player-ID")):
    try:
        result = await game_master.continue_game(game_id, x_player_id)
    except GameRuleError as exc:
        raise _http_error(exc)
    await ws_manager.broadcast_game_update(game_id, result)
    return _with_public_game(result)


@router.post("/games/{game_id}/lady-investigate")
async def lady_investigate(
    game_id: str, body: TargetRequest,
    x_player_id: str = Header(..., alias="X-Player-ID"),
):
    """The alignment result goes only to the investigator, in this response."""
    try:
        result = await game_master.investigate(game_id, x_player_id, body.target_id)
    except GameRuleError as exc:
        raise _http_error(exc)
    await ws_manager.broadcast_game_update(game_id, result)
    out = _with_public_game(result)
    out["result"] = result["result"].value
    return out


def _endgame_response(result: Dict[str, Any]) -> Dict[str, Any]:
    out = _with_public_game(result)
    for key in ("winner", "win_reason"):
        if out.get(key) is not None:
            out[key] = out[key].value
    return out


@router.post("/games/{game_id}/assassin-guess")
async def assassin_guess(
    game_id: str, body: TargetRequest,
    x_player_id: str = Header(..., alias="X-Player-ID"),
):
    try:
        result = await game_master.submit_assassin_guess(game_id, x_player_id, body.target_id)
    except GameRuleError as exc:
        raise _http_error(exc)
    if result.get("completed") and not result.get("already_completed"):
        await ws_manager.broadcast_game_update(game_id, result)
    else:
        await ws_manager.broadcast(game_id, {"type": "assassin_submitted"})
    return _endgame_response(result)


@router.post("/games/{game_id}/merlin-quiz")
async def merlin_quiz_vote(
    game_id: str, body: QuizVoteRequest,
    x_player_id: str = Header(..., alias="X-Player-ID"),
):
    try:
        result = await game_master.submit_quiz_vote(
            game_id, x_player_id, body.suspected_player_id
        )
    except GameRuleError as exc:
        raise _http_error(exc)
    if result.get("completed") and "game" in result:
        if not result["already_completed"]:
            await ws_manager.broadcast_game_update(game_id, result)
    else:
        await ws_manager.broadcast(game_id, {
            "type": "quiz_progress",
            "votesSubmitted": result["votes_submitted"],
            "eligibleCount": result["eligible_count"],
            "remainingSeconds": result["quiz_remaining_seconds"],
            "complete": result["completed"],
        })
    return _endgame_response(result)


@router.post("/games/{game_id}/complete-parallel-phase")
async def complete_parallel_phase(game_id: str):
    """Idempotent: every caller after the first gets the stored result back."""
    try:
        result = await game_master.complete_parallel_phase(game_id)
    except GameRuleError as exc:
        raise _http_error(exc)
    if result.get("completed") and not result.get("already_completed"):
        await ws_manager.broadcast_game_update(game_id, result)
    return _endgame_response(result)


@router.get("/games/{game_id}/merlin-quiz/results")
async def merlin_quiz_results(game_id: str):
    try:
        return await game_master.get_quiz_results(game_id)
    except GameRuleError as exc:
        raise _http_error(exc)


@router.get("/games/{game_id}/reveal")
async def reveal(game_id: str):
    try:
        result = await game_master.get_reveal(game_id)
    except GameRuleError as exc:
        raise _http_error(exc)
    return {
        "winner": result["winner"].value,
        "win_reason": result["win_reason"].value,
        "assassin_guess_id": result["assassin_guess_id"],
        "roles": [r.model_dump(mode="json") for r in result["roles"]],
    }


@router.get("/games/{game_id}/events")
async def get_events(
    game_id: str,
    visible_only: bool = Query(
        True, description="True = public events only; False = full log (post-game reveal)"
    ),
):
    """
    Game event log.
    During play: only public events.
    After game ends: set visible_only=false for the hidden-action reveal.
    """
    fs = get_firestore_service()
    game = await fs.get_game(game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")

    if not visible_only and game.phase != Phase.GAME_OVER:
        raise HTTPException(
            status_code=403,
            detail="Full event log is only available after the game has ended.",
        )

    events = await fs.get_events(game_id, visible_only=visible_only)
    return {
        "game_id": game_id,
        "events": [
            {
                "id": e.id,
                "type": e.type,
                "quest": e.quest,
                "phase": e.phase.value,
                "actor": e.actor,
                "target": e.target,
                "data": e.data,
                "timestamp": e.timestamp.isoformat(),
            }
            for e in events
        ],
    }
