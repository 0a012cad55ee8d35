"""
WebSocket Hub: real-time push notifications.

URL: /ws/{game_id}?playerId={player_id}

Connection flow:
  1. Validate game exists and the player is seated
  2. Accept connection and register it
  3. Send private "connected" message with the public game snapshot
  4. Message loop (ping → pong; everything else is rejected, game actions go over HTTP)
  5. On disconnect: unregister

Server → client message types:
  phase_change     — game moved to a new phase (public snapshot attached)
  draft_update     — leader changed the in-progress team selection
  vote_submitted   — someone voted (no choice revealed until resolution)
  votes_revealed   — proposal resolved, every vote shown
  action_submitted — a team member played a quest card (card hidden)
  quest_result     — quest resolved (shuffled cards)
  quiz_progress    — Merlin quiz vote count (also for the game-over quiz)
  game_over        — winner and reason

Delivery is best-effort: a failed send drops the socket, never the game.
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from models.game import GameState, Phase
from engine.phases import PHASE_DESCRIPTIONS, PHASE_NAMES
from services.firestore_service import get_firestore_service

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """
    Tracks active WebSocket connections per game.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {game_id: {player_id: WebSocket}}
        self._games: Dict[str, Dict[str, WebSocket]] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, game_id: str, player_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._games.setdefault(game_id, {})[player_id] = ws
        logger.debug("[%s] %s connected (%d total)", game_id, player_id, self.count(game_id))

    def disconnect(self, game_id: str, player_id: str) -> None:
        game_conns = self._games.get(game_id, {})
        game_conns.pop(player_id, None)
        if not game_conns:
            self._games.pop(game_id, None)

    def count(self, game_id: str) -> int:
        return len(self._games.get(game_id, {}))

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_to(self, game_id: str, player_id: str, message: Dict) -> None:
        """Send a private message to a single player."""
        ws = self._games.get(game_id, {}).get(player_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning("[%s] send_to %s failed: %s", game_id, player_id, exc)
                self.disconnect(game_id, player_id)

    async def broadcast(
        self,
        game_id: str,
        message: Dict,
        exclude: Optional[str] = None,
    ) -> None:
        """Broadcast a message to all connected players in a game."""
        for pid, ws in list(self._games.get(game_id, {}).items()):
            if pid == exclude:
                continue
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning("[%s] broadcast to %s failed: %s", game_id, pid, exc)
                self.disconnect(game_id, pid)

    # ── High-level game event helpers ──────────────────────────────────────────

    async def broadcast_phase_change(self, game: GameState) -> None:
        await self.broadcast(game.id, {
            "type": "phase_change",
            "phase": game.phase.value,
            "phaseName": PHASE_NAMES[game.phase],
            "description": PHASE_DESCRIPTIONS[game.phase],
            "quest": game.current_quest,
            "game": game.to_public(),
        })
        if game.phase == Phase.GAME_OVER:
            await self.broadcast(game.id, {
                "type": "game_over",
                "winner": game.winner.value if game.winner else None,
                "reason": game.win_reason.value if game.win_reason else None,
            })

    async def broadcast_game_update(self, game_id: str, result: Dict[str, Any]) -> None:
        """Push whatever the game master just committed (no-op when nothing was applied)."""
        game = result.get("game")
        if isinstance(game, GameState) and result.get("applied", True):
            await self.broadcast_phase_change(game)


manager = ConnectionManager()


@router.websocket("/ws/{game_id}")
async def websocket_endpoint(
    ws: WebSocket,
    game_id: str,
    playerId: str = Query(..., description="Seated player id"),
):
    fs = get_firestore_service()

    # ── Validate game and player ───────────────────────────────────────────────
    game = await fs.get_game(game_id)
    if not game:
        await ws.close(code=4404, reason="Game not found")
        return
    if playerId not in game.seating_order:
        await ws.close(code=4403, reason="Player not found in this game")
        return

    # ── Accept and register ────────────────────────────────────────────────────
    await manager.connect(game_id, playerId, ws)
    await manager.send_to(game_id, playerId, {
        "type": "connected",
        "playerId": playerId,
        "gameState": game.to_public(),
    })

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_to(game_id, playerId, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue

            if data.get("type") == "ping":
                await manager.send_to(game_id, playerId, {"type": "pong"})
            else:
                await manager.send_to(game_id, playerId, {
                    "type": "error",
                    "message": f"Unsupported message type: {data.get('type')}",
                    "code": "UNKNOWN_TYPE",
                })
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(game_id, playerId)
        logger.debug("[%s] %s disconnected", game_id, playerId)
