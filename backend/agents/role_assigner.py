"""
Role Assigner: seating, role shuffling and the visibility matrix.

Responsibilities:
- Randomise seating order and the first leader
- Validate the role configuration against the player count
- Shuffle the role pool onto the seated players
- Make the one-off intel draws (decoy, split intel, evil ring)
- Resolve what every player knows at game start

Pure: the caller injects the RNG and persists the result. Called once by the
game master when a game is created.
"""
import logging
import random
from typing import Any, Dict, List, Optional, Sequence, Tuple

from models.game import PlayerRole, PlayerSeat, RoleConfig, alignment_of
from engine.errors import InvariantViolation
from engine.role_config import roles_for_config, validate_role_config
from engine.visibility import draw_intel, resolve_all

logger = logging.getLogger(__name__)


class RoleAssigner:
    """
    Assigns Avalon roles to a confirmed roster.

    ROLE_RATIOS fixes the good/evil split for 5-10 players; Merlin and the
    Assassin are added whenever the config enables them, optional specials
    next, and the remaining slots become Servants / Minions.
    """

    def initialize_seating(
        self, player_ids: Sequence[str], rng: Optional[random.Random] = None
    ) -> Tuple[List[str], int]:
        """Shuffled seating order and a random first leader index."""
        rng = rng or random.Random()
        seating = list(player_ids)
        rng.shuffle(seating)
        return seating, rng.randrange(len(seating))

    def assign_roles(
        self,
        players: Sequence[PlayerSeat],
        role_config: RoleConfig,
        rng: Optional[random.Random] = None,
        game_id: str = "-",
    ) -> Dict[str, Any]:
        """
        Assign one role per player. `players` must already be in seating order.

        Returns:
        {
            "assignments": List[PlayerRole],          # seating order
            "intel": IntelDraw,                       # random picks, fixed for the game
            "visibility": Dict[player_id, Visibility],
        }
        Raises InvariantViolation if the config cannot fit this player count;
        callers run validate_role_config first to surface a readable error.
        """
        rng = rng or random.Random()
        n = len(players)
        validation = validate_role_config(role_config, n)
        if not validation.valid:
            raise InvariantViolation(
                f"Cannot assign roles for {n} players: {'; '.join(validation.errors)}"
            )
        if len({p.id for p in players}) != n:
            raise InvariantViolation("Duplicate player ids in roster")

        pool = roles_for_config(role_config, n)
        if len(pool) != n:
            raise InvariantViolation(f"Role pool has {len(pool)} roles for {n} players")
        rng.shuffle(pool)

        assignments = [
            PlayerRole(
                player_id=p.id,
                nickname=p.nickname,
                alignment=alignment_of(role),
                special_role=role,
            )
            for p, role in zip(players, pool)
        ]
        intel = draw_intel(assignments, role_config, rng)
        visibility = resolve_all(assignments, role_config, intel)

        counts: Dict[str, int] = {}
        for a in assignments:
            counts[a.special_role.value] = counts.get(a.special_role.value, 0) + 1
        logger.info("[%s] Roles assigned for %d players: %s", game_id, n, counts)

        return {"assignments": assignments, "intel": intel, "visibility": visibility}


# Module-level singleton
role_assigner = RoleAssigner()
