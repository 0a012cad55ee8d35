"""
Visibility matrix.

  Merlin       all evil except Mordred and Oberon (Chaos)
  Percival     Merlin + Morgana, indistinguishable
  Servant      nothing
  Evil         other evil except Oberon (either mode)
  Oberon       nothing

Intel modes change Merlin's or the evil team's view:
  decoy             one random good player is mixed into Merlin's list
  split intel       Merlin sees a "certain evil" group and a 1-evil/1-good pair
  oberon split      Oberon is always in the pair; the rest are certain
  evil ring         each non-Oberon evil player knows exactly one other

`draw_intel` makes every random pick once, at game start. `resolve_visibility`
is a pure function of (roles, config, intel) so it can be recomputed anywhere.
Known-player lists are in seating order so list position never hints at a role.
"""
import random
from typing import Dict, List, Optional, Sequence

from models.game import (
    Alignment,
    IntelDraw,
    KnownPlayer,
    OBERON_ROLES,
    PlayerRole,
    RoleConfig,
    SpecialRole,
    SplitIntelGroups,
    Visibility,
)
from engine.errors import InvariantViolation
from engine.role_config import EVIL_RING_MIN_SIZE, hidden_from_merlin_count

_HIDDEN_FROM_MERLIN = frozenset({SpecialRole.MORDRED, SpecialRole.OBERON_CHAOS})

_EVIL_NOTES: Dict[SpecialRole, str] = {
    SpecialRole.ASSASSIN: "If Good wins 3 quests, you get one chance to identify Merlin!",
    SpecialRole.MORDRED: "Merlin does not know you are evil. Lead from the shadows!",
    SpecialRole.LUNATIC: "You must play Fail on every quest you join.",
    SpecialRole.BRUTE: "You may only play Fail on the first three quests.",
    SpecialRole.MINION: "Work with your fellow minions to sabotage the quests!",
}


def _known(roles: Sequence[PlayerRole]) -> List[KnownPlayer]:
    return [KnownPlayer(id=r.player_id, name=r.nickname) for r in roles]


def _in_seat_order(roles: Sequence[PlayerRole], ids: Sequence[str]) -> List[PlayerRole]:
    wanted = set(ids)
    return [r for r in roles if r.player_id in wanted]


def visible_to_merlin(roles: Sequence[PlayerRole]) -> List[PlayerRole]:
    return [
        r for r in roles
        if r.alignment == Alignment.EVIL and r.special_role not in _HIDDEN_FROM_MERLIN
    ]


def _decoy_candidates(roles: Sequence[PlayerRole]) -> List[PlayerRole]:
    return [
        r for r in roles
        if r.alignment == Alignment.GOOD and r.special_role != SpecialRole.MERLIN
    ]


def ring_members(roles: Sequence[PlayerRole]) -> List[PlayerRole]:
    return [
        r for r in roles
        if r.alignment == Alignment.EVIL and r.special_role not in OBERON_ROLES
    ]


# ── Random draws (game start only) ────────────────────────────────────────────

def draw_intel(
    roles: Sequence[PlayerRole], config: RoleConfig, rng: Optional[random.Random] = None
) -> IntelDraw:
    rng = rng or random.Random()
    intel = IntelDraw()

    if config.merlin_decoy:
        candidates = _decoy_candidates(roles)
        if not candidates:
            raise InvariantViolation("Decoy mode: no eligible good player")
        intel.decoy_player_id = rng.choice(candidates).player_id

    if config.merlin_split_intel:
        visible = visible_to_merlin(roles)
        if not visible:
            raise InvariantViolation("Split intel: no evil player visible to Merlin")
        pool = list(visible)
        rng.shuffle(pool)
        certain_count = 2 if len(pool) >= 3 else 1 if len(pool) == 2 else 0
        goods = _decoy_candidates(roles)
        if not goods:
            raise InvariantViolation("Split intel: no eligible good player")
        intel.split_certain_ids = [r.player_id for r in pool[:certain_count]]
        intel.split_mixed_ids = [pool[certain_count].player_id, rng.choice(goods).player_id]

    elif config.oberon_split_intel:
        oberon = [r for r in roles if r.special_role == SpecialRole.OBERON_STANDARD]
        if not oberon:
            raise InvariantViolation("Oberon split intel: Oberon (Standard) not in game")
        goods = _decoy_candidates(roles)
        if not goods:
            raise InvariantViolation("Oberon split intel: no eligible good player")
        intel.split_certain_ids = [
            r.player_id for r in visible_to_merlin(roles)
            if r.special_role != SpecialRole.OBERON_STANDARD
        ]
        intel.split_mixed_ids = [oberon[0].player_id, rng.choice(goods).player_id]

    if config.evil_ring:
        members = ring_members(roles)
        if len(members) < EVIL_RING_MIN_SIZE:
            raise InvariantViolation(
                f"Evil ring needs {EVIL_RING_MIN_SIZE}+ non-Oberon evil, got {len(members)}"
            )
        order = [r.player_id for r in members]
        rng.shuffle(order)
        intel.ring_order = order

    return intel


# ── Per-player resolution ─────────────────────────────────────────────────────

def _merlin_visibility(
    roles: Sequence[PlayerRole], config: RoleConfig, intel: IntelDraw
) -> Visibility:
    hidden = hidden_from_merlin_count(config)

    if config.merlin_split_intel or config.oberon_split_intel:
        return Visibility(
            label="Split Intel",
            hidden_count=hidden,
            ability_note=(
                "Everyone in the first group is evil. "
                "In the second group, one player is evil and one is good."
            ),
            split_intel=SplitIntelGroups(
                certain_evil=_known(_in_seat_order(roles, intel.split_certain_ids)),
                mixed=_known(_in_seat_order(roles, intel.split_mixed_ids)),
            ),
        )

    visible_ids = [r.player_id for r in visible_to_merlin(roles)]
    has_decoy = config.merlin_decoy and intel.decoy_player_id is not None
    if has_decoy:
        visible_ids.append(intel.decoy_player_id)
        warning = "One of these players is actually good!"
        if hidden == 1:
            warning += " Also, 1 evil player is hidden from you."
        elif hidden > 1:
            warning += f" Also, {hidden} evil players are hidden from you."
        note = ""
    else:
        warning = ""
        note = ""
        if hidden == 1:
            note = "One evil player is hidden from you!"
        elif hidden > 1:
            note = f"{hidden} evil players are hidden from you!"

    return Visibility(
        known_players=_known(_in_seat_order(roles, visible_ids)),
        label="Evil Players Known to You",
        hidden_count=hidden,
        ability_note=note,
        has_decoy=has_decoy,
        decoy_warning=warning,
    )


def _percival_visibility(roles: Sequence[PlayerRole], config: RoleConfig) -> Visibility:
    candidates = [
        r for r in roles if r.special_role in (SpecialRole.MERLIN, SpecialRole.MORGANA)
    ]
    return Visibility(
        known_players=_known(candidates),
        label="One of These is Merlin" if len(candidates) > 1 else "Merlin",
        ability_note=(
            "Protect Merlin, but beware - Morgana appears the same to you!"
            if config.morgana
            else "Protect Merlin at all costs!"
        ),
    )


def _evil_note(me: PlayerRole, config: RoleConfig) -> str:
    if me.special_role == SpecialRole.MORGANA:
        if config.percival:
            return "You appear as Merlin to Percival. Use this to confuse and deceive!"
        return "Percival is not in this game, so your disguise ability has no effect."
    return _EVIL_NOTES.get(me.special_role, _EVIL_NOTES[SpecialRole.MINION])


def _evil_visibility(
    me: PlayerRole, roles: Sequence[PlayerRole], config: RoleConfig, intel: IntelDraw
) -> Visibility:
    note = _evil_note(me, config)
    has_oberon = config.oberon is not None

    if config.evil_ring and intel.ring_order:
        order = intel.ring_order
        if me.player_id not in order:
            raise InvariantViolation(f"Evil player {me.player_id} missing from ring")
        successor_id = order[(order.index(me.player_id) + 1) % len(order)]
        successor = next(r for r in roles if r.player_id == successor_id)
        teammate = KnownPlayer(id=successor.player_id, name=successor.nickname)
        return Visibility(
            known_players=[teammate],
            label="Your Evil Ring Contact",
            hidden_count=len(order) - 2 + int(has_oberon),
            ability_note=note,
            ring_teammate=teammate,
        )

    teammates = [r for r in ring_members(roles) if r.player_id != me.player_id]
    return Visibility(
        known_players=_known(teammates),
        label="Your Evil Teammates",
        ability_note=note,
    )


def _oberon_visibility(me: PlayerRole) -> Visibility:
    if me.special_role == SpecialRole.OBERON_STANDARD:
        note = (
            "You work alone. Your teammates don't know you, and you don't know them. "
            "Merlin can see you."
        )
    else:
        note = (
            "Complete isolation! No one knows you are evil - not even Merlin! "
            "Work alone to sabotage the quests."
        )
    return Visibility(ability_note=note)


def resolve_visibility(
    player_id: str,
    roles: Sequence[PlayerRole],
    config: RoleConfig,
    intel: IntelDraw,
) -> Visibility:
    """`roles` must be every player's role in seating order."""
    me = next((r for r in roles if r.player_id == player_id), None)
    if me is None:
        raise InvariantViolation(f"No role for player {player_id}")

    if me.special_role == SpecialRole.MERLIN:
        return _merlin_visibility(roles, config, intel)
    if me.special_role == SpecialRole.PERCIVAL:
        return _percival_visibility(roles, config)
    if me.special_role == SpecialRole.SERVANT:
        return Visibility(
            ability_note="Stay vigilant! Work with your fellow knights to identify the traitors."
        )
    if me.special_role in OBERON_ROLES:
        return _oberon_visibility(me)
    return _evil_visibility(me, roles, config, intel)


def resolve_all(
    roles: Sequence[PlayerRole], config: RoleConfig, intel: IntelDraw
) -> Dict[str, Visibility]:
    return {r.player_id: resolve_visibility(r.player_id, roles, config, intel) for r in roles}
