"""Role configuration validation and role pool construction."""
from typing import List, Optional

from models.game import (
    MAX_PLAYERS,
    MIN_PLAYERS,
    ROLE_RATIOS,
    OberonMode,
    RoleConfig,
    RoleConfigValidation,
    SpecialRole,
)
from engine.lady_of_lake import LADY_MIN_RECOMMENDED_PLAYERS

EVIL_RING_MIN_SIZE = 3


def good_special_count(config: RoleConfig) -> int:
    return int(config.merlin) + int(config.percival)


def evil_special_count(config: RoleConfig) -> int:
    return (
        int(config.assassin)
        + int(config.morgana)
        + int(config.mordred)
        + int(config.oberon is not None)
        + int(config.lunatic)
        + int(config.brute)
    )


def hidden_from_merlin_count(config: RoleConfig) -> int:
    return int(config.mordred) + int(config.oberon == OberonMode.CHAOS)


def evil_ring_block_reason(config: RoleConfig, player_count: int) -> Optional[str]:
    """None when the ring can be formed, otherwise why not."""
    ratio = ROLE_RATIOS.get(player_count)
    if ratio is None:
        return f"Invalid player count: {player_count}."
    ring_size = ratio["evil"] - int(config.oberon is not None)
    if ring_size >= EVIL_RING_MIN_SIZE:
        return None
    if config.oberon is not None:
        return (
            f"Requires 3+ non-Oberon evil players. "
            f"With {player_count} players and Oberon, you have {ring_size}."
        )
    return f"Requires 3+ evil players. With {player_count} players, you have {ring_size}."


def validate_role_config(config: RoleConfig, player_count: int) -> RoleConfigValidation:
    errors: List[str] = []
    warnings: List[str] = []

    if not MIN_PLAYERS <= player_count <= MAX_PLAYERS:
        errors.append(
            f"Invalid player count: {player_count}. "
            f"Must be between {MIN_PLAYERS} and {MAX_PLAYERS}."
        )
        return RoleConfigValidation(valid=False, errors=errors, warnings=warnings)
    ratio = ROLE_RATIOS[player_count]

    intel_modes = [config.merlin_decoy, config.merlin_split_intel, config.oberon_split_intel]
    if sum(intel_modes) > 1:
        errors.append(
            "Only one intel mode can be active: Merlin Decoy, Split Intel, "
            "or Oberon Split Intel. Choose one."
        )
    if (config.merlin_decoy or config.merlin_split_intel or config.oberon_split_intel) \
            and not config.merlin:
        errors.append("Intel modes require Merlin to be in the game.")
    if config.oberon_split_intel:
        if config.oberon is None:
            errors.append("Oberon Split Intel Mode requires Oberon (Standard) to be enabled.")
        elif config.oberon == OberonMode.CHAOS:
            errors.append(
                "Oberon Split Intel Mode is not available with Oberon (Chaos) "
                "- Oberon must be visible to Merlin."
            )
    if config.merlin_split_intel and ratio["evil"] - hidden_from_merlin_count(config) < 1:
        errors.append("Split Intel Mode requires at least one evil player visible to Merlin.")

    if config.evil_ring:
        reason = evil_ring_block_reason(config, player_count)
        if reason:
            errors.append(f"Evil Ring Visibility unavailable: {reason}")
        if config.merlin_split_intel or config.oberon_split_intel:
            errors.append("Evil Ring Visibility cannot be combined with a Split Intel mode.")

    good_needed = good_special_count(config)
    if good_needed > ratio["good"]:
        errors.append(
            f"Too many Good special roles ({good_needed}) for {player_count}-player game "
            f"(max {ratio['good']} Good)."
        )
    evil_needed = evil_special_count(config)
    if evil_needed > ratio["evil"]:
        errors.append(
            f"Too many Evil special roles ({evil_needed}) for {player_count}-player game "
            f"(max {ratio['evil']} Evil)."
        )

    if config.percival and not config.morgana:
        warnings.append("Percival works best with Morgana for balance.")
    if config.morgana and not config.percival:
        warnings.append("Morgana's disguise ability has no effect without Percival.")
    if config.lady_of_lake and player_count < LADY_MIN_RECOMMENDED_PLAYERS:
        warnings.append(
            f"Lady of the Lake is recommended for {LADY_MIN_RECOMMENDED_PLAYERS}+ players."
        )
    hidden = hidden_from_merlin_count(config)
    if hidden >= 2:
        warnings.append(
            "Multiple evil players hidden from Merlin may make the game very difficult for Good."
        )
        if config.merlin_split_intel:
            warnings.append(
                "Split Intel Mode with multiple hidden evil players means fewer players "
                "in Certain Evil group."
            )

    return RoleConfigValidation(valid=not errors, errors=errors, warnings=warnings)


def roles_for_config(config: RoleConfig, player_count: int) -> List[SpecialRole]:
    """Full role pool: good specials + servants, then evil specials + minions."""
    ratio = ROLE_RATIOS[player_count]
    good: List[SpecialRole] = []
    if config.merlin:
        good.append(SpecialRole.MERLIN)
    if config.percival:
        good.append(SpecialRole.PERCIVAL)
    good += [SpecialRole.SERVANT] * (ratio["good"] - len(good))

    evil: List[SpecialRole] = []
    if config.assassin:
        evil.append(SpecialRole.ASSASSIN)
    if config.morgana:
        evil.append(SpecialRole.MORGANA)
    if config.mordred:
        evil.append(SpecialRole.MORDRED)
    if config.oberon == OberonMode.STANDARD:
        evil.append(SpecialRole.OBERON_STANDARD)
    elif config.oberon == OberonMode.CHAOS:
        evil.append(SpecialRole.OBERON_CHAOS)
    if config.lunatic:
        evil.append(SpecialRole.LUNATIC)
    if config.brute:
        evil.append(SpecialRole.BRUTE)
    evil += [SpecialRole.MINION] * (ratio["evil"] - len(evil))
    return good + evil
