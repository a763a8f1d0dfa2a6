"""Validation rules for competition structure and rosters.

Every engine operation validates its whole input before writing anything.
The ``validate_*`` helpers return ``(is_valid, error_message)`` tuples; the
operations turn a failed check into a ``ValidationError``.
"""

from collections import Counter
from typing import Iterable, Optional


ALLOWED_BRACKET_SIZES = (2, 4, 8, 16, 32)


class EngineError(Exception):
    """Base class for errors reported to callers of the engine."""

    pass


class ValidationError(EngineError):
    """Raised when input fails validation. Nothing has been written."""

    pass


class NotFoundError(EngineError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


def require(result: tuple[bool, str]) -> None:
    """Raise ValidationError for a failed ``(is_valid, message)`` check."""
    is_valid, error_msg = result
    if not is_valid:
        raise ValidationError(error_msg)


def validate_bracket_size(team_count: int) -> tuple[bool, str]:
    """Validate the number of teams for knockout bracket generation.

    Examples:
        >>> validate_bracket_size(8)
        (True, '')
        >>> validate_bracket_size(6)
        (False, 'Bracket generation needs 2/4/8/16/32 teams (got 6)')
    """
    if team_count not in ALLOWED_BRACKET_SIZES:
        return False, f"Bracket generation needs 2/4/8/16/32 teams (got {team_count})"
    return True, ""


def validate_legs(legs: int) -> tuple[bool, str]:
    """Validate the number of legs per tie."""
    if not isinstance(legs, int) or isinstance(legs, bool) or legs < 1:
        return False, f"legs must be a positive integer, got {legs!r}"
    return True, ""


def validate_explicit_pairs(
    pairs: Iterable[tuple[int, int]], enrolled_team_ids: Iterable[int]
) -> tuple[bool, str]:
    """Validate caller-supplied first-round pairs.

    Every enrolled team must appear exactly once and nothing else may appear.

    Args:
        pairs: (team_id, team_id) tuples using club ids
        enrolled_team_ids: Club ids enrolled in the tournament

    Returns:
        Tuple of (is_valid, error_message)
    """
    enrolled = set(enrolled_team_ids)
    pairs = list(pairs)

    for pair in pairs:
        if len(pair) != 2:
            return False, f"Each pair must contain exactly two teams, got {pair!r}"
        a, b = pair
        if a == b:
            return False, f"Team {a} cannot be paired with itself"

    used = [team_id for pair in pairs for team_id in pair]
    unregistered = sorted({t for t in used if t not in enrolled})
    if unregistered:
        return False, f"pairs contains teams not enrolled in the tournament: {unregistered}"

    duplicates = sorted(t for t, count in Counter(used).items() if count > 1)
    if duplicates:
        return False, f"pairs uses teams more than once: {duplicates}"

    if len(used) != len(enrolled):
        missing = sorted(enrolled - set(used))
        return False, f"pairs must cover every enrolled team (missing: {missing})"

    return True, ""


def validate_group_size(team_count: int) -> tuple[bool, str]:
    """Validate a round-robin group size."""
    if team_count < 2:
        return False, f"A round robin needs at least 2 teams, got {team_count}"
    return True, ""


def validate_round_robin_cycles(rounds: int) -> tuple[bool, str]:
    """Validate single (1) or double (2) round robin."""
    if rounds not in (1, 2):
        return False, f"rounds must be 1 or 2, got {rounds!r}"
    return True, ""


def validate_starters(starter_count: int, max_starters: int) -> tuple[bool, str]:
    """Validate the number of starters against the team format limit."""
    if starter_count > max_starters:
        return (
            False,
            f"Too many starters for this format (maximum: {max_starters}, got: {starter_count})",
        )
    return True, ""


def validate_score(team1_score: int, team2_score: int) -> tuple[bool, str]:
    """Validate a manually entered match score."""
    if team1_score < 0 or team2_score < 0:
        return False, "Scores cannot be negative"
    return True, ""


def validate_unique_players(player_ids: Iterable[int]) -> tuple[bool, str]:
    """Validate that a roster lists each player at most once."""
    duplicates = sorted(p for p, count in Counter(player_ids).items() if count > 1)
    if duplicates:
        return False, f"Players listed more than once: {duplicates}"
    return True, ""


def validate_membership(
    team_id: int, participant_ids: tuple[Optional[int], Optional[int]]
) -> tuple[bool, str]:
    """Validate that a tournament team is one of the two sides of a match."""
    if team_id not in participant_ids:
        return False, f"Tournament team {team_id} does not play in this match"
    return True, ""
