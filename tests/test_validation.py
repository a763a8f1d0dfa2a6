"""Tests for competition validation rules."""

import pytest

from cupcore.validation import (
    NotFoundError,
    ValidationError,
    require,
    validate_bracket_size,
    validate_explicit_pairs,
    validate_group_size,
    validate_legs,
    validate_membership,
    validate_round_robin_cycles,
    validate_score,
    validate_starters,
    validate_unique_players,
)


class TestValidateBracketSize:
    """Test cases for validate_bracket_size function."""

    @pytest.mark.parametrize("count", [2, 4, 8, 16, 32])
    def test_allowed_sizes(self, count):
        assert validate_bracket_size(count) == (True, "")

    @pytest.mark.parametrize("count", [0, 1, 3, 6, 12, 64])
    def test_rejected_sizes(self, count):
        is_valid, msg = validate_bracket_size(count)
        assert not is_valid
        assert f"(got {count})" in msg


class TestValidateLegs:
    """Test cases for validate_legs function."""

    def test_positive_integers(self):
        assert validate_legs(1) == (True, "")
        assert validate_legs(3) == (True, "")

    def test_invalid_values(self):
        """Zero, negatives, non-integers and booleans are rejected."""
        for legs in (0, -1, 1.5, "2", True):
            is_valid, msg = validate_legs(legs)
            assert not is_valid
            assert "legs must be a positive integer" in msg


class TestValidateExplicitPairs:
    """Test cases for validate_explicit_pairs function."""

    def test_valid_pairs(self):
        assert validate_explicit_pairs([(1, 4), (2, 3)], [1, 2, 3, 4]) == (True, "")

    def test_self_pair(self):
        is_valid, msg = validate_explicit_pairs([(1, 1), (2, 3)], [1, 2, 3])
        assert not is_valid
        assert "cannot be paired with itself" in msg

    def test_wrong_pair_length(self):
        is_valid, msg = validate_explicit_pairs([(1, 2, 3)], [1, 2, 3])
        assert not is_valid
        assert "exactly two teams" in msg

    def test_unregistered_team(self):
        is_valid, msg = validate_explicit_pairs([(1, 9), (2, 3)], [1, 2, 3, 4])
        assert not is_valid
        assert "[9]" in msg

    def test_team_used_twice(self):
        is_valid, msg = validate_explicit_pairs([(1, 2), (2, 3)], [1, 2, 3, 4])
        assert not is_valid
        assert "more than once: [2]" in msg

    def test_missing_team(self):
        is_valid, msg = validate_explicit_pairs([(1, 2)], [1, 2, 3, 4])
        assert not is_valid
        assert "missing: [3, 4]" in msg


class TestGroupRules:
    """Test cases for round-robin group checks."""

    def test_group_size(self):
        assert validate_group_size(2) == (True, "")
        assert validate_group_size(1)[0] is False
        assert validate_group_size(0)[0] is False

    def test_cycles(self):
        assert validate_round_robin_cycles(1) == (True, "")
        assert validate_round_robin_cycles(2) == (True, "")
        assert validate_round_robin_cycles(3)[0] is False


class TestRosterRules:
    """Test cases for roster checks."""

    def test_starters_within_limit(self):
        assert validate_starters(5, 5) == (True, "")
        assert validate_starters(0, 11) == (True, "")

    def test_too_many_starters(self):
        is_valid, msg = validate_starters(6, 5)
        assert not is_valid
        assert msg == "Too many starters for this format (maximum: 5, got: 6)"

    def test_unique_players(self):
        assert validate_unique_players([1, 2, 3]) == (True, "")
        assert validate_unique_players([3, 1, 3, 2, 1]) == (False, "Players listed more than once: [1, 3]")

    def test_membership(self):
        assert validate_membership(4, (4, 7)) == (True, "")
        assert validate_membership(5, (4, 7))[0] is False


def test_validate_score():
    assert validate_score(0, 0) == (True, "")
    assert validate_score(-1, 2)[0] is False


def test_require_raises_with_message():
    require((True, ""))
    with pytest.raises(ValidationError, match="boom"):
        require((False, "boom"))


def test_not_found_error_message():
    error = NotFoundError("Tournament", 12)
    assert str(error) == "Tournament 12 not found"
    assert (error.entity, error.entity_id) == ("Tournament", 12)
