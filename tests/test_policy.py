"""Unit tests for auth/policy.py -- rank derivation and password strength.

Covers:
- rank_for() at every threshold and just below it
- rank never gets worse as problems_solved grows
- password_problems() names each missing rule
- check_password_strength() raises WeakPassword listing the problems
"""

import pytest

from auth.errors import WeakPassword
from auth.policy import DEFAULT_RANK, check_password_strength, password_problems, rank_for


class TestRankFor:
    @pytest.mark.parametrize(
        "solved, expected",
        [
            (0, 7),
            (9, 7),
            (10, 6),
            (19, 6),
            (20, 5),
            (39, 5),
            (40, 4),
            (59, 4),
            (60, 3),
            (79, 3),
            (80, 2),
            (99, 2),
            (100, 1),
            (5000, 1),
        ],
    )
    def test_thresholds(self, solved, expected):
        assert rank_for(solved) == expected

    def test_new_account_has_default_rank(self):
        assert rank_for(0) == DEFAULT_RANK

    def test_rank_is_monotonic(self):
        """Solving more problems never makes the rank worse (higher)."""
        ranks = [rank_for(n) for n in range(0, 130)]
        assert all(later <= earlier for earlier, later in zip(ranks, ranks[1:]))


class TestPasswordStrength:
    def test_strong_password_has_no_problems(self):
        assert password_problems("Abcdef1!") == []
        check_password_strength("Abcdef1!")

    def test_short_password(self):
        assert password_problems("Ab1!") == ["at least 8 characters"]

    def test_missing_each_character_class(self):
        assert password_problems("abcdefg1!") == ["an uppercase letter"]
        assert password_problems("ABCDEFG1!") == ["a lowercase letter"]
        assert password_problems("Abcdefgh!") == ["a digit"]
        assert password_problems("Abcdefgh1") == ["a special character"]

    def test_space_counts_as_special(self):
        assert password_problems("Abcdef 1") == []

    def test_over_bcrypt_limit(self):
        assert "no more than 72 bytes" in password_problems("Aa1!" + "x" * 80)

    def test_weak_password_raises_with_problems(self):
        with pytest.raises(WeakPassword) as exc_info:
            check_password_strength("password")
        err = exc_info.value
        assert err.code == "weak_password"
        assert err.problems == ["an uppercase letter", "a digit", "a special character"]
        assert "an uppercase letter" in err.message
