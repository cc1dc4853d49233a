"""
auth/policy.py -- Password strength and rank derivation rules.

Both rules are pure functions so the facade, the providers, and the tests all
agree on one definition.

Rank is a fixed step function of problems solved. Lower is better:

    problems_solved   rank
    ---------------   ----
    >= 100            1
    >= 80             2
    >= 60             3
    >= 40             4
    >= 20             5
    >= 10             6
    otherwise         7
"""

from __future__ import annotations

import re

from auth.errors import WeakPassword

DEFAULT_RANK = 7

_RANK_THRESHOLDS: tuple[tuple[int, int], ...] = (
    (100, 1),
    (80, 2),
    (60, 3),
    (40, 4),
    (20, 5),
    (10, 6),
)

MIN_PASSWORD_LENGTH = 8
# bcrypt's input limit.
MAX_PASSWORD_BYTES = 72

_PASSWORD_RULES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"[0-9]"), "a digit"),
    (re.compile(r"[^A-Za-z0-9]"), "a special character"),
)


def rank_for(problems_solved: int) -> int:
    """Return the rank earned by a solved-problem count."""
    for threshold, rank in _RANK_THRESHOLDS:
        if problems_solved >= threshold:
            return rank
    return DEFAULT_RANK


def password_problems(password: str) -> list[str]:
    """List what the password is missing. An empty list means it is strong."""
    problems = []
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(f"at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        problems.append(f"no more than {MAX_PASSWORD_BYTES} bytes")
    problems.extend(label for pattern, label in _PASSWORD_RULES if not pattern.search(password))
    return problems


def check_password_strength(password: str) -> None:
    """Raise WeakPassword unless the password satisfies every rule."""
    problems = password_problems(password)
    if problems:
        raise WeakPassword(problems)
