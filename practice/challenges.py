"""
practice/challenges.py -- The practice challenge catalogue and the
call-site helper that credits a completed challenge exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import AuthError, NotAuthenticated
from auth.facade import AuthFacade
from practice.ledger import ChallengeLedger

logger = logging.getLogger("codegen.practice")


@dataclass(frozen=True)
class Challenge:
    id: str
    title: str
    url: str
    points: int


CHALLENGES: tuple[Challenge, ...] = (
    Challenge("beginners", "Beginners Challenge", "https://onecompiler.com/challenges/3w7dby3mt/beginners-coding-challenge", 10),
    Challenge("if-else", "If-Else Set 1", "https://onecompiler.com/challenges/3xveaz8es/if-else-set-1", 15),
    Challenge("strings", "String Challenge", "https://onecompiler.com/challenges/3w8xvfbtb/strings-challenge", 20),
    Challenge("loops", "Loops 1", "https://onecompiler.com/challenges/3xvgabhq3/loops-1", 25),
    Challenge(
        "intermediate",
        "Intermediate Challenge",
        "https://onecompiler.com/challenges/3w9us3eby/intermediate-coding-challenge",
        30,
    ),
    Challenge("arrays", "Arrays Challenge", "https://onecompiler.com/challenges/3wf8b98k2/arrays-coding-challenge", 35),
    Challenge(
        "patterns",
        "Pattern Problems",
        "https://onecompiler.com/challenges/3wkjky7nj/pattern-problems-coding-challenge",
        40,
    ),
    Challenge("advanced", "Advanced", "https://onecompiler.com/challenges/3ynj6me3n/advanced", 45),
    Challenge(
        "javascript",
        "JavaScript Interview",
        "https://onecompiler.com/challenges/3zubsy6cd/javascript-interview-questions",
        50,
    ),
)

_BY_ID = {c.id: c for c in CHALLENGES}


def get_challenge(challenge_id: str) -> Challenge | None:
    return _BY_ID.get(challenge_id)


async def complete_challenge(facade: AuthFacade, ledger: ChallengeLedger, challenge_id: str) -> bool:
    """Credit the signed-in user for a challenge.

    Returns True if points were awarded, False if the challenge was already
    completed. The ledger entry is written before the increment and removed
    again if the increment fails, so a retry can still earn the points.

    Raises KeyError for an unknown challenge id and NotAuthenticated when
    nobody is signed in.
    """
    challenge = get_challenge(challenge_id)
    if challenge is None:
        raise KeyError(challenge_id)
    user = facade.user
    if user is None or not facade.is_authenticated:
        raise NotAuthenticated("Please login to track your progress")

    if not ledger.mark_completed(user.id, challenge.id):
        logger.info("Challenge %s already completed by %s", challenge.id, user.id)
        return False
    try:
        await facade.increment_problems_solved(challenge.points)
    except AuthError:
        ledger.unmark(user.id, challenge.id)
        raise
    logger.info("Challenge %s completed by %s (+%d points)", challenge.id, user.id, challenge.points)
    return True
