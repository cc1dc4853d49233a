"""
auth/models.py -- Domain dataclasses for accounts and sessions.

Pattern: Data class (pure data container, zero logic beyond projection).
Stores, providers, and the facade do the work.

The credential secret never lives on any of these classes. The account
directory keeps only a bcrypt hash in its table, and every Account it returns
carries REDACTED_SECRET in its credential_secret slot.

Layer rule: no imports from storage/ or practice/.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime

from auth.policy import DEFAULT_RANK

USER_TYPES = ("student", "professional")

REDACTED_SECRET = "********"

# Fields a caller may patch through the facade. id, counters' ownership and
# the session fields are handled elsewhere.
PROFILE_FIELDS = frozenset(
    {"full_name", "username", "email", "organization", "user_type", "profile_image", "problems_solved", "points"}
)


@dataclass
class Account:
    """One registered user as known to the account directory.

    id is assigned by the directory (or the hosted provider) at creation and
    is immutable afterwards. rank is always derived from problems_solved; the
    facade recomputes it whenever problems_solved changes.

    is_seed marks the demo account, which never appears in peer listings.
    """

    full_name: str
    username: str
    email: str
    user_type: str = "student"
    organization: str = ""
    profile_image: str = ""
    problems_solved: int = 0
    points: int = 0
    rank: int = DEFAULT_RANK
    id: str = ""
    is_seed: bool = False
    created_at: str | None = None
    last_login: str | None = None
    credential_secret: str = REDACTED_SECRET


@dataclass
class SessionGrant:
    """One authenticated context: the token handed out at sign-in.

    refresh_token is only populated by the hosted provider, whose access
    tokens are renewed with it. The local provider re-issues from account_id.
    """

    account_id: str
    token: str
    token_expiry: datetime
    device_id: str
    issued_at: datetime
    refresh_token: str | None = None


@dataclass
class RegisterData:
    full_name: str
    username: str
    email: str
    password: str = field(repr=False)
    user_type: str = "student"
    organization: str = ""


@dataclass(frozen=True)
class CurrentUser:
    """The redacted projection of an Account exposed as reactive state.

    Joins profile fields with the session-derived last_login and device_id.
    Deliberately has no credential field.
    """

    id: str
    full_name: str
    username: str
    email: str
    user_type: str
    organization: str
    profile_image: str
    problems_solved: int
    points: int
    rank: int
    last_login: str | None = None
    device_id: str | None = None

    @classmethod
    def from_account(cls, account: Account, device_id: str | None = None) -> CurrentUser:
        return cls(
            id=account.id,
            full_name=account.full_name,
            username=account.username,
            email=account.email,
            user_type=account.user_type,
            organization=account.organization,
            profile_image=account.profile_image,
            problems_solved=account.problems_solved,
            points=account.points,
            rank=account.rank,
            last_login=account.last_login,
            device_id=device_id,
        )

    def merged(self, **patch) -> CurrentUser:
        return replace(self, **patch)

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
