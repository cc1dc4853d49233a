"""
auth/store.py -- SQLAlchemy Core persistence for the account directory.

Pattern: Repository + Data Mapper. AccountDirectory is the repository;
_row_to_account / _row_to_grant are the mappers. Providers never touch SQL.

The directory is the only place that sees credential material. The bcrypt
hash lives in the hashed_password column and is read back only inside
find_by_credentials(); the mappers never copy it onto an Account.

Uniqueness: username and email are compared case-sensitively, as stored.
The facade strips surrounding whitespace before anything reaches here.
UNIQUE constraints back the code-level checks so a race between two
inserts still ends in DuplicateAccount rather than two rows.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from storage/ or practice/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateAccount
from auth.models import Account, SessionGrant
from auth.policy import rank_for
from auth.tokens import burn_dummy_check, hash_password, verify_password
from core.clock import Clock, SystemClock

logger = logging.getLogger("codegen.auth")

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "Demo@12345"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("full_name", String(255), nullable=False),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("organization", String(255), nullable=False, server_default=""),
    Column("user_type", String(20), nullable=False, server_default="student"),
    Column("profile_image", Text, nullable=False, server_default=""),
    Column("problems_solved", Integer, nullable=False, server_default="0"),
    Column("points", Integer, nullable=False, server_default="0"),
    Column("rank", Integer, nullable=False, server_default="7"),
    Column("is_seed", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    # Current session for this account. NULL after logout.
    Column("session_token", Text),
    Column("token_issued_at", String(32)),
    Column("token_expiry", String(32)),
    Column("device_id", String(64)),
)

# Fields update() accepts. id and the session columns are not among them.
_MUTABLE_FIELDS = frozenset(
    {
        "full_name",
        "username",
        "email",
        "organization",
        "user_type",
        "profile_image",
        "problems_solved",
        "points",
        "rank",
        "last_login",
    }
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountDirectory:
    """Repository for Account records and their current session columns.

    Usage:
        directory = AccountDirectory("sqlite:///:memory:")
        account = directory.insert(Account(full_name="Alice", username="alice", email="a@x.io"), "Abcdef1!")
        directory.find_by_credentials("a@x.io", "Abcdef1!")
        directory.close()
    """

    def __init__(self, db_url: str, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def _now_iso(self) -> str:
        return self._clock.now().isoformat()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_email(self, email: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def exists_email(self, email: str, exclude_id: str | None = None) -> bool:
        return self._exists(_accounts.c.email == email, exclude_id)

    def exists_username(self, username: str, exclude_id: str | None = None) -> bool:
        return self._exists(_accounts.c.username == username, exclude_id)

    def _exists(self, clause, exclude_id: str | None) -> bool:
        query = select(func.count()).select_from(_accounts).where(clause)
        if exclude_id is not None:
            query = query.where(_accounts.c.id != exclude_id)
        with self.engine.connect() as conn:
            return (conn.execute(query).scalar() or 0) > 0

    def find_by_credentials(self, email: str, password: str) -> Account | None:
        """Return the account when email and password match, else None.

        Always runs bcrypt whether or not the email exists, so an attacker
        cannot tell a wrong password from an unknown email by timing.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        if row is None:
            burn_dummy_check(password)
            return None
        if not verify_password(password, row.hashed_password):
            return None
        return _row_to_account(row)

    def peers_in_organization(self, organization: str, exclude_id: str | None = None) -> list[Account]:
        """Accounts sharing an organization, ordered by name.

        The caller's own account and seeded demo accounts are left out. An
        empty organization matches nobody.
        """
        if not organization:
            return []
        query = (
            _accounts.select()
            .where((_accounts.c.organization == organization) & (_accounts.c.is_seed == 0))
            .order_by(_accounts.c.full_name)
        )
        if exclude_id is not None:
            query = query.where(_accounts.c.id != exclude_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_account(r) for r in rows]

    def has_accounts(self) -> bool:
        with self.engine.connect() as conn:
            return (conn.execute(select(func.count()).select_from(_accounts)).scalar() or 0) > 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, account: Account, password: str) -> Account:
        """Store a new account and return it with its assigned id.

        Raises DuplicateAccount if the email or username is already taken.
        Counters are stored as given; rank is derived from problems_solved.
        """
        if self.exists_email(account.email) or self.exists_username(account.username):
            raise DuplicateAccount()
        account_id = account.id or str(uuid.uuid4())
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _accounts.insert().values(
                        id=account_id,
                        full_name=account.full_name,
                        username=account.username,
                        email=account.email,
                        hashed_password=hash_password(password),
                        organization=account.organization or "",
                        user_type=account.user_type,
                        profile_image=account.profile_image or "",
                        problems_solved=account.problems_solved,
                        points=account.points,
                        rank=rank_for(account.problems_solved),
                        is_seed=1 if account.is_seed else 0,
                        created_at=self._now_iso(),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            # A concurrent insert won the race between the check and the write.
            raise DuplicateAccount() from exc
        logger.info("Account created: %s", account_id)
        return self.get_by_id(account_id)  # type: ignore[return-value]

    def update(self, account_id: str, **fields) -> Account | None:
        """Merge fields into an existing account and return the new state.

        id can never change. Unknown fields raise ValueError rather than being
        silently ignored. Returns None if account_id is not found.
        """
        if "id" in fields:
            raise ValueError("Account id is immutable")
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")
        if "email" in fields and self.exists_email(fields["email"], exclude_id=account_id):
            raise DuplicateAccount()
        if "username" in fields and self.exists_username(fields["username"], exclude_id=account_id):
            raise DuplicateAccount()
        if fields:
            try:
                with self.engine.connect() as conn:
                    conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
                    conn.commit()
            except IntegrityError as exc:
                raise DuplicateAccount() from exc
        return self.get_by_id(account_id)

    def delete(self, account_id: str) -> bool:
        """Remove an account. Only used to roll back a failed registration."""
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.delete().where(_accounts.c.id == account_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Session columns
    # ------------------------------------------------------------------

    def set_session(self, grant: SessionGrant) -> None:
        """Record the current session on the account and stamp last_login."""
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == grant.account_id)
                .values(
                    session_token=grant.token,
                    token_issued_at=grant.issued_at.isoformat(),
                    token_expiry=grant.token_expiry.isoformat(),
                    device_id=grant.device_id,
                    last_login=self._now_iso(),
                )
            )
            conn.commit()

    def get_session(self, account_id: str) -> SessionGrant | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        if row is None or not row.session_token:
            return None
        return _row_to_grant(row)

    def clear_session(self, account_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(session_token=None, token_issued_at=None, token_expiry=None, device_id=None)
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Demo data
    # ------------------------------------------------------------------

    def seed_demo_account(self) -> Account | None:
        """Create the demo account once. Returns None if it already exists."""
        if self.exists_email(DEMO_EMAIL):
            return None
        demo = Account(
            full_name="Demo User",
            username="demouser",
            email=DEMO_EMAIL,
            organization="Adhiyamaan College of Engineering",
            problems_solved=45,
            points=325,
            is_seed=True,
        )
        return self.insert(demo, DEMO_PASSWORD)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        full_name=row.full_name,
        username=row.username,
        email=row.email,
        organization=row.organization or "",
        user_type=row.user_type,
        profile_image=row.profile_image or "",
        problems_solved=row.problems_solved,
        points=row.points,
        rank=row.rank,
        is_seed=bool(row.is_seed),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_grant(row) -> SessionGrant:
    return SessionGrant(
        account_id=row.id,
        token=row.session_token,
        token_expiry=datetime.fromisoformat(row.token_expiry),
        device_id=row.device_id or "",
        issued_at=datetime.fromisoformat(row.token_issued_at),
    )
