"""
auth/providers/local.py -- Provider backed by the local account directory.

Identity and profiles both live in AccountDirectory (SQLAlchemy). Sessions are
tokens minted by TokenIssuer and recorded on the account row, so a sign-out
from one context is visible to every other context sharing the directory:
refresh_session() refuses once the row's session has been cleared.

SQLAlchemy failures other than uniqueness violations surface as
ProviderUnavailable.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import InvalidCredentials, NotAuthenticated, ProfileMissing, ProviderUnavailable, TokenInvalid
from auth.models import Account, SessionGrant
from auth.providers.base import SIGNED_IN, SIGNED_OUT, AuthProvider
from auth.store import AccountDirectory
from auth.tokens import TokenIssuer
from core.clock import Clock, SystemClock

logger = logging.getLogger("codegen.provider")


@contextmanager
def _directory_errors() -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Account directory error: %s", exc.__class__.__name__)
        raise ProviderUnavailable() from exc


class LocalAuthProvider(AuthProvider):
    name = "local"

    def __init__(self, directory: AccountDirectory, issuer: TokenIssuer, clock: Clock | None = None) -> None:
        super().__init__()
        self.directory = directory
        self._issuer = issuer
        self._clock = clock or SystemClock()

    def _grant_for(self, account_id: str, device_id: str) -> SessionGrant:
        issued_at = self._clock.now().replace(microsecond=0)
        token, expiry = self._issuer.issue(account_id, device_id)
        grant = SessionGrant(
            account_id=account_id,
            token=token,
            token_expiry=expiry,
            device_id=device_id,
            issued_at=issued_at,
        )
        self.directory.set_session(grant)
        return grant

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def sign_up(self, account: Account, password: str, device_id: str) -> tuple[Account, SessionGrant]:
        with _directory_errors():
            created = self.directory.insert(account, password)
            try:
                grant = self._grant_for(created.id, device_id)
            except Exception:
                self.directory.delete(created.id)
                raise
            stored = self.directory.get_by_id(created.id)
        self._emit(SIGNED_IN, created.id)
        return stored or created, grant

    async def sign_in_with_password(self, email: str, password: str, device_id: str) -> tuple[Account, SessionGrant]:
        with _directory_errors():
            account = self.directory.find_by_credentials(email, password)
            if account is None:
                raise InvalidCredentials()
            grant = self._grant_for(account.id, device_id)
            account = self.directory.get_by_id(account.id) or account
        self._emit(SIGNED_IN, account.id)
        return account, grant

    async def sign_out(self, grant: SessionGrant) -> None:
        with _directory_errors():
            self.directory.clear_session(grant.account_id)
        self._emit(SIGNED_OUT, grant.account_id)

    async def get_session(self, account_id: str) -> SessionGrant | None:
        with _directory_errors():
            return self.directory.get_session(account_id)

    async def refresh_session(self, grant: SessionGrant) -> SessionGrant:
        with _directory_errors():
            current = self.directory.get_session(grant.account_id)
            if current is None:
                raise NotAuthenticated("Session was signed out.")
            return self._grant_for(grant.account_id, grant.device_id)

    def token_is_valid(self, token: str | None) -> bool:
        return self._issuer.is_valid(token)

    def token_expiry(self, token: str | None) -> datetime | None:
        try:
            return self._issuer.decode(token).expires_at  # type: ignore[arg-type]
        except TokenInvalid:
            return None

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, account_id: str) -> Account:
        with _directory_errors():
            account = self.directory.get_by_id(account_id)
        if account is None:
            raise ProfileMissing()
        return account

    async def update_profile(self, account_id: str, **fields) -> Account:
        with _directory_errors():
            account = self.directory.update(account_id, **fields)
        if account is None:
            raise ProfileMissing()
        return account

    async def delete_account(self, account_id: str) -> None:
        with _directory_errors():
            self.directory.delete(account_id)

    async def email_exists(self, email: str, exclude_id: str | None = None) -> bool:
        with _directory_errors():
            return self.directory.exists_email(email, exclude_id=exclude_id)

    async def username_exists(self, username: str, exclude_id: str | None = None) -> bool:
        with _directory_errors():
            return self.directory.exists_username(username, exclude_id=exclude_id)

    async def peers_in_organization(self, organization: str, exclude_id: str | None = None) -> list[Account]:
        with _directory_errors():
            return self.directory.peers_in_organization(organization, exclude_id=exclude_id)

    def close(self) -> None:
        self.directory.close()
