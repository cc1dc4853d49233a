"""
auth/providers/base.py -- The backing identity/profile provider contract.

The facade talks to exactly one AuthProvider and never branches on which one
it is. Every coroutine here either returns domain objects from auth/models.py
or raises an AuthError subclass; library exceptions are translated inside the
adapter.

Session-change events are delivered synchronously to listeners registered
with on_session_change(). Event names follow the hosted provider's wording.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable
from datetime import datetime

from auth.models import Account, SessionGrant

logger = logging.getLogger("codegen.provider")

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

SessionListener = Callable[[str, str], None]


class AuthProvider(abc.ABC):
    """Identity (sign up / in / out, session refresh) plus the profile table."""

    name = "abstract"

    def __init__(self) -> None:
        self._listeners: list[SessionListener] = []

    # ------------------------------------------------------------------
    # Session-change events
    # ------------------------------------------------------------------

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        """Register listener(event, account_id). Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, account_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, account_id)
            except Exception:
                logger.exception("Session listener failed on %s", event)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def sign_up(self, account: Account, password: str, device_id: str) -> tuple[Account, SessionGrant]:
        """Create the identity and its profile row; return both plus a session.

        Raises DuplicateAccount or ProviderUnavailable. Must not leave an
        identity behind if the profile row could not be created.
        """

    @abc.abstractmethod
    async def sign_in_with_password(self, email: str, password: str, device_id: str) -> tuple[Account, SessionGrant]:
        """Raises InvalidCredentials, ProfileMissing, or ProviderUnavailable."""

    @abc.abstractmethod
    async def sign_out(self, grant: SessionGrant) -> None: ...

    @abc.abstractmethod
    async def get_session(self, account_id: str) -> SessionGrant | None: ...

    @abc.abstractmethod
    async def refresh_session(self, grant: SessionGrant) -> SessionGrant:
        """Return a renewed session. Raises NotAuthenticated if the provider refuses."""

    def adopt_session(self, grant: SessionGrant) -> None:
        """Accept a session restored from storage. No-op unless the adapter caches grants."""

    @abc.abstractmethod
    def token_is_valid(self, token: str | None) -> bool:
        """Local check only: the token is well formed and now < its expiry."""

    @abc.abstractmethod
    def token_expiry(self, token: str | None) -> datetime | None: ...

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def get_profile(self, account_id: str) -> Account:
        """Raises ProfileMissing when no profile row exists."""

    @abc.abstractmethod
    async def update_profile(self, account_id: str, **fields) -> Account:
        """Merge fields into the profile row. Raises ProfileMissing or DuplicateAccount."""

    @abc.abstractmethod
    async def delete_account(self, account_id: str) -> None:
        """Remove a just-created account. Used only for registration rollback."""

    @abc.abstractmethod
    async def email_exists(self, email: str, exclude_id: str | None = None) -> bool: ...

    @abc.abstractmethod
    async def username_exists(self, username: str, exclude_id: str | None = None) -> bool: ...

    @abc.abstractmethod
    async def peers_in_organization(self, organization: str, exclude_id: str | None = None) -> list[Account]:
        """Accounts sharing an organization, seed accounts excluded, secrets redacted."""

    def close(self) -> None:
        """Release connections held by the adapter."""
