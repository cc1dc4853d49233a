"""
auth/facade.py -- Single source of truth for "who is signed in".

AuthFacade composes the backing provider (identity + profiles) with the
two-scope SessionStore and exposes reactive state to its subscribers. One
instance is built per application context and given an explicit lifecycle:

    facade = AuthFacade(provider, session_store)
    await facade.init()        # reconcile storage, restore session, start validator
    ...
    await facade.dispose()     # cancel validator, drop provider subscription

State machine:
    UNAUTHENTICATED -> AUTHENTICATING         login() / register()
    AUTHENTICATING  -> AUTHENTICATED          success
    AUTHENTICATING  -> UNAUTHENTICATED        any failure
    AUTHENTICATED   -> TOKEN_EXPIRING_SOON    validator sees expiry inside the margin
    TOKEN_EXPIRING_SOON -> AUTHENTICATED      refresh succeeded
    AUTHENTICATED / TOKEN_EXPIRING_SOON -> UNAUTHENTICATED
                                              logout(), failed refresh, provider SIGNED_OUT

Concurrency: everything runs on one asyncio loop. Profile mutations hold
_mutation_lock so two increments cannot interleave. _generation is bumped
whenever the session ends; a refresh or update that finishes after that
discards its result instead of resurrecting the session. In-flight provider
calls are not cancelled by dispose().

Persistence policy:
    register()             -> tab + persistent
    login(remember=True)   -> tab + persistent
    login(remember=False)  -> tab only; any persistent record is cleared
    profile mutations      -> every populated scope (write-through)
    logout()               -> both scopes cleared

Layer rule: no imports from practice/.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from auth.errors import AuthError, DuplicateAccount, NotAuthenticated, ProfileMissing, ProviderUnavailable
from auth.models import PROFILE_FIELDS, USER_TYPES, Account, CurrentUser, RegisterData, SessionGrant
from auth.policy import DEFAULT_RANK, check_password_strength, rank_for
from auth.providers.base import SIGNED_OUT, AuthProvider
from core.clock import Clock, SystemClock
from storage.models import StoredUser
from storage.store import Scope, SessionStore

logger = logging.getLogger("codegen.auth")


class AuthState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    TOKEN_EXPIRING_SOON = "token_expiring_soon"


_SIGNED_IN_STATES = (AuthState.AUTHENTICATED, AuthState.TOKEN_EXPIRING_SOON)


@dataclass(frozen=True)
class AuthSnapshot:
    """What subscribers receive on every state change."""

    user: CurrentUser | None
    state: AuthState
    is_loading: bool

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.state in _SIGNED_IN_STATES


@dataclass(frozen=True)
class Notification:
    """A transient, user-facing message (the UI shows it as a toast)."""

    title: str
    description: str
    variant: str = "default"  # "default" | "destructive"


Listener = Callable[[AuthSnapshot], None]
Notifier = Callable[[Notification], None]


class AuthFacade:
    def __init__(
        self,
        provider: AuthProvider,
        session_store: SessionStore,
        clock: Clock | None = None,
        *,
        check_interval: float = 60.0,
        refresh_margin_seconds: int = 300,
        notify: Notifier | None = None,
    ) -> None:
        self.provider = provider
        self.session_store = session_store
        self._clock = clock or SystemClock()
        self._check_interval = check_interval
        self._refresh_margin = refresh_margin_seconds
        self._notify_hook = notify

        self._user: CurrentUser | None = None
        self._grant: SessionGrant | None = None
        self._state = AuthState.UNAUTHENTICATED
        # True until init() has read storage, like a page that has not hydrated.
        self._is_loading = True

        self._listeners: list[Listener] = []
        self._generation = 0
        self._mutation_lock = asyncio.Lock()
        self._validator_task: asyncio.Task | None = None
        self._unsubscribe_provider: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Reactive state
    # ------------------------------------------------------------------

    @property
    def user(self) -> CurrentUser | None:
        return self._user

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_authenticated(self) -> bool:
        return self.snapshot().is_authenticated

    def snapshot(self) -> AuthSnapshot:
        return AuthSnapshot(user=self._user, state=self._state, is_loading=self._is_loading)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener(snapshot) after every change. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Auth state listener failed")

    def _notify(self, title: str, description: str, variant: str = "default") -> None:
        if self._notify_hook is not None:
            self._notify_hook(Notification(title, description, variant))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self, *, start_validator: bool = True) -> AuthSnapshot:
        """Restore the session from storage and start the periodic validator."""
        if self._unsubscribe_provider is None:
            self._unsubscribe_provider = self.provider.on_session_change(self._on_provider_event)
        self._is_loading = True
        try:
            record = self.session_store.reconcile()
            if record is not None:
                await self._restore(record)
        finally:
            self._is_loading = False
            self._emit()
        if start_validator:
            self.start_validator()
        return self.snapshot()

    async def _restore(self, record: StoredUser) -> None:
        grant = record.to_grant()
        if grant is None or not self.provider.token_is_valid(grant.token):
            logger.info("Stored session for %s is expired or invalid; clearing it", record.id)
            self.session_store.clear_all()
            return
        self.provider.adopt_session(grant)
        user = record.to_user()
        try:
            account = await self.provider.get_profile(grant.account_id)
            user = self._project(account, grant)
        except ProfileMissing:
            logger.warning("Session restored for %s but the profile is missing; signing out", grant.account_id)
            self.session_store.clear_all()
            return
        except ProviderUnavailable:
            logger.warning("Provider unavailable at startup; using stored profile for %s", grant.account_id)
        self._user, self._grant, self._state = user, grant, AuthState.AUTHENTICATED
        self._persist()
        logger.info("Session restored for %s", user.id)

    async def dispose(self) -> None:
        """Cancel the validator and detach from the provider. Safe to call twice."""
        task, self._validator_task = self._validator_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._unsubscribe_provider is not None:
            self._unsubscribe_provider()
            self._unsubscribe_provider = None

    async def close(self) -> None:
        """dispose() and release the provider and storage connections."""
        await self.dispose()
        self.provider.close()
        self.session_store.close()

    # ------------------------------------------------------------------
    # Periodic validation
    # ------------------------------------------------------------------

    def start_validator(self) -> None:
        if self._validator_task is None or self._validator_task.done():
            self._validator_task = asyncio.create_task(self._validation_loop())

    async def _validation_loop(self) -> None:
        """Re-check the session every check_interval seconds until cancelled."""
        while True:
            await asyncio.sleep(self._check_interval)
            try:
                await self.run_session_check()
            except AuthError as exc:
                logger.warning("Session check failed: %s", exc.code)
            except Exception:
                logger.exception("Session check crashed")

    async def run_session_check(self) -> bool:
        """One validator pass. Returns True if the user is still signed in afterwards."""
        if not self.is_authenticated or self._grant is None:
            return False
        if not self.validate_session():
            logger.info("Session token for %s is no longer valid; attempting one refresh", self._user.id)
            return await self.refresh_user_session()
        expiry = self.provider.token_expiry(self._grant.token)
        if expiry is not None and (expiry - self._clock.now()).total_seconds() <= self._refresh_margin:
            self._state = AuthState.TOKEN_EXPIRING_SOON
            self._emit()
            await self.refresh_user_session()
            return self.is_authenticated
        return True

    # ------------------------------------------------------------------
    # Sign up / in / out
    # ------------------------------------------------------------------

    async def register(self, data: RegisterData) -> CurrentUser:
        """Create an account, sign it in, and remember it in both scopes.

        Raises WeakPassword before anything else happens. On any failure after
        the account was created, the account is deleted again.
        """
        data = _normalized(data)
        check_password_strength(data.password)
        if data.user_type not in USER_TYPES:
            raise ValueError(f"user_type must be one of {USER_TYPES!r}")
        if self.is_authenticated:
            await self._end_session()

        created: Account | None = None
        grant: SessionGrant | None = None
        self._begin()
        try:
            if await self.provider.email_exists(data.email) or await self.provider.username_exists(data.username):
                raise DuplicateAccount()
            account = Account(
                full_name=data.full_name,
                username=data.username,
                email=data.email,
                user_type=data.user_type,
                organization=data.organization,
                problems_solved=0,
                points=0,
                rank=DEFAULT_RANK,
            )
            created, grant = await self.provider.sign_up(account, data.password, self.session_store.device_id())
            self._user = self._project(created, grant)
            self._grant = grant
            record = self._record()
            self.session_store.write_tab_scoped(record)
            self.session_store.write_persistent(record)
            self._state = AuthState.AUTHENTICATED
        except Exception as exc:
            await self._fail_sign_in(grant, created)
            self._notify("Registration Failed", _describe(exc), "destructive")
            raise
        finally:
            self._is_loading = False
            self._emit()
        logger.info("Registered %s", created.id)
        self._notify("Registration Successful", "Your CODEGEN account has been created successfully!")
        return self._user

    async def login(self, email: str, password: str, remember: bool = False) -> CurrentUser:
        """Sign in. Never reveals whether the email or the password was wrong."""
        email = email.strip()
        if self.is_authenticated:
            await self._end_session()

        self._begin()
        grant: SessionGrant | None = None
        try:
            account, grant = await self.provider.sign_in_with_password(email, password, self.session_store.device_id())
            self._user = self._project(account, grant)
            self._grant = grant
            record = self._record()
            self.session_store.write_tab_scoped(record)
            if remember:
                self.session_store.write_persistent(record)
            else:
                self.session_store.clear(Scope.PERSISTENT)
            self._state = AuthState.AUTHENTICATED
        except Exception as exc:
            logger.info("Login failed: %s", getattr(exc, "code", exc.__class__.__name__))
            await self._fail_sign_in(grant)
            self._notify("Login Failed", _describe(exc), "destructive")
            raise
        finally:
            self._is_loading = False
            self._emit()
        self._notify("Login Successful", "Welcome back to CODEGEN!")
        return self._user

    async def logout(self) -> None:
        """Sign out locally first, then tell the provider.

        The local state is cleared even when the provider call fails.
        """
        await self._end_session()
        self._notify("Logged Out", "You have been logged out successfully")

    async def _end_session(self) -> None:
        grant = self._grant
        self._clear_local()
        if grant is not None:
            await self._quiet_provider_sign_out(grant)

    def _clear_local(self) -> None:
        self._generation += 1
        self._user = None
        self._grant = None
        self._state = AuthState.UNAUTHENTICATED
        self.session_store.clear_all()
        self._emit()

    async def _quiet_provider_sign_out(self, grant: SessionGrant) -> None:
        try:
            await self.provider.sign_out(grant)
        except AuthError as exc:
            logger.warning("Provider sign-out failed for %s (%s); signed out locally", grant.account_id, exc.code)

    async def _fail_sign_in(self, grant: SessionGrant | None, created: Account | None = None) -> None:
        """Undo a half-finished login or registration."""
        if grant is not None:
            await self._quiet_provider_sign_out(grant)
        if created is not None and created.id:
            try:
                await self.provider.delete_account(created.id)
                logger.info("Rolled back registration of %s", created.id)
            except AuthError as exc:
                logger.error("Rollback of %s failed: %s", created.id, exc.code)
        self._user = None
        self._grant = None
        self._state = AuthState.UNAUTHENTICATED
        self.session_store.clear_all()

    def _begin(self) -> None:
        self._is_loading = True
        self._state = AuthState.AUTHENTICATING
        self._emit()

    def _on_provider_event(self, event: str, account_id: str) -> None:
        if event == SIGNED_OUT and self._user is not None and self._user.id == account_id:
            logger.info("Provider signed out %s; clearing local session", account_id)
            self._clear_local()

    # ------------------------------------------------------------------
    # Session validity
    # ------------------------------------------------------------------

    def validate_session(self) -> bool:
        """True if the tab's stored token is still valid. Does not change state."""
        record = self.session_store.read_tab_scoped()
        if record is None or not record.token:
            return False
        return self.provider.token_is_valid(record.token)

    async def refresh_user_session(self) -> bool:
        """Renew the token of the signed-in account.

        If the provider refuses, the facade signs out rather than keep a
        session it cannot vouch for. If the provider is only unreachable and
        the current token has not lapsed, the session is kept and the next
        check retries. A refresh that completes after the session ended is
        discarded.
        """
        if not self.is_authenticated or self._grant is None:
            return False
        generation, account_id, grant = self._generation, self._user.id, self._grant
        try:
            new_grant = await self.provider.refresh_session(grant)
        except AuthError as exc:
            current = self._generation == generation
            if current and isinstance(exc, ProviderUnavailable) and self.provider.token_is_valid(grant.token):
                logger.warning("Session refresh for %s deferred: %s", account_id, exc.code)
                self._notify("Session Refresh Delayed", "Could not reach the server; will retry shortly")
                return False
            logger.warning("Session refresh failed for %s: %s", account_id, exc.code)
            if current:
                await self._end_session()
                self._notify("Session Expired", "Please login again to continue", "destructive")
            return False
        if not self._still_current(generation, account_id):
            logger.info("Discarding refreshed session for %s; it was signed out meanwhile", account_id)
            return False
        self._grant = new_grant
        self._user = replace(self._user, device_id=new_grant.device_id)
        self._state = AuthState.AUTHENTICATED
        self._persist()
        self._emit()
        logger.info("Session refreshed for %s", account_id)
        return True

    def _still_current(self, generation: int, account_id: str) -> bool:
        return self._generation == generation and self._user is not None and self._user.id == account_id

    # ------------------------------------------------------------------
    # Profile mutations
    # ------------------------------------------------------------------

    async def update_user(self, **patch) -> CurrentUser | None:
        """Merge profile fields into the provider, both scopes, and the state.

        A problems_solved value recomputes rank in the same update. Counters
        may not decrease. Returns None if the session ended mid-update.
        """
        unknown = set(patch) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        for key in ("full_name", "username", "email", "organization"):
            if key in patch and isinstance(patch[key], str):
                patch[key] = patch[key].strip()
        if "user_type" in patch and patch["user_type"] not in USER_TYPES:
            raise ValueError(f"user_type must be one of {USER_TYPES!r}")

        async with self._mutation_lock:
            current = self._require_user()
            for counter in ("problems_solved", "points"):
                if counter in patch and patch[counter] < getattr(current, counter):
                    raise ValueError(f"{counter} cannot decrease")
            if "problems_solved" in patch:
                patch["rank"] = rank_for(patch["problems_solved"])
            try:
                if patch.get("username", current.username) != current.username and await self.provider.username_exists(
                    patch["username"], exclude_id=current.id
                ):
                    raise DuplicateAccount("That username is already taken.")
                if patch.get("email", current.email) != current.email and await self.provider.email_exists(
                    patch["email"], exclude_id=current.id
                ):
                    raise DuplicateAccount("That email is already registered.")
                updated = await self._apply(current, patch)
            except AuthError as exc:
                self._notify("Update Failed", exc.message, "destructive")
                raise
        if updated is not None:
            self._notify("Profile Updated", "Your profile has been updated successfully")
        return updated

    async def increment_problems_solved(self, points: int) -> CurrentUser | None:
        """Count one more solved problem worth points, and re-derive rank.

        Callers must not call this twice for the same challenge; see
        practice.challenges.complete_challenge().
        """
        if points < 0:
            raise ValueError("points cannot be negative")
        async with self._mutation_lock:
            current = self._require_user()
            solved = current.problems_solved + 1
            patch = {"problems_solved": solved, "points": current.points + points, "rank": rank_for(solved)}
            try:
                return await self._apply(current, patch)
            except AuthError as exc:
                self._notify("Progress Not Saved", exc.message, "destructive")
                raise

    async def _apply(self, current: CurrentUser, patch: dict) -> CurrentUser | None:
        generation = self._generation
        account = await self.provider.update_profile(current.id, **patch)
        if not self._still_current(generation, current.id):
            logger.info("Discarding profile update for %s; it was signed out meanwhile", current.id)
            return None
        self._user = self._project(account, self._grant)
        self._persist()
        self._emit()
        return self._user

    def _require_user(self) -> CurrentUser:
        if not self.is_authenticated:
            raise NotAuthenticated()
        return self._user  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def check_username_availability(self, username: str) -> bool:
        """True if nobody else holds username. The current account's own name is available."""
        username = username.strip()
        own_id = self._user.id if self._user is not None else None
        if self._user is not None and username == self._user.username:
            return True
        return not await self.provider.username_exists(username, exclude_id=own_id)

    async def check_email_availability(self, email: str) -> bool:
        email = email.strip()
        own_id = self._user.id if self._user is not None else None
        if self._user is not None and email == self._user.email:
            return True
        return not await self.provider.email_exists(email, exclude_id=own_id)

    async def peers(self) -> list[Account]:
        """Other accounts from the signed-in user's organization."""
        current = self._require_user()
        return await self.provider.peers_in_organization(current.organization, exclude_id=current.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _project(self, account: Account, grant: SessionGrant | None) -> CurrentUser:
        return CurrentUser.from_account(account, device_id=grant.device_id if grant else None)

    def _record(self) -> StoredUser:
        return StoredUser.from_state(self._user, self._grant, synced_at=self._clock.now().timestamp())

    def _persist(self) -> None:
        self.session_store.write_through(self._record())


def _normalized(data: RegisterData) -> RegisterData:
    return replace(
        data,
        full_name=data.full_name.strip(),
        username=data.username.strip(),
        email=data.email.strip(),
        organization=(data.organization or "").strip(),
    )


def _describe(exc: Exception) -> str:
    if isinstance(exc, AuthError):
        return exc.message
    return "Something went wrong. Please try again."
