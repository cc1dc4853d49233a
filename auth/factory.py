"""
auth/factory.py -- Assemble an AuthFacade from Settings.

This is the one place that knows which provider adapter is active. Startup
order matters:
  1. Storage first -- the persistent namespace owns the device id.
  2. Provider second -- the local directory seeds the demo account here.
  3. Facade last -- it needs both. Callers still await facade.init().
"""

from __future__ import annotations

import logging

from auth.facade import AuthFacade, Notifier
from auth.providers.base import AuthProvider
from auth.providers.local import LocalAuthProvider
from auth.providers.supabase import SupabaseAuthProvider
from auth.store import AccountDirectory
from auth.tokens import TokenIssuer
from core.clock import Clock, SystemClock
from core.config import Settings, get_settings
from storage.kv import KeyValueStorage
from storage.store import SessionStore

logger = logging.getLogger("codegen.auth")


def build_provider(settings: Settings, clock: Clock) -> AuthProvider:
    if settings.auth_provider == "supabase":
        logger.info("Using Supabase provider at %s", settings.supabase_url)
        return SupabaseAuthProvider(
            settings.supabase_url,
            settings.supabase_anon_key,
            clock=clock,
            timeout=settings.provider_timeout_seconds,
        )
    directory = AccountDirectory(settings.resolved_accounts_db_url, clock=clock)
    if settings.seed_demo_account and directory.seed_demo_account() is not None:
        logger.info("Seeded demo account")
    issuer = TokenIssuer(settings.secret_key, settings.token_validity_seconds, clock=clock)
    return LocalAuthProvider(directory, issuer, clock=clock)


def build_session_store(settings: Settings) -> SessionStore:
    return SessionStore(tab=KeyValueStorage(), persistent=KeyValueStorage(settings.storage_path))


def build_facade(
    settings: Settings | None = None,
    *,
    clock: Clock | None = None,
    notify: Notifier | None = None,
) -> AuthFacade:
    settings = settings or get_settings()
    clock = clock or SystemClock()
    session_store = build_session_store(settings)
    provider = build_provider(settings, clock)
    return AuthFacade(
        provider,
        session_store,
        clock,
        check_interval=settings.session_check_interval_seconds,
        refresh_margin_seconds=settings.token_refresh_margin_seconds,
        notify=notify,
    )
