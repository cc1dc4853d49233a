"""Tests for core/config.py and auth/factory.py.

Covers:
- SECRET_KEY policy: generated in debug mode, required and >= 32 chars otherwise
- AUTH_PROVIDER=supabase requires URL and anon key
- derived paths for the accounts database and the persistent storage file
- build_facade() wires a working local stack from Settings
- build_provider() picks the hosted adapter without touching the network
"""

import pytest
from pydantic import ValidationError

from auth.factory import build_facade, build_provider
from auth.providers.local import LocalAuthProvider
from auth.providers.supabase import SupabaseAuthProvider
from auth.store import DEMO_EMAIL
from core.clock import FrozenClock
from core.config import Settings

LONG_KEY = "k" * 32


class TestSecretKey:
    def test_debug_generates_key(self):
        settings = Settings(_env_file=None, debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_key(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, debug=False, secret_key="")

    def test_short_key_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, debug=False, secret_key="too-short")

    def test_explicit_key_kept(self):
        assert Settings(_env_file=None, debug=False, secret_key=LONG_KEY).secret_key == LONG_KEY


class TestProviderSettings:
    def test_supabase_needs_url_and_key(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, debug=True, auth_provider="supabase", supabase_url="https://p.supabase.co")

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, debug=True, auth_provider="firebase")


class TestPaths:
    def test_defaults_live_in_data_dir(self, tmp_path):
        settings = Settings(_env_file=None, debug=True, data_dir=tmp_path)
        assert settings.resolved_accounts_db_url == f"sqlite:///{tmp_path / 'accounts.db'}"
        assert settings.storage_path == tmp_path / "storage.db"

    def test_explicit_db_url_wins(self, tmp_path):
        settings = Settings(_env_file=None, debug=True, data_dir=tmp_path, accounts_db_url="sqlite:///:memory:")
        assert settings.resolved_accounts_db_url == "sqlite:///:memory:"


class TestFactory:
    @pytest.mark.asyncio
    async def test_local_stack_round_trip(self, tmp_path, registration):
        settings = Settings(_env_file=None, debug=True, data_dir=tmp_path / "codegen", seed_demo_account=True)
        facade = build_facade(settings, clock=FrozenClock())
        assert isinstance(facade.provider, LocalAuthProvider)
        assert facade.provider.directory.get_by_email(DEMO_EMAIL) is not None

        await facade.init(start_validator=False)
        user = await facade.register(registration())
        await facade.close()

        # A second invocation with the same data dir restores the remembered session.
        again = build_facade(settings, clock=FrozenClock())
        await again.init(start_validator=False)
        try:
            assert again.user is not None and again.user.id == user.id
        finally:
            await again.close()

    def test_supabase_provider_selected(self):
        settings = Settings(
            _env_file=None,
            debug=True,
            auth_provider="supabase",
            supabase_url="https://p.supabase.co",
            supabase_anon_key="anon",
        )
        provider = build_provider(settings, FrozenClock())
        try:
            assert isinstance(provider, SupabaseAuthProvider)
        finally:
            provider.close()
