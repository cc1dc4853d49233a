"""
auth/providers/supabase.py -- Provider backed by a hosted Supabase project.

Identity goes through the GoTrue REST API (/auth/v1), profiles through the
PostgREST API on a ``profiles`` table keyed by the GoTrue user id, and email
availability through the ``check-email-availability`` edge function (the
anon key cannot read auth.users directly).

requests is synchronous; every call runs in a worker thread via
asyncio.to_thread so the event loop never blocks on the network.

Error translation:
  requests.RequestException, HTTP 5xx      -> ProviderUnavailable
  400 on password grant                    -> InvalidCredentials
  400/422 "already registered" on signup   -> DuplicateAccount
  400/401 on refresh grant                 -> NotAuthenticated
  409 from PostgREST (unique violation)    -> DuplicateAccount
  empty profile result                     -> ProfileMissing
  non-JSON or malformed success body       -> ProviderUnavailable

Access tokens are signed by Supabase; the client cannot verify them and
only reads their exp claim to decide when to refresh.

Known gap: rolling back a registration deletes the profile row but cannot
delete the GoTrue identity with the anon key. The orphaned identity has no
profile and is treated as ProfileMissing on any later sign-in.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import requests

from auth.errors import (
    DuplicateAccount,
    InvalidCredentials,
    NotAuthenticated,
    ProfileMissing,
    ProviderUnavailable,
)
from auth.models import Account, SessionGrant
from auth.policy import DEFAULT_RANK
from auth.providers.base import SIGNED_IN, SIGNED_OUT, AuthProvider
from auth.tokens import unverified_expiry
from core.clock import Clock, SystemClock

logger = logging.getLogger("codegen.provider")

_PROFILE_COLUMNS = (
    "id",
    "full_name",
    "username",
    "email",
    "organization",
    "user_type",
    "profile_image",
    "problems_solved",
    "points",
    "rank",
    "is_seed",
    "created_at",
    "last_login",
)


class SupabaseAuthProvider(AuthProvider):
    name = "supabase"

    def __init__(
        self,
        url: str,
        anon_key: str,
        clock: Clock | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__()
        self._base = url.rstrip("/")
        self._anon_key = anon_key
        self._clock = clock or SystemClock()
        self._timeout = timeout
        self._http = session or requests.Session()
        # Most recent grant per account, used to authorize PostgREST calls.
        self._grants: dict[str, SessionGrant] = {}

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _headers(self, token: str | None = None, prefer: str | None = None) -> dict:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token or self._anon_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        params: dict | None = None,
        json: dict | None = None,
        prefer: str | None = None,
    ) -> requests.Response:
        try:
            resp = await asyncio.to_thread(
                self._http.request,
                method,
                f"{self._base}{path}",
                headers=self._headers(token, prefer),
                params=params,
                json=json,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Supabase %s %s failed: %s", method, path, exc.__class__.__name__)
            raise ProviderUnavailable() from exc
        if resp.status_code >= 500:
            logger.warning("Supabase %s %s returned %d", method, path, resp.status_code)
            raise ProviderUnavailable()
        return resp

    def _token_for(self, account_id: str | None) -> str | None:
        grant = self._grants.get(account_id) if account_id else None
        return grant.token if grant else None

    def _grant_from(self, body: dict, device_id: str) -> SessionGrant:
        now = self._clock.now().replace(microsecond=0)
        try:
            if body.get("expires_at"):
                expiry = datetime.fromtimestamp(int(body["expires_at"]), tz=timezone.utc)
            else:
                expiry = now + timedelta(seconds=int(body.get("expires_in", 3600)))
            grant = SessionGrant(
                account_id=body["user"]["id"],
                token=body["access_token"],
                token_expiry=expiry,
                device_id=device_id,
                issued_at=now,
                refresh_token=body.get("refresh_token"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Supabase token response is missing %s", exc)
            raise ProviderUnavailable() from exc
        self._grants[grant.account_id] = grant
        return grant

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def sign_up(self, account: Account, password: str, device_id: str) -> tuple[Account, SessionGrant]:
        resp = await self._request(
            "POST",
            "/auth/v1/signup",
            json={
                "email": account.email,
                "password": password,
                "data": {"username": account.username, "full_name": account.full_name},
            },
        )
        if resp.status_code in (400, 422):
            if "already" in resp.text.lower():
                raise DuplicateAccount()
            raise ProviderUnavailable(_error_message(resp))
        if resp.status_code >= 400:
            raise ProviderUnavailable(_error_message(resp))
        body = _json(resp)
        if not body.get("access_token"):
            raise ProviderUnavailable("Account created. Confirm your email address, then login.")
        grant = self._grant_from(body, device_id)

        row = {
            "id": grant.account_id,
            "full_name": account.full_name,
            "username": account.username,
            "email": account.email,
            "organization": account.organization,
            "user_type": account.user_type,
            "profile_image": account.profile_image,
            "problems_solved": 0,
            "points": 0,
            "rank": DEFAULT_RANK,
            "last_login": self._clock.now().isoformat(),
        }
        try:
            created = await self._insert_profile(row, grant.token)
        except Exception:
            await self._quiet_sign_out(grant)
            raise
        self._emit(SIGNED_IN, grant.account_id)
        return created, grant

    async def _insert_profile(self, row: dict, token: str) -> Account:
        resp = await self._request(
            "POST", "/rest/v1/profiles", token=token, json=row, prefer="return=representation"
        )
        if resp.status_code == 409:
            raise DuplicateAccount()
        if resp.status_code >= 400:
            raise ProviderUnavailable(_error_message(resp))
        rows = _json(resp, list)
        if not rows:
            raise ProfileMissing()
        return _row_to_account(rows[0])

    async def _quiet_sign_out(self, grant: SessionGrant) -> None:
        try:
            await self.sign_out(grant)
        except ProviderUnavailable:
            logger.warning("Could not sign out %s after a failed registration", grant.account_id)

    async def sign_in_with_password(self, email: str, password: str, device_id: str) -> tuple[Account, SessionGrant]:
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if resp.status_code in (400, 401):
            raise InvalidCredentials()
        if resp.status_code >= 400:
            raise ProviderUnavailable(_error_message(resp))
        grant = self._grant_from(_json(resp), device_id)
        try:
            account = await self.update_profile(grant.account_id, last_login=self._clock.now().isoformat())
        except ProfileMissing:
            logger.warning("Signed in %s but no profile row exists", grant.account_id)
            await self._quiet_sign_out(grant)
            raise
        self._emit(SIGNED_IN, grant.account_id)
        return account, grant

    async def sign_out(self, grant: SessionGrant) -> None:
        self._grants.pop(grant.account_id, None)
        try:
            resp = await self._request("POST", "/auth/v1/logout", token=grant.token)
            if resp.status_code >= 400 and resp.status_code != 401:
                # 401 means the token was already revoked; that is a sign-out too.
                raise ProviderUnavailable(_error_message(resp))
        finally:
            self._emit(SIGNED_OUT, grant.account_id)

    async def get_session(self, account_id: str) -> SessionGrant | None:
        return self._grants.get(account_id)

    async def refresh_session(self, grant: SessionGrant) -> SessionGrant:
        if not grant.refresh_token:
            raise NotAuthenticated("Session cannot be refreshed.")
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": grant.refresh_token},
        )
        if resp.status_code in (400, 401, 403):
            self._grants.pop(grant.account_id, None)
            raise NotAuthenticated("Session was revoked.")
        if resp.status_code >= 400:
            raise ProviderUnavailable(_error_message(resp))
        return self._grant_from(_json(resp), grant.device_id)

    def adopt_session(self, grant: SessionGrant) -> None:
        self._grants[grant.account_id] = grant

    def token_is_valid(self, token: str | None) -> bool:
        expiry = unverified_expiry(token)
        return expiry is not None and self._clock.now() < expiry

    def token_expiry(self, token: str | None) -> datetime | None:
        return unverified_expiry(token)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def _select_profiles(self, params: dict, token: str | None = None) -> list[dict]:
        resp = await self._request("GET", "/rest/v1/profiles", token=token, params=params)
        if resp.status_code >= 400:
            raise ProviderUnavailable(_error_message(resp))
        return _json(resp, list)

    async def get_profile(self, account_id: str) -> Account:
        rows = await self._select_profiles(
            {"id": f"eq.{account_id}", "select": ",".join(_PROFILE_COLUMNS)}, token=self._token_for(account_id)
        )
        if not rows:
            raise ProfileMissing()
        return _row_to_account(rows[0])

    async def update_profile(self, account_id: str, **fields) -> Account:
        if "id" in fields:
            raise ValueError("Account id is immutable")
        resp = await self._request(
            "PATCH",
            "/rest/v1/profiles",
            token=self._token_for(account_id),
            params={"id": f"eq.{account_id}"},
            json=fields,
            prefer="return=representation",
        )
        if resp.status_code == 409:
            raise DuplicateAccount()
        if resp.status_code >= 400:
            raise ProviderUnavailable(_error_message(resp))
        rows = _json(resp, list)
        if not rows:
            raise ProfileMissing()
        return _row_to_account(rows[0])

    async def delete_account(self, account_id: str) -> None:
        resp = await self._request(
            "DELETE", "/rest/v1/profiles", token=self._token_for(account_id), params={"id": f"eq.{account_id}"}
        )
        if resp.status_code >= 400:
            raise ProviderUnavailable(_error_message(resp))
        logger.warning("Profile %s removed; the identity itself remains with the provider", account_id)

    async def email_exists(self, email: str, exclude_id: str | None = None) -> bool:
        if exclude_id is not None:
            grant = self._grants.get(exclude_id)
            if grant is not None:
                rows = await self._select_profiles({"id": f"eq.{exclude_id}", "select": "email"}, token=grant.token)
                if rows and isinstance(rows[0], dict) and rows[0].get("email") == email:
                    return False
        resp = await self._request("POST", "/functions/v1/check-email-availability", json={"email": email})
        if resp.status_code >= 400:
            raise ProviderUnavailable(_error_message(resp))
        return not _json(resp).get("available", False)

    async def username_exists(self, username: str, exclude_id: str | None = None) -> bool:
        params = {"username": f"eq.{username}", "select": "id"}
        if exclude_id is not None:
            params["id"] = f"neq.{exclude_id}"
        return bool(await self._select_profiles(params, token=self._token_for(exclude_id)))

    async def peers_in_organization(self, organization: str, exclude_id: str | None = None) -> list[Account]:
        if not organization:
            return []
        params = {
            "organization": f"eq.{organization}",
            "is_seed": "is.false",
            "order": "full_name",
            "select": ",".join(_PROFILE_COLUMNS),
        }
        if exclude_id is not None:
            params["id"] = f"neq.{exclude_id}"
        rows = await self._select_profiles(params, token=self._token_for(exclude_id))
        return [_row_to_account(r) for r in rows]

    def close(self) -> None:
        self._http.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _json(resp: requests.Response, expected: type = dict):
    """Decode a successful response body, or raise ProviderUnavailable if it is not the expected shape."""
    try:
        body = resp.json()
    except ValueError as exc:
        logger.warning("Supabase returned a non-JSON body (HTTP %d)", resp.status_code)
        raise ProviderUnavailable() from exc
    if not isinstance(body, expected):
        logger.warning("Supabase returned %s, expected %s", type(body).__name__, expected.__name__)
        raise ProviderUnavailable()
    return body


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"Provider returned HTTP {resp.status_code}."
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return f"Provider returned HTTP {resp.status_code}."


def _row_to_account(row: dict) -> Account:
    try:
        return Account(
            id=row["id"],
            full_name=row.get("full_name") or "",
            username=row.get("username") or "",
            email=row.get("email") or "",
            organization=row.get("organization") or "",
            user_type=row.get("user_type") or "student",
            profile_image=row.get("profile_image") or "",
            problems_solved=int(row.get("problems_solved") or 0),
            points=int(row.get("points") or 0),
            rank=int(row.get("rank") or DEFAULT_RANK),
            is_seed=bool(row.get("is_seed")),
            created_at=row.get("created_at"),
            last_login=row.get("last_login"),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Malformed profile row from Supabase: %s", exc.__class__.__name__)
        raise ProviderUnavailable() from exc
