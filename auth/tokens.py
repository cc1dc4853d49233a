"""
auth/tokens.py -- Session tokens and credential hashing.

Security design decisions:
  Tokens: python-jose with HS256, signed with SECRET_KEY. Claims are
       sub (account id), device_id, iat, exp, and a random jti. The token is a
       local freshness hint for the session cache, not a security boundary:
       whoever holds SECRET_KEY can mint one. The hosted provider adapter
       never mints tokens and only reads the expiry of the provider's own
       access token (unverified_expiry below).

       Expiry is checked against the injected Clock rather than inside
       jwt.decode() so tests can move time deterministically. The comparison
       is strict: a token whose exp equals now is already invalid.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in AccountDirectory.find_by_credentials() so response time
       does not reveal whether an email is registered.

Layer rule: no imports from storage/ or practice/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from core.clock import Clock, SystemClock

logger = logging.getLogger("codegen.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt refuses inputs longer than 72 bytes; auth.policy rejects such
    passwords before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except Exception:
        return False


# Timing equalization dummy hash. Computed once at module load so the first
# login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("codegen_timing_dummy")


def burn_dummy_check(plain: str) -> None:
    """Spend one bcrypt comparison on a lookup that already failed."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenClaims:
    account_id: str
    device_id: str
    issued_at: datetime
    expires_at: datetime


def _to_datetime(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class TokenIssuer:
    """Issues and checks signed, expiring session tokens.

    Usage:
        issuer = TokenIssuer(secret_key, validity_seconds=7 * 86400)
        token, expiry = issuer.issue("acct-1", "device-1")
        issuer.is_valid(token)   # True until expiry
    """

    def __init__(self, secret_key: str, validity_seconds: int, clock: Clock | None = None) -> None:
        self._secret_key = secret_key
        self._validity = timedelta(seconds=validity_seconds)
        self._clock = clock or SystemClock()

    def issue(self, account_id: str, device_id: str) -> tuple[str, datetime]:
        """Return (token, expiry) for a fresh session."""
        issued_at = self._clock.now().replace(microsecond=0)
        expires_at = issued_at + self._validity
        payload = {
            "sub": account_id,
            "device_id": device_id,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM), expires_at

    def decode(self, token: str) -> TokenClaims:
        """Verify the signature and shape. Raises TokenInvalid; ignores expiry."""
        if not isinstance(token, str) or not token:
            raise TokenInvalid()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
            return TokenClaims(
                account_id=str(payload["sub"]),
                device_id=str(payload.get("device_id", "")),
                issued_at=_to_datetime(payload["iat"]),
                expires_at=_to_datetime(payload["exp"]),
            )
        except (JWTError, KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc

    def check(self, token: str) -> TokenClaims:
        """Decode and enforce expiry. Raises TokenInvalid or TokenExpired."""
        claims = self.decode(token)
        if not self._clock.now() < claims.expires_at:
            raise TokenExpired()
        return claims

    def is_valid(self, token: str | None) -> bool:
        """True iff the token decodes and now < exp. Never raises."""
        try:
            self.check(token)  # type: ignore[arg-type]
        except TokenInvalid as exc:
            logger.debug("Token rejected: %s", exc.code)
            return False
        return True


def unverified_expiry(token: str | None) -> datetime | None:
    """Read the exp claim of a token signed by someone else.

    Used for provider-issued access tokens whose signing key the client does
    not hold. Returns None when the token is malformed or has no exp.
    """
    if not token:
        return None
    try:
        claims = jwt.get_unverified_claims(token)
        return _to_datetime(claims["exp"])
    except (JWTError, KeyError, TypeError, ValueError):
        return None
