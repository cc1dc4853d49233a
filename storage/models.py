"""
Serialized form of the session record kept in each storage namespace.

These Pydantic v2 models define the on-disk contract. They are intentionally
separate from the dataclasses in auth/models.py, which own the in-memory
domain representation. SessionStore maps between the two.

A blob that fails validation is a corrupt record; the store drops it.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import CurrentUser, SessionGrant


class StoredUser(BaseModel):
    """Redacted account projection plus the session it was stored with."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    full_name: str
    username: str
    email: str
    user_type: Literal["student", "professional"] = "student"
    organization: str = ""
    profile_image: str = ""
    problems_solved: int = Field(default=0, ge=0)
    points: int = Field(default=0, ge=0)
    rank: int = Field(default=7, ge=1, le=7)
    last_login: Optional[str] = None

    device_id: Optional[str] = None
    token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    issued_at: Optional[datetime] = None

    # Seconds since the epoch at which this copy was written. The newer copy
    # wins when the two namespaces disagree.
    last_sync_timestamp: float = 0.0

    @classmethod
    def from_state(cls, user: CurrentUser, grant: Optional[SessionGrant], synced_at: float) -> "StoredUser":
        data = user.as_dict()
        if grant is not None:
            data.update(
                token=grant.token,
                refresh_token=grant.refresh_token,
                token_expiry=grant.token_expiry,
                issued_at=grant.issued_at,
                device_id=grant.device_id,
            )
        return cls(last_sync_timestamp=synced_at, **data)

    def to_user(self) -> CurrentUser:
        return CurrentUser(
            id=self.id,
            full_name=self.full_name,
            username=self.username,
            email=self.email,
            user_type=self.user_type,
            organization=self.organization,
            profile_image=self.profile_image,
            problems_solved=self.problems_solved,
            points=self.points,
            rank=self.rank,
            last_login=self.last_login,
            device_id=self.device_id,
        )

    def to_grant(self) -> Optional[SessionGrant]:
        if not self.token or self.token_expiry is None:
            return None
        return SessionGrant(
            account_id=self.id,
            token=self.token,
            token_expiry=self.token_expiry,
            device_id=self.device_id or "",
            issued_at=self.issued_at or self.token_expiry,
            refresh_token=self.refresh_token,
        )
