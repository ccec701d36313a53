"""Identity and change-notification models."""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthUser(BaseModel):
    """The authenticated principal as reported by the identity provider."""

    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    aud: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


ChangeType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    """Notification that a row changed. Carries no row data."""

    table: str
    type: ChangeType
    record_id: Optional[str] = None
    owner: Optional[str] = Field(
        None, exclude=True, description="Owner of the changed row, used for scoping only"
    )
    commit_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
