"""Pydantic schemas for stored OAuth 2.0 tokens."""

from datetime import datetime
from pydantic import BaseModel

from requiety.utils.ids import utcnow


class OAuth2TokenSchema(BaseModel):
    """Access token attached to a request's OAuth 2.0 configuration."""
    id: str
    request_id: str
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: str | None = None
    expires_at: datetime | None = None  # naive UTC

    model_config = {"from_attributes": True}

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())
