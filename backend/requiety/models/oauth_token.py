"""OAuth 2.0 token model, one token per request auth configuration."""

from datetime import datetime
from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from requiety.db.database import Base
from requiety.utils.ids import generate_id, utcnow


class OAuth2Token(Base):
    """Access token acquired for a request's OAuth 2.0 configuration."""
    __tablename__ = "oauth2_tokens"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("token"))
    request_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    access_token: Mapped[str] = mapped_column(Text)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_type: Mapped[str] = mapped_column(String(50), default="Bearer")
    scope: Mapped[str | None] = mapped_column(String(500), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
