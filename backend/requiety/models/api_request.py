"""API Request model for stored request definitions."""

from datetime import datetime
from sqlalchemy import String, Text, Integer, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from requiety.db.database import Base
from requiety.utils.ids import generate_id, utcnow


class APIRequest(Base):
    """Request definition owned by a workspace or folder."""
    __tablename__ = "api_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("request"))
    # Folder id or workspace id
    parent_id: Mapped[str] = mapped_column(String(64), index=True)

    name: Mapped[str] = mapped_column(String(255))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    # HTTP request definition
    method: Mapped[str] = mapped_column(String(10), default="GET")
    url: Mapped[str] = mapped_column(String(2000), default="")

    # [{name, value, enabled, is_auto}]
    headers: Mapped[list] = mapped_column(JSON, default=list)

    # {type: "none"|"raw"|"text"|"json"|"form-urlencoded"|"form-data"|"graphql", text, params, graphql}
    body: Mapped[dict] = mapped_column(JSON, default=dict)

    # {type: "none"|"bearer"|"basic"|"oauth2", token, username, password, oauth2}
    authentication: Mapped[dict] = mapped_column(JSON, default=dict)

    # [{id, source, property, operator, value, enabled}]
    assertions: Mapped[list] = mapped_column(JSON, default=list)

    pre_request_script: Mapped[str | None] = mapped_column(Text, nullable=True)
    post_request_script: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
