"""Workspace and folder models: the tree that owns requests."""

from datetime import datetime
from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from requiety.db.database import Base
from requiety.utils.ids import generate_id, utcnow


class Workspace(Base):
    """Top-level container for folders, requests and environments."""
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("workspace"))
    name: Mapped[str] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Folder(Base):
    """Folder inside a workspace or another folder."""
    __tablename__ = "folders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("folder"))
    # Workspace id or folder id
    parent_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
