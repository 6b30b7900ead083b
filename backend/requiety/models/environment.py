"""Environment and variable models."""

from datetime import datetime
from sqlalchemy import String, Text, Boolean, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from requiety.db.database import Base
from requiety.utils.ids import generate_id, utcnow


class Environment(Base):
    """Named variable set scoped to a workspace."""
    __tablename__ = "environments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("environment"))
    workspace_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))

    # At most one active environment per workspace
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    variables: Mapped[list["Variable"]] = relationship(
        "Variable", back_populates="environment", cascade="all, delete-orphan"
    )


class Variable(Base):
    """Key/value pair available to templates and scripts."""
    __tablename__ = "variables"
    __table_args__ = (UniqueConstraint("environment_id", "key", name="uq_variables_environment_key"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("variable"))
    environment_id: Mapped[str] = mapped_column(String(64), ForeignKey("environments.id"), index=True)

    key: Mapped[str] = mapped_column(String(255))
    value: Mapped[str] = mapped_column(Text, default="")
    is_secret: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    environment: Mapped["Environment"] = relationship("Environment", back_populates="variables")
