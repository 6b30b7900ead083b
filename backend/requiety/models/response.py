"""Response model for persisted execution results."""

from datetime import datetime
from sqlalchemy import String, Text, Integer, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from requiety.db.database import Base
from requiety.utils.ids import generate_id, utcnow


class Response(Base):
    """Metadata of one request execution. The body lives in body storage."""
    __tablename__ = "responses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: generate_id("response"))
    request_id: Mapped[str] = mapped_column(String(64), index=True)

    # 0 means the transport failed before a response arrived
    status_code: Mapped[int] = mapped_column(Integer)
    status_message: Mapped[str] = mapped_column(Text, default="")

    # [{name, value}]
    headers: Mapped[list] = mapped_column(JSON, default=list)

    # Locator returned by body storage
    body_path: Mapped[str] = mapped_column(String(1000), default="")

    elapsed_time: Mapped[int] = mapped_column(Integer, default=0)

    # {passed, failed, total, results: [{assertion_id, status, actual_value, expected_value, error}]}
    test_results: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
