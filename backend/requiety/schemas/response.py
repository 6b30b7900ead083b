"""Pydantic schemas for persisted responses."""

from datetime import datetime
from pydantic import BaseModel, Field

from requiety.schemas.assertions import TestResult


class ResponseHeader(BaseModel):
    """Response header entry. Repeated headers appear once per value."""
    name: str
    value: str


class ResponseCreate(BaseModel):
    """Response metadata handed to the response store."""
    id: str | None = None  # Reuse the transport's id so body and record share it
    request_id: str
    status_code: int
    status_message: str = ""
    headers: list[ResponseHeader] = Field(default_factory=list)
    body_path: str = ""
    elapsed_time: int = 0
    test_results: TestResult | None = None


class ResponseRecord(BaseModel):
    """Persisted response, optionally carrying its body text."""
    id: str
    request_id: str
    status_code: int
    status_message: str = ""
    headers: list[ResponseHeader] = Field(default_factory=list)
    body: str | None = None
    body_path: str = ""
    elapsed_time: int = 0
    test_results: TestResult | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
