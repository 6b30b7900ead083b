"""Pydantic schemas for collection runs."""

from typing import Literal
from pydantic import BaseModel, Field

from requiety.schemas.assertions import TestResult

RunnerStatus = Literal["idle", "running", "completed", "stopped", "error"]


class RunProgress(BaseModel):
    """Progress notification emitted around each request of a run."""
    total: int
    completed: int
    current_request_name: str
    passed: int
    failed: int


class RequestRunResult(BaseModel):
    """Outcome of one request within a run."""
    request_id: str
    request_name: str
    status: Literal["pass", "fail", "error"]
    status_code: int | None = None
    duration: int = 0
    assertion_results: TestResult | None = None
    error: str | None = None


class CollectionRunResult(BaseModel):
    """Summary of a folder or workspace run."""
    status: RunnerStatus
    total_requests: int = 0
    passed_requests: int = 0
    failed_requests: int = 0  # Failed assertions or execution errors
    started_at: float
    finished_at: float
    results: list[RequestRunResult] = Field(default_factory=list)
