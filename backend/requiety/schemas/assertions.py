"""Pydantic schemas for response assertions and their results."""

from typing import Literal, Any
from pydantic import BaseModel, Field

AssertionSource = Literal["status", "header", "jsonBody", "responseTime"]
AssertionOperator = Literal[
    "equals",
    "notEquals",
    "contains",
    "notContains",
    "greaterThan",
    "lessThan",
    "exists",
    "notExists",
    "isNull",
    "isNotNull",
]


class Assertion(BaseModel):
    """Declarative check evaluated against a response at send time.

    ``source`` and ``operator`` are plain strings so that rows written by
    newer clients still load; unknown values fail at evaluation time.
    """
    id: str
    source: str
    property: str | None = None  # Header name or JSONPath expression
    operator: str
    value: str | None = None
    enabled: bool = True


class AssertionResult(BaseModel):
    """Outcome of a single assertion.

    ``actual_value`` is left unset when the value was absent, so
    ``model_dump(exclude_unset=True)`` tells "missing" apart from null.
    """
    assertion_id: str
    status: Literal["pass", "fail"]
    actual_value: Any = None
    expected_value: Any = None
    error: str | None = None


class TestResult(BaseModel):
    """Aggregate of all enabled assertions of one execution."""
    __test__ = False  # not a pytest test class

    passed: int = 0
    failed: int = 0
    total: int = 0
    results: list[AssertionResult] = Field(default_factory=list)
