"""Assertion engine for response checks."""

import json
import math
from typing import Any, Iterable

from jsonpath_ng import parse as jsonpath_parse

from requiety.schemas.api_request import RequestHeader
from requiety.schemas.assertions import Assertion, AssertionResult, TestResult
from requiety.schemas.response import ResponseHeader
from requiety.services.api_testing.http_client import HTTPResponse


class _Missing:
    """Marker for a value that is absent, as opposed to JSON null."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

# Parsed-body marker for responses that are empty or not JSON
_ABSENT_BODY = object()


def to_number(value: Any) -> float:
    """
    Numeric coercion used by status/responseTime and ordering operators.

    ====================  =====================================
    value                 result
    ====================  =====================================
    MISSING               NaN
    None                  0
    bool                  1 / 0
    int, float            unchanged
    str                   stripped; "" -> 0; decimal, hex, "Infinity"; else NaN
    list                  coerced via its string form
    dict and others       NaN
    ====================  =====================================
    """
    if value is MISSING:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
        lowered = text.lower()
        try:
            if lowered.startswith(("0x", "0o", "0b")):
                return float(int(lowered, 0))
            if lowered in ("inf", "+inf", "-inf", "nan", "infinity", "-infinity", "+infinity"):
                return math.nan
            return float(text)
        except ValueError:
            return math.nan
    if isinstance(value, list):
        return to_number(to_primitive_string(value))
    return math.nan


def to_primitive_string(value: Any) -> str:
    """String form used when a container meets a scalar in loose equality."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join(to_primitive_string(item) for item in value)
    if isinstance(value, dict):
        return "[object Object]"
    return str(value)


def loose_equals(actual: Any, expected: Any) -> bool:
    """
    Cross-type equality for ``equals`` / ``notEquals``.

    Coercion table, applied in order:

    1. null/MISSING vs null/MISSING   -> equal
    2. null/MISSING vs anything else  -> not equal
    3. bool on either side            -> replaced by 1 / 0, then compared again
    4. number vs number               -> numeric equality (NaN never equal)
    5. number vs str                  -> str coerced with ``to_number``
    6. str vs str                     -> exact string equality
    7. list/dict vs number or str     -> container reduced with
       ``to_primitive_string``, then compared again
    8. list/dict vs list/dict         -> identity only
    """
    actual_nullish = actual is None or actual is MISSING
    expected_nullish = expected is None or expected is MISSING
    if actual_nullish or expected_nullish:
        return actual_nullish and expected_nullish

    if isinstance(actual, bool):
        return loose_equals(1 if actual else 0, expected)
    if isinstance(expected, bool):
        return loose_equals(actual, 1 if expected else 0)

    actual_is_number = isinstance(actual, (int, float))
    expected_is_number = isinstance(expected, (int, float))
    if actual_is_number and expected_is_number:
        return float(actual) == float(expected)
    if actual_is_number and isinstance(expected, str):
        return float(actual) == to_number(expected)
    if expected_is_number and isinstance(actual, str):
        return to_number(actual) == float(expected)
    if isinstance(actual, str) and isinstance(expected, str):
        return actual == expected

    actual_is_container = isinstance(actual, (list, dict))
    expected_is_container = isinstance(expected, (list, dict))
    if actual_is_container and expected_is_container:
        return actual is expected
    if actual_is_container:
        return loose_equals(to_primitive_string(actual), expected)
    if expected_is_container:
        return loose_equals(actual, to_primitive_string(expected))

    return actual == expected


def find_header(headers: Iterable[ResponseHeader | RequestHeader], name: str) -> Any:
    """Case-insensitive header lookup; MISSING when absent."""
    target = name.lower()
    for header in headers:
        if header.name.lower() == target:
            return header.value
    return MISSING


def parse_body(raw_body: str | None) -> Any:
    """Best-effort JSON parse; empty or invalid bodies give the absent marker."""
    if not raw_body:
        return _ABSENT_BODY
    try:
        return json.loads(raw_body)
    except (json.JSONDecodeError, ValueError):
        return _ABSENT_BODY


class AssertionEngine:
    """
    Evaluates response assertions.

    Supported sources:
    - status: Response status code
    - header: Response header, looked up case-insensitively
    - jsonBody: Value selected by a JSONPath expression
    - responseTime: Elapsed milliseconds
    """

    def run(
        self,
        assertions: Iterable[Assertion] | None,
        response: HTTPResponse,
        raw_body: str | None,
    ) -> TestResult:
        """
        Run all enabled assertions.

        Args:
            assertions: Declared assertions; disabled ones are skipped
            response: Dispatched response
            raw_body: Body text, parsed once for jsonBody checks

        Returns:
            TestResult with one entry per enabled assertion, in order
        """
        enabled = [a for a in assertions or [] if a.enabled]
        if not enabled:
            return TestResult()

        json_body = parse_body(raw_body)
        results = [self.run_one(assertion, response, json_body) for assertion in enabled]

        passed = sum(1 for r in results if r.status == "pass")
        return TestResult(
            passed=passed,
            failed=len(results) - passed,
            total=len(results),
            results=results,
        )

    def run_one(self, assertion: Assertion, response: HTTPResponse, json_body: Any) -> AssertionResult:
        """Evaluate a single assertion. Never raises."""
        handlers = {
            "status": self._actual_status,
            "header": self._actual_header,
            "jsonBody": self._actual_json_body,
            "responseTime": self._actual_response_time,
        }

        handler = handlers.get(assertion.source)
        if not handler:
            return AssertionResult(
                assertion_id=assertion.id,
                status="fail",
                error=f"Unknown assertion source: {assertion.source}",
            )

        try:
            actual = handler(assertion, response, json_body)
            if assertion.source in ("status", "responseTime"):
                expected = to_number(assertion.value if assertion.value is not None else MISSING)
            else:
                expected = assertion.value if assertion.value is not None else MISSING
            passed = self._compare(actual, assertion.operator, expected)
        except Exception as e:
            return AssertionResult(
                assertion_id=assertion.id,
                status="fail",
                error=str(e),
            )

        fields: dict[str, Any] = {
            "assertion_id": assertion.id,
            "status": "pass" if passed else "fail",
            "expected_value": assertion.value,
        }
        if actual is not MISSING:
            fields["actual_value"] = actual
        return AssertionResult(**fields)

    def _actual_status(self, assertion: Assertion, response: HTTPResponse, json_body: Any) -> Any:
        return response.status_code

    def _actual_response_time(self, assertion: Assertion, response: HTTPResponse, json_body: Any) -> Any:
        return response.elapsed_ms

    def _actual_header(self, assertion: Assertion, response: HTTPResponse, json_body: Any) -> Any:
        if not assertion.property:
            raise ValueError("Header name is required")
        return find_header(response.headers, assertion.property)

    def _actual_json_body(self, assertion: Assertion, response: HTTPResponse, json_body: Any) -> Any:
        if json_body is _ABSENT_BODY:
            raise ValueError("Response body is not valid JSON")
        if not assertion.property:
            raise ValueError("JSON path is required")

        jsonpath_expr = jsonpath_parse(assertion.property)
        matches = [match.value for match in jsonpath_expr.find(json_body)]

        if not matches:
            return MISSING
        if len(matches) == 1:
            return matches[0]
        return matches

    def _compare(self, actual: Any, operator: str, expected: Any) -> bool:
        if operator == "exists":
            return actual is not MISSING and actual is not None
        if operator == "notExists":
            return actual is MISSING or actual is None
        if operator == "isNull":
            return actual is None
        if operator == "isNotNull":
            return actual is not None

        if operator == "equals":
            return loose_equals(actual, expected)
        if operator == "notEquals":
            return not loose_equals(actual, expected)

        if operator in ("contains", "notContains"):
            if not isinstance(actual, str) or not isinstance(expected, str):
                raise ValueError(f"Operator {operator} requires string values")
            found = expected in actual
            return found if operator == "contains" else not found

        if operator == "greaterThan":
            return to_number(actual) > to_number(expected)
        if operator == "lessThan":
            return to_number(actual) < to_number(expected)

        raise ValueError(f"Unknown assertion operator: {operator}")


_default_engine = AssertionEngine()


def run_assertions(
    assertions: Iterable[Assertion] | None,
    response: HTTPResponse,
    raw_body: str | None,
) -> TestResult:
    """Run assertions with the shared engine."""
    return _default_engine.run(assertions, response, raw_body)
