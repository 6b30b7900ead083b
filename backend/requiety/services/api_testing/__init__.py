"""Request execution package: templates, scripts, transport, assertions."""

from requiety.services.api_testing.engine import RequestExecutionEngine
from requiety.services.api_testing.http_client import APIHttpClient, HTTPResponse
from requiety.services.api_testing.template_engine import TemplateEngine
from requiety.services.api_testing.assertion_engine import AssertionEngine
from requiety.services.api_testing.runner import CollectionRunner

__all__ = [
    "RequestExecutionEngine",
    "APIHttpClient",
    "HTTPResponse",
    "TemplateEngine",
    "AssertionEngine",
    "CollectionRunner",
]
