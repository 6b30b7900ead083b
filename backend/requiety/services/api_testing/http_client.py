"""Async HTTP transport with timing and response capture."""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from requiety.config import Settings, get_settings
from requiety.exceptions import TransportConfigError
from requiety.schemas.api_request import APIRequestSchema
from requiety.schemas.response import ResponseHeader
from requiety.utils.ids import generate_id

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


@dataclass
class HTTPResponse:
    """Captured HTTP response. ``status_code`` 0 means the call never completed."""
    id: str
    request_id: str
    status_code: int
    status_message: str = ""
    headers: list[ResponseHeader] = field(default_factory=list)
    body: str = ""
    elapsed_ms: int = 0
    size_bytes: int = 0
    error: str | None = None

    def json(self) -> Any:
        """Parse response body as JSON."""
        return json.loads(self.body)

    def header(self, name: str) -> str | None:
        """First value of a header, case-insensitive."""
        target = name.lower()
        for header in self.headers:
            if header.name.lower() == target:
                return header.value
        return None


class APIHttpClient:
    """httpx-backed request transport."""

    def __init__(
        self,
        timeout_ms: int = 30000,
        follow_redirects: bool = True,
        verify_ssl: bool = True,
        max_redirects: int = 10,
        max_body_size: int = 10 * 1024 * 1024,  # 10MB max response body
        user_agent: str = "Requiety/1.0.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if timeout_ms <= 0:
            raise TransportConfigError(f"Invalid request timeout: {timeout_ms}")
        if max_redirects < 0:
            raise TransportConfigError(f"Invalid redirect limit: {max_redirects}")

        self.timeout_ms = timeout_ms
        self.follow_redirects = follow_redirects
        self.verify_ssl = verify_ssl
        self.max_redirects = max_redirects
        self.max_body_size = max_body_size
        self.user_agent = user_agent
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs) -> "APIHttpClient":
        settings = settings or get_settings()
        return cls(
            timeout_ms=settings.request_timeout_ms,
            follow_redirects=settings.follow_redirects,
            verify_ssl=settings.validate_ssl,
            max_redirects=settings.max_redirects,
            max_body_size=settings.max_body_size,
            user_agent=settings.user_agent,
            **kwargs,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_ms / 1000),
                follow_redirects=self.follow_redirects,
                max_redirects=self.max_redirects,
                verify=self.verify_ssl,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send_request(self, request: APIRequestSchema) -> HTTPResponse:
        """
        Dispatch a rendered request.

        Args:
            request: Request with every template already rendered

        Returns:
            HTTPResponse; network failures and timeouts are reported as
            status 0 with the failure description in
            ``status_message`` and ``error``

        Raises:
            TransportConfigError: The request cannot be dispatched at all
        """
        method = (request.method or "").upper()
        if method not in SUPPORTED_METHODS:
            raise TransportConfigError(f"Unsupported HTTP method: {request.method}")

        response_id = generate_id("response")
        kwargs = self._build_kwargs(method, request)
        client = await self._get_client()

        start_time = time.perf_counter()

        try:
            response = await client.request(**kwargs)

            body_bytes = response.content
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            size_bytes = len(body_bytes)
            if size_bytes > self.max_body_size:
                body_bytes = body_bytes[:self.max_body_size]

            try:
                body_text = body_bytes.decode("utf-8")
            except UnicodeDecodeError:
                body_text = body_bytes.decode("latin-1")

            return HTTPResponse(
                id=response_id,
                request_id=request.id,
                status_code=response.status_code,
                status_message=response.reason_phrase,
                headers=[
                    ResponseHeader(name=name, value=value)
                    for name, value in response.headers.multi_items()
                ],
                body=body_text,
                elapsed_ms=elapsed_ms,
                size_bytes=size_bytes,
            )

        except httpx.TimeoutException as e:
            error = f"Timeout: {str(e) or type(e).__name__}"
        except httpx.ConnectError as e:
            error = f"Connection error: {str(e)}"
        except httpx.HTTPError as e:
            error = f"Request error: {str(e)}"
        except (httpx.InvalidURL, ValueError) as e:
            # Rendered URLs come from user templates
            error = f"Invalid URL: {str(e) or type(e).__name__}"

        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        logger.warning("Request %s failed: %s", request.id, error)
        return HTTPResponse(
            id=response_id,
            request_id=request.id,
            status_code=0,
            status_message=error,
            elapsed_ms=elapsed_ms,
            error=error,
        )

    def _build_kwargs(self, method: str, request: APIRequestSchema) -> dict[str, Any]:
        headers: list[tuple[str, str]] = [
            (h.name, h.value) for h in request.headers if h.enabled and h.name
        ]

        kwargs: dict[str, Any] = {
            "method": method,
            "url": request.url,
        }

        body = request.body
        if body.type in ("json", "raw", "text"):
            if body.text:
                kwargs["content"] = body.text.encode("utf-8")
                if body.type == "json":
                    self._default_header(headers, "Content-Type", "application/json")
                elif body.type == "text":
                    self._default_header(headers, "Content-Type", "text/plain")
        elif body.type == "form-urlencoded":
            pairs = [(p.name, p.value) for p in body.params if p.enabled and p.name]
            kwargs["content"] = urlencode(pairs).encode("utf-8")
            self._default_header(headers, "Content-Type", "application/x-www-form-urlencoded")
        elif body.type == "form-data":
            fields = [(p.name, (None, p.value)) for p in body.params if p.enabled and p.name]
            if fields:
                kwargs["files"] = fields
        elif body.type == "graphql" and body.graphql is not None:
            payload = {
                "query": body.graphql.query,
                "variables": self._graphql_variables(request.id, body.graphql.variables),
            }
            kwargs["content"] = json.dumps(payload).encode("utf-8")
            self._default_header(headers, "Content-Type", "application/json")

        auth = request.authentication
        if auth.type == "bearer" and auth.token:
            self._default_header(headers, "Authorization", f"Bearer {auth.token}")
        elif auth.type == "basic" and (auth.username or auth.password):
            kwargs["auth"] = httpx.BasicAuth(auth.username or "", auth.password or "")

        self._default_header(headers, "User-Agent", self.user_agent)
        kwargs["headers"] = headers
        return kwargs

    @staticmethod
    def _default_header(headers: list[tuple[str, str]], name: str, value: str) -> None:
        target = name.lower()
        if not any(existing.lower() == target for existing, _ in headers):
            headers.append((name, value))

    @staticmethod
    def _graphql_variables(request_id: str, variables: str | None) -> Any:
        if not variables or not variables.strip():
            return {}
        try:
            return json.loads(variables)
        except json.JSONDecodeError as e:
            logger.warning("Invalid GraphQL variables for request %s: %s", request_id, e)
            return {}
