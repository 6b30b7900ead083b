"""Request execution engine: resolve, script, render, send, assert, persist."""

import json
import logging
from types import SimpleNamespace
from typing import Any
from urllib.parse import urlsplit

from requiety.exceptions import OAuthTokenError
from requiety.schemas.api_request import APIRequestSchema, RequestHeader
from requiety.schemas.assertions import TestResult
from requiety.schemas.environment import EnvironmentSchema, VariableSchema
from requiety.schemas.response import ResponseCreate, ResponseHeader, ResponseRecord
from requiety.services.api_testing.assertion_engine import AssertionEngine
from requiety.services.api_testing.collaborators import (
    BodyStorage,
    ExecutionStore,
    RequestTransport,
    TokenRefresher,
    TokenStore,
)
from requiety.services.api_testing.http_client import HTTPResponse
from requiety.services.api_testing.script_sandbox import DEFAULT_TIMEOUT_MS, execute_script
from requiety.services.api_testing.template_engine import TemplateEngine

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


def stringify(value: Any) -> str:
    """Variable values are strings; script values are converted on write."""
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    return str(value)


class VariableScope:
    """
    Variable access handed to scripts as ``environment`` / ``variables``.

    Reads come from the variables loaded for this execution. Writes are
    queued in ``pending`` and persisted by the engine after the script ends.
    """

    def __init__(self, variables: list[VariableSchema]):
        self.variables = variables
        self.pending: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        variable = self.find(key)
        return variable.value if variable else None

    def set(self, key: str, value: Any) -> None:
        self.pending[str(key)] = stringify(value)

    def has(self, key: str) -> bool:
        return self.find(key) is not None

    def to_dict(self) -> dict[str, str]:
        return {variable.key: variable.value for variable in self.variables}

    def find(self, key: str) -> VariableSchema | None:
        for variable in reversed(self.variables):
            if variable.key == key:
                return variable
        return None

    def secrets(self) -> list[str]:
        return [v.value for v in self.variables if v.is_secret and v.value]


class ResponseView:
    """Read-only response exposed to post-request scripts."""

    def __init__(self, response: HTTPResponse):
        self.code = response.status_code
        self.status = response.status_message
        self.headers = {h.name: h.value for h in response.headers}
        self.body = response.body
        self.response_time = response.elapsed_ms

    def header(self, name: str) -> str | None:
        target = name.lower()
        for key, value in self.headers.items():
            if key.lower() == target:
                return value
        return None

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except (TypeError, ValueError):
            return None

    def text(self) -> str:
        return self.body


class RequestExecutionEngine:
    """
    Executes one stored request end to end.

    Pipeline:
    1. Resolve the active environment and its variables
    2. Run the pre-request script and flush its variable writes
    3. Render templates, inject OAuth 2.0 bearer, recompute auto Host
    4. Dispatch through the transport
    5. Run the post-request script and flush its variable writes
    6. Evaluate assertions
    7. Persist the body and the response record

    Any exception aborts the pipeline; nothing is persisted in that case.
    """

    def __init__(
        self,
        store: ExecutionStore,
        transport: RequestTransport,
        body_storage: BodyStorage,
        *,
        token_store: TokenStore | None = None,
        token_refresher: TokenRefresher | None = None,
        script_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        template_engine: TemplateEngine | None = None,
        assertion_engine: AssertionEngine | None = None,
    ):
        """
        Args:
            store: VariableStore and ResponseStore implementation
            transport: Sends rendered requests
            body_storage: Stores response bodies keyed by response id
            token_store: Looks up OAuth 2.0 tokens for oauth2 requests
            token_refresher: Refreshes expired OAuth 2.0 tokens
            script_timeout_ms: Budget per pre/post script
        """
        self.store = store
        self.transport = transport
        self.body_storage = body_storage
        self.token_store = token_store
        self.token_refresher = token_refresher
        self.script_timeout_ms = script_timeout_ms
        self.template_engine = template_engine or TemplateEngine()
        self.assertion_engine = assertion_engine or AssertionEngine()

    async def execute_request(self, request: APIRequestSchema) -> ResponseRecord:
        """
        Execute a request and persist its response.

        Returns:
            The persisted response record carrying the body text

        Raises:
            ScriptError: A pre/post script failed or timed out
            OAuthTokenError: No usable OAuth 2.0 token
            TransportConfigError: The request could not be dispatched
        """
        try:
            return await self._execute(request)
        except Exception as e:
            logger.error("Execution of request %s aborted: %s", request.id, e)
            raise

    async def _execute(self, request: APIRequestSchema) -> ResponseRecord:
        logger.debug("Request %s: resolving context", request.id)
        environment, variables = await self._resolve_context(request.id)
        scope = VariableScope(variables)

        if environment and request.pre_request_script:
            logger.debug("Request %s: running pre-request script", request.id)
            await self._run_script(request.pre_request_script, scope)
            await self._flush(scope, environment)

        logger.debug("Request %s: rendering", request.id)
        rendered = self.template_engine.render_request(request, scope.variables)
        if rendered.authentication.type == "oauth2":
            await self._apply_oauth2(rendered)
        self._update_host_header(rendered)

        logger.debug("Request %s: dispatching %s %s", request.id, rendered.method, rendered.url)
        response = await self.transport.send_request(rendered)

        if environment and request.post_request_script:
            logger.debug("Request %s: running post-request script", request.id)
            await self._run_script(request.post_request_script, scope, response)
            await self._flush(scope, environment)

        test_results = None
        if request.assertions:
            logger.debug("Request %s: evaluating assertions", request.id)
            test_results = self.assertion_engine.run(request.assertions, response, response.body)

        logger.debug("Request %s: persisting response %s", request.id, response.id)
        return await self._persist(request, response, test_results)

    async def _resolve_context(
        self, request_id: str
    ) -> tuple[EnvironmentSchema | None, list[VariableSchema]]:
        workspace_id = await self.store.get_workspace_id_for_request(request_id)
        if not workspace_id:
            return None, []

        environment = await self.store.get_active_environment(workspace_id)
        if not environment:
            return None, []

        variables = await self.store.get_variables_by_environment(environment.id)
        return environment, list(variables)

    async def _run_script(
        self,
        script: str,
        scope: VariableScope,
        response: HTTPResponse | None = None,
    ) -> None:
        context: dict[str, Any] = {"environment": scope, "variables": scope}
        pm = SimpleNamespace(environment=scope, variables=scope)
        if response is not None:
            view = ResponseView(response)
            context["response"] = view
            pm.response = view
        context["pm"] = pm

        await execute_script(
            script,
            context,
            self.script_timeout_ms,
            redact=scope.secrets(),
        )

    async def _flush(self, scope: VariableScope, environment: EnvironmentSchema) -> None:
        """Persist queued script writes and mirror them in the in-memory list."""
        pending = dict(scope.pending)
        scope.pending.clear()

        for key, value in pending.items():
            existing = scope.find(key)
            if existing:
                await self.store.update_variable(existing.id, value=value)
                existing.value = value
            else:
                created = await self.store.create_variable(
                    environment_id=environment.id,
                    key=key,
                    value=value,
                    is_secret=False,
                )
                scope.variables.append(created)

    async def _apply_oauth2(self, request: APIRequestSchema) -> None:
        token = None
        if self.token_store is not None:
            token = await self.token_store.get_token_by_request_id(request.id)

        if token is not None and token.is_expired():
            if token.refresh_token and self.token_refresher is not None:
                logger.debug("Request %s: refreshing expired OAuth 2.0 token", request.id)
                try:
                    token = await self.token_refresher.refresh_token(request.id, token.refresh_token)
                except Exception as e:
                    raise OAuthTokenError(f"Failed to refresh OAuth 2.0 token: {e}") from e
            else:
                token = None

        if token is None or not token.access_token:
            raise OAuthTokenError(f"No valid OAuth 2.0 token for request {request.id}")

        request.headers = [h for h in request.headers if h.name.lower() != "authorization"]
        request.headers.append(
            RequestHeader(name="Authorization", value=f"Bearer {token.access_token}")
        )

    def _update_host_header(self, request: APIRequestSchema) -> None:
        host = url_host(request.url)
        if host is None:
            return
        for header in request.headers:
            if header.is_auto and header.enabled and header.name.lower() == "host":
                header.value = host

    async def _persist(
        self,
        request: APIRequestSchema,
        response: HTTPResponse,
        test_results: TestResult | None,
    ) -> ResponseRecord:
        body_path = await self.body_storage.save_response_body(response.id, response.body)

        data = ResponseCreate(
            id=response.id,
            request_id=request.id,
            status_code=response.status_code,
            status_message=response.status_message,
            headers=[ResponseHeader(name=h.name, value=h.value) for h in response.headers],
            body_path=body_path,
            elapsed_time=response.elapsed_ms,
            test_results=test_results,
        )
        try:
            record = await self.store.create_response(data)
        except Exception:
            try:
                await self.body_storage.delete_response_body(body_path)
            except OSError as cleanup_error:
                logger.warning("Could not remove orphaned body %s: %s", body_path, cleanup_error)
            raise

        return record.model_copy(update={"body": response.body})


def url_host(url: str) -> str | None:
    """``host[:port]`` of a URL, port omitted when default. None if unparsable."""
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        port = parts.port
    except ValueError:
        return None
    if not hostname:
        return None
    if ":" in hostname:
        hostname = f"[{hostname}]"
    if port is not None and DEFAULT_PORTS.get(parts.scheme.lower()) != port:
        return f"{hostname}:{port}"
    return hostname
