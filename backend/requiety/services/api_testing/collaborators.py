"""Contracts the execution engine needs from the host application."""

from typing import Protocol

from requiety.schemas.api_request import APIRequestSchema
from requiety.schemas.environment import EnvironmentSchema, VariableSchema
from requiety.schemas.oauth_token import OAuth2TokenSchema
from requiety.schemas.response import ResponseCreate, ResponseRecord
from requiety.services.api_testing.http_client import HTTPResponse


class VariableStore(Protocol):
    """Workspace, environment and variable lookups plus variable writes."""

    async def get_workspace_id_for_request(self, request_id: str) -> str | None: ...

    async def get_active_environment(self, workspace_id: str) -> EnvironmentSchema | None: ...

    async def get_variables_by_environment(self, environment_id: str) -> list[VariableSchema]: ...

    async def update_variable(self, variable_id: str, *, value: str) -> VariableSchema: ...

    async def create_variable(
        self,
        *,
        environment_id: str,
        key: str,
        value: str,
        is_secret: bool = False,
    ) -> VariableSchema: ...


class ResponseStore(Protocol):
    async def create_response(self, data: ResponseCreate) -> ResponseRecord: ...


class ExecutionStore(VariableStore, ResponseStore, Protocol):
    """Everything the engine reads and writes through a single store."""


class RequestTransport(Protocol):
    """Sends a rendered request. Network failures come back as status 0."""

    async def send_request(self, request: APIRequestSchema) -> HTTPResponse: ...


class BodyStorage(Protocol):
    """Out-of-band response body storage keyed by response id."""

    async def save_response_body(self, response_id: str, body: str) -> str: ...

    async def read_response_body(self, body_path: str) -> str: ...

    async def delete_response_body(self, body_path: str) -> None: ...


class TokenStore(Protocol):
    async def get_token_by_request_id(self, request_id: str) -> OAuth2TokenSchema | None: ...


class TokenRefresher(Protocol):
    async def refresh_token(self, request_id: str, refresh_token: str) -> OAuth2TokenSchema: ...
