"""SQLAlchemy-backed implementation of the engine's store collaborators."""

import logging
from datetime import datetime

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from requiety.db.database import AsyncSessionLocal
from requiety.exceptions import RequestNotFoundError, RequietyError
from requiety.models import APIRequest, Environment, Folder, OAuth2Token, Response, Variable, Workspace
from requiety.schemas.api_request import APIRequestCreate, APIRequestSchema
from requiety.schemas.environment import EnvironmentSchema, VariableSchema
from requiety.schemas.oauth_token import OAuth2TokenSchema
from requiety.schemas.response import ResponseCreate, ResponseRecord
from requiety.services.response_storage import FileBodyStorage

logger = logging.getLogger(__name__)

# Folders nest; stop walking after this many parents
MAX_FOLDER_DEPTH = 20


class DatabaseStore:
    """
    Workspaces, requests, environments, variables, responses and tokens.

    Every call opens its own session, so one store can be shared by
    concurrent executions.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        body_storage: FileBodyStorage | None = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.body_storage = body_storage

    # Workspaces and folders

    async def create_workspace(self, name: str) -> str:
        async with self.session_factory() as session:
            workspace = Workspace(name=name)
            session.add(workspace)
            await session.commit()
            return workspace.id

    async def create_folder(self, parent_id: str, name: str, sort_order: int = 0) -> str:
        async with self.session_factory() as session:
            folder = Folder(parent_id=parent_id, name=name, sort_order=sort_order)
            session.add(folder)
            await session.commit()
            return folder.id

    async def get_workspace_id_for_request(self, request_id: str) -> str | None:
        """Walk up through folders until a workspace is reached."""
        async with self.session_factory() as session:
            request = await session.get(APIRequest, request_id)
            if not request:
                return None

            parent_id = request.parent_id
            for _ in range(MAX_FOLDER_DEPTH):
                if await session.get(Workspace, parent_id):
                    return parent_id

                folder = await session.get(Folder, parent_id)
                if not folder:
                    return None
                parent_id = folder.parent_id

        logger.warning("Folder nesting too deep for request %s", request_id)
        return None

    # Requests

    async def create_request(self, data: APIRequestCreate) -> APIRequestSchema:
        async with self.session_factory() as session:
            request = APIRequest(**data.model_dump(mode="json"))
            session.add(request)
            await session.commit()
            await session.refresh(request)
            return APIRequestSchema.model_validate(request)

    async def get_request_by_id(self, request_id: str) -> APIRequestSchema | None:
        async with self.session_factory() as session:
            request = await session.get(APIRequest, request_id)
            return APIRequestSchema.model_validate(request) if request else None

    async def get_request(self, request_id: str) -> APIRequestSchema:
        request = await self.get_request_by_id(request_id)
        if request is None:
            raise RequestNotFoundError(f"Request not found: {request_id}")
        return request

    async def get_requests_recursive(self, parent_id: str) -> list[APIRequestSchema]:
        """Requests under a folder or workspace, including sub-folders, by sort_order."""
        async with self.session_factory() as session:
            requests = await self._collect_requests(session, parent_id, depth=0)
        return sorted(requests, key=lambda r: r.sort_order)

    async def _collect_requests(
        self, session: AsyncSession, parent_id: str, depth: int
    ) -> list[APIRequestSchema]:
        result = await session.execute(
            select(APIRequest).where(APIRequest.parent_id == parent_id)
        )
        requests = [APIRequestSchema.model_validate(r) for r in result.scalars().all()]

        if depth >= MAX_FOLDER_DEPTH:
            return requests

        folders = await session.execute(
            select(Folder).where(Folder.parent_id == parent_id).order_by(Folder.sort_order)
        )
        for folder in folders.scalars().all():
            requests.extend(await self._collect_requests(session, folder.id, depth + 1))
        return requests

    # Environments and variables

    async def create_environment(self, workspace_id: str, name: str, is_active: bool = False) -> EnvironmentSchema:
        async with self.session_factory() as session:
            environment = Environment(workspace_id=workspace_id, name=name, is_active=is_active)
            session.add(environment)
            await session.commit()
            return EnvironmentSchema.model_validate(environment)

    async def get_active_environment(self, workspace_id: str) -> EnvironmentSchema | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Environment)
                .where(Environment.workspace_id == workspace_id, Environment.is_active.is_(True))
                .limit(1)
            )
            environment = result.scalar_one_or_none()
            return EnvironmentSchema.model_validate(environment) if environment else None

    async def activate_environment(self, environment_id: str) -> EnvironmentSchema | None:
        """Make an environment the only active one in its workspace."""
        async with self.session_factory() as session:
            environment = await session.get(Environment, environment_id)
            if not environment:
                return None

            await session.execute(
                update(Environment)
                .where(Environment.workspace_id == environment.workspace_id)
                .values(is_active=False)
            )
            environment.is_active = True
            await session.commit()
            return EnvironmentSchema.model_validate(environment)

    async def get_variables_by_environment(self, environment_id: str) -> list[VariableSchema]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Variable)
                .where(Variable.environment_id == environment_id)
                .order_by(Variable.created_at)
            )
            return [VariableSchema.model_validate(v) for v in result.scalars().all()]

    async def update_variable(self, variable_id: str, *, value: str) -> VariableSchema:
        async with self.session_factory() as session:
            variable = await session.get(Variable, variable_id)
            if not variable:
                raise RequietyError(f"Variable not found: {variable_id}")
            variable.value = value
            await session.commit()
            return VariableSchema.model_validate(variable)

    async def create_variable(
        self,
        *,
        environment_id: str,
        key: str,
        value: str,
        is_secret: bool = False,
    ) -> VariableSchema:
        async with self.session_factory() as session:
            variable = Variable(
                environment_id=environment_id,
                key=key,
                value=value,
                is_secret=is_secret,
            )
            session.add(variable)
            await session.commit()
            return VariableSchema.model_validate(variable)

    # Responses

    async def create_response(self, data: ResponseCreate) -> ResponseRecord:
        fields = data.model_dump(exclude={"id", "test_results"}, mode="json")
        if data.id:
            fields["id"] = data.id
        if data.test_results is not None:
            # exclude_unset keeps "absent" actual values distinct from null
            fields["test_results"] = data.test_results.model_dump(mode="json", exclude_unset=True)

        async with self.session_factory() as session:
            response = Response(**fields)
            session.add(response)
            await session.commit()
            await session.refresh(response)
            return ResponseRecord.model_validate(response)

    async def get_response_history(self, request_id: str, limit: int = 10) -> list[ResponseRecord]:
        """Most recent responses of a request, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Response)
                .where(Response.request_id == request_id)
                .order_by(Response.created_at.desc())
                .limit(limit)
            )
            return [ResponseRecord.model_validate(r) for r in result.scalars().all()]

    async def get_response_by_id(self, response_id: str) -> ResponseRecord | None:
        async with self.session_factory() as session:
            response = await session.get(Response, response_id)
            return ResponseRecord.model_validate(response) if response else None

    async def delete_response(self, response_id: str) -> bool:
        async with self.session_factory() as session:
            response = await session.get(Response, response_id)
            if not response:
                return False
            body_path = response.body_path
            await session.delete(response)
            await session.commit()

        if self.body_storage and body_path:
            await self.body_storage.delete_response_body(body_path)
        return True

    async def delete_response_history(self, request_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Response.body_path).where(Response.request_id == request_id)
            )
            body_paths = [path for path in result.scalars().all() if path]

            deleted = await session.execute(delete(Response).where(Response.request_id == request_id))
            await session.commit()

        if self.body_storage:
            for body_path in body_paths:
                await self.body_storage.delete_response_body(body_path)
        return deleted.rowcount

    # OAuth 2.0 tokens

    async def get_token_by_request_id(self, request_id: str) -> OAuth2TokenSchema | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OAuth2Token).where(OAuth2Token.request_id == request_id)
            )
            token = result.scalar_one_or_none()
            return OAuth2TokenSchema.model_validate(token) if token else None

    async def save_token(
        self,
        request_id: str,
        access_token: str,
        *,
        refresh_token: str | None = None,
        token_type: str = "Bearer",
        scope: str | None = None,
        expires_at: datetime | None = None,
    ) -> OAuth2TokenSchema:
        """Insert or replace the token of a request."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(OAuth2Token).where(OAuth2Token.request_id == request_id)
            )
            token = result.scalar_one_or_none()
            if token is None:
                token = OAuth2Token(request_id=request_id)
                session.add(token)

            token.access_token = access_token
            token.refresh_token = refresh_token
            token.token_type = token_type
            token.scope = scope
            token.expires_at = expires_at
            await session.commit()
            return OAuth2TokenSchema.model_validate(token)
