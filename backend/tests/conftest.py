"""Shared fixtures for the Requiety test suite."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import requiety.models  # noqa: F401  registers tables on Base.metadata
from requiety.db.database import Base
from requiety.schemas.api_request import APIRequestSchema
from requiety.schemas.response import ResponseHeader
from requiety.services.api_testing.http_client import HTTPResponse
from requiety.services.response_storage import FileBodyStorage
from requiety.services.store import DatabaseStore


@pytest.fixture
def make_request():
    """Factory for stored request definitions."""

    def _make(**overrides) -> APIRequestSchema:
        fields = {
            "id": "req_1",
            "parent_id": "wrk_1",
            "name": "Get user",
            "method": "GET",
            "url": "https://api.example.com/users/1",
        }
        fields.update(overrides)
        return APIRequestSchema.model_validate(fields)

    return _make


@pytest.fixture
def make_response():
    """Factory for transport responses."""

    def _make(**overrides) -> HTTPResponse:
        fields = {
            "id": "res_1",
            "request_id": "req_1",
            "status_code": 200,
            "status_message": "OK",
            "headers": [ResponseHeader(name="Content-Type", value="application/json")],
            "body": '{"id": 42, "name": "Ada"}',
            "elapsed_ms": 120,
            "size_bytes": 25,
        }
        fields.update(overrides)
        return HTTPResponse(**fields)

    return _make


@pytest.fixture
def body_storage(tmp_path) -> FileBodyStorage:
    return FileBodyStorage(tmp_path / "responses")


@pytest_asyncio.fixture
async def store(tmp_path, body_storage):
    """DatabaseStore over a fresh SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'requiety.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield DatabaseStore(session_factory, body_storage)

    await engine.dispose()
