"""Shared service instances for the API routers."""

from functools import lru_cache

from fastapi import HTTPException

from requiety.config import get_settings
from requiety.exceptions import RequestNotFoundError, RequietyError, RunnerBusyError
from requiety.services.api_testing import APIHttpClient, CollectionRunner, RequestExecutionEngine
from requiety.services.response_storage import FileBodyStorage
from requiety.services.store import DatabaseStore


@lru_cache
def get_body_storage() -> FileBodyStorage:
    return FileBodyStorage()


@lru_cache
def get_store() -> DatabaseStore:
    return DatabaseStore(body_storage=get_body_storage())


@lru_cache
def get_http_client() -> APIHttpClient:
    return APIHttpClient.from_settings(get_settings())


@lru_cache
def get_engine() -> RequestExecutionEngine:
    store = get_store()
    return RequestExecutionEngine(
        store,
        get_http_client(),
        get_body_storage(),
        token_store=store,
        script_timeout_ms=get_settings().script_timeout_ms,
    )


@lru_cache
def get_runner() -> CollectionRunner:
    return CollectionRunner(get_engine(), get_store())


def to_http_exception(error: RequietyError) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(error, RequestNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, RunnerBusyError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
