"""Request definition and execution routes."""

import logging
from fastapi import APIRouter, Depends, HTTPException

from requiety.api.deps import get_engine, get_store, to_http_exception
from requiety.exceptions import RequietyError
from requiety.schemas.api_request import APIRequestCreate, APIRequestSchema
from requiety.schemas.response import ResponseRecord
from requiety.services.api_testing import RequestExecutionEngine
from requiety.services.store import DatabaseStore

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=APIRequestSchema)
async def create_request(
    data: APIRequestCreate,
    store: DatabaseStore = Depends(get_store),
):
    """Create a request definition under a workspace or folder."""
    return await store.create_request(data)


@router.get("/{request_id}", response_model=APIRequestSchema)
async def get_request(
    request_id: str,
    store: DatabaseStore = Depends(get_store),
):
    """Get a request definition."""
    request = await store.get_request_by_id(request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Request not found")
    return request


@router.post("/{request_id}/send", response_model=ResponseRecord)
async def send_request(
    request_id: str,
    store: DatabaseStore = Depends(get_store),
    engine: RequestExecutionEngine = Depends(get_engine),
):
    """Execute a request and return the persisted response with its body."""
    try:
        request = await store.get_request(request_id)
        return await engine.execute_request(request)
    except RequietyError as e:
        raise to_http_exception(e)


@router.get("/{request_id}/responses", response_model=list[ResponseRecord])
async def get_response_history(
    request_id: str,
    limit: int = 10,
    store: DatabaseStore = Depends(get_store),
):
    """Most recent responses of a request, newest first."""
    return await store.get_response_history(request_id, limit=limit)


@router.delete("/{request_id}/responses")
async def delete_response_history(
    request_id: str,
    store: DatabaseStore = Depends(get_store),
):
    """Delete every stored response of a request, bodies included."""
    deleted = await store.delete_response_history(request_id)
    logger.info("Deleted %d responses of request %s", deleted, request_id)
    return {"deleted": deleted}
