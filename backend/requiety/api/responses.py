"""Stored response routes."""

from fastapi import APIRouter, Depends, HTTPException

from requiety.api.deps import get_body_storage, get_store
from requiety.schemas.response import ResponseRecord
from requiety.services.response_storage import FileBodyStorage
from requiety.services.store import DatabaseStore

router = APIRouter()


@router.get("/{response_id}", response_model=ResponseRecord)
async def get_response(
    response_id: str,
    store: DatabaseStore = Depends(get_store),
    body_storage: FileBodyStorage = Depends(get_body_storage),
):
    """Get a response with its body read back from storage."""
    response = await store.get_response_by_id(response_id)
    if not response:
        raise HTTPException(status_code=404, detail="Response not found")

    body = None
    if response.body_path:
        try:
            body = await body_storage.read_response_body(response.body_path)
        except FileNotFoundError:
            body = None
    return response.model_copy(update={"body": body})


@router.delete("/{response_id}")
async def delete_response(
    response_id: str,
    store: DatabaseStore = Depends(get_store),
):
    """Delete a response and its body."""
    if not await store.delete_response(response_id):
        raise HTTPException(status_code=404, detail="Response not found")
    return {"status": "deleted"}
