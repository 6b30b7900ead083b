"""Environment routes."""

from fastapi import APIRouter, Depends, HTTPException

from requiety.api.deps import get_store
from requiety.schemas.environment import EnvironmentSchema
from requiety.services.store import DatabaseStore

router = APIRouter()


@router.put("/{environment_id}/activate", response_model=EnvironmentSchema)
async def activate_environment(
    environment_id: str,
    store: DatabaseStore = Depends(get_store),
):
    """Make an environment the active one of its workspace."""
    environment = await store.activate_environment(environment_id)
    if not environment:
        raise HTTPException(status_code=404, detail="Environment not found")
    return environment
