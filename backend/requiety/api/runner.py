"""Collection runner routes."""

import logging
from fastapi import APIRouter, Depends

from requiety.api.deps import get_runner, to_http_exception
from requiety.exceptions import RequietyError
from requiety.schemas.runner import CollectionRunResult
from requiety.services.api_testing import CollectionRunner

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stop")
async def stop_run(runner: CollectionRunner = Depends(get_runner)):
    """Stop the active run before its next request."""
    return {"stopping": runner.stop()}


@router.post("/{target_id}", response_model=CollectionRunResult)
async def start_run(
    target_id: str,
    runner: CollectionRunner = Depends(get_runner),
):
    """Run every request under a folder or workspace."""
    try:
        return await runner.run(target_id)
    except RequietyError as e:
        raise to_http_exception(e)
