"""Sequential execution of every request under a folder or workspace."""

import logging
import time
from typing import Awaitable, Callable

from requiety.exceptions import RunnerBusyError
from requiety.schemas.runner import CollectionRunResult, RequestRunResult, RunnerStatus, RunProgress
from requiety.services.api_testing.engine import RequestExecutionEngine

logger = logging.getLogger(__name__)


class CollectionRunner:
    """
    Runs a collection through the execution engine, one request at a time.

    A request whose assertions fail counts as ``fail``; a request whose
    execution raises counts as ``error`` and the run moves on.
    """

    def __init__(
        self,
        engine: RequestExecutionEngine,
        store,
        on_progress: Callable[[RunProgress], Awaitable[None]] | None = None,
    ):
        """
        Args:
            engine: Executes and persists single requests
            store: Provides ``get_requests_recursive(parent_id)``
            on_progress: Called before and after each request
        """
        self.engine = engine
        self.store = store
        self.on_progress = on_progress
        self.status: RunnerStatus = "idle"
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    def stop(self) -> bool:
        """Ask the active run to end before its next request."""
        if not self.is_running:
            return False
        self._stop_requested = True
        return True

    async def run(self, target_id: str) -> CollectionRunResult:
        """
        Run every request below a folder or workspace, ordered by sort_order.

        Raises:
            RunnerBusyError: Another run is already active on this runner
        """
        if self.is_running:
            raise RunnerBusyError("Runner is already active")

        self.status = "running"
        self._stop_requested = False
        started_at = time.time()

        try:
            requests = await self.store.get_requests_recursive(target_id)
        except Exception:
            self.status = "error"
            raise

        total = len(requests)
        passed = failed = 0
        results: list[RequestRunResult] = []
        logger.info("Starting run of %s: %d requests", target_id, total)

        try:
            for index, request in enumerate(requests):
                if self._stop_requested:
                    logger.info("Run of %s stopped after %d requests", target_id, index)
                    break

                await self._notify(total, index, request.name, passed, failed)

                result = await self._run_request(request)
                results.append(result)
                if result.status == "pass":
                    passed += 1
                else:
                    failed += 1

                await self._notify(total, index + 1, request.name, passed, failed)
        finally:
            final_status: RunnerStatus = "stopped" if self._stop_requested else "completed"
            self.status = "idle"
            self._stop_requested = False

        return CollectionRunResult(
            status=final_status,
            total_requests=total,
            passed_requests=passed,
            failed_requests=failed,
            started_at=started_at,
            finished_at=time.time(),
            results=results,
        )

    async def _run_request(self, request) -> RequestRunResult:
        try:
            response = await self.engine.execute_request(request)
        except Exception as e:
            logger.warning("Runner error for request %s: %s", request.name, e)
            return RequestRunResult(
                request_id=request.id,
                request_name=request.name,
                status="error",
                duration=0,
                error=str(e),
            )

        test_results = response.test_results
        has_failures = test_results is not None and test_results.failed > 0
        return RequestRunResult(
            request_id=request.id,
            request_name=request.name,
            status="fail" if has_failures else "pass",
            status_code=response.status_code,
            duration=response.elapsed_time,
            assertion_results=test_results,
        )

    async def _notify(self, total: int, completed: int, name: str, passed: int, failed: int) -> None:
        if self.on_progress is None:
            return
        await self.on_progress(
            RunProgress(
                total=total,
                completed=completed,
                current_request_name=name,
                passed=passed,
                failed=failed,
            )
        )
