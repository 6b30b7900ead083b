"""Tests for the collection runner."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from requiety.exceptions import RunnerBusyError, ScriptExecutionError
from requiety.schemas.assertions import TestResult
from requiety.schemas.response import ResponseRecord
from requiety.services.api_testing.runner import CollectionRunner


def record(request_id, failed=0, status_code=200):
    test_results = TestResult(passed=1, failed=failed, total=1 + failed) if failed else None
    return ResponseRecord(
        id=f"res_{request_id}",
        request_id=request_id,
        status_code=status_code,
        elapsed_time=15,
        test_results=test_results,
    )


@pytest.fixture
def requests(make_request):
    return [
        make_request(id="req_a", name="A", sort_order=0),
        make_request(id="req_b", name="B", sort_order=1),
        make_request(id="req_c", name="C", sort_order=2),
    ]


def make_runner(requests, outcomes, on_progress=None):
    engine = MagicMock()
    engine.execute_request = AsyncMock(side_effect=outcomes)
    store = MagicMock()
    store.get_requests_recursive = AsyncMock(return_value=requests)
    return CollectionRunner(engine, store, on_progress=on_progress), engine


class TestRun:
    @pytest.mark.asyncio
    async def test_counts_pass_fail_and_error(self, requests):
        runner, engine = make_runner(
            requests,
            [record("req_a"), record("req_b", failed=1), ScriptExecutionError("boom")],
        )

        result = await runner.run("fld_1")

        assert result.status == "completed"
        assert result.total_requests == 3
        assert result.passed_requests == 1
        assert result.failed_requests == 2
        assert [r.status for r in result.results] == ["pass", "fail", "error"]
        assert result.results[0].status_code == 200
        assert result.results[0].duration == 15
        assert result.results[2].error == "boom"
        assert result.finished_at >= result.started_at
        assert engine.execute_request.await_count == 3
        assert not runner.is_running

    @pytest.mark.asyncio
    async def test_empty_collection(self):
        runner, _ = make_runner([], [])
        result = await runner.run("wrk_1")
        assert result.status == "completed"
        assert result.total_requests == 0
        assert result.results == []

    @pytest.mark.asyncio
    async def test_progress_before_and_after_each_request(self, requests):
        progress = []

        async def on_progress(update):
            progress.append((update.completed, update.current_request_name))

        runner, _ = make_runner(requests, [record("req_a"), record("req_b"), record("req_c")], on_progress)

        await runner.run("fld_1")

        assert progress == [(0, "A"), (1, "A"), (1, "B"), (2, "B"), (2, "C"), (3, "C")]

    @pytest.mark.asyncio
    async def test_stop_ends_before_next_request(self, requests):
        runner = None

        async def on_progress(update):
            if update.completed == 1:
                runner.stop()

        runner, engine = make_runner(requests, [record("req_a"), record("req_b")], on_progress)

        result = await runner.run("fld_1")

        assert result.status == "stopped"
        assert len(result.results) == 1
        assert engine.execute_request.await_count == 1

    def test_stop_when_idle(self):
        runner, _ = make_runner([], [])
        assert runner.stop() is False

    @pytest.mark.asyncio
    async def test_second_run_rejected_while_active(self, requests):
        release = asyncio.Event()

        async def slow(request):
            await release.wait()
            return record(request.id)

        runner, engine = make_runner(requests[:1], None)
        engine.execute_request = AsyncMock(side_effect=slow)

        first = asyncio.create_task(runner.run("fld_1"))
        await asyncio.sleep(0)
        while not runner.is_running:
            await asyncio.sleep(0)

        with pytest.raises(RunnerBusyError):
            await runner.run("fld_1")

        release.set()
        result = await first
        assert result.status == "completed"
