"""Tests for the SQLAlchemy store."""

from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from requiety.exceptions import RequestNotFoundError
from requiety.schemas.api_request import APIRequestCreate, RequestHeader
from requiety.schemas.assertions import AssertionResult, TestResult
from requiety.schemas.response import ResponseCreate, ResponseHeader
from requiety.utils.ids import utcnow


async def add_request(store, parent_id, name="Request", sort_order=0):
    return await store.create_request(
        APIRequestCreate(parent_id=parent_id, name=name, sort_order=sort_order, url="https://x.io")
    )


class TestRequests:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        workspace_id = await store.create_workspace("Main")
        created = await store.create_request(
            APIRequestCreate(
                parent_id=workspace_id,
                name="List users",
                url="{{base}}/users",
                headers=[RequestHeader(name="Accept", value="application/json")],
            )
        )

        loaded = await store.get_request_by_id(created.id)

        assert created.id.startswith("req_")
        assert loaded.url == "{{base}}/users"
        assert loaded.headers[0].name == "Accept"
        assert loaded.body.type == "none"

    @pytest.mark.asyncio
    async def test_get_request_raises_when_missing(self, store):
        assert await store.get_request_by_id("req_missing") is None
        with pytest.raises(RequestNotFoundError):
            await store.get_request("req_missing")

    @pytest.mark.asyncio
    async def test_requests_recursive_sorted(self, store):
        workspace_id = await store.create_workspace("Main")
        folder_id = await store.create_folder(workspace_id, "Users")
        nested_id = await store.create_folder(folder_id, "Admin")
        await add_request(store, workspace_id, "root", sort_order=2)
        await add_request(store, folder_id, "folder", sort_order=0)
        await add_request(store, nested_id, "nested", sort_order=1)
        await add_request(store, "fld_elsewhere", "other", sort_order=0)

        requests = await store.get_requests_recursive(workspace_id)

        assert [r.name for r in requests] == ["folder", "nested", "root"]


class TestWorkspaceLookup:
    @pytest.mark.asyncio
    async def test_walks_nested_folders(self, store):
        workspace_id = await store.create_workspace("Main")
        outer = await store.create_folder(workspace_id, "outer")
        inner = await store.create_folder(outer, "inner")
        request = await add_request(store, inner)

        assert await store.get_workspace_id_for_request(request.id) == workspace_id

    @pytest.mark.asyncio
    async def test_orphan_request(self, store):
        request = await add_request(store, "fld_gone")
        assert await store.get_workspace_id_for_request(request.id) is None

    @pytest.mark.asyncio
    async def test_unknown_request(self, store):
        assert await store.get_workspace_id_for_request("req_missing") is None


class TestEnvironments:
    @pytest.mark.asyncio
    async def test_activate_leaves_one_active(self, store):
        workspace_id = await store.create_workspace("Main")
        dev = await store.create_environment(workspace_id, "Dev", is_active=True)
        prod = await store.create_environment(workspace_id, "Prod")

        activated = await store.activate_environment(prod.id)
        active = await store.get_active_environment(workspace_id)

        assert activated.is_active
        assert active.id == prod.id
        assert active.id != dev.id

    @pytest.mark.asyncio
    async def test_activate_unknown(self, store):
        assert await store.activate_environment("env_missing") is None

    @pytest.mark.asyncio
    async def test_no_active_environment(self, store):
        workspace_id = await store.create_workspace("Main")
        await store.create_environment(workspace_id, "Dev")
        assert await store.get_active_environment(workspace_id) is None

    @pytest.mark.asyncio
    async def test_variables_create_and_update(self, store):
        workspace_id = await store.create_workspace("Main")
        env = await store.create_environment(workspace_id, "Dev", is_active=True)
        created = await store.create_variable(environment_id=env.id, key="token", value="a")

        updated = await store.update_variable(created.id, value="b")
        variables = await store.get_variables_by_environment(env.id)

        assert updated.value == "b"
        assert [(v.key, v.value, v.is_secret) for v in variables] == [("token", "b", False)]

    @pytest.mark.asyncio
    async def test_duplicate_key_rejected(self, store):
        workspace_id = await store.create_workspace("Main")
        env = await store.create_environment(workspace_id, "Dev")
        await store.create_variable(environment_id=env.id, key="token", value="a")

        with pytest.raises(IntegrityError):
            await store.create_variable(environment_id=env.id, key="token", value="b")

    @pytest.mark.asyncio
    async def test_same_key_in_other_environment(self, store):
        workspace_id = await store.create_workspace("Main")
        dev = await store.create_environment(workspace_id, "Dev")
        prod = await store.create_environment(workspace_id, "Prod")
        await store.create_variable(environment_id=dev.id, key="token", value="a")
        await store.create_variable(environment_id=prod.id, key="token", value="b")

        assert len(await store.get_variables_by_environment(prod.id)) == 1


class TestResponses:
    @pytest.mark.asyncio
    async def test_create_keeps_given_id(self, store):
        record = await store.create_response(
            ResponseCreate(
                id="res_fixed",
                request_id="req_1",
                status_code=200,
                status_message="OK",
                headers=[ResponseHeader(name="A", value="1")],
                body_path="/tmp/res_fixed.txt",
                elapsed_time=12,
            )
        )
        assert record.id == "res_fixed"
        assert record.headers[0].value == "1"
        assert record.created_at is not None

    @pytest.mark.asyncio
    async def test_absent_actual_value_survives_storage(self, store):
        results = TestResult(
            passed=0,
            failed=1,
            total=1,
            results=[AssertionResult(assertion_id="a1", status="fail", expected_value="x")],
        )
        await store.create_response(
            ResponseCreate(id="res_1", request_id="req_1", status_code=200, test_results=results)
        )

        loaded = await store.get_response_by_id("res_1")

        assert "actual_value" not in loaded.test_results.results[0].model_fields_set

    @pytest.mark.asyncio
    async def test_history_newest_first_with_limit(self, store):
        for index in range(3):
            await store.create_response(
                ResponseCreate(id=f"res_{index}", request_id="req_1", status_code=200 + index)
            )
        await store.create_response(ResponseCreate(id="res_other", request_id="req_2", status_code=200))

        history = await store.get_response_history("req_1", limit=2)

        assert [r.id for r in history] == ["res_2", "res_1"]

    @pytest.mark.asyncio
    async def test_delete_response_removes_body(self, store, body_storage):
        body_path = await body_storage.save_response_body("res_1", "hello")
        await store.create_response(
            ResponseCreate(id="res_1", request_id="req_1", status_code=200, body_path=body_path)
        )

        assert await store.delete_response("res_1") is True
        assert await store.get_response_by_id("res_1") is None
        assert not Path(body_path).exists()
        assert await store.delete_response("res_1") is False

    @pytest.mark.asyncio
    async def test_delete_history(self, store, body_storage):
        paths = []
        for index in range(2):
            path = await body_storage.save_response_body(f"res_{index}", "body")
            paths.append(path)
            await store.create_response(
                ResponseCreate(id=f"res_{index}", request_id="req_1", status_code=200, body_path=path)
            )

        deleted = await store.delete_response_history("req_1")

        assert deleted == 2
        assert await store.get_response_history("req_1") == []
        assert not any(Path(p).exists() for p in paths)


class TestTokens:
    @pytest.mark.asyncio
    async def test_save_and_get(self, store):
        assert await store.get_token_by_request_id("req_1") is None

        await store.save_token("req_1", "first")
        token = await store.save_token(
            "req_1", "second", refresh_token="r", expires_at=utcnow() - timedelta(seconds=1)
        )

        loaded = await store.get_token_by_request_id("req_1")
        assert loaded.id == token.id
        assert loaded.access_token == "second"
        assert loaded.is_expired()

    @pytest.mark.asyncio
    async def test_token_without_expiry_never_expires(self, store):
        token = await store.save_token("req_1", "forever")
        assert not token.is_expired()
