"""Tests for the restricted script sandbox."""

import asyncio
import io
import json
import logging
import time

import pytest

from requiety.exceptions import ScriptExecutionError, ScriptTimeoutError
from requiety.services.api_testing.script_sandbox import (
    DENIED_GLOBALS,
    ScriptConsole,
    build_sandbox_globals,
    compile_script,
    decode_value,
    encode_value,
    execute_script,
    run_job,
)


class Recorder:
    def __init__(self):
        self.calls = []

    def set(self, key, value):
        self.calls.append((key, value))

    def get(self, key):
        return {"token": "abc"}.get(key)

    def fail(self):
        raise ValueError("host side failure")


def no_references(value):
    raise AssertionError(f"unexpected reference: {value!r}")


def run_in_process(script, context=None, redact=()):
    """Run a job through the worker loop without spawning a process."""
    job = {
        "script": script,
        "context": {k: encode_value(v, no_references) for k, v in (context or {}).items()},
        "redact": list(redact),
    }
    writer = io.StringIO()
    code = run_job(io.StringIO(json.dumps(job) + "\n"), writer)
    messages = [json.loads(line) for line in writer.getvalue().splitlines()]
    return code, messages


@pytest.fixture
def spawned(monkeypatch):
    """Worker processes started during the test."""
    processes = []
    real_exec = asyncio.create_subprocess_exec

    async def recording_exec(*args, **kwargs):
        process = await real_exec(*args, **kwargs)
        processes.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", recording_exec)
    return processes


class TestCompileScript:
    def test_compile_simple(self):
        assert compile_script("x = 1") is not None

    def test_syntax_error(self):
        with pytest.raises(ScriptExecutionError):
            compile_script("def f(  ")

    def test_underscore_attribute_rejected(self):
        with pytest.raises(ScriptExecutionError):
            compile_script("x = ().__class__")

    def test_eval_rejected(self):
        with pytest.raises(ScriptExecutionError):
            compile_script("eval('1')")


class TestBuildSandboxGlobals:
    def test_includes_guards_and_helpers(self):
        g = build_sandbox_globals({}, ScriptConsole())
        for name in ("__builtins__", "_getattr_", "_getiter_", "_write_", "json", "JSON", "math", "console"):
            assert name in g

    def test_denied_names_bound_to_none(self):
        g = build_sandbox_globals({}, ScriptConsole())
        for name in DENIED_GLOBALS:
            assert g[name] is None

    def test_merges_context(self):
        g = build_sandbox_globals({"environment": "env"}, ScriptConsole())
        assert g["environment"] == "env"


class TestWireEncoding:
    def test_plain_values_by_value(self):
        value = {"a": [1, 2.5, "x", None, True]}
        encoded = encode_value(value, no_references)
        assert decode_value(encoded, no_references) == value

    def test_objects_by_reference(self):
        recorder = Recorder()
        encoded = encode_value({"env": recorder}, lambda obj: {"ref": 7})
        assert encoded == {"dict": {"env": {"ref": 7}}}
        assert decode_value(encoded, lambda ref: recorder)["env"] is recorder


class TestRunJob:
    def test_ready_then_done_with_context(self):
        code, messages = run_in_process("result = 1 + 2", {"result": None})

        assert code == 0
        assert [m["op"] for m in messages] == ["ready", "done"]
        assert messages[-1]["context"] == {"result": {"v": 3}}

    def test_denied_globals_are_absent(self):
        script = "seen = [os is None, sys is None, process is None, require is None, open is None, globals is None]"
        _, messages = run_in_process(script, {"seen": None})
        assert decode_value(messages[-1]["context"]["seen"], no_references) == [True] * 6

    def test_runtime_error_reported(self):
        code, messages = run_in_process('raise ValueError("boom")')
        assert code == 1
        assert messages[-1] == {"op": "error", "message": "boom"}

    def test_console_lines_masked(self):
        _, messages = run_in_process('console.warn("token", "s3cret")', redact=["s3cret"])
        assert messages[1] == {"op": "log", "level": logging.WARNING, "message": "token ******"}


class TestExecuteScript:
    @pytest.mark.asyncio
    async def test_blank_script_returns_same_context(self, spawned):
        context = {"a": 1}
        assert await execute_script("", context) is context
        assert await execute_script("   \n", context) is context
        assert spawned == []

    @pytest.mark.asyncio
    async def test_context_rebinding_copied_back(self):
        context = {"result": None}
        await execute_script("result = 1 + 2", context)
        assert context["result"] == 3

    @pytest.mark.asyncio
    async def test_capability_methods_reach_host_objects(self):
        recorder = Recorder()
        context = {"environment": recorder, "copy": None}

        await execute_script('environment.set("token", "abc")\ncopy = environment.get("token")', context)

        assert recorder.calls == [("token", "abc")]
        assert context["copy"] == "abc"
        assert context["environment"] is recorder

    @pytest.mark.asyncio
    async def test_host_errors_raised_in_script(self):
        context = {"environment": Recorder(), "caught": None}
        script = "try:\n    environment.fail()\nexcept Exception as e:\n    caught = str(e)"

        await execute_script(script, context)

        assert context["caught"] == "host side failure"

    @pytest.mark.asyncio
    async def test_json_helpers(self):
        context = {"value": None, "text": None}
        script = 'value = json.loads(\'{"a": 5}\')["a"]\ntext = JSON.stringify({"b": 1})'
        await execute_script(script, context)
        assert context["value"] == 5
        assert context["text"] == '{"b": 1}'

    @pytest.mark.asyncio
    async def test_import_fails(self):
        with pytest.raises(ScriptExecutionError):
            await execute_script("import os", {})

    @pytest.mark.asyncio
    async def test_runtime_error_carries_message(self):
        with pytest.raises(ScriptExecutionError, match="boom"):
            await execute_script('raise ValueError("boom")', {})

    @pytest.mark.asyncio
    async def test_infinite_loop_times_out(self, spawned):
        with pytest.raises(ScriptTimeoutError, match="100ms"):
            await execute_script("while True:\n    pass", {}, timeout_ms=100)
        assert spawned[0].returncode is not None

    @pytest.mark.asyncio
    async def test_long_builtin_call_times_out(self, spawned):
        context = {"finished": False}
        started = time.monotonic()

        with pytest.raises(ScriptTimeoutError):
            await execute_script("x = math.factorial(2000000)\nfinished = True", context, timeout_ms=100)

        assert time.monotonic() - started < 10
        assert context["finished"] is False
        assert spawned[0].returncode is not None

    @pytest.mark.asyncio
    async def test_bare_except_cannot_outlive_timeout(self, spawned):
        script = "while True:\n    try:\n        while True:\n            pass\n    except:\n        pass"

        with pytest.raises(ScriptTimeoutError):
            await execute_script(script, {}, timeout_ms=100)

        assert spawned[0].returncode is not None

    @pytest.mark.asyncio
    async def test_console_output_masks_secrets(self, caplog):
        caplog.set_level(logging.INFO, logger="requiety.scripts")
        await execute_script('console.log("token is", "s3cret")', {}, redact=["s3cret"])
        assert "[Script] token is ******" in caplog.text
        assert "s3cret" not in caplog.text

    @pytest.mark.asyncio
    async def test_print_goes_to_log(self, caplog):
        caplog.set_level(logging.INFO, logger="requiety.scripts")
        await execute_script('print("hello", 1)', {})
        assert "[Script] hello 1" in caplog.text

    @pytest.mark.asyncio
    async def test_globals_not_shared_between_runs(self):
        await execute_script("leaked = 1", {})
        context = {"seen": None}
        with pytest.raises(ScriptExecutionError):
            await execute_script("seen = leaked", context)
