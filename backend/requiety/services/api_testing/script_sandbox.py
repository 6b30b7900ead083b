"""Restricted execution of pre/post request scripts.

Scripts are Python source compiled with RestrictedPython. Each call starts a
fresh worker process (``script_worker``) that builds its globals from an
allow-list; nothing is shared between calls except the constant definitions
in this module. The worker is killed when the script overruns its budget.

Capability objects in the caller's context stay in the host process. The
script sees stand-ins whose attribute reads and calls are forwarded over the
worker's stdin/stdout, one JSON message per line:

    worker -> host  {"op": "getattr" | "call" | "log" | "ready" | "done" | "error", ...}
    host -> worker  {"value": <encoded>} or {"error": message, "type": name}

Plain values (None, bool, int, float, str, lists and str-keyed dicts of
those) cross by value; anything else crosses as a reference.
"""

import asyncio
import json
import logging
import math
import operator
import os
import sys
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Iterable, MutableMapping, TextIO
from urllib.parse import quote, quote_plus, unquote, unquote_plus, urlencode

from RestrictedPython import compile_restricted_exec, limited_builtins, safe_builtins, utility_builtins
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)
from RestrictedPython.PrintCollector import PrintCollector

import requiety
from requiety.exceptions import ScriptExecutionError, ScriptTimeoutError

logger = logging.getLogger(__name__)
script_logger = logging.getLogger("requiety.scripts")

DEFAULT_TIMEOUT_MS = 1000
SCRIPT_FILENAME = "<script>"
REDACTED = "******"
WORKER_MODULE = "requiety.services.api_testing.script_worker"

# Worker start-up (interpreter boot and imports) is not part of the script budget
STARTUP_TIMEOUT_S = 30
# Messages carry response bodies, so allow long lines
_STREAM_LIMIT = 64 * 1024 * 1024

# Host capabilities a script must never reach. Bound to None so lookups
# resolve to "absent" instead of falling through to real builtins.
DENIED_GLOBALS = (
    "process",
    "require",
    "module",
    "exports",
    "os",
    "sys",
    "subprocess",
    "importlib",
    "builtins",
    "open",
    "input",
    "breakpoint",
    "help",
    "exit",
    "quit",
    "globals",
    "locals",
    "vars",
    "dir",
    "getattr",
    "setattr",
    "delattr",
    "hasattr",
    "type",
    "object",
    "super",
    "memoryview",
    "classmethod",
    "staticmethod",
    "property",
)

CONTAINER_HELPERS = {
    "dict": dict,
    "list": list,
    "set": set,
    "frozenset": frozenset,
    "min": min,
    "max": max,
    "sum": sum,
    "any": any,
    "all": all,
    "enumerate": enumerate,
    "map": map,
    "filter": filter,
    "reversed": reversed,
}

_INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "^=": operator.ixor,
    "|=": operator.ior,
}

_PLAIN_TYPES = (str, bool, int, float, type(None))


class HostCallError(Exception):
    """A forwarded capability call failed in the host process."""


def _inplacevar(op: str, x: Any, y: Any) -> Any:
    handler = _INPLACE_OPERATORS.get(op)
    if handler is None:
        raise SyntaxError(f"Unsupported in-place operator: {op}")
    return handler(x, y)


def _apply(func, *args, **kwargs):
    return func(*args, **kwargs)


class ScriptConsole:
    """console.* replacement that routes through the host logger."""

    def __init__(self, redact: Iterable[str] = (), sink: Callable[[int, str], None] | None = None):
        # Longest first so a secret containing another is masked whole
        self.secrets = sorted({s for s in redact if s}, key=len, reverse=True)
        self._sink = sink

    def log(self, *args: Any) -> None:
        self._emit(logging.INFO, args)

    def info(self, *args: Any) -> None:
        self._emit(logging.INFO, args)

    def debug(self, *args: Any) -> None:
        self._emit(logging.DEBUG, args)

    def warn(self, *args: Any) -> None:
        self._emit(logging.WARNING, args)

    warning = warn

    def error(self, *args: Any) -> None:
        self._emit(logging.ERROR, args)

    def mask(self, message: str) -> str:
        for secret in self.secrets:
            message = message.replace(secret, REDACTED)
        return message

    def _emit(self, level: int, args: tuple) -> None:
        message = self.mask(" ".join(_format_arg(arg) for arg in args))
        if self._sink is not None:
            self._sink(level, message)
        else:
            script_logger.log(level, "[Script] %s", message)


def _format_arg(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            return repr(value)
    return str(value)


def _print_factory(console: ScriptConsole):
    """Build the ``_print_`` hook so ``print()`` lands in the script log."""

    class _ConsolePrint(PrintCollector):
        def _call_print(self, *objects, **kwargs):
            console.log(*objects)

    return _ConsolePrint


def build_sandbox_globals(
    context: MutableMapping[str, Any],
    console: ScriptConsole,
) -> dict[str, Any]:
    """
    Build the globals mapping for one script run.

    Args:
        context: Capability objects exposed to the script by name
        console: Logger proxy bound to this run

    Returns:
        Fresh globals holding only allow-listed names, the RestrictedPython
        guard hooks and the caller's context
    """
    builtins: dict[str, Any] = {}
    builtins.update(safe_builtins)
    builtins.update(limited_builtins)
    builtins.update(utility_builtins)
    builtins.update(CONTAINER_HELPERS)

    sandbox: dict[str, Any] = {
        "__builtins__": builtins,
        "__name__": "script",
        # RestrictedPython guard hooks
        "_getattr_": safer_getattr,
        "_getitem_": default_guarded_getitem,
        "_getiter_": default_guarded_getiter,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": full_write_guard,
        "_inplacevar_": _inplacevar,
        "_apply_": _apply,
        "_print_": _print_factory(console),
        # Structured data, math and time
        "json": SimpleNamespace(loads=json.loads, dumps=json.dumps),
        "JSON": SimpleNamespace(parse=json.loads, stringify=json.dumps),
        "math": math,
        "datetime": datetime,
        "date": date,
        "time": time,
        "timedelta": timedelta,
        "timezone": timezone,
        # Numeric parsing
        "int": int,
        "float": float,
        # URI helpers
        "quote": quote,
        "quote_plus": quote_plus,
        "unquote": unquote,
        "unquote_plus": unquote_plus,
        "urlencode": urlencode,
        "console": console,
    }
    for name in DENIED_GLOBALS:
        sandbox[name] = None

    sandbox.update(context)
    return sandbox


def compile_script(script: str):
    """Compile script text under the RestrictedPython policy."""
    result = compile_restricted_exec(script, filename=SCRIPT_FILENAME)
    if result.errors:
        raise ScriptExecutionError("; ".join(result.errors))
    return result.code


# Wire encoding

def encode_value(value: Any, reference: Callable[[Any], dict]) -> dict:
    """Encode plain data by value and hand everything else to ``reference``."""
    if isinstance(value, _PLAIN_TYPES):
        return {"v": value}
    if isinstance(value, (list, tuple)):
        return {"list": [encode_value(item, reference) for item in value]}
    if isinstance(value, dict) and all(isinstance(key, str) for key in value):
        return {"dict": {key: encode_value(item, reference) for key, item in value.items()}}
    return reference(value)


def decode_value(data: dict, resolve: Callable[[int], Any]) -> Any:
    if "v" in data:
        return data["v"]
    if "list" in data:
        return [decode_value(item, resolve) for item in data["list"]]
    if "dict" in data:
        return {key: decode_value(item, resolve) for key, item in data["dict"].items()}
    return resolve(data["ref"])


# Worker side

class RemoteObject:
    """Stand-in for a host object; attribute reads and calls go to the host."""

    def __init__(self, channel: "HostChannel", ref: int):
        self._channel = channel
        self._ref = ref

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._channel.request({"op": "getattr", "ref": self._ref, "name": name})

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._channel.request({
            "op": "call",
            "ref": self._ref,
            "args": [self._channel.encode(arg) for arg in args],
            "kwargs": {key: self._channel.encode(value) for key, value in kwargs.items()},
        })

    def __repr__(self) -> str:
        return f"<host object {self._ref}>"


class HostChannel:
    """Worker end of the line-delimited JSON channel to the host."""

    def __init__(self, reader: TextIO, writer: TextIO):
        self._reader = reader
        self._writer = writer

    def send(self, message: dict) -> None:
        self._writer.write(json.dumps(message, default=str) + "\n")
        self._writer.flush()

    def log(self, level: int, message: str) -> None:
        self.send({"op": "log", "level": level, "message": message})

    def request(self, message: dict) -> Any:
        self.send(message)
        line = self._reader.readline()
        if not line:
            raise HostCallError("Host closed the script channel")

        reply = json.loads(line)
        if "error" in reply:
            if reply.get("type") == "AttributeError":
                raise AttributeError(reply["error"])
            raise HostCallError(reply["error"])
        return self.decode(reply["value"])

    def encode(self, value: Any) -> dict:
        return encode_value(value, self._reference)

    def decode(self, data: dict) -> Any:
        return decode_value(data, lambda ref: RemoteObject(self, ref))

    @staticmethod
    def _reference(value: Any) -> dict:
        if isinstance(value, RemoteObject):
            return {"ref": value._ref}
        # Worker-local objects cannot be called back; send their text
        return {"v": str(value)}


def run_job(reader: TextIO, writer: TextIO) -> int:
    """
    Execute one script job inside the worker process.

    The first line on ``reader`` is the job: script text, encoded context and
    secrets to mask. Later lines are replies to forwarded calls.

    Returns:
        Process exit code
    """
    channel = HostChannel(reader, writer)
    job = json.loads(reader.readline())
    console = ScriptConsole(job.get("redact") or (), sink=channel.log)

    try:
        code = compile_script(job["script"])
    except ScriptExecutionError as e:
        channel.send({"op": "error", "message": str(e)})
        return 1

    context = {key: channel.decode(value) for key, value in job["context"].items()}
    sandbox = build_sandbox_globals(context, console)
    channel.send({"op": "ready"})

    try:
        exec(code, sandbox)
    except Exception as e:
        channel.send({"op": "error", "message": str(e) or type(e).__name__})
        return 1

    channel.send({
        "op": "done",
        "context": {key: channel.encode(sandbox.get(key)) for key in context},
    })
    return 0


# Host side

class _HostObjects:
    """Objects the worker reaches by reference, and the calls it makes on them."""

    def __init__(self):
        self._objects: list[Any] = []
        self._refs: dict[int, int] = {}

    def encode(self, value: Any) -> dict:
        return encode_value(value, self._register)

    def decode(self, data: dict) -> Any:
        return decode_value(data, self._objects.__getitem__)

    def handle(self, message: dict) -> dict:
        try:
            target = self._objects[message["ref"]]
            if message["op"] == "getattr":
                name = message["name"]
                if name.startswith("_"):
                    raise AttributeError(f"Access to {name!r} is not allowed")
                value = getattr(target, name)
            else:
                args = [self.decode(arg) for arg in message.get("args", [])]
                kwargs = {key: self.decode(v) for key, v in message.get("kwargs", {}).items()}
                value = target(*args, **kwargs)
            return {"value": self.encode(value)}
        except Exception as e:
            # Delivered to the script as a raised exception
            return {"error": str(e) or type(e).__name__, "type": type(e).__name__}

    def _register(self, value: Any) -> dict:
        ref = self._refs.get(id(value))
        if ref is None:
            ref = len(self._objects)
            self._objects.append(value)
            self._refs[id(value)] = ref
        return {"ref": ref}


def _worker_env() -> dict[str, str]:
    env = dict(os.environ)
    package_root = str(Path(requiety.__file__).resolve().parent.parent)
    env["PYTHONPATH"] = os.pathsep.join(p for p in (package_root, env.get("PYTHONPATH")) if p)
    return env


async def _write_message(process: asyncio.subprocess.Process, message: dict) -> None:
    process.stdin.write((json.dumps(message, default=str) + "\n").encode("utf-8"))
    await process.stdin.drain()


async def _serve(process: asyncio.subprocess.Process, objects: _HostObjects) -> dict:
    """Answer forwarded calls and relay console output until a lifecycle message arrives."""
    while True:
        line = await process.stdout.readline()
        if not line:
            return {"op": "exit"}

        message = json.loads(line)
        op = message.get("op")
        if op == "log":
            script_logger.log(message["level"], "[Script] %s", message["message"])
        elif op in ("getattr", "call"):
            try:
                await _write_message(process, objects.handle(message))
            except (BrokenPipeError, ConnectionResetError):
                return {"op": "exit"}
        else:
            return message


async def _run_job(
    process: asyncio.subprocess.Process,
    job: dict,
    objects: _HostObjects,
    timeout_ms: int,
) -> dict:
    try:
        await _write_message(process, job)
    except (BrokenPipeError, ConnectionResetError):
        return {"op": "exit"}

    try:
        message = await asyncio.wait_for(_serve(process, objects), timeout=STARTUP_TIMEOUT_S)
    except asyncio.TimeoutError:
        raise ScriptExecutionError("Script worker did not start in time") from None
    if message.get("op") != "ready":
        return message

    try:
        return await asyncio.wait_for(_serve(process, objects), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        raise ScriptTimeoutError(f"Script execution timed out after {timeout_ms}ms") from None


async def _stop(process: asyncio.subprocess.Process) -> bytes:
    """Kill the worker if it is still running and collect its stderr."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("Script worker %s already exited", process.pid)
    _, stderr = await process.communicate()
    return stderr or b""


async def execute_script(
    script: str | None,
    context: MutableMapping[str, Any],
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    *,
    redact: Iterable[str] = (),
) -> MutableMapping[str, Any]:
    """
    Run a user script against a capability context.

    Args:
        script: Python source; empty or blank scripts are a no-op
        context: Objects exposed to the script by name. Every key is copied
            back after the run so rebinding inside the script is visible.
        timeout_ms: Wall-clock budget; the worker process is killed when it
            is exceeded
        redact: Secret values masked in console output

    Returns:
        The same context object

    Raises:
        ScriptExecutionError: Compile/policy error or uncaught exception
        ScriptTimeoutError: The script did not finish in time
    """
    if not script or not script.strip():
        return context

    compile_script(script)
    console = ScriptConsole(redact)
    objects = _HostObjects()
    job = {
        "script": script,
        "context": {key: objects.encode(value) for key, value in context.items()},
        "redact": console.secrets,
    }

    process = await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        WORKER_MODULE,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=_worker_env(),
        limit=_STREAM_LIMIT,
    )
    try:
        result = await _run_job(process, job, objects, timeout_ms)
    finally:
        stderr = await _stop(process)

    op = result.get("op")
    if op == "error":
        message = result.get("message") or "Script failed"
        logger.warning("Script execution error: %s", console.mask(message))
        raise ScriptExecutionError(message)
    if op != "done":
        detail = stderr.decode("utf-8", "replace").strip().splitlines()
        logger.error("Script worker exited unexpectedly: %s", detail[-1] if detail else "no output")
        raise ScriptExecutionError("Script worker exited unexpectedly")

    values = result.get("context", {})
    for key in context:
        context[key] = objects.decode(values.get(key, {"v": None}))
    return context
