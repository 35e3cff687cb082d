"""
Code runner.

Uploaded to the remote host once per session and started with the remote
Python interpreter. Reads one JSON payload from stdin:

    {"sandboxPath": str, "streamLogs": bool, "code": str}

evaluates ``code`` inside the sandbox directory and writes exactly one result
envelope to stdout. Standard library only.
"""

import ast
import asyncio
import builtins
import dataclasses
import datetime
import inspect
import json
import logging
import math
import os
import re
import signal
import sys
import time
import traceback
from pathlib import Path

LOG_SENTINEL = "__SSH_REMOTE_LOG__"
EXECUTION_BUDGET_SECONDS = 30

_SAFE_BUILTINS = (
    "abs", "all", "any", "ascii", "bin", "bool", "bytearray", "bytes", "callable",
    "chr", "complex", "dict", "dir", "divmod", "enumerate", "filter", "float",
    "format", "frozenset", "getattr", "hasattr", "hash", "hex", "id", "int",
    "isinstance", "issubclass", "iter", "len", "list", "map", "max", "min", "next",
    "object", "oct", "open", "ord", "pow", "print", "range", "repr", "reversed",
    "round", "set", "slice", "sorted", "str", "sum", "super", "tuple", "type", "zip",
    "aiter", "anext", "property", "staticmethod", "classmethod", "__build_class__",
    "None", "True", "False", "Ellipsis", "NotImplemented",
    "BaseException", "Exception", "ArithmeticError", "AssertionError",
    "AttributeError", "FileNotFoundError", "IndexError", "KeyError", "LookupError",
    "NotImplementedError", "OSError", "RuntimeError", "StopIteration",
    "StopAsyncIteration", "TimeoutError", "TypeError", "ValueError",
    "ZeroDivisionError",
)


def _emit_log(level, args):
    line = json.dumps({"type": level, "args": list(args)}, default=repr)
    sys.__stderr__.write(f"{LOG_SENTINEL}{line}\n")
    sys.__stderr__.flush()


def _streaming_print(*args, sep=" ", end="\n", file=None, flush=False):
    if file is not None and file not in (sys.stdout, sys.__stdout__):
        builtins.print(*args, sep=sep, end=end, file=file, flush=flush)
        return
    _emit_log("log", args)


class _SentinelHandler(logging.Handler):
    def emit(self, record):
        if record.levelno >= logging.ERROR:
            level = "error"
        elif record.levelno >= logging.WARNING:
            level = "warn"
        elif record.levelno >= logging.INFO:
            level = "info"
        else:
            level = "log"
        _emit_log(level, [self.format(record)])


def _to_jsonable(value):
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _failure(error):
    return {
        "success": False,
        "error": {
            "message": str(error),
            "name": type(error).__name__,
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        },
    }


def _write_envelope(envelope):
    try:
        text = json.dumps(envelope, default=_to_jsonable)
    except (TypeError, ValueError) as e:
        envelope = _failure(e)
        text = json.dumps(envelope)
    sys.__stdout__.write(text + "\n")
    sys.__stdout__.flush()
    return envelope["success"]


def _namespace(sandbox_path, stream_logs):
    safe_builtins = {name: getattr(builtins, name) for name in _SAFE_BUILTINS}
    if stream_logs:
        safe_builtins["print"] = _streaming_print
    return {
        "__builtins__": safe_builtins,
        "__name__": "__remote__",
        "asyncio": asyncio,
        "datetime": datetime,
        "json": json,
        "math": math,
        "os": os,
        "re": re,
        "time": time,
        "Path": Path,
        "sandbox_path": sandbox_path,
    }


async def _resolve(value):
    while inspect.isawaitable(value):
        value = await value
    return value


async def _evaluate(code, namespace):
    flags = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT
    tree = ast.parse(code, filename="<remote>", mode="exec")

    last_expression = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        last_expression = ast.Expression(tree.body.pop().value)

    await _resolve(eval(compile(tree, "<remote>", "exec", flags=flags), namespace))
    if last_expression is None:
        return await _resolve(namespace.get("result"))
    return await _resolve(eval(compile(last_expression, "<remote>", "eval", flags=flags), namespace))


def _on_alarm(signum, frame):
    raise TimeoutError(f"Execution exceeded {EXECUTION_BUDGET_SECONDS}s budget")


async def _run(code, namespace):
    if hasattr(signal, "SIGALRM"):
        signal.signal(signal.SIGALRM, _on_alarm)
        signal.alarm(EXECUTION_BUDGET_SECONDS)
        try:
            return await _evaluate(code, namespace)
        finally:
            signal.alarm(0)
    try:
        return await asyncio.wait_for(_evaluate(code, namespace), EXECUTION_BUDGET_SECONDS)
    except asyncio.TimeoutError:
        raise TimeoutError(f"Execution exceeded {EXECUTION_BUDGET_SECONDS}s budget")


def main():
    try:
        payload = json.loads(sys.stdin.read())
        sandbox_path = payload["sandboxPath"]
        stream_logs = bool(payload.get("streamLogs"))
        code = payload["code"].strip()

        if stream_logs:
            logging.basicConfig(level=logging.INFO, handlers=[_SentinelHandler()])
        os.chdir(sandbox_path)
        if sandbox_path not in sys.path:
            sys.path.insert(0, sandbox_path)

        result = asyncio.run(_run(code, _namespace(sandbox_path, stream_logs)))
        envelope = {"success": True, "result": result}
    except Exception as e:
        envelope = _failure(e)

    if not _write_envelope(envelope):
        sys.exit(1)


if __name__ == "__main__":
    main()
