"""
Function runner.

Uploaded to the remote host once per session and started with the remote
Python interpreter. Reads one JSON payload from stdin:

    {"sandboxPath": str, "streamLogs": bool,
     "modulePath": str, "functionName": str, "args": [...]}

loads ``modulePath`` relative to the sandbox, calls ``functionName`` with
``args`` and writes exactly one result envelope to stdout. Standard library
only.
"""

import asyncio
import builtins
import dataclasses
import datetime
import importlib.util
import inspect
import json
import logging
import os
import sys
import traceback

LOG_SENTINEL = "__SSH_REMOTE_LOG__"

_print = builtins.print


def _emit_log(level, args):
    line = json.dumps({"type": level, "args": list(args)}, default=repr)
    sys.__stderr__.write(f"{LOG_SENTINEL}{line}\n")
    sys.__stderr__.flush()


def _streaming_print(*args, sep=" ", end="\n", file=None, flush=False):
    if file is not None and file not in (sys.stdout, sys.__stdout__):
        _print(*args, sep=sep, end=end, file=file, flush=flush)
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


def _module_file(sandbox_path, module_path):
    target = os.path.normpath(os.path.join(sandbox_path, module_path))
    if target.endswith(".py"):
        candidates = [target]
    else:
        candidates = [target + ".py", os.path.join(target, "__init__.py")]
    for candidate in candidates:
        if os.path.isfile(candidate):
            return candidate
    raise ModuleNotFoundError(f"Module {module_path!r} not found in sandbox {sandbox_path}")


def _load_module(sandbox_path, module_path):
    module_file = _module_file(sandbox_path, module_path)
    relative = os.path.relpath(module_file, sandbox_path)
    name = os.path.splitext(relative)[0].replace(os.sep, ".")
    if name.endswith(".__init__"):
        name = name[: -len(".__init__")]
    if name.startswith("."):
        # Modules outside the sandbox get a private name
        name = "_sandbox_external_" + name.strip(".").replace(".", "_")

    spec = importlib.util.spec_from_file_location(name, module_file)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load module from {module_file}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    spec.loader.exec_module(module)
    return module


def _find_function(module, function_name):
    func = getattr(module, function_name, None)
    if func is None:
        default = getattr(module, "default", None)
        if default is not None:
            func = getattr(default, function_name, None)
    if func is None or not callable(func):
        raise AttributeError(
            f"Function {function_name!r} not found in module {module.__file__}"
        )
    return func


async def _resolve(value):
    while inspect.isawaitable(value):
        value = await value
    return value


def main():
    try:
        payload = json.loads(sys.stdin.read())
        sandbox_path = payload["sandboxPath"]
        stream_logs = bool(payload.get("streamLogs"))
        args = payload.get("args") or []

        if stream_logs:
            builtins.print = _streaming_print
            logging.basicConfig(level=logging.INFO, handlers=[_SentinelHandler()])
        os.chdir(sandbox_path)
        if sandbox_path not in sys.path:
            sys.path.insert(0, sandbox_path)

        module = _load_module(sandbox_path, payload["modulePath"])
        func = _find_function(module, payload["functionName"])
        result = func(*args)
        if inspect.isawaitable(result):
            result = asyncio.run(_resolve(result))
        envelope = {"success": True, "result": result}
    except Exception as e:
        envelope = _failure(e)

    if not _write_envelope(envelope):
        sys.exit(1)


if __name__ == "__main__":
    main()
