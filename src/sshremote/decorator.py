from typing import Any, Callable, Coroutine
from pydantic import BaseModel, TypeAdapter, ValidationError
import inspect
import functools

from sshremote.client import SshRemoteCode
from sshremote.types import ErrorCode, RemoteError


def _to_wire(value: Any) -> Any:
    """Dump pydantic models (also inside lists/dicts) to JSON-compatible data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_to_wire(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_wire(v) for k, v in value.items()}
    return value


def remote[**P, O](
    sandbox: SshRemoteCode,
    module_path: str,
) -> Callable[[Callable[P, Coroutine[Any, Any, O]]], Callable[P, Coroutine[Any, Any, O]]]:
    """
    Decorator that turns a local async stub into a call to the remote function of the same name.

    The stub's body is never run locally. Its signature binds the call's
    arguments, which are sent positionally in declaration order. When the stub
    has a return annotation, the remote result is validated against it.

    Args:
        sandbox: Client whose session carries the calls
        module_path: Sandbox-relative path of the module defining the function

    Usage:
        class Point(BaseModel):
            x: int
            y: int

        @remote(sandbox, "./geometry")
        async def translate(point: Point, dx: int, dy: int = 0) -> Point: ...

        moved = await translate(Point(x=1, y=2), 3)
    """

    def decorator(
        func: Callable[P, Coroutine[Any, Any, O]],
    ) -> Callable[P, Coroutine[Any, Any, O]]:
        signature = inspect.signature(func)
        annotations = inspect.get_annotations(func, eval_str=True)
        return_adapter = TypeAdapter(annotations["return"]) if "return" in annotations else None

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> O:
            bound = signature.bind(*args, **kwargs)
            bound.apply_defaults()
            if bound.kwargs:
                raise TypeError(f"{func.__name__}: keyword-only parameters cannot be sent remotely")
            wire_args = [_to_wire(arg) for arg in bound.args]

            handle = sandbox.import_module(module_path)
            result = (await handle.invoke(func.__name__, wire_args)).unwrap()

            if return_adapter is None:
                return result
            try:
                return return_adapter.validate_python(result)
            except ValidationError as e:
                raise RemoteError(
                    ErrorCode.PARSE_ERROR,
                    f"Result of {func.__name__} does not match its return annotation",
                    e.errors(include_input=False),
                )

        return wrapper

    return decorator
