from logging import getLogger
from typing import Any, Protocol

from sshremote.executor import RemoteExecutor
from sshremote.types import Result

logger = getLogger(__name__)

# Looked up by await/async-iteration/async-with and by copy/pickle machinery.
# Answering them with a remote callable would make a handle look awaitable.
_RESERVED_NAMES = frozenset(
    {
        "__await__",
        "__aiter__",
        "__anext__",
        "__aenter__",
        "__aexit__",
        "then",
    }
)


class RemoteModule(Protocol):
    """Explicit calling interface behind every module handle."""

    async def invoke(self, name: str, args: list[Any]) -> Result[Any]: ...


class RemoteFunction:
    """A remote function bound to a module handle; calling it performs one remote call."""

    def __init__(self, module: RemoteModule, name: str):
        self.__name__ = name
        self._module = module

    async def __call__(self, *args: Any) -> Any:
        result = await self._module.invoke(self.__name__, list(args))
        return result.unwrap()

    def __repr__(self) -> str:
        return f"<RemoteFunction {self.__name__}>"


class ModuleHandle:
    """
    Stand-in for a module in the remote sandbox.

    Any attribute that is not a reserved or dunder name is a RemoteFunction:
    ``await handle.add(2, 3)`` calls ``add(2, 3)`` remotely. The remote module's
    shape is unknown locally, so membership tests always succeed and ``dir()``
    is empty. Names that collide with this class's own attributes (``invoke``,
    ``module_path``) are reachable through ``handle["invoke"]``.
    """

    def __init__(self, module_path: str, executor: RemoteExecutor):
        self.module_path = module_path
        self._executor = executor

    async def invoke(self, name: str, args: list[Any]) -> Result[Any]:
        return await self._executor.execute_function(self.module_path, name, args)

    def __getattr__(self, name: str) -> RemoteFunction:
        if name in _RESERVED_NAMES or (name.startswith("__") and name.endswith("__")):
            raise AttributeError(name)
        return RemoteFunction(self, name)

    def __getitem__(self, name: str) -> RemoteFunction:
        return RemoteFunction(self, name)

    def __contains__(self, name: object) -> bool:
        return True

    def __dir__(self) -> list[str]:
        return []

    def __repr__(self) -> str:
        return f"<ModuleHandle {self.module_path!r}>"


class ProxyCache:
    """One ModuleHandle per module path; entries live until explicitly cleared."""

    def __init__(self, executor: RemoteExecutor):
        self._executor = executor
        self._handles: dict[str, ModuleHandle] = {}

    def bind(self, module_path: str) -> ModuleHandle:
        handle = self._handles.get(module_path)
        if handle is None:
            logger.debug(f"Creating module handle for {module_path}")
            handle = ModuleHandle(module_path, self._executor)
            self._handles[module_path] = handle
        return handle

    def clear(self, module_path: str | None = None) -> None:
        if module_path is None:
            self._handles.clear()
        else:
            self._handles.pop(module_path, None)
