import shlex
from collections.abc import Mapping
from logging import getLogger
from pathlib import Path
from typing import Any

from sshremote.backends import BaseSession, Transport
from sshremote.backends.ssh import SshSession
from sshremote.backends.subprocess import SubprocessSession
from sshremote.config import BackendType, SshRemoteConfig, validate_config
from sshremote.executor import RemoteExecutor, run_command
from sshremote.logs import LogObserver
from sshremote.proxy import ModuleHandle, ProxyCache
from sshremote.runners import RunnerProvisioner
from sshremote.transfer import download_file, upload_file
from sshremote.types import CommandResult, ErrorCode, RemoteError

logger = getLogger(__name__)

# Registry mapping backend types to their session implementations
_BACKEND_REGISTRY: dict[BackendType, type[BaseSession]] = {
    BackendType.SSH: SshSession,
    BackendType.SUBPROCESS: SubprocessSession,
}


class SshRemoteCode:
    """
    Call code that lives in a sandbox directory on a remote host as if it were local.

    Usage:
        sandbox = SshRemoteCode(
            {
                "host": "192.168.1.100",
                "username": "user",
                "private_key": "~/.ssh/id_ed25519",
                "sandbox_path": "/home/user/sandbox",
            }
        )
        async with sandbox:
            math_utils = sandbox.import_module("./math_utils")
            total = await math_utils.add(2, 3)
            four = await sandbox.execute("2 + 2")

    Every method except ``connect`` raises RemoteError(NOT_CONNECTED) until a
    connection is established. All failures are raised as RemoteError.
    """

    def __init__(
        self,
        config: SshRemoteConfig | Mapping[str, Any],
        *,
        transport: Transport | None = None,
        log_observer: LogObserver | None = None,
    ):
        self.config = validate_config(config).unwrap()
        self._session = (
            transport if transport is not None else _BACKEND_REGISTRY[self.config.backend](self.config)
        )
        self._provisioner = RunnerProvisioner(self._session, self.config.remote_temp_dir)
        self._executor = RemoteExecutor(
            self._session,
            self._provisioner,
            self.config.sandbox_path,
            stream_logs=self.config.stream_remote_logs,
            log_observer=log_observer,
            python_command=self.config.python_command,
        )
        self._proxies = ProxyCache(self._executor)

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    @property
    def sandbox_path(self) -> str:
        return self.config.sandbox_path

    def _require_connection(self) -> None:
        if not self.is_connected:
            raise RemoteError(ErrorCode.NOT_CONNECTED, "Not connected. Call connect() first.")

    async def connect(self) -> None:
        """Connect, then run the configured pre-build command in the sandbox."""
        (await self._session.connect()).unwrap()
        if self.config.pre_build_command:
            logger.info(f"Running pre-build command: {self.config.pre_build_command}")
            await self.build_sandbox(self.config.pre_build_command, check=True)

    def import_module(self, module_path: str) -> ModuleHandle:
        """
        Return a handle for a module in the sandbox.

        Args:
            module_path: Path relative to the sandbox, e.g. ``"./math_utils"``

        Usage:
            math_utils = sandbox.import_module("./math_utils")
            result = await math_utils.add(2, 3)
        """
        self._require_connection()
        return self._proxies.bind(module_path)

    async def execute(self, code: str) -> Any:
        """
        Evaluate Python code in the sandbox and return its value.

        The value of a trailing expression is the result; otherwise the value
        of a variable named ``result``. Top-level ``await`` is allowed.
        """
        self._require_connection()
        return (await self._executor.execute(code)).unwrap()

    async def call(self, module_path: str, function_name: str, *args: Any) -> Any:
        """Call one remote function without going through a module handle."""
        self._require_connection()
        return (await self._executor.execute_function(module_path, function_name, list(args))).unwrap()

    async def run_command(self, command: str, check: bool = False) -> CommandResult:
        """
        Run a shell command on the remote host.

        Args:
            command: Shell command line
            check: Raise COMMAND_ERROR when the command exits non-zero
        """
        self._require_connection()
        result = (await run_command(self._session, command)).unwrap()
        if check and result.code != 0:
            raise RemoteError(
                ErrorCode.COMMAND_ERROR,
                f"Command exited with status {result.code}: {command}",
                result.model_dump(),
            )
        return result

    async def build_sandbox(self, command: str, check: bool = False) -> CommandResult:
        """Run ``command`` from inside the sandbox directory."""
        return await self.run_command(f"cd {shlex.quote(self.sandbox_path)} && {command}", check=check)

    async def upload_file(self, local_path: str | Path, remote_path: str) -> None:
        self._require_connection()
        (await upload_file(self._session, local_path, remote_path)).unwrap()

    async def download_file(self, remote_path: str, local_path: str | Path) -> None:
        self._require_connection()
        (await download_file(self._session, remote_path, local_path)).unwrap()

    def clear_cache(self, module_path: str | None = None) -> None:
        """Forget cached module handles, for one path or all of them."""
        self._proxies.clear(module_path)

    async def disconnect(self) -> None:
        """Remove provisioned runners (best effort) and close the connection."""
        await self._provisioner.cleanup()
        await self._session.disconnect()

    async def __aenter__(self) -> "SshRemoteCode":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()
