import asyncio
import shutil
from logging import getLogger
from pathlib import Path

from sshremote.backends import BaseSession, BulkChannel, ChannelOutput, ProcessChannel
from sshremote.config import SshRemoteConfig
from sshremote.types import ErrorCode, Ok, RemoteError, Result, err

logger = getLogger(__name__)


class SubprocessChannel:
    """ProcessChannel over a local asyncio subprocess started with all three pipes."""

    def __init__(self, process: asyncio.subprocess.Process):
        if process.stdin is None or process.stdout is None or process.stderr is None:
            raise ValueError("SubprocessChannel requires stdin, stdout and stderr pipes")
        self._process = process
        self._stdin = process.stdin
        self._stdout = process.stdout
        self._stderr = process.stderr

    async def write(self, data: bytes) -> None:
        self._stdin.write(data)
        await self._stdin.drain()

    async def close_input(self) -> None:
        self._stdin.close()
        await self._stdin.wait_closed()

    async def drain(self) -> ChannelOutput:
        stdout, stderr = await asyncio.gather(self._stdout.read(), self._stderr.read())
        exit_status = await self._process.wait()
        return ChannelOutput(stdout, stderr, exit_status)

    async def close(self) -> None:
        if not self._stdin.is_closing():
            self._stdin.close()
        if self._process.returncode is None:
            logger.debug(f"Killing local command (pid {self._process.pid})")
            self._process.kill()
            await self._process.wait()


class LocalBulkChannel:
    """BulkChannel over the local filesystem."""

    async def write_file(self, remote_path: str, data: bytes) -> None:
        await asyncio.to_thread(Path(remote_path).write_bytes, data)

    async def read_file(self, remote_path: str) -> bytes:
        return await asyncio.to_thread(Path(remote_path).read_bytes)

    async def close(self) -> None:
        pass


class SubprocessSession(BaseSession):
    """
    Session that runs commands through a local shell.

    Host and credentials from the config are ignored; this backend exists so
    the runner programs and the call pipeline can be exercised without an SSH
    server.
    """

    SHELL: str = "sh"

    def __init__(self, config: SshRemoteConfig):
        super().__init__(config)
        self._open_flag = False

    async def _open(self) -> None:
        if not shutil.which(self.SHELL):
            raise RemoteError(
                ErrorCode.CONNECTION_ERROR,
                f"Shell '{self.SHELL}' not found in PATH.",
            )
        self._open_flag = True

    async def _close(self) -> None:
        self._open_flag = False

    def _is_alive(self) -> bool:
        return self._open_flag

    async def _open_process_channel(self, command: str) -> Result[ProcessChannel]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.SHELL,
                "-c",
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return err(
                ErrorCode.EXECUTION_ERROR,
                f"Failed to start local command: {e}",
                {"command": command},
            )
        return Ok(SubprocessChannel(process))

    async def _open_bulk_channel(self) -> Result[BulkChannel]:
        return Ok(LocalBulkChannel())
