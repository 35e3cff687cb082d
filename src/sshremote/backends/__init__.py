import asyncio
from dataclasses import dataclass
from enum import Enum, auto
from logging import getLogger
from typing import Protocol

from sshremote.config import SshRemoteConfig
from sshremote.types import Err, ErrorCode, Ok, RemoteError, Result, err

logger = getLogger(__name__)


class SessionState(Enum):
    """Lifecycle states of a transport session."""

    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()


@dataclass
class ChannelOutput:
    """Everything a process channel produced by the time it closed."""

    stdout: bytes
    stderr: bytes
    exit_status: int | None


class ProcessChannel(Protocol):
    """A running remote command with stdin, stdout, stderr and an exit status."""

    async def write(self, data: bytes) -> None:
        """Write bytes to the command's stdin."""
        ...

    async def close_input(self) -> None:
        """Signal end-of-input on stdin."""
        ...

    async def drain(self) -> ChannelOutput:
        """
        Read stdout and stderr to their end, then wait for the channel to close.

        Exit status is only known once the channel closes, so this must not
        return before that.
        """
        ...

    async def close(self) -> None:
        """Release the channel; a command still running is terminated. Safe to call twice."""
        ...


class BulkChannel(Protocol):
    """A file transfer channel to the remote host."""

    async def write_file(self, remote_path: str, data: bytes) -> None: ...

    async def read_file(self, remote_path: str) -> bytes: ...

    async def close(self) -> None: ...


class Transport(Protocol):
    """Protocol that all session implementations must follow."""

    @property
    def state(self) -> SessionState: ...

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> Result[None]:
        """
        Establish the connection.

        Concurrent callers join the attempt already in flight instead of
        starting a second one.
        """
        ...

    async def open_process_channel(self, command: str) -> Result[ProcessChannel]:
        """Start ``command`` on the remote host and return its channel."""
        ...

    async def open_bulk_channel(self) -> Result[BulkChannel]:
        """Open a file transfer channel."""
        ...

    async def disconnect(self) -> None: ...


class BaseSession:
    """
    Connection state machine shared by the concrete sessions.

    Subclasses implement ``_open``, ``_close``, ``_is_alive`` and the channel
    factories ``_open_process_channel``/``_open_bulk_channel``. ``_open``
    signals failure by raising RemoteError.
    """

    def __init__(self, config: SshRemoteConfig):
        self.config = config
        self._state = SessionState.DISCONNECTED
        self._connect_task: asyncio.Task[Result[None]] | None = None

    @property
    def state(self) -> SessionState:
        if self._state is SessionState.CONNECTED and not self._is_alive():
            logger.info(f"Connection to {self.config.host} was closed by the transport")
            self._state = SessionState.DISCONNECTED
        return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    async def connect(self) -> Result[None]:
        if self.state is SessionState.CONNECTED:
            return Ok(None)

        if self._connect_task is None:
            self._state = SessionState.CONNECTING
            self._connect_task = asyncio.create_task(self._attempt_connect())
        else:
            logger.debug("Joining connection attempt already in flight")

        # shield() so one cancelled waiter does not abort the attempt for the others
        return await asyncio.shield(self._connect_task)

    async def _attempt_connect(self) -> Result[None]:
        timeout_millis = self.config.connect_timeout
        try:
            logger.info(f"Connecting to {self.config.host}:{self.config.port}")
            await asyncio.wait_for(self._open(), timeout=timeout_millis / 1000.0)
        except TimeoutError:
            self._state = SessionState.DISCONNECTED
            await self._close()
            return err(
                ErrorCode.CONNECTION_ERROR,
                "Connection timeout",
                {"timeout_millis": timeout_millis},
            )
        except RemoteError as e:
            self._state = SessionState.DISCONNECTED
            return Err(e)
        except Exception as e:
            self._state = SessionState.DISCONNECTED
            await self._close()
            return err(ErrorCode.UNKNOWN_ERROR, f"Unexpected error while connecting: {e}")
        finally:
            self._connect_task = None

        self._state = SessionState.CONNECTED
        logger.info(f"Connected to {self.config.host}:{self.config.port}")
        return Ok(None)

    async def open_process_channel(self, command: str) -> Result[ProcessChannel]:
        if not self.is_connected:
            return err(ErrorCode.NOT_CONNECTED, "Not connected. Call connect() first.")
        return await self._open_process_channel(command)

    async def open_bulk_channel(self) -> Result[BulkChannel]:
        if not self.is_connected:
            return err(ErrorCode.NOT_CONNECTED, "Not connected. Call connect() first.")
        return await self._open_bulk_channel()

    async def disconnect(self) -> None:
        if self._state is SessionState.DISCONNECTED:
            return
        await self._close()
        self._state = SessionState.DISCONNECTED
        logger.info(f"Disconnected from {self.config.host}")

    async def _open(self) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        raise NotImplementedError

    def _is_alive(self) -> bool:
        raise NotImplementedError

    async def _open_process_channel(self, command: str) -> Result[ProcessChannel]:
        raise NotImplementedError

    async def _open_bulk_channel(self) -> Result[BulkChannel]:
        raise NotImplementedError
