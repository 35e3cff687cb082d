"""Pytest configuration and fixtures."""

import json
import shlex
import sys
from collections.abc import Callable
from typing import Any

import pytest

from sshremote.backends import ChannelOutput, SessionState
from sshremote.config import BackendType, SshRemoteConfig
from sshremote.types import ErrorCode, Ok, err

type Responder = Callable[[str, dict[str, Any] | None], tuple[bytes | str, bytes | str, int | None]]


def envelope(result: Any = None, *, success: bool = True, error: dict[str, Any] | None = None) -> str:
    """Stdout of a runner that finished normally."""
    if success:
        return json.dumps({"success": True, "result": result}) + "\n"
    return json.dumps({"success": False, "error": error or {"message": "Execution failed"}}) + "\n"


def _bytes(value: bytes | str) -> bytes:
    return value if isinstance(value, bytes) else value.encode()


class FakeChannel:
    """Process channel that answers through its session's responder once input is closed."""

    def __init__(self, session: "FakeSession", command: str):
        self._session = session
        self.command = command
        self.stdin = bytearray()
        self.events: list[str] = []

    async def write(self, data: bytes) -> None:
        assert "close_input" not in self.events, "write after end-of-input"
        if self._session.fail_input:
            self.events.append("write_failed")
            raise BrokenPipeError("Connection lost")
        self.stdin += data
        self.events.append("write")

    async def close_input(self) -> None:
        self.events.append("close_input")

    async def drain(self) -> ChannelOutput:
        assert "close_input" in self.events or "write_failed" in self.events, "drain before end-of-input"
        self.events.append("drain")
        payload = json.loads(self.stdin) if self.stdin else None
        self._session.calls.append((self.command, payload))
        stdout, stderr, status = self._session.responder(self.command, payload)
        return ChannelOutput(_bytes(stdout), _bytes(stderr), status)

    async def close(self) -> None:
        self.events.append("close")


class FakeBulkChannel:
    def __init__(self, session: "FakeSession"):
        self._session = session
        self.closed = False

    async def write_file(self, remote_path: str, data: bytes) -> None:
        if self._session.fail_writes:
            raise OSError("No space left on device")
        self._session.files[remote_path] = data
        self._session.uploads.append(remote_path)

    async def read_file(self, remote_path: str) -> bytes:
        if remote_path not in self._session.files:
            raise FileNotFoundError(remote_path)
        return self._session.files[remote_path]

    async def close(self) -> None:
        self.closed = True


class FakeSession:
    """In-memory Transport. Records every channel and call it serves."""

    def __init__(self, responder: Responder | None = None, connected: bool = True):
        self.responder: Responder = responder or (lambda command, payload: (envelope(None), "", 0))
        self.connected = connected
        self.files: dict[str, bytes] = {}
        self.uploads: list[str] = []
        self.calls: list[tuple[str, dict[str, Any] | None]] = []
        self.channels: list[FakeChannel] = []
        self.fail_writes = False
        self.reject_exec = False
        self.fail_input = False
        self.connect_count = 0

    @property
    def state(self) -> SessionState:
        return SessionState.CONNECTED if self.connected else SessionState.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self):
        self.connect_count += 1
        self.connected = True
        return Ok(None)

    async def open_process_channel(self, command: str):
        if not self.connected:
            return err(ErrorCode.NOT_CONNECTED, "Not connected")
        if self.reject_exec:
            return err(ErrorCode.EXECUTION_ERROR, "exec request rejected")
        channel = FakeChannel(self, command)
        self.channels.append(channel)
        return Ok(channel)

    async def open_bulk_channel(self):
        if not self.connected:
            return err(ErrorCode.NOT_CONNECTED, "Not connected")
        return Ok(FakeBulkChannel(self))

    async def disconnect(self) -> None:
        self.connected = False

    @property
    def runner_calls(self) -> list[tuple[str, dict[str, Any]]]:
        """Calls that started a runner program (as opposed to shell commands)."""
        return [(c, p) for c, p in self.calls if p is not None]


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def config_dict() -> dict[str, Any]:
    """Minimal valid configuration."""
    return {
        "host": "sandbox.example.com",
        "username": "deploy",
        "password": "hunter2",
        "sandbox_path": "/home/deploy/sandbox",
    }


@pytest.fixture
def local_config(tmp_path) -> SshRemoteConfig:
    """Configuration for running the real runner programs through a local shell."""
    sandbox = tmp_path / "sandbox"
    sandbox.mkdir()
    runners = tmp_path / "runners"
    runners.mkdir()
    return SshRemoteConfig(
        backend=BackendType.SUBPROCESS,
        host="localhost",
        username="tester",
        password="unused",
        sandbox_path=str(sandbox),
        python_command=shlex.quote(sys.executable),
        remote_temp_dir=str(runners),
    )
