import asyncio
import io
from logging import getLogger

import paramiko

from sshremote.backends import BaseSession, BulkChannel, ChannelOutput, ProcessChannel
from sshremote.config import SshRemoteConfig
from sshremote.types import ErrorCode, Ok, RemoteError, Result, err

logger = getLogger(__name__)

# Key types tried, in order, when parsing private key content
_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.RSAKey,
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
)


def load_private_key(key_content: str, passphrase: str | None = None) -> paramiko.PKey:
    """
    Parse PEM/OpenSSH private key content into a paramiko key.

    Args:
        key_content: Private key text
        passphrase: Passphrase for encrypted keys, if any

    Returns:
        The parsed key

    Raises:
        ValueError: If the content is not a supported private key
    """
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(key_content), password=passphrase)
        except paramiko.SSHException:
            continue
    raise ValueError("Could not parse private key (tried RSA, Ed25519 and ECDSA)")


class SshProcessChannel:
    """ProcessChannel over a paramiko session channel."""

    def __init__(self, channel: paramiko.Channel):
        self._channel = channel

    async def write(self, data: bytes) -> None:
        try:
            await asyncio.to_thread(self._channel.sendall, data)
        except paramiko.SSHException as e:
            raise OSError(str(e)) from e

    async def close_input(self) -> None:
        try:
            self._channel.shutdown_write()
        except paramiko.SSHException as e:
            raise OSError(str(e)) from e

    async def drain(self) -> ChannelOutput:
        stdout_file = self._channel.makefile("rb")
        stderr_file = self._channel.makefile_stderr("rb")
        # Both streams are read concurrently so a full stderr window cannot stall stdout
        stdout, stderr = await asyncio.gather(
            asyncio.to_thread(stdout_file.read),
            asyncio.to_thread(stderr_file.read),
        )
        exit_status = await asyncio.to_thread(self._channel.recv_exit_status)
        # paramiko reports -1 when the server closed the channel without an exit status
        return ChannelOutput(stdout, stderr, None if exit_status == -1 else exit_status)

    async def close(self) -> None:
        self._channel.close()


class SftpBulkChannel:
    """BulkChannel over a paramiko SFTP client."""

    def __init__(self, sftp: paramiko.SFTPClient):
        self._sftp = sftp

    async def write_file(self, remote_path: str, data: bytes) -> None:
        try:
            await asyncio.to_thread(self._sftp.putfo, io.BytesIO(data), remote_path)
        except paramiko.SSHException as e:
            raise OSError(str(e)) from e

    async def read_file(self, remote_path: str) -> bytes:
        buffer = io.BytesIO()
        try:
            await asyncio.to_thread(self._sftp.getfo, remote_path, buffer)
        except paramiko.SSHException as e:
            raise OSError(str(e)) from e
        return buffer.getvalue()

    async def close(self) -> None:
        self._sftp.close()


class SshSession(BaseSession):
    """Session over one authenticated paramiko SSH connection."""

    def __init__(self, config: SshRemoteConfig):
        super().__init__(config)
        self._client: paramiko.SSHClient | None = None

    async def _open(self) -> None:
        pkey = None
        if self.config.private_key:
            try:
                pkey = load_private_key(self.config.private_key)
            except ValueError as e:
                raise RemoteError(ErrorCode.CONNECTION_ERROR, str(e))

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        self._client = client

        ready_seconds = self.config.ready_timeout / 1000.0
        try:
            await asyncio.to_thread(
                client.connect,
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.username,
                pkey=pkey,
                password=self.config.password,
                timeout=self.config.connect_timeout / 1000.0,
                banner_timeout=ready_seconds,
                auth_timeout=ready_seconds,
                look_for_keys=False,
                allow_agent=False,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            self._client = None
            raise RemoteError(
                ErrorCode.CONNECTION_ERROR,
                f"Failed to connect to {self.config.host}:{self.config.port}: {e}",
                {"error_type": type(e).__name__},
            )

    async def _close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _is_alive(self) -> bool:
        if self._client is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    async def _open_process_channel(self, command: str) -> Result[ProcessChannel]:
        transport = self._client.get_transport() if self._client is not None else None
        if transport is None:
            return err(ErrorCode.NOT_CONNECTED, "SSH transport is not available")

        try:
            channel = await asyncio.to_thread(transport.open_session)
            await asyncio.to_thread(channel.exec_command, command)
        except (paramiko.SSHException, OSError) as e:
            return err(
                ErrorCode.EXECUTION_ERROR,
                f"Failed to start remote command: {e}",
                {"command": command},
            )
        return Ok(SshProcessChannel(channel))

    async def _open_bulk_channel(self) -> Result[BulkChannel]:
        if self._client is None:
            return err(ErrorCode.NOT_CONNECTED, "SSH client is not available")
        try:
            sftp = await asyncio.to_thread(self._client.open_sftp)
        except (paramiko.SSHException, OSError) as e:
            return err(ErrorCode.CONNECTION_ERROR, f"Failed to open SFTP channel: {e}")
        return Ok(SftpBulkChannel(sftp))
