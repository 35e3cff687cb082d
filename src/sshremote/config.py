from collections.abc import Mapping
from enum import Enum, auto
from logging import getLogger
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from sshremote.types import ErrorCode, Ok, Result, err

logger = getLogger(__name__)

DEFAULT_PORT = 22
DEFAULT_CONNECT_TIMEOUT_MILLIS = 10000
DEFAULT_READY_TIMEOUT_MILLIS = 20000

_PEM_MARKER = "-----BEGIN"


class BackendType(Enum):
    """Transport backend identifiers."""

    SSH = auto()
    SUBPROCESS = auto()  # Local shell, for development and tests


class SshRemoteConfig(BaseModel):
    """Connection and sandbox settings for a remote session."""

    backend: BackendType = Field(default=BackendType.SSH, description="Transport backend to use")
    host: Optional[str] = Field(default=None, description="SSH host name or IP address")
    port: Optional[int] = Field(default=None, description="SSH port (default: 22)")
    username: Optional[str] = Field(default=None, description="SSH username")
    private_key: Optional[str] = Field(
        default=None,
        description="Private key, either PEM content or a path to a key file.",
    )
    password: Optional[str] = Field(default=None, description="Password, if not using a key")
    sandbox_path: Optional[str] = Field(
        default=None, description="Directory on the remote host that holds the callable code"
    )
    connect_timeout: Optional[int] = Field(
        default=None, description="Connection timeout in milliseconds (default: 10000)"
    )
    ready_timeout: Optional[int] = Field(
        default=None,
        description="Timeout in milliseconds for the SSH handshake and auth (default: 20000)",
    )
    pre_build_command: Optional[str] = Field(
        default=None,
        description="Command run inside the sandbox directory right after connecting.",
    )
    stream_remote_logs: bool = Field(
        default=False, description="Forward remote print/logging output to the local observer"
    )
    python_command: str = Field(
        default="python3", description="Interpreter used on the remote host to run runner programs"
    )
    remote_temp_dir: str = Field(
        default="/tmp", description="Remote directory where runner programs are provisioned"
    )


def validate_config(config: SshRemoteConfig | Mapping[str, Any]) -> Result[SshRemoteConfig]:
    """
    Validate a configuration and fill in its defaults.

    A ``private_key`` value without a PEM header is treated as a key file path
    and replaced by the file's content.

    Args:
        config: Config model or a mapping of its fields

    Returns:
        Ok with the normalized config, or Err with a VALIDATION_ERROR
    """
    if not isinstance(config, SshRemoteConfig):
        try:
            config = SshRemoteConfig.model_validate(config)
        except ValidationError as e:
            return err(ErrorCode.VALIDATION_ERROR, "Invalid configuration", e.errors())

    if not config.host:
        return err(ErrorCode.VALIDATION_ERROR, "SSH host is required")
    if not config.username:
        return err(ErrorCode.VALIDATION_ERROR, "SSH username is required")
    if not config.private_key and not config.password:
        return err(ErrorCode.VALIDATION_ERROR, "Either private_key or password must be provided")
    if not config.sandbox_path:
        return err(ErrorCode.VALIDATION_ERROR, "sandbox_path is required")

    private_key = config.private_key
    if private_key and _PEM_MARKER not in private_key:
        key_path = Path(private_key).expanduser().resolve()
        if not key_path.is_file():
            return err(ErrorCode.VALIDATION_ERROR, f"Private key file not found: {key_path}")
        logger.debug(f"Reading private key from {key_path}")
        try:
            private_key = key_path.read_text()
        except (OSError, UnicodeDecodeError) as e:
            return err(ErrorCode.VALIDATION_ERROR, f"Could not read private key file {key_path}: {e}")

    return Ok(
        config.model_copy(
            update={
                "port": config.port or DEFAULT_PORT,
                "private_key": private_key,
                "connect_timeout": config.connect_timeout or DEFAULT_CONNECT_TIMEOUT_MILLIS,
                "ready_timeout": config.ready_timeout or DEFAULT_READY_TIMEOUT_MILLIS,
            }
        )
    )
