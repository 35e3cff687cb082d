"""SSH Remote Code

Call Python functions and snippets that live in a sandbox directory on a
remote host as if they were local, over SSH.
"""

from sshremote.client import SshRemoteCode
from sshremote.config import BackendType, SshRemoteConfig, validate_config
from sshremote.decorator import remote
from sshremote.logs import LOG_SENTINEL, LogObserver
from sshremote.proxy import ModuleHandle, RemoteFunction
from sshremote.types import (
    CallMode,
    CommandResult,
    Err,
    ErrorCode,
    ExecutionEnvelope,
    LogEvent,
    Ok,
    RemoteError,
    Result,
)

__all__ = [
    # Main client and decorator
    "SshRemoteCode",
    "remote",
    # Configuration
    "BackendType",
    "SshRemoteConfig",
    "validate_config",
    # Remote modules
    "ModuleHandle",
    "RemoteFunction",
    # Results and errors
    "Ok",
    "Err",
    "Result",
    "ErrorCode",
    "RemoteError",
    "CommandResult",
    "ExecutionEnvelope",
    # Call modes
    "CallMode",
    # Remote logs
    "LOG_SENTINEL",
    "LogEvent",
    "LogObserver",
]
