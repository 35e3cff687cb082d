from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, NoReturn

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator


class ErrorCode(Enum):
    """Stable error codes carried by every RemoteError."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_CONNECTED = "NOT_CONNECTED"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    COMMAND_ERROR = "COMMAND_ERROR"
    UPLOAD_ERROR = "UPLOAD_ERROR"
    DOWNLOAD_ERROR = "DOWNLOAD_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class RemoteError(Exception):
    """The single error type that crosses the public boundary."""

    def __init__(self, code: ErrorCode, message: str, details: Any = None):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"[{code.value}] {message}")


class CallMode(Enum):
    """Call modes, one runner program per mode."""

    CODE = "code"
    FUNCTION = "function"


@dataclass(frozen=True)
class Ok[T]:
    value: T
    ok: Literal[True] = True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: RemoteError
    ok: Literal[False] = False

    def unwrap(self) -> NoReturn:
        raise self.error


# Every component-level operation returns one of these; the façade unwraps.
type Result[T] = Ok[T] | Err


def err(code: ErrorCode, message: str, details: Any = None) -> Err:
    return Err(RemoteError(code, message, details))


class CallRequest(BaseModel):
    """One call, serialized to the runner's stdin as a single JSON document."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    mode: CallMode = Field(..., exclude=True)
    sandbox_path: str = Field(..., alias="sandboxPath")
    stream_logs: bool = Field(default=False, alias="streamLogs")
    code: str | None = None
    module_path: str | None = Field(default=None, alias="modulePath")
    function_name: str | None = Field(default=None, alias="functionName")
    args: list[JsonValue] | None = None

    def to_payload(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class EnvelopeError(BaseModel):
    """Error part of a failure envelope."""

    message: str = "Execution failed"
    stack: str | None = None
    name: str | None = None


class ExecutionEnvelope(BaseModel):
    """The success/error object a runner program emits on stdout."""

    success: bool
    result: Any = None
    error: EnvelopeError | None = None

    @field_validator("error", mode="before")
    @classmethod
    def _message_only_error(cls, value: Any) -> Any:
        # A bare string is taken as the message
        if isinstance(value, str):
            return {"message": value or "Execution failed"}
        return value


class LogEvent(BaseModel):
    """A log call made by remote code, forwarded out-of-band."""

    type: Literal["log", "error", "warn", "info"] = "log"
    args: list[Any] = Field(default_factory=list)


class CommandResult(BaseModel):
    """Outcome of a plain shell command on the remote host."""

    stdout: str
    stderr: str
    code: int | None
