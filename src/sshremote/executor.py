import shlex
from logging import getLogger
from typing import Any

from pydantic import ValidationError

from sshremote.backends import ChannelOutput, Transport
from sshremote.decoder import decode
from sshremote.logs import LogObserver, demux, forward, log_to_logger
from sshremote.runners import RunnerProvisioner
from sshremote.types import (
    CallMode,
    CallRequest,
    CommandResult,
    Err,
    ErrorCode,
    Ok,
    Result,
    err,
)

logger = getLogger(__name__)


async def run_process(session: Transport, command: str, stdin: bytes | None = None) -> Result[ChannelOutput]:
    """
    Run ``command`` on one fresh process channel and collect everything it produces.

    ``stdin`` is written in full and the input stream closed before any output
    is read. Returns once the channel has closed.

    A command can exit before reading its input (e.g. the interpreter is
    missing). The failed write is then ignored and whatever the command
    printed is returned, so its stderr still decides the outcome. Only when it
    printed nothing is the write failure itself the error.
    """
    opened = await session.open_process_channel(command)
    if isinstance(opened, Err):
        return opened
    channel = opened.value

    input_error: OSError | None = None
    try:
        try:
            if stdin is not None:
                await channel.write(stdin)
            await channel.close_input()
        except OSError as e:
            logger.debug(f"Command stopped accepting input: {e!r}")
            input_error = e

        try:
            output = await channel.drain()
        except OSError as e:
            return err(
                ErrorCode.EXECUTION_ERROR,
                f"Channel failed while running command: {e!r}",
                {"command": command},
            )
    finally:
        await channel.close()

    if input_error is not None and not (output.stdout.strip() or output.stderr.strip()):
        return err(
            ErrorCode.EXECUTION_ERROR,
            f"Command exited before reading its input: {input_error!r}",
            {"command": command, "exit_status": output.exit_status},
        )
    return Ok(output)


async def run_command(session: Transport, command: str) -> Result[CommandResult]:
    """Run a plain shell command; a non-zero exit is reported, not treated as an error."""
    logger.debug(f"Running command: {command}")
    ran = await run_process(session, command)
    if isinstance(ran, Err):
        return ran
    output = ran.value
    return Ok(
        CommandResult(
            stdout=output.stdout.decode(errors="replace"),
            stderr=output.stderr.decode(errors="replace"),
            code=output.exit_status,
        )
    )


class RemoteExecutor:
    """Runs code and function calls in the remote sandbox through the runner programs."""

    def __init__(
        self,
        session: Transport,
        provisioner: RunnerProvisioner,
        sandbox_path: str,
        stream_logs: bool = False,
        log_observer: LogObserver | None = None,
        python_command: str = "python3",
    ):
        self._session = session
        self._provisioner = provisioner
        self.sandbox_path = sandbox_path
        self.stream_logs = stream_logs
        self._log_observer = log_observer or log_to_logger
        self._python_command = python_command

    async def invoke(self, runner_path: str, request: CallRequest) -> Result[ChannelOutput]:
        """Start the runner at ``runner_path`` and feed it ``request`` on stdin."""
        command = f"{self._python_command} {shlex.quote(runner_path)}"
        return await run_process(self._session, command, request.to_payload().encode())

    async def call(self, request: CallRequest) -> Result[Any]:
        """
        Perform one call end-to-end and return the decoded result.

        Log lines found on stderr go to the log observer and never decide the
        outcome. A decoded failure becomes an EXECUTION_ERROR carrying the remote
        exception name and stack in its details.
        """
        runner = await self._provisioner.ensure_runner(request.mode)
        if isinstance(runner, Err):
            return runner

        invoked = await self.invoke(runner.value, request)
        if isinstance(invoked, Err):
            return invoked
        output = invoked.value

        events, residual = demux(output.stderr)
        forward(events, self._log_observer)

        decoded = decode(output.stdout, residual)
        if isinstance(decoded, Err):
            return decoded
        envelope = decoded.value

        if envelope.success:
            return Ok(envelope.result)

        error = envelope.error
        message = error.message if error is not None else "Execution failed"
        logger.debug(f"Remote {request.mode.value} call failed: {message}")
        return err(
            ErrorCode.EXECUTION_ERROR,
            message,
            {
                "name": error.name if error is not None else None,
                "stack": error.stack if error is not None else None,
                "stderr": residual or None,
                "exit_status": output.exit_status,
            },
        )

    async def execute(self, code: str) -> Result[Any]:
        """Evaluate ``code`` in the sandbox."""
        request = CallRequest(
            mode=CallMode.CODE,
            sandbox_path=self.sandbox_path,
            stream_logs=self.stream_logs,
            code=code,
        )
        return await self.call(request)

    async def execute_function(self, module_path: str, function_name: str, args: list[Any]) -> Result[Any]:
        """Call ``function_name`` from the sandbox module at ``module_path`` with ``args``."""
        try:
            request = CallRequest(
                mode=CallMode.FUNCTION,
                sandbox_path=self.sandbox_path,
                stream_logs=self.stream_logs,
                module_path=module_path,
                function_name=function_name,
                args=args,
            )
        except ValidationError as e:
            return err(
                ErrorCode.VALIDATION_ERROR,
                f"Arguments to {function_name} must be JSON-serializable",
                e.errors(include_input=False),
            )
        logger.debug(f"Calling {module_path}:{function_name} with {len(args)} argument(s)")
        return await self.call(request)
