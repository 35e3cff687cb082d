import posixpath
import secrets
import shlex
from logging import getLogger
from pathlib import Path

from sshremote.backends import Transport
from sshremote.transfer import upload_bytes
from sshremote.types import CallMode, Err, ErrorCode, Ok, Result, err

logger = getLogger(__name__)

# Load the runner programs. They are static: call data never goes into their text.
_RUNNER_DIR = Path(__file__).parent
RUNNER_PROGRAMS: dict[CallMode, bytes] = {
    CallMode.CODE: (_RUNNER_DIR / "code_runner.py").read_bytes(),
    CallMode.FUNCTION: (_RUNNER_DIR / "function_runner.py").read_bytes(),
}


class RunnerProvisioner:
    """
    Uploads the runner programs to the remote host on first use.

    Remote paths are memoized per kind for the life of the session. Concurrent
    first uses of the same kind may both upload; the second write wins and is
    identical to the first.
    """

    def __init__(self, session: Transport, temp_dir: str = "/tmp"):
        self._session = session
        self._temp_dir = temp_dir
        self._paths: dict[CallMode, str] = {}

    @property
    def provisioned(self) -> dict[CallMode, str]:
        return dict(self._paths)

    async def ensure_runner(self, kind: CallMode) -> Result[str]:
        """
        Return the remote path of the runner for ``kind``, uploading it if needed.

        A failed upload is not memoized, so the next call retries.
        """
        if kind in self._paths:
            return Ok(self._paths[kind])

        remote_path = posixpath.join(
            self._temp_dir, f"sshremote-{kind.value}-runner-{secrets.token_hex(8)}.py"
        )
        logger.info(f"Provisioning {kind.value} runner at {remote_path}")
        uploaded = await upload_bytes(self._session, remote_path, RUNNER_PROGRAMS[kind])
        if isinstance(uploaded, Err):
            if uploaded.error.code is ErrorCode.NOT_CONNECTED:
                return uploaded
            return err(
                ErrorCode.UPLOAD_ERROR,
                f"Failed to provision {kind.value} runner: {uploaded.error.message}",
                uploaded.error.details,
            )

        self._paths[kind] = remote_path
        return Ok(remote_path)

    async def cleanup(self) -> None:
        """Best-effort removal of every provisioned runner. Never fails."""
        if not self._paths:
            return
        paths = list(self._paths.values())
        self._paths.clear()

        command = "rm -f " + " ".join(shlex.quote(p) for p in paths)
        opened = await self._session.open_process_channel(command)
        if isinstance(opened, Err):
            logger.debug(f"Skipping runner cleanup: {opened.error.message}")
            return
        channel = opened.value
        try:
            await channel.close_input()
            output = await channel.drain()
        except OSError as e:
            logger.debug(f"Runner cleanup failed: {e}")
            return
        finally:
            await channel.close()
        if output.exit_status not in (0, None):
            logger.warning(f"Runner cleanup exited with status {output.exit_status}")
