"""File transfer between the local machine and the remote host."""

from logging import getLogger
from pathlib import Path

from sshremote.backends import BulkChannel, Transport
from sshremote.types import Err, ErrorCode, Ok, Result, err

logger = getLogger(__name__)


def _retag(failure: Err, code: ErrorCode) -> Err:
    # NOT_CONNECTED passes through untouched, anything else becomes a transfer error
    if failure.error.code is ErrorCode.NOT_CONNECTED:
        return failure
    return err(code, failure.error.message, failure.error.details)


async def write_file(channel: BulkChannel, remote_path: str, data: bytes) -> Result[None]:
    try:
        await channel.write_file(remote_path, data)
    except OSError as e:
        return err(ErrorCode.UPLOAD_ERROR, f"Failed to write {remote_path}: {e}")
    return Ok(None)


async def read_file(channel: BulkChannel, remote_path: str) -> Result[bytes]:
    try:
        data = await channel.read_file(remote_path)
    except OSError as e:
        return err(ErrorCode.DOWNLOAD_ERROR, f"Failed to read {remote_path}: {e}")
    return Ok(data)


async def upload_bytes(session: Transport, remote_path: str, data: bytes) -> Result[None]:
    """Write ``data`` to ``remote_path`` over a fresh bulk channel."""
    opened = await session.open_bulk_channel()
    if isinstance(opened, Err):
        return _retag(opened, ErrorCode.UPLOAD_ERROR)
    channel = opened.value
    try:
        return await write_file(channel, remote_path, data)
    finally:
        await channel.close()


async def upload_file(session: Transport, local_path: str | Path, remote_path: str) -> Result[None]:
    local_file = Path(local_path).resolve()
    if not local_file.is_file():
        return err(ErrorCode.UPLOAD_ERROR, f"Local file not found: {local_file}")

    logger.info(f"Uploading {local_file} to {remote_path}")
    return await upload_bytes(session, remote_path, local_file.read_bytes())


async def download_file(session: Transport, remote_path: str, local_path: str | Path) -> Result[None]:
    local_file = Path(local_path).resolve()

    opened = await session.open_bulk_channel()
    if isinstance(opened, Err):
        return _retag(opened, ErrorCode.DOWNLOAD_ERROR)
    channel = opened.value
    try:
        downloaded = await read_file(channel, remote_path)
    finally:
        await channel.close()
    if isinstance(downloaded, Err):
        return downloaded

    logger.info(f"Downloaded {remote_path} to {local_file}")
    try:
        local_file.parent.mkdir(parents=True, exist_ok=True)
        local_file.write_bytes(downloaded.value)
    except OSError as e:
        return err(ErrorCode.DOWNLOAD_ERROR, f"Failed to write {local_file}: {e}")
    return Ok(None)
