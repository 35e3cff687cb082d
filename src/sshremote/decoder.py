"""Turns the collected output of a runner program into an ExecutionEnvelope."""

import json
from logging import getLogger
from typing import Any

from pydantic import ValidationError

from sshremote.types import EnvelopeError, ErrorCode, ExecutionEnvelope, Ok, Result, err

logger = getLogger(__name__)

_decoder = json.JSONDecoder()


def find_envelope(output: str) -> dict[str, Any] | None:
    """
    Return the last top-level JSON object in ``output`` that has a "success" key.

    Text around and between objects is skipped. Objects nested inside an
    earlier match are never considered on their own.
    """
    found = None
    position = output.find("{")
    while position != -1:
        try:
            candidate, end = _decoder.raw_decode(output, position)
        except json.JSONDecodeError:
            position = output.find("{", position + 1)
            continue
        if isinstance(candidate, dict) and "success" in candidate:
            found = candidate
        position = output.find("{", end)
    return found


def decode(output: bytes | str, residual: str) -> Result[ExecutionEnvelope]:
    """
    Decode a call's stdout, falling back on stderr text when no envelope is present.

    Precedence:
        1. The last JSON object with a "success" key in stdout is authoritative.
        2. Otherwise non-empty residual diagnostic text is a failure.
        3. Otherwise non-empty stdout is a success: parsed as JSON when it
           parses, else the trimmed text itself.
        4. Otherwise a success with no value.

    Args:
        output: Everything the runner wrote to stdout
        residual: stderr text left after log lines were removed

    Returns:
        Ok with the envelope, or Err(PARSE_ERROR) for an envelope of the wrong shape
    """
    if isinstance(output, bytes):
        output = output.decode(errors="replace")

    raw_envelope = find_envelope(output)
    if raw_envelope is not None:
        try:
            return Ok(ExecutionEnvelope.model_validate(raw_envelope))
        except ValidationError as e:
            return err(
                ErrorCode.PARSE_ERROR,
                "Malformed result envelope",
                {"envelope": raw_envelope, "errors": e.errors()},
            )

    if residual:
        return Ok(ExecutionEnvelope(success=False, error=EnvelopeError(message=residual)))

    text = output.strip()
    if text:
        logger.debug("No result envelope in output, treating raw output as the result")
        try:
            return Ok(ExecutionEnvelope(success=True, result=json.loads(text)))
        except json.JSONDecodeError:
            return Ok(ExecutionEnvelope(success=True, result=text))

    return Ok(ExecutionEnvelope(success=True, result=None))
