"""Async subprocess execution with output routing."""

from __future__ import annotations

import asyncio
import codecs
import os
import shlex
import sys
from pathlib import Path
from typing import Callable, List, Literal, Mapping, Optional, Sequence, TextIO

import structlog

from assetpub.core.errors import ProcessFailedError
from assetpub.progress import EventType

logger = structlog.get_logger()

SubprocessOutputDestination = Literal["stdio", "ignore", "publish"]
"""Where subprocess output goes.

'stdio' writes it to this process' stdout/stderr, 'publish' sends it to the
progress listener as shell events, 'ignore' drops it.
"""

EventPublisher = Callable[[EventType, str], None]

_READ_SIZE = 64 * 1024


def render_command_line(command: Sequence[str]) -> str:
    """Render a command line the way a POSIX shell would accept it."""
    return " ".join(shlex.quote(part) for part in command)


async def shell(
    command: Sequence[str],
    *,
    event_publisher: EventPublisher,
    output_destination: SubprocessOutputDestination = "stdio",
    cwd: str | Path | None = None,
    env: Optional[Mapping[str, str]] = None,
    input: str | None = None,
) -> str:
    """Run ``command`` and return its stdout.

    Raises ProcessFailedError on a non-zero exit (the message carries stderr).
    """
    command_line = render_command_line(command)
    event_publisher(EventType.DEBUG, command_line)

    full_env = {**os.environ, **env} if env else None
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=full_env,
        )
    except OSError as exc:
        raise ProcessFailedError(
            f"{command_line} could not be started: {exc}", exit_code=None
        ) from exc

    if output_destination == "publish":
        event_publisher(EventType.SHELL_OPEN, command_line)

    if input is not None and process.stdin is not None:
        process.stdin.write(input.encode("utf-8"))
        await process.stdin.drain()
        process.stdin.close()

    stdout, stderr = await asyncio.gather(
        _pump(process.stdout, output_destination, sys.stdout, event_publisher),
        _pump(process.stderr, output_destination, sys.stderr, event_publisher),
    )
    return_code = await process.wait()

    if output_destination == "publish":
        event_publisher(EventType.SHELL_CLOSE, f"{command_line} exited with code {return_code}")

    if return_code == 0:
        return stdout

    logger.debug("subprocess_failed", command=command_line, return_code=return_code)
    if return_code < 0:
        raise ProcessFailedError(
            f"{command_line} exited with signal {-return_code}: {stderr.strip()}",
            exit_code=None,
            signal=-return_code,
        )
    raise ProcessFailedError(
        f"{command_line} exited with error code {return_code}: {stderr.strip()}",
        exit_code=return_code,
    )


async def _pump(
    stream: Optional[asyncio.StreamReader],
    destination: SubprocessOutputDestination,
    forward_to: TextIO,
    event_publisher: EventPublisher,
) -> str:
    if stream is None:
        return ""

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    collected: List[str] = []
    while True:
        chunk = await stream.read(_READ_SIZE)
        text = decoder.decode(chunk, final=not chunk)
        if text:
            collected.append(text)
            if destination == "stdio":
                forward_to.write(text)
                forward_to.flush()
            elif destination == "publish":
                event_publisher(EventType.SHELL_DATA, text)
        if not chunk:
            break
    return "".join(collected)
