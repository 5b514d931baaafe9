"""Subprocess lifecycle utilities.

- drain_subprocess_output: concurrent stdout/stderr draining (prevents 64KB pipe deadlock)
- wait_for_socket: poll, with backoff, for a Unix socket created by a child process
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_delay, wait_exponential

from fc_sdk import constants
from fc_sdk._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from fc_sdk.platform_utils import ProcessWrapper

logger = get_logger(__name__)

# Upper bound for a single connect() probe; a listening socket answers instantly.
_PROBE_TIMEOUT_SECONDS = 1.0


class _SocketNotReady(Exception):
    """Internal retry signal: socket missing or not accepting yet."""


async def drain_subprocess_output(
    process: ProcessWrapper,
    *,
    process_name: str,
    context_id: str,
    stdout_handler: Callable[[str], None] | None = None,
    stderr_handler: Callable[[str], None] | None = None,
) -> None:
    """Drain subprocess stdout/stderr concurrently to prevent pipe deadlock.

    Without concurrent draining a child that fills one 64KB pipe blocks
    while a sequential reader waits on the other.

    Args:
        process: ProcessWrapper instance with stdout/stderr pipes
        process_name: Process identifier for logging (e.g., "firecracker")
        context_id: Context identifier (e.g., vm_id) for log correlation
        stdout_handler: Optional callback for stdout lines (default: debug log)
        stderr_handler: Optional callback for stderr lines (default: warning log)
    """

    if stdout_handler is None:

        def default_stdout_handler(line: str) -> None:
            logger.debug(f"[{process_name} stdout] {line}", extra={"context_id": context_id, "output": line})

        stdout_handler = default_stdout_handler

    if stderr_handler is None:

        def default_stderr_handler(line: str) -> None:
            logger.warning(f"[{process_name} stderr] {line}", extra={"context_id": context_id, "output": line})

        stderr_handler = default_stderr_handler

    async def read_stream(stream: asyncio.StreamReader, handler: Callable[[str], None]) -> None:
        async for line in stream:
            try:
                decoded = line.decode().rstrip()
            except UnicodeDecodeError:
                continue  # non-UTF8 output is skipped
            if decoded:
                handler(decoded)

    async with asyncio.TaskGroup() as tg:
        if process.stdout:
            tg.create_task(read_stream(process.stdout, stdout_handler))
        if process.stderr:
            tg.create_task(read_stream(process.stderr, stderr_handler))


def log_task_exception(task: asyncio.Task[None]) -> None:
    """Log exceptions from background tasks.

    Usage:
        task = asyncio.create_task(some_coroutine())
        task.add_done_callback(log_task_exception)
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task failed",
            extra={"task_name": task.get_name()},
            exc_info=exc,
        )


async def _probe_socket(path: Path) -> None:
    if not path.exists():
        raise _SocketNotReady(f"{path} does not exist")
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_unix_connection(str(path)),
            timeout=_PROBE_TIMEOUT_SECONDS,
        )
    except (ConnectionRefusedError, ConnectionResetError, FileNotFoundError, TimeoutError) as e:
        raise _SocketNotReady(f"{path} not accepting connections: {e}") from e
    writer.close()
    try:
        await writer.wait_closed()
    except (ConnectionResetError, BrokenPipeError):
        pass  # peer closed first


async def wait_for_socket(
    path: Path,
    *,
    timeout: float,
    abort_check: Callable[[], None] | None = None,
    min_interval: float = constants.SOCKET_POLL_MIN_SECONDS,
    max_interval: float = constants.SOCKET_POLL_MAX_SECONDS,
) -> None:
    """Wait for a Unix socket to appear and accept connections.

    Used after fork+exec of firecracker/jailer to wait for the process to
    create its API socket. Polls the filesystem (there is no async event for
    a file created by another process), with exponential backoff between
    probes.

    Two-phase check per probe: the socket file must exist, then a
    probe-connect must succeed. This closes the gap between bind() and
    listen() in the child.

    Args:
        path: Path to the socket file.
        timeout: Maximum seconds to wait before raising TimeoutError.
        abort_check: Optional callable invoked before every probe. Raise from it
            to abort the wait early (e.g. when the spawning process has died).
        min_interval: First delay between probes.
        max_interval: Delay cap between probes.

    Raises:
        TimeoutError: Socket did not become ready within *timeout* seconds.
    """
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_delay(timeout),
            wait=wait_exponential(multiplier=min_interval, min=min_interval, max=max_interval),
            retry=retry_if_exception_type(_SocketNotReady),
            reraise=True,
        ):
            with attempt:
                if abort_check is not None:
                    abort_check()
                await _probe_socket(path)
    except _SocketNotReady as e:
        raise TimeoutError(f"socket {path} not ready after {timeout}s") from e
