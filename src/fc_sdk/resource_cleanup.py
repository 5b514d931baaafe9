"""Resource cleanup utilities for process handles.

Cleanup operations that log errors but don't raise, so a cleanup failure
never masks the error that triggered it.
"""

import asyncio
import contextlib
from pathlib import Path

import aiofiles.os

from fc_sdk import constants
from fc_sdk._logging import get_logger
from fc_sdk.platform_utils import ProcessWrapper

logger = get_logger(__name__)


async def cleanup_process(
    proc: ProcessWrapper | None,
    name: str,
    context_id: str,
    term_timeout: float = constants.TERM_GRACE_SECONDS,
    kill_timeout: float = constants.KILL_WAIT_SECONDS,
) -> bool:
    """Stop a subprocess (SIGTERM → grace period → SIGKILL).

    - Always awaits wait() after terminate/kill so the child is reaped
    - Treats ProcessLookupError as already dead
    - Never raises (except CancelledError), logs instead

    Args:
        proc: ProcessWrapper to stop (None safe - returns immediately)
        name: Process name for logging (e.g., "firecracker", "jailer")
        context_id: Context for logging (e.g., vm_id)
        term_timeout: Seconds to wait after SIGTERM before SIGKILL
        kill_timeout: Seconds to wait after SIGKILL before giving up

    Returns:
        True if the process is gone, False if issues occurred
    """
    if proc is None:
        return True

    try:
        if proc.returncode is not None:
            logger.debug(
                f"{name} already terminated",
                extra={"context_id": context_id, "returncode": proc.returncode},
            )
            return True

        logger.debug(f"Sending SIGTERM to {name}", extra={"context_id": context_id, "pid": proc.pid})
        await proc.terminate()

        try:
            await proc.wait_with_timeout(timeout=term_timeout)
            logger.debug(
                f"{name} stopped gracefully (SIGTERM)",
                extra={"context_id": context_id, "returncode": proc.returncode},
            )
            return True
        except TimeoutError:
            logger.warning(
                f"{name} didn't respond to SIGTERM, force killing",
                extra={"context_id": context_id, "term_timeout": term_timeout},
            )

        logger.debug(f"Sending SIGKILL to {name}", extra={"context_id": context_id, "pid": proc.pid})
        await proc.kill()

        try:
            await proc.wait_with_timeout(timeout=kill_timeout)
            logger.warning(
                f"{name} force killed (SIGKILL)",
                extra={"context_id": context_id, "returncode": proc.returncode},
            )
            return True
        except TimeoutError:
            logger.error(
                f"{name} didn't respond to SIGKILL within timeout",
                extra={"context_id": context_id, "kill_timeout": kill_timeout, "pid": proc.pid},
            )
            return False

    except ProcessLookupError:
        logger.debug(f"{name} already dead (ProcessLookupError)", extra={"context_id": context_id})
        return True

    except asyncio.CancelledError:
        # The grace period was interrupted; make sure the child still dies.
        proc.kill_now()
        raise

    except Exception as e:
        logger.error(
            f"{name} cleanup error",
            extra={"context_id": context_id, "error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )
        return False


async def cleanup_file(
    file_path: Path | None,
    context_id: str,
    description: str = "file",
) -> bool:
    """Delete a file, treating "already gone" as success.

    Args:
        file_path: Path to delete (None safe - returns immediately)
        context_id: Context for logging (e.g., vm_id)
        description: Description for logging (e.g., "API socket")

    Returns:
        True if the file is gone, False if deletion failed
    """
    if file_path is None:
        return True

    try:
        await aiofiles.os.remove(file_path)
        logger.debug(
            f"{description} deleted",
            extra={"context_id": context_id, "path": str(file_path)},
        )
        return True

    except FileNotFoundError:
        logger.debug(
            f"{description} already deleted",
            extra={"context_id": context_id, "path": str(file_path)},
        )
        return True

    except asyncio.CancelledError:
        remove_file_now(file_path, context_id, description)
        raise

    except OSError as e:
        logger.error(
            f"{description} OS error during deletion",
            extra={"context_id": context_id, "path": str(file_path), "error": str(e), "error_type": type(e).__name__},
        )
        return False


def remove_file_now(file_path: Path | None, context_id: str, description: str = "file") -> bool:
    """Synchronous variant of cleanup_file for finalizers and cancelled cleanups."""
    if file_path is None:
        return True
    try:
        file_path.unlink(missing_ok=True)
    except OSError as e:
        logger.error(
            f"{description} OS error during deletion",
            extra={"context_id": context_id, "path": str(file_path), "error": str(e)},
        )
        return False
    return True


async def cleanup_task(task: asyncio.Task[None] | None) -> None:
    """Cancel and await a background task (e.g. an output drainer)."""
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
