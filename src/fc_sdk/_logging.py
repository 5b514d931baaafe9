"""Logging for fc-sdk.

The library only ever attaches a NullHandler to the ``fc_sdk`` logger;
applications opt into output with configure_logging(). FC_SDK_LOG_LEVEL
sets the initial level.

Modules pass structured context through ``extra`` (vm_id, socket, pid,
operation, ...). configure_logging() renders the well-known keys after the
message:

    WARNING [2026-02-25 10:02:54] fc_sdk.process - Starting jailer [vm_id=vm-1 socket=/srv/jailer/...]

Records go through a bounded QueueHandler; a QueueListener thread writes
them with click.echo(err=True). A full queue drops records rather than
blocking the event loop of a process driving many VMs.
"""

import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "fc_sdk"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = os.environ.get("FC_SDK_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:  # excludes NOTSET (0) and unknown names
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_QUEUE_CAPACITY = 4096

# extra= keys rendered after the message, in this order.
CONTEXT_KEYS: tuple[str, ...] = (
    "vm_id",
    "context_id",
    "pid",
    "socket",
    "binary",
    "source",
    "path",
    "operation",
    "status_code",
    "returncode",
)

_LEVEL_STYLES: dict[int, dict[str, object]] = {
    logging.DEBUG: {"dim": True},
    logging.WARNING: {"fg": "yellow"},
    logging.ERROR: {"fg": "red"},
    logging.CRITICAL: {"fg": "red", "bold": True},
}


class ContextFormatter(logging.Formatter):
    """Formatter that appends known ``extra`` fields as ``[key=value ...]``."""

    def __init__(self) -> None:
        super().__init__(fmt=_FMT, datefmt=_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        fields = [f"{key}={getattr(record, key)}" for key in CONTEXT_KEYS if getattr(record, key, None) is not None]
        if fields:
            message = f"{message} [{' '.join(fields)}]"
        return message


class _ClickHandler(logging.Handler):
    """Writes to stderr through click; runs on the QueueListener thread."""

    def __init__(self) -> None:
        super().__init__()
        self.formatter = ContextFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            style = _LEVEL_STYLES.get(record.levelno, {})
            click.echo(click.style(self.format(record), **style), err=True)
        except BlockingIOError:
            pass  # stderr full, drop
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _NonBlockingHandler(logging.handlers.QueueHandler):
    """Bounded queue in front of _ClickHandler; never blocks the caller."""

    def __init__(self) -> None:
        q: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(q)
        self._listener = logging.handlers.QueueListener(q, _ClickHandler(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Same process: hand the record over as is, extra fields included.
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Logger for an fc_sdk module (always under the ``fc_sdk`` hierarchy)."""
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Send fc_sdk log records to stderr.

    Idempotent: the stderr handler is installed once. Handlers the
    application added itself are left alone.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"); overrides FC_SDK_LOG_LEVEL
        quiet: Only errors; takes precedence over level
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_NonBlockingHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
