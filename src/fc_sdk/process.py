"""Spawning and owning Firecracker host processes.

Two launch variants share one entry point, spawn():

- Direct: run ``firecracker --api-sock {socket_path}`` as a child process.
- Isolated: run ``jailer --exec-file {firecracker} --id {vm_id} ...``; the API
  socket location is derived from the jail's chroot layout.

spawn() validates the LaunchSpec before anything is started, launches the
binary, then waits for the API socket to accept connections. The returned
FirecrackerProcess owns the child: leaving ``async with`` (or calling
aclose()) stops it (SIGTERM, grace period, SIGKILL) and removes the socket.

    ```python
    spec = LaunchSpec(binary=resolve_firecracker_bin(), socket_path="/tmp/fc.sock", vm_id="vm-1")
    async with await spawn(spec) as fc:
        vm = await fc.vm_builder().boot_source(...).machine_config(...).start()
    ```
"""

from __future__ import annotations

import asyncio
import collections
import os
import re
import types
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import psutil
from pydantic import BaseModel, ConfigDict, Field

from fc_sdk import constants
from fc_sdk._logging import get_logger
from fc_sdk.binary_resolver import ResolvedBinary
from fc_sdk.builder import VmBuilder
from fc_sdk.client import ControlClient
from fc_sdk.exceptions import (
    BinaryNotExecutableError,
    DaemonizeWithoutDetachError,
    InvalidLaunchSpecError,
    ProcessExitedEarlyError,
    ReadinessTimeoutError,
    SocketPathConflictError,
    SpawnFailedError,
)
from fc_sdk.platform_utils import ProcessWrapper
from fc_sdk.resource_cleanup import cleanup_file, cleanup_process, cleanup_task, remove_file_now
from fc_sdk.settings import Settings
from fc_sdk.subprocess_utils import drain_subprocess_output, log_task_exception, wait_for_socket

logger = get_logger(__name__)

_JAILER_ID_RE = re.compile(rf"[A-Za-z0-9-]{{1,{constants.JAILER_ID_MAX_LENGTH}}}")

# Output drainers of detached processes outlive their handle.
_background_tasks: set[asyncio.Task[None]] = set()


# ============================================================================
# Launch specification
# ============================================================================


class StdioPolicy(str, Enum):
    """What the child's stdin/stdout/stderr are connected to.

    INHERIT: the parent's streams (serial console on the terminal)
    NULL: /dev/null
    LOG: pipes drained into the fc_sdk logger; stderr tail kept for errors
    """

    INHERIT = "inherit"
    NULL = "null"
    LOG = "log"


class FirecrackerOptions(BaseModel):
    """Command-line flags passed to the firecracker binary."""

    model_config = ConfigDict(frozen=True)

    seccomp_filter: Path | None = None
    no_seccomp: bool = False
    boot_timer: bool = False
    log_path: Path | None = None
    log_level: str | None = None
    show_level: bool = False
    show_log_origin: bool = False
    metrics_path: Path | None = None
    http_api_max_payload_size: int | None = Field(default=None, ge=1)
    mmds_size_limit: int | None = Field(default=None, ge=1)
    enable_pci: bool = False

    def to_args(self) -> list[str]:
        args: list[str] = []
        if self.seccomp_filter is not None:
            args += ["--seccomp-filter", str(self.seccomp_filter)]
        if self.no_seccomp:
            args.append("--no-seccomp")
        if self.boot_timer:
            args.append("--boot-timer")
        if self.log_path is not None:
            args += ["--log-path", str(self.log_path)]
        if self.log_level is not None:
            args += ["--level", self.log_level]
        if self.show_level:
            args.append("--show-level")
        if self.show_log_origin:
            args.append("--show-log-origin")
        if self.metrics_path is not None:
            args += ["--metrics-path", str(self.metrics_path)]
        if self.http_api_max_payload_size is not None:
            args += ["--http-api-max-payload-size", str(self.http_api_max_payload_size)]
        if self.mmds_size_limit is not None:
            args += ["--mmds-size-limit", str(self.mmds_size_limit)]
        if self.enable_pci:
            args.append("--enable-pci")
        return args


class JailerOptions(BaseModel):
    """Isolated-launch settings, passed to the jailer binary.

    Attributes:
        uid: User the jailed firecracker runs as
        gid: Group the jailed firecracker runs as
        jailer_binary: Resolved jailer binary (or a path to it)
        chroot_base_dir: Parent of all jails
        netns: Network namespace path to join
        new_pid_ns: Run firecracker in a new PID namespace
        cgroups: ``file=value`` cgroup settings, one --cgroup each
        resource_limits: ``resource=value`` rlimits, one --resource-limit each
        cgroup_version: "1" or "2"
        parent_cgroup: Parent cgroup the jail's cgroup is created under
    """

    model_config = ConfigDict(frozen=True)

    uid: int = Field(ge=0)
    gid: int = Field(ge=0)
    jailer_binary: ResolvedBinary | Path
    chroot_base_dir: Path = constants.DEFAULT_CHROOT_BASE_DIR
    netns: str | None = None
    new_pid_ns: bool = False
    cgroups: tuple[str, ...] = ()
    resource_limits: tuple[str, ...] = ()
    cgroup_version: str | None = None
    parent_cgroup: str | None = None

    @property
    def jailer_path(self) -> Path:
        return _binary_path(self.jailer_binary)


def _default_socket_timeout() -> float:
    return Settings().socket_timeout_seconds


def _default_term_timeout() -> float:
    return Settings().term_grace_seconds


class LaunchSpec(BaseModel):
    """Everything needed to start one hypervisor process.

    Direct mode sets ``socket_path``; isolated mode sets ``isolation`` and
    must leave ``socket_path`` unset (the jail layout decides it).

    Attributes:
        binary: Firecracker binary (resolved, or a plain path)
        vm_id: Instance id (--id); required in isolated mode
        socket_path: API socket for direct launches
        isolation: Jailer settings; None for a direct launch
        firecracker: Firecracker command-line flags
        extra_args: Appended verbatim to the firecracker arguments
        env: Variables added to the inherited environment
        stdio: Stream handling (default LOG, or NULL when detached)
        daemonize: Let the jailer daemonize (requires detach)
        detach: Start the child in its own session
        socket_timeout: Seconds to wait for the API socket
        cleanup_stale_socket: Remove a leftover socket file before a direct launch
        term_timeout: SIGTERM grace period before SIGKILL
        kill_timeout: Wait after SIGKILL
    """

    model_config = ConfigDict(frozen=True)

    binary: ResolvedBinary | Path
    vm_id: str | None = None
    socket_path: Path | None = None
    isolation: JailerOptions | None = None
    firecracker: FirecrackerOptions = Field(default_factory=FirecrackerOptions)
    extra_args: tuple[str, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)
    stdio: StdioPolicy | None = None
    daemonize: bool = False
    detach: bool = False
    socket_timeout: float = Field(default_factory=_default_socket_timeout, gt=0)
    cleanup_stale_socket: bool = True
    term_timeout: float = Field(default_factory=_default_term_timeout, ge=0)
    kill_timeout: float = Field(default=constants.KILL_WAIT_SECONDS, ge=0)

    @property
    def firecracker_path(self) -> Path:
        return _binary_path(self.binary)

    @property
    def effective_stdio(self) -> StdioPolicy:
        if self.stdio is not None:
            return self.stdio
        return StdioPolicy.NULL if self.detach else StdioPolicy.LOG

    def jail_root(self) -> Path:
        """``{chroot_base}/{exec_file_name}/{vm_id}/root`` for isolated launches."""
        if self.isolation is None or self.vm_id is None:
            raise InvalidLaunchSpecError("jail root is only defined for isolated launches with a vm_id")
        return self.isolation.chroot_base_dir / self.firecracker_path.name / self.vm_id / "root"

    def api_socket_path(self) -> Path:
        """Socket the hypervisor will listen on (derived in isolated mode)."""
        if self.isolation is not None:
            return self.jail_root() / constants.JAILED_SOCKET_RELPATH
        if self.socket_path is None:
            raise InvalidLaunchSpecError("direct launch requires socket_path")
        return self.socket_path

    def command(self) -> list[str]:
        """Full argv, binary first."""
        fc_args = self.firecracker.to_args() + list(self.extra_args)
        if self.isolation is None:
            argv = [str(self.firecracker_path), "--api-sock", str(self.api_socket_path())]
            if self.vm_id is not None:
                argv += ["--id", self.vm_id]
            return argv + fc_args

        jail = self.isolation
        argv = [
            str(jail.jailer_path),
            "--exec-file",
            str(self.firecracker_path),
            "--id",
            str(self.vm_id),
            "--uid",
            str(jail.uid),
            "--gid",
            str(jail.gid),
        ]
        if jail.chroot_base_dir != constants.DEFAULT_CHROOT_BASE_DIR:
            argv += ["--chroot-base-dir", str(jail.chroot_base_dir)]
        if jail.netns is not None:
            argv += ["--netns", jail.netns]
        if self.daemonize:
            argv.append("--daemonize")
        if jail.new_pid_ns:
            argv.append("--new-pid-ns")
        for cgroup in jail.cgroups:
            argv += ["--cgroup", cgroup]
        for limit in jail.resource_limits:
            argv += ["--resource-limit", limit]
        if jail.cgroup_version is not None:
            argv += ["--cgroup-version", jail.cgroup_version]
        if jail.parent_cgroup is not None:
            argv += ["--parent-cgroup", jail.parent_cgroup]
        if fc_args:
            argv += ["--", *fc_args]
        return argv


def _binary_path(binary: ResolvedBinary | Path) -> Path:
    return binary.path if isinstance(binary, ResolvedBinary) else Path(binary)


def _check_executable(path: Path, role: str) -> None:
    if not path.is_file() or not os.access(path, os.X_OK):
        raise BinaryNotExecutableError(
            f"{role} binary {path} is missing or not executable",
            context={"binary": role, "path": str(path)},
        )


def validate_launch_spec(spec: LaunchSpec) -> None:
    """Reject launch specs that cannot work, before anything is started.

    Raises:
        SocketPathConflictError: socket_path given for an isolated launch.
        DaemonizeWithoutDetachError: daemonize without detach.
        InvalidLaunchSpecError: Missing socket path or vm_id, bad jailer id,
            daemonize on a direct launch.
        BinaryNotExecutableError: A binary is missing or not executable.
    """
    context = {"vm_id": spec.vm_id}
    if spec.isolation is not None:
        if spec.socket_path is not None:
            raise SocketPathConflictError(
                "socket_path cannot be set for isolated launches; the jailer derives it",
                context={**context, "socket_path": str(spec.socket_path)},
            )
        if spec.vm_id is None or _JAILER_ID_RE.fullmatch(spec.vm_id) is None:
            raise InvalidLaunchSpecError(
                f"isolated launches need a vm_id of 1-{constants.JAILER_ID_MAX_LENGTH} alphanumerics or '-'",
                context=context,
            )
    else:
        if spec.socket_path is None:
            raise InvalidLaunchSpecError("direct launch requires socket_path", context=context)
        if spec.daemonize:
            raise InvalidLaunchSpecError("daemonize is only supported for isolated launches", context=context)

    if spec.daemonize and not spec.detach:
        raise DaemonizeWithoutDetachError(
            "daemonize=True requires detach=True: a daemonized jailer leaves no child to own",
            context=context,
        )

    _check_executable(spec.firecracker_path, "firecracker")
    if spec.isolation is not None:
        _check_executable(spec.isolation.jailer_path, "jailer")


# ============================================================================
# Process handle
# ============================================================================


class ProcessStatus(str, Enum):
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProcessRecord:
    """Snapshot of what a FirecrackerProcess owns."""

    pid: int | None
    socket_path: Path
    cleanup_socket: bool
    status: ProcessStatus
    returncode: int | None


@dataclass(frozen=True)
class DetachedProcess:
    """What is left of a handle after detach(): nothing is owned anymore."""

    pid: int | None
    socket_path: Path


class _OutputTail:
    """Last few KB of a stream, for diagnostics."""

    def __init__(self, max_bytes: int = constants.STDERR_TAIL_BYTES) -> None:
        self._lines: collections.deque[str] = collections.deque()
        self._size = 0
        self._max_bytes = max_bytes

    def append(self, line: str) -> None:
        self._lines.append(line)
        self._size += len(line) + 1
        while self._size > self._max_bytes and len(self._lines) > 1:
            self._size -= len(self._lines.popleft()) + 1

    def text(self) -> str:
        return "\n".join(self._lines)[-self._max_bytes :]


class FirecrackerProcess:
    """Owning handle to a spawned firecracker (or jailer) process.

    Cleanup (SIGTERM, grace period, SIGKILL, then socket removal when the
    socket is owned) runs exactly once: on aclose(), shutdown(), kill() or
    leaving ``async with``, including when the caller is cancelled. A handle
    dropped without cleanup falls back to a synchronous SIGKILL in __del__.

    detach() gives up ownership: the process keeps running and its socket
    stays in place.
    """

    def __init__(
        self,
        proc: ProcessWrapper | None,
        socket_path: Path,
        *,
        vm_id: str | None = None,
        name: str = constants.FIRECRACKER_BIN_NAME,
        pid: int | None = None,
        cleanup_socket: bool = True,
        term_timeout: float = constants.TERM_GRACE_SECONDS,
        kill_timeout: float = constants.KILL_WAIT_SECONDS,
        drain_task: asyncio.Task[None] | None = None,
        stderr_tail: _OutputTail | None = None,
    ) -> None:
        self._proc = proc
        self._socket_path = socket_path
        self._vm_id = vm_id
        self._name = name
        self._pid = pid
        self._cleanup_socket = cleanup_socket
        self._term_timeout = term_timeout
        self._kill_timeout = kill_timeout
        self._drain_task = drain_task
        self._stderr_tail = stderr_tail
        self._closed = False

    @property
    def _context_id(self) -> str:
        return self._vm_id or str(self._socket_path)

    async def __aenter__(self) -> FirecrackerProcess:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def pid(self) -> int | None:
        """Child PID, or the best-effort daemon PID; None once detached."""
        if self._proc is not None:
            return self._proc.pid
        return self._pid

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    @property
    def vm_id(self) -> str | None:
        return self._vm_id

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc is not None else None

    @property
    def status(self) -> ProcessStatus:
        if self._proc is None:
            return ProcessStatus.UNKNOWN
        returncode = self._proc.returncode
        if returncode is None:
            return ProcessStatus.RUNNING
        return ProcessStatus.KILLED if returncode < 0 else ProcessStatus.EXITED

    @property
    def record(self) -> ProcessRecord:
        return ProcessRecord(
            pid=self.pid,
            socket_path=self._socket_path,
            cleanup_socket=self._cleanup_socket and not self._closed,
            status=self.status,
            returncode=self.returncode,
        )

    @property
    def stderr_tail(self) -> str:
        """Recent stderr output (LOG stdio only)."""
        return self._stderr_tail.text() if self._stderr_tail is not None else ""

    async def is_running(self) -> bool:
        if self._proc is not None:
            return await self._proc.is_running()
        if self._pid is not None:
            return await asyncio.to_thread(psutil.pid_exists, self._pid)
        return False

    # -------------------------------------------------------------------------
    # Control plane
    # -------------------------------------------------------------------------

    def vm_builder(self) -> VmBuilder:
        """Fresh VmBuilder bound to this process's API socket."""
        return VmBuilder(self._socket_path)

    def client(self) -> ControlClient:
        """New control client for this process's API socket (caller closes it)."""
        return ControlClient(self._socket_path)

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    async def wait(self) -> int | None:
        """Wait for the process to exit on its own. None if nothing is owned."""
        if self._proc is None:
            return None
        return await self._proc.wait()

    async def shutdown(self) -> int | None:
        """Graceful stop (SIGTERM, grace period, SIGKILL) plus cleanup."""
        await self.aclose()
        return self.returncode

    async def kill(self) -> int | None:
        """Immediate SIGKILL plus cleanup."""
        proc = self._proc
        if not self._closed and proc is not None and proc.returncode is None:
            logger.debug(f"Sending SIGKILL to {self._name}", extra={"context_id": self._context_id, "pid": proc.pid})
            await proc.kill()
            try:
                await proc.wait_with_timeout(self._kill_timeout)
            except TimeoutError:
                logger.error(
                    f"{self._name} didn't respond to SIGKILL within timeout",
                    extra={"context_id": self._context_id, "pid": proc.pid},
                )
        await self.aclose()
        return self.returncode

    def detach(self) -> DetachedProcess:
        """Give up ownership; the process and its socket are left alone."""
        detached = DetachedProcess(pid=self.pid, socket_path=self._socket_path)
        if self._drain_task is not None and not self._drain_task.done():
            _background_tasks.add(self._drain_task)
            self._drain_task.add_done_callback(_background_tasks.discard)
        self._proc = None
        self._pid = None
        self._drain_task = None
        self._cleanup_socket = False
        self._closed = True
        logger.info("Process detached", extra={"context_id": self._context_id, "pid": detached.pid})
        return detached

    async def aclose(self) -> None:
        """Stop the process and remove the owned socket. Runs once."""
        if self._closed:
            return
        self._closed = True

        try:
            await cleanup_process(
                self._proc,
                self._name,
                self._context_id,
                term_timeout=self._term_timeout,
                kill_timeout=self._kill_timeout,
            )
            await cleanup_task(self._drain_task)
        except asyncio.CancelledError:
            if self._proc is not None:
                self._proc.kill_now()
            if self._cleanup_socket:
                remove_file_now(self._socket_path, self._context_id, "API socket")
            raise

        if self._cleanup_socket:
            await cleanup_file(self._socket_path, self._context_id, "API socket")

    def __del__(self) -> None:
        if getattr(self, "_closed", True):
            return
        proc = self._proc
        if proc is None or proc.returncode is not None:
            if self._cleanup_socket:
                remove_file_now(self._socket_path, self._context_id, "API socket")
            return
        logger.warning(
            "FirecrackerProcess garbage-collected without cleanup; killing",
            extra={"context_id": self._context_id, "pid": proc.pid},
        )
        proc.kill_now()
        if self._cleanup_socket:
            remove_file_now(self._socket_path, self._context_id, "API socket")


# ============================================================================
# Spawning
# ============================================================================


class _ExitedBeforeReady(Exception):
    """Internal signal: the child died while the socket was being awaited."""


def _stdio_kwargs(stdio: StdioPolicy) -> dict[str, int | None]:
    if stdio is StdioPolicy.INHERIT:
        return {"stdin": None, "stdout": None, "stderr": None}
    if stdio is StdioPolicy.NULL:
        devnull = asyncio.subprocess.DEVNULL
        return {"stdin": devnull, "stdout": devnull, "stderr": devnull}
    return {"stdin": asyncio.subprocess.DEVNULL, "stdout": asyncio.subprocess.PIPE, "stderr": asyncio.subprocess.PIPE}


def _read_daemon_pid(spec: LaunchSpec) -> int | None:
    """PID the jailer wrote into the jail root, if readable."""
    pid_file = spec.jail_root() / f"{spec.firecracker_path.name}.pid"
    try:
        return int(pid_file.read_text().strip())
    except (OSError, ValueError):
        return None


async def spawn(spec: LaunchSpec) -> FirecrackerProcess:
    """Start firecracker (directly or via the jailer) and wait for its API socket.

    Returns:
        FirecrackerProcess owning the child and, unless daemonized, the socket.

    Raises:
        SocketPathConflictError, DaemonizeWithoutDetachError,
        InvalidLaunchSpecError, BinaryNotExecutableError: Invalid spec; no
            process was started.
        SpawnFailedError: The OS could not start the binary.
        ProcessExitedEarlyError: The child exited before the socket was ready.
        ReadinessTimeoutError: The socket was not ready within socket_timeout.
    """
    validate_launch_spec(spec)

    socket_path = spec.api_socket_path()
    argv = spec.command()
    name = constants.JAILER_BIN_NAME if spec.isolation is not None else constants.FIRECRACKER_BIN_NAME
    context_id = spec.vm_id or str(socket_path)
    stdio = spec.effective_stdio

    if spec.isolation is None and spec.cleanup_stale_socket and socket_path.exists():
        logger.debug("Removing stale API socket", extra={"context_id": context_id, "socket": str(socket_path)})
        await cleanup_file(socket_path, context_id, "stale API socket")

    logger.info(
        f"Starting {name}",
        extra={"vm_id": spec.vm_id, "socket": str(socket_path), "argv": argv, "detach": spec.detach},
    )
    try:
        proc = ProcessWrapper(
            await asyncio.create_subprocess_exec(
                *argv,
                env={**os.environ, **spec.env} if spec.env else None,
                start_new_session=spec.detach,
                **_stdio_kwargs(stdio),
            )
        )
    except OSError as e:
        raise SpawnFailedError(
            f"Failed to start {name}: {e}",
            context={"vm_id": spec.vm_id, "argv": argv},
        ) from e

    stderr_tail: _OutputTail | None = None
    drain_task: asyncio.Task[None] | None = None
    if stdio is StdioPolicy.LOG:
        stderr_tail = _OutputTail()
        tail = stderr_tail

        def on_stderr(line: str) -> None:
            tail.append(line)
            logger.warning(f"[{name} stderr] {line}", extra={"context_id": context_id, "output": line})

        drain_task = asyncio.create_task(
            drain_subprocess_output(proc, process_name=name, context_id=context_id, stderr_handler=on_stderr)
        )
        drain_task.add_done_callback(log_task_exception)

    if spec.daemonize:
        return await _finish_daemonized(spec, proc, socket_path, drain_task, stderr_tail)

    process = FirecrackerProcess(
        proc,
        socket_path,
        vm_id=spec.vm_id,
        name=name,
        cleanup_socket=True,
        term_timeout=spec.term_timeout,
        kill_timeout=spec.kill_timeout,
        drain_task=drain_task,
        stderr_tail=stderr_tail,
    )

    def abort_if_exited() -> None:
        if proc.returncode is not None:
            raise _ExitedBeforeReady

    try:
        await wait_for_socket(socket_path, timeout=spec.socket_timeout, abort_check=abort_if_exited)
    except _ExitedBeforeReady:
        await _settle_output(drain_task)
        await process.aclose()
        raise ProcessExitedEarlyError(
            f"{name} exited with code {proc.returncode} before its API socket was ready",
            returncode=proc.returncode,
            stderr=process.stderr_tail,
            context={"vm_id": spec.vm_id, "socket": str(socket_path)},
        ) from None
    except TimeoutError as e:
        await process.aclose()
        raise ReadinessTimeoutError(
            f"{name} API socket {socket_path} not ready after {spec.socket_timeout}s",
            context={"vm_id": spec.vm_id, "socket": str(socket_path), "timeout": spec.socket_timeout},
        ) from e
    except BaseException:
        await process.aclose()
        raise

    logger.info(f"{name} ready", extra={"vm_id": spec.vm_id, "pid": proc.pid, "socket": str(socket_path)})
    return process


async def _settle_output(drain_task: asyncio.Task[None] | None) -> None:
    """Give the drainer a moment to read what an exited child left in its pipes."""
    if drain_task is not None:
        await asyncio.wait({drain_task}, timeout=1.0)


async def _finish_daemonized(
    spec: LaunchSpec,
    proc: ProcessWrapper,
    socket_path: Path,
    drain_task: asyncio.Task[None] | None,
    stderr_tail: _OutputTail | None,
) -> FirecrackerProcess:
    """The jailer forks off firecracker and exits; nothing is left to own."""
    context = {"vm_id": spec.vm_id, "socket": str(socket_path)}
    try:
        returncode = await proc.wait_with_timeout(constants.DAEMONIZE_EXIT_TIMEOUT_SECONDS)
    except TimeoutError as e:
        await cleanup_process(proc, constants.JAILER_BIN_NAME, str(spec.vm_id))
        await cleanup_task(drain_task)
        raise ReadinessTimeoutError(
            f"daemonizing jailer did not exit within {constants.DAEMONIZE_EXIT_TIMEOUT_SECONDS}s",
            context=context,
        ) from e

    if returncode != 0:
        await _settle_output(drain_task)
        await cleanup_task(drain_task)
        raise ProcessExitedEarlyError(
            f"jailer exited with code {returncode} while daemonizing",
            returncode=returncode,
            stderr=stderr_tail.text() if stderr_tail is not None else "",
            context=context,
        )

    try:
        await wait_for_socket(socket_path, timeout=spec.socket_timeout)
    except TimeoutError as e:
        await cleanup_task(drain_task)
        raise ReadinessTimeoutError(
            f"daemonized firecracker API socket {socket_path} not ready after {spec.socket_timeout}s",
            context={**context, "timeout": spec.socket_timeout},
        ) from e

    pid = _read_daemon_pid(spec)
    logger.info("Daemonized firecracker ready", extra={**context, "pid": pid})
    return FirecrackerProcess(
        None,
        socket_path,
        vm_id=spec.vm_id,
        name=constants.JAILER_BIN_NAME,
        pid=pid,
        cleanup_socket=False,
        drain_task=drain_task,
        stderr_tail=stderr_tail,
    )
