"""Cross-platform OS/arch detection and process wrappers.

Uses psutil's built-in OS detection constants for platform identification.
Provides a PID-reuse safe process wrapper.
"""

import asyncio
import contextlib
import platform
from enum import Enum, auto
from functools import cache

import psutil


class HostOS(Enum):
    """Host operating systems, named the way release artifacts name them."""

    LINUX = auto()
    MACOS = auto()
    UNKNOWN = auto()

    @property
    def target_name(self) -> str:
        """OS component used in bundled layout directories (e.g. "linux")."""
        return self.name.lower()


class HostArch(Enum):
    """Host CPU architectures."""

    X86_64 = auto()
    AARCH64 = auto()
    UNKNOWN = auto()


_ARCH_ALIASES: dict[str, HostArch] = {
    "x86_64": HostArch.X86_64,
    "amd64": HostArch.X86_64,
    "aarch64": HostArch.AARCH64,
    "arm64": HostArch.AARCH64,
}


@cache
def detect_host_os() -> HostOS:
    """Detect current host operating system using psutil constants."""
    if psutil.LINUX:
        return HostOS.LINUX
    if psutil.MACOS:
        return HostOS.MACOS
    return HostOS.UNKNOWN


@cache
def detect_host_arch() -> HostArch:
    """Detect current host CPU architecture (normalizes amd64/arm64 aliases)."""
    return _ARCH_ALIASES.get(platform.machine().lower(), HostArch.UNKNOWN)


def host_target() -> tuple[str, str]:
    """Return the (os, arch) pair used in bundled layout names.

    Unknown architectures fall back to the raw ``platform.machine()`` value so
    generic ``{os}-{arch}`` layouts still work on them.
    """
    arch = detect_host_arch()
    arch_name = platform.machine().lower() if arch is HostArch.UNKNOWN else arch.name.lower()
    return detect_host_os().target_name, arch_name


class ProcessWrapper:
    """PID-reuse safe process wrapper using psutil.

    Wraps asyncio.subprocess.Process with psutil.Process for safer PID monitoring.
    """

    def __init__(self, async_proc: asyncio.subprocess.Process) -> None:
        self.async_proc = async_proc
        self.psutil_proc: psutil.Process | None = None

        if async_proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                self.psutil_proc = psutil.Process(async_proc.pid)

    async def is_running(self) -> bool:
        """Check if process is still running (PID-reuse safe).

        Runs the blocking psutil call in a worker thread so a hung /proc read
        cannot stall the event loop.
        """
        if self.async_proc.returncode is not None:
            return False
        if not self.psutil_proc:
            return True

        try:
            running = await asyncio.to_thread(self.psutil_proc.is_running)
            # Unreaped children show up as zombies, which psutil still calls running
            status = await asyncio.to_thread(self.psutil_proc.status) if running else None
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False
        return running and status != psutil.STATUS_ZOMBIE

    @property
    def pid(self) -> int | None:
        """Process ID."""
        return self.async_proc.pid

    @property
    def returncode(self) -> int | None:
        """Process return code (None if still running)."""
        return self.async_proc.returncode

    @property
    def stdout(self):
        """Process stdout stream."""
        return self.async_proc.stdout

    @property
    def stderr(self):
        """Process stderr stream."""
        return self.async_proc.stderr

    async def wait(self) -> int:
        """Wait for process to complete and return its exit code."""
        return await self.async_proc.wait()

    async def terminate(self) -> None:
        """Send SIGTERM without blocking the event loop."""
        if self.psutil_proc and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.psutil_proc.terminate)
        elif self.async_proc.returncode is None:
            self.async_proc.terminate()

    async def kill(self) -> None:
        """Send SIGKILL without blocking the event loop."""
        if self.psutil_proc and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.psutil_proc.kill)
        elif self.async_proc.returncode is None:
            self.async_proc.kill()

    def kill_now(self) -> None:
        """Synchronous SIGKILL for contexts without a running event loop."""
        if self.async_proc.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError, psutil.NoSuchProcess, psutil.AccessDenied):
            if self.psutil_proc is not None:
                self.psutil_proc.kill()
            else:
                self.async_proc.kill()

    async def wait_with_timeout(self, timeout: float) -> int:
        """Wait for process exit with a timeout.

        Pipes, if any, are drained by a background reader (see
        drain_subprocess_output), so a plain wait() cannot deadlock.

        Raises:
            TimeoutError: If process doesn't exit within timeout
        """
        await asyncio.wait_for(self.wait(), timeout=timeout)
        return self.returncode  # type: ignore[return-value]
