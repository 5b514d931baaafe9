"""Exception hierarchy for fc-sdk.

All exceptions inherit from FcSdkError.

Hierarchy:
    FcSdkError (base)
    ├── ResolutionError
    │   ├── BinaryNotFoundError          ← no candidate in any strategy
    │   ├── ChecksumMismatchError        ← SHA-256 differs from the policy
    │   └── InvalidPolicyError           ← bad version/checksum, no bundle root
    ├── SpawnError
    │   ├── BinaryNotExecutableError     ← missing or non-executable binary
    │   ├── SocketPathConflictError      ← explicit socket in jailed mode
    │   ├── DaemonizeWithoutDetachError  ← daemonize requested without detach
    │   ├── InvalidLaunchSpecError       ← other launch-shape errors
    │   ├── SpawnFailedError             ← exec() itself failed
    │   ├── ReadinessTimeoutError        ← socket never became ready
    │   └── ProcessExitedEarlyError      ← child died before readiness
    └── LifecycleError
        ├── MissingConfigurationError    ← boot source / machine config unset
        ├── ControlCallError             ← control-plane call rejected/failed
        └── InvalidStateError            ← operation not valid in current state
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

    from fc_sdk.binary_resolver import BinaryKind, BinarySource
    from fc_sdk.vm_types import VmState


class FcSdkError(Exception):
    """Base exception for all fc-sdk errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Binary resolution
# =============================================================================


class ResolutionError(FcSdkError):
    """Base class for binary resolution failures."""


class BinaryNotFoundError(ResolutionError):
    """No candidate binary was found by any applicable strategy.

    Attributes:
        kind: Which binary was being resolved
        searched: Every path probed, in probe order
    """

    def __init__(self, kind: BinaryKind, searched: list[Path]):
        shown = "\n  ".join(str(p) for p in searched) or "(no candidates)"
        super().__init__(
            f"{kind.value} binary not found; searched:\n  {shown}",
            context={"binary": kind.value, "searched": [str(p) for p in searched]},
        )
        self.kind = kind
        self.searched = searched


class ChecksumMismatchError(ResolutionError):
    """Resolved binary's SHA-256 does not match the expected digest.

    Attributes:
        source: Strategy that produced the rejected candidate
    """

    def __init__(
        self,
        kind: BinaryKind,
        path: Path,
        expected: str,
        actual: str,
        source: BinarySource,
    ):
        super().__init__(
            f"{kind.value} checksum mismatch for {path} ({source.value}): expected {expected}, got {actual}",
            context={
                "binary": kind.value,
                "path": str(path),
                "expected": expected,
                "actual": actual,
                "source": source.value,
            },
        )
        self.kind = kind
        self.path = path
        self.expected = expected
        self.actual = actual
        self.source = source


class InvalidPolicyError(ResolutionError):
    """Resolution policy is malformed or unusable.

    Raised for invalid release versions or checksums, and when bundled
    lookup is required but no bundle root is configured.
    """


# =============================================================================
# Process spawning
# =============================================================================


class SpawnError(FcSdkError):
    """Base class for process spawn failures."""


class BinaryNotExecutableError(SpawnError):
    """Binary to launch is missing or lacks an executable bit."""


class SocketPathConflictError(SpawnError):
    """An explicit socket path was given for a jailed launch.

    The jailer derives the socket location from its chroot layout, so a
    caller-supplied path can never be honored.
    """


class DaemonizeWithoutDetachError(SpawnError):
    """daemonize=True was requested without detach=True.

    A daemonized jailer leaves no child for the handle to own, so the
    caller must opt into detached ownership explicitly.
    """


class InvalidLaunchSpecError(SpawnError):
    """Launch spec has an invalid shape (missing socket path, bad id, ...)."""


class SpawnFailedError(SpawnError):
    """The OS refused to start the process."""


class ReadinessTimeoutError(SpawnError):
    """Control socket did not become ready within the timeout.

    The process was still running; this may indicate a slow host.
    """


class ProcessExitedEarlyError(SpawnError):
    """The process exited before its control socket became ready.

    Attributes:
        returncode: Exit status of the process (negative for signals)
        stderr: Tail of captured stderr, if stderr was captured
    """

    def __init__(self, message: str, returncode: int | None, stderr: str = "", context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.update({"returncode": returncode, "stderr": stderr})
        super().__init__(message, ctx)
        self.returncode = returncode
        self.stderr = stderr


# =============================================================================
# VM lifecycle
# =============================================================================


class LifecycleError(FcSdkError):
    """Base class for VM lifecycle errors."""


class MissingConfigurationError(LifecycleError):
    """A required pre-boot setting was not configured.

    Attributes:
        field: Name of the missing builder field
    """

    def __init__(self, field: str):
        super().__init__(f"missing required configuration: {field}", context={"field": field})
        self.field = field


class ControlCallError(LifecycleError):
    """A control-plane call failed.

    Covers both rejected requests (non-2xx) and transport failures.

    Attributes:
        operation: Name of the failing operation (e.g. "put_boot_source")
        status_code: HTTP status, None for transport failures
        fault_message: Hypervisor-reported fault message, if any
        cause: Underlying exception for transport failures
    """

    def __init__(
        self,
        operation: str,
        *,
        status_code: int | None = None,
        fault_message: str | None = None,
        cause: BaseException | None = None,
    ):
        if status_code is not None:
            detail = f"HTTP {status_code}"
            if fault_message:
                detail += f": {fault_message}"
        else:
            detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(
            f"control call {operation} failed: {detail}",
            context={"operation": operation, "status_code": status_code, "fault_message": fault_message},
        )
        self.operation = operation
        self.status_code = status_code
        self.fault_message = fault_message
        self.cause = cause


class InvalidStateError(LifecycleError):
    """Operation is not allowed in the object's current lifecycle state."""

    def __init__(self, operation: str, state: VmState, allowed: list[VmState] | None = None):
        super().__init__(
            f"{operation} is not valid in state {state.value}",
            context={
                "operation": operation,
                "state": state.value,
                "allowed_states": [s.value for s in allowed or []],
            },
        )
        self.operation = operation
        self.state = state
