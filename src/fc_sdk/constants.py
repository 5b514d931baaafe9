"""Constants for fc-sdk configuration and limits."""

from pathlib import Path
from typing import Final

# ============================================================================
# Binaries
# ============================================================================

FIRECRACKER_BIN_NAME: Final[str] = "firecracker"
"""Default hypervisor binary name."""

JAILER_BIN_NAME: Final[str] = "jailer"
"""Default launcher binary name."""

RELEASE_TARGETS: Final[frozenset[tuple[str, str]]] = frozenset({("linux", "x86_64"), ("linux", "aarch64")})
"""(os, arch) pairs that upstream release artifacts exist for."""

SHA256_HEX_LENGTH: Final[int] = 64

CHECKSUM_CHUNK_SIZE: Final[int] = 1024 * 1024
"""Read size when hashing binaries."""

# ============================================================================
# Jailer layout
# ============================================================================

DEFAULT_CHROOT_BASE_DIR: Final[Path] = Path("/srv/jailer")
"""Jailer's built-in chroot base; --chroot-base-dir is omitted when unchanged."""

JAILED_SOCKET_RELPATH: Final[Path] = Path("run") / "firecracker.socket"
"""Default API socket location inside the jail root."""

JAILER_ID_MAX_LENGTH: Final[int] = 64
"""Jailer rejects ids longer than this."""

# ============================================================================
# Timeouts
# ============================================================================

SOCKET_READY_TIMEOUT_SECONDS: Final[float] = 5.0
"""How long spawn() waits for the API socket to accept connections."""

SOCKET_POLL_MIN_SECONDS: Final[float] = 0.005
"""First readiness poll delay; doubles up to SOCKET_POLL_MAX_SECONDS."""

SOCKET_POLL_MAX_SECONDS: Final[float] = 0.1

TERM_GRACE_SECONDS: Final[float] = 3.0
"""Wait after SIGTERM before escalating to SIGKILL."""

KILL_WAIT_SECONDS: Final[float] = 2.0
"""Wait after SIGKILL before giving up on reaping."""

DAEMONIZE_EXIT_TIMEOUT_SECONDS: Final[float] = 5.0
"""How long a daemonizing jailer may take to fork and exit."""

CONTROL_CALL_TIMEOUT_SECONDS: Final[float] = 30.0
"""Per-request timeout for control-plane calls (snapshots can be slow)."""

STDERR_TAIL_BYTES: Final[int] = 4096
"""Captured stderr kept for ProcessExitedEarlyError diagnostics."""
