"""VM lifecycle states and the transitions allowed between them."""

from enum import Enum


class VmState(str, Enum):
    """Lifecycle state shared by VmBuilder and Vm.

    A builder lives in UNCONFIGURED/STARTING and ends in RUNNING (handed off
    to a Vm) or START_FAILED. A Vm lives in RUNNING/PAUSED and passes through
    SNAPSHOT_IN_PROGRESS while a snapshot is being written.
    """

    UNCONFIGURED = "unconfigured"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    SNAPSHOT_IN_PROGRESS = "snapshot_in_progress"
    STOPPED = "stopped"
    START_FAILED = "start_failed"


VALID_STATE_TRANSITIONS: dict[VmState, set[VmState]] = {
    VmState.UNCONFIGURED: {VmState.STARTING},
    VmState.STARTING: {VmState.RUNNING, VmState.START_FAILED},
    VmState.RUNNING: {VmState.PAUSED, VmState.SNAPSHOT_IN_PROGRESS, VmState.STOPPED},
    VmState.PAUSED: {VmState.RUNNING, VmState.SNAPSHOT_IN_PROGRESS, VmState.STOPPED},
    VmState.SNAPSHOT_IN_PROGRESS: {VmState.RUNNING, VmState.PAUSED},
    VmState.STOPPED: set(),
    VmState.START_FAILED: set(),
}

TERMINAL_STATES: frozenset[VmState] = frozenset({VmState.STOPPED, VmState.START_FAILED})

# States a Vm handle can be in while the hypervisor is alive and configured.
LIVE_STATES: frozenset[VmState] = frozenset({VmState.RUNNING, VmState.PAUSED})
