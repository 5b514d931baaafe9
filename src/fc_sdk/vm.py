"""Handle to a booted (or restored) Firecracker microVM.

A Vm is obtained from VmBuilder.start() or restore(). It tracks the VM's
lifecycle state locally and checks it before every operation, so calls that
make no sense in the current state (pause while paused, snapshot after
stop) fail fast with InvalidStateError instead of reaching the hypervisor.

A Vm speaks the control protocol only. It never owns the hypervisor process:
terminate it through the FirecrackerProcess that spawned it, if any.
"""

from __future__ import annotations

import asyncio
import types
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fc_sdk._logging import get_logger
from fc_sdk.client import ControlClient
from fc_sdk.exceptions import InvalidStateError
from fc_sdk.models import (
    Balloon,
    BalloonStats,
    FirecrackerVersion,
    InstanceAction,
    InstanceInfo,
    MachineConfiguration,
    MemoryHotplugStatus,
    PartialDrive,
    PartialNetworkInterface,
    SnapshotCreateParams,
    SnapshotLoadParams,
    SnapshotType,
    VmConfig,
)
from fc_sdk.vm_types import LIVE_STATES, TERMINAL_STATES, VALID_STATE_TRANSITIONS, VmState

if TYPE_CHECKING:
    import httpx

logger = get_logger(__name__)

_NON_TERMINAL = frozenset(VmState) - TERMINAL_STATES


class Vm:
    """Handle to a running or paused microVM.

    Operations on one Vm are serialized through an asyncio.Lock (FIFO), so
    they reach the hypervisor in caller order and each completes before the
    next starts. Separate Vm instances are fully independent.

    Context Manager Usage:
        ```python
        async with await builder.start() as vm:
            await vm.pause()
            await vm.create_snapshot("/srv/snap/vm.snap", "/srv/snap/vm.mem")
        # control connection closed; the hypervisor process keeps running
        ```
    """

    def __init__(self, client: ControlClient, state: VmState = VmState.RUNNING, *, owns_client: bool = True) -> None:
        """Wrap a control client already bound to a live hypervisor.

        Args:
            client: Control client bound to the VM's API socket
            state: Initial state (RUNNING after boot, RUNNING/PAUSED after restore)
            owns_client: Close the client in aclose()
        """
        if state not in LIVE_STATES:
            raise ValueError(f"Vm must start in a live state, got {state.value}")
        self._client = client
        self._owns_client = owns_client
        self._state = state
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> Vm:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release the control connection (the VM itself is not affected)."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def state(self) -> VmState:
        """Current lifecycle state."""
        return self._state

    @property
    def socket_path(self) -> Path:
        """API socket this VM is bound to."""
        return self._client.socket_path

    def client(self) -> ControlClient:
        """Raw control client for operations this handle does not model.

        State tracking stays with the Vm; calls made directly on the client
        that change VM state (e.g. PATCH /vm) are not reflected in state.
        """
        return self._client

    # -------------------------------------------------------------------------
    # State handling
    # -------------------------------------------------------------------------

    def _require(self, operation: str, allowed: Iterable[VmState]) -> None:
        allowed = frozenset(allowed)
        if self._state not in allowed:
            raise InvalidStateError(operation, self._state, sorted(allowed, key=lambda s: s.value))

    def _transition(self, new_state: VmState) -> None:
        if new_state not in VALID_STATE_TRANSITIONS[self._state]:
            raise InvalidStateError(f"transition to {new_state.value}", self._state)
        old_state = self._state
        self._state = new_state
        logger.debug(
            "VM state transition",
            extra={"socket": str(self.socket_path), "old_state": old_state.value, "new_state": new_state.value},
        )

    # -------------------------------------------------------------------------
    # Instance management
    # -------------------------------------------------------------------------

    async def describe(self) -> InstanceInfo:
        """General information about the instance."""
        async with self._lock:
            self._require("describe", _NON_TERMINAL)
            return await self._client.describe_instance()

    async def version(self) -> FirecrackerVersion:
        async with self._lock:
            self._require("version", _NON_TERMINAL)
            return await self._client.get_firecracker_version()

    async def config(self) -> VmConfig:
        """Export the configuration currently applied to the VM.

        The result can seed a new builder via VmBuilder.from_config().
        """
        async with self._lock:
            self._require("config", _NON_TERMINAL)
            return await self._client.get_export_vm_config()

    async def pause(self) -> None:
        """Pause a running VM. On failure the state is left unchanged."""
        async with self._lock:
            self._require("pause", {VmState.RUNNING})
            await self._client.patch_vm_state("Paused")
            self._transition(VmState.PAUSED)

    async def resume(self) -> None:
        """Resume a paused VM. On failure the state is left unchanged."""
        async with self._lock:
            self._require("resume", {VmState.PAUSED})
            await self._client.patch_vm_state("Resumed")
            self._transition(VmState.RUNNING)

    async def send_ctrl_alt_del(self) -> None:
        """Send Ctrl+Alt+Del to the guest (x86_64).

        The guest reboots, which makes the hypervisor exit, so the VM is
        considered STOPPED once the action is accepted.
        """
        async with self._lock:
            self._require("send_ctrl_alt_del", LIVE_STATES)
            await self._client.create_sync_action(InstanceAction.SEND_CTRL_ALT_DEL)
            self._transition(VmState.STOPPED)

    async def flush_metrics(self) -> None:
        """Flush metrics to the configured metrics path."""
        async with self._lock:
            self._require("flush_metrics", LIVE_STATES)
            await self._client.create_sync_action(InstanceAction.FLUSH_METRICS)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    async def create_snapshot(
        self,
        snapshot_path: str | Path,
        mem_file_path: str | Path,
        *,
        snapshot_type: SnapshotType = SnapshotType.FULL,
    ) -> None:
        """Write a snapshot of the VM state and guest memory.

        The hypervisor expects a paused VM; calling this on a running VM is
        allowed and surfaces the hypervisor's rejection. Whatever the outcome,
        the VM returns to the state it was in before the call.
        """
        async with self._lock:
            self._require("create_snapshot", LIVE_STATES)
            prior = self._state
            self._transition(VmState.SNAPSHOT_IN_PROGRESS)
            try:
                await self._client.create_snapshot(
                    SnapshotCreateParams(
                        snapshot_path=str(snapshot_path),
                        mem_file_path=str(mem_file_path),
                        snapshot_type=snapshot_type,
                    )
                )
            finally:
                self._transition(prior)
            logger.info(
                "Snapshot created",
                extra={
                    "socket": str(self.socket_path),
                    "snapshot_path": str(snapshot_path),
                    "type": snapshot_type.value,
                },
            )

    async def create_diff_snapshot(self, snapshot_path: str | Path, mem_file_path: str | Path) -> None:
        """Diff snapshot; requires track_dirty_pages in the machine config."""
        await self.create_snapshot(snapshot_path, mem_file_path, snapshot_type=SnapshotType.DIFF)

    # -------------------------------------------------------------------------
    # Live updates
    # -------------------------------------------------------------------------

    async def update_drive(self, update: PartialDrive) -> None:
        """Hot-swap a drive's backing file or update its rate limiter."""
        async with self._lock:
            self._require("update_drive", LIVE_STATES)
            await self._client.patch_guest_drive(update)

    async def update_network_interface(self, update: PartialNetworkInterface) -> None:
        async with self._lock:
            self._require("update_network_interface", LIVE_STATES)
            await self._client.patch_guest_network_interface(update)

    async def balloon_config(self) -> Balloon:
        async with self._lock:
            self._require("balloon_config", LIVE_STATES)
            return await self._client.describe_balloon_config()

    async def balloon_stats(self) -> BalloonStats:
        async with self._lock:
            self._require("balloon_stats", LIVE_STATES)
            return await self._client.describe_balloon_stats()

    async def update_balloon(self, amount_mib: int) -> None:
        async with self._lock:
            self._require("update_balloon", LIVE_STATES)
            await self._client.patch_balloon(amount_mib)

    async def update_balloon_stats_interval(self, stats_polling_interval_s: int) -> None:
        async with self._lock:
            self._require("update_balloon_stats_interval", LIVE_STATES)
            await self._client.patch_balloon_stats_interval(stats_polling_interval_s)

    async def machine_configuration(self) -> MachineConfiguration:
        async with self._lock:
            self._require("machine_configuration", _NON_TERMINAL)
            return await self._client.get_machine_configuration()

    async def memory_hotplug_status(self) -> MemoryHotplugStatus:
        async with self._lock:
            self._require("memory_hotplug_status", LIVE_STATES)
            return await self._client.get_memory_hotplug()

    async def update_memory_hotplug(self, requested_size_mib: int) -> None:
        async with self._lock:
            self._require("update_memory_hotplug", LIVE_STATES)
            await self._client.patch_memory_hotplug(requested_size_mib)

    # -------------------------------------------------------------------------
    # MMDS
    # -------------------------------------------------------------------------

    async def get_mmds(self) -> dict[str, Any]:
        async with self._lock:
            self._require("get_mmds", LIVE_STATES)
            return await self._client.get_mmds()

    async def set_mmds(self, data: dict[str, Any]) -> None:
        """Replace the MMDS data store contents."""
        async with self._lock:
            self._require("set_mmds", LIVE_STATES)
            await self._client.put_mmds(data)

    async def patch_mmds(self, data: dict[str, Any]) -> None:
        """Merge into the MMDS data store contents."""
        async with self._lock:
            self._require("patch_mmds", LIVE_STATES)
            await self._client.patch_mmds(data)


async def restore(
    socket_path: str | Path,
    params: SnapshotLoadParams,
    *,
    client: ControlClient | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Vm:
    """Restore a microVM from a snapshot on a fresh hypervisor process.

    Must target a process on which nothing but logger/metrics has been
    configured. The returned Vm is RUNNING when ``params.resume_vm`` is set,
    PAUSED otherwise.

    Args:
        socket_path: API socket of the fresh hypervisor
        params: Snapshot load parameters
        client: Existing client to use (not closed by the returned Vm)
        transport: Transport for a newly created client

    Raises:
        ControlCallError: The hypervisor rejected the load.
    """
    owns_client = client is None
    if client is None:
        client = ControlClient(socket_path, transport=transport)

    try:
        await client.load_snapshot(params)
    except BaseException:
        if owns_client:
            await client.aclose()
        raise

    state = VmState.RUNNING if params.resume_vm else VmState.PAUSED
    logger.info(
        "VM restored from snapshot",
        extra={"socket": str(client.socket_path), "snapshot_path": params.snapshot_path, "state": state.value},
    )
    return Vm(client, state, owns_client=owns_client)
