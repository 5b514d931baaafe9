"""Pre-boot VM configuration builder.

VmBuilder accumulates configuration locally and applies it to the
hypervisor in one pass when start() is called:

    ```python
    vm = await (
        VmBuilder("/tmp/firecracker.sock")
        .boot_source(BootSource(kernel_image_path="/srv/vmlinux", boot_args="console=ttyS0"))
        .machine_config(MachineConfiguration(vcpu_count=2, mem_size_mib=512))
        .root_drive(Drive(drive_id="rootfs", path_on_host="/srv/rootfs.ext4"))
        .start()
    )
    ```

A builder starts UNCONFIGURED. start() moves it to STARTING, then either
hands off to a RUNNING Vm (the builder is consumed) or lands in the terminal
START_FAILED state. Setters and start() only work while UNCONFIGURED.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

from fc_sdk._logging import get_logger
from fc_sdk.client import ControlClient
from fc_sdk.exceptions import InvalidStateError, MissingConfigurationError
from fc_sdk.models import (
    Balloon,
    BootSource,
    Drive,
    EntropyDevice,
    InstanceAction,
    Logger,
    MachineConfiguration,
    MemoryHotplugConfig,
    Metrics,
    MmdsConfig,
    NetworkInterface,
    Pmem,
    SerialDevice,
    VmConfig,
    Vsock,
)
from fc_sdk.vm import Vm
from fc_sdk.vm_types import VALID_STATE_TRANSITIONS, VmState

if TYPE_CHECKING:
    import httpx

logger = get_logger(__name__)


class VmBuilder:
    """Accumulates pre-boot configuration and boots the VM.

    Required before start(): boot_source() and machine_config().
    Everything else is optional.

    Attributes:
        socket_path: API socket of the target hypervisor
    """

    def __init__(
        self,
        socket_path: str | Path,
        *,
        client: ControlClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create an UNCONFIGURED builder for the hypervisor at *socket_path*.

        Args:
            socket_path: Hypervisor API socket
            client: Existing control client (the resulting Vm will not close it)
            transport: Transport for a newly created client
        """
        self.socket_path = Path(socket_path)
        self._owns_client = client is None
        self._client = client
        self._transport = transport
        self._config = VmConfig()
        self._serial: SerialDevice | None = None
        self._mmds_data: dict[str, Any] | None = None
        self._state = VmState.UNCONFIGURED

    @classmethod
    def from_config(
        cls,
        socket_path: str | Path,
        config: VmConfig,
        *,
        client: ControlClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Self:
        """Create a builder pre-populated from an exported VmConfig.

        Equivalent to replaying every setter with the exported values. Serial
        console and MMDS data are not part of an export and start unset.
        """
        builder = cls(socket_path, client=client, transport=transport)
        builder._config = config.model_copy(deep=True)
        return builder

    @property
    def state(self) -> VmState:
        return self._state

    @property
    def config(self) -> VmConfig:
        """Copy of the configuration accumulated so far."""
        return self._config.model_copy(deep=True)

    def client(self) -> ControlClient:
        """The control client start() will use.

        An owned client is created on first use and closed again if start()
        fails.
        """
        if self._client is None:
            self._client = ControlClient(self.socket_path, transport=self._transport)
        return self._client

    async def _close_owned_client(self) -> None:
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    def _require_unconfigured(self, operation: str) -> None:
        if self._state is not VmState.UNCONFIGURED:
            raise InvalidStateError(operation, self._state, [VmState.UNCONFIGURED])

    def _transition(self, new_state: VmState) -> None:
        if new_state not in VALID_STATE_TRANSITIONS[self._state]:
            raise InvalidStateError(f"transition to {new_state.value}", self._state)
        self._state = new_state

    # =========================================================================
    # Required configuration
    # =========================================================================

    def boot_source(self, boot_source: BootSource) -> Self:
        """Set the kernel image and boot arguments. Required."""
        self._require_unconfigured("boot_source")
        self._config.boot_source = boot_source
        return self

    def machine_config(self, machine_config: MachineConfiguration) -> Self:
        """Set vCPU count and memory size. Required."""
        self._require_unconfigured("machine_config")
        self._config.machine_config = machine_config
        return self

    # =========================================================================
    # Optional configuration
    # =========================================================================

    def cpu_config(self, cpu_config: dict[str, Any]) -> Self:
        """Set CPU configuration (CPUID/MSR modifiers on x86_64, registers on aarch64)."""
        self._require_unconfigured("cpu_config")
        self._config.cpu_config = cpu_config
        return self

    def drive(self, drive: Drive) -> Self:
        """Add a block device. A drive with an existing drive_id replaces it."""
        self._require_unconfigured("drive")
        self._config.drives = [d for d in self._config.drives if d.drive_id != drive.drive_id] + [drive]
        return self

    def root_drive(self, drive: Drive) -> Self:
        """Add a drive marked as the root device."""
        return self.drive(drive.model_copy(update={"is_root_device": True}))

    def pmem(self, pmem: Pmem) -> Self:
        self._require_unconfigured("pmem")
        self._config.pmem = [p for p in self._config.pmem if p.id != pmem.id] + [pmem]
        return self

    def network_interface(self, iface: NetworkInterface) -> Self:
        """Add a network interface. An interface with an existing iface_id replaces it."""
        self._require_unconfigured("network_interface")
        self._config.network_interfaces = [
            i for i in self._config.network_interfaces if i.iface_id != iface.iface_id
        ] + [iface]
        return self

    def balloon(self, balloon: Balloon) -> Self:
        self._require_unconfigured("balloon")
        self._config.balloon = balloon
        return self

    def vsock(self, vsock: Vsock) -> Self:
        self._require_unconfigured("vsock")
        self._config.vsock = vsock
        return self

    def entropy(self, entropy: EntropyDevice) -> Self:
        self._require_unconfigured("entropy")
        self._config.entropy = entropy
        return self

    def serial(self, serial: SerialDevice) -> Self:
        """Redirect the serial console."""
        self._require_unconfigured("serial")
        self._serial = serial
        return self

    def memory_hotplug(self, memory_hotplug: MemoryHotplugConfig) -> Self:
        self._require_unconfigured("memory_hotplug")
        self._config.memory_hotplug = memory_hotplug
        return self

    def mmds_config(self, mmds_config: MmdsConfig) -> Self:
        self._require_unconfigured("mmds_config")
        self._config.mmds_config = mmds_config
        return self

    def mmds_data(self, data: dict[str, Any]) -> Self:
        """Set initial MMDS contents; applied after mmds_config during start()."""
        self._require_unconfigured("mmds_data")
        self._mmds_data = data
        return self

    def logger(self, logger_config: Logger) -> Self:
        self._require_unconfigured("logger")
        self._config.logger = logger_config
        return self

    def metrics(self, metrics: Metrics) -> Self:
        self._require_unconfigured("metrics")
        self._config.metrics = metrics
        return self

    # =========================================================================
    # Build and start
    # =========================================================================

    async def start(self) -> Vm:
        """Apply all configuration and boot the microVM.

        Required fields are checked before any call is made. Configuration
        is then applied in dependency order (logger and metrics, machine
        config, boot source, CPU config, block/pmem/net devices, remaining
        devices, MMDS, InstanceStart), stopping at the first rejected call.

        Returns:
            Vm in the RUNNING state.

        Raises:
            MissingConfigurationError: boot_source or machine_config not set.
            ControlCallError: A call was rejected; the builder is START_FAILED.
            InvalidStateError: The builder was already started.
        """
        self._require_unconfigured("start")
        config = self._config
        for field, value in (("boot_source", config.boot_source), ("machine_config", config.machine_config)):
            if value is None:
                await self._close_owned_client()
                raise MissingConfigurationError(field)

        self._transition(VmState.STARTING)
        logger.debug("Starting VM", extra={"socket": str(self.socket_path)})
        try:
            await self._apply(config)
        except BaseException:
            self._transition(VmState.START_FAILED)
            await self._close_owned_client()
            raise

        self._transition(VmState.RUNNING)
        logger.info("VM started", extra={"socket": str(self.socket_path)})
        return Vm(self.client(), VmState.RUNNING, owns_client=self._owns_client)

    async def _apply(self, config: VmConfig) -> None:
        client = self.client()
        assert config.boot_source is not None
        assert config.machine_config is not None

        # Logger and metrics must precede everything else.
        if config.logger is not None:
            await client.put_logger(config.logger)
        if config.metrics is not None:
            await client.put_metrics(config.metrics)

        await client.put_machine_configuration(config.machine_config)
        await client.put_guest_boot_source(config.boot_source)
        if config.cpu_config is not None:
            await client.put_cpu_configuration(config.cpu_config)

        for drive in config.drives:
            await client.put_guest_drive(drive)
        for pmem in config.pmem:
            await client.put_guest_pmem(pmem)
        for iface in config.network_interfaces:
            await client.put_guest_network_interface(iface)

        if config.balloon is not None:
            await client.put_balloon(config.balloon)
        if config.vsock is not None:
            await client.put_guest_vsock(config.vsock)
        if config.entropy is not None:
            await client.put_entropy_device(config.entropy)
        if self._serial is not None:
            await client.put_serial_device(self._serial)
        if config.memory_hotplug is not None:
            await client.put_memory_hotplug(config.memory_hotplug)

        # MMDS data needs the MMDS config in place.
        if config.mmds_config is not None:
            await client.put_mmds_config(config.mmds_config)
        if self._mmds_data is not None:
            await client.put_mmds(self._mmds_data)

        await client.create_sync_action(InstanceAction.INSTANCE_START)
