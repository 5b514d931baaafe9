"""Data models for the Firecracker control API.

Mirrors the request/response bodies the lifecycle layer sends and reads.
Unknown fields are preserved (extra="allow") so configurations exported by
newer hypervisor versions round-trip through VmBuilder.from_config().
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ApiModel(BaseModel):
    """Base for all API bodies."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        """Serialize to the JSON body the API expects (aliases, no nulls)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# Enums
# ============================================================================


class DriveCacheType(str, Enum):
    UNSAFE = "Unsafe"
    WRITEBACK = "Writeback"


class DriveIoEngine(str, Enum):
    SYNC = "Sync"
    ASYNC = "Async"


class HugePages(str, Enum):
    NONE = "None"
    HUGE_2M = "2M"


class MmdsVersion(str, Enum):
    V1 = "V1"
    V2 = "V2"


class SnapshotType(str, Enum):
    FULL = "Full"
    DIFF = "Diff"


class MemoryBackendType(str, Enum):
    FILE = "File"
    UFFD = "Uffd"


class InstanceAction(str, Enum):
    """Values accepted by PUT /actions."""

    INSTANCE_START = "InstanceStart"
    SEND_CTRL_ALT_DEL = "SendCtrlAltDel"
    FLUSH_METRICS = "FlushMetrics"


# ============================================================================
# Pre-boot configuration
# ============================================================================


class BootSource(ApiModel):
    """Kernel image and command line."""

    kernel_image_path: str
    boot_args: str | None = None
    initrd_path: str | None = None


class MachineConfiguration(ApiModel):
    """vCPU count and memory size."""

    vcpu_count: int = Field(ge=1, le=32)
    mem_size_mib: int = Field(ge=1)
    smt: bool = False
    track_dirty_pages: bool = False
    cpu_template: str | None = None
    huge_pages: HugePages | None = None


class Drive(ApiModel):
    """Block device backed by a host file or a vhost-user socket."""

    drive_id: str
    is_root_device: bool = False
    path_on_host: str | None = None
    is_read_only: bool | None = None
    partuuid: str | None = None
    cache_type: DriveCacheType | None = None
    io_engine: DriveIoEngine | None = None
    rate_limiter: dict[str, Any] | None = None
    socket: str | None = None


class PartialDrive(ApiModel):
    """Live drive update (hot-swap backing file or rate limiter)."""

    drive_id: str
    path_on_host: str | None = None
    rate_limiter: dict[str, Any] | None = None


class Pmem(ApiModel):
    """virtio-pmem persistent memory device."""

    id: str
    path_on_host: str
    root_device: bool = False
    read_only: bool = False


class NetworkInterface(ApiModel):
    """Guest network interface backed by a host tap device."""

    iface_id: str
    host_dev_name: str
    guest_mac: str | None = None
    rx_rate_limiter: dict[str, Any] | None = None
    tx_rate_limiter: dict[str, Any] | None = None


class PartialNetworkInterface(ApiModel):
    """Live network interface update (rate limiters only)."""

    iface_id: str
    rx_rate_limiter: dict[str, Any] | None = None
    tx_rate_limiter: dict[str, Any] | None = None


class Balloon(ApiModel):
    amount_mib: int = Field(ge=0)
    deflate_on_oom: bool = False
    stats_polling_interval_s: int | None = None


class Vsock(ApiModel):
    guest_cid: int = Field(ge=3)
    uds_path: str
    vsock_id: str | None = None


class EntropyDevice(ApiModel):
    rate_limiter: dict[str, Any] | None = None


class SerialDevice(ApiModel):
    serial_out_path: str | None = None


class MemoryHotplugConfig(ApiModel):
    total_size_mib: int
    block_size_mib: int | None = None
    slot_size_mib: int | None = None


class MmdsConfig(ApiModel):
    network_interfaces: list[str]
    version: MmdsVersion | None = None
    ipv4_address: str | None = None


class Logger(ApiModel):
    log_path: str | None = None
    level: str | None = None
    show_level: bool | None = None
    show_log_origin: bool | None = None
    module: str | None = None


class Metrics(ApiModel):
    metrics_path: str


class VmConfig(ApiModel):
    """Full pre-boot configuration, as accumulated by VmBuilder.

    Field aliases match the keys of GET /vm/config, so an exported
    configuration validates straight into this model.
    """

    boot_source: BootSource | None = Field(default=None, alias="boot-source")
    machine_config: MachineConfiguration | None = Field(default=None, alias="machine-config")
    cpu_config: dict[str, Any] | None = Field(default=None, alias="cpu-config")
    drives: list[Drive] = Field(default_factory=list)
    pmem: list[Pmem] = Field(default_factory=list)
    network_interfaces: list[NetworkInterface] = Field(default_factory=list, alias="network-interfaces")
    balloon: Balloon | None = None
    vsock: Vsock | None = None
    entropy: EntropyDevice | None = None
    memory_hotplug: MemoryHotplugConfig | None = Field(default=None, alias="memory-hotplug")
    mmds_config: MmdsConfig | None = Field(default=None, alias="mmds-config")
    logger: Logger | None = None
    metrics: Metrics | None = None


# ============================================================================
# Snapshots
# ============================================================================


class SnapshotCreateParams(ApiModel):
    snapshot_path: str
    mem_file_path: str
    snapshot_type: SnapshotType = SnapshotType.FULL


class MemoryBackend(ApiModel):
    backend_type: MemoryBackendType
    backend_path: str


class NetworkOverride(ApiModel):
    """Remap a snapshotted interface onto a different host tap device."""

    iface_id: str
    host_dev_name: str


class SnapshotLoadParams(ApiModel):
    """Body of PUT /snapshot/load.

    Exactly one of mem_file_path / mem_backend is expected by the hypervisor.
    """

    snapshot_path: str
    mem_file_path: str | None = None
    mem_backend: MemoryBackend | None = None
    enable_diff_snapshots: bool | None = None
    track_dirty_pages: bool | None = None
    resume_vm: bool = False
    network_overrides: list[NetworkOverride] = Field(default_factory=list)


# ============================================================================
# Responses
# ============================================================================


class InstanceInfo(ApiModel):
    app_name: str | None = None
    id: str | None = None
    state: str | None = None
    vmm_version: str | None = None


class FirecrackerVersion(ApiModel):
    firecracker_version: str


class BalloonStats(ApiModel):
    target_pages: int | None = None
    actual_pages: int | None = None
    target_mib: int | None = None
    actual_mib: int | None = None


class MemoryHotplugStatus(ApiModel):
    total_size_mib: int | None = None
    plugged_size_mib: int | None = None
    requested_size_mib: int | None = None
