"""fc-sdk: Firecracker microVM lifecycle management.

Resolves firecracker/jailer binaries, spawns and owns the hypervisor
process, and drives the VM through its API socket with state-checked
builder and handle objects.

Quick Start:
    ```python
    from fc_sdk import BootSource, LaunchSpec, MachineConfiguration, resolve_firecracker_bin, spawn

    spec = LaunchSpec(binary=resolve_firecracker_bin(), socket_path="/tmp/fc.sock", vm_id="vm-1")
    async with await spawn(spec) as fc:
        vm = await (
            fc.vm_builder()
            .boot_source(BootSource(kernel_image_path="/srv/vmlinux", boot_args="console=ttyS0"))
            .machine_config(MachineConfiguration(vcpu_count=1, mem_size_mib=256))
            .start()
        )
        await vm.pause()
        await vm.create_snapshot("/srv/snap/vm.snap", "/srv/snap/vm.mem")
    ```

Pinned release artifacts:
    ```python
    from fc_sdk import BundledMode, ResolutionPolicy, resolve_firecracker_bin

    policy = ResolutionPolicy(
        mode=BundledMode.BUNDLED_ONLY,
        bundle_root="/opt/fc-bundle",
        release_version="v1.12.1",
    )
    fc_bin = resolve_firecracker_bin(policy)  # .../release-v1.12.1-x86_64/firecracker-v1.12.1-x86_64
    ```

Environment:
    FC_SDK_FIRECRACKER_BIN / FC_SDK_JAILER_BIN: explicit binary (path or name)
    FC_SDK_BUNDLED_DIR: additional bundle root
    FC_SDK_FIRECRACKER_RELEASE: release version when the policy sets none
    FC_SDK_LOG_LEVEL: library log level

Requirements:
    - Linux host with KVM for actually booting VMs
    - Python 3.12+
"""

from importlib.metadata import PackageNotFoundError, version

from fc_sdk._logging import configure_logging
from fc_sdk.binary_resolver import (
    BinaryKind,
    BinarySource,
    BundledMode,
    ResolutionPolicy,
    ResolvedBinary,
    resolve,
    resolve_firecracker_bin,
    resolve_jailer_bin,
)
from fc_sdk.builder import VmBuilder
from fc_sdk.client import ControlClient
from fc_sdk.exceptions import (
    BinaryNotExecutableError,
    BinaryNotFoundError,
    ChecksumMismatchError,
    ControlCallError,
    DaemonizeWithoutDetachError,
    FcSdkError,
    InvalidLaunchSpecError,
    InvalidPolicyError,
    InvalidStateError,
    LifecycleError,
    MissingConfigurationError,
    ProcessExitedEarlyError,
    ReadinessTimeoutError,
    ResolutionError,
    SocketPathConflictError,
    SpawnError,
    SpawnFailedError,
)
from fc_sdk.models import (
    Balloon,
    BootSource,
    Drive,
    EntropyDevice,
    Logger,
    MachineConfiguration,
    MemoryBackend,
    MemoryBackendType,
    MemoryHotplugConfig,
    Metrics,
    MmdsConfig,
    NetworkInterface,
    NetworkOverride,
    PartialDrive,
    PartialNetworkInterface,
    Pmem,
    SerialDevice,
    SnapshotLoadParams,
    SnapshotType,
    VmConfig,
    Vsock,
)
from fc_sdk.process import (
    DetachedProcess,
    FirecrackerOptions,
    FirecrackerProcess,
    JailerOptions,
    LaunchSpec,
    ProcessRecord,
    ProcessStatus,
    StdioPolicy,
    spawn,
)
from fc_sdk.settings import Settings
from fc_sdk.vm import Vm, restore
from fc_sdk.vm_types import VmState

try:
    __version__ = version("fc-sdk")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

__all__ = [
    "Balloon",
    "BinaryKind",
    "BinaryNotExecutableError",
    "BinaryNotFoundError",
    "BinarySource",
    "BootSource",
    "BundledMode",
    "ChecksumMismatchError",
    "ControlCallError",
    "ControlClient",
    "DaemonizeWithoutDetachError",
    "DetachedProcess",
    "Drive",
    "EntropyDevice",
    "FcSdkError",
    "FirecrackerOptions",
    "FirecrackerProcess",
    "InvalidLaunchSpecError",
    "InvalidPolicyError",
    "InvalidStateError",
    "JailerOptions",
    "LaunchSpec",
    "LifecycleError",
    "Logger",
    "MachineConfiguration",
    "MemoryBackend",
    "MemoryBackendType",
    "MemoryHotplugConfig",
    "Metrics",
    "MissingConfigurationError",
    "MmdsConfig",
    "NetworkInterface",
    "NetworkOverride",
    "PartialDrive",
    "PartialNetworkInterface",
    "Pmem",
    "ProcessExitedEarlyError",
    "ProcessRecord",
    "ProcessStatus",
    "ReadinessTimeoutError",
    "ResolutionError",
    "ResolutionPolicy",
    "ResolvedBinary",
    "SerialDevice",
    "Settings",
    "SnapshotLoadParams",
    "SnapshotType",
    "SocketPathConflictError",
    "SpawnError",
    "SpawnFailedError",
    "StdioPolicy",
    "Vm",
    "VmBuilder",
    "VmConfig",
    "VmState",
    "Vsock",
    "__version__",
    "configure_logging",
    "resolve",
    "resolve_firecracker_bin",
    "resolve_jailer_bin",
    "restore",
    "spawn",
]
