"""Async client for the Firecracker control API.

Speaks HTTP over the hypervisor's Unix domain API socket using httpx.
Every call is named after the operation it performs; failures (non-2xx
responses and transport errors alike) surface as ControlCallError carrying
that name. Calls are never retried here.

Usage:
    async with ControlClient("/tmp/fc.sock") as client:
        info = await client.describe_instance()
"""

from __future__ import annotations

import types
from pathlib import Path
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from fc_sdk._logging import get_logger
from fc_sdk.exceptions import ControlCallError
from fc_sdk.models import (
    ApiModel,
    Balloon,
    BalloonStats,
    BootSource,
    Drive,
    EntropyDevice,
    FirecrackerVersion,
    InstanceAction,
    InstanceInfo,
    Logger,
    MachineConfiguration,
    MemoryHotplugConfig,
    MemoryHotplugStatus,
    Metrics,
    MmdsConfig,
    NetworkInterface,
    PartialDrive,
    PartialNetworkInterface,
    Pmem,
    SerialDevice,
    SnapshotCreateParams,
    SnapshotLoadParams,
    VmConfig,
    Vsock,
)
from fc_sdk.settings import Settings

logger = get_logger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

# The host part is ignored for Unix sockets.
_BASE_URL = "http://localhost"


class ControlClient:
    """Typed request/response calls against one hypervisor API socket.

    Attributes:
        socket_path: Path of the API socket this client talks to
    """

    __slots__ = ("_http", "socket_path")

    def __init__(
        self,
        socket_path: str | Path,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        """Create a client bound to *socket_path*.

        Args:
            socket_path: Hypervisor API socket.
            transport: Override the UDS transport (tests inject httpx.MockTransport).
            timeout: Per-request timeout in seconds
                (default: FC_SDK_CONTROL_CALL_TIMEOUT_SECONDS).
        """
        self.socket_path = Path(socket_path)
        if transport is None:
            transport = httpx.AsyncHTTPTransport(uds=str(self.socket_path))
        if timeout is None:
            timeout = Settings().control_call_timeout_seconds
        self._http = httpx.AsyncClient(transport=transport, base_url=_BASE_URL, timeout=timeout)

    async def __aenter__(self) -> ControlClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close pooled connections. Safe to call multiple times."""
        await self._http.aclose()

    # -------------------------------------------------------------------------
    # Core request path
    # -------------------------------------------------------------------------

    async def call(
        self,
        operation: str,
        method: str,
        path: str,
        body: ApiModel | dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (None if empty).

        Raises:
            ControlCallError: Transport failure or non-2xx response.
        """
        payload = body.to_api() if isinstance(body, ApiModel) else body
        logger.debug(
            "Control call",
            extra={"operation": operation, "method": method, "path": path, "socket": str(self.socket_path)},
        )
        try:
            response = await self._http.request(method, path, json=payload)
        except httpx.HTTPError as e:
            raise ControlCallError(operation, cause=e) from e

        if response.is_error:
            fault = _fault_message(response)
            logger.debug(
                "Control call rejected",
                extra={"operation": operation, "status_code": response.status_code, "fault_message": fault},
            )
            raise ControlCallError(operation, status_code=response.status_code, fault_message=fault)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ControlCallError(operation, cause=e) from e

    async def _get(self, operation: str, path: str, model: type[_ModelT]) -> _ModelT:
        data = await self.call(operation, "GET", path)
        try:
            return model.model_validate(data or {})
        except ValidationError as e:
            raise ControlCallError(operation, cause=e) from e

    # -------------------------------------------------------------------------
    # Pre-boot configuration
    # -------------------------------------------------------------------------

    async def put_logger(self, logger_config: Logger) -> None:
        await self.call("put_logger", "PUT", "/logger", logger_config)

    async def put_metrics(self, metrics: Metrics) -> None:
        await self.call("put_metrics", "PUT", "/metrics", metrics)

    async def put_machine_configuration(self, config: MachineConfiguration) -> None:
        await self.call("put_machine_configuration", "PUT", "/machine-config", config)

    async def put_guest_boot_source(self, boot_source: BootSource) -> None:
        await self.call("put_guest_boot_source", "PUT", "/boot-source", boot_source)

    async def put_cpu_configuration(self, cpu_config: dict[str, Any]) -> None:
        await self.call("put_cpu_configuration", "PUT", "/cpu-config", cpu_config)

    async def put_guest_drive(self, drive: Drive) -> None:
        await self.call("put_guest_drive", "PUT", f"/drives/{drive.drive_id}", drive)

    async def put_guest_pmem(self, pmem: Pmem) -> None:
        await self.call("put_guest_pmem", "PUT", f"/pmem/{pmem.id}", pmem)

    async def put_guest_network_interface(self, iface: NetworkInterface) -> None:
        await self.call("put_guest_network_interface", "PUT", f"/network-interfaces/{iface.iface_id}", iface)

    async def put_balloon(self, balloon: Balloon) -> None:
        await self.call("put_balloon", "PUT", "/balloon", balloon)

    async def put_guest_vsock(self, vsock: Vsock) -> None:
        await self.call("put_guest_vsock", "PUT", "/vsock", vsock)

    async def put_entropy_device(self, entropy: EntropyDevice) -> None:
        await self.call("put_entropy_device", "PUT", "/entropy", entropy)

    async def put_serial_device(self, serial: SerialDevice) -> None:
        await self.call("put_serial_device", "PUT", "/serial", serial)

    async def put_memory_hotplug(self, config: MemoryHotplugConfig) -> None:
        await self.call("put_memory_hotplug", "PUT", "/hotplug/memory", config)

    async def put_mmds_config(self, config: MmdsConfig) -> None:
        await self.call("put_mmds_config", "PUT", "/mmds/config", config)

    # -------------------------------------------------------------------------
    # Actions and VM state
    # -------------------------------------------------------------------------

    async def create_sync_action(self, action: InstanceAction) -> None:
        await self.call(f"action_{action.value}", "PUT", "/actions", {"action_type": action.value})

    async def patch_vm_state(self, state: str) -> None:
        """Set the VM state ("Paused" or "Resumed")."""
        await self.call(f"patch_vm_{state.lower()}", "PATCH", "/vm", {"state": state})

    async def describe_instance(self) -> InstanceInfo:
        return await self._get("describe_instance", "/", InstanceInfo)

    async def get_firecracker_version(self) -> FirecrackerVersion:
        return await self._get("get_firecracker_version", "/version", FirecrackerVersion)

    async def get_export_vm_config(self) -> VmConfig:
        return await self._get("get_export_vm_config", "/vm/config", VmConfig)

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    async def create_snapshot(self, params: SnapshotCreateParams) -> None:
        await self.call("create_snapshot", "PUT", "/snapshot/create", params)

    async def load_snapshot(self, params: SnapshotLoadParams) -> None:
        await self.call("load_snapshot", "PUT", "/snapshot/load", params)

    # -------------------------------------------------------------------------
    # Live updates
    # -------------------------------------------------------------------------

    async def patch_guest_drive(self, update: PartialDrive) -> None:
        await self.call("patch_guest_drive", "PATCH", f"/drives/{update.drive_id}", update)

    async def patch_guest_network_interface(self, update: PartialNetworkInterface) -> None:
        await self.call(
            "patch_guest_network_interface", "PATCH", f"/network-interfaces/{update.iface_id}", update
        )

    async def describe_balloon_config(self) -> Balloon:
        return await self._get("describe_balloon_config", "/balloon", Balloon)

    async def describe_balloon_stats(self) -> BalloonStats:
        return await self._get("describe_balloon_stats", "/balloon/statistics", BalloonStats)

    async def patch_balloon(self, amount_mib: int) -> None:
        await self.call("patch_balloon", "PATCH", "/balloon", {"amount_mib": amount_mib})

    async def patch_balloon_stats_interval(self, stats_polling_interval_s: int) -> None:
        await self.call(
            "patch_balloon_stats_interval",
            "PATCH",
            "/balloon/statistics",
            {"stats_polling_interval_s": stats_polling_interval_s},
        )

    async def get_machine_configuration(self) -> MachineConfiguration:
        return await self._get("get_machine_configuration", "/machine-config", MachineConfiguration)

    async def get_memory_hotplug(self) -> MemoryHotplugStatus:
        return await self._get("get_memory_hotplug", "/hotplug/memory", MemoryHotplugStatus)

    async def patch_memory_hotplug(self, requested_size_mib: int) -> None:
        await self.call(
            "patch_memory_hotplug", "PATCH", "/hotplug/memory", {"requested_size_mib": requested_size_mib}
        )

    # -------------------------------------------------------------------------
    # MMDS
    # -------------------------------------------------------------------------

    async def get_mmds(self) -> dict[str, Any]:
        return await self.call("get_mmds", "GET", "/mmds") or {}

    async def put_mmds(self, data: dict[str, Any]) -> None:
        await self.call("put_mmds", "PUT", "/mmds", data)

    async def patch_mmds(self, data: dict[str, Any]) -> None:
        await self.call("patch_mmds", "PATCH", "/mmds", data)


def _fault_message(response: httpx.Response) -> str | None:
    """Extract the hypervisor's fault_message, falling back to the raw body."""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or None
    if isinstance(data, dict) and "fault_message" in data:
        return str(data["fault_message"])
    return response.text.strip() or None
