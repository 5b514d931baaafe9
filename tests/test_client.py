"""Tests for ControlClient request shapes and error mapping."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from fc_sdk.client import ControlClient
from fc_sdk.exceptions import ControlCallError
from fc_sdk.models import (
    BootSource,
    Drive,
    DriveCacheType,
    InstanceAction,
    MachineConfiguration,
    MmdsConfig,
    MmdsVersion,
    NetworkInterface,
    VmConfig,
)
from tests.conftest import FakeControlApi


class TestRequests:
    """Paths, methods and bodies sent for typed calls."""

    async def test_machine_config_body_omits_unset(
        self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi
    ) -> None:
        async with make_client() as client:
            await client.put_machine_configuration(MachineConfiguration(vcpu_count=2, mem_size_mib=512))

        assert fake_api.calls == [
            (
                "PUT",
                "/machine-config",
                {"vcpu_count": 2, "mem_size_mib": 512, "smt": False, "track_dirty_pages": False},
            )
        ]

    async def test_drive_path_uses_id(
        self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi
    ) -> None:
        async with make_client() as client:
            await client.put_guest_drive(
                Drive(drive_id="rootfs", path_on_host="/r.ext4", is_read_only=True, cache_type=DriveCacheType.UNSAFE)
            )

        method, path, body = fake_api.calls[0]
        assert (method, path) == ("PUT", "/drives/rootfs")
        assert body == {
            "drive_id": "rootfs",
            "is_root_device": False,
            "path_on_host": "/r.ext4",
            "is_read_only": True,
            "cache_type": "Unsafe",
        }

    async def test_network_interface_path(
        self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi
    ) -> None:
        async with make_client() as client:
            await client.put_guest_network_interface(
                NetworkInterface(iface_id="eth0", host_dev_name="tap0", guest_mac="06:00:ac:10:00:02")
            )

        assert fake_api.paths == [("PUT", "/network-interfaces/eth0")]

    async def test_mmds_config_enum_serialized(
        self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi
    ) -> None:
        async with make_client() as client:
            await client.put_mmds_config(MmdsConfig(network_interfaces=["eth0"], version=MmdsVersion.V2))

        assert fake_api.calls[0][2] == {"network_interfaces": ["eth0"], "version": "V2"}

    async def test_unknown_fields_forwarded(
        self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi
    ) -> None:
        boot = BootSource.model_validate({"kernel_image_path": "/vmlinux", "future_option": 1})

        async with make_client() as client:
            await client.put_guest_boot_source(boot)

        assert fake_api.calls[0][2] == {"kernel_image_path": "/vmlinux", "future_option": 1}

    async def test_actions(self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi) -> None:
        async with make_client() as client:
            for action in InstanceAction:
                await client.create_sync_action(action)

        assert [body for _, _, body in fake_api.calls] == [
            {"action_type": "InstanceStart"},
            {"action_type": "SendCtrlAltDel"},
            {"action_type": "FlushMetrics"},
        ]

    async def test_raw_call_returns_json(
        self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi
    ) -> None:
        fake_api.responses[("GET", "/mmds")] = {"a": 1}

        async with make_client() as client:
            assert await client.call("get_mmds", "GET", "/mmds") == {"a": 1}
            assert await client.call("put_mmds", "PUT", "/mmds", {"a": 2}) is None


class TestTimeouts:
    async def test_default_from_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FC_SDK_CONTROL_CALL_TIMEOUT_SECONDS", "7.5")
        transport = httpx.MockTransport(lambda request: httpx.Response(204))

        async with ControlClient("/tmp/x.sock", transport=transport) as client:
            assert client._http.timeout.read == 7.5

    async def test_explicit_timeout_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FC_SDK_CONTROL_CALL_TIMEOUT_SECONDS", "7.5")
        transport = httpx.MockTransport(lambda request: httpx.Response(204))

        async with ControlClient("/tmp/x.sock", transport=transport, timeout=1.0) as client:
            assert client._http.timeout.read == 1.0


class TestResponses:
    async def test_export_config_uses_api_keys(
        self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi
    ) -> None:
        fake_api.responses[("GET", "/vm/config")] = {
            "boot-source": {"kernel_image_path": "/vmlinux", "boot_args": "console=ttyS0"},
            "machine-config": {"vcpu_count": 1, "mem_size_mib": 128},
            "network-interfaces": [{"iface_id": "eth0", "host_dev_name": "tap0"}],
            "mmds-config": {"network_interfaces": ["eth0"], "version": "V1"},
        }

        async with make_client() as client:
            config = await client.get_export_vm_config()

        assert isinstance(config, VmConfig)
        assert config.network_interfaces[0].host_dev_name == "tap0"
        assert config.mmds_config is not None and config.mmds_config.version is MmdsVersion.V1

    async def test_malformed_response_is_call_error(
        self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi
    ) -> None:
        fake_api.responses[("GET", "/machine-config")] = {"vcpu_count": "many"}

        async with make_client() as client:
            with pytest.raises(ControlCallError) as exc_info:
                await client.get_machine_configuration()

        assert exc_info.value.operation == "get_machine_configuration"
        assert exc_info.value.status_code is None
        assert exc_info.value.cause is not None


class TestErrors:
    """Every failure surfaces as ControlCallError naming the operation."""

    async def test_fault_message(self, make_client: Callable[..., ControlClient], fake_api: FakeControlApi) -> None:
        fake_api.fail[("PUT", "/boot-source")] = 400

        async with make_client() as client:
            with pytest.raises(ControlCallError) as exc_info:
                await client.put_guest_boot_source(BootSource(kernel_image_path="/missing"))

        err = exc_info.value
        assert err.operation == "put_guest_boot_source"
        assert err.status_code == 400
        assert err.fault_message == "rejected /boot-source"
        assert "HTTP 400" in str(err)
        assert err.context["operation"] == "put_guest_boot_source"

    async def test_plain_text_error_body(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="internal error\n"))

        async with ControlClient("/tmp/x.sock", transport=transport) as client:
            with pytest.raises(ControlCallError) as exc_info:
                await client.describe_instance()

        assert exc_info.value.status_code == 500
        assert exc_info.value.fault_message == "internal error"

    async def test_transport_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with ControlClient("/tmp/x.sock", transport=httpx.MockTransport(refuse)) as client:
            with pytest.raises(ControlCallError) as exc_info:
                await client.patch_vm_state("Paused")

        err = exc_info.value
        assert err.operation == "patch_vm_paused"
        assert err.status_code is None
        assert isinstance(err.cause, httpx.ConnectError)

    async def test_missing_socket(self, short_tmp: Path) -> None:
        async with ControlClient(short_tmp / "absent.sock") as client:
            with pytest.raises(ControlCallError) as exc_info:
                await client.get_firecracker_version()

        assert exc_info.value.operation == "get_firecracker_version"
        assert exc_info.value.cause is not None
