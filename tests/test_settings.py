"""Tests for environment-driven settings."""

from pathlib import Path

import pytest

from fc_sdk import constants
from fc_sdk.settings import Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "FC_SDK_FIRECRACKER_BIN",
        "FC_SDK_JAILER_BIN",
        "FC_SDK_BUNDLED_DIR",
        "FC_SDK_FIRECRACKER_RELEASE",
        "FC_SDK_SOCKET_TIMEOUT_SECONDS",
        "FC_SDK_TERM_GRACE_SECONDS",
        "FC_SDK_CONTROL_CALL_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()

        assert settings.firecracker_bin is None
        assert settings.jailer_bin is None
        assert settings.bundled_dir is None
        assert settings.firecracker_release is None
        assert settings.socket_timeout_seconds == constants.SOCKET_READY_TIMEOUT_SECONDS
        assert settings.term_grace_seconds == constants.TERM_GRACE_SECONDS

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FC_SDK_FIRECRACKER_BIN", "/opt/fc/firecracker")
        monkeypatch.setenv("FC_SDK_BUNDLED_DIR", "/opt/fc/bundle")
        monkeypatch.setenv("FC_SDK_FIRECRACKER_RELEASE", "v1.12.1")
        monkeypatch.setenv("FC_SDK_SOCKET_TIMEOUT_SECONDS", "2.5")

        settings = Settings()

        assert settings.firecracker_bin == "/opt/fc/firecracker"
        assert settings.bundled_dir == Path("/opt/fc/bundle")
        assert settings.firecracker_release == "v1.12.1"
        assert settings.socket_timeout_seconds == 2.5

    def test_empty_values_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FC_SDK_JAILER_BIN", "")
        monkeypatch.setenv("FC_SDK_TERM_GRACE_SECONDS", "")

        settings = Settings()

        assert settings.jailer_bin is None
        assert settings.term_grace_seconds == constants.TERM_GRACE_SECONDS

    def test_unprefixed_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FIRECRACKER_BIN", "/elsewhere/firecracker")

        assert Settings().firecracker_bin is None
