"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from fc_sdk import constants


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with FC_SDK_ prefix.
    Example: FC_SDK_FIRECRACKER_BIN=/opt/firecracker/bin/firecracker

    Empty values are treated as unset.
    """

    model_config = SettingsConfigDict(
        env_prefix="FC_SDK_",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Binary overrides (path or bare name)
    firecracker_bin: str | None = None
    jailer_bin: str | None = None

    # Bundled artifacts
    bundled_dir: Path | None = None
    firecracker_release: str | None = None

    # Process defaults
    socket_timeout_seconds: float = constants.SOCKET_READY_TIMEOUT_SECONDS
    term_grace_seconds: float = constants.TERM_GRACE_SECONDS
    control_call_timeout_seconds: float = constants.CONTROL_CALL_TIMEOUT_SECONDS
