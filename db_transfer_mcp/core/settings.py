"""Timeout and scratch-area settings for database transfer operations.

Provides centralized configuration using Pydantic BaseSettings
with environment variable support for operational tuning.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TransferSettings(BaseSettings):
    """Database transfer timeout and resource configuration."""

    scratch_dir: str = Field(
        "/var/lib/db-transfer/scratch",
        alias="TRANSFER_SCRATCH_DIR",
        description="Directory on every server where dump artifacts are written",
    )

    validate_timeout: int = Field(
        30, alias="VALIDATE_TIMEOUT", description="Precondition checks timeout in seconds"
    )

    estimate_timeout: int = Field(
        60, alias="ESTIMATE_TIMEOUT", description="Size estimation timeout in seconds"
    )

    structure_timeout: int = Field(
        120, alias="STRUCTURE_TIMEOUT", description="Structure introspection timeout in seconds"
    )

    dump_timeout: int = Field(3600, alias="DUMP_TIMEOUT", description="Dump timeout in seconds")

    relocate_timeout: int = Field(
        3600, alias="RELOCATE_TIMEOUT", description="Dump relocation (rsync) timeout in seconds"
    )

    restore_timeout: int = Field(
        3600, alias="RESTORE_TIMEOUT", description="Restore timeout in seconds"
    )

    cleanup_timeout: int = Field(
        60, alias="CLEANUP_TIMEOUT", description="Artifact cleanup timeout in seconds"
    )

    redis_bgsave_poll_attempts: int = Field(
        120,
        alias="REDIS_BGSAVE_POLL_ATTEMPTS",
        description="Maximum LASTSAVE polls while waiting for BGSAVE to finish",
    )

    redis_bgsave_poll_interval: float = Field(
        1.0,
        alias="REDIS_BGSAVE_POLL_INTERVAL",
        description="Seconds between LASTSAVE polls",
    )

    provision_timeout: int = Field(
        300, alias="PROVISION_TIMEOUT", description="Timeout for starting a clone target container"
    )

    provision_ready_attempts: int = Field(
        60,
        alias="PROVISION_READY_ATTEMPTS",
        description="Readiness probes before a new clone target is given up on",
    )

    provision_ready_interval: float = Field(
        2.0, alias="PROVISION_READY_INTERVAL", description="Seconds between readiness probes"
    )

    ssh_multiplexing: bool = Field(
        True,
        alias="SSH_MULTIPLEXING",
        description="Reuse SSH connections (ControlMaster) unless a call disables it",
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


# Global settings instance
transfer_settings = TransferSettings()
