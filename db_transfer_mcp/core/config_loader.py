"""Configuration management for the database transfer engine."""

import asyncio
import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from ..models.database import DatabaseInstance, EnvironmentConfig

logger = structlog.get_logger()


class ServerHost(BaseModel):
    """Configuration for a server reachable over SSH."""

    id: str = ""
    hostname: str
    user: str
    port: int = 22
    identity_file: str | None = None
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    enabled: bool = True
    functional: bool = True  # Set False when the server fails its health checks


class ServerConfig(BaseModel):
    """MCP server configuration."""

    host: str = Field(default="127.0.0.1", alias="FASTMCP_HOST")
    port: int = Field(default=8000, alias="FASTMCP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    database_path: str = Field(default="data/transfers.db", alias="TRANSFER_DB_PATH")


class TransferEngineConfig(BaseSettings):
    """Main configuration: servers, environments and databases known to the engine."""

    hosts: dict[str, ServerHost] = Field(default_factory=dict)
    environments: dict[str, EnvironmentConfig] = Field(default_factory=dict)
    databases: dict[str, DatabaseInstance] = Field(default_factory=dict)
    server: ServerConfig = Field(default_factory=ServerConfig)
    config_file: str = Field(default="config/transfers.yml", alias="DB_TRANSFER_CONFIG")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def get_host(self, host_id: str) -> ServerHost | None:
        return self.hosts.get(host_id)

    def get_environment(self, environment_id: str) -> EnvironmentConfig | None:
        return self.environments.get(environment_id)

    def get_database(self, database_uuid: str) -> DatabaseInstance | None:
        return self.databases.get(database_uuid)


def load_config(config_path: str | None = None) -> TransferEngineConfig:
    """Load configuration from multiple sources (synchronous interface).

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Loaded configuration

    Note:
        For async code, use load_config_async() instead.
    """
    try:
        asyncio.get_running_loop()
        raise RuntimeError(
            "load_config() cannot be called from within an async context. "
            "Use 'await load_config_async()' instead."
        )
    except RuntimeError as e:
        if "no running event loop" in str(e).lower():
            return asyncio.run(load_config_async(config_path))
        raise


async def load_config_async(config_path: str | None = None) -> TransferEngineConfig:
    """Load configuration from multiple sources (async interface).

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Loaded configuration
    """
    load_dotenv()

    config = TransferEngineConfig()

    user_config_path = Path.home() / ".config" / "db-transfer-mcp" / "transfers.yml"
    await _load_config_file(config, user_config_path)

    default_config_file = os.getenv("DB_TRANSFER_CONFIG", "config/transfers.yml")
    project_config_path = Path(config_path or default_config_file)
    await _load_config_file(config, project_config_path)

    config.config_file = str(project_config_path)

    # Environment variables have the highest priority
    _apply_env_overrides(config)

    return config


async def _load_config_file(config: TransferEngineConfig, config_path: Path) -> None:
    """Load and apply configuration from a YAML file."""
    if not config_path.exists():
        return

    yaml_config = await _load_yaml_config(config_path)
    _apply_host_config(config, yaml_config)
    _apply_environment_config(config, yaml_config)
    _apply_database_config(config, yaml_config)
    _apply_server_config(config, yaml_config)


def _apply_host_config(config: TransferEngineConfig, yaml_config: dict[str, Any]) -> None:
    """Apply server host configuration from YAML data."""
    if "hosts" in yaml_config and yaml_config["hosts"]:
        for host_id, host_data in yaml_config["hosts"].items():
            config.hosts[host_id] = ServerHost(id=host_id, **host_data)


def _apply_environment_config(config: TransferEngineConfig, yaml_config: dict[str, Any]) -> None:
    if "environments" in yaml_config and yaml_config["environments"]:
        for env_id, env_data in yaml_config["environments"].items():
            config.environments[env_id] = EnvironmentConfig(id=env_id, **env_data)


def _apply_database_config(config: TransferEngineConfig, yaml_config: dict[str, Any]) -> None:
    """Apply database definitions; the mapping key is the database uuid."""
    if "databases" in yaml_config and yaml_config["databases"]:
        for db_uuid, db_data in yaml_config["databases"].items():
            data = dict(db_data)
            data.setdefault("uuid", db_uuid)
            database = DatabaseInstance(**data)
            if database.server_id not in config.hosts:
                logger.warning(
                    "Database references unknown server",
                    database=db_uuid,
                    server_id=database.server_id,
                )
            config.databases[database.uuid] = database


def _apply_server_config(config: TransferEngineConfig, yaml_config: dict[str, Any]) -> None:
    """Apply server configuration from YAML data."""
    if "server" in yaml_config:
        for key, value in yaml_config["server"].items():
            if hasattr(config.server, key):
                setattr(config.server, key, value)


def _apply_env_overrides(config: TransferEngineConfig) -> None:
    """Apply environment variable overrides."""
    if os.getenv("FASTMCP_HOST"):
        config.server.host = os.getenv("FASTMCP_HOST", config.server.host)
    if port_env := os.getenv("FASTMCP_PORT"):
        config.server.port = int(port_env)
    if os.getenv("LOG_LEVEL"):
        config.server.log_level = os.getenv("LOG_LEVEL", config.server.log_level)
    if os.getenv("TRANSFER_DB_PATH"):
        config.server.database_path = os.getenv("TRANSFER_DB_PATH", config.server.database_path)


async def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration file."""
    try:
        content = await asyncio.to_thread(config_path.read_text)

        content = _expand_yaml_config(content)

        loaded = yaml.safe_load(content)
        # yaml.safe_load can return None, str, list, etc.
        if not isinstance(loaded, dict):
            return {}
        return loaded
    except Exception as e:
        raise ValueError(f"Failed to load config from {config_path}: {e}") from e


ALLOWED_ENV_VARS = {
    "HOME",
    "USER",
    "XDG_CONFIG_HOME",
    "XDG_DATA_HOME",
    "DB_TRANSFER_CONFIG",
    "FASTMCP_HOST",
    "FASTMCP_PORT",
    "LOG_LEVEL",
    "TRANSFER_SCRATCH_DIR",
    "TRANSFER_DB_PATH",
}


def _expand_yaml_config(content: str) -> str:
    """Securely expand environment variables with allowlist.

    Database passwords stay literal in the file; only the allow-listed
    variables above are ever substituted.
    """

    def replace_if_allowed(match: re.Match) -> str:
        var_name = match.group(1) or match.group(2)
        original_pattern = match.group(0)

        if var_name in ALLOWED_ENV_VARS:
            return os.getenv(var_name, original_pattern)  # Keep original if not found
        logger.warning(
            "Environment variable not in allowlist, skipping expansion",
            variable=var_name,
            pattern=original_pattern,
        )
        return original_pattern

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", replace_if_allowed, content)
