"""
FastMCP Database Transfer Server

Moves database contents between managed servers: dump on the source,
copy over SSH, restore on the target.
"""

import argparse
import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import Annotated, Any, Literal

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.tools.tool import ToolResult
from pydantic import Field

from .core.config_loader import TransferEngineConfig, load_config
from .core.logging_config import get_server_logger
from .core.notifications import (
    CompositeNotificationSink,
    LoggingNotificationSink,
    QueueNotificationSink,
)
from .core.provisioning import DatabaseProvisioner
from .core.relocation import DumpRelocator
from .core.remote import RemoteExecutor
from .core.settings import TransferSettings, transfer_settings
from .core.store import TransferStore
from .core.strategies.registry import build_default_registry
from .middleware import ErrorHandlingMiddleware
from .services import (
    StructureInspector,
    TransferAdmissionController,
    TransferOrchestrator,
    TransferService,
)


def get_data_dir() -> Path:
    """Directory for the transfer database and logs."""
    if data_dir := os.getenv("DB_TRANSFER_DATA_DIR"):
        return Path(data_dir)
    if xdg := os.getenv("XDG_DATA_HOME"):
        return Path(xdg) / "db-transfer-mcp"
    return Path.home() / ".local" / "share" / "db-transfer-mcp"


class DBTransferServer:
    """Wires configuration, store, strategies and services into a FastMCP app."""

    def __init__(self, config: TransferEngineConfig, settings: TransferSettings | None = None):
        self.config = config
        self.settings = settings or transfer_settings
        self.logger = get_server_logger()

        self.executor = RemoteExecutor(self.settings)
        self.registry = build_default_registry(self.executor, self.settings)
        self.store = TransferStore(self._database_path())

        # Subscribers (e.g. a UI bridge) attach to the queue sink
        self.events = QueueNotificationSink()
        notifier = CompositeNotificationSink([LoggingNotificationSink(), self.events])

        self.orchestrator = TransferOrchestrator(
            config,
            self.store,
            self.registry,
            DumpRelocator(self.executor, self.settings),
            provisioner=DatabaseProvisioner(config, self.executor, self.settings),
            notifier=notifier,
            settings=self.settings,
        )
        self.admission = TransferAdmissionController(
            config, self.store, self.registry, self.orchestrator
        )
        self.transfer_service = TransferService(
            config, self.store, self.admission, StructureInspector(config, self.registry)
        )

        # FastMCP app will be created later to prevent auto-start
        self.app: FastMCP | None = None

        self.logger.info(
            "Database transfer server initialized",
            hosts=list(config.hosts.keys()),
            databases=len(config.databases),
            engines=[kind.value for kind in self.registry.kinds()],
            store=str(self.store.db_path),
        )

    def _database_path(self) -> Path:
        path = Path(self.config.server.database_path)
        if not path.is_absolute():
            path = get_data_dir() / path.name
        return path

    def _initialize_app(self) -> None:
        """Initialize FastMCP app, middleware, and register tools."""
        self.app = FastMCP("Database Transfer Engine")
        self.app.add_middleware(
            ErrorHandlingMiddleware(
                include_traceback=self.config.server.log_level.upper() == "DEBUG",
                track_error_stats=True,
            )
        )

        self.app.tool(
            self.create_transfer,
            annotations={
                "title": "Start Database Transfer",
                "readOnlyHint": False,
                "destructiveHint": True,  # data_only replaces target contents
                "idempotentHint": False,
                "openWorldHint": True,  # Runs commands on remote servers over SSH
            },
        )
        self.app.tool(
            self.get_transfer,
            annotations={"title": "Get Transfer Status", "readOnlyHint": True},
        )
        self.app.tool(
            self.list_transfers,
            annotations={"title": "List Transfers", "readOnlyHint": True},
        )
        self.app.tool(
            self.database_structure,
            annotations={
                "title": "Inspect Database Structure",
                "readOnlyHint": True,
                "openWorldHint": True,
            },
        )
        self.app.tool(
            self.transfer_targets,
            annotations={"title": "List Transfer Targets", "readOnlyHint": True},
        )

    async def create_transfer(
        self,
        source_uuid: Annotated[str, Field(description="UUID of the database to copy from")],
        target_environment_id: Annotated[str, Field(description="Environment receiving the data")],
        target_server_id: Annotated[str, Field(description="Server the target runs on")],
        transfer_mode: Annotated[
            Literal["clone", "data_only", "partial"],
            Field(description="clone: new database; data_only: overwrite an existing one; "
                  "partial: selected tables, collections or key patterns"),
        ],
        transfer_options: Annotated[
            dict[str, list[str]] | None,
            Field(
                default=None,
                description='Partial scope, e.g. {"tables": ["orders"]}, '
                '{"collections": [...]} or {"key_patterns": ["session:*"]}',
            ),
        ] = None,
        target_uuid: Annotated[
            str | None, Field(default=None, description="Existing target database (data_only)")
        ] = None,
        user_id: Annotated[str, Field(default="mcp", description="Requesting user")] = "mcp",
        team_id: Annotated[
            str | None, Field(default=None, description="Team the request is made for")
        ] = None,
    ) -> ToolResult:
        """Start a transfer; returns immediately with the pending record."""
        return await self.transfer_service.create_transfer(
            source_uuid,
            target_environment_id,
            target_server_id,
            transfer_mode,
            transfer_options,
            target_uuid,
            user_id,
            team_id,
        )

    async def get_transfer(
        self, transfer_uuid: Annotated[str, Field(description="Transfer record UUID")]
    ) -> ToolResult:
        """Status, progress and log of one transfer."""
        return await self.transfer_service.get_transfer(transfer_uuid)

    async def list_transfers(
        self,
        team_id: Annotated[str | None, Field(default=None, description="Filter by team")] = None,
        status: Annotated[
            Literal["pending", "validating", "transferring", "restoring", "completed", "failed"]
            | None,
            Field(default=None, description="Filter by status"),
        ] = None,
        limit: Annotated[int, Field(default=20, ge=1, le=200)] = 20,
    ) -> ToolResult:
        """Most recent transfers first."""
        return await self.transfer_service.list_transfers(team_id, status, limit)

    async def database_structure(
        self, database_uuid: Annotated[str, Field(description="Database to inspect")]
    ) -> ToolResult:
        """Tables, collections or key prefixes with sizes, for choosing a partial scope."""
        return await self.transfer_service.database_structure(database_uuid)

    async def transfer_targets(
        self, source_uuid: Annotated[str, Field(description="Database to copy from")]
    ) -> ToolResult:
        """Environments, servers and existing databases a source can be copied to."""
        return await self.transfer_service.transfer_targets(source_uuid)

    async def _prepare_store(self) -> None:
        await self.store.initialize()
        await self.store.fail_interrupted()

    def run(self) -> None:
        """Run the FastMCP server."""
        try:
            asyncio.run(self._prepare_store())
            self._initialize_app()

            self.logger.info(
                "Starting database transfer server",
                host=self.config.server.host,
                port=self.config.server.port,
            )

            # FastMCP.run() is synchronous and manages its own event loop
            if self.app is None:
                raise RuntimeError("FastMCP app not initialized")
            self.app.run(
                transport="http",
                host=self.config.server.host,
                port=self.config.server.port,
            )
        except Exception as e:
            self.logger.error("Server startup failed", error=str(e))
            raise


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    load_dotenv()

    default_host = os.getenv("FASTMCP_HOST", "127.0.0.1")
    default_port = int(os.getenv("FASTMCP_PORT", "8000"))
    default_log_level = os.getenv("LOG_LEVEL", "INFO")
    default_config = os.getenv("DB_TRANSFER_CONFIG", "config/transfers.yml")

    parser = argparse.ArgumentParser(description="FastMCP database transfer engine")
    parser.add_argument("--host", default=default_host, help="Server host")
    parser.add_argument("--port", type=int, default=default_port, help="Server port")
    parser.add_argument("--config", default=default_config, help="Configuration file path")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration and exit"
    )
    return parser.parse_args(argv)


def main() -> None:
    """Main entry point."""
    args = parse_args()

    log_dir = _setup_log_directory()
    logger = _setup_logging_system(args, log_dir)

    config = _load_and_configure(args, logger)
    if config is None:  # Validation-only mode
        return

    server = DBTransferServer(config)
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


def _setup_log_directory() -> str | None:
    """Setup log directory with fallback options."""
    log_dir_candidates = [
        os.getenv("LOG_DIR"),
        str(get_data_dir() / "logs"),
        str(Path(tempfile.gettempdir()) / "db-transfer-mcp-logs"),
    ]

    for candidate in log_dir_candidates:
        if candidate:
            try:
                candidate_path = Path(candidate)
                candidate_path.mkdir(parents=True, exist_ok=True)
                if candidate_path.is_dir() and os.access(candidate_path, os.W_OK):
                    return str(candidate_path)
            except OSError:
                continue

    print("Warning: Unable to create log directory, using console-only logging")
    return None


def _setup_logging_system(args, log_dir: str | None) -> Any:
    from .core.logging_config import setup_logging

    try:
        max_file_size_mb = int(os.getenv("LOG_FILE_SIZE_MB", "10"))
        if max_file_size_mb < 1 or max_file_size_mb > 100:
            max_file_size_mb = 10
    except ValueError:
        max_file_size_mb = 10

    setup_logging(
        log_dir=log_dir or tempfile.gettempdir(),
        log_level=args.log_level,
        max_file_size_mb=max_file_size_mb,
    )
    return get_server_logger()


def _load_and_configure(args, logger) -> TransferEngineConfig | None:
    """Load configuration; returns None in validation-only mode."""
    config = load_config(args.config)

    config.server.host = args.host
    config.server.port = args.port
    config.server.log_level = args.log_level

    if args.validate_config:
        logger.info(
            "Configuration is valid",
            hosts=len(config.hosts),
            environments=len(config.environments),
            databases=len(config.databases),
        )
        return None

    return config


if __name__ == "__main__":
    main()
