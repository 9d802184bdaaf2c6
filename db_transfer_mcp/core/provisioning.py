"""Provisioning of the fresh target database used by clone transfers."""

import asyncio
import shlex
import uuid

import structlog

from ..models.database import DatabaseInstance
from ..models.transfer import TransferRecord
from .config_loader import ServerHost, TransferEngineConfig
from .exceptions import RemoteCommandError, TransferEngineError
from .remote import RemoteExecutor
from .settings import TransferSettings, transfer_settings
from .strategies.base import TransferStrategy

logger = structlog.get_logger()


class DatabaseProvisioner:
    """Starts a new container of the source's image on the target server.

    The new database is registered in the engine configuration so later
    transfers and structure requests can address it by uuid.
    """

    def __init__(
        self,
        config: TransferEngineConfig,
        executor: RemoteExecutor,
        settings: TransferSettings | None = None,
    ):
        self.config = config
        self.executor = executor
        self.settings = settings or transfer_settings
        self.logger = logger.bind(component="database_provisioner")

    def build_target(
        self, source: DatabaseInstance, record: TransferRecord, host: ServerHost
    ) -> DatabaseInstance:
        new_uuid = uuid.uuid4().hex
        return source.model_copy(
            update={
                "uuid": new_uuid,
                "name": f"{source.name}-clone",
                "server_id": host.id,
                "environment_id": record.target_environment_id,
                "team_id": record.team_id,
                "container_name": None,
                "status": None,
            }
        )

    def build_run_command(
        self, target: DatabaseInstance, source: DatabaseInstance, strategy: TransferStrategy
    ) -> str:
        args = [
            "docker", "run", "-d",
            "--name", target.container,
            "--restart", "unless-stopped",
            "--label", f"db-transfer.source={source.uuid}",
        ]
        for key, value in strategy.container_environment(target).items():
            args.extend(["-e", f"{key}={value}"])
        args.append(target.image)
        args.extend(strategy.container_command(target))
        return shlex.join(args)

    async def provision(
        self,
        source: DatabaseInstance,
        record: TransferRecord,
        host: ServerHost,
        strategy: TransferStrategy,
    ) -> DatabaseInstance:
        """Create, start and wait for the clone target.

        Raises:
            TransferEngineError: If the image is unknown or the container never becomes ready
        """
        if not source.image:
            raise TransferEngineError(
                f"Source database {source.name} has no image configured; cannot create a clone"
            )

        target = self.build_target(source, record, host)
        self.logger.info(
            "Provisioning clone target",
            source=source.uuid,
            target=target.uuid,
            host=host.hostname,
            image=target.image,
        )
        await self.executor.run(
            [self.build_run_command(target, source, strategy)],
            host,
            timeout=self.settings.provision_timeout,
        )

        try:
            await self._wait_until_ready(target, host, strategy)
        except TransferEngineError:
            await self.remove(target, host)
            raise
        target.status = "running:healthy"
        self.config.databases[target.uuid] = target
        return target

    async def remove(self, target: DatabaseInstance, host: ServerHost) -> bool:
        """Force-remove a clone target container and forget it. Never raises.

        Returns:
            True when the container was removed
        """
        self.config.databases.pop(target.uuid, None)
        try:
            await self.executor.run(
                [shlex.join(["docker", "rm", "-f", target.container])],
                host,
                timeout=self.settings.cleanup_timeout,
            )
        except RemoteCommandError as e:
            self.logger.warning(
                "Orphaned clone target container",
                target=target.uuid,
                container=target.container,
                host=host.hostname,
                error=str(e),
            )
            return False

        self.logger.info("Removed clone target", target=target.uuid, host=host.hostname)
        return True

    async def _wait_until_ready(
        self, target: DatabaseInstance, host: ServerHost, strategy: TransferStrategy
    ) -> None:
        probe = strategy.readiness_command(target)
        attempts = self.settings.provision_ready_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self.executor.run([probe], host, timeout=self.settings.validate_timeout)
                self.logger.debug("Clone target ready", target=target.uuid, attempt=attempt)
                return
            except RemoteCommandError:
                await asyncio.sleep(self.settings.provision_ready_interval)
        raise TransferEngineError(
            f"Clone target {target.name} did not become ready after {attempts} checks"
        )
