"""Base class for engine-specific dump and restore strategies."""

import posixpath
import shlex
from abc import ABC, abstractmethod
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ...constants import GZIP_MAGIC_HEX
from ...models.database import DatabaseInstance
from ...models.enums import DatabaseKind, TransferMode
from ...models.transfer import TransferOptions, TransferRecord
from ..config_loader import ServerHost
from ..exceptions import TransferEngineError, UnsafeIdentifierError
from ..remote import RemoteExecutor
from ..safety import validate_artifact_path, validate_identifiers, validate_key_patterns
from ..settings import TransferSettings, transfer_settings

logger = structlog.get_logger()


class DumpResult(BaseModel):
    success: bool
    size_bytes: int = 0
    error: str | None = None


class RestoreResult(BaseModel):
    success: bool
    error: str | None = None


class ValidationResult(BaseModel):
    valid: bool = True
    errors: list[str] = Field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.valid = False
        self.errors.append(message)


class StructureItem(BaseModel):
    """A selectable unit of a database (table, collection or key prefix)."""

    name: str
    size_bytes: int = 0


class TransferStrategy(ABC):
    """Dump, relocate-friendly artifact and restore logic for one engine.

    Subclasses implement ``_dump``, ``_restore`` and the introspection hooks;
    the public methods here turn expected failures into structured results
    so the orchestrator can decide what to do with them.
    """

    kind: DatabaseKind
    # Which TransferOptions field scopes a partial transfer for this engine
    option_key: str = "tables"

    def __init__(self, executor: RemoteExecutor, settings: TransferSettings | None = None):
        self.executor = executor
        self.settings = settings or transfer_settings
        self.logger = logger.bind(component="strategy", engine=self.kind.value)

    def database_kind(self) -> str:
        return self.kind.value

    @abstractmethod
    def dump_file_extension(self) -> str:
        """File extension of the artifact this engine produces."""

    def supports_partial_transfer(self) -> bool:
        return True

    # Unit scoping

    def scoped_units(self, options: TransferOptions | None) -> list[str]:
        """Return the validated units selected by ``options`` (empty for a full transfer).

        Raises:
            UnsafeIdentifierError: If the option key does not fit this engine or a
                unit contains unsafe characters
        """
        if options is None or options.is_empty():
            return []
        if options.unit_key != self.option_key:
            raise UnsafeIdentifierError(
                f"{self.kind.label} transfers are scoped by {self.option_key}, "
                f"not {options.unit_key}"
            )
        if self.option_key == "key_patterns":
            return validate_key_patterns(options.units)
        return validate_identifiers(options.units, self.option_key.rstrip("s"))

    # Dump / restore

    async def create_dump(
        self,
        database: DatabaseInstance,
        host: ServerHost,
        destination_path: str,
        options: TransferOptions | None = None,
    ) -> DumpResult:
        """Write a dump of ``database`` to ``destination_path`` on ``host``.

        A zero-byte artifact is reported as a failure.
        """
        try:
            units = self.scoped_units(options)
            path = validate_artifact_path(destination_path, self.settings.scratch_dir)
            await self.executor.run(
                [f"mkdir -p {shlex.quote(posixpath.dirname(path))}"],
                host,
                timeout=self.settings.validate_timeout,
            )
            self.logger.info(
                "Creating dump",
                database=database.uuid,
                host=host.hostname,
                path=path,
                units=units or None,
            )
            await self._dump(database, host, path, units)
            size = await self.file_size(host, path)
        except TransferEngineError as e:
            self.logger.error("Dump failed", database=database.uuid, error=str(e))
            return DumpResult(success=False, error=str(e))

        if size <= 0:
            return DumpResult(success=False, error=f"Dump file {destination_path} is empty")

        self.logger.info("Dump created", database=database.uuid, size_bytes=size)
        return DumpResult(success=True, size_bytes=size)

    async def restore_dump(
        self,
        database: DatabaseInstance,
        host: ServerHost,
        source_path: str,
        options: TransferOptions | None = None,
    ) -> RestoreResult:
        """Load the artifact at ``source_path`` into ``database``."""
        try:
            units = self.scoped_units(options)
            path = validate_artifact_path(source_path, self.settings.scratch_dir)
            self.logger.info(
                "Restoring dump", database=database.uuid, host=host.hostname, path=path
            )
            await self._restore(database, host, path, units)
        except TransferEngineError as e:
            self.logger.error("Restore failed", database=database.uuid, error=str(e))
            return RestoreResult(success=False, error=str(e))
        return RestoreResult(success=True)

    @abstractmethod
    async def _dump(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None: ...

    @abstractmethod
    async def _restore(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None: ...

    # Introspection

    async def estimate_size(
        self,
        database: DatabaseInstance,
        host: ServerHost,
        options: TransferOptions | None = None,
    ) -> int:
        """Estimate the dump size in bytes. Returns 0 when the estimate fails."""
        try:
            return max(0, await self._estimate_size(database, host, self.scoped_units(options)))
        except Exception as e:
            self.logger.warning("Size estimation failed", database=database.uuid, error=str(e))
            return 0

    async def get_structure(
        self, database: DatabaseInstance, host: ServerHost
    ) -> list[StructureItem]:
        """List selectable units with sizes, largest first. Empty on failure."""
        try:
            items = await self._get_structure(database, host)
        except Exception as e:
            self.logger.warning(
                "Structure introspection failed", database=database.uuid, error=str(e)
            )
            return []
        return sorted(items, key=lambda item: item.size_bytes, reverse=True)

    @abstractmethod
    async def _estimate_size(
        self, database: DatabaseInstance, host: ServerHost, units: list[str]
    ) -> int: ...

    @abstractmethod
    async def _get_structure(
        self, database: DatabaseInstance, host: ServerHost
    ) -> list[StructureItem]: ...

    # Preconditions

    async def validate_transfer(
        self,
        source: DatabaseInstance,
        target: DatabaseInstance | None,
        record: TransferRecord,
    ) -> ValidationResult:
        """Check the preconditions a transfer needs before any data moves."""
        result = ValidationResult()

        if source.exposes_running_check() and not source.is_running():
            result.add_error(f"Source database {source.name} is not running")

        if record.transfer_mode is TransferMode.DATA_ONLY:
            if target is None:
                result.add_error("Target database not found")
            else:
                if target.kind is not source.kind:
                    result.add_error(
                        f"Target database {target.name} is {target.kind.label}, "
                        f"expected {source.kind.label}"
                    )
                if target.exposes_running_check() and not target.is_running():
                    result.add_error(f"Target database {target.name} is not running")

        if record.transfer_mode is TransferMode.PARTIAL:
            if not self.supports_partial_transfer():
                result.add_error(f"{self.kind.label} does not support partial transfers")
            try:
                if not self.scoped_units(record.transfer_options):
                    result.add_error("Partial transfer requires at least one unit")
            except UnsafeIdentifierError as e:
                result.add_error(str(e))

        return result

    # Provisioning hooks for clone targets

    def container_environment(self, database: DatabaseInstance) -> dict[str, str]:
        """Environment a fresh container needs to come up with ``database``'s credentials."""
        return {}

    def container_command(self, database: DatabaseInstance) -> list[str]:
        return []

    @abstractmethod
    def readiness_command(self, database: DatabaseInstance) -> str:
        """Command that succeeds once the engine inside the container accepts connections."""

    # Cleanup

    async def cleanup(self, host: ServerHost, path: str) -> None:
        """Remove a dump artifact. Never raises."""
        try:
            path = validate_artifact_path(path, self.settings.scratch_dir)
            await self.executor.run(
                [f"rm -f {shlex.quote(path)}"],
                host,
                raise_on_error=False,
                timeout=self.settings.cleanup_timeout,
            )
        except Exception as e:
            self.logger.warning(
                "Failed to clean up dump artifact", host=host.hostname, path=path, error=str(e)
            )

    # Shared helpers

    def docker_exec(
        self,
        database: DatabaseInstance,
        args: list[str],
        interactive: bool = False,
        env: dict[str, Any] | None = None,
    ) -> str:
        """Build ``docker exec`` for the database container with every argument quoted."""
        parts = ["docker", "exec"]
        if interactive:
            parts.append("-i")
        for key, value in (env or {}).items():
            if value is not None:
                parts.extend(["-e", f"{key}={value}"])
        parts.append(database.container)
        parts.extend(args)
        return shlex.join(parts)

    async def file_size(self, host: ServerHost, path: str) -> int:
        output = await self.executor.run(
            [f"stat -c %s {shlex.quote(path)}"], host, timeout=self.settings.validate_timeout
        )
        return parse_int(output)

    async def read_magic(self, host: ServerHost, path: str, length: int) -> str:
        """Return the first ``length`` bytes of an artifact as text."""
        return await self.executor.run(
            [f"head -c {int(length)} {shlex.quote(path)}"],
            host,
            timeout=self.settings.validate_timeout,
        )

    async def is_gzipped(self, host: ServerHost, path: str) -> bool:
        output = await self.executor.run(
            [f"head -c 2 {shlex.quote(path)} | od -An -tx1 | tr -d ' \\n'"],
            host,
            timeout=self.settings.validate_timeout,
        )
        return output.strip().lower() == GZIP_MAGIC_HEX


def parse_int(output: str) -> int:
    """Parse the last non-empty line of command output as an integer."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        raise TransferEngineError("Command produced no output")
    try:
        return int(float(lines[-1]))
    except ValueError as e:
        raise TransferEngineError(f"Unexpected numeric output: {lines[-1]!r}") from e
