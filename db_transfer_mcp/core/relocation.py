"""Copy dump artifacts between servers with rsync."""

import posixpath
import re
import shlex
from typing import Any

import structlog

from ..constants import SSH_ERROR_LOG_LEVEL, SSH_NO_HOST_CHECK, SSH_NO_KNOWN_HOSTS
from .config_loader import ServerHost
from .exceptions import RelocationError, RemoteCommandError
from .remote import RemoteExecutor
from .settings import TransferSettings, transfer_settings

logger = structlog.get_logger()


class DumpRelocator:
    """Moves a dump from the source server to the same path on the target server.

    rsync runs on the source server and pushes to the target, so the data
    never passes through the engine host.
    """

    def __init__(self, executor: RemoteExecutor, settings: TransferSettings | None = None):
        self.executor = executor
        self.settings = settings or transfer_settings
        self.logger = logger.bind(component="dump_relocator")

    async def validate_requirements(self, host: ServerHost) -> tuple[bool, str]:
        """Check that rsync is installed on ``host``.

        Returns:
            Tuple of (is_valid: bool, error_message: str)
        """
        try:
            output = await self.executor.run(
                ["command -v rsync > /dev/null 2>&1 && echo OK || echo FAILED"],
                host,
                timeout=self.settings.validate_timeout,
            )
        except RemoteCommandError as e:
            return False, f"Failed to check rsync availability: {e}"

        if "OK" in output:
            return True, ""
        return False, f"rsync not available on host {host.hostname}"

    def build_rsync_command(self, target_host: ServerHost, path: str) -> str:
        """rsync invocation executed on the source server."""
        ssh_opts = [
            "ssh",
            "-o", SSH_NO_HOST_CHECK,
            "-o", SSH_NO_KNOWN_HOSTS,
            "-o", SSH_ERROR_LOG_LEVEL,
            "-o", "BatchMode=yes",
        ]
        if target_host.identity_file:
            ssh_opts.extend(["-i", target_host.identity_file])
        if target_host.port != 22:
            ssh_opts.extend(["-p", str(target_host.port)])

        target_url = f"{target_host.user}@{target_host.hostname}:{path}"
        rsync_args = [
            "rsync",
            "-az",
            "--partial",
            "--stats",
            "-e", shlex.join(ssh_opts),
            path,
            target_url,
        ]
        return shlex.join(rsync_args)

    async def relocate(
        self, source_host: ServerHost, target_host: ServerHost, path: str
    ) -> dict[str, Any]:
        """Copy ``path`` from ``source_host`` to ``target_host``.

        Raises:
            RelocationError: If rsync is missing, the target directory cannot be
                created or the copy fails
        """
        available, message = await self.validate_requirements(source_host)
        if not available:
            raise RelocationError(message)

        directory = posixpath.dirname(path)
        self.logger.info(
            "Relocating dump",
            source=source_host.hostname,
            target=target_host.hostname,
            path=path,
        )

        try:
            await self.executor.run(
                [f"mkdir -p {shlex.quote(directory)}"],
                target_host,
                timeout=self.settings.validate_timeout,
            )
            output = await self.executor.run(
                [self.build_rsync_command(target_host, path)],
                source_host,
                timeout=self.settings.relocate_timeout,
                disable_multiplexing=True,
            )
        except RemoteCommandError as e:
            raise RelocationError(
                f"Failed to copy {path} from {source_host.hostname} to {target_host.hostname}: {e}"
            ) from e

        stats = self._parse_stats(output)
        self.logger.info("Dump relocated", path=path, **stats)
        return {
            "success": True,
            "source": f"{source_host.hostname}:{path}",
            "target": f"{target_host.hostname}:{path}",
            "stats": stats,
        }

    def _parse_stats(self, output: str) -> dict[str, Any]:
        stats: dict[str, Any] = {"total_size": 0, "transfer_rate": ""}

        for line in output.split("\n"):
            if "Total transferred file size:" in line:
                match = re.search(r"([\d,]+) bytes", line)
                if match:
                    stats["total_size"] = int(match.group(1).replace(",", ""))
            elif "sent" in line and "received" in line:
                match = re.search(r"(\d+\.?\d*) (\w+/sec)", line)
                if match:
                    stats["transfer_rate"] = f"{match.group(1)} {match.group(2)}"

        return stats
