"""Remote command execution over SSH with proper process handling."""

import asyncio
import shlex

import structlog

from ..constants import REMOTE_SCRIPT_PREAMBLE
from ..utils import build_remote_script, build_ssh_command
from .config_loader import ServerHost
from .exceptions import RemoteCommandError
from .settings import TransferSettings, transfer_settings

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30  # Default timeout in seconds
KILL_TIMEOUT = 5  # Time to wait after SIGTERM before SIGKILL


class RemoteExecutor:
    """Runs shell snippets on a server as a single ``bash`` script over SSH."""

    def __init__(self, settings: TransferSettings | None = None):
        self.settings = settings or transfer_settings
        self.logger = logger.bind(component="remote_executor")

    async def run(
        self,
        commands: list[str],
        host: ServerHost,
        raise_on_error: bool = True,
        timeout: float | None = None,
        disable_multiplexing: bool = False,
    ) -> str:
        """Run ``commands`` on ``host`` and return captured stdout.

        Args:
            commands: Shell snippets, may span multiple lines
            host: Server to run on
            raise_on_error: Raise RemoteCommandError on a non-zero exit
            timeout: Timeout in seconds (default: DEFAULT_TIMEOUT)
            disable_multiplexing: Open a dedicated connection for this call

        Returns:
            Trimmed stdout of the script

        Raises:
            RemoteCommandError: On timeout, or on failure when raise_on_error is set
        """
        if timeout is None:
            timeout = DEFAULT_TIMEOUT

        multiplexing = self.settings.ssh_multiplexing and not disable_multiplexing
        script = build_remote_script(commands, REMOTE_SCRIPT_PREAMBLE)
        cmd = build_ssh_command(host, multiplexing=multiplexing) + [
            f"bash -c {shlex.quote(script)}"
        ]

        self.logger.debug(
            "Executing remote script",
            host=host.hostname,
            commands=len(commands),
            timeout=timeout,
            multiplexing=multiplexing,
        )

        returncode, stdout, stderr = await self._run_process(cmd, timeout, host)

        if returncode != 0:
            error_msg = stderr.strip() or stdout.strip() or "Command failed"
            if raise_on_error:
                raise RemoteCommandError(
                    f"Remote command failed on {host.hostname} with exit code "
                    f"{returncode}: {error_msg[:500]}",
                    exit_code=returncode,
                    output=stdout,
                )
            self.logger.warning(
                "Remote command failed (ignored)",
                host=host.hostname,
                exit_code=returncode,
                error=error_msg[:500],
            )

        return stdout.strip()

    async def _run_process(
        self, cmd: list[str], timeout: float, host: ServerHost
    ) -> tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            try:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(), timeout=timeout
                )
            except asyncio.TimeoutError:
                self.logger.warning(
                    "Remote command timed out, terminating process",
                    host=host.hostname,
                    timeout=timeout,
                    pid=process.pid,
                )
                await self._terminate(process)
                raise RemoteCommandError(
                    f"Remote command timed out after {timeout} seconds on {host.hostname}"
                ) from None

            return (
                process.returncode or 0,
                stdout_bytes.decode(errors="replace") if stdout_bytes else "",
                stderr_bytes.decode(errors="replace") if stderr_bytes else "",
            )
        finally:
            if process.returncode is None:
                await self._terminate(process)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
        except ProcessLookupError:
            # Process already terminated
            pass
