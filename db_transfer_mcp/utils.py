"""Utility functions shared by the executor, relocation and tool layers."""

import shlex

from .constants import (
    SSH_CONTROL_PATH,
    SSH_CONTROL_PERSIST,
    SSH_ERROR_LOG_LEVEL,
    SSH_NO_HOST_CHECK,
    SSH_NO_KNOWN_HOSTS,
)
from .core.config_loader import ServerHost


def build_ssh_command(host: ServerHost, multiplexing: bool = False) -> list[str]:
    """Build SSH command for a host.

    Args:
        host: ServerHost configuration object
        multiplexing: Reuse a shared master connection (ControlMaster)

    Returns:
        List of SSH command components ready for subprocess execution

    Example:
        >>> host = ServerHost(hostname="db1.example.com", user="deploy")
        >>> build_ssh_command(host)[-1]
        'deploy@db1.example.com'
    """
    ssh_cmd = [
        "ssh",
        "-o", SSH_NO_HOST_CHECK,
        "-o", SSH_NO_KNOWN_HOSTS,
        "-o", SSH_ERROR_LOG_LEVEL,
        "-o", "ConnectTimeout=10",
        "-o", "ServerAliveInterval=30",
        "-o", "BatchMode=yes",
    ]

    if multiplexing:
        ssh_cmd.extend([
            "-o", "ControlMaster=auto",
            "-o", f"ControlPath={SSH_CONTROL_PATH}",
            "-o", f"ControlPersist={SSH_CONTROL_PERSIST}",
        ])
    else:
        ssh_cmd.extend(["-o", "ControlMaster=no", "-o", "ControlPath=none"])

    if host.identity_file:
        ssh_cmd.extend(["-i", host.identity_file])

    if host.port != 22:
        ssh_cmd.extend(["-p", str(host.port)])

    hostname = host.hostname
    if ":" in hostname and not (hostname.startswith("[") and hostname.endswith("]")):
        # IPv6 address needs brackets
        hostname = f"[{hostname}]"

    ssh_cmd.append(f"{host.user}@{shlex.quote(hostname)}")

    return ssh_cmd


def build_remote_script(commands: list[str], preamble: str) -> str:
    """Join commands into one bash script executed as a unit."""
    return "\n".join([preamble, *commands])

