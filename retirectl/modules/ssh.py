"""
Remote command execution against nodes using native OpenSSH.
"""
import logging
import os
import shlex
import subprocess
from typing import List, Tuple

logger = logging.getLogger("ssh")

REBOOT_COMMAND = "sudo systemctl reboot"


class RemoteHost:
    """Run commands on a node over a fresh, non-interactive SSH connection.

    Every call opens its own connection and returns once the remote command
    exits (or the connection drops); nothing is pooled between calls.
    """

    def __init__(self, host: str, username: str = None, key_path: str = None, port: int = 22,
                 connect_timeout: int = 10, command_timeout: int = 60):
        """Initialize the remote host.

        Args:
            host: Address or hostname to connect to
            username: Remote user (defaults to the ssh client's own choice)
            key_path: Path to SSH private key (optional)
            port: SSH port (default: 22)
            connect_timeout: Seconds to wait for the TCP/SSH handshake
            command_timeout: Seconds a single remote command may run
        """
        self.host = host
        self.username = username
        self.key_path = os.path.expanduser(key_path) if key_path else None
        self.port = port
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    @property
    def target(self) -> str:
        return f"{self.username}@{self.host}" if self.username else self.host

    def _ssh_command(self, command: str) -> List[str]:
        cmd = [
            'ssh',
            '-T',
            '-o', 'BatchMode=yes',
            '-o', 'StrictHostKeyChecking=no',
            '-o', 'UserKnownHostsFile=/dev/null',
            '-o', 'LogLevel=ERROR',
            '-o', f'ConnectTimeout={self.connect_timeout}',
            '-o', 'ServerAliveInterval=5',
            '-o', 'ServerAliveCountMax=3',
            '-p', str(self.port),
        ]
        if self.key_path:
            cmd.extend(['-i', self.key_path])
        cmd.extend([self.target, command])
        return cmd

    def execute(self, command: str, timeout: int = None) -> Tuple[int, str, str]:
        """Execute a command and return (exit_code, stdout, stderr).

        Connection failures and timeouts come back as exit code 255, the way
        the ssh client itself reports them.
        """
        timeout = timeout or self.command_timeout
        logger.debug(f"[SSH] {self.target}: {command}")
        try:
            result = subprocess.run(
                self._ssh_command(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=timeout
            )
            return (result.returncode, result.stdout.strip(), result.stderr.strip())
        except subprocess.TimeoutExpired:
            return (255, '', f"Command timed out after {timeout} seconds")
        except OSError as e:
            return (255, '', str(e))

    def reboot(self) -> None:
        """Trigger a reboot and return without waiting for it.

        The connection usually drops as the host goes down, so the exit status
        is only logged.
        """
        exit_code, _, stderr = self.execute(REBOOT_COMMAND, timeout=self.connect_timeout + 20)
        if exit_code != 0:
            logger.debug(f"[SSH] {self.target}: reboot returned {exit_code} (expected while going down): {stderr}")

    def service_state(self, service: str) -> str:
        """Return the `systemctl is-active` state of ``service``."""
        exit_code, stdout, stderr = self.execute(f"systemctl is-active {shlex.quote(service)}")
        if exit_code == 255:
            raise ConnectionError(f"{self.target} unreachable: {stderr}")
        return stdout or "unknown"

    def service_is_active(self, service: str) -> bool:
        return self.service_state(service) == "active"
