"""Remote channel driving the system ``ssh`` and ``scp`` clients."""
import logging
import os
import subprocess
from typing import List, Optional

from cloudcraft.domain.base.ports.remote_port import RemoteChannelPort
from cloudcraft.domain.core.exceptions import RemoteCommandError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SSH_OPTIONS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "BatchMode=yes",
    "-o", "LogLevel=ERROR",
]


class SSHChannel(RemoteChannelPort):
    """Key-authenticated ssh/scp with host-key checking switched off."""

    def __init__(self, private_key_path: str, connect_timeout: int = 30,
                 ssh_binary: str = "ssh", scp_binary: str = "scp",
                 command_timeout: Optional[float] = None):
        if not private_key_path:
            raise ValidationError("A private SSH key is required for the remote channel")
        self.private_key_path = os.path.expanduser(private_key_path)
        self.connect_timeout = connect_timeout
        self.ssh_binary = ssh_binary
        self.scp_binary = scp_binary
        self.command_timeout = command_timeout

    def _options(self) -> List[str]:
        return ["-i", self.private_key_path, "-o", f"ConnectTimeout={self.connect_timeout}"] + DEFAULT_SSH_OPTIONS

    def run_command(self, address: str, user: str, port: int, command: str) -> str:
        argv = [self.ssh_binary, *self._options(), "-p", str(port), f"{user}@{address}", command]
        logger.debug(f"Running remote command on {user}@{address}:{port}")
        completed = self._run(argv, address, command)
        return completed.stdout

    def upload_file(self, address: str, user: str, port: int, local_path: str, remote_path: str) -> None:
        local_path = os.path.expanduser(local_path)
        if not os.path.isfile(local_path):
            raise ValidationError(f"File to upload does not exist: {local_path}")
        argv = [self.scp_binary, *self._options(), "-P", str(port), local_path, f"{user}@{address}:{remote_path}"]
        logger.debug(f"Copying {local_path} to {user}@{address}:{remote_path}")
        self._run(argv, address, f"scp {local_path} {remote_path}")

    def _run(self, argv: List[str], address: str, description: str) -> subprocess.CompletedProcess:
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise RemoteCommandError(address, description, -1, f"timed out after {e.timeout}s") from e
        except OSError as e:
            raise RemoteCommandError(address, description, -1, str(e)) from e
        if completed.returncode != 0:
            raise RemoteCommandError(address, description, completed.returncode, completed.stderr)
        return completed
