"""Remote update and upload channel."""
from .remote_server import RemoteServer
from .ssh_channel import SSHChannel

__all__ = ["RemoteServer", "SSHChannel"]
