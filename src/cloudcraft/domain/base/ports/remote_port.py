"""Domain port for the post-boot remote channel."""

from abc import ABC, abstractmethod


class RemoteChannelPort(ABC):
    """
    Runs commands on, and copies files to, a running server.

    Authentication is by private key. Host keys are accepted without
    verification; callers that need stricter checking wrap the channel.
    """

    @abstractmethod
    def run_command(self, address: str, user: str, port: int, command: str) -> str:
        """Run ``command`` remotely and return its standard output."""

    @abstractmethod
    def upload_file(self, address: str, user: str, port: int, local_path: str, remote_path: str) -> None:
        """Copy ``local_path`` to ``remote_path`` on the server."""
