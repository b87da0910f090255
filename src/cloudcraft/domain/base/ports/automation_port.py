"""Domain port for server lifecycle automation."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

from cloudcraft.domain.core.exceptions import ValidationError
from cloudcraft.domain.server.descriptor import ResourceDescriptor
from cloudcraft.domain.server.value_objects import ResourceResult, ServerId


@dataclass(frozen=True)
class ServerArgs:
    """Descriptor plus the private key used for the post-boot remote channel."""
    descriptor: ResourceDescriptor
    ssh_private_key_path: str = ""


def require_server_id(server_id: str) -> ServerId:
    """Parse an identifier passed to a non-create operation."""
    if not server_id:
        raise ValidationError("A server id is required for this operation")
    return ServerId.parse(server_id)


class AutomationPort(ABC):
    """The uniform lifecycle surface every backend implements."""

    @abstractmethod
    def create_server(self, args: ServerArgs) -> ResourceResult:
        """Provision supporting resources and the instance; block until it has a public address."""

    @abstractmethod
    def get_server(self, server_id: str, args: ServerArgs) -> ResourceResult:
        """Read one server. An empty public address means it is still booting."""

    @abstractmethod
    def list_servers(self) -> List[ResourceResult]:
        """Every resource that carries the discovery marker."""

    @abstractmethod
    def update_server(self, server_id: str, args: ServerArgs) -> None:
        """Re-run the edition install script on the running server."""

    @abstractmethod
    def upload_plugin(self, server_id: str, args: ServerArgs, plugin: str, destination: str) -> None:
        """Copy one file to the server and restart the game service."""

    @abstractmethod
    def delete_server(self, server_id: str, args: ServerArgs) -> None:
        """Tear down everything created for ``server_id``. Safe to repeat."""
