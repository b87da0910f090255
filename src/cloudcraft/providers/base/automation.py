"""Behaviour shared by every backend implementing the automation port."""
import logging
from abc import abstractmethod
from typing import Callable, Optional

from cloudcraft.domain.base.ports.automation_port import AutomationPort, ServerArgs, require_server_id
from cloudcraft.domain.base.ports.remote_port import RemoteChannelPort
from cloudcraft.domain.base.ports.template_port import ScriptRendererPort
from cloudcraft.domain.core.exceptions import NoPublicAddressError, ValidationError
from cloudcraft.domain.server.descriptor import read_ssh_public_key
from cloudcraft.domain.server.value_objects import ServerId
from cloudcraft.infrastructure.error.decorators import handle_lifecycle_errors
from cloudcraft.infrastructure.remote.remote_server import RemoteServer
from cloudcraft.infrastructure.remote.ssh_channel import SSHChannel
from cloudcraft.infrastructure.template.jinja_script_renderer import JinjaScriptRenderer

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[str], RemoteChannelPort]


class BaseAutomation(AutomationPort):
    """
    Implements update and upload once: resolve the server's public address
    through the backend, then drive the remote channel as ``ssh_user``.
    Plugin uploads log in as ``upload_user`` when a backend sets one.
    """

    provider_code = ""
    ssh_user = "root"
    upload_user: Optional[str] = None
    upload_staging_dir = ""

    def __init__(self, renderer: Optional[ScriptRendererPort] = None,
                 channel_factory: Optional[ChannelFactory] = None):
        self.renderer = renderer or JinjaScriptRenderer()
        self.channel_factory = channel_factory or SSHChannel

    @abstractmethod
    def resolve_public_address(self, server_id: ServerId, args: ServerArgs) -> str:
        """Current public address of the server, or "" when it has none."""

    @staticmethod
    def parse_id(server_id: str) -> ServerId:
        return require_server_id(server_id)

    @staticmethod
    def public_key(args: ServerArgs) -> str:
        return read_ssh_public_key(args.descriptor)

    def remote_server(self, server_id: ServerId, args: ServerArgs, user: Optional[str] = None) -> RemoteServer:
        if not args.ssh_private_key_path:
            raise ValidationError("A private SSH key path is required to reach the server")
        address = self.resolve_public_address(server_id, args)
        if not address:
            raise NoPublicAddressError(server_id.primary)
        channel = self.channel_factory(args.ssh_private_key_path)
        return RemoteServer(channel, self.renderer, address, user or self.ssh_user)

    @handle_lifecycle_errors("update")
    def update_server(self, server_id: str, args: ServerArgs) -> None:
        sid = self.parse_id(server_id)
        output = self.remote_server(sid, args).update_server(args.descriptor)
        logger.debug(f"Update output for {sid}: {output}")

    @handle_lifecycle_errors("upload")
    def upload_plugin(self, server_id: str, args: ServerArgs, plugin: str, destination: str) -> None:
        sid = self.parse_id(server_id)
        self.remote_server(sid, args, self.upload_user).upload_plugin(
            plugin, destination, args.descriptor.ssh_port, self.upload_staging_dir
        )
