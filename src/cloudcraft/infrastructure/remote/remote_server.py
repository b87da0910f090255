"""Post-boot operations on a running server: software update and plugin upload."""
import logging
import os
import posixpath

from cloudcraft.domain.base.ports.remote_port import RemoteChannelPort
from cloudcraft.domain.base.ports.template_port import RenderOptions, ScriptRendererPort, binary_variant
from cloudcraft.domain.server.descriptor import Edition, ResourceDescriptor

logger = logging.getLogger(__name__)

SERVICE_NAME = "minecraft.service"
SERVER_DIR = "/minecraft"


class RemoteServer:
    """One server reachable at ``address`` as ``user`` over ``channel``."""

    def __init__(self, channel: RemoteChannelPort, renderer: ScriptRendererPort, address: str, user: str):
        self.channel = channel
        self.renderer = renderer
        self.address = address
        self.user = user

    def build_update_command(self, descriptor: ResourceDescriptor) -> str:
        update = self.renderer.render(
            descriptor, RenderOptions(variant=binary_variant(descriptor.edition.value))
        )
        if descriptor.edition == Edition.FABRIC:
            update = f"\nrm -rf {SERVER_DIR}/minecraft-server.jar\n{update}"
        if descriptor.edition != Edition.BEDROCK:
            update = f"{update}\napt-get install -y openjdk-{descriptor.jdk_version}-jre-headless\n"
        # single quotes delimit the sudo payload
        update = update.replace("'", "'\"'\"'")
        return "\n".join([
            f"cd {SERVER_DIR}",
            f"sudo systemctl stop {SERVICE_NAME}",
            f"sudo bash -c '{update}'",
            "ls -la",
            f"sudo systemctl start {SERVICE_NAME}",
        ])

    def update_server(self, descriptor: ResourceDescriptor) -> str:
        command = self.build_update_command(descriptor)
        logger.info(f"Updating {descriptor.edition.value} server {descriptor.name} at {self.address}")
        return self.channel.run_command(self.address, self.user, descriptor.ssh_port, command)

    def upload_plugin(self, local_path: str, destination: str, port: int, staging_dir: str = "") -> str:
        """
        Copy a plugin into ``destination`` and restart the service.

        With ``staging_dir`` the file lands there first and is moved into
        place with sudo, for users that cannot write ``destination``.
        """
        name = os.path.basename(local_path)
        remote_path = posixpath.join(destination, name)
        logger.info(f"Uploading {local_path} to {self.address}:{remote_path}")
        restart = f"sudo systemctl restart {SERVICE_NAME}"
        if not staging_dir:
            self.channel.upload_file(self.address, self.user, port, local_path, remote_path)
            return self.channel.run_command(self.address, self.user, port, restart)
        staged = posixpath.join(staging_dir, name)
        self.channel.upload_file(self.address, self.user, port, local_path, staged)
        return self.channel.run_command(self.address, self.user, port, f"sudo mv {staged} {destination}\n{restart}")
