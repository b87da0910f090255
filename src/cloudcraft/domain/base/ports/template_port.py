"""Domain port for boot and update script rendering."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from cloudcraft.domain.server.descriptor import ResourceDescriptor

CLOUD_CONFIG = "cloud-config"
PROXY_CLOUD_CONFIG = "proxy-cloud-config"
BASH = "bash"
PROXY_BASH = "proxy-bash"


def cloud_config_variant(is_proxy: bool) -> str:
    return PROXY_CLOUD_CONFIG if is_proxy else CLOUD_CONFIG


def bash_variant(is_proxy: bool) -> str:
    return PROXY_BASH if is_proxy else BASH


BINARY_ALIASES = {"spigot": "spigotbukkit", "craftbukkit": "spigotbukkit"}


def binary_variant(edition: str) -> str:
    """Install-snippet variant for an edition; spigot and craftbukkit share one."""
    return f"{BINARY_ALIASES.get(edition, edition)}-binary"


@dataclass(frozen=True)
class RenderOptions:
    mount: str = ""
    ssh_public_key: str = ""
    variant: str = CLOUD_CONFIG


class ScriptRendererPort(ABC):

    @abstractmethod
    def render(self, descriptor: ResourceDescriptor, options: RenderOptions) -> str:
        """Render the requested script variant for ``descriptor``."""
