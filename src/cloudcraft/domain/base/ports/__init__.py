"""Domain ports."""
from .automation_port import AutomationPort, ServerArgs
from .remote_port import RemoteChannelPort
from .template_port import RenderOptions, ScriptRendererPort

__all__ = [
    "AutomationPort",
    "ServerArgs",
    "RemoteChannelPort",
    "RenderOptions",
    "ScriptRendererPort",
]
