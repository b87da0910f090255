"""Server bounded context."""
from .descriptor import Edition, ResourceDescriptor, read_ssh_public_key
from .ports import derive_firewall_ports
from .tags import MARKER_TAG, build_tag_set, flatten_tags, is_managed
from .value_objects import FirewallPort, Protocol, ResourceResult, ServerId

__all__ = [
    "Edition",
    "ResourceDescriptor",
    "read_ssh_public_key",
    "derive_firewall_ports",
    "MARKER_TAG",
    "build_tag_set",
    "flatten_tags",
    "is_managed",
    "FirewallPort",
    "Protocol",
    "ResourceResult",
    "ServerId",
]
