"""Firewall port derivation shared by every backend."""
from typing import List

from cloudcraft.domain.server.descriptor import ResourceDescriptor
from cloudcraft.domain.server.value_objects import FirewallPort, Protocol

MONITORING_PORT = 9090


def derive_firewall_ports(descriptor: ResourceDescriptor) -> List[FirewallPort]:
    """
    Work out which ports a server needs open to the world.

    Bedrock-family editions listen on UDP, everything else on TCP. RCON is
    only opened for java-family servers that enable it. SSH is always last.
    """
    ports: List[FirewallPort] = []
    if descriptor.is_bedrock_family:
        ports.append(FirewallPort(descriptor.game_port, Protocol.UDP))
    else:
        ports.append(FirewallPort(descriptor.game_port, Protocol.TCP))
        if descriptor.rcon_enabled:
            ports.append(FirewallPort(descriptor.rcon_port, Protocol.TCP))
    if descriptor.monitoring_enabled:
        ports.append(FirewallPort(MONITORING_PORT, Protocol.TCP))
    ports.append(FirewallPort(descriptor.ssh_port, Protocol.TCP))

    unique: List[FirewallPort] = []
    for port in ports:
        if port not in unique:
            unique.append(port)
    return unique
