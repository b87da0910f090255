# src/cloudcraft/domain/server/value_objects.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from cloudcraft.domain.core.exceptions import ValidationError


@dataclass(frozen=True)
class ServerId:
    """
    Self-sufficient identifier of a provisioned server.

    Most backends only need the instance id. Spot instances on AWS also carry
    the spot request id, encoded as ``<instance>#<spot-request>`` so that
    teardown can cancel the request without any local state.
    """
    SEPARATOR = "#"

    primary: str
    secondary: str = ""

    def __post_init__(self):
        if not self.primary:
            raise ValidationError("Server id must not be empty")
        for part in (self.primary, self.secondary):
            if self.SEPARATOR in part:
                raise ValidationError(
                    f"Server id part '{part}' must not contain '{self.SEPARATOR}'"
                )

    @classmethod
    def parse(cls, text: str) -> ServerId:
        if not text:
            raise ValidationError("Server id must not be empty")
        parts = text.split(cls.SEPARATOR)
        if len(parts) > 2:
            raise ValidationError(f"Malformed server id '{text}': more than one '{cls.SEPARATOR}'")
        if len(parts) == 2:
            return cls(parts[0], parts[1])
        return cls(parts[0])

    @property
    def is_compound(self) -> bool:
        return bool(self.secondary)

    def encode(self) -> str:
        if self.secondary:
            return f"{self.primary}{self.SEPARATOR}{self.secondary}"
        return self.primary

    def __str__(self) -> str:
        return self.encode()


class Protocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"


@dataclass(frozen=True)
class FirewallPort:
    port: int
    protocol: Protocol = Protocol.TCP

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValidationError(f"Invalid port number: {self.port}")

    def __str__(self) -> str:
        return f"{self.port}/{self.protocol.value}"


@dataclass(frozen=True)
class ResourceResult:
    """
    What create, get and list hand back.

    An empty ``public_ip`` means "not ready". ``tags`` is the flattened
    ``k=v,k=v`` view of the provider tags.
    """
    id: str
    name: str
    region: str
    public_ip: str = ""
    tags: str = ""

    @property
    def is_ready(self) -> bool:
        return bool(self.public_ip)

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "region": self.region,
            "public_ip": self.public_ip,
            "tags": self.tags,
        }
