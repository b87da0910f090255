"""Resource descriptor - the immutable description of a desired game server.

The descriptor is read from a YAML manifest (``kind: MinecraftServer`` or
``kind: MinecraftProxy``) and never changes once an operation has started.
Backends only ever read it through the accessors defined here.
"""
from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from cloudcraft.domain.core.exceptions import DescriptorValidationError, ValidationError

NAME_PATTERN = re.compile(r"^[a-z0-9-]+$")

DEFAULT_JAVA_PORT = 25565
DEFAULT_BEDROCK_PORT = 19132
DEFAULT_PROXY_PORT = 25577
DEFAULT_RCON_PORT = 25575
DEFAULT_SSH_PORT = 22


class Edition(str, Enum):
    """Supported game-server editions."""
    JAVA = "java"
    PAPERMC = "papermc"
    PURPUR = "purpur"
    SPIGOT = "spigot"
    CRAFTBUKKIT = "craftbukkit"
    FABRIC = "fabric"
    FORGE = "forge"
    BEDROCK = "bedrock"
    NUKKIT = "nukkit"
    POWERNUKKIT = "powernukkit"
    BUNGEECORD = "bungeecord"
    WATERFALL = "waterfall"
    VELOCITY = "velocity"

    @property
    def is_bedrock_family(self) -> bool:
        return self in BEDROCK_FAMILY

    @property
    def is_proxy(self) -> bool:
        return self in PROXY_EDITIONS


BEDROCK_FAMILY = frozenset({Edition.BEDROCK, Edition.NUKKIT, Edition.POWERNUKKIT})
PROXY_EDITIONS = frozenset({Edition.BUNGEECORD, Edition.WATERFALL, Edition.VELOCITY})


class DescriptorKind(str, Enum):
    SERVER = "MinecraftServer"
    PROXY = "MinecraftProxy"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Metadata(_Frozen):
    name: str


class Monitoring(_Frozen):
    enabled: bool = False


class SSHSettings(_Frozen):
    port: int = DEFAULT_SSH_PORT
    public_key_file: str = Field("", alias="publickeyfile")
    public_key: str = Field("", alias="publickey")


class ServerSettings(_Frozen):
    cloud: str
    region: str = ""
    size: str = ""
    volume_size: int = Field(0, alias="volumeSize", ge=0)
    spot: bool = False
    arm: bool = False
    port: Optional[int] = None
    ssh: SSHSettings = Field(default_factory=SSHSettings)


class Rcon(_Frozen):
    enabled: bool = False
    port: int = DEFAULT_RCON_PORT
    password: str = ""
    broadcast: bool = False


class JavaSettings(_Frozen):
    openjdk: int = 17
    xms: str = "2G"
    xmx: str = "2G"
    options: List[str] = Field(default_factory=list)
    rcon: Rcon = Field(default_factory=Rcon)


class MinecraftSettings(_Frozen):
    edition: Edition
    version: str = ""
    eula: bool = False
    properties: str = ""
    java: JavaSettings = Field(default_factory=JavaSettings)


class ProxySettings(_Frozen):
    type: Edition
    version: str = ""
    java: JavaSettings = Field(default_factory=JavaSettings)


class Spec(_Frozen):
    server: ServerSettings
    monitoring: Monitoring = Field(default_factory=Monitoring)
    minecraft: Optional[MinecraftSettings] = None
    proxy: Optional[ProxySettings] = None


class ResourceDescriptor(_Frozen):
    """Immutable description of one game server (or proxy) and its host."""

    api_version: str = Field("v1", alias="apiVersion")
    kind: DescriptorKind = DescriptorKind.SERVER
    metadata: Metadata
    spec: Spec

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceDescriptor":
        name = (data.get("metadata") or {}).get("name", "<unnamed>")
        try:
            descriptor = cls.model_validate(data)
        except PydanticValidationError as e:
            errors = {
                ".".join(str(loc) for loc in err["loc"]): err["msg"]
                for err in e.errors()
            }
            raise DescriptorValidationError(name, errors) from e
        descriptor.validate_descriptor()
        return descriptor

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ResourceDescriptor":
        with open(os.path.expanduser(str(path)), "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    def validate_descriptor(self) -> None:
        """Check the cross-field rules pydantic cannot express on its own."""
        errors: Dict[str, str] = {}
        if not NAME_PATTERN.match(self.metadata.name):
            errors["metadata.name"] = f"must match {NAME_PATTERN.pattern}"
        if self.kind == DescriptorKind.PROXY:
            if self.spec.proxy is None:
                errors["spec.proxy"] = "required for kind MinecraftProxy"
            elif not self.spec.proxy.type.is_proxy:
                errors["spec.proxy.type"] = f"{self.spec.proxy.type.value} is not a proxy edition"
        else:
            if self.spec.minecraft is None:
                errors["spec.minecraft"] = "required for kind MinecraftServer"
            elif self.spec.minecraft.edition.is_proxy:
                errors["spec.minecraft.edition"] = "proxy editions need kind MinecraftProxy"
        if errors:
            raise DescriptorValidationError(self.metadata.name, errors)

    # Accessors used by every backend

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def edition(self) -> Edition:
        if self.is_proxy:
            return self.spec.proxy.type
        return self.spec.minecraft.edition

    @property
    def version(self) -> str:
        if self.is_proxy:
            return self.spec.proxy.version
        return self.spec.minecraft.version

    @property
    def is_proxy(self) -> bool:
        return self.kind == DescriptorKind.PROXY

    @property
    def is_bedrock_family(self) -> bool:
        return self.edition.is_bedrock_family

    @property
    def cloud(self) -> str:
        return self.spec.server.cloud

    @property
    def region(self) -> str:
        return self.spec.server.region

    @property
    def size(self) -> str:
        return self.spec.server.size

    @property
    def volume_size(self) -> int:
        return self.spec.server.volume_size

    @property
    def is_spot(self) -> bool:
        return self.spec.server.spot

    @property
    def is_arm(self) -> bool:
        return self.spec.server.arm

    @property
    def game_port(self) -> int:
        if self.spec.server.port:
            return self.spec.server.port
        if self.is_proxy:
            return DEFAULT_PROXY_PORT
        if self.is_bedrock_family:
            return DEFAULT_BEDROCK_PORT
        return DEFAULT_JAVA_PORT

    @property
    def java(self) -> JavaSettings:
        if self.is_proxy:
            return self.spec.proxy.java
        return self.spec.minecraft.java

    @property
    def rcon_enabled(self) -> bool:
        return not self.is_bedrock_family and self.java.rcon.enabled

    @property
    def rcon_port(self) -> int:
        return self.java.rcon.port

    @property
    def java_options(self) -> List[str]:
        return list(self.java.options)

    @property
    def jdk_version(self) -> int:
        return self.java.openjdk

    @property
    def monitoring_enabled(self) -> bool:
        return self.spec.monitoring.enabled

    @property
    def ssh_port(self) -> int:
        return self.spec.server.ssh.port

    @property
    def ssh_public_key_file(self) -> str:
        return self.spec.server.ssh.public_key_file

    @property
    def ssh_public_key(self) -> str:
        return self.spec.server.ssh.public_key

    @property
    def properties(self) -> str:
        if self.is_proxy:
            return ""
        return self.spec.minecraft.properties

    @property
    def eula(self) -> bool:
        return bool(self.spec.minecraft and self.spec.minecraft.eula)


def read_ssh_public_key(descriptor: ResourceDescriptor) -> str:
    """
    Return the SSH public key material for a descriptor.

    A key file takes precedence over inline key material and must carry the
    ``.pub`` extension so that a private key is never shipped to a provider.

    Raises:
        ValidationError: If the key file has the wrong extension, cannot be
            read, or no key material is configured at all.
    """
    key_file = descriptor.ssh_public_key_file
    if key_file:
        if not key_file.endswith(".pub"):
            raise ValidationError("SSH key file must have .pub extension", {"publickeyfile": key_file})
        try:
            with open(os.path.expanduser(key_file), "r", encoding="utf-8") as f:
                return f.read().strip()
        except OSError as e:
            raise ValidationError(f"Cannot read SSH public key file {key_file}: {e}") from e
    if descriptor.ssh_public_key:
        return descriptor.ssh_public_key.strip()
    raise ValidationError("No SSH public key configured (set publickeyfile or publickey)")
