import copy
import os
from typing import Any, Dict

import pytest

from cloudcraft.domain.base.ports.automation_port import ServerArgs
from cloudcraft.domain.server.descriptor import ResourceDescriptor

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIDZ/JFp3GC1wV986IEcCq3DjuD8RaoWChywycVa5Zg0b cloudcraft@test"

BASE_MANIFEST: Dict[str, Any] = {
    "apiVersion": "v1",
    "kind": "MinecraftServer",
    "metadata": {"name": "minecraft-test"},
    "spec": {
        "server": {
            "cloud": "aws",
            "region": "eu-central-1",
            "size": "t3.medium",
            "volumeSize": 0,
            "ssh": {"port": 22, "publickey": PUBLIC_KEY},
        },
        "monitoring": {"enabled": False},
        "minecraft": {
            "edition": "java",
            "version": "1.20.4",
            "eula": True,
            "properties": "level-seed=cloudcraft\nview-distance=10",
            "java": {"xms": "2G", "xmx": "2G", "rcon": {"enabled": False}},
        },
    },
}


def _deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
    return target


def build_manifest(overrides: Dict[str, Any] = None) -> Dict[str, Any]:
    return _deep_merge(copy.deepcopy(BASE_MANIFEST), overrides or {})


def build_descriptor(overrides: Dict[str, Any] = None) -> ResourceDescriptor:
    return ResourceDescriptor.from_dict(build_manifest(overrides))


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Mocked AWS Credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-central-1")


@pytest.fixture
def make_descriptor():
    """Build a descriptor from the base manifest with nested overrides."""
    return build_descriptor


@pytest.fixture
def make_manifest():
    return build_manifest


@pytest.fixture
def ssh_public_key() -> str:
    return PUBLIC_KEY


@pytest.fixture
def descriptor() -> ResourceDescriptor:
    return build_descriptor()


@pytest.fixture
def spot_descriptor() -> ResourceDescriptor:
    return build_descriptor({"spec": {"server": {"spot": True}}})


@pytest.fixture
def server_args(descriptor) -> ServerArgs:
    return ServerArgs(descriptor, ssh_private_key_path="/tmp/id_ed25519")


@pytest.fixture
def public_key_file(tmp_path) -> str:
    path = tmp_path / "id_ed25519.pub"
    path.write_text(PUBLIC_KEY + "\n")
    return str(path)


@pytest.fixture
def manifest_file(tmp_path) -> str:
    import yaml

    path = tmp_path / "server.yaml"
    path.write_text(yaml.safe_dump(build_manifest()))
    return str(path)


@pytest.fixture
def fake_clock():
    """Monotonic clock advanced only by the fake sleep."""
    class Clock:
        def __init__(self):
            self.now = 1000.0
            self.sleeps = []

        def __call__(self) -> float:
            return self.now

        def sleep(self, seconds: float) -> None:
            self.sleeps.append(seconds)
            self.now += seconds

    return Clock()
