"""Application configuration schema."""
import os

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cloudcraft.config.defaults import LogDestination, LogLevel
from cloudcraft.infrastructure.resilience.poller import PollPolicy


class LogFileConfig(BaseModel):
    path: str = Field("~/.cloudcraft/logs/cloudcraft.log", description="Log file path")
    max_size_mb: int = Field(10, ge=1, description="Rotate after this many megabytes")
    backup_count: int = Field(5, ge=0, description="Rotated files to keep")

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        return os.path.expanduser(v)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(LogLevel.WARNING, description="Root log level")
    destination: LogDestination = Field(LogDestination.STDOUT, description="file, stdout or both")
    file: LogFileConfig = Field(default_factory=LogFileConfig)

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v


class PollingConfig(BaseModel):
    """Completion poller timings in seconds."""
    instance_boot_timeout: float = Field(1800, gt=0)
    aws_interval: float = Field(10, gt=0)
    gce_interval: float = Field(2, gt=0)
    termination_timeout: float = Field(600, gt=0)
    termination_interval: float = Field(2, gt=0)
    spot_resolution_timeout: float = Field(600, gt=0)
    multipass_interval: float = Field(2, gt=0)
    openstack_interval: float = Field(2, gt=0)

    def boot_policy(self, interval: float) -> PollPolicy:
        return PollPolicy(interval=interval, timeout=self.instance_boot_timeout)

    def termination_policy(self) -> PollPolicy:
        return PollPolicy(interval=self.termination_interval, timeout=self.termination_timeout)

    def spot_policy(self) -> PollPolicy:
        return PollPolicy(interval=self.aws_interval, timeout=self.spot_resolution_timeout)


class AWSConfig(BaseModel):
    """AWS backend configuration."""
    model_config = ConfigDict(extra="forbid")

    region: str = Field("eu-central-1", description="Default region when the manifest has none")
    profile: str = Field("", description="Named profile for the boto3 session")
    endpoint_url: str = Field("", description="Custom EC2 endpoint")
    connection_timeout_ms: int = Field(10000, ge=1000)
    request_retry_attempts: int = Field(3, ge=0, le=10)
    validate_credentials: bool = Field(False, description="Call sts:GetCallerIdentity on startup")
    image_id: str = Field("", description="AMI id or SSM parameter path overriding the Ubuntu lookup")
    ssh_user: str = "ubuntu"


class GCEConfig(BaseModel):
    """Compute Engine backend configuration."""
    project: str = ""
    service_account_email: str = ""
    credentials_file: str = ""
    zone: str = "europe-west6-a"


class OpenStackConfig(BaseModel):
    """
    Keystone credentials and network defaults for one OpenStack cloud.

    Fuga and VEXXHOST each get a section of this shape; they differ in the
    identity endpoint and in the name of their Ubuntu image.
    """
    auth_url: str = ""
    username: str = ""
    password: str = ""
    user_id: str = Field("", description="Takes precedence over username and domain_id")
    domain_id: str = ""
    project_id: str = ""
    project_name: str = ""
    region: str = ""
    image_name: str = Field("Ubuntu 22.04 LTS", description="Substring matched against active image names")
    public_network: str = "public"
    subnet_cidr: str = "10.1.10.0/24"
    dns_nameservers: List[str] = Field(default_factory=lambda: ["8.8.8.8", "8.8.4.4"])
    ssh_user: str = "ubuntu"


FUGA_AUTH_URL = "https://core.fuga.cloud:5000/v3"
VEXXHOST_AUTH_URL = "https://auth.vexxhost.net/v3"


class MultipassConfig(BaseModel):
    binary: str = "multipass"
    image: str = "jammy"
    ssh_user: str = "ubuntu"
    upload_user: str = "root"


class AppConfig(BaseModel):
    """Application configuration."""
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    aws: AWSConfig = Field(default_factory=AWSConfig)
    gce: GCEConfig = Field(default_factory=GCEConfig)
    multipass: MultipassConfig = Field(default_factory=MultipassConfig)
    fuga: OpenStackConfig = Field(
        default_factory=lambda: OpenStackConfig(auth_url=FUGA_AUTH_URL, image_name="Ubuntu 22.04 LTS")
    )
    vexxhost: OpenStackConfig = Field(
        default_factory=lambda: OpenStackConfig(auth_url=VEXXHOST_AUTH_URL, image_name="Ubuntu 20.04.3 LTS")
    )
