# src/cloudcraft/config/defaults.py
import os
import re
from enum import Enum
from typing import Any


class LogLevel(str, Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogDestination(str, Enum):
    """Log destination enumeration."""
    FILE = "file"
    STDOUT = "stdout"
    BOTH = "both"


def _openstack_section(auth_url: str, image_name: str) -> dict:
    """OpenStack clouds all read the standard OS_* variables."""
    return {
        "auth_url": "${OS_AUTH_URL:" + auth_url + "}",
        "username": "${OS_USERNAME:}",
        "password": "${OS_PASSWORD:}",
        "user_id": "${OS_USER_ID:}",
        "domain_id": "${OS_PROJECT_DOMAIN_ID:}",
        "project_id": "${OS_PROJECT_ID:}",
        "project_name": "${OS_PROJECT_NAME:}",
        "region": "${OS_REGION_NAME:}",
        "image_name": image_name,
    }


DEFAULT_CONFIG = {
    "logging": {
        "level": "${CLOUDCRAFT_LOG_LEVEL:WARNING}",
        "destination": "${CLOUDCRAFT_LOG_DESTINATION:stdout}",
        "file": {
            "path": "${CLOUDCRAFT_LOG_DIR:~/.cloudcraft/logs}/cloudcraft.log",
            "max_size_mb": 10,
            "backup_count": 5,
        },
    },

    # Completion poller timings, in seconds
    "polling": {
        "instance_boot_timeout": 1800,
        "aws_interval": 10,
        "gce_interval": 2,
        "termination_timeout": 600,
        "termination_interval": 2,
        "spot_resolution_timeout": 600,
        "multipass_interval": 2,
        "openstack_interval": 2,
    },

    "aws": {
        "region": "${AWS_REGION:eu-central-1}",
        "profile": "${AWS_PROFILE:}",
        "endpoint_url": "${AWS_ENDPOINT_URL:}",
        "connection_timeout_ms": 10000,
        "request_retry_attempts": 3,
        "validate_credentials": False,
        "image_id": "${CLOUDCRAFT_AWS_IMAGE_ID:}",
        "ssh_user": "ubuntu",
    },

    "gce": {
        "project": "${GOOGLE_PROJECT:}",
        "service_account_email": "${GOOGLE_SERVICE_ACCOUNT_EMAIL:}",
        "credentials_file": "${GOOGLE_APPLICATION_CREDENTIALS:}",
        "zone": "${GOOGLE_ZONE:europe-west6-a}",
    },

    "multipass": {
        "binary": "${MULTIPASS_BINARY:multipass}",
        "image": "jammy",
        "ssh_user": "ubuntu",
        "upload_user": "root",
    },

    "fuga": _openstack_section("https://core.fuga.cloud:5000/v3", "Ubuntu 22.04 LTS"),
    "vexxhost": _openstack_section("https://auth.vexxhost.net/v3", "Ubuntu 20.04.3 LTS"),
}

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([^}]*))?\}")


def expand_env_vars(value: Any) -> Any:
    """
    Replace ``${VAR}`` and ``${VAR:default}`` placeholders from the environment.

    Placeholders may appear anywhere inside a string. An unset variable
    without a default expands to an empty string. Dicts and lists are
    expanded recursively; other values are returned unchanged.
    """
    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value
