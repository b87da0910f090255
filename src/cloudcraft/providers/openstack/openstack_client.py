import logging
from typing import Any, Dict

import openstack

from cloudcraft.config.schemas import OpenStackConfig
from cloudcraft.domain.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def auth_options(config: OpenStackConfig) -> Dict[str, Any]:
    """
    Keystone v3 password auth for ``openstack.connect``.

    A user id identifies the user on its own, so the domain is only sent
    with a user name.
    """
    auth = {"auth_url": config.auth_url, "password": config.password}
    if config.user_id:
        auth["user_id"] = config.user_id
    else:
        auth["username"] = config.username
        if config.domain_id:
            auth["user_domain_id"] = config.domain_id
            auth["project_domain_id"] = config.domain_id
    if config.project_id:
        auth["project_id"] = config.project_id
    if config.project_name:
        auth["project_name"] = config.project_name
    return auth


class OpenStackClient:
    """Compute, network, image and block storage proxies of one authenticated connection."""

    def __init__(self, config: OpenStackConfig, connection=None):
        if connection is None:
            missing = [] if config.auth_url else ["auth_url"]
            if not (config.username or config.user_id):
                missing.append("username")
            if missing:
                raise ConfigurationError(
                    "OpenStack needs OS_AUTH_URL and OS_USERNAME or OS_USER_ID", missing
                )
            logger.debug(f"Connecting to {config.auth_url} (region {config.region or 'default'})")
            connection = openstack.connect(auth=auth_options(config), region_name=config.region or None)
        self.connection = connection
        self.compute = connection.compute
        self.network = connection.network
        self.image = connection.image
        self.block_storage = connection.block_storage
        self.region = config.region
