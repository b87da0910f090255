import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cloudcraft.config.schemas import AWSConfig
from cloudcraft.domain.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class AWSClient:
    """
    Centralized AWS client management.

    Builds the EC2 and SSM clients for one region from a single boto3
    session, with botocore's standard retry mode and the configured connect
    timeout.
    """

    def __init__(self, region_name: str, config: Optional[AWSConfig] = None,
                 session: Optional[boto3.session.Session] = None):
        """
        Args:
            region_name: AWS region name
            config: AWS section of the application configuration
            session: Pre-built session, mostly for tests

        Raises:
            ConfigurationError: If credential validation is enabled and fails
        """
        config = config or AWSConfig()
        self.region_name = region_name
        self.config = Config(
            region_name=region_name,
            retries={
                "max_attempts": config.request_retry_attempts,
                "mode": "standard",
            },
            connect_timeout=config.connection_timeout_ms / 1000,
        )
        self.session = session or boto3.session.Session(
            profile_name=config.profile or None,
            region_name=region_name,
        )

        if config.validate_credentials:
            try:
                self.session.client("sts", config=self.config).get_caller_identity()
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Failed to validate AWS credentials: {e}")
                raise ConfigurationError(f"Failed to validate AWS credentials: {e}") from e

        endpoint = config.endpoint_url or None
        self.ec2_client = self.session.client("ec2", config=self.config, endpoint_url=endpoint)
        self.ssm_client = self.session.client("ssm", config=self.config)
