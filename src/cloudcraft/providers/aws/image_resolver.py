import logging
from typing import Optional

from cloudcraft.domain.core.exceptions import ResourceNotFoundError, ValidationError

logger = logging.getLogger(__name__)

CANONICAL_OWNER_ID = "099720109477"
UBUNTU_IMAGE_NAME = "ubuntu-minimal/images/hvm-ssd/ubuntu-jammy-22.04*"


class UbuntuImageResolver:
    """Finds the AMI a server boots from."""

    def __init__(self, ec2_client, ssm_client=None, override: str = ""):
        self.ec2_client = ec2_client
        self.ssm_client = ssm_client
        self.override = override

    def resolve(self, arm: bool = False) -> str:
        """
        Resolve the image for the requested architecture.

        A configured override wins. It may be an AMI id or an SSM parameter
        path. Otherwise the newest Canonical Ubuntu 22.04 minimal image for
        the architecture is used.

        Returns:
            str: Resolved AMI ID

        Raises:
            ValidationError: If the override has an unknown format
            ResourceNotFoundError: If no image matches
        """
        if self.override:
            return self._resolve_override(self.override)
        return self.lookup_ubuntu("arm64" if arm else "x86_64")

    def _resolve_override(self, image_id: str) -> str:
        if image_id.startswith("ami-"):
            logger.debug(f"Using direct AMI ID: {image_id}")
            return image_id

        if image_id.startswith("/"):
            if self.ssm_client is None:
                raise ValidationError(f"Cannot resolve SSM parameter {image_id} without an SSM client")
            logger.debug(f"Resolving AMI ID from SSM parameter: {image_id}")
            response = self.ssm_client.get_parameter(Name=image_id)
            resolved_ami = response["Parameter"]["Value"]
            logger.info(f"Resolved SSM parameter {image_id} to AMI: {resolved_ami}")
            return resolved_ami

        raise ValidationError(
            f"Invalid image ID format: {image_id}. Must be either an AMI ID (ami-xxxxxx) "
            "or an SSM parameter path (/aws/service/...)"
        )

    def lookup_ubuntu(self, architecture: str, name: Optional[str] = None) -> str:
        response = self.ec2_client.describe_images(
            Owners=[CANONICAL_OWNER_ID],
            Filters=[
                {"Name": "name", "Values": [name or UBUNTU_IMAGE_NAME]},
                {"Name": "architecture", "Values": [architecture]},
            ],
        )
        images = response.get("Images", [])
        if not images:
            raise ResourceNotFoundError("Image", f"{name or UBUNTU_IMAGE_NAME} ({architecture})", provider="aws")
        # ISO 8601 creation dates sort lexically
        newest = max(images, key=lambda image: image.get("CreationDate", ""))
        logger.debug(f"Resolved {architecture} Ubuntu image to {newest['ImageId']}")
        return newest["ImageId"]
