"""Mapping of openstacksdk errors onto the lifecycle error taxonomy."""
from typing import Optional

from openstack import exceptions as sdk_exceptions

from cloudcraft.domain.core.exceptions import LifecycleError, ProviderError, ResourceNotFoundError, ValidationError

PROVIDER = "openstack"


def convert_sdk_error(error: Exception, provider: str = PROVIDER, resource_type: str = "Resource",
                      resource_id: str = "unknown") -> Optional[LifecycleError]:
    if isinstance(error, sdk_exceptions.NotFoundException):
        return ResourceNotFoundError(resource_type, resource_id, provider=provider, code="404")
    if isinstance(error, sdk_exceptions.BadRequestException):
        return ValidationError(f"OpenStack rejected the request: {error}")
    if isinstance(error, sdk_exceptions.HttpException):
        code = str(error.status_code or "")
        return ProviderError(f"OpenStack error {code}: {error}", provider=provider, code=code)
    if isinstance(error, sdk_exceptions.SDKException):
        return ProviderError(f"OpenStack SDK error: {error}", provider=provider)
    return None
