"""Mapping of Google API errors onto the lifecycle error taxonomy."""
from typing import Optional

from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from cloudcraft.domain.core.exceptions import LifecycleError, ProviderError, ResourceNotFoundError, ValidationError

PROVIDER = "gce"


def convert_http_error(error: Exception, resource_type: str = "Resource",
                       resource_id: str = "unknown") -> Optional[LifecycleError]:
    if isinstance(error, HttpError):
        status = int(error.resp.status)
        reason = error.reason or str(error)
        if status == 404:
            return ResourceNotFoundError(resource_type, resource_id, provider=PROVIDER, code=str(status))
        if status == 400:
            return ValidationError(f"Compute Engine rejected the request: {reason}")
        return ProviderError(f"Compute Engine error {status}: {reason}", provider=PROVIDER, code=str(status))
    if isinstance(error, GoogleAuthError):
        return ProviderError(f"Google authentication failed: {error}", provider=PROVIDER)
    return None


def is_not_found(error: HttpError) -> bool:
    return int(error.resp.status) == 404
