"""Mapping of botocore errors onto the lifecycle error taxonomy."""
import re
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from cloudcraft.domain.core.exceptions import LifecycleError, ProviderError, ResourceNotFoundError, ValidationError

PROVIDER = "aws"

_QUOTED_ID = re.compile(r"'([^']+)'")


def _resource_type(error_code: str) -> str:
    # InvalidInstanceID.NotFound -> Instance, InvalidGroup.NotFound -> Group
    name = error_code.split(".")[0]
    if name.startswith("Invalid"):
        name = name[len("Invalid"):]
    if name.endswith("ID") or name.endswith("Id"):
        name = name[:-2]
    return name or "Resource"


def convert_client_error(error: Exception) -> Optional[LifecycleError]:
    """Convert a botocore exception; ``None`` means "not an AWS error"."""
    if isinstance(error, ClientError):
        code = error_code(error)
        error_message = error.response.get("Error", {}).get("Message", str(error))

        if code.endswith("NotFound"):
            match = _QUOTED_ID.search(error_message)
            return ResourceNotFoundError(
                _resource_type(code),
                match.group(1) if match else "unknown",
                provider=PROVIDER,
                code=code,
            )
        if "Malformed" in code or code in ("InvalidParameterValue", "ValidationError"):
            return ValidationError(f"AWS rejected the request ({code}): {error_message}")
        return ProviderError(f"AWS error {code}: {error_message}", provider=PROVIDER, code=code)

    if isinstance(error, BotoCoreError):
        return ProviderError(f"AWS client error: {error}", provider=PROVIDER)
    return None


def is_not_found(error: ClientError) -> bool:
    return isinstance(convert_client_error(error), ResourceNotFoundError)


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def is_dependency_violation(error: ClientError) -> bool:
    return error_code(error) == "DependencyViolation"
