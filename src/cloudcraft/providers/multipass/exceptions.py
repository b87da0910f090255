"""Mapping of multipass CLI failures onto the lifecycle error taxonomy."""
import subprocess
from typing import Optional

from cloudcraft.domain.core.exceptions import LifecycleError, ProviderError, ResourceNotFoundError

PROVIDER = "multipass"

_NOT_FOUND_MARKERS = ("does not exist", "not found")


def convert_process_error(error: Exception, resource_id: str = "unknown") -> Optional[LifecycleError]:
    if isinstance(error, subprocess.CalledProcessError):
        stderr = (error.stderr or "").strip()
        if any(marker in stderr.lower() for marker in _NOT_FOUND_MARKERS):
            return ResourceNotFoundError("Instance", resource_id, provider=PROVIDER, code=str(error.returncode))
        command = " ".join(error.cmd) if isinstance(error.cmd, (list, tuple)) else str(error.cmd)
        return ProviderError(
            f"'{command}' exited with {error.returncode}: {stderr}",
            provider=PROVIDER,
            code=str(error.returncode),
        )
    if isinstance(error, subprocess.TimeoutExpired):
        return ProviderError(f"'{error.cmd}' timed out after {error.timeout}s", provider=PROVIDER)
    if isinstance(error, FileNotFoundError):
        return ProviderError(f"multipass binary not found: {error.filename or error}", provider=PROVIDER)
    return None
