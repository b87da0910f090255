# src/cloudcraft/domain/core/exceptions.py
from typing import Any, Dict, List, Optional, Tuple


class DomainException(Exception):
    """Base exception for all domain-specific errors."""
    pass


class ConfigurationError(DomainException):
    """Raised when there's an issue with configuration."""
    def __init__(self, message: str, missing_fields: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_fields = missing_fields or []


class UnsupportedProviderError(DomainException):
    """Raised when an unknown or unimplemented provider code is requested."""
    def __init__(self, provider: str):
        super().__init__(f"Provider '{provider}' is not supported")
        self.provider = provider


class LifecycleError(DomainException):
    """
    Base class for failures of an Automation Contract operation.

    Carries the lifecycle phase (create/read/list/update/delete/upload) and the
    pipeline step that triggered it. Both are filled in as the error travels
    up through the pipeline and the backend method, never overwritten.
    """
    def __init__(self, message: str, phase: Optional[str] = None, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.step = step
        self.orphaned_resources: List[Tuple[str, str]] = []

    def annotate(self, phase: Optional[str] = None, step: Optional[str] = None) -> "LifecycleError":
        if phase and not self.phase:
            self.phase = phase
        if step and not self.step:
            self.step = step
        return self

    def __str__(self) -> str:
        location = "/".join(part for part in (self.phase, self.step) if part)
        text = f"[{location}] {self.message}" if location else self.message
        if self.orphaned_resources:
            orphans = ", ".join(f"{kind}={rid}" for kind, rid in self.orphaned_resources)
            text = f"{text} (resources left behind: {orphans})"
        return text


class ValidationError(LifecycleError):
    """Raised when domain validation fails."""
    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


class ProviderError(LifecycleError):
    """Raised when the remote API rejected a call."""
    def __init__(self, message: str, provider: str = "", code: str = "",
                 phase: Optional[str] = None, step: Optional[str] = None):
        super().__init__(message, phase=phase, step=step)
        self.provider = provider
        self.code = code


class ResourceNotFoundError(ProviderError):
    """Raised when a remote resource does not exist (or no longer exists)."""
    def __init__(self, resource_type: str, resource_id: str, provider: str = "",
                 code: str = "", phase: Optional[str] = None, step: Optional[str] = None):
        super().__init__(f"{resource_type} with ID {resource_id} not found",
                         provider=provider, code=code, phase=phase, step=step)
        self.resource_type = resource_type
        self.resource_id = resource_id


class OperationTimeoutError(LifecycleError):
    """Raised when a poll deadline elapsed before the operation completed."""
    def __init__(self, operation: str, timeout: float, attempts: int = 0,
                 elapsed: float = 0.0, last_result: Any = None):
        super().__init__(
            f"Timed out after {elapsed:.0f}s waiting for {operation} "
            f"(timeout {timeout:.0f}s, {attempts} attempts)"
        )
        self.operation = operation
        self.timeout = timeout
        self.attempts = attempts
        self.elapsed = elapsed
        self.last_result = last_result


class OperationCancelledError(LifecycleError):
    """Raised when the caller cancelled a wait before it completed."""
    def __init__(self, operation: str, attempts: int = 0):
        super().__init__(f"Cancelled while waiting for {operation}")
        self.operation = operation
        self.attempts = attempts


class ProvisioningFailedError(LifecycleError):
    """Raised when the provider explicitly reported a terminal failure state."""
    def __init__(self, operation: str, status: str):
        super().__init__(f"{operation} failed with provider status '{status}'")
        self.operation = operation
        self.status = status


class NoPublicAddressError(LifecycleError):
    """Raised when an instance is running but has no public address."""
    def __init__(self, instance_id: str):
        super().__init__(f"Instance {instance_id} has no public address")
        self.instance_id = instance_id


class PartialTeardownError(LifecycleError):
    """Raised when one teardown step failed after others succeeded."""
    def __init__(self, failed_step: str, completed_steps: List[str], cause: Exception,
                 phase: Optional[str] = None):
        super().__init__(
            f"Teardown stopped at '{failed_step}' after completing "
            f"{', '.join(completed_steps)}: {cause}",
            phase=phase,
            step=failed_step,
        )
        self.failed_step = failed_step
        self.completed_steps = list(completed_steps)
        self.cause = cause


class RemoteCommandError(LifecycleError):
    """Raised when a command or transfer over the remote channel failed."""
    def __init__(self, host: str, command: str, returncode: int, stderr: str = ""):
        super().__init__(f"Remote command on {host} exited with {returncode}: {stderr.strip() or command}")
        self.host = host
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class UnsupportedOperationError(LifecycleError):
    """Raised when a backend cannot offer an operation of the contract."""
    def __init__(self, provider: str, operation: str, reason: str):
        super().__init__(f"{operation} is not supported by {provider}: {reason}")
        self.provider = provider
        self.operation = operation


class DescriptorValidationError(ValidationError):
    """Raised when a resource descriptor fails validation."""
    def __init__(self, name: str, errors: Dict[str, str]):
        super().__init__(f"Descriptor validation failed for {name}", errors)
        self.name = name
        self.errors = errors
