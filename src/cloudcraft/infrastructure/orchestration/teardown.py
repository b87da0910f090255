"""Teardown pipeline: delete resources in reverse dependency order, tolerating absence."""
import logging
from typing import Any, Callable, List, Optional, Tuple

from cloudcraft.domain.core.exceptions import (
    DomainException,
    LifecycleError,
    PartialTeardownError,
    ProviderError,
    ResourceNotFoundError,
)
from cloudcraft.infrastructure.orchestration.provisioning import ErrorConverter

logger = logging.getLogger(__name__)


class TeardownPipeline:
    """
    Ordered deletion steps; the caller adds them in reverse creation order.

    A step that reports "not found" counts as done, so running the same
    teardown twice succeeds. A failure after at least one completed step is
    raised as ``PartialTeardownError`` so the caller can simply retry.
    """

    def __init__(self, phase: str, provider: str, convert_error: Optional[ErrorConverter] = None):
        self.phase = phase
        self.provider = provider
        self._convert_error = convert_error
        self._steps: List[Tuple[str, Callable[[], Any]]] = []
        self.completed_steps: List[str] = []

    def add(self, name: str, action: Callable[[], Any]) -> "TeardownPipeline":
        self._steps.append((name, action))
        return self

    def run(self) -> List[str]:
        for name, action in self._steps:
            logger.info(f"[{self.provider}/{self.phase}] {name}: started")
            try:
                action()
            except Exception as e:
                error = self._to_lifecycle_error(e)
                if isinstance(error, ResourceNotFoundError):
                    logger.info(f"[{self.provider}/{self.phase}] {name}: already absent")
                    self.completed_steps.append(name)
                    continue
                if error is None:
                    raise
                if self.completed_steps:
                    raise PartialTeardownError(
                        name, self.completed_steps, error, phase=self.phase
                    ) from e
                error.annotate(phase=self.phase, step=name)
                if error is e:
                    raise
                raise error from e
            self.completed_steps.append(name)
            logger.info(f"[{self.provider}/{self.phase}] {name}: done")
        return list(self.completed_steps)

    def _to_lifecycle_error(self, error: Exception) -> Optional[LifecycleError]:
        if isinstance(error, LifecycleError):
            return error
        if isinstance(error, DomainException):
            return None
        converted = self._convert_error(error) if self._convert_error else None
        if converted is None:
            converted = ProviderError(str(error) or type(error).__name__, provider=self.provider)
        return converted
