"""Provisioning pipeline: an ordered ledger of dependent creation steps."""
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple

from cloudcraft.domain.core.exceptions import DomainException, LifecycleError, ProviderError

logger = logging.getLogger(__name__)

ErrorConverter = Callable[[Exception], Optional[LifecycleError]]


class ProvisioningPipeline:
    """
    Runs creation steps in order and remembers what each one produced.

    No step is rolled back when a later one fails. Instead the error that
    leaves a step carries the phase, the step name and every resource
    recorded so far, so the caller knows what was left behind.

    Usage::

        pipeline = ProvisioningPipeline("create", "aws", convert_client_error)
        with pipeline.step("create-vpc"):
            vpc_id = ec2.create_vpc(...)["Vpc"]["VpcId"]
            pipeline.record("vpc", vpc_id)
    """

    def __init__(self, phase: str, provider: str, convert_error: Optional[ErrorConverter] = None):
        self.phase = phase
        self.provider = provider
        self._convert_error = convert_error
        self.resources: List[Tuple[str, str]] = []
        self.completed_steps: List[str] = []

    def record(self, kind: str, resource_id: str) -> str:
        self.resources.append((kind, resource_id))
        logger.debug(f"[{self.provider}/{self.phase}] recorded {kind} {resource_id}")
        return resource_id

    @contextmanager
    def step(self, name: str) -> Iterator[None]:
        logger.info(f"[{self.provider}/{self.phase}] {name}: started")
        try:
            yield
        except LifecycleError as e:
            raise self._fail(e, name)
        except DomainException:
            raise
        except Exception as e:
            converted = self._convert_error(e) if self._convert_error else None
            if converted is None:
                converted = ProviderError(str(e) or type(e).__name__, provider=self.provider)
            raise self._fail(converted, name) from e
        self.completed_steps.append(name)
        logger.info(f"[{self.provider}/{self.phase}] {name}: done")

    def _fail(self, error: LifecycleError, name: str) -> LifecycleError:
        error.annotate(phase=self.phase, step=name)
        if not error.orphaned_resources:
            error.orphaned_resources = list(self.resources)
        logger.error(f"[{self.provider}/{self.phase}] {name}: failed: {error}")
        return error
