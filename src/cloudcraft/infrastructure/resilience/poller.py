"""Completion poller: wait for an asynchronous provider operation under a deadline."""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from cloudcraft.domain.core.exceptions import (
    OperationCancelledError,
    OperationTimeoutError,
    ProvisioningFailedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PollPolicy:
    """How often to probe, and for how long at most."""
    interval: float
    timeout: float

    def __post_init__(self):
        if self.interval <= 0:
            raise ValidationError(f"Poll interval must be positive, got {self.interval}")
        if self.timeout <= 0:
            raise ValidationError(f"Poll timeout must be positive, got {self.timeout}")


class Deadline:
    """An absolute point on a monotonic clock, supplied by a caller."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._at


def poll_until(
    probe: Callable[[], T],
    is_success: Callable[[T], bool],
    is_failure: Optional[Callable[[T], bool]] = None,
    *,
    policy: PollPolicy,
    operation: str,
    deadline: Optional[Deadline] = None,
    cancel_event: Optional[threading.Event] = None,
    describe: Optional[Callable[[T], Any]] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Call ``probe`` until ``is_success`` holds for its result.

    The first probe runs immediately; after that the poller waits
    ``policy.interval`` between probes, or less only when the deadline is
    closer than that. Exceptions raised by ``probe`` propagate unchanged.

    Args:
        probe: Reads the current state of the operation.
        is_success: Terminal-success predicate.
        is_failure: Terminal-failure predicate; the provider status for the
            error comes from ``describe(result)``.
        policy: Interval and the poller's own timeout.
        operation: Human readable name used in logs and errors.
        deadline: Caller deadline. Whichever of it and ``policy.timeout``
            comes first wins.
        cancel_event: Setting it aborts the wait at once.
        clock: Monotonic clock, replaceable in tests.
        sleep: Replaces the wait in tests. Ignored when ``cancel_event`` is given.

    Returns:
        The first result that satisfied ``is_success``.

    Raises:
        ProvisioningFailedError: ``is_failure`` matched.
        OperationTimeoutError: The effective deadline passed first.
        OperationCancelledError: ``cancel_event`` was set.
    """
    describe = describe or repr
    sleep = sleep or time.sleep
    started = clock()
    stop_at = started + policy.timeout
    if deadline is not None:
        stop_at = min(stop_at, started + deadline.remaining())

    attempts = 0
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(operation, attempts)

        result = probe()
        attempts += 1
        if is_success(result):
            logger.debug(f"{operation} completed after {attempts} attempts")
            return result
        if is_failure is not None and is_failure(result):
            raise ProvisioningFailedError(operation, str(describe(result)))

        remaining = stop_at - clock()
        if remaining <= 0:
            raise OperationTimeoutError(
                operation, policy.timeout, attempts, clock() - started, result
            )

        wait = min(policy.interval, remaining)
        logger.debug(f"Waiting {wait:.1f}s for {operation} (attempt {attempts}, last: {describe(result)})")
        if cancel_event is not None:
            if cancel_event.wait(wait):
                raise OperationCancelledError(operation, attempts)
        else:
            sleep(wait)

        if clock() >= stop_at or (deadline is not None and deadline.expired()):
            raise OperationTimeoutError(
                operation, policy.timeout, attempts, clock() - started, result
            )
