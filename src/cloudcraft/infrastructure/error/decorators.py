"""Decorators that give every backend operation a uniform error surface."""
import functools
import logging
from typing import Any, Callable, TypeVar

from cloudcraft.domain.core.exceptions import DomainException, LifecycleError, ProviderError
from cloudcraft.infrastructure.error.context import ExceptionContext

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def handle_lifecycle_errors(phase: str) -> Callable[[F], F]:
    """
    Stamp ``phase`` on any lifecycle error leaving the wrapped operation.

    Domain errors keep their type and any step already recorded. Anything
    else is wrapped in a ``ProviderError`` so that callers only ever see the
    lifecycle taxonomy.
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except LifecycleError as e:
                e.annotate(phase=phase)
                context = ExceptionContext(func.__qualname__, phase=phase, step=e.step)
                logger.error(f"{type(e).__name__}: {e}", extra={"context": context.to_dict()})
                raise
            except DomainException:
                raise
            except Exception as e:
                context = ExceptionContext(func.__qualname__, phase=phase)
                logger.error(f"Unexpected error: {e}", extra={"context": context.to_dict()})
                raise ProviderError(str(e) or type(e).__name__, phase=phase) from e
        return wrapper  # type: ignore[return-value]
    return decorator
