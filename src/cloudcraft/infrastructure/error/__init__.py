"""Error context and lifecycle error decorators."""
from .context import ExceptionContext
from .decorators import handle_lifecycle_errors

__all__ = ["ExceptionContext", "handle_lifecycle_errors"]
