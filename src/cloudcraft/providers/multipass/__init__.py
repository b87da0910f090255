"""Ubuntu Multipass backend."""
from .automation import MultipassAutomation

__all__ = ["MultipassAutomation"]
