"""Compute Engine backend."""
from .automation import GCEAutomation

__all__ = ["GCEAutomation"]
