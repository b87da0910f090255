"""Shared backend implementation."""
from .automation import BaseAutomation

__all__ = ["BaseAutomation"]
