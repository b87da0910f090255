"""OpenStack backend shared by the Fuga and VEXXHOST providers."""
from .automation import OpenStackAutomation

__all__ = ["OpenStackAutomation"]
