"""EC2 backend."""
from .automation import AWSAutomation

__all__ = ["AWSAutomation"]
