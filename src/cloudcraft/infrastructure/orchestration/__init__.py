"""Provisioning and teardown pipelines shared by all backends."""
from .provisioning import ProvisioningPipeline
from .teardown import TeardownPipeline

__all__ = ["ProvisioningPipeline", "TeardownPipeline"]
