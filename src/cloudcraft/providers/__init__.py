"""Cloud backends implementing the automation port."""
from .registry import ProviderRegistry, get_cloud_provider_code, get_cloud_provider_full_name

__all__ = ["ProviderRegistry", "get_cloud_provider_code", "get_cloud_provider_full_name"]
