"""Provider Registry - maps provider codes to automation factories."""

import logging
import threading
from typing import Callable, Dict, List, Optional

from cloudcraft.config.schemas import AppConfig
from cloudcraft.domain.base.ports.automation_port import AutomationPort
from cloudcraft.domain.core.exceptions import UnsupportedProviderError

logger = logging.getLogger(__name__)

AutomationFactory = Callable[[AppConfig, str], AutomationPort]

CLOUD_PROVIDERS: Dict[str, str] = {
    "do": "DigitalOcean",
    "civo": "Civo",
    "scaleway": "Scaleway",
    "hetzner": "Hetzner",
    "linode": "Linode",
    "ovh": "OVHcloud",
    "equinix": "Equinix Metal",
    "gce": "Google Compute Engine",
    "vultr": "vultr",
    "azure": "Azure",
    "oci": "Oracle Cloud Infrastructure",
    "ionos": "IONOS Cloud",
    "aws": "Amazon WebServices",
    "vexxhost": "VEXXHOST",
    "exoscale": "Exoscale",
    "multipass": "Ubuntu Multipass",
    "fuga": "Fuga Cloud",
}


def get_cloud_provider_full_name(code: str) -> str:
    """Display name for a provider code, or "" when the code is unknown."""
    return CLOUD_PROVIDERS.get(code, "")


def get_cloud_provider_code(full_name: str) -> str:
    for code, name in CLOUD_PROVIDERS.items():
        if name == full_name:
            return code
    return ""


def _create_aws(config: AppConfig, region: str) -> AutomationPort:
    from cloudcraft.providers.aws import AWSAutomation
    return AWSAutomation(region or config.aws.region, aws_config=config.aws, polling=config.polling)


def _create_gce(config: AppConfig, region: str) -> AutomationPort:
    from cloudcraft.providers.gce import GCEAutomation
    return GCEAutomation(region or config.gce.zone, gce_config=config.gce, polling=config.polling)


def _create_multipass(config: AppConfig, region: str) -> AutomationPort:
    from cloudcraft.providers.multipass import MultipassAutomation
    return MultipassAutomation(multipass_config=config.multipass, polling=config.polling)


def _openstack_family(provider: str) -> AutomationFactory:
    """Factory for an OpenStack cloud configured by the section named after ``provider``."""
    def create(config: AppConfig, region: str) -> AutomationPort:
        from cloudcraft.providers.openstack import OpenStackAutomation
        return OpenStackAutomation(
            region,
            openstack_config=getattr(config, provider),
            polling=config.polling,
            provider_code=provider,
        )
    return create


class ProviderRegistry:
    """
    Registry for automation factories.

    A factory receives the application configuration and the region (or zone)
    from the manifest and returns a ready backend. Backends are imported only
    when their factory runs, so a missing optional SDK affects only the
    provider that needs it.

    Thread-safe singleton implementation.
    """

    _instance: Optional["ProviderRegistry"] = None
    _lock = threading.RLock()

    def __init__(self):
        self._factories: Dict[str, AutomationFactory] = {}
        self._registration_lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> "ProviderRegistry":
        """Get singleton instance with the built-in providers registered."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    registry = cls()
                    registry.register_defaults()
                    cls._instance = registry
        return cls._instance

    def register_defaults(self) -> None:
        self.register_provider("aws", _create_aws)
        self.register_provider("gce", _create_gce)
        self.register_provider("multipass", _create_multipass)
        self.register_provider("fuga", _openstack_family("fuga"))
        self.register_provider("vexxhost", _openstack_family("vexxhost"))

    def register_provider(self, provider: str, factory: AutomationFactory) -> None:
        """
        Register a factory for a provider code.

        Raises:
            ValueError: If the code is already registered
        """
        with self._registration_lock:
            if provider in self._factories:
                raise ValueError(f"Provider '{provider}' is already registered")
            self._factories[provider] = factory
            logger.debug(f"Registered provider: {provider}")

    def is_registered(self, provider: str) -> bool:
        return provider in self._factories

    def get_registered_providers(self) -> List[str]:
        return sorted(self._factories)

    def create_automation(self, provider: str, config: Optional[AppConfig] = None,
                          region: str = "") -> AutomationPort:
        """
        Build the backend for ``provider``.

        Raises:
            UnsupportedProviderError: If the code is unknown or has no backend
        """
        factory = self._factories.get(provider)
        if factory is None:
            if provider in CLOUD_PROVIDERS:
                logger.warning(f"{get_cloud_provider_full_name(provider)} is known but has no backend")
            raise UnsupportedProviderError(provider)
        logger.info(f"Creating {get_cloud_provider_full_name(provider) or provider} backend")
        return factory(config or AppConfig(), region)
