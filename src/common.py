"""Common types and helpers shared by the audit components."""

import re
from dataclasses import dataclass
from enum import Enum

from config import ConfigError

# DNS-1123 label limit for namespace names
MAX_NAME_LENGTH = 63


class InstallMode(str, Enum):
    """Namespace-scoping strategies an operator bundle can declare."""
    ALL_NAMESPACES = 'AllNamespaces'
    OWN_NAMESPACE = 'OwnNamespace'
    SINGLE_NAMESPACE = 'SingleNamespace'
    MULTI_NAMESPACE = 'MultiNamespace'

    @classmethod
    def parse(cls, value: 'str | InstallMode') -> 'InstallMode':
        """Parse an install-mode tag.

        Raises:
            ConfigError: If the tag is not one of the four known modes
        """
        if isinstance(value, cls):
            return value
        for mode in cls:
            if mode.value.lower() == str(value).lower():
                return mode
        available = [m.value for m in cls]
        raise ConfigError(f"Unknown install mode: {value}. Available: {available}")


class ApprovalMode(str, Enum):
    """InstallPlan approval strategy for a subscription."""
    AUTOMATIC = 'Automatic'
    MANUAL = 'Manual'


@dataclass(frozen=True)
class SubscriptionRecord:
    """One installable package/channel/install-mode read from a catalog.

    Attributes:
        package: Package name (e.g., 'etcd')
        channel: Channel to subscribe to (the package's default channel)
        catalog_source: CatalogSource name the package is published in
        catalog_namespace: Namespace of the CatalogSource
        install_mode: Install mode the audit exercises
        approval: InstallPlan approval mode
    """
    package: str
    channel: str
    catalog_source: str
    catalog_namespace: str
    install_mode: InstallMode
    approval: ApprovalMode = ApprovalMode.AUTOMATIC

    @property
    def name(self) -> str:
        """Subscription resource name."""
        return dns_name(f'{self.channel}-{self.package}-subscription')

    def to_dict(self) -> dict:
        return {
            'package': self.package,
            'channel': self.channel,
            'catalog_source': self.catalog_source,
            'catalog_namespace': self.catalog_namespace,
            'install_mode': self.install_mode.value,
            'approval': self.approval.value,
        }


def dns_label(value: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """Normalize a string into a DNS-1123 label.

    Lowercases, replaces any run of invalid characters with '-', strips
    leading/trailing dashes and truncates to max_length.
    """
    label = re.sub(r'[^a-z0-9-]+', '-', value.lower()).strip('-')
    label = label[:max_length].rstrip('-')
    if not label:
        raise ValueError(f"Cannot derive a DNS label from '{value}'")
    return label


def dns_name(value: str) -> str:
    """Normalize a resource name (DNS-1123 subdomain, dots allowed)."""
    name = re.sub(r'[^a-z0-9.-]+', '-', value.lower()).strip('-.')
    return name[:253]
