"""Namespace topology selection per install mode.

Every operator under audit gets its own namespace set derived from its
package name:

    AllNamespaces    opcap-<pkg>                       (cluster-scoped group)
    OwnNamespace     opcap-<pkg>  -> [opcap-<pkg>]
    SingleNamespace  opcap-<pkg>  -> [opcap-<pkg>-targetns1]
    MultiNamespace   opcap-<pkg>  -> [opcap-<pkg>-targetns1, opcap-<pkg>-targetns2]
"""

import logging
from dataclasses import dataclass
from typing import Callable

from common import MAX_NAME_LENGTH, InstallMode, dns_label

logger = logging.getLogger(__name__)

TARGET_SUFFIX = 'targetns'


@dataclass(frozen=True)
class NamespaceTopology:
    """Namespaces an operator is installed into and allowed to watch.

    Attributes:
        install_mode: Mode the topology was derived from
        install_namespace: Namespace holding the subscription and CSV
        target_namespaces: Namespaces the OperatorGroup targets
            (empty = all namespaces)
    """
    install_mode: InstallMode
    install_namespace: str
    target_namespaces: tuple[str, ...] = ()

    @property
    def group_name(self) -> str:
        """OperatorGroup name for this topology."""
        return f'{self.install_namespace}-operatorgroup'

    @property
    def extra_namespaces(self) -> tuple[str, ...]:
        """Target namespaces other than the install namespace."""
        return tuple(ns for ns in self.target_namespaces if ns != self.install_namespace)

    @property
    def all_namespaces(self) -> tuple[str, ...]:
        return (self.install_namespace,) + self.extra_namespaces

    def to_dict(self) -> dict:
        return {
            'install_mode': self.install_mode.value,
            'install_namespace': self.install_namespace,
            'target_namespaces': list(self.target_namespaces),
        }


def _targets(count: int) -> Callable[[str], tuple[str, ...]]:
    return lambda base: tuple(f'{base}-{TARGET_SUFFIX}{i}' for i in range(1, count + 1))


# install mode -> target namespace builder (given the install namespace)
_TARGET_TABLE: dict[InstallMode, Callable[[str], tuple[str, ...]]] = {
    InstallMode.ALL_NAMESPACES: lambda base: (),
    InstallMode.OWN_NAMESPACE: lambda base: (base,),
    InstallMode.SINGLE_NAMESPACE: _targets(1),
    InstallMode.MULTI_NAMESPACE: _targets(2),
}


def base_namespace(package: str, prefix: str = 'opcap') -> str:
    """Generated install namespace for a package.

    Leaves room for the '-targetnsN' suffix within the DNS label limit.
    """
    reserve = len(f'-{TARGET_SUFFIX}9')
    return dns_label(f'{prefix}-{package}', max_length=MAX_NAME_LENGTH - reserve)


def plan(install_mode: InstallMode, package: str, prefix: str = 'opcap') -> NamespaceTopology:
    """Derive the topology for a package without touching the cluster."""
    install_namespace = base_namespace(package, prefix)
    targets = _TARGET_TABLE[install_mode](install_namespace)
    return NamespaceTopology(
        install_mode=install_mode,
        install_namespace=install_namespace,
        target_namespaces=targets,
    )


def materialize(topology: NamespaceTopology, ensure_namespace: Callable[[str], object]) -> None:
    """Create the extra target namespaces a topology requires.

    Errors from ensure_namespace propagate unchanged.
    """
    for namespace in topology.extra_namespaces:
        logger.debug(f"Ensuring target namespace {namespace}")
        ensure_namespace(namespace)


def resolve(
    install_mode: InstallMode,
    package: str,
    ensure_namespace: Callable[[str], object],
    prefix: str = 'opcap',
) -> NamespaceTopology:
    """Derive the topology and create its extra namespaces.

    Args:
        install_mode: Parsed install mode (unknown tags are rejected by
            InstallMode.parse before this is called)
        package: Operator package name
        ensure_namespace: Idempotent namespace creation callable
        prefix: Generated namespace prefix

    Returns:
        NamespaceTopology for the package
    """
    topology = plan(install_mode, package, prefix)
    materialize(topology, ensure_namespace)
    return topology
