"""Cluster client interface used by the audit core.

The audit core only talks to the cluster through ClusterClient. The
kubernetes-backed implementation lives in cluster.kube; tests use an
in-memory fake.
"""

from dataclasses import dataclass
from typing import Any, Iterator, Optional, Protocol, runtime_checkable

from common import SubscriptionRecord

STATUS_KIND = 'ClusterServiceVersion'


class ClusterError(Exception):
    """A cluster API call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ClusterError):
    """The requested resource does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status=404)


@dataclass(frozen=True)
class StatusSelector:
    """Selects status resources (CSVs) within a namespace.

    name=None selects every CSV in the namespace.
    """
    name: Optional[str] = None

    @property
    def field_selector(self) -> Optional[str]:
        if self.name:
            return f'metadata.name={self.name}'
        return None

    def __str__(self) -> str:
        return self.name or '*'


@dataclass(frozen=True)
class SubscriptionHandle:
    """A created subscription.

    Attributes:
        name: Subscription resource name
        namespace: Namespace it was created in
        current_csv: CSV name from status.currentCSV, if already set
    """
    name: str
    namespace: str
    current_csv: Optional[str] = None


@runtime_checkable
class EventStream(Protocol):
    """Live change events for status resources.

    Iterating yields {'type': ..., 'object': ...} dicts. close() releases
    the underlying watch and ends iteration.
    """

    def __iter__(self) -> Iterator[dict]:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class ClusterClient(Protocol):
    """Cluster operations the audit core depends on."""

    def list_catalog_entries(self, catalog_source: str, namespace: str) -> list[SubscriptionRecord]:
        ...

    def create_namespace(self, name: str) -> None:
        """Create a namespace; succeeds if it already exists."""

    def delete_namespace(self, name: str) -> None:
        ...

    def create_operator_group(self, topology: Any, namespace: str) -> None:
        ...

    def delete_operator_group(self, name: str, namespace: str) -> None:
        ...

    def create_subscription(self, record: SubscriptionRecord, namespace: str) -> SubscriptionHandle:
        ...

    def delete_subscription(self, name: str, namespace: str) -> None:
        ...

    def watch_status_resource(self, selector: StatusSelector, namespace: str) -> EventStream:
        ...

    def read_status_resources(self, selector: StatusSelector, namespace: str) -> list[dict]:
        ...

    def delete_status_resource(self, name: str, namespace: str) -> None:
        ...


def status_phase(resource: dict) -> Optional[str]:
    """Return status.phase of a status resource, if any."""
    return (resource.get('status') or {}).get('phase')


def resource_name(resource: dict) -> Optional[str]:
    return (resource.get('metadata') or {}).get('name')


__all__ = [
    'STATUS_KIND',
    'ClusterClient',
    'ClusterError',
    'EventStream',
    'NotFoundError',
    'StatusSelector',
    'SubscriptionHandle',
    'resource_name',
    'status_phase',
]
