"""Kubernetes-backed ClusterClient.

Talks to OLM resources through the dynamic CustomObjectsApi:
- PackageManifest (packages.operators.coreos.com/v1) for catalog listing
- OperatorGroup (operators.coreos.com/v1)
- Subscription, ClusterServiceVersion (operators.coreos.com/v1alpha1)

ApiException is translated to ClusterError (NotFoundError for 404) so
callers never depend on the kubernetes package directly.
"""

import json
import logging
import socket
import threading
from typing import Any, Callable, Iterator, Optional

from kubernetes import client, config as kube_config
from kubernetes.client import ApiException
from kubernetes.watch.watch import iter_resp_lines

from cluster import ClusterError, NotFoundError, StatusSelector, SubscriptionHandle
from common import ApprovalMode, InstallMode, SubscriptionRecord
from config import ConfigError
from topology import NamespaceTopology

logger = logging.getLogger(__name__)

OLM_GROUP = 'operators.coreos.com'
PACKAGES_GROUP = 'packages.operators.coreos.com'

OPERATOR_GROUP = (OLM_GROUP, 'v1', 'operatorgroups')
SUBSCRIPTION = (OLM_GROUP, 'v1alpha1', 'subscriptions')
CSV = (OLM_GROUP, 'v1alpha1', 'clusterserviceversions')
PACKAGE_MANIFEST = (PACKAGES_GROUP, 'v1', 'packagemanifests')


def _translate(e: ApiException, what: str) -> ClusterError:
    """Convert an ApiException into a ClusterError."""
    reason = e.reason or 'unknown'
    if e.status == 404:
        return NotFoundError(f"{what}: not found")
    return ClusterError(f"{what}: {e.status} {reason}", status=e.status)


def _call(what: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
    try:
        return fn(*args, **kwargs)
    except ApiException as e:
        raise _translate(e, what) from e


def _release(resp: Any) -> None:
    resp.close()
    resp.release_conn()


def _shutdown(resp: Any) -> None:
    """Unblock a reader stuck in recv on resp, then close it."""
    conn = getattr(resp, 'connection', None)
    sock = getattr(conn, 'sock', None) if conn is not None else None
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Watch socket already shut down: {e}")
    resp.close()


class KubeEventStream:
    """EventStream over a raw watch response on CSVs.

    The stream owns the HTTP response, so close() can release the
    connection from another thread while a read is blocked on it.
    """

    def __init__(
        self,
        custom_api: client.CustomObjectsApi,
        selector: StatusSelector,
        namespace: str,
        timeout_seconds: Optional[int] = None,
    ):
        self._custom = custom_api
        self._selector = selector
        self._namespace = namespace
        self._timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._resp: Any = None
        self._closed = False

    def _open(self) -> Any:
        group, version, plural = CSV
        kwargs: dict[str, Any] = {'watch': True, '_preload_content': False}
        if self._selector.field_selector:
            kwargs['field_selector'] = self._selector.field_selector
        if self._timeout_seconds:
            kwargs['timeout_seconds'] = self._timeout_seconds
        what = f"watch csv {self._selector} in {self._namespace}"
        resp = _call(
            what,
            self._custom.list_namespaced_custom_object,
            group, version, self._namespace, plural,
            **kwargs,
        )
        status = getattr(resp, 'status', None)
        if isinstance(status, int) and not 200 <= status <= 299:
            _release(resp)
            raise _translate(ApiException(status=status, reason=getattr(resp, 'reason', None)), what)
        return resp

    def __iter__(self) -> Iterator[dict]:
        resp = self._open()
        with self._lock:
            if self._closed:
                _release(resp)
                return
            self._resp = resp
        try:
            for line in iter_resp_lines(resp):
                if self._closed:
                    return
                if line.strip():
                    yield json.loads(line)
        except Exception:
            if self._closed:
                # Reads fail once close() has shut the socket down
                return
            raise
        finally:
            _release(resp)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            resp, self._resp = self._resp, None
        if resp is not None:
            _shutdown(resp)


class KubeClusterClient:
    """ClusterClient implementation using the official kubernetes client.

    Args:
        kubeconfig: Path to kubeconfig ('' = default loading rules)
        in_cluster: Load the in-cluster service account config instead
        api_client: Pre-built ApiClient (skips config loading)
        watch_timeout: Server-side timeout for watch requests, in seconds
    """

    def __init__(
        self,
        kubeconfig: str = '',
        in_cluster: bool = False,
        api_client: Optional[client.ApiClient] = None,
        watch_timeout: Optional[int] = 300,
    ):
        if api_client is None:
            try:
                if in_cluster:
                    kube_config.load_incluster_config()
                else:
                    kube_config.load_kube_config(config_file=kubeconfig or None)
            except kube_config.ConfigException as e:
                raise ClusterError(f"cannot load cluster config: {e}") from e
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)
        self.watch_timeout = watch_timeout

    # Catalog

    def list_catalog_entries(self, catalog_source: str, namespace: str) -> list[SubscriptionRecord]:
        """List one subscription candidate per package in a catalog.

        For each PackageManifest published by catalog_source, takes the
        default channel and the first install mode its current CSV supports.
        """
        group, version, plural = PACKAGE_MANIFEST
        result = _call(
            f"list packagemanifests in {namespace}",
            self.custom.list_namespaced_custom_object,
            group, version, namespace, plural,
        )
        records = []
        for manifest in result.get('items', []):
            status = manifest.get('status') or {}
            if status.get('catalogSource') != catalog_source:
                continue
            record = _record_from_manifest(manifest, catalog_source, namespace)
            if record is not None:
                records.append(record)
        logger.debug(f"Catalog {catalog_source} lists {len(records)} installable packages")
        return records

    # Namespaces

    def create_namespace(self, name: str) -> None:
        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
        try:
            self.core.create_namespace(body)
            logger.debug(f"Created namespace {name}")
        except ApiException as e:
            if e.status == 409:
                logger.debug(f"Namespace {name} already exists")
                return
            raise _translate(e, f"create namespace {name}") from e

    def delete_namespace(self, name: str) -> None:
        _call(f"delete namespace {name}", self.core.delete_namespace, name)

    # OperatorGroup

    def create_operator_group(self, topology: NamespaceTopology, namespace: str) -> None:
        group, version, plural = OPERATOR_GROUP
        spec: dict[str, Any] = {}
        if topology.target_namespaces:
            spec['targetNamespaces'] = list(topology.target_namespaces)
        body = {
            'apiVersion': f'{group}/{version}',
            'kind': 'OperatorGroup',
            'metadata': {'name': topology.group_name, 'namespace': namespace},
            'spec': spec,
        }
        _call(
            f"create operatorgroup {topology.group_name}",
            self.custom.create_namespaced_custom_object,
            group, version, namespace, plural, body,
        )

    def delete_operator_group(self, name: str, namespace: str) -> None:
        group, version, plural = OPERATOR_GROUP
        _call(
            f"delete operatorgroup {name}",
            self.custom.delete_namespaced_custom_object,
            group, version, namespace, plural, name,
        )

    # Subscription

    def create_subscription(self, record: SubscriptionRecord, namespace: str) -> SubscriptionHandle:
        group, version, plural = SUBSCRIPTION
        body = {
            'apiVersion': f'{group}/{version}',
            'kind': 'Subscription',
            'metadata': {'name': record.name, 'namespace': namespace},
            'spec': {
                'name': record.package,
                'channel': record.channel,
                'source': record.catalog_source,
                'sourceNamespace': record.catalog_namespace,
                'installPlanApproval': record.approval.value,
            },
        }
        result = _call(
            f"create subscription {record.name}",
            self.custom.create_namespaced_custom_object,
            group, version, namespace, plural, body,
        )
        current_csv = ((result or {}).get('status') or {}).get('currentCSV')
        return SubscriptionHandle(name=record.name, namespace=namespace, current_csv=current_csv)

    def delete_subscription(self, name: str, namespace: str) -> None:
        group, version, plural = SUBSCRIPTION
        _call(
            f"delete subscription {name}",
            self.custom.delete_namespaced_custom_object,
            group, version, namespace, plural, name,
        )

    # ClusterServiceVersion

    def watch_status_resource(self, selector: StatusSelector, namespace: str) -> KubeEventStream:
        return KubeEventStream(self.custom, selector, namespace, timeout_seconds=self.watch_timeout)

    def read_status_resources(self, selector: StatusSelector, namespace: str) -> list[dict]:
        group, version, plural = CSV
        kwargs = {}
        if selector.field_selector:
            kwargs['field_selector'] = selector.field_selector
        result = _call(
            f"list csv {selector} in {namespace}",
            self.custom.list_namespaced_custom_object,
            group, version, namespace, plural,
            **kwargs,
        )
        items: list[dict] = result.get('items', [])
        return items

    def delete_status_resource(self, name: str, namespace: str) -> None:
        group, version, plural = CSV
        _call(
            f"delete csv {name}",
            self.custom.delete_namespaced_custom_object,
            group, version, namespace, plural, name,
        )

    # Cluster info

    def server_version(self) -> str:
        """Return the API server git version (e.g., 'v1.27.6+f67aeb3')."""
        info = _call("get server version", client.VersionApi(self.api_client).get_code)
        return str(info.git_version)


def _record_from_manifest(manifest: dict, catalog_source: str, namespace: str) -> Optional[SubscriptionRecord]:
    """Build a record from a PackageManifest's default channel."""
    package = (manifest.get('metadata') or {}).get('name', '')
    status = manifest.get('status') or {}
    default_channel = status.get('defaultChannel')

    for channel in status.get('channels') or []:
        if channel.get('name') != default_channel:
            continue
        install_modes = (channel.get('currentCSVDesc') or {}).get('installModes') or []
        for install_mode in install_modes:
            if not install_mode.get('supported'):
                continue
            try:
                mode = InstallMode.parse(install_mode.get('type', ''))
            except ConfigError as e:
                logger.warning(f"Skipping install mode of package {package}: {e}")
                continue
            return SubscriptionRecord(
                package=package,
                channel=channel['name'],
                catalog_source=catalog_source,
                catalog_namespace=namespace,
                install_mode=mode,
                approval=ApprovalMode.AUTOMATIC,
            )

    logger.debug(f"Package {package} has no supported install mode on its default channel")
    return None
