"""Install, wait and clean up one operator subscription.

State machine:

    created -> installing -> awaiting_status -> {succeeded | failed | timed_out}
            -> cleaning_up -> done

Any creation error during installing goes straight to failed and skips
awaiting_status. Every verdict state moves to cleaning_up; cleanup results
are recorded per step and never change the verdict.
"""

import logging
import threading
from typing import Optional

import topology as topology_strategy
from cluster import (
    ClusterClient,
    NotFoundError,
    StatusSelector,
    SubscriptionHandle,
    resource_name,
)
from common import SubscriptionRecord
from lifecycle.state import LifecycleOutcome, LifecycleState
from topology import NamespaceTopology
from watcher import (
    PHASE_SUCCEEDED,
    StatusNotFoundError,
    StatusWatcher,
    WatchDeadline,
)

DEFAULT_WAIT_TIME = 60.0


class LifecycleDriver:
    """Runs the install → status → cleanup lifecycle for a subscription.

    Args:
        client: Cluster client
        watcher: Status watcher (built from client when omitted)
        wait_time: Seconds to wait for a terminal CSV phase
        cadence: Watcher tick cadence in seconds
        namespace_prefix: Prefix for generated namespaces
        logger: Logger for this driver (defaults to the module logger)
    """

    def __init__(
        self,
        client: ClusterClient,
        watcher: Optional[StatusWatcher] = None,
        wait_time: float = DEFAULT_WAIT_TIME,
        cadence: float = 1.0,
        namespace_prefix: str = 'opcap',
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.logger = logger or logging.getLogger(__name__)
        self.watcher = watcher or StatusWatcher(client, logger=self.logger)
        self.wait_time = wait_time
        self.cadence = cadence
        self.namespace_prefix = namespace_prefix

    def run(self, record: SubscriptionRecord, cancel: Optional[threading.Event] = None) -> LifecycleOutcome:
        """Audit one subscription. Always returns an outcome."""
        outcome = LifecycleOutcome(record=record)
        try:
            topology = topology_strategy.plan(record.install_mode, record.package, self.namespace_prefix)
        except ValueError as e:
            # Nothing was created, so there is nothing to clean up
            self.logger.error(f"[{record.package}] Cannot derive namespaces: {e}")
            outcome.fail(f"configuration error: {e}")
            outcome.transition(LifecycleState.CLEANING_UP)
            outcome.transition(LifecycleState.DONE)
            return outcome

        self.logger.info(
            f"[{record.package}] Installing channel {record.channel} "
            f"({record.install_mode.value}) into {topology.install_namespace}"
        )

        outcome.transition(LifecycleState.INSTALLING)
        handle = self._install(record, topology, outcome)

        if handle is not None:
            outcome.transition(LifecycleState.AWAITING_STATUS)
            self._await_status(handle, topology, outcome, cancel)

        self.logger.info(f"[{record.package}] Result: {outcome.status.value} (phase: {outcome.phase or 'unknown'})")

        outcome.transition(LifecycleState.CLEANING_UP)
        self.cleanup(record, topology, outcome, subscription_created=handle is not None)
        outcome.transition(LifecycleState.DONE)

        if outcome.cleanup_errors:
            self.logger.warning(f"[{record.package}] Cleanup left {len(outcome.cleanup_errors)} error(s)")
        return outcome

    def _install(
        self,
        record: SubscriptionRecord,
        topology: NamespaceTopology,
        outcome: LifecycleOutcome,
    ) -> Optional[SubscriptionHandle]:
        """Create namespaces, OperatorGroup and Subscription.

        Returns the subscription handle, or None after moving the outcome
        to failed on a creation error.
        """
        try:
            self.client.create_namespace(topology.install_namespace)
            topology_strategy.materialize(topology, self.client.create_namespace)
            self.client.create_operator_group(topology, topology.install_namespace)
            handle = self.client.create_subscription(record, topology.install_namespace)
        except Exception as e:
            self.logger.error(f"[{record.package}] Install failed: {e}")
            outcome.fail(f"creation error: {e}")
            return None
        self.logger.debug(f"[{record.package}] Created subscription {handle.name}")
        return handle

    def _await_status(
        self,
        handle: SubscriptionHandle,
        topology: NamespaceTopology,
        outcome: LifecycleOutcome,
        cancel: Optional[threading.Event],
    ) -> None:
        """Wait for a terminal CSV phase and map it onto the outcome."""
        package = outcome.package
        selector = StatusSelector(name=handle.current_csv)
        try:
            deadline = WatchDeadline(timeout=self.wait_time, cadence=self.cadence)
            result = self.watcher.await_terminal(selector, topology.install_namespace, deadline, cancel)
        except StatusNotFoundError as e:
            self.logger.warning(f"[{package}] {e}")
            outcome.reason = str(e)
            outcome.transition(LifecycleState.TIMED_OUT)
            return
        except Exception as e:
            self.logger.error(f"[{package}] Waiting for csv failed: {e}")
            outcome.fail(f"watch error: {e}")
            return

        outcome.phase = result.status.phase
        outcome.csv_name = result.status.name
        if result.timed_out:
            outcome.transition(LifecycleState.TIMED_OUT)
        elif result.status.phase == PHASE_SUCCEEDED:
            outcome.transition(LifecycleState.SUCCEEDED)
        else:
            outcome.fail(f"csv {result.status.name} phase {result.status.phase}")

    def cleanup(
        self,
        record: SubscriptionRecord,
        topology: NamespaceTopology,
        outcome: LifecycleOutcome,
        subscription_created: bool = True,
    ) -> None:
        """Best-effort, ordered teardown of everything the install created.

        Each step runs regardless of earlier failures. A resource that is
        already gone counts as absent, not as an error.
        """
        namespace = topology.install_namespace

        self._cleanup_step(outcome, 'delete_subscription', record.name,
                           self.client.delete_subscription, record.name, namespace)

        if subscription_created:
            self._cleanup_step(outcome, 'delete_csv', outcome.csv_name or '*',
                               self._delete_csv, outcome, namespace)
        else:
            outcome.record_cleanup('delete_csv', '-', 'skipped')

        self._cleanup_step(outcome, 'delete_operatorgroup', topology.group_name,
                           self.client.delete_operator_group, topology.group_name, namespace)

        for target in topology.extra_namespaces:
            self._cleanup_step(outcome, 'delete_namespace', target,
                               self.client.delete_namespace, target)

        self._cleanup_step(outcome, 'delete_namespace', namespace,
                           self.client.delete_namespace, namespace)

    def _delete_csv(self, outcome: LifecycleOutcome, namespace: str) -> None:
        """Delete the observed CSV, or the one a point-in-time read finds.

        Raises:
            NotFoundError: No CSV exists in the namespace
        """
        csv_name = outcome.csv_name
        if not csv_name:
            resources = self.client.read_status_resources(StatusSelector(), namespace)
            if not resources:
                raise NotFoundError(f"no csv in {namespace}")
            csv_name = resource_name(resources[0])
        self.client.delete_status_resource(csv_name, namespace)

    def _cleanup_step(self, outcome: LifecycleOutcome, name: str, target: str, fn, *args) -> None:
        try:
            fn(*args)
        except NotFoundError:
            self.logger.debug(f"[{outcome.package}] {name} {target}: already absent")
            outcome.record_cleanup(name, target, 'absent')
        except Exception as e:
            self.logger.warning(f"[{outcome.package}] {name} {target} failed: {e}")
            outcome.record_cleanup(name, target, 'failed', str(e))
        else:
            self.logger.debug(f"[{outcome.package}] {name} {target}: deleted")
            outcome.record_cleanup(name, target, 'deleted')
