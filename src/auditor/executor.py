"""Audit plan execution.

Builds one AuditJob per catalog subscription, queues them, and runs each
job's checks in order against the lifecycle driver. Jobs run one at a time
in enqueue order; every job yields exactly one LifecycleOutcome.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Optional

from auditor.checks import CheckName, UnknownCheckError, get_check, validate_plan
from auditor.queue import WorkQueue
from cluster import ClusterClient
from common import SubscriptionRecord
from config import DEFAULT_AUDIT_PLAN, ConfigError
from lifecycle import LifecycleDriver, LifecycleOutcome, LifecycleState, OutcomeStatus


class PackageNotFoundError(ConfigError):
    """Filtered packages are missing from the catalog."""

    def __init__(self, missing: list[str], catalog_source: str):
        self.missing = missing
        self.catalog_source = catalog_source
        super().__init__(
            f"Some or all filters are missing from the catalog source {catalog_source}: "
            f"{', '.join(missing)}"
        )


@dataclass(frozen=True)
class AuditJob:
    """A subscription plus the ordered checks to run against it."""
    record: SubscriptionRecord
    plan: tuple[str, ...]


class AuditPlanExecutor:
    """Builds and runs the audit work queue.

    Args:
        client: Cluster client used for catalog listing
        driver: Lifecycle driver the checks run against
        logger: Logger for this executor (defaults to the module logger)
        cancel: Optional event passed to every check
    """

    def __init__(
        self,
        client: ClusterClient,
        driver: LifecycleDriver,
        logger: Optional[logging.Logger] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.client = client
        self.driver = driver
        self.logger = logger or logging.getLogger(__name__)
        self.cancel = cancel

    def build_queue(
        self,
        catalog_source: str,
        catalog_namespace: str,
        filter_packages: Optional[Iterable[str]] = None,
        audit_plan: Optional[Iterable[str]] = None,
    ) -> WorkQueue[AuditJob]:
        """List the catalog and queue one job per subscription candidate.

        Raises:
            UnknownCheckError: The plan names an unregistered check
            PackageNotFoundError: A filtered package is not in the catalog
            ClusterError: Catalog listing failed
        """
        plan = tuple(audit_plan or DEFAULT_AUDIT_PLAN)
        validate_plan(plan)

        records = self.client.list_catalog_entries(catalog_source, catalog_namespace)
        filters = list(filter_packages or [])
        if filters:
            records = self._filter(records, filters, catalog_source)

        queue: WorkQueue[AuditJob] = WorkQueue(capacity=len(records))
        for record in records:
            queue.put(AuditJob(record=record, plan=plan))
        queue.close()

        self.logger.info(f"Queued {len(queue)} audit job(s) from catalog {catalog_source}")
        return queue

    @staticmethod
    def _filter(
        records: list[SubscriptionRecord],
        filters: list[str],
        catalog_source: str,
    ) -> list[SubscriptionRecord]:
        """Keep records whose package is in filters, in filter order.

        Raises:
            PackageNotFoundError: Listing every filter entry with no match
        """
        by_package: dict[str, list[SubscriptionRecord]] = {}
        for record in records:
            by_package.setdefault(record.package, []).append(record)

        missing = [name for name in filters if name not in by_package]
        if missing:
            raise PackageNotFoundError(missing, catalog_source)

        selected: list[SubscriptionRecord] = []
        for name in dict.fromkeys(filters):
            selected.extend(by_package[name])
        return selected

    def run(self, queue: WorkQueue[AuditJob]) -> list[LifecycleOutcome]:
        """Drain the queue and return one outcome per job, in order."""
        outcomes = []
        total = len(queue)
        for index, job in enumerate(queue.drain(), start=1):
            self.logger.info(f"Audit {index}/{total}: {job.record.package} ({', '.join(job.plan)})")
            outcomes.append(self.run_job(job))
        return outcomes

    def run_job(self, job: AuditJob) -> LifecycleOutcome:
        """Run every check in a job's plan and reduce them to one outcome.

        The job outcome is the first check outcome that did not succeed, or
        the last outcome when all succeeded.
        """
        try:
            checks = [get_check(name) for name in job.plan]
        except UnknownCheckError as e:
            self.logger.error(f"[{job.record.package}] {e}")
            return _failed_outcome(job.record, f"configuration error: {e}")
        if not checks:
            return _failed_outcome(job.record, "configuration error: empty audit plan")

        outcomes: list[LifecycleOutcome] = []
        for check in checks:
            self.logger.debug(f"[{job.record.package}] Running check {check.name.value}")
            try:
                outcome = check.run(self.driver, job.record, self.cancel)
            except Exception as e:
                self.logger.exception(f"[{job.record.package}] Check {check.name.value} raised")
                outcome = _failed_outcome(job.record, f"{check.name.value} error: {e}")
            outcomes.append(outcome)

        for outcome in outcomes:
            if outcome.status != OutcomeStatus.SUCCEEDED:
                return outcome
        return outcomes[-1]

    def preview(self, queue: WorkQueue[AuditJob]) -> bool:
        """Show what would be audited without touching the cluster. Returns True."""
        jobs = queue.peek()

        print("")
        print("═══════════════════════════════════════════════════════════════")
        print("  DRY-RUN: operator audit")
        print("═══════════════════════════════════════════════════════════════")
        print("")

        for job in jobs:
            record = job.record
            print(f"  [ OK ] {record.package}")
            print(f"         Channel: {record.channel}")
            print(f"         Install mode: {record.install_mode.value}")
            print(f"         Catalog: {record.catalog_source} ({record.catalog_namespace})")
            print(f"         Checks: {', '.join(CheckName.parse(name).value for name in job.plan)}")
            print("")

        print("═══════════════════════════════════════════════════════════════")
        print(f"  Summary: {len(jobs)} operator(s) to audit")
        print("  Mode: DRY-RUN (no changes made)")
        print("═══════════════════════════════════════════════════════════════")
        print("")
        print("Remove --dry-run to execute the audit.")
        print("")

        return True


def _failed_outcome(record: SubscriptionRecord, reason: str) -> LifecycleOutcome:
    """Finished Failed outcome, with no cleanup steps, for a job whose checks produced none."""
    outcome = LifecycleOutcome(record=record)
    outcome.fail(reason)
    outcome.transition(LifecycleState.CLEANING_UP)
    outcome.transition(LifecycleState.DONE)
    return outcome
