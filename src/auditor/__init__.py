"""Audit plan engine: work queue construction and check execution."""

from auditor.checks import CheckName, UnknownCheckError, get_check, list_checks, validate_plan
from auditor.executor import AuditJob, AuditPlanExecutor, PackageNotFoundError
from auditor.queue import QueueClosedError, QueueFullError, WorkQueue

__all__ = [
    'AuditJob',
    'AuditPlanExecutor',
    'CheckName',
    'PackageNotFoundError',
    'QueueClosedError',
    'QueueFullError',
    'UnknownCheckError',
    'WorkQueue',
    'get_check',
    'list_checks',
    'validate_plan',
]
