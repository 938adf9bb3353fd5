"""Lifecycle state tracking for one operator under audit.

Tracks the state machine position, the observed status and the per-step
cleanup record. The finished LifecycleOutcome is the only artifact handed
to reporting.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from common import SubscriptionRecord


class LifecycleError(Exception):
    """Illegal lifecycle state transition."""


class LifecycleState(str, Enum):
    CREATED = 'created'
    INSTALLING = 'installing'
    AWAITING_STATUS = 'awaiting_status'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'
    CLEANING_UP = 'cleaning_up'
    DONE = 'done'


_TRANSITIONS: dict[LifecycleState, frozenset] = {
    LifecycleState.CREATED: frozenset({LifecycleState.INSTALLING, LifecycleState.FAILED}),
    LifecycleState.INSTALLING: frozenset({LifecycleState.AWAITING_STATUS, LifecycleState.FAILED}),
    LifecycleState.AWAITING_STATUS: frozenset({
        LifecycleState.SUCCEEDED, LifecycleState.FAILED, LifecycleState.TIMED_OUT,
    }),
    LifecycleState.SUCCEEDED: frozenset({LifecycleState.CLEANING_UP}),
    LifecycleState.FAILED: frozenset({LifecycleState.CLEANING_UP}),
    LifecycleState.TIMED_OUT: frozenset({LifecycleState.CLEANING_UP}),
    LifecycleState.CLEANING_UP: frozenset({LifecycleState.DONE}),
    LifecycleState.DONE: frozenset(),
}


class OutcomeStatus(str, Enum):
    """Verdict of one lifecycle, independent of cleanup."""
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'


_VERDICT_STATES = {
    LifecycleState.SUCCEEDED: OutcomeStatus.SUCCEEDED,
    LifecycleState.FAILED: OutcomeStatus.FAILED,
    LifecycleState.TIMED_OUT: OutcomeStatus.TIMED_OUT,
}


@dataclass
class CleanupStep:
    """Result of one cleanup step.

    Attributes:
        name: Step identifier (e.g., 'delete_subscription')
        target: Resource the step acted on
        status: 'deleted', 'absent', 'skipped' or 'failed'
        error: Error message if failed
    """
    name: str
    target: str
    status: str
    error: Optional[str] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'name': self.name, 'target': self.target, 'status': self.status}
        if self.error is not None:
            d['error'] = self.error
        return d


@dataclass
class LifecycleOutcome:
    """Result of auditing one subscription.

    Attributes:
        record: Subscription that was audited
        status: Verdict (succeeded, failed, timed_out)
        phase: Last known CSV phase
        csv_name: Name of the observed CSV, if any
        reason: Why the lifecycle failed, if it did
        cleanup: Per-step cleanup results
        history: States visited, in order
        started_at: Timestamp when the lifecycle started
        completed_at: Timestamp when cleanup finished
    """
    record: SubscriptionRecord
    status: OutcomeStatus = OutcomeStatus.FAILED
    phase: Optional[str] = None
    csv_name: Optional[str] = None
    reason: Optional[str] = None
    cleanup: list[CleanupStep] = field(default_factory=list)
    history: list[LifecycleState] = field(default_factory=lambda: [LifecycleState.CREATED])
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    @property
    def state(self) -> LifecycleState:
        return self.history[-1]

    def transition(self, new_state: LifecycleState) -> None:
        """Move to new_state.

        Raises:
            LifecycleError: If the transition is not allowed
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise LifecycleError(f"Illegal transition {self.state.value} -> {new_state.value}")
        if self.state == LifecycleState.CREATED:
            self.started_at = time.time()
        self.history.append(new_state)
        if new_state in _VERDICT_STATES:
            self.status = _VERDICT_STATES[new_state]
        elif new_state == LifecycleState.DONE:
            self.completed_at = time.time()

    def fail(self, reason: str) -> None:
        self.reason = reason
        self.transition(LifecycleState.FAILED)

    def record_cleanup(self, name: str, target: str, status: str, error: Optional[str] = None) -> CleanupStep:
        step = CleanupStep(name=name, target=target, status=status, error=error)
        self.cleanup.append(step)
        return step

    @property
    def package(self) -> str:
        return self.record.package

    @property
    def channel(self) -> str:
        return self.record.channel

    @property
    def install_mode(self) -> str:
        return self.record.install_mode.value

    @property
    def timed_out(self) -> bool:
        return self.status == OutcomeStatus.TIMED_OUT

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED

    @property
    def cleanup_errors(self) -> list[str]:
        return [f"{step.name} {step.target}: {step.error}" for step in self.cleanup if step.status == 'failed']

    @property
    def cleaned_up(self) -> bool:
        return not self.cleanup_errors

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'package': self.package,
            'channel': self.channel,
            'install_mode': self.install_mode,
            'status': self.status.value,
            'timed_out': self.timed_out,
            'cleanup_errors': self.cleanup_errors,
        }
        if self.phase is not None:
            d['phase'] = self.phase
        if self.csv_name is not None:
            d['csv'] = self.csv_name
        if self.reason is not None:
            d['reason'] = self.reason
        if self.duration is not None:
            d['duration'] = round(self.duration, 2)
        return d
