"""Operator lifecycle: install, wait for a terminal status, clean up."""

from lifecycle.state import (
    CleanupStep,
    LifecycleError,
    LifecycleOutcome,
    LifecycleState,
    OutcomeStatus,
)
from lifecycle.driver import LifecycleDriver

__all__ = [
    'CleanupStep',
    'LifecycleDriver',
    'LifecycleError',
    'LifecycleOutcome',
    'LifecycleState',
    'OutcomeStatus',
]
