"""Registry of capability checks an audit plan can name.

Check names form a closed set (CheckName). Plans are validated against
the registry when the work queue is built, so an unknown name fails
before any job runs.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from common import SubscriptionRecord
from config import ConfigError
from lifecycle import LifecycleDriver, LifecycleOutcome


class UnknownCheckError(ConfigError):
    """An audit plan names a check that is not registered."""

    def __init__(self, names: list[str]):
        self.names = names
        available = list_checks()
        super().__init__(f"Unknown check(s): {', '.join(names)}. Available: {available}")


class CheckName(str, Enum):
    OPERATOR_INSTALL = 'OperatorInstall'

    @classmethod
    def parse(cls, value: 'str | CheckName') -> 'CheckName':
        """Match a check by value or enum name, case-insensitively.

        Raises:
            UnknownCheckError: If nothing matches
        """
        if isinstance(value, cls):
            return value
        wanted = str(value).strip().lower().replace('-', '_')
        for check in cls:
            if wanted in (check.value.lower(), check.name.lower()):
                return check
        raise UnknownCheckError([str(value)])


CheckFn = Callable[[LifecycleDriver, SubscriptionRecord, Optional[threading.Event]], LifecycleOutcome]


@dataclass(frozen=True)
class Check:
    """A registered check."""
    name: CheckName
    description: str
    run: CheckFn


_checks: dict[CheckName, Check] = {}


def register_check(name: CheckName, description: str) -> Callable[[CheckFn], CheckFn]:
    """Decorator to register a check function under a CheckName."""
    def decorator(fn: CheckFn) -> CheckFn:
        _checks[name] = Check(name=name, description=description, run=fn)
        return fn
    return decorator


def get_check(name: 'str | CheckName') -> Check:
    """Get a registered check.

    Raises:
        UnknownCheckError: If the name is unknown or has no implementation
    """
    check_name = CheckName.parse(name)
    if check_name not in _checks:
        raise UnknownCheckError([str(name)])
    return _checks[check_name]


def list_checks() -> list[str]:
    """List registered check names."""
    return sorted(check.value for check in _checks)


def describe_checks() -> list[tuple[str, str]]:
    return [(check.name.value, check.description) for check in sorted(_checks.values(), key=lambda c: c.name.value)]


def validate_plan(plan: Iterable['str | CheckName']) -> tuple[CheckName, ...]:
    """Resolve every name in a plan.

    Raises:
        UnknownCheckError: Listing every unknown name in the plan
    """
    resolved = []
    unknown = []
    for name in plan:
        try:
            resolved.append(get_check(name).name)
        except UnknownCheckError:
            unknown.append(str(name))
    if unknown:
        raise UnknownCheckError(unknown)
    return tuple(resolved)


@register_check(CheckName.OPERATOR_INSTALL, 'Install the operator, wait for its CSV, then clean up')
def operator_install(
    driver: LifecycleDriver,
    record: SubscriptionRecord,
    cancel: Optional[threading.Event] = None,
) -> LifecycleOutcome:
    return driver.run(record, cancel)
