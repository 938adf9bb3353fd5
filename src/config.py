"""Audit configuration management.

Configuration is assembled from three layers:
- Built-in defaults (AuditConfig field defaults)
- An optional YAML file (--config, or $OPCAP_CONFIG)
- Environment overrides (OPCAP_* variables, KUBECONFIG)

The merge order is: defaults → file → environment; CLI flags are applied
on top by the caller.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_AUDIT_PLAN = ['OperatorInstall']


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class AuditConfig:
    """Settings for one audit run.

    Attributes:
        catalog_source: CatalogSource whose packages are audited
        catalog_namespace: Namespace holding the CatalogSource
        packages: Optional package filter (empty = whole catalog)
        audit_plan: Ordered check names run against every package
        wait_time: Seconds to wait for a CSV to reach a terminal phase
        poll_interval: Watcher tick cadence in seconds
        namespace_prefix: Prefix for generated namespaces
        kubeconfig: Path to kubeconfig ('' = client default)
        in_cluster: Use in-cluster service account config
    """
    catalog_source: str = 'certified-operators'
    catalog_namespace: str = 'openshift-marketplace'
    packages: list = field(default_factory=list)
    audit_plan: list = field(default_factory=lambda: list(DEFAULT_AUDIT_PLAN))
    wait_time: float = 60.0
    poll_interval: float = 1.0
    namespace_prefix: str = 'opcap'
    kubeconfig: str = field(default_factory=lambda: os.environ.get('KUBECONFIG', ''))
    in_cluster: bool = False

    def __post_init__(self):
        if isinstance(self.packages, str):
            self.packages = _split_list(self.packages)
        if isinstance(self.audit_plan, str):
            self.audit_plan = _split_list(self.audit_plan)
        self.validate()

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: On any invalid value
        """
        if not self.catalog_source:
            raise ConfigError("catalog_source must not be empty")
        if not self.catalog_namespace:
            raise ConfigError("catalog_namespace must not be empty")
        if not self.audit_plan:
            raise ConfigError("audit_plan must list at least one check")
        try:
            self.wait_time = float(self.wait_time)
            self.poll_interval = float(self.poll_interval)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"wait_time and poll_interval must be numbers: {e}") from e
        if self.wait_time < 0:
            raise ConfigError(f"wait_time must be >= 0, got {self.wait_time}")
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be > 0, got {self.poll_interval}")
        if not self.namespace_prefix:
            raise ConfigError("namespace_prefix must not be empty")

    @classmethod
    def from_dict(cls, data: dict) -> 'AuditConfig':
        """Build config from a parsed YAML mapping.

        Raises:
            ConfigError: On unknown keys or invalid values
        """
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {unknown}. Available: {sorted(known)}")
        return cls(**data)


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    return data


def _env_overrides() -> dict:
    """Collect OPCAP_* environment overrides."""
    overrides: dict = {}
    if source := os.environ.get('OPCAP_CATALOG_SOURCE'):
        overrides['catalog_source'] = source
    if namespace := os.environ.get('OPCAP_CATALOG_NAMESPACE'):
        overrides['catalog_namespace'] = namespace
    if wait_time := os.environ.get('OPCAP_WAIT_TIME'):
        overrides['wait_time'] = wait_time
    if packages := os.environ.get('OPCAP_PACKAGES'):
        overrides['packages'] = packages
    return overrides


def load_audit_config(path: Optional[Path] = None) -> AuditConfig:
    """Load audit configuration.

    Resolution order for the config file:
    1. Explicit path argument
    2. $OPCAP_CONFIG environment variable
    3. No file (defaults only)

    Raises:
        ConfigError: If the file is missing or contains invalid values
    """
    if path is None and (env_path := os.environ.get('OPCAP_CONFIG')):
        path = Path(env_path)

    data: dict = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file {path} does not exist")
        try:
            data = _parse_yaml(path)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    data.update(_env_overrides())
    return AuditConfig.from_dict(data)
