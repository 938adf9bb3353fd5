"""Shared pytest fixtures for opcap tests."""

import os
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from fakes import FakeClusterClient, make_record  # noqa: E402
from common import InstallMode  # noqa: E402


def _has_cluster():
    """Check if a kubeconfig for a real cluster is available."""
    kubeconfig = os.environ.get('KUBECONFIG') or str(Path.home() / '.kube' / 'config')
    return Path(kubeconfig).is_file() and os.environ.get('OPCAP_INTEGRATION') == '1'


def pytest_configure(config):
    config.addinivalue_line("markers", "requires_cluster: test needs a live cluster with OLM")


def pytest_collection_modifyitems(config, items):
    """Skip tests marked with requires_cluster when no cluster is available."""
    if _has_cluster():
        return
    skip_marker = pytest.mark.skip(reason="requires cluster (set KUBECONFIG and OPCAP_INTEGRATION=1)")
    for item in items:
        if "requires_cluster" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def catalog():
    """Catalog with one package per install mode."""
    return [
        make_record('pkga', InstallMode.ALL_NAMESPACES),
        make_record('pkgb', InstallMode.OWN_NAMESPACE),
        make_record('pkgc', InstallMode.SINGLE_NAMESPACE),
        make_record('pkgd', InstallMode.MULTI_NAMESPACE),
    ]


@pytest.fixture
def fake_client(catalog):
    """In-memory cluster whose CSVs succeed immediately."""
    return FakeClusterClient(catalog=catalog)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep OPCAP_* settings from the developer's shell out of unit tests."""
    for key in list(os.environ):
        if key.startswith('OPCAP_') and key != 'OPCAP_INTEGRATION':
            monkeypatch.delenv(key, raising=False)
