"""Tests for AuditPlanExecutor."""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from auditor import AuditJob, AuditPlanExecutor, PackageNotFoundError, UnknownCheckError
from cluster import ClusterError
from common import InstallMode
from fakes import FakeClusterClient, make_record
from lifecycle import LifecycleDriver, LifecycleOutcome, LifecycleState, OutcomeStatus


def _executor(client, wait_time=2.0):
    driver = LifecycleDriver(client, wait_time=wait_time, cadence=0.01)
    return AuditPlanExecutor(client, driver)


class TestBuildQueue:
    """Tests for work queue construction."""

    def test_whole_catalog(self, fake_client):
        queue = _executor(fake_client).build_queue('test-catalog', 'openshift-marketplace')

        jobs = queue.peek()
        assert [job.record.package for job in jobs] == ['pkga', 'pkgb', 'pkgc', 'pkgd']
        assert all(job.plan == ('OperatorInstall',) for job in jobs)
        assert queue.closed
        assert queue.capacity == 4

    def test_filtered(self, fake_client):
        queue = _executor(fake_client).build_queue(
            'test-catalog', 'openshift-marketplace', filter_packages=['pkgc', 'pkga'])
        assert [job.record.package for job in queue.peek()] == ['pkgc', 'pkga']

    def test_filter_duplicates_collapsed(self, fake_client):
        queue = _executor(fake_client).build_queue(
            'test-catalog', 'openshift-marketplace', filter_packages=['pkgb', 'pkgb'])
        assert len(queue) == 1

    def test_missing_filter_raises(self, fake_client):
        with pytest.raises(PackageNotFoundError) as exc_info:
            _executor(fake_client).build_queue(
                'test-catalog', 'openshift-marketplace', filter_packages=['pkga', 'nope', 'gone'])
        assert exc_info.value.missing == ['nope', 'gone']
        assert 'missing from the catalog source test-catalog' in str(exc_info.value)

    def test_other_catalog_is_empty(self, fake_client):
        queue = _executor(fake_client).build_queue('other-catalog', 'openshift-marketplace')
        assert len(queue) == 0

    def test_unknown_check_fails_before_listing(self, fake_client):
        with pytest.raises(UnknownCheckError):
            _executor(fake_client).build_queue(
                'test-catalog', 'openshift-marketplace', audit_plan=['OperatorInstall', 'Bogus'])
        assert fake_client.called('list_catalog_entries') == []

    def test_listing_error_propagates(self, fake_client):
        fake_client.fail_on['list_catalog_entries'] = ClusterError("connection refused")
        with pytest.raises(ClusterError):
            _executor(fake_client).build_queue('test-catalog', 'openshift-marketplace')


class TestRun:
    """Tests for running the work queue."""

    def test_one_outcome_per_job_in_order(self, fake_client):
        executor = _executor(fake_client)
        queue = executor.build_queue('test-catalog', 'openshift-marketplace')

        outcomes = executor.run(queue)

        assert [o.package for o in outcomes] == ['pkga', 'pkgb', 'pkgc', 'pkgd']
        assert all(o.status == OutcomeStatus.SUCCEEDED for o in outcomes)
        assert all(o.state == LifecycleState.DONE for o in outcomes)
        assert fake_client.namespaces == set()

    def test_failure_does_not_stop_later_jobs(self, catalog):
        client = FakeClusterClient(catalog=catalog)
        client.fail_on['create_operator_group'] = ClusterError("forbidden")
        executor = _executor(client)

        outcomes = executor.run(executor.build_queue('test-catalog', 'openshift-marketplace'))

        assert len(outcomes) == 4
        assert all(o.status == OutcomeStatus.FAILED for o in outcomes)

    def test_timed_out_jobs(self, catalog):
        client = FakeClusterClient(catalog=catalog, install_phase='Installing')
        executor = _executor(client, wait_time=0.05)

        outcomes = executor.run(executor.build_queue(
            'test-catalog', 'openshift-marketplace', filter_packages=['pkga']))

        assert [o.status for o in outcomes] == [OutcomeStatus.TIMED_OUT]

    def test_unknown_check_in_job_gives_failed_outcome(self, fake_client):
        executor = _executor(fake_client)
        job = AuditJob(record=make_record('pkga'), plan=('Bogus',))

        outcome = executor.run_job(job)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.reason.startswith('configuration error:')
        assert fake_client.called('create_namespace') == []
        assert outcome.state == LifecycleState.DONE
        assert outcome.cleanup == []
        assert outcome.completed_at is not None
        assert outcome.duration is not None

    def test_check_exception_gives_failed_outcome(self, fake_client):
        executor = _executor(fake_client)
        job = AuditJob(record=make_record('pkga'), plan=('OperatorInstall',))

        with patch.object(executor.driver, 'run', side_effect=RuntimeError("kaboom")):
            outcome = executor.run_job(job)

        assert outcome.status == OutcomeStatus.FAILED
        assert 'kaboom' in outcome.reason
        assert outcome.state == LifecycleState.DONE

    def test_first_non_succeeded_outcome_wins(self, fake_client):
        record = make_record('pkga')
        good = LifecycleOutcome(record=record, status=OutcomeStatus.SUCCEEDED)
        bad = LifecycleOutcome(record=record, status=OutcomeStatus.TIMED_OUT)
        driver = MagicMock()
        driver.run.side_effect = [good, bad]
        executor = AuditPlanExecutor(fake_client, driver)

        outcome = executor.run_job(AuditJob(record=record, plan=('OperatorInstall', 'OperatorInstall')))

        assert outcome is bad

    def test_cancel_is_passed_to_checks(self, fake_client):
        driver = MagicMock()
        cancel = object()
        executor = AuditPlanExecutor(fake_client, driver, cancel=cancel)
        record = make_record('pkga')

        executor.run_job(AuditJob(record=record, plan=('OperatorInstall',)))

        driver.run.assert_called_once_with(record, cancel)


class TestPreview:
    """Tests for dry-run preview."""

    def test_preview_lists_jobs(self, fake_client, capsys):
        executor = _executor(fake_client)
        queue = executor.build_queue('test-catalog', 'openshift-marketplace', filter_packages=['pkgd'])

        assert executor.preview(queue) is True

        out = capsys.readouterr().out
        assert 'DRY-RUN' in out
        assert 'pkgd' in out
        assert 'MultiNamespace' in out
        assert 'Summary: 1 operator(s) to audit' in out
        assert fake_client.called('create_namespace') == []

    def test_preview_does_not_drain(self, fake_client):
        executor = _executor(fake_client)
        queue = executor.build_queue('test-catalog', 'openshift-marketplace')
        executor.preview(queue)
        assert len(list(queue.drain())) == 4

    def test_install_mode_shown(self):
        client = FakeClusterClient(catalog=[make_record('solo', InstallMode.ALL_NAMESPACES)])
        executor = _executor(client)
        queue = executor.build_queue('test-catalog', 'openshift-marketplace')
        assert queue.peek()[0].record.install_mode is InstallMode.ALL_NAMESPACES
