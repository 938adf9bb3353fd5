"""Tests for watcher module."""

import sys
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from cluster import StatusSelector
from fakes import FakeEventStream, make_csv
from watcher import (
    StatusNotFoundError,
    StatusSnapshot,
    StatusWatcher,
    WatchCancelledError,
    WatchDeadline,
    WatchProtocolError,
    WatchStreamError,
    parse_event,
)


def _event(name, phase, event_type='MODIFIED', kind='ClusterServiceVersion'):
    return {'type': event_type, 'object': make_csv(name, phase, kind=kind)}


def _client(stream, resources=None):
    client = MagicMock()
    client.watch_status_resource.return_value = stream
    client.read_status_resources.return_value = resources or []
    return client


class TestWatchDeadline:
    """Tests for WatchDeadline validation."""

    def test_negative_timeout_raises(self):
        with pytest.raises(ValueError):
            WatchDeadline(timeout=-1)

    def test_zero_cadence_raises(self):
        with pytest.raises(ValueError):
            WatchDeadline(timeout=1, cadence=0)

    def test_zero_timeout_allowed(self):
        assert WatchDeadline(timeout=0).timeout == 0


class TestParseEvent:
    """Tests for parse_event."""

    def test_status_resource(self):
        snapshot = parse_event(_event('etcd.v1', 'Installing'))
        assert snapshot == StatusSnapshot(name='etcd.v1', phase='Installing')
        assert not snapshot.is_terminal

    @pytest.mark.parametrize('phase', ['Succeeded', 'Failed'])
    def test_terminal_phases(self, phase):
        assert parse_event(_event('etcd.v1', phase)).is_terminal

    def test_missing_phase(self):
        assert parse_event(_event('etcd.v1', None)).phase is None

    def test_wrong_kind_raises(self):
        with pytest.raises(WatchProtocolError) as exc_info:
            parse_event(_event('pod', 'Running', kind='Pod'))
        assert 'object-type Pod' in str(exc_info.value)

    def test_error_event_raises(self):
        with pytest.raises(WatchProtocolError):
            parse_event({'type': 'ERROR', 'object': {'kind': 'Status', 'code': 410}})

    def test_non_dict_raises(self):
        with pytest.raises(WatchProtocolError):
            parse_event('garbage')


class TestAwaitTerminal:
    """Tests for StatusWatcher.await_terminal."""

    def test_terminal_event_returns(self):
        stream = FakeEventStream([_event('etcd.v1', 'Installing'), _event('etcd.v1', 'Succeeded')])
        watcher = StatusWatcher(_client(stream))

        result = watcher.await_terminal(StatusSelector('etcd.v1'), 'ns', WatchDeadline(5, cadence=0.01))

        assert result.timed_out is False
        assert result.status == StatusSnapshot('etcd.v1', 'Succeeded')
        assert stream.closed

    def test_failed_phase_is_terminal(self):
        stream = FakeEventStream([_event('etcd.v1', 'Failed')])
        result = StatusWatcher(_client(stream)).await_terminal(
            StatusSelector(), 'ns', WatchDeadline(5, cadence=0.01))
        assert result.status.phase == 'Failed'
        assert not result.timed_out

    def test_first_terminal_event_wins(self):
        stream = FakeEventStream([_event('a.v1', 'Failed'), _event('a.v1', 'Succeeded')])
        result = StatusWatcher(_client(stream)).await_terminal(
            StatusSelector(), 'ns', WatchDeadline(5, cadence=0.01))
        assert result.status.phase == 'Failed'

    def test_events_slower_than_cadence_are_seen(self):
        stream = FakeEventStream([_event('etcd.v1', 'Succeeded')], delay=0.1)
        result = StatusWatcher(_client(stream)).await_terminal(
            StatusSelector(), 'ns', WatchDeadline(5, cadence=0.01))
        assert result.status.phase == 'Succeeded'

    def test_timeout_reads_snapshot(self):
        stream = FakeEventStream([_event('etcd.v1', 'Installing')])
        client = _client(stream, resources=[make_csv('etcd.v1', 'Installing')])

        start = time.monotonic()
        result = StatusWatcher(client).await_terminal(StatusSelector(), 'ns', WatchDeadline(0.2, cadence=0.05))

        assert time.monotonic() - start >= 0.2
        assert result.timed_out is True
        assert result.status == StatusSnapshot('etcd.v1', 'Installing')
        assert stream.closed

    def test_timeout_snapshot_may_be_terminal(self):
        """A terminal phase only visible by point-in-time read is still reported as timed out."""
        client = _client(FakeEventStream([]), resources=[make_csv('etcd.v1', 'Succeeded')])
        result = StatusWatcher(client).await_terminal(StatusSelector(), 'ns', WatchDeadline(0.05, cadence=0.01))
        assert result.timed_out is True
        assert result.status.phase == 'Succeeded'

    def test_timeout_without_resource_raises(self):
        client = _client(FakeEventStream([]))
        with pytest.raises(StatusNotFoundError):
            StatusWatcher(client).await_terminal(StatusSelector('missing'), 'ns', WatchDeadline(0.05, cadence=0.01))

    def test_zero_timeout_reads_immediately(self):
        stream = FakeEventStream([_event('etcd.v1', 'Succeeded')], delay=1)
        client = _client(stream, resources=[make_csv('etcd.v1', 'Pending')])

        deadline = WatchDeadline(0)
        start = time.monotonic()
        result = StatusWatcher(client).await_terminal(StatusSelector(), 'ns', deadline)
        elapsed = time.monotonic() - start

        assert result.timed_out is True
        assert result.status.phase == 'Pending'
        assert elapsed < deadline.cadence
        assert stream.finished

    def test_buffered_terminal_event_wins_at_deadline(self):
        """A terminal event queued before the deadline check is not lost to the fallback read."""
        stream = FakeEventStream([_event('etcd.v1', 'Installing'), _event('etcd.v1', 'Succeeded')])
        client = _client(stream, resources=[make_csv('etcd.v1', 'Installing')])
        readings = iter([0.0])

        def clock():
            try:
                return next(readings)
            except StopIteration:
                # Give the reader time to buffer both events, then expire
                time.sleep(0.1)
                return 100.0

        result = StatusWatcher(client, clock=clock).await_terminal(
            StatusSelector(), 'ns', WatchDeadline(1, cadence=0.5))

        assert result.timed_out is False
        assert result.status.phase == 'Succeeded'
        client.read_status_resources.assert_not_called()

    def test_reader_finished_when_returning(self):
        stream = FakeEventStream([_event('etcd.v1', 'Succeeded')])
        StatusWatcher(_client(stream)).await_terminal(StatusSelector(), 'ns', WatchDeadline(5, cadence=0.5))
        assert stream.closed
        assert stream.finished

    def test_stream_ending_early_waits_for_deadline(self):
        stream = FakeEventStream([_event('etcd.v1', 'Installing')], hold_open=False)
        client = _client(stream, resources=[make_csv('etcd.v1', 'Installing')])
        result = StatusWatcher(client).await_terminal(StatusSelector(), 'ns', WatchDeadline(0.1, cadence=0.02))
        assert result.timed_out is True

    def test_unexpected_kind_raises(self):
        stream = FakeEventStream([_event('pod', 'Running', kind='Pod')])
        with pytest.raises(WatchProtocolError):
            StatusWatcher(_client(stream)).await_terminal(StatusSelector(), 'ns', WatchDeadline(5, cadence=0.01))
        assert stream.closed

    def test_stream_failure_raises(self):
        stream = FakeEventStream([], error=RuntimeError("connection reset"))
        with pytest.raises(WatchStreamError) as exc_info:
            StatusWatcher(_client(stream)).await_terminal(StatusSelector(), 'ns', WatchDeadline(5, cadence=0.01))
        assert 'connection reset' in str(exc_info.value)

    def test_cancel_aborts_wait(self):
        stream = FakeEventStream([])
        cancel = threading.Event()
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        try:
            with pytest.raises(WatchCancelledError):
                StatusWatcher(_client(stream)).await_terminal(
                    StatusSelector(), 'ns', WatchDeadline(5, cadence=0.01), cancel)
        finally:
            timer.cancel()
        assert stream.closed

    def test_watch_uses_selector_and_namespace(self):
        stream = FakeEventStream([_event('etcd.v1', 'Succeeded')])
        client = _client(stream)
        selector = StatusSelector('etcd.v1')
        StatusWatcher(client).await_terminal(selector, 'opcap-etcd', WatchDeadline(5, cadence=0.01))
        client.watch_status_resource.assert_called_once_with(selector, 'opcap-etcd')
