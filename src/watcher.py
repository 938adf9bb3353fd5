"""Bounded wait for a status resource to reach a terminal phase.

The watcher multiplexes two sources on a single thread: a queue fed by a
reader thread draining the live event stream, and the deadline clock. Each
tick waits on the queue for at most one cadence interval, so events that
arrive between ticks stay buffered and nothing busy-spins. When the
deadline passes it takes any terminal event already buffered, and otherwise
falls back to one point-in-time read.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from cluster import (
    STATUS_KIND,
    ClusterClient,
    EventStream,
    StatusSelector,
    resource_name,
    status_phase,
)


PHASE_SUCCEEDED = 'Succeeded'
PHASE_FAILED = 'Failed'
TERMINAL_PHASES = frozenset({PHASE_SUCCEEDED, PHASE_FAILED})

DEFAULT_CADENCE = 1.0

# Reader thread markers
_END = object()


class WatchError(Exception):
    """Base error for status watching."""


class WatchProtocolError(WatchError):
    """The event stream delivered something other than a status resource."""


class WatchCancelledError(WatchError):
    """The caller cancelled the wait."""


class WatchStreamError(WatchError):
    """The event stream failed while being read."""


class StatusNotFoundError(WatchError):
    """No matching status resource exists at the deadline."""


@dataclass(frozen=True)
class WatchDeadline:
    """How long to wait and how often to tick.

    Attributes:
        timeout: Seconds until the deadline (0 = read immediately)
        cadence: Seconds between ticks
    """
    timeout: float
    cadence: float = DEFAULT_CADENCE

    def __post_init__(self):
        if self.timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {self.timeout}")
        if self.cadence <= 0:
            raise ValueError(f"cadence must be > 0, got {self.cadence}")


@dataclass(frozen=True)
class StatusSnapshot:
    """Name and phase of one observed status resource."""
    name: Optional[str]
    phase: Optional[str]

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @classmethod
    def from_resource(cls, resource: dict) -> 'StatusSnapshot':
        return cls(name=resource_name(resource), phase=status_phase(resource))


@dataclass(frozen=True)
class WatchResult:
    """Outcome of await_terminal.

    Attributes:
        status: Terminal status, or the point-in-time snapshot on timeout
        timed_out: True when the deadline passed before a terminal event
    """
    status: StatusSnapshot
    timed_out: bool


def parse_event(event: object) -> StatusSnapshot:
    """Extract the status snapshot carried by a watch event.

    Raises:
        WatchProtocolError: If the payload is not a status resource
    """
    if not isinstance(event, dict):
        raise WatchProtocolError(f"received unexpected event from watch: {type(event).__name__}")
    obj = event.get('object')
    kind = obj.get('kind') if isinstance(obj, dict) else type(obj).__name__
    if event.get('type') == 'ERROR' or kind != STATUS_KIND:
        raise WatchProtocolError(
            f"received unexpected object type from watch: "
            f"event-type {event.get('type')}, object-type {kind}"
        )
    return StatusSnapshot.from_resource(obj)


class _StreamReader(threading.Thread):
    """Moves every event of a stream into a queue until the stream ends."""

    def __init__(self, stream: EventStream, events: queue.Queue):
        super().__init__(name='status-watch-reader', daemon=True)
        self.stream = stream
        self.events = events

    def run(self) -> None:
        try:
            for event in self.stream:
                self.events.put(event)
        except Exception as e:
            self.events.put(WatchStreamError(f"watch stream failed: {e}"))
        finally:
            self.events.put(_END)


class StatusWatcher:
    """Waits for a status resource to reach Succeeded or Failed.

    Args:
        client: Cluster client providing watch and read operations
        logger: Logger for this watcher (defaults to the module logger)
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        client: ClusterClient,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock

    def await_terminal(
        self,
        selector: StatusSelector,
        namespace: str,
        deadline: WatchDeadline,
        cancel: Optional[threading.Event] = None,
    ) -> WatchResult:
        """Wait for the first terminal status or the deadline.

        Args:
            selector: Which status resources to watch
            namespace: Namespace to watch in
            deadline: Timeout and tick cadence
            cancel: Optional event; setting it aborts the wait within one tick

        Returns:
            WatchResult with timed_out=False for a terminal event, or the
            snapshot of the first matching resource with timed_out=True

        Raises:
            StatusNotFoundError: Deadline passed and nothing matches
            WatchProtocolError: An event carried an unexpected payload
            WatchStreamError: The stream failed before the deadline
            WatchCancelledError: cancel was set
        """
        expires_at = self.clock() + deadline.timeout
        events: queue.Queue = queue.Queue()
        stream = self.client.watch_status_resource(selector, namespace)
        self.logger.debug(f"Watching csv {selector} in {namespace} for up to {deadline.timeout}s")
        reader = _StreamReader(stream, events)

        try:
            reader.start()
            stream_open = True

            while True:
                if cancel is not None and cancel.is_set():
                    raise WatchCancelledError(f"wait for csv {selector} in {namespace} cancelled")

                remaining = expires_at - self.clock()
                if remaining <= 0:
                    buffered = self._drain_buffered(events)
                    if buffered is not None:
                        return WatchResult(status=buffered, timed_out=False)
                    return self._read_snapshot(selector, namespace)

                tick = min(deadline.cadence, remaining)
                if not stream_open:
                    # Nothing more can arrive; only the deadline or cancel remain
                    if cancel is not None:
                        cancel.wait(tick)
                    else:
                        time.sleep(tick)
                    continue

                try:
                    item = events.get(timeout=tick)
                except queue.Empty:
                    continue

                if item is _END:
                    self.logger.debug(f"Watch stream for csv {selector} ended before deadline")
                    stream_open = False
                    continue

                snapshot = self._consume(item)
                if snapshot.is_terminal:
                    return WatchResult(status=snapshot, timed_out=False)
        finally:
            stream.close()
            if reader.is_alive():
                reader.join(deadline.cadence)
            if reader.is_alive():
                self.logger.warning(f"Watch reader for csv {selector} in {namespace} still running after close")

    def _consume(self, item: object) -> StatusSnapshot:
        if isinstance(item, WatchStreamError):
            raise item
        snapshot = parse_event(item)
        self.logger.debug(f"csv {snapshot.name} phase: {snapshot.phase}")
        return snapshot

    def _drain_buffered(self, events: queue.Queue) -> Optional[StatusSnapshot]:
        """Return the first terminal status already buffered, without blocking."""
        while True:
            try:
                item = events.get_nowait()
            except queue.Empty:
                return None
            if item is _END:
                continue
            snapshot = self._consume(item)
            if snapshot.is_terminal:
                return snapshot

    def _read_snapshot(self, selector: StatusSelector, namespace: str) -> WatchResult:
        resources = self.client.read_status_resources(selector, namespace)
        if not resources:
            raise StatusNotFoundError(f"no csv matching {selector} in {namespace}")
        snapshot = StatusSnapshot.from_resource(resources[0])
        self.logger.info(f"Timed out waiting for csv {snapshot.name}; last phase: {snapshot.phase}")
        return WatchResult(status=snapshot, timed_out=True)
