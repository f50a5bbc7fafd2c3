"""Shared test fixtures for the diagnostic agent tests."""

import heapq
import itertools
from typing import Any, Callable, Dict, List, Optional

import pytest

from diag_agent.communication.transport import Transport
from diag_agent.config import AgentConfig
from diag_agent.core.command_dispatcher import CommandDispatcher
from diag_agent.core.connection_state import ConnectionState
from diag_agent.core.errors import CollaboratorError, TransportError
from diag_agent.core.scheduler import Runner, Scheduler, TimerHandle
from diag_agent.monitoring import Profiler, SnapshotExporter, StatCollector


class VirtualTimerHandle(TimerHandle):

    def __init__(self, name: str, due: float):
        self.name = name
        self.due = due
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler(Scheduler):
    """Scheduler on a virtual clock that only moves when ``advance`` is called."""

    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None], name: str = "timer") -> TimerHandle:
        handle = VirtualTimerHandle(name, self.now + max(0.0, delay))
        heapq.heappush(self._queue, (handle.due, next(self._seq), handle, callback))
        return handle

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = due
            handle.fired = True
            callback()
        self.now = target

    def pending(self, name: Optional[str] = None) -> List[VirtualTimerHandle]:
        return sorted(
            (handle for _, _, handle, _ in self._queue
             if not handle.cancelled and (name is None or handle.name == name)),
            key=lambda handle: handle.due
        )


class InlineRunner(Runner):
    """Runs every job immediately on the calling thread."""

    def __init__(self):
        self.spawned: List[str] = []

    def spawn(self, job: Callable[[], None], name: str = "job") -> None:
        self.spawned.append(name)
        job()


class ManualRunner(Runner):
    """Keeps jobs until the test runs them."""

    def __init__(self):
        self.jobs: List[tuple] = []

    def spawn(self, job: Callable[[], None], name: str = "job") -> None:
        self.jobs.append((name, job))

    def run_pending(self) -> int:
        count = 0
        while self.jobs:
            _, job = self.jobs.pop(0)
            job()
            count += 1
        return count


class FakeTransport(Transport):
    """
    In-memory transport. ``outcome`` decides what ``open`` does:
    'open' fires the open event, 'fail' raises TransportError,
    'pending' leaves the transport connecting.
    """

    def __init__(self, url: str, headers: Dict[str, str], auth: Dict[str, Any], outcome: str = 'open'):
        super().__init__()
        self.url = url
        self.headers = headers
        self.auth = auth
        self.outcome = outcome
        self.sent: List[str] = []
        self.close_calls = 0

    def open(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        if self.outcome == 'open':
            self._notify_open()
        elif self.outcome == 'fail':
            self._set_state(ConnectionState.DISCONNECTED)
            raise TransportError("connection refused")

    def send(self, frame: str) -> None:
        if not self.is_open:
            raise TransportError("not open")
        self.sent.append(frame)

    def close(self) -> None:
        self.close_calls += 1
        if self.state != ConnectionState.DISCONNECTED:
            self._notify_close('closed by agent')

    def receive(self, frame: Any) -> None:
        self._notify_message(frame)

    def drop(self, reason: str = 'connection reset') -> None:
        self._notify_close(reason)

    def fail(self, reason: str = 'socket error') -> None:
        self._notify_error(reason)

    def go_half_open(self) -> None:
        """Socket died without telling anyone."""
        self._set_state(ConnectionState.CLOSING)


class FakeTransportFactory:

    def __init__(self):
        self.created: List[FakeTransport] = []
        self.outcomes: List[str] = []
        self.default_outcome = 'open'

    def __call__(self, url: str, headers: Dict[str, str], auth: Dict[str, Any]) -> FakeTransport:
        outcome = self.outcomes.pop(0) if self.outcomes else self.default_outcome
        transport = FakeTransport(url, headers, auth, outcome)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class FakeStatCollector(StatCollector):

    def __init__(self):
        self.calls: List[int] = []
        self.error: Optional[Exception] = None

    def sample(self, pid: int) -> Dict[str, Any]:
        self.calls.append(pid)
        if self.error:
            raise self.error
        return {"pid": 42, "ppid": 1, "cpu": 1.5, "ctime": 867, "elapsed": 6650, "timestamp": 864000000}


class FakeProfiler(Profiler):

    def __init__(self):
        self.started = 0
        self.stopped = 0
        self.active = False
        self.start_error: Optional[Exception] = None
        self.stop_error: Optional[Exception] = None

    def start_session(self) -> None:
        if self.start_error:
            raise self.start_error
        self.started += 1
        self.active = True

    def stop_session(self) -> Dict[str, Any]:
        if self.stop_error:
            raise self.stop_error
        if not self.active:
            raise CollaboratorError("no session")
        self.stopped += 1
        self.active = False
        return {"topExecutingFunctions": [{"functionName": "consume", "selfTime": 120.0}], "longFunctions": []}


class FakeSnapshotExporter(SnapshotExporter):

    def __init__(self):
        self.calls = 0
        self.error: Optional[Exception] = None

    def export(self) -> bytes:
        self.calls += 1
        if self.error:
            raise self.error
        return b'{"top": []}'


@pytest.fixture
def config():
    """Agent configuration with the standard defaults."""
    return AgentConfig(host="127.0.0.1", port=8080, secret="db3e1c6b", name="test-agent")


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def runner():
    return InlineRunner()


@pytest.fixture
def manual_runner():
    return ManualRunner()


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def stat_collector():
    return FakeStatCollector()


@pytest.fixture
def profiler():
    return FakeProfiler()


@pytest.fixture
def snapshot_exporter():
    return FakeSnapshotExporter()


@pytest.fixture
def open_transport():
    transport = FakeTransport("http://127.0.0.1:8080", {}, {})
    transport.open()
    return transport


@pytest.fixture
def dispatcher(config, scheduler, runner, stat_collector, profiler, snapshot_exporter):
    return CommandDispatcher(
        config,
        scheduler=scheduler,
        runner=runner,
        stat_collector=stat_collector,
        profiler=profiler,
        snapshot_exporter=snapshot_exporter
    )
