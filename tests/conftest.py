import sys
import threading
from pathlib import Path

import pytest

# Ensure repository root is on sys.path so 'meshbench' imports without installing
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from meshbench.config import Config, GroupConfig  # noqa: E402
from meshbench.remote import RemoteExecutor, RemoteResult  # noqa: E402


class FakeExecutor(RemoteExecutor):
    """Records every call; answers from registered (substring, handler) rules.

    A handler is either a RemoteResult or a callable(host, command) returning one.
    Unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.calls = []
        self.copies = []
        self.rules = []
        self.copy_handler = None
        self._lock = threading.Lock()

    def on(self, substring, handler):
        self.rules.append((substring, handler))
        return self

    def run(self, host, command):
        with self._lock:
            self.calls.append((host, command))
        for substring, handler in self.rules:
            if substring in command:
                return handler(host, command) if callable(handler) else handler
        return RemoteResult()

    def copy_from(self, host, remote_glob, local_dir):
        with self._lock:
            self.copies.append((host, remote_glob, local_dir))
        if self.copy_handler:
            return self.copy_handler(host, remote_glob, local_dir)
        return RemoteResult()

    def commands_for(self, host):
        return [cmd for h, cmd in self.calls if h == host]

    def calls_matching(self, substring):
        return [(h, cmd) for h, cmd in self.calls if substring in cmd]


class FakeClock:
    """Clock that only advances when the fake sleep is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    cfg = Config()
    cfg.stream_type = 'incast'
    cfg.server = GroupConfig(hostname=['node1'], hca=['mlx5_0', 'mlx5_1'])
    cfg.client = GroupConfig(hostname=['node2', 'node3'], hca=['mlx5_0'])
    cfg.report.dir = '/tmp/reports'
    cfg.waiting_time_seconds = 0
    cfg.readiness.interval_seconds = 1
    cfg.readiness.timeout_seconds = 10
    return cfg


@pytest.fixture
def resolver():
    """Resolver that maps hosts to fixed addresses and records what it was asked."""
    asked = []

    def resolve(hosts):
        asked.append(list(hosts))
        return {host: f"10.0.0.{i + 1}" for i, host in enumerate(sorted(hosts))}

    resolve.asked = asked
    return resolve
