"""
Two-phase execution: servers first, then clients once every listener is up.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .console import print_info, print_success, print_warning
from .errors import DispatchError, HostFailure, MeshBenchError
from .generator import GenerationResult, HostScript
from .readiness import ProbeSummary, probe_all, wait_for_listeners, wait_until
from .remote import RemoteExecutor, fan_out

COMPLETION_INTERVAL_SECONDS = 5.0


class ExecutionState(str, Enum):
    NOT_STARTED = "NotStarted"
    SERVERS_DISPATCHING = "ServersDispatching"
    WAITING_FOR_READINESS = "WaitingForReadiness"
    CLIENTS_DISPATCHING = "ClientsDispatching"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class ExecutionReport:
    state: ExecutionState
    server_failures: List[HostFailure] = field(default_factory=list)
    client_failures: List[HostFailure] = field(default_factory=list)
    elapsed: float = 0.0
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is ExecutionState.COMPLETED


def dispatch(executor: RemoteExecutor, bundle: Sequence[HostScript]) -> List[HostFailure]:
    """
    Send each host its rendered bundle concurrently.

    Every host is attempted; failures are returned, not raised.
    """
    scripts = {script.host: script for script in bundle}

    def send(host: str) -> Optional[HostFailure]:
        try:
            result = executor.run(host, scripts[host].command)
        except Exception as e:
            return HostFailure(host, str(e))
        if not result.ok:
            return HostFailure(host, result.describe())
        return None

    outcomes = fan_out(list(scripts), send)
    return [outcomes[host] for host in scripts if outcomes[host] is not None]


class Orchestrator:
    def __init__(self, config, executor: RemoteExecutor, process_name: str,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 verbose: bool = False):
        """
        Initialize the orchestrator

        Args:
            config: Loaded Config (readiness bounds are read from it)
            executor: Remote-exec capability
            process_name: Tool whose processes the readiness probe counts
            sleep: Sleep function, replaced in tests
            clock: Monotonic clock, replaced in tests
            verbose: Print per-host probe counts while waiting
        """
        self.config = config
        self.executor = executor
        self.process_name = process_name
        self.sleep = sleep
        self.clock = clock
        self.verbose = verbose
        self.state = ExecutionState.NOT_STARTED
        self.report: Optional[ExecutionReport] = None

    def _fail(self, error: MeshBenchError, start: float, **failures) -> None:
        self.state = ExecutionState.FAILED
        self.report = ExecutionReport(self.state, elapsed=self.clock() - start,
                                      reason=str(error), **failures)
        raise error

    def execute(self, result: GenerationResult) -> ExecutionReport:
        """
        Run the server phase, wait for readiness, then run the client phase.

        Returns:
            ExecutionReport in the Completed state

        Raises:
            DispatchError: one or more hosts rejected their bundle in a phase
            ReadinessTimeout: listeners never all came up; no client was started
        """
        start = self.clock()

        self.state = ExecutionState.SERVERS_DISPATCHING
        print_info(f"Starting {len(result.server_bundle)} server host(s)...")
        server_failures = dispatch(self.executor, result.server_bundle)
        if server_failures:
            self._fail(DispatchError("server", server_failures), start,
                       server_failures=server_failures)

        self.state = ExecutionState.WAITING_FOR_READINESS
        expected = result.expected_counts()
        print_info(f"Waiting for {sum(expected.values())} listener(s) on {len(expected)} host(s)...")
        try:
            wait_for_listeners(
                self.executor, expected, self.process_name,
                interval=self.config.readiness.interval_seconds,
                timeout=self.config.readiness.timeout_seconds,
                sleep=self.sleep, clock=self.clock, verbose=self.verbose,
            )
        except MeshBenchError as e:
            self._fail(e, start)

        self.state = ExecutionState.CLIENTS_DISPATCHING
        print_info(f"Starting {len(result.client_bundle)} client host(s)...")
        client_failures = dispatch(self.executor, result.client_bundle)
        if client_failures:
            self._fail(DispatchError("client", client_failures), start,
                       client_failures=client_failures)

        self.state = ExecutionState.COMPLETED
        self.report = ExecutionReport(self.state, elapsed=self.clock() - start)
        print_success(f"All test commands dispatched in {self.report.elapsed:.1f}s")
        return self.report


def cleanup_reports(executor: RemoteExecutor, hosts: Sequence[str], report_dir: str) -> Dict[str, str]:
    """
    Remove stale artifacts named after each host before a run.

    Returns:
        host -> failure text for hosts where removal failed
    """
    def remove(host: str):
        return executor.run(host, f"rm -f {report_dir.rstrip('/')}/*{host}*.json")

    failures = {}
    for host, result in fan_out(list(hosts), remove).items():
        if not result.ok:
            failures[host] = result.describe()
            print_warning(f"Could not clean old reports on {host}: {result.describe()}")
    return failures


def wait_for_completion(executor: RemoteExecutor, hosts: Sequence[str], process_name: str,
                        interval: float = COMPLETION_INTERVAL_SECONDS,
                        timeout: float = float("inf"),
                        sleep: Callable[[float], None] = time.sleep,
                        clock: Callable[[], float] = time.monotonic,
                        verbose: bool = True) -> ProbeSummary:
    """
    Poll until no host runs ``process_name`` any more.

    Hosts that cannot be probed count as finished so one dead host
    does not hold the wait forever.

    Raises:
        ReadinessTimeout: processes still running when ``timeout`` passed
    """
    def probe() -> ProbeSummary:
        summary = probe_all(executor, hosts, process_name)
        if verbose:
            print_info(f"{summary.total_processes} {process_name} process(es) still running "
                       f"on {summary.running_hosts} host(s)")
        return summary

    return wait_until(
        probe,
        lambda s: s.all_completed,
        interval=interval,
        timeout=timeout,
        pending=lambda s: [r.host for r in s.results if r.process_count > 0],
        sleep=sleep,
        clock=clock,
    )


def stop_all(executor: RemoteExecutor, hosts: Sequence[str], process_name: str) -> Dict[str, str]:
    """
    Kill ``process_name`` on every host.

    Returns:
        host -> failure text; "no process found" is not a failure
    """
    def kill(host: str):
        return executor.run(host, f"killall {process_name}")

    failures = {}
    for host, result in fan_out(list(hosts), kill).items():
        output = f"{result.stdout}{result.stderr}".lower()
        if result.ok or "no process found" in output:
            continue
        failures[host] = result.describe()
    return failures
