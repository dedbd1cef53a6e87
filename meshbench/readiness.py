"""
Process probing and the readiness wait.

A probe counts live perftest processes on one host. ``wait_until`` repeats
any probe on a fixed interval until a condition holds or the deadline passes.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from .console import print_info
from .errors import ReadinessTimeout
from .remote import RemoteExecutor, fan_out

T = TypeVar("T")


class ProbeStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ProbeResult:
    host: str
    process_count: int
    status: ProbeStatus
    error: Optional[str] = None


@dataclass
class ProbeSummary:
    results: List[ProbeResult] = field(default_factory=list)

    @property
    def running_hosts(self) -> int:
        return sum(1 for r in self.results if r.status is ProbeStatus.RUNNING)

    @property
    def completed_hosts(self) -> int:
        return sum(1 for r in self.results if r.status is ProbeStatus.COMPLETED)

    @property
    def error_hosts(self) -> int:
        return sum(1 for r in self.results if r.status is ProbeStatus.ERROR)

    @property
    def total_processes(self) -> int:
        return sum(r.process_count for r in self.results)

    @property
    def all_completed(self) -> bool:
        return self.running_hosts == 0

    def counts(self) -> Dict[str, int]:
        return {r.host: r.process_count for r in self.results}


def process_count_command(process_name: str) -> str:
    return f"ps aux | grep {process_name} | grep -v grep | wc -l"


def probe_host(executor: RemoteExecutor, host: str, process_name: str) -> ProbeResult:
    """Count ``process_name`` processes on ``host``; never raises."""
    result = executor.run(host, process_count_command(process_name))
    if not result.ok:
        return ProbeResult(host, 0, ProbeStatus.ERROR, result.describe())
    try:
        count = int(result.stdout.strip())
    except ValueError:
        return ProbeResult(host, 0, ProbeStatus.ERROR, f"unexpected output: {result.stdout.strip()!r}")
    status = ProbeStatus.RUNNING if count > 0 else ProbeStatus.COMPLETED
    return ProbeResult(host, count, status)


def probe_all(executor: RemoteExecutor, hosts: Sequence[str], process_name: str) -> ProbeSummary:
    """Probe every host concurrently; results keep the order of ``hosts``."""
    by_host = fan_out(list(hosts), lambda h: probe_host(executor, h, process_name))
    return ProbeSummary([by_host[h] for h in hosts])


def wait_until(probe: Callable[[], T], done: Callable[[T], bool], interval: float, timeout: float,
               pending: Optional[Callable[[T], Sequence[str]]] = None,
               sleep: Callable[[float], None] = time.sleep,
               clock: Callable[[], float] = time.monotonic) -> T:
    """
    Call ``probe`` every ``interval`` seconds until ``done`` accepts its result.

    Args:
        probe: Produces one observation
        done: Decides whether an observation ends the wait
        interval: Seconds between probes
        timeout: Overall bound in seconds
        pending: Names what is still missing, for the timeout error
        sleep: Sleep function
        clock: Monotonic clock

    Returns:
        The first observation ``done`` accepted

    Raises:
        ReadinessTimeout: deadline passed first
    """
    start = clock()
    while True:
        observation = probe()
        if done(observation):
            return observation
        if clock() - start >= timeout:
            missing = pending(observation) if pending else ()
            raise ReadinessTimeout(timeout, missing)
        sleep(interval)


def hosts_below(expected: Dict[str, int], summary: ProbeSummary) -> List[str]:
    """Hosts whose live process count is short of the expected count."""
    counts = summary.counts()
    return [host for host, want in expected.items() if counts.get(host, 0) < want]


def wait_for_listeners(executor: RemoteExecutor, expected: Dict[str, int], process_name: str,
                       interval: float = 1.0, timeout: float = 600.0,
                       sleep: Callable[[float], None] = time.sleep,
                       clock: Callable[[], float] = time.monotonic,
                       verbose: bool = False) -> ProbeSummary:
    """
    Block until every host runs at least its expected number of listeners.

    Raises:
        ReadinessTimeout: listing the hosts still short when time ran out
    """
    hosts = list(expected)

    def probe() -> ProbeSummary:
        summary = probe_all(executor, hosts, process_name)
        if verbose:
            for r in summary.results:
                print_info(f"{r.host}: {r.process_count}/{expected[r.host]} {process_name} running")
        return summary

    return wait_until(
        probe,
        lambda s: not hosts_below(expected, s),
        interval=interval,
        timeout=timeout,
        pending=lambda s: hosts_below(expected, s),
        sleep=sleep,
        clock=clock,
    )
