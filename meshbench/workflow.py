"""
End-to-end test cycles built from the generator, orchestrator and collector.
"""

import time
from typing import Callable, List, Optional

from .artifacts import ArtifactRecord, family_for, scan_artifacts
from .collector import DEFAULT_REPORTS_DIR, Collector
from .commands import Measurement
from .console import print_info, print_warning
from .errors import ReadinessTimeout
from .generator import GenerationResult, ScriptGenerator
from .orchestrator import (COMPLETION_INTERVAL_SECONDS, Orchestrator, cleanup_reports, stop_all,
                           wait_for_completion)
from .remote import RemoteExecutor, resolve_host_ips
from .topology import TopologyRoles

# Connectivity tests run for seconds; a listener still up after this lost its peer.
CONNECTIVITY_COMPLETION_TIMEOUT_SECONDS = 600.0


def make_generator(config, executor: RemoteExecutor, measurement: Measurement) -> ScriptGenerator:
    """Generator whose peer IPs come from ``network_interface`` on each listener."""
    def resolver(hosts):
        return resolve_host_ips(executor, hosts, config.network_interface)
    return ScriptGenerator(config, measurement, resolver)


class BenchmarkCycle:
    def __init__(self, executor: RemoteExecutor, reports_dir=DEFAULT_REPORTS_DIR,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 completion_interval: float = COMPLETION_INTERVAL_SECONDS,
                 completion_timeout: float = float("inf"),
                 verbose: bool = False):
        """
        Initialize the cycle

        Args:
            executor: Remote-exec capability
            reports_dir: Local directory artifacts are collected into
            sleep: Sleep function, replaced in tests
            clock: Monotonic clock, replaced in tests
            completion_interval: Seconds between completion probes
            completion_timeout: Seconds to wait for the tests to exit before
                stopping whatever is left and collecting what exists
            verbose: Print per-host readiness counts
        """
        self.executor = executor
        self.reports_dir = reports_dir
        self.sleep = sleep
        self.clock = clock
        self.completion_interval = completion_interval
        self.completion_timeout = completion_timeout
        self.verbose = verbose
        self.last_generation: Optional[GenerationResult] = None

    def run(self, config, measurement: Measurement,
            roles: Optional[TopologyRoles] = None) -> List[ArtifactRecord]:
        """
        Generate, dispatch, wait, collect and scan one test.

        Returns:
            Scanned artifact records; empty when the run is infinite or
            reporting is disabled

        Raises:
            MeshBenchError: any configuration, resolution, dispatch or
                readiness failure
        """
        config.validate()
        tool = measurement.tool

        result = make_generator(config, self.executor, measurement).generate(roles)
        self.last_generation = result
        hosts = result.hosts
        print_info(f"Generated {len(result.pairs)} {measurement.value} pair(s) across {len(hosts)} host(s)")

        if config.report.enable:
            cleanup_reports(self.executor, hosts, config.report.dir)

        Orchestrator(config, self.executor, tool, sleep=self.sleep, clock=self.clock,
                     verbose=self.verbose).execute(result)

        if config.run.infinitely:
            print_warning(f"{tool} runs until stopped; use 'meshbench stop' to end it")
            return []

        print_info("Waiting for tests to finish...")
        try:
            wait_for_completion(self.executor, hosts, tool, interval=self.completion_interval,
                                timeout=self.completion_timeout, sleep=self.sleep, clock=self.clock)
        except ReadinessTimeout as e:
            # listeners whose initiator never connected keep waiting for a peer
            print_warning(f"{tool} still running after {e.timeout:.0f}s on: {', '.join(e.pending)}; "
                          f"stopping it")
            for host, reason in stop_all(self.executor, e.pending, tool).items():
                print_warning(f"{host}: failed to stop {tool}: {reason}")

        if not config.report.enable:
            print_warning("Reporting is disabled, nothing to collect")
            return []

        if config.waiting_time_seconds > 0:
            print_info(f"Waiting {config.waiting_time_seconds}s for reports to be flushed...")
            self.sleep(config.waiting_time_seconds)

        Collector(config, self.executor, hosts).collect(self.reports_dir, cleanup_remote=True)
        return scan_artifacts(self.reports_dir, family=family_for(config.pattern))


class LatencyCycle(BenchmarkCycle):
    """Latency cycle with the ``runner(config, roles)`` shape connectivity checks use.

    The completion wait is bounded so an unreachable pair ends the run
    instead of holding it open.
    """

    def __init__(self, executor: RemoteExecutor,
                 completion_timeout: float = CONNECTIVITY_COMPLETION_TIMEOUT_SECONDS, **kwargs):
        super().__init__(executor, completion_timeout=completion_timeout, **kwargs)

    def __call__(self, config, roles: TopologyRoles) -> List[ArtifactRecord]:
        return self.run(config, Measurement.LATENCY, roles)
