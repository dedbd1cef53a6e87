"""
Bidirectional connectivity check.

Runs two short incast latency tests: one with the configured roles and one
with server and client groups exchanged. Each physical adapter pair ends up
under one direction-independent key holding a forward and a backward result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .artifacts import ArtifactRecord, Family
from .config import Config, RunConfig
from .console import print_header, print_info, print_warning
from .errors import ConfigurationError, MeshBenchError
from .topology import Endpoint, Pattern, Role, TopologyRoles

CONNECTIVITY_DURATION_SECONDS = 5

Runner = Callable[[Config, TopologyRoles], List[ArtifactRecord]]


class LinkStatus(str, Enum):
    CONNECTED = "Connected"
    DISCONNECTED = "Disconnected"
    ERROR = "Error"


def canonical_key(a: str, b: str) -> str:
    """Same key for (a, b) and (b, a): the smaller identifier goes first."""
    first, second = (a, b) if a <= b else (b, a)
    return f"{first}<->{second}"


@dataclass(frozen=True)
class DirectionResult:
    source: str
    target: str
    status: LinkStatus
    latency_us: Optional[float] = None
    error: Optional[str] = None


def classify(record: ArtifactRecord) -> DirectionResult:
    source, target = record.source.key, record.target.key
    if record.error:
        return DirectionResult(source, target, LinkStatus.ERROR, error=record.error)
    if record.metric > 0:
        return DirectionResult(source, target, LinkStatus.CONNECTED, latency_us=record.metric)
    return DirectionResult(source, target, LinkStatus.DISCONNECTED)


@dataclass
class ConnectivityPairResult:
    key: str
    forward: Optional[DirectionResult] = None
    backward: Optional[DirectionResult] = None

    @property
    def status(self) -> LinkStatus:
        """Error beats Disconnected beats Connected; a missing direction is Disconnected."""
        statuses = [d.status if d else LinkStatus.DISCONNECTED for d in (self.forward, self.backward)]
        if LinkStatus.ERROR in statuses:
            return LinkStatus.ERROR
        if LinkStatus.DISCONNECTED in statuses:
            return LinkStatus.DISCONNECTED
        return LinkStatus.CONNECTED


@dataclass
class ConnectivitySummary:
    results: Dict[str, ConnectivityPairResult] = field(default_factory=dict)
    run_errors: Dict[str, str] = field(default_factory=dict)

    def _count(self, status: LinkStatus) -> int:
        return sum(1 for r in self.results.values() if r.status is status)

    @property
    def total_pairs(self) -> int:
        return len(self.results)

    @property
    def connected_pairs(self) -> int:
        return self._count(LinkStatus.CONNECTED)

    @property
    def disconnected_pairs(self) -> int:
        return self._count(LinkStatus.DISCONNECTED)

    @property
    def error_pairs(self) -> int:
        return self._count(LinkStatus.ERROR)

    def exit_code(self) -> int:
        return 0 if self.connected_pairs == self.total_pairs else 1


def expected_directions(roles: TopologyRoles) -> List[Tuple[Endpoint, Endpoint]]:
    """Every (client, server) endpoint pair an incast run over ``roles`` tests."""
    servers = roles.server.endpoints()
    return [(client, server) for server in servers for client in roles.client.endpoints()]


@dataclass
class RunOutcome:
    name: str
    roles: TopologyRoles
    records: List[ArtifactRecord] = field(default_factory=list)
    error: Optional[str] = None


def build_summary(forward: RunOutcome, backward: RunOutcome) -> ConnectivitySummary:
    """Merge both runs under canonical keys."""
    summary = ConnectivitySummary()

    for slot, outcome in (("forward", forward), ("backward", backward)):
        if outcome.error:
            summary.run_errors[outcome.name] = outcome.error

        observed: Dict[Tuple[str, str], DirectionResult] = {}
        for record in outcome.records:
            if record.name.family is Family.LATENCY and record.role is Role.CLIENT:
                direction = classify(record)
                observed[(direction.source, direction.target)] = direction

        expected = [(c.key, s.key) for c, s in expected_directions(outcome.roles)]
        known = set(expected)
        for source, target in expected + [k for k in observed if k not in known]:
            if outcome.error:
                direction = DirectionResult(source, target, LinkStatus.ERROR, error=outcome.error)
            else:
                direction = observed.get((source, target)) or \
                    DirectionResult(source, target, LinkStatus.DISCONNECTED)
            key = canonical_key(source, target)
            result = summary.results.setdefault(key, ConnectivityPairResult(key))
            setattr(result, slot, direction)

    summary.results = dict(sorted(summary.results.items()))
    return summary


class ConnectivityAnalyzer:
    def __init__(self, config: Config, runner: Runner):
        """
        Initialize the analyzer

        Args:
            config: User configuration, never modified
            runner: Performs one generate/execute/wait/collect/scan cycle for
                the given config and roles and returns the scanned records
        """
        self.config = config
        self.runner = runner

    def test_config(self) -> Config:
        """Short finite incast latency settings on a private copy."""
        return self.config.override(
            stream_type=Pattern.INCAST.value,
            run=RunConfig(infinitely=False, duration_seconds=CONNECTIVITY_DURATION_SECONDS),
        )

    def _run(self, name: str, config: Config, roles: TopologyRoles) -> RunOutcome:
        print_header(f"Connectivity {name} run: {len(roles.client)} client -> "
                     f"{len(roles.server)} server endpoint(s)")
        try:
            records = self.runner(config, roles)
        except MeshBenchError as e:
            print_warning(f"{name} run failed: {e}")
            return RunOutcome(name, roles, error=str(e))
        print_info(f"{name} run produced {len(records)} artifact(s)")
        return RunOutcome(name, roles, records)

    def check(self) -> ConnectivitySummary:
        """
        Run forward then backward and merge the results.

        Raises:
            ConfigurationError: invalid roles or reporting disabled
        """
        config = self.test_config()
        if not config.report.enable:
            raise ConfigurationError("report.enable must be true for connectivity checks")
        config.validate()
        forward_roles = config.roles()

        forward = self._run("forward", config, forward_roles)
        backward = self._run("backward", config, forward_roles.swapped())
        return build_summary(forward, backward)
