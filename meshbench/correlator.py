"""
Result correlation.

Builds endpoint x endpoint latency matrices and per-endpoint bandwidth
verdicts from decoded artifact records. Only initiator-side records carry a
metric; listener-side files are counted and dropped.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .artifacts import ArtifactRecord, Family
from .topology import Endpoint, Role

DELTA_PERCENT_LIMIT = 20.0


class CellState(str, Enum):
    VALUE = "value"
    GAP = "gap"    # off-diagonal cell with no sample, a failed measurement
    SELF = "self"  # diagonal, intentionally untested


@dataclass
class Accumulator:
    total: float = 0.0
    count: int = 0

    def add(self, value: float) -> None:
        self.total += value
        self.count += 1

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


def accumulate(samples: Iterable[Tuple[object, float]]) -> Dict[object, Accumulator]:
    """Sum and count samples per key, preserving first-seen key order."""
    groups: Dict[object, Accumulator] = {}
    for key, value in samples:
        groups.setdefault(key, Accumulator()).add(value)
    return groups


@dataclass
class LatencyStatistics:
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    count: int = 0


@dataclass
class LatencySummary:
    """Latency matrix keyed ``"host:adapter"`` (source row, target column), in us."""
    matrix: Dict[str, Dict[str, float]] = field(default_factory=dict)
    statistics: LatencyStatistics = field(default_factory=LatencyStatistics)
    per_source: Dict[str, float] = field(default_factory=dict)
    per_target: Dict[str, float] = field(default_factory=dict)
    sources: List[str] = field(default_factory=list)
    targets: List[str] = field(default_factory=list)
    bipartite: bool = False
    listener_files: int = 0

    @property
    def endpoints(self) -> List[str]:
        return sorted(set(self.sources) | set(self.targets))

    def value(self, source: str, target: str) -> Optional[float]:
        return self.matrix.get(source, {}).get(target)

    def gaps(self) -> List[Tuple[str, str]]:
        """Off-diagonal (source, target) cells with no sample."""
        return [(s, t) for s in self.sources for t in self.targets
                if cell_state(self, s, t) is CellState.GAP]


def cell_state(summary: LatencySummary, source: str, target: str) -> CellState:
    if summary.value(source, target) is not None:
        return CellState.VALUE
    if source == target:
        return CellState.SELF
    return CellState.GAP


def _keys(endpoints: Optional[Iterable[Endpoint]]) -> List[str]:
    return [ep.key for ep in endpoints] if endpoints else []


def correlate_latency(records: Sequence[ArtifactRecord], bipartite: bool = False,
                      sources: Optional[Iterable[Endpoint]] = None,
                      targets: Optional[Iterable[Endpoint]] = None) -> LatencySummary:
    """
    Build the latency matrix and statistics.

    Args:
        records: Decoded artifacts; non-latency records are ignored
        bipartite: Incast-shaped data; adds per-source and per-target means
        sources: Endpoints expected as rows even without samples
        targets: Endpoints expected as columns even without samples

    Returns:
        LatencySummary
    """
    latency = [r for r in records if r.name.family is Family.LATENCY]
    listener_files = sum(1 for r in latency if r.role is Role.SERVER)
    retained = [r for r in latency if r.role is Role.CLIENT]

    groups = accumulate(((r.source.key, r.target.key), r.metric) for r in retained)

    summary = LatencySummary(bipartite=bipartite, listener_files=listener_files)
    for (src, dst), acc in groups.items():
        summary.matrix.setdefault(src, {})[dst] = acc.mean

    row_keys = set(_keys(sources)) | set(summary.matrix)
    col_keys = set(_keys(targets)) | {dst for row in summary.matrix.values() for dst in row}
    if bipartite:
        summary.sources = sorted(row_keys)
        summary.targets = sorted(col_keys)
    else:
        summary.sources = summary.targets = sorted(row_keys | col_keys)

    values = [v for row in summary.matrix.values() for v in row.values()]
    if values:
        summary.statistics = LatencyStatistics(
            min=min(values), max=max(values), avg=sum(values) / len(values), count=len(values)
        )

    if bipartite:
        for src, acc in accumulate(
                (src, v) for src, row in summary.matrix.items() for v in row.values()).items():
            summary.per_source[src] = acc.mean
        for dst, acc in accumulate(
                (dst, v) for row in summary.matrix.values() for dst, v in row.items()).items():
            summary.per_target[dst] = acc.mean
    return summary


@dataclass
class EndpointBandwidth:
    endpoint: Endpoint
    actual: float
    theoretical: float
    delta: float
    delta_percent: float
    status: str


def _verdict(endpoint: Endpoint, actual: float, theoretical: float) -> EndpointBandwidth:
    delta = actual - theoretical
    delta_percent = (delta / theoretical) * 100 if theoretical > 0 else 0.0
    status = "NOT OK" if abs(delta_percent) > DELTA_PERCENT_LIMIT else "OK"
    return EndpointBandwidth(endpoint, actual, theoretical, delta, delta_percent, status)


@dataclass
class BandwidthReport:
    clients: List[EndpointBandwidth] = field(default_factory=list)
    servers: List[EndpointBandwidth] = field(default_factory=list)
    total_server_bw: float = 0.0
    theoretical_per_client: float = 0.0
    speed: float = 0.0

    @property
    def client_count(self) -> int:
        return len(self.clients)

    @property
    def failing(self) -> List[EndpointBandwidth]:
        return [row for row in self.clients + self.servers if row.status != "OK"]


def correlate_bandwidth(records: Sequence[ArtifactRecord], speed: float) -> BandwidthReport:
    """
    Judge fullmesh/incast/localtest bandwidth per endpoint.

    Client TX and server RX are summed per endpoint. The servers can absorb
    ``server endpoints x speed`` in total, shared evenly by the clients.
    Anything more than 20% off its expectation is NOT OK.
    """
    bandwidth = [r for r in records if r.name.family is Family.BANDWIDTH]
    client_sums = accumulate((r.name.endpoint, r.metric) for r in bandwidth if r.role is Role.CLIENT)
    server_sums = accumulate((r.name.endpoint, r.metric) for r in bandwidth if r.role is Role.SERVER)

    report = BandwidthReport(speed=speed)
    report.total_server_bw = len(server_sums) * speed
    if client_sums:
        report.theoretical_per_client = report.total_server_bw / len(client_sums)

    report.clients = [_verdict(ep, acc.total, report.theoretical_per_client)
                      for ep, acc in sorted(client_sums.items())]
    report.servers = [_verdict(ep, acc.total, speed) for ep, acc in sorted(server_sums.items())]
    return report


@dataclass
class P2PEndpoint:
    endpoint: Endpoint
    avg_speed: float
    count: int


@dataclass
class P2PReport:
    endpoints: List[P2PEndpoint] = field(default_factory=list)

    @property
    def total_endpoints(self) -> int:
        return len(self.endpoints)

    @property
    def avg_speed(self) -> float:
        if not self.endpoints:
            return 0.0
        return sum(e.avg_speed for e in self.endpoints) / len(self.endpoints)


def correlate_p2p(records: Sequence[ArtifactRecord]) -> P2PReport:
    """Average bandwidth per endpoint across its p2p reports."""
    groups = accumulate((r.name.endpoint, r.metric) for r in records if r.name.family is Family.P2P)
    return P2PReport([P2PEndpoint(ep, acc.mean, acc.count) for ep, acc in sorted(groups.items())])
