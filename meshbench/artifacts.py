"""
Result artifact naming and decoding.

Every measurement writes one JSON file whose name identifies the pair it
belongs to. Correlation relies entirely on these names, so encoding and
parsing live side by side here.

Grammar (host tokens never contain ``_``, adapter tokens may)::

    report_{c|s}_{host}_{adapter}_{port}.json                      bandwidth
    report_{host}_{adapter}_{port}.json                            p2p bandwidth
    latency_{pattern}_{c|s}_{host}_{adapter}_{to|from}_{peer_host}_{peer_adapter}_p{port}.json
    latency_{c|s}_{host}_{adapter}_{to|from}_{peer_host}_{peer_adapter}_p{port}.json   (legacy)

Client files use ``to`` and name the listener as peer; server files use
``from`` and name the initiator as peer.
"""

import json
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .console import print_warning
from .errors import ArtifactParseError
from .topology import ConnectionPair, Endpoint, Pattern, Role

LATENCY_PATTERNS = (Pattern.INCAST.value, Pattern.FULLMESH.value)

_BANDWIDTH_RE = re.compile(
    r"^report_(?P<role>[cs])_(?P<host>[^_]+)_(?P<adapter>.+)_(?P<port>\d+)\.json$"
)
_P2P_RE = re.compile(
    r"^report_(?P<host>[^_]+)_(?P<adapter>.+)_(?P<port>\d+)\.json$"
)
_LATENCY_RE = re.compile(
    r"^latency_(?:(?P<pattern>incast|fullmesh)_)?(?P<role>[cs])_"
    r"(?P<host>[^_]+)_(?P<adapter>.+?)_(?P<marker>to|from)_"
    r"(?P<peer_host>[^_]+)_(?P<peer_adapter>.+)_p(?P<port>\d+)\.json$"
)

_MARKERS = {Role.CLIENT: "to", Role.SERVER: "from"}


class Family(str, Enum):
    BANDWIDTH = "bandwidth"
    P2P = "p2p"
    LATENCY = "latency"


@dataclass(frozen=True)
class ArtifactName:
    """Decoded identity of one artifact file."""
    family: Family
    host: str
    adapter: str
    port: int
    role: Optional[Role] = None
    peer_host: Optional[str] = None
    peer_adapter: Optional[str] = None
    pattern: Optional[str] = None

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(self.host, self.adapter)

    @property
    def peer(self) -> Optional[Endpoint]:
        if self.peer_host is None or self.peer_adapter is None:
            return None
        return Endpoint(self.peer_host, self.peer_adapter)

    @property
    def is_source(self) -> bool:
        """Initiator-side files carry the retained metric."""
        return self.role is not Role.SERVER

    def to_pair(self) -> ConnectionPair:
        """Rebuild the pair a latency artifact was generated for."""
        if self.peer is None:
            raise ArtifactParseError(self.encode(), "artifact carries no peer endpoint")
        if self.role is Role.SERVER:
            return ConnectionPair(source=self.peer, target=self.endpoint, port=self.port)
        return ConnectionPair(source=self.endpoint, target=self.peer, port=self.port)

    def encode(self) -> str:
        if self.family is Family.P2P:
            return f"report_{self.host}_{self.adapter}_{self.port}.json"
        if self.family is Family.BANDWIDTH:
            return f"report_{self.role.value}_{self.host}_{self.adapter}_{self.port}.json"
        prefix = f"latency_{self.pattern}_" if self.pattern else "latency_"
        return (
            f"{prefix}{self.role.value}_{self.host}_{self.adapter}_{_MARKERS[self.role]}_"
            f"{self.peer_host}_{self.peer_adapter}_p{self.port}.json"
        )


def bandwidth_name(role: Role, endpoint: Endpoint, port: int) -> str:
    return ArtifactName(Family.BANDWIDTH, endpoint.host, endpoint.adapter, port, role=role).encode()


def p2p_name(endpoint: Endpoint, port: int) -> str:
    return ArtifactName(Family.P2P, endpoint.host, endpoint.adapter, port).encode()


def latency_name(pattern: str, role: Role, endpoint: Endpoint, peer: Endpoint, port: int) -> str:
    return ArtifactName(
        Family.LATENCY, endpoint.host, endpoint.adapter, port, role=role,
        peer_host=peer.host, peer_adapter=peer.adapter, pattern=pattern,
    ).encode()


def pair_latency_name(pair: ConnectionPair, role: Role, pattern: str) -> str:
    """Latency file name for one side of ``pair``."""
    if role is Role.SERVER:
        return latency_name(pattern, role, pair.listener, pair.initiator, pair.port)
    return latency_name(pattern, role, pair.initiator, pair.listener, pair.port)


def parse_artifact_name(filename: str, family: Optional[Family] = None) -> ArtifactName:
    """
    Decode an artifact file name.

    A p2p name for a host called ``c`` or ``s`` also reads as a bandwidth
    name, so callers that know the run was p2p pass ``Family.P2P``.

    Args:
        filename: Base name or path of the file
        family: Only try the grammar of this family

    Returns:
        ArtifactName

    Raises:
        ArtifactParseError: name matches none of the known forms
    """
    name = os.path.basename(str(filename))

    def wanted(candidate: Family) -> bool:
        return family is None or family is candidate

    match = _LATENCY_RE.match(name) if wanted(Family.LATENCY) else None
    if match:
        role = Role(match.group("role"))
        if match.group("marker") != _MARKERS[role]:
            raise ArtifactParseError(name, f"marker '{match.group('marker')}' does not fit role '{role.value}'")
        return ArtifactName(
            Family.LATENCY,
            host=match.group("host"),
            adapter=match.group("adapter"),
            port=int(match.group("port")),
            role=role,
            peer_host=match.group("peer_host"),
            peer_adapter=match.group("peer_adapter"),
            pattern=match.group("pattern"),
        )

    match = _BANDWIDTH_RE.match(name) if wanted(Family.BANDWIDTH) else None
    if match:
        return ArtifactName(
            Family.BANDWIDTH,
            host=match.group("host"),
            adapter=match.group("adapter"),
            port=int(match.group("port")),
            role=Role(match.group("role")),
        )

    match = _P2P_RE.match(name) if wanted(Family.P2P) else None
    if match:
        return ArtifactName(
            Family.P2P,
            host=match.group("host"),
            adapter=match.group("adapter"),
            port=int(match.group("port")),
        )

    raise ArtifactParseError(name, "unrecognised artifact name")


@dataclass(frozen=True)
class ArtifactRecord:
    """One decoded artifact: its name plus the metric read from the payload.

    ``metric`` is BW_average (Gbps) for bandwidth files and t_avg (us) for
    latency files.
    """
    name: ArtifactName
    metric: float = 0.0
    t_min: float = 0.0
    t_max: float = 0.0
    error: Optional[str] = None
    path: Optional[str] = None

    @property
    def role(self) -> Optional[Role]:
        return self.name.role

    @property
    def source(self) -> Endpoint:
        """Initiating endpoint for latency records, owner for bandwidth."""
        if self.name.family is Family.LATENCY and self.name.role is Role.SERVER:
            return self.name.peer
        return self.name.endpoint

    @property
    def target(self) -> Optional[Endpoint]:
        if self.name.family is not Family.LATENCY:
            return None
        if self.name.role is Role.SERVER:
            return self.name.endpoint
        return self.name.peer

    @property
    def port(self) -> int:
        return self.name.port


def _float(results: dict, key: str) -> float:
    value = results.get(key, 0.0)
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def load_artifact(path, family: Optional[Family] = None) -> ArtifactRecord:
    """
    Parse one artifact file, optionally only under ``family``'s grammar.

    Raises:
        ArtifactParseError: bad file name, unreadable file or invalid JSON
    """
    path = Path(path)
    name = parse_artifact_name(path.name, family)
    try:
        with open(path) as f:
            payload = json.load(f)
    except (OSError, ValueError) as e:
        raise ArtifactParseError(path.name, f"cannot read payload: {e}") from e

    if not isinstance(payload, dict):
        raise ArtifactParseError(path.name, "payload is not a JSON object")
    results = payload.get("results") or {}
    if not isinstance(results, dict):
        results = {}
    error = payload.get("error")

    if name.family is Family.LATENCY:
        return ArtifactRecord(
            name=name,
            metric=_float(results, "t_avg"),
            t_min=_float(results, "t_min"),
            t_max=_float(results, "t_max"),
            error=str(error) if error else None,
            path=str(path),
        )
    return ArtifactRecord(
        name=name,
        metric=_float(results, "BW_average"),
        error=str(error) if error else None,
        path=str(path),
    )


def family_for(pattern: Pattern) -> Optional[Family]:
    """Grammar hint for scanning the reports of a ``pattern`` run."""
    return Family.P2P if pattern is Pattern.P2P else None


def scan_artifacts(reports_dir, family: Optional[Family] = None,
                   verbose: bool = True) -> List[ArtifactRecord]:
    """
    Walk ``reports_dir`` and load every artifact in sorted order.

    Unparsable files are reported and skipped.

    Args:
        reports_dir: Local directory filled by the collector
        family: Only read names in this family's grammar; others are skipped
        verbose: Print a warning for each skipped file

    Returns:
        List of ArtifactRecord
    """
    root = Path(reports_dir)
    records: List[ArtifactRecord] = []
    if not root.is_dir():
        return records

    for path in sorted(p for p in root.rglob("*.json") if p.is_file()):
        try:
            record = load_artifact(path, family)
        except ArtifactParseError as e:
            if verbose:
                print_warning(f"Skipping {path}: {e.reason}")
            continue
        records.append(record)
    return records
