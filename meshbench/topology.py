"""
Topology combinatorics.

Turns two endpoint groups plus a pairing rule into an ordered sequence of
port-assigned connection pairs. Nothing in here touches the network or knows
how commands are spelled, so every pattern can be checked on its own.

Patterns map onto pairing rules as follows:

    fullmesh  -> ALL_PAIRS            N x (N-1), endpoints from both groups
    incast    -> BIPARTITE            every client endpoint -> every server endpoint
    p2p       -> INDEXED_STAGGERED    hosts by index, adapters shifted by one
    localtest -> ALL_PAIRS_WITH_SELF  N x N over the server group, loopback included
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Tuple

from .errors import ConfigurationError, PortBudgetExceeded

MAX_PORT = 65535

# Latency file names use these as direction markers between the two endpoints.
DIRECTION_MARKERS = ("to", "from")


class Pattern(str, Enum):
    FULLMESH = "fullmesh"
    INCAST = "incast"
    P2P = "p2p"
    LOCALTEST = "localtest"

    @classmethod
    def parse(cls, value: str) -> "Pattern":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ConfigurationError(f"Unknown stream_type '{value}'. Use one of: {valid}")


class PairingRule(str, Enum):
    ALL_PAIRS = "all_pairs"
    BIPARTITE = "bipartite"
    INDEXED_STAGGERED = "indexed_staggered"
    ALL_PAIRS_WITH_SELF = "all_pairs_with_self"


PATTERN_RULES = {
    Pattern.FULLMESH: PairingRule.ALL_PAIRS,
    Pattern.INCAST: PairingRule.BIPARTITE,
    Pattern.P2P: PairingRule.INDEXED_STAGGERED,
    Pattern.LOCALTEST: PairingRule.ALL_PAIRS_WITH_SELF,
}


class Role(str, Enum):
    """Which side of a pair an endpoint plays. Values are the filename tokens."""
    SERVER = "s"
    CLIENT = "c"

    @property
    def label(self) -> str:
        return "server" if self is Role.SERVER else "client"


@dataclass(frozen=True, order=True)
class Endpoint:
    """A (host, adapter) identity."""
    host: str
    adapter: str

    @property
    def key(self) -> str:
        """Matrix key, e.g. ``node1:mlx5_0``."""
        return f"{self.host}:{self.adapter}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class ConnectionPair:
    """One directed test: ``source`` initiates towards ``target`` on ``port``.

    The target endpoint is the listener. ``source_role`` is the role the
    source endpoint plays for this pair.
    """
    source: Endpoint
    target: Endpoint
    port: int
    source_role: Role = Role.CLIENT

    @property
    def listener(self) -> Endpoint:
        return self.target if self.source_role is Role.CLIENT else self.source

    @property
    def initiator(self) -> Endpoint:
        return self.source if self.source_role is Role.CLIENT else self.target


@dataclass(frozen=True)
class RoleGroup:
    """Hosts that share one adapter list."""
    hosts: Tuple[str, ...] = ()
    adapters: Tuple[str, ...] = ()

    def __post_init__(self):
        # Accept lists from callers while keeping the value hashable
        object.__setattr__(self, "hosts", tuple(self.hosts))
        object.__setattr__(self, "adapters", tuple(self.adapters))

    def endpoints(self) -> List[Endpoint]:
        return [Endpoint(h, a) for h in self.hosts for a in self.adapters]

    def __len__(self) -> int:
        return len(self.hosts) * len(self.adapters)


@dataclass(frozen=True)
class TopologyRoles:
    """Server-role group, client-role group and the pairing rule in effect.

    Never mutated; :meth:`swapped` builds the role-reversed value used for
    backward connectivity runs.
    """
    server: RoleGroup = field(default_factory=RoleGroup)
    client: RoleGroup = field(default_factory=RoleGroup)
    rule: PairingRule = PairingRule.BIPARTITE

    @classmethod
    def for_pattern(cls, pattern: Pattern, server: RoleGroup, client: RoleGroup) -> "TopologyRoles":
        return cls(server=server, client=client, rule=PATTERN_RULES[pattern])

    def swapped(self) -> "TopologyRoles":
        return TopologyRoles(server=self.client, client=self.server, rule=self.rule)

    def with_rule(self, rule: PairingRule) -> "TopologyRoles":
        return TopologyRoles(server=self.server, client=self.client, rule=rule)

    def validate(self) -> None:
        """Check group shapes for the rule in effect.

        Raises:
            ConfigurationError: empty groups, duplicates inside one group, names
                that cannot be encoded in artifact file names, or mismatched
                host counts for the staggered rule
        """
        groups = [("server", self.server)]
        if self.rule is not PairingRule.ALL_PAIRS_WITH_SELF:
            groups.append(("client", self.client))

        for name, group in groups:
            if not group.hosts:
                raise ConfigurationError(f"{name}.hostname must list at least one host")
            if not group.adapters:
                raise ConfigurationError(f"{name}.hca must list at least one adapter")
            for label, values in (("hostname", group.hosts), ("hca", group.adapters)):
                dupes = sorted({v for v in values if values.count(v) > 1})
                if dupes:
                    raise ConfigurationError(f"{name}.{label} has duplicate entries: {', '.join(dupes)}")
            bad = [h for h in group.hosts if "_" in h or not h]
            if bad:
                raise ConfigurationError(
                    f"{name}.hostname entries may not be empty or contain '_': {', '.join(bad)}"
                )
            bad = [a for a in group.adapters if not adapter_name_ok(a)]
            if bad:
                raise ConfigurationError(
                    f"{name}.hca entries may not be empty or use 'to'/'from' as an inner "
                    f"'_'-separated word: {', '.join(bad)}"
                )

        if self.rule is PairingRule.INDEXED_STAGGERED:
            if len(self.server.hosts) != len(self.client.hosts):
                raise ConfigurationError(
                    f"p2p requires equal host counts: {len(self.server.hosts)} server(s) "
                    f"vs {len(self.client.hosts)} client(s)"
                )


def adapter_name_ok(adapter: str) -> bool:
    """False for names a latency file name could not carry unambiguously."""
    return bool(adapter) and not set(adapter.split("_")[1:]) & set(DIRECTION_MARKERS)


def staggered_index(server_index: int, client_count: int) -> int:
    """Client adapter index paired with ``server_index`` under the p2p rule."""
    return (server_index + 1) % client_count


def _dedupe(endpoints: List[Endpoint]) -> List[Endpoint]:
    seen = set()
    unique = []
    for ep in endpoints:
        if ep not in seen:
            seen.add(ep)
            unique.append(ep)
    return unique


class TopologySpec:
    """Declarative description of one generation pass."""

    def __init__(self, roles: TopologyRoles, start_port: int):
        self.roles = roles
        self.start_port = start_port

    def mesh_endpoints(self) -> List[Endpoint]:
        """Deduplicated union of both groups, server endpoints first."""
        return _dedupe(self.roles.server.endpoints() + self.roles.client.endpoints())

    def count(self) -> int:
        """Number of pairs the rule yields, computed without enumerating."""
        roles = self.roles
        if roles.rule is PairingRule.ALL_PAIRS:
            n = len(self.mesh_endpoints())
            return n * (n - 1)
        if roles.rule is PairingRule.BIPARTITE:
            return len(roles.server) * len(roles.client)
        if roles.rule is PairingRule.INDEXED_STAGGERED:
            if not roles.client.adapters:
                return 0
            return len(roles.server.hosts) * len(roles.server.adapters)
        n = len(roles.server)
        return n * n

    def available_ports(self) -> int:
        return MAX_PORT - self.start_port + 1

    def check_port_budget(self) -> int:
        """Verify the pair count fits between start_port and 65535.

        Returns:
            Number of ports that will be consumed

        Raises:
            PortBudgetExceeded: if the range is too small
        """
        required = self.count()
        available = self.available_ports()
        if required > available:
            raise PortBudgetExceeded(required, available, self.start_port)
        return required

    def pairs(self) -> Iterator[ConnectionPair]:
        """Validate, check the port budget, then lazily yield pairs.

        Ports start at ``start_port`` and increase by one per pair.
        """
        self.roles.validate()
        self.check_port_budget()
        return self._iter_pairs()

    def _iter_pairs(self) -> Iterator[ConnectionPair]:
        port = self.start_port
        for initiator, listener in self._endpoint_pairs():
            yield ConnectionPair(source=initiator, target=listener, port=port)
            port += 1

    def _endpoint_pairs(self) -> Iterator[Tuple[Endpoint, Endpoint]]:
        """Yield (initiator, listener) in generation order, listener-major."""
        roles = self.roles
        rule = roles.rule

        if rule is PairingRule.ALL_PAIRS:
            endpoints = self.mesh_endpoints()
            for listener in endpoints:
                for initiator in endpoints:
                    if initiator != listener:
                        yield initiator, listener

        elif rule is PairingRule.BIPARTITE:
            initiators = roles.client.endpoints()
            for listener in roles.server.endpoints():
                for initiator in initiators:
                    yield initiator, listener

        elif rule is PairingRule.INDEXED_STAGGERED:
            client_adapters = roles.client.adapters
            for server_host, client_host in zip(roles.server.hosts, roles.client.hosts):
                for idx, server_adapter in enumerate(roles.server.adapters):
                    client_adapter = client_adapters[staggered_index(idx, len(client_adapters))]
                    yield Endpoint(client_host, client_adapter), Endpoint(server_host, server_adapter)

        elif rule is PairingRule.ALL_PAIRS_WITH_SELF:
            endpoints = roles.server.endpoints()
            for listener in endpoints:
                for initiator in endpoints:
                    yield initiator, listener

        else:
            raise ConfigurationError(f"Unsupported pairing rule: {rule}")


def generate_pairs(roles: TopologyRoles, start_port: int) -> List[ConnectionPair]:
    """Materialize every pair for ``roles`` starting at ``start_port``."""
    return list(TopologySpec(roles, start_port).pairs())
