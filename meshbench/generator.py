"""
Script generation.

Turns the configured topology into one server bundle and one client bundle:
per-host lists of detached perftest commands. Port budget and role groups
are checked before any peer IP is looked up.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .artifacts import bandwidth_name, p2p_name, pair_latency_name
from .commands import Measurement, bandwidth_command, latency_command, render_bundle
from .errors import ConfigurationError
from .topology import (ConnectionPair, PairingRule, Pattern, Role, TopologyRoles,
                       TopologySpec)

Resolver = Callable[[Sequence[str]], Dict[str, str]]

LATENCY_RULES = {
    PairingRule.ALL_PAIRS: Pattern.FULLMESH.value,
    PairingRule.BIPARTITE: Pattern.INCAST.value,
}


@dataclass
class HostScript:
    """Commands one host runs for one role, in pair-generation order."""
    host: str
    commands: List[str] = field(default_factory=list)

    @property
    def command(self) -> str:
        return render_bundle(self.commands)

    @property
    def command_count(self) -> int:
        return len(self.commands)


@dataclass
class GenerationResult:
    pairs: List[ConnectionPair]
    server_bundle: List[HostScript]
    client_bundle: List[HostScript]

    def expected_counts(self) -> Dict[str, int]:
        """Listener commands per server-role host; the readiness targets."""
        return {script.host: script.command_count for script in self.server_bundle}

    @property
    def hosts(self) -> List[str]:
        seen: List[str] = []
        for script in self.server_bundle + self.client_bundle:
            if script.host not in seen:
                seen.append(script.host)
        return seen


class _BundleBuilder:
    def __init__(self):
        self._scripts: Dict[str, HostScript] = {}

    def add(self, host: str, command: str) -> None:
        if host not in self._scripts:
            self._scripts[host] = HostScript(host)
        self._scripts[host].commands.append(command)

    def scripts(self) -> List[HostScript]:
        return list(self._scripts.values())


class ScriptGenerator:
    def __init__(self, config, measurement: Measurement, resolver: Resolver):
        """
        Initialize the generator

        Args:
            config: Loaded Config
            measurement: Bandwidth or latency
            resolver: Maps listener host names to the IP initiators dial
        """
        self.config = config
        self.measurement = measurement
        self.resolver = resolver

    def generate(self, roles: Optional[TopologyRoles] = None) -> GenerationResult:
        """
        Build both bundles.

        Args:
            roles: Role groups to use instead of the configured ones

        Returns:
            GenerationResult

        Raises:
            ConfigurationError: bad role groups or unsupported latency pattern
            PortBudgetExceeded: too many pairs for the port range
            PeerResolutionError: a listener host has no usable IP
        """
        roles = roles or self.config.roles()
        if self.measurement is Measurement.LATENCY and roles.rule not in LATENCY_RULES:
            raise ConfigurationError(
                f"latency tests support fullmesh and incast only, not {self.config.stream_type}"
            )

        spec = TopologySpec(roles, self.config.start_port)
        pairs = list(spec.pairs())

        listener_hosts = list(dict.fromkeys(pair.listener.host for pair in pairs))
        host_ips = self.resolver(listener_hosts)

        servers = _BundleBuilder()
        clients = _BundleBuilder()
        for pair in pairs:
            server_file, client_file = self._report_files(pair, roles.rule)
            listener, initiator = pair.listener, pair.initiator
            servers.add(listener.host, self._command(listener.adapter, pair.port, None, server_file))
            clients.add(initiator.host, self._command(
                initiator.adapter, pair.port, host_ips[listener.host], client_file))

        return GenerationResult(pairs=pairs, server_bundle=servers.scripts(),
                                client_bundle=clients.scripts())

    def _command(self, device: str, port: int, target_ip: Optional[str], report_file: str) -> str:
        if self.measurement is Measurement.LATENCY:
            cmd = latency_command(self.config, device, port, target_ip, report_file)
        else:
            cmd = bandwidth_command(self.config, device, port, target_ip, report_file)
        return cmd.build()

    def _report_files(self, pair: ConnectionPair, rule: PairingRule):
        report_dir = self.config.report.dir.rstrip("/") or "/"
        if self.measurement is Measurement.LATENCY:
            pattern = LATENCY_RULES[rule]
            names = (pair_latency_name(pair, Role.SERVER, pattern),
                     pair_latency_name(pair, Role.CLIENT, pattern))
        elif rule is PairingRule.INDEXED_STAGGERED:
            names = (p2p_name(pair.listener, pair.port), p2p_name(pair.initiator, pair.port))
        else:
            names = (bandwidth_name(Role.SERVER, pair.listener, pair.port),
                     bandwidth_name(Role.CLIENT, pair.initiator, pair.port))
        return tuple(os.path.join(report_dir, name) for name in names)


def write_scripts(result: GenerationResult, directory) -> List[Path]:
    """
    Write ``<host>_server.sh`` and ``<host>_client.sh`` for inspection.

    Returns:
        Paths written, servers first
    """
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for suffix, bundle in (("server", result.server_bundle), ("client", result.client_bundle)):
        for script in bundle:
            path = out_dir / f"{script.host}_{suffix}.sh"
            with open(path, "w") as f:
                f.write("#!/bin/bash\n\n")
                f.write(script.command)
                f.write("\n")
            os.chmod(path, 0o755)
            written.append(path)
    return written
