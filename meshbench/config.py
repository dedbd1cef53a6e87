"""
YAML configuration for meshbench.

A config file looks like::

    start_port: 20000
    stream_type: incast
    qp_num: 10
    message_size_bytes: 4096
    output_base: ./generated_scripts
    waiting_time_seconds: 15
    speed: 400
    rdma_cm: false
    gid_index: 3
    network_interface: bond0
    report:
      enable: true
      dir: /root
    run:
      infinitely: false
      duration_seconds: 10
    ssh:
      private_key: ~/.ssh/id_rsa
      user: ""
    server:
      hostname: [node1]
      hca: [mlx5_0, mlx5_1]
    client:
      hostname: [node2, node3]
      hca: [mlx5_0]
"""

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError
from .topology import MAX_PORT, Pattern, RoleGroup, TopologyRoles

DEFAULT_CONFIG_PATH = "config.yaml"

DEFAULT_START_PORT = 20000
DEFAULT_STREAM_TYPE = Pattern.INCAST.value
DEFAULT_QP_NUM = 10
DEFAULT_MESSAGE_SIZE = 4096
DEFAULT_OUTPUT_BASE = "./generated_scripts"
DEFAULT_WAITING_TIME = 15
DEFAULT_SPEED = 400.0
DEFAULT_GID_INDEX = 3
DEFAULT_INTERFACE = "bond0"
DEFAULT_REPORT_DIR = "/root"
DEFAULT_DURATION = 10
DEFAULT_PRIVATE_KEY = "~/.ssh/id_rsa"
DEFAULT_READINESS_INTERVAL = 1.0
DEFAULT_READINESS_TIMEOUT = 600.0


@dataclass
class ReportConfig:
    enable: bool = True
    dir: str = DEFAULT_REPORT_DIR


@dataclass
class RunConfig:
    infinitely: bool = False
    duration_seconds: int = DEFAULT_DURATION


@dataclass
class SSHConfig:
    private_key: str = DEFAULT_PRIVATE_KEY
    user: str = ""


@dataclass
class GroupConfig:
    """One role group as written in the file."""
    hostname: List[str] = field(default_factory=list)
    hca: List[str] = field(default_factory=list)

    def to_role_group(self) -> RoleGroup:
        return RoleGroup(hosts=self.hostname, adapters=self.hca)


@dataclass
class ReadinessConfig:
    interval_seconds: float = DEFAULT_READINESS_INTERVAL
    timeout_seconds: float = DEFAULT_READINESS_TIMEOUT


@dataclass
class Config:
    """Complete test configuration."""
    start_port: int = DEFAULT_START_PORT
    stream_type: str = DEFAULT_STREAM_TYPE
    qp_num: int = DEFAULT_QP_NUM
    message_size_bytes: int = DEFAULT_MESSAGE_SIZE
    output_base: str = DEFAULT_OUTPUT_BASE
    waiting_time_seconds: int = DEFAULT_WAITING_TIME
    speed: float = DEFAULT_SPEED
    rdma_cm: bool = False
    gid_index: int = DEFAULT_GID_INDEX
    network_interface: str = DEFAULT_INTERFACE
    report: ReportConfig = field(default_factory=ReportConfig)
    run: RunConfig = field(default_factory=RunConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    server: GroupConfig = field(default_factory=GroupConfig)
    client: GroupConfig = field(default_factory=GroupConfig)
    readiness: ReadinessConfig = field(default_factory=ReadinessConfig)

    @property
    def pattern(self) -> Pattern:
        return Pattern.parse(self.stream_type)

    def roles(self) -> TopologyRoles:
        """Immutable role groups with the pairing rule for ``stream_type``."""
        return TopologyRoles.for_pattern(
            self.pattern, self.server.to_role_group(), self.client.to_role_group()
        )

    def server_hosts(self) -> List[str]:
        return list(self.server.hostname)

    def all_hosts(self) -> List[str]:
        """Server hosts then client hosts, de-duplicated, order preserved."""
        hosts: List[str] = []
        for host in self.server.hostname + self.client.hostname:
            if host not in hosts:
                hosts.append(host)
        return hosts

    def output_dir(self) -> Path:
        return Path(f"{self.output_base}_{self.stream_type}")

    def apply_defaults(self) -> "Config":
        """Replace zero or empty values with defaults. Returns self."""
        if not self.start_port:
            self.start_port = DEFAULT_START_PORT
        if not self.stream_type:
            self.stream_type = DEFAULT_STREAM_TYPE
        if not self.qp_num:
            self.qp_num = DEFAULT_QP_NUM
        if not self.message_size_bytes:
            self.message_size_bytes = DEFAULT_MESSAGE_SIZE
        if not self.output_base:
            self.output_base = DEFAULT_OUTPUT_BASE
        if not self.waiting_time_seconds:
            self.waiting_time_seconds = DEFAULT_WAITING_TIME
        if not self.speed:
            self.speed = DEFAULT_SPEED
        if not self.network_interface:
            self.network_interface = DEFAULT_INTERFACE
        if not self.report.dir:
            self.report.dir = DEFAULT_REPORT_DIR
        if not self.run.duration_seconds:
            self.run.duration_seconds = DEFAULT_DURATION
        if not self.ssh.private_key:
            self.ssh.private_key = DEFAULT_PRIVATE_KEY
        if not self.readiness.interval_seconds:
            self.readiness.interval_seconds = DEFAULT_READINESS_INTERVAL
        if not self.readiness.timeout_seconds:
            self.readiness.timeout_seconds = DEFAULT_READINESS_TIMEOUT
        return self

    def validate(self) -> None:
        """
        Check the configuration before any remote work.

        Raises:
            ConfigurationError: unknown stream type, bad port, or bad role groups
        """
        roles = self.roles()
        if not 1 <= int(self.start_port) <= MAX_PORT:
            raise ConfigurationError(
                f"start_port must be between 1 and {MAX_PORT}, got {self.start_port}"
            )
        if self.qp_num < 1:
            raise ConfigurationError(f"qp_num must be positive, got {self.qp_num}")
        if self.readiness.interval_seconds <= 0 or self.readiness.timeout_seconds <= 0:
            raise ConfigurationError("readiness interval and timeout must be positive")
        # localtest only looks at the server group
        roles.validate()

    def override(self, **changes: Any) -> "Config":
        """Deep copy with top-level fields replaced; ``self`` is not touched."""
        copied = dataclasses.replace(
            self,
            report=dataclasses.replace(self.report),
            run=dataclasses.replace(self.run),
            ssh=dataclasses.replace(self.ssh),
            server=GroupConfig(list(self.server.hostname), list(self.server.hca)),
            client=GroupConfig(list(self.client.hostname), list(self.client.hca)),
            readiness=dataclasses.replace(self.readiness),
        )
        for key, value in changes.items():
            if not hasattr(copied, key):
                raise ConfigurationError(f"Unknown config field: {key}")
            setattr(copied, key, value)
        return copied

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def _as_list(value: Any, key: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigurationError(f"{key} must be a list, got {type(value).__name__}")
    return [str(v) for v in value]


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' must be a mapping")
    return value


def config_from_dict(data: Optional[Dict[str, Any]]) -> Config:
    """Build a Config from parsed YAML. Unknown keys are ignored."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigurationError("top level of the config file must be a mapping")

    config = Config()
    try:
        for key in ("start_port", "qp_num", "message_size_bytes",
                    "waiting_time_seconds", "gid_index"):
            if data.get(key) is not None:
                setattr(config, key, int(data[key]))
        for key in ("stream_type", "output_base", "network_interface"):
            if data.get(key) is not None:
                setattr(config, key, str(data[key]))
        if data.get("speed") is not None:
            config.speed = float(data["speed"])
        if "rdma_cm" in data:
            config.rdma_cm = bool(data["rdma_cm"])

        report = _section(data, "report")
        if "enable" in report:
            config.report.enable = bool(report["enable"])
        if report.get("dir") is not None:
            config.report.dir = str(report["dir"])

        run = _section(data, "run")
        if "infinitely" in run:
            config.run.infinitely = bool(run["infinitely"])
        if run.get("duration_seconds") is not None:
            config.run.duration_seconds = int(run["duration_seconds"])

        ssh = _section(data, "ssh")
        if ssh.get("private_key") is not None:
            config.ssh.private_key = str(ssh["private_key"])
        if ssh.get("user") is not None:
            config.ssh.user = str(ssh["user"])

        for role in ("server", "client"):
            section = _section(data, role)
            setattr(config, role, GroupConfig(
                hostname=_as_list(section.get("hostname"), f"{role}.hostname"),
                hca=_as_list(section.get("hca"), f"{role}.hca"),
            ))

        readiness = _section(data, "readiness")
        if readiness.get("interval_seconds") is not None:
            config.readiness.interval_seconds = float(readiness["interval_seconds"])
        if readiness.get("timeout_seconds") is not None:
            config.readiness.timeout_seconds = float(readiness["timeout_seconds"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid config value: {e}") from e

    return config.apply_defaults()


def load_config(path) -> Config:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the config file

    Returns:
        Config with defaults applied

    Raises:
        ConfigurationError: file missing or not valid YAML
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse {path}: {e}") from e
    return config_from_dict(data)


def save_config(path, config: Config) -> None:
    path = Path(path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)


def ensure_config_file(path) -> bool:
    """Write a default config to ``path`` if nothing is there yet.

    Returns:
        True if a new file was written
    """
    path = Path(path)
    if path.exists():
        return False
    save_config(path, Config())
    return True
