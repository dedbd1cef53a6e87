"""
Remote execution over ssh/scp.

Everything above this module talks to hosts through ``RemoteExecutor.run``,
so tests swap in a fake executor and never spawn ssh.
"""

import os
import subprocess
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .errors import HostFailure, PeerResolutionError

SSH_OPTIONS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=ERROR",
]

TIMEOUT_EXIT_STATUS = 124
DEFAULT_MAX_WORKERS = 32

T = TypeVar("T")


@dataclass(frozen=True)
class RemoteResult:
    stdout: str = ""
    stderr: str = ""
    exit_status: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    def describe(self) -> str:
        """Short failure text for status lines."""
        detail = (self.stderr or self.stdout).strip()
        if detail:
            return f"exit {self.exit_status}: {detail}"
        return f"exit {self.exit_status}"


class RemoteExecutor:
    """Blocking remote-shell capability: ``run(host, command) -> RemoteResult``."""

    def run(self, host: str, command: str) -> RemoteResult:
        raise NotImplementedError

    def copy_from(self, host: str, remote_glob: str, local_dir: str) -> RemoteResult:
        raise NotImplementedError


class SSHExecutor(RemoteExecutor):
    def __init__(self, user: str = "", private_key: Optional[str] = None, timeout: float = 60,
                 copy_timeout: float = 300):
        """
        Initialize the ssh executor

        Args:
            user: SSH username, empty to use the ssh default
            private_key: Identity file passed with -i when it exists
            timeout: Seconds before a remote command is abandoned
            copy_timeout: Seconds before an scp transfer is abandoned
        """
        self.user = user
        self.private_key = os.path.expanduser(private_key) if private_key else None
        self.timeout = timeout
        self.copy_timeout = copy_timeout

    @classmethod
    def from_config(cls, config) -> "SSHExecutor":
        return cls(user=config.ssh.user, private_key=config.ssh.private_key)

    def _target(self, host: str) -> str:
        return f"{self.user}@{host}" if self.user else host

    def _identity(self) -> List[str]:
        if self.private_key and os.path.exists(self.private_key):
            return ["-i", self.private_key]
        return []

    def _invoke(self, cmd: List[str], timeout: float) -> RemoteResult:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            return RemoteResult(stderr=f"timed out after {timeout:.0f}s",
                                exit_status=TIMEOUT_EXIT_STATUS)
        except OSError as e:
            return RemoteResult(stderr=str(e), exit_status=255)
        return RemoteResult(stdout=result.stdout, stderr=result.stderr, exit_status=result.returncode)

    def run(self, host: str, command: str) -> RemoteResult:
        ssh_cmd = ["ssh", *SSH_OPTIONS, *self._identity(), self._target(host), command]
        return self._invoke(ssh_cmd, self.timeout)

    def copy_from(self, host: str, remote_glob: str, local_dir: str) -> RemoteResult:
        scp_cmd = ["scp", *SSH_OPTIONS, *self._identity(),
                   f"{self._target(host)}:{remote_glob}", local_dir]
        return self._invoke(scp_cmd, self.copy_timeout)


def fan_out(hosts: Sequence[str], task: Callable[[str], T],
            max_workers: int = DEFAULT_MAX_WORKERS) -> Dict[str, T]:
    """
    Run ``task(host)`` for every host concurrently and wait for all of them.

    Returns:
        Dictionary mapping host to the task's return value
    """
    results: Dict[str, T] = {}
    if not hosts:
        return results
    workers = max(1, min(max_workers, len(hosts)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        future_to_host = {pool.submit(task, host): host for host in hosts}
        for future in as_completed(future_to_host):
            results[future_to_host[future]] = future.result()
    return results


def ip_lookup_command(interface: str) -> str:
    return f"ip addr show {interface} | grep 'inet ' | awk '{{print $2}}' | cut -d'/' -f1"


def resolve_host_ip(executor: RemoteExecutor, host: str, interface: str) -> str:
    """
    Look up the IPv4 address of ``interface`` on ``host``.

    Raises:
        PeerResolutionError: the command failed or printed no address
    """
    result = executor.run(host, ip_lookup_command(interface))
    if not result.ok:
        raise PeerResolutionError([HostFailure(host, result.describe())])
    for line in result.stdout.splitlines():
        ip = line.strip()
        if ip:
            return ip
    raise PeerResolutionError([HostFailure(host, f"no IPv4 address on {interface}")])


def resolve_host_ips(executor: RemoteExecutor, hosts: Sequence[str], interface: str,
                     max_workers: int = DEFAULT_MAX_WORKERS) -> Dict[str, str]:
    """
    Resolve every host concurrently.

    Raises:
        PeerResolutionError: listing every host that could not be resolved
    """
    def lookup(host: str) -> Tuple[Optional[str], Optional[HostFailure]]:
        try:
            return resolve_host_ip(executor, host, interface), None
        except PeerResolutionError as e:
            return None, e.failures[0]

    outcomes = fan_out(list(dict.fromkeys(hosts)), lookup, max_workers)
    failures = [failure for _, failure in outcomes.values() if failure is not None]
    if failures:
        raise PeerResolutionError(sorted(failures, key=lambda f: f.host))
    return {host: ip for host, (ip, _) in outcomes.items()}
