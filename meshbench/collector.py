"""
Report collection: pull each host's JSON artifacts into reports/<host>/.
"""

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence

from .console import print_info, print_success, print_warning
from .errors import CollectionError
from .remote import RemoteExecutor, fan_out

DEFAULT_REPORTS_DIR = "reports"


@dataclass
class CollectResult:
    collected: Dict[str, int] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def total_files(self) -> int:
        return sum(self.collected.values())


class Collector:
    def __init__(self, config, executor: RemoteExecutor, hosts: Optional[Sequence[str]] = None):
        """
        Initialize the collector

        Args:
            config: Loaded Config (report.dir is the remote directory)
            executor: Remote-exec capability with copy_from
            hosts: Hosts to collect from, defaults to every configured host
        """
        self.config = config
        self.executor = executor
        self.hosts = list(hosts) if hosts is not None else config.all_hosts()

    def _remote_glob(self, host: str) -> str:
        return f"{self.config.report.dir.rstrip('/')}/*{host}*.json"

    def _prepare(self, reports_dir: Path) -> None:
        try:
            if reports_dir.exists():
                shutil.rmtree(reports_dir)
            reports_dir.mkdir(parents=True)
        except OSError as e:
            raise CollectionError(f"Cannot prepare {reports_dir}: {e}") from e

    def collect(self, reports_dir=DEFAULT_REPORTS_DIR, cleanup_remote: bool = True) -> CollectResult:
        """
        Copy every host's artifacts, one task per host.

        Args:
            reports_dir: Local directory, recreated empty
            cleanup_remote: Delete the remote copies after a successful copy

        Returns:
            CollectResult; a failing host never stops the others

        Raises:
            CollectionError: local directory could not be recreated
        """
        reports_dir = Path(reports_dir)
        self._prepare(reports_dir)
        print_info(f"Collecting reports from {len(self.hosts)} host(s)...")

        outcomes = fan_out(self.hosts, lambda h: self._collect_host(h, reports_dir, cleanup_remote))

        result = CollectResult()
        for host in self.hosts:
            count, error = outcomes[host]
            if error:
                result.failures[host] = error
            else:
                result.collected[host] = count
        print_info(f"Report collection completed: {result.total_files} file(s) saved to '{reports_dir}'")
        return result

    def _collect_host(self, host: str, reports_dir: Path, cleanup_remote: bool):
        host_dir = reports_dir / host
        try:
            host_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            print_warning(f"{host}: cannot create {host_dir}: {e}")
            return 0, str(e)

        copied = self.executor.copy_from(host, self._remote_glob(host), f"{host_dir}/")
        if not copied.ok:
            reason = copied.describe() if (copied.stderr or copied.stdout).strip() \
                else "no report files found or scp failed"
            print_warning(f"{host}: {reason}")
            return 0, reason

        count = len(list(host_dir.glob("*.json")))
        if count == 0:
            print_info(f"{host}: no report files found")
            return 0, None

        print_success(f"{host}: collected {count} report file(s)")
        if cleanup_remote:
            self._cleanup_host(host)
        return count, None

    def _remote_count(self, host: str) -> Optional[int]:
        result = self.executor.run(host, f"ls {self._remote_glob(host)} 2>/dev/null | wc -l")
        if not result.ok:
            return None
        try:
            return int(result.stdout.strip())
        except ValueError:
            return None

    def _cleanup_host(self, host: str) -> bool:
        """Remove the remote artifacts of ``host`` and confirm they are gone."""
        before = self._remote_count(host)
        if before is None:
            print_warning(f"{host}: failed to check remote report files")
            return False
        if before == 0:
            return True

        removed = self.executor.run(host, f"rm -f {self._remote_glob(host)}")
        if not removed.ok:
            print_warning(f"{host}: failed to clean up remote report files: {removed.describe()}")
            return False

        after = self._remote_count(host)
        if after != 0:
            print_warning(f"{host}: {after} remote report file(s) remain after cleanup")
            return False
        return True

