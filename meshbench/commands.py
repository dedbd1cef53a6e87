"""
Perftest command assembly (ib_write_bw / ib_write_lat).
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

BUNDLE_DELIMITER = " && \\ \n"
LATENCY_DURATION_SECONDS = 5


class Measurement(str, Enum):
    BANDWIDTH = "bandwidth"
    LATENCY = "latency"

    @property
    def tool(self) -> str:
        return "ib_write_bw" if self is Measurement.BANDWIDTH else "ib_write_lat"


@dataclass
class PerftestCommand:
    """One detached perftest invocation.

    ``target_ip`` set means initiator; unset means listener.
    """
    measurement: Measurement
    device: str
    port: int
    target_ip: Optional[str] = None
    queue_pairs: int = 0  # bandwidth only
    message_size: int = 0  # bandwidth only
    run_infinitely: bool = False
    duration_seconds: int = 0
    rdma_cm: bool = False
    gid_index: int = 0
    report_file: Optional[str] = None
    redirect: str = ">/dev/null 2>&1"
    background: bool = True

    @property
    def is_listener(self) -> bool:
        return not self.target_ip

    def to_args(self) -> List[str]:
        """Convert to the tool's argument list (without redirection)."""
        args = [self.measurement.tool]
        if self.device:
            args.extend(['-d', self.device])

        if self.run_infinitely:
            args.append('--run_infinitely')
        elif self.duration_seconds > 0:
            args.extend(['-D', str(self.duration_seconds)])

        if self.measurement is Measurement.BANDWIDTH:
            if self.queue_pairs > 0:
                args.extend(['-q', str(self.queue_pairs)])
            if self.message_size > 0:
                args.extend(['-m', str(self.message_size)])

        if self.port > 0:
            args.extend(['-p', str(self.port)])
        if self.rdma_cm:
            args.append('-R')
        if self.gid_index > 0:
            args.extend(['-x', str(self.gid_index)])
        if self.target_ip:
            args.append(self.target_ip)

        # Infinite runs never finish, so they never write a report
        if self.report_file and not self.run_infinitely:
            if self.measurement is Measurement.BANDWIDTH:
                args.append('--report_gbits')
            args.extend(['--out_json', '--out_json_file', self.report_file])
        return args

    def build(self) -> str:
        cmd = ' '.join(self.to_args())
        if self.redirect:
            cmd += f" {self.redirect}"
        if self.background:
            cmd += " &"
        return cmd

    def __str__(self) -> str:
        return self.build()


def bandwidth_command(config, device: str, port: int, target_ip: Optional[str] = None,
                      report_file: Optional[str] = None) -> PerftestCommand:
    """ib_write_bw command using the test settings from ``config``."""
    return PerftestCommand(
        measurement=Measurement.BANDWIDTH,
        device=device,
        port=port,
        target_ip=target_ip,
        queue_pairs=config.qp_num,
        message_size=config.message_size_bytes,
        run_infinitely=config.run.infinitely,
        duration_seconds=config.run.duration_seconds,
        rdma_cm=config.rdma_cm,
        gid_index=config.gid_index,
        report_file=report_file if config.report.enable else None,
    )


def latency_command(config, device: str, port: int, target_ip: Optional[str] = None,
                    report_file: Optional[str] = None) -> PerftestCommand:
    """ib_write_lat command; latency runs are always finite and short."""
    return PerftestCommand(
        measurement=Measurement.LATENCY,
        device=device,
        port=port,
        target_ip=target_ip,
        run_infinitely=False,
        duration_seconds=LATENCY_DURATION_SECONDS,
        rdma_cm=config.rdma_cm,
        gid_index=config.gid_index,
        report_file=report_file if config.report.enable else None,
    )


def render_bundle(commands: Sequence[str]) -> str:
    """Join commands into one shell string, each in its own subshell."""
    return BUNDLE_DELIMITER.join(f"( {cmd} )" for cmd in commands)
