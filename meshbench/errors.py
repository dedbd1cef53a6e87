"""
Exception types raised by meshbench.

Configuration and port-budget problems are raised before any remote work is
attempted. Dispatch failures are collected per phase and raised together.
"""

from dataclasses import dataclass
from typing import List, Sequence


class MeshBenchError(Exception):
    """Base class for every error meshbench raises on purpose."""


class ConfigurationError(MeshBenchError):
    """The configuration cannot describe a valid test."""


class PortBudgetExceeded(MeshBenchError):
    """More connection pairs were requested than ports remain above start_port."""

    def __init__(self, required: int, available: int, start_port: int = 0):
        self.required = required
        self.available = available
        self.start_port = start_port
        super().__init__(
            f"not enough available ports starting from {start_port}: "
            f"required {required}, available {available}"
        )


class PeerResolutionError(MeshBenchError):
    """The IP address of one or more listener hosts could not be resolved."""

    def __init__(self, failures: Sequence["HostFailure"]):
        self.failures = list(failures)
        detail = "; ".join(f"{f.host}: {f.reason}" for f in self.failures)
        super().__init__(f"failed to resolve peer IP ({detail})")


@dataclass(frozen=True)
class HostFailure:
    """One host-level failure inside a fan-out phase."""
    host: str
    reason: str


class DispatchError(MeshBenchError):
    """One or more hosts rejected their command bundle during a phase."""

    def __init__(self, phase: str, failures: Sequence[HostFailure]):
        self.phase = phase
        self.failures: List[HostFailure] = list(failures)
        hosts = ", ".join(f.host for f in self.failures)
        super().__init__(f"{phase} dispatch failed on {len(self.failures)} host(s): {hosts}")


class ReadinessTimeout(MeshBenchError):
    """Listeners did not all come up before the readiness deadline."""

    def __init__(self, timeout: float, pending: Sequence[str] = ()):
        self.timeout = timeout
        self.pending = list(pending)
        msg = f"servers not ready after {timeout:.0f}s"
        if self.pending:
            msg += f" (waiting on: {', '.join(self.pending)})"
        super().__init__(msg)


class ArtifactParseError(MeshBenchError):
    """A collected result file has a name or payload that cannot be decoded."""

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"{filename}: {reason}")


class CollectionError(MeshBenchError):
    """The local reports directory could not be prepared."""
