"""
Table rendering for analysis results.
"""

from typing import List, Optional

from colorama import Fore, Style
from tabulate import tabulate

from .connectivity import ConnectivitySummary, DirectionResult, LinkStatus
from .correlator import BandwidthReport, CellState, LatencySummary, P2PReport, cell_state
from .readiness import ProbeStatus, ProbeSummary

GAP_MARK = "MISSING"
SELF_MARK = "-"

_STATUS_COLORS = {
    "OK": Fore.GREEN,
    "NOT OK": Fore.RED,
    LinkStatus.CONNECTED.value: Fore.GREEN,
    LinkStatus.DISCONNECTED.value: Fore.YELLOW,
    LinkStatus.ERROR.value: Fore.RED,
    ProbeStatus.RUNNING.value: Fore.YELLOW,
    ProbeStatus.COMPLETED.value: Fore.GREEN,
    ProbeStatus.ERROR.value: Fore.RED,
}


def colored(text: str, color: bool = True) -> str:
    if not color or text not in _STATUS_COLORS:
        return text
    return f"{_STATUS_COLORS[text]}{text}{Style.RESET_ALL}"


def latency_cell(summary: LatencySummary, source: str, target: str, color: bool = True) -> str:
    state = cell_state(summary, source, target)
    if state is CellState.VALUE:
        return f"{summary.value(source, target):.2f}"
    if state is CellState.SELF:
        return SELF_MARK
    return f"{Fore.RED}{GAP_MARK}{Style.RESET_ALL}" if color else GAP_MARK


def format_latency_matrix(summary: LatencySummary, color: bool = True) -> str:
    """Sources as rows, targets as columns, latency in microseconds."""
    if not summary.sources:
        return "No latency data found."

    headers = ["source \\ target"] + summary.targets
    rows = [[src] + [latency_cell(summary, src, dst, color) for dst in summary.targets]
            for src in summary.sources]
    if summary.bipartite:
        headers.append("avg")
        for row, src in zip(rows, summary.sources):
            avg = summary.per_source.get(src)
            row.append(f"{avg:.2f}" if avg is not None else "")
        footer = ["avg"] + [
            f"{summary.per_target[dst]:.2f}" if dst in summary.per_target else ""
            for dst in summary.targets
        ] + [""]
        rows.append(footer)
    return tabulate(rows, headers=headers, tablefmt="grid")


def format_latency_statistics(summary: LatencySummary) -> str:
    stats = summary.statistics
    rows = [
        ["Samples", stats.count],
        ["Min (us)", f"{stats.min:.2f}"],
        ["Max (us)", f"{stats.max:.2f}"],
        ["Avg (us)", f"{stats.avg:.2f}"],
        ["Missing pairs", len(summary.gaps())],
        ["Listener reports", summary.listener_files],
    ]
    return tabulate(rows, tablefmt="simple")


def format_bandwidth_report(report: BandwidthReport, color: bool = True) -> str:
    headers = ["Role", "Endpoint", "Actual (Gbps)", "Expected (Gbps)", "Delta", "Delta %", "Status"]
    rows = []
    for role, entries in (("client TX", report.clients), ("server RX", report.servers)):
        for e in entries:
            rows.append([role, e.endpoint.key, f"{e.actual:.2f}", f"{e.theoretical:.2f}",
                         f"{e.delta:+.2f}", f"{e.delta_percent:+.1f}%", colored(e.status, color)])
    if not rows:
        return "No bandwidth data found."
    lines = [tabulate(rows, headers=headers, tablefmt="grid"), ""]
    lines.append(f"Total server bandwidth: {report.total_server_bw:.2f} Gbps "
                 f"({len(report.servers)} endpoint(s) x {report.speed:g} Gbps)")
    lines.append(f"Expected per client:    {report.theoretical_per_client:.2f} Gbps "
                 f"({report.client_count} client endpoint(s))")
    return "\n".join(lines)


def format_p2p_report(report: P2PReport) -> str:
    if not report.endpoints:
        return "No p2p data found."
    rows = [[e.endpoint.key, f"{e.avg_speed:.2f}", e.count] for e in report.endpoints]
    table = tabulate(rows, headers=["Endpoint", "Avg (Gbps)", "Reports"], tablefmt="grid")
    return f"{table}\n\nEndpoints: {report.total_endpoints}, mean speed {report.avg_speed:.2f} Gbps"


def _direction(d: Optional[DirectionResult], color: bool) -> str:
    if d is None:
        return colored(LinkStatus.DISCONNECTED.value, color)
    text = colored(d.status.value, color)
    if d.latency_us is not None:
        text += f" ({d.latency_us:.2f} us)"
    return text


def format_connectivity(summary: ConnectivitySummary, color: bool = True) -> str:
    rows = [[key, _direction(r.forward, color), _direction(r.backward, color),
             colored(r.status.value, color)]
            for key, r in summary.results.items()]
    table = tabulate(rows, headers=["Pair", "Forward", "Backward", "Status"], tablefmt="grid")
    totals: List[str] = [
        table,
        "",
        f"Total pairs:        {summary.total_pairs}",
        f"Connected pairs:    {summary.connected_pairs}",
        f"Disconnected pairs: {summary.disconnected_pairs}",
        f"Error pairs:        {summary.error_pairs}",
    ]
    for name, error in summary.run_errors.items():
        totals.append(f"{name} run failed: {error}")
    return "\n".join(totals)


def format_probe_summary(summary: ProbeSummary, color: bool = True) -> str:
    rows = [[r.host, r.process_count, colored(r.status.value, color), r.error or ""]
            for r in summary.results]
    table = tabulate(rows, headers=["Host", "Processes", "Status", "Error"], tablefmt="simple")
    return (f"{table}\n\nRunning: {summary.running_hosts}  Completed: {summary.completed_hosts}  "
            f"Error: {summary.error_hosts}  Processes: {summary.total_processes}")
