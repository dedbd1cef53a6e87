#!/usr/bin/env python3

"""
meshbench command line.

Subcommands:
  init        write a default config.yaml
  generate    render per-host scripts without running them
  run         bandwidth test: execute, wait, collect, analyze
  lat         latency test: execute, wait, collect, show the matrix
  probe       show perftest processes on every host
  collect     pull report files into reports/<host>/
  analyze     analyze an existing reports directory
  stop        kill perftest processes on every host
  check-conn  bidirectional latency connectivity check
"""

import argparse
import sys
import time
from typing import List, Optional

from . import __version__
from .artifacts import family_for, scan_artifacts
from .collector import DEFAULT_REPORTS_DIR, Collector
from .commands import Measurement
from .config import DEFAULT_CONFIG_PATH, ensure_config_file, load_config
from .connectivity import ConnectivityAnalyzer
from .console import print_error, print_header, print_info, print_line, print_success, print_warning
from .correlator import correlate_bandwidth, correlate_latency, correlate_p2p
from .display import (format_bandwidth_report, format_connectivity, format_latency_matrix,
                      format_latency_statistics, format_p2p_report, format_probe_summary)
from .errors import MeshBenchError
from .generator import write_scripts
from .orchestrator import stop_all
from .readiness import probe_all
from .remote import SSHExecutor
from .topology import Pattern, TopologySpec
from .workflow import BenchmarkCycle, LatencyCycle, make_generator


def _measurement(args) -> Measurement:
    return Measurement.LATENCY if getattr(args, "latency", False) else Measurement.BANDWIDTH


def show_bandwidth(config, records) -> None:
    print_header(f"Bandwidth results ({config.stream_type})")
    if config.pattern is Pattern.P2P:
        print_line(format_p2p_report(correlate_p2p(records)))
        return
    report = correlate_bandwidth(records, config.speed)
    print_line(format_bandwidth_report(report))
    if report.failing:
        print_warning(f"{len(report.failing)} endpoint(s) outside the expected bandwidth range")


def show_latency(config, records) -> None:
    roles = config.roles()
    if config.pattern is Pattern.INCAST:
        summary = correlate_latency(records, bipartite=True, sources=roles.client.endpoints(),
                                    targets=roles.server.endpoints())
    else:
        mesh = TopologySpec(roles, config.start_port).mesh_endpoints()
        summary = correlate_latency(records, sources=mesh, targets=mesh)
    print_header(f"Latency matrix ({config.stream_type}, us)")
    print_line(format_latency_matrix(summary))
    print_line()
    print_line(format_latency_statistics(summary))
    missing = summary.gaps()
    if missing:
        print_warning(f"{len(missing)} pair(s) produced no latency report")


def cmd_init(args) -> int:
    if ensure_config_file(args.config):
        print_success(f"Wrote default configuration to {args.config}")
    else:
        print_info(f"{args.config} already exists, leaving it untouched")
    return 0


def cmd_generate(args) -> int:
    config = load_config(args.config)
    config.validate()
    executor = SSHExecutor.from_config(config)
    result = make_generator(config, executor, _measurement(args)).generate()
    paths = write_scripts(result, config.output_dir())
    print_success(f"Generated {len(result.pairs)} pair(s), {len(paths)} script(s) in {config.output_dir()}")
    for path in paths:
        print_line(f"  {path}")
    return 0


def _cycle(args, executor) -> BenchmarkCycle:
    return BenchmarkCycle(executor, reports_dir=args.reports_dir, verbose=args.verbose)


def cmd_run(args) -> int:
    config = load_config(args.config)
    executor = SSHExecutor.from_config(config)
    records = _cycle(args, executor).run(config, Measurement.BANDWIDTH)
    if records:
        show_bandwidth(config, records)
    return 0


def cmd_lat(args) -> int:
    config = load_config(args.config)
    executor = SSHExecutor.from_config(config)
    records = _cycle(args, executor).run(config, Measurement.LATENCY)
    if records:
        show_latency(config, records)
    return 0


def cmd_probe(args) -> int:
    config = load_config(args.config)
    executor = SSHExecutor.from_config(config)
    tool = _measurement(args).tool
    hosts = config.all_hosts()
    while True:
        summary = probe_all(executor, hosts, tool)
        print_header(f"{tool} processes at {time.strftime('%H:%M:%S')}")
        print_line(format_probe_summary(summary))
        if args.once or summary.all_completed:
            break
        time.sleep(args.interval)
    if summary.all_completed:
        print_success("No test processes running")
    return 0


def cmd_collect(args) -> int:
    config = load_config(args.config)
    executor = SSHExecutor.from_config(config)
    result = Collector(config, executor).collect(args.reports_dir, cleanup_remote=not args.no_cleanup)
    for host, reason in result.failures.items():
        print_warning(f"{host}: {reason}")
    return 0


def cmd_analyze(args) -> int:
    config = load_config(args.config)
    records = scan_artifacts(args.reports_dir, family=family_for(config.pattern))
    if not records:
        print_warning(f"No report files found under {args.reports_dir}")
        return 0
    if args.latency:
        show_latency(config, records)
    else:
        show_bandwidth(config, records)
    return 0


def cmd_stop(args) -> int:
    config = load_config(args.config)
    executor = SSHExecutor.from_config(config)
    tool = _measurement(args).tool
    failures = stop_all(executor, config.all_hosts(), tool)
    for host, reason in failures.items():
        print_error(f"{host}: failed to stop {tool}: {reason}")
    if failures:
        return 1
    print_success(f"Stopped {tool} on {len(config.all_hosts())} host(s)")
    return 0


def cmd_check_conn(args) -> int:
    config = load_config(args.config)
    executor = SSHExecutor.from_config(config)
    runner = LatencyCycle(executor, reports_dir=args.reports_dir, verbose=args.verbose)
    summary = ConnectivityAnalyzer(config, runner).check()
    print_header("Connectivity")
    print_line(format_connectivity(summary))
    if summary.exit_code() == 0:
        print_success(f"All {summary.total_pairs} pair(s) connected in both directions")
    else:
        print_error(f"{summary.disconnected_pairs} disconnected and {summary.error_pairs} error pair(s)")
    return summary.exit_code()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='meshbench',
        description='Run RDMA perftest bandwidth and latency tests across many hosts and adapters',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init
  %(prog)s run -c config.yaml
  %(prog)s lat
  %(prog)s analyze --latency --reports-dir reports
  %(prog)s check-conn
"""
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    sub = parser.add_subparsers(dest='command', metavar='COMMAND')
    sub.required = True

    def add(name, func, help_text, latency_flag=False, reports=False, verbose=False):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('-c', '--config', default=DEFAULT_CONFIG_PATH,
                       help=f'Path to configuration YAML file (default: {DEFAULT_CONFIG_PATH})')
        if latency_flag:
            p.add_argument('--latency', action='store_true', help='Use ib_write_lat instead of ib_write_bw')
        if reports:
            p.add_argument('--reports-dir', default=DEFAULT_REPORTS_DIR,
                           help=f'Local reports directory (default: {DEFAULT_REPORTS_DIR})')
        if verbose:
            p.add_argument('-v', '--verbose', action='store_true', help='Print per-host readiness counts')
        p.set_defaults(func=func)
        return p

    add('init', cmd_init, 'Write a default configuration file')
    add('generate', cmd_generate, 'Generate per-host scripts only', latency_flag=True)
    add('run', cmd_run, 'Run a bandwidth test and analyze it', reports=True, verbose=True)
    add('lat', cmd_lat, 'Run a latency test and show the matrix', reports=True, verbose=True)
    probe = add('probe', cmd_probe, 'Show running test processes', latency_flag=True)
    probe.add_argument('--once', action='store_true', help='Probe once and exit')
    probe.add_argument('--interval', type=float, default=5.0, help='Seconds between probes (default: 5)')
    collect = add('collect', cmd_collect, 'Collect report files from all hosts', reports=True)
    collect.add_argument('--no-cleanup', action='store_true', help='Keep report files on the hosts')
    add('analyze', cmd_analyze, 'Analyze collected reports', latency_flag=True, reports=True)
    add('stop', cmd_stop, 'Stop test processes on all hosts', latency_flag=True)
    add('check-conn', cmd_check_conn, 'Check connectivity in both directions', reports=True, verbose=True)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except MeshBenchError as e:
        print_error(str(e))
        return 1
    except KeyboardInterrupt:
        print_warning("Interrupted")
        return 1


if __name__ == '__main__':
    sys.exit(main())
