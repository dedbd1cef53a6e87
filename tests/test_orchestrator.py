import pytest

from meshbench.commands import Measurement
from meshbench.errors import DispatchError, ReadinessTimeout
from meshbench.generator import ScriptGenerator
from meshbench.orchestrator import (ExecutionState, Orchestrator, cleanup_reports, stop_all,
                                    wait_for_completion)
from meshbench.readiness import ProbeStatus, probe_all, probe_host, wait_until
from meshbench.remote import RemoteResult


def ps_counts(counts):
    """Handler answering the process-count probe from a host -> int mapping or callable."""
    def handler(host, command):
        value = counts(host) if callable(counts) else counts.get(host, 0)
        return RemoteResult(stdout=f"{value}\n")
    return handler


@pytest.fixture
def generation(config, resolver):
    return ScriptGenerator(config, Measurement.BANDWIDTH, resolver).generate()


def test_probe_host_statuses(executor):
    executor.on('ps aux', ps_counts({'a': 3, 'b': 0}))
    assert probe_host(executor, 'a', 'ib_write_bw').status is ProbeStatus.RUNNING
    assert probe_host(executor, 'b', 'ib_write_bw').status is ProbeStatus.COMPLETED


def test_probe_host_error(executor):
    executor.on('ps aux', RemoteResult(stderr='connection refused', exit_status=255))
    result = probe_host(executor, 'a', 'ib_write_bw')

    assert result.status is ProbeStatus.ERROR
    assert result.process_count == 0
    assert 'connection refused' in result.error


def test_probe_host_garbage_output(executor):
    executor.on('ps aux', RemoteResult(stdout='oops'))
    assert probe_host(executor, 'a', 'ib_write_bw').status is ProbeStatus.ERROR


def test_probe_all_summary(executor):
    executor.on('ps aux', ps_counts({'a': 2, 'b': 0, 'c': 1}))
    summary = probe_all(executor, ['a', 'b', 'c'], 'ib_write_bw')

    assert [r.host for r in summary.results] == ['a', 'b', 'c']
    assert summary.running_hosts == 2
    assert summary.completed_hosts == 1
    assert summary.total_processes == 3
    assert not summary.all_completed


def test_wait_until_returns_first_accepted(clock):
    values = iter([1, 2, 3, 4])
    result = wait_until(lambda: next(values), lambda v: v >= 3, interval=1, timeout=10,
                        sleep=clock.sleep, clock=clock)

    assert result == 3
    assert clock.sleeps == [1, 1]


def test_wait_until_times_out(clock):
    with pytest.raises(ReadinessTimeout) as excinfo:
        wait_until(lambda: 0, lambda v: False, interval=2, timeout=5,
                   pending=lambda v: ['node1'], sleep=clock.sleep, clock=clock)

    assert excinfo.value.pending == ['node1']
    assert clock.now >= 5


def test_execute_success(config, executor, clock, generation):
    executor.on('ps aux', ps_counts({'node1': 4}))
    orchestrator = Orchestrator(config, executor, 'ib_write_bw', sleep=clock.sleep, clock=clock)
    report = orchestrator.execute(generation)

    assert report.ok
    assert orchestrator.state is ExecutionState.COMPLETED
    dispatched = [h for h, cmd in executor.calls if cmd.startswith('( ib_write_bw')]
    assert dispatched[0] == 'node1'
    assert sorted(dispatched[1:]) == ['node2', 'node3']


def test_readiness_waits_for_expected_count(config, executor, clock, generation):
    counts = iter([1, 2, 4])
    executor.on('ps aux', ps_counts(lambda host: next(counts)))
    Orchestrator(config, executor, 'ib_write_bw', sleep=clock.sleep, clock=clock).execute(generation)

    assert clock.sleeps == [1, 1]


def test_readiness_timeout_blocks_clients(config, executor, clock, generation):
    executor.on('ps aux', ps_counts({'node1': 2}))
    orchestrator = Orchestrator(config, executor, 'ib_write_bw', sleep=clock.sleep, clock=clock)

    with pytest.raises(ReadinessTimeout) as excinfo:
        orchestrator.execute(generation)

    assert excinfo.value.pending == ['node1']
    assert orchestrator.state is ExecutionState.FAILED
    assert executor.commands_for('node2') == []
    assert executor.commands_for('node3') == []


def test_server_dispatch_failures_are_aggregated(config, executor, clock, resolver):
    config.server.hostname = ['node1', 'node4']
    result = ScriptGenerator(config, Measurement.BANDWIDTH, resolver).generate()
    executor.on('( ib_write_bw', RemoteResult(stderr='denied', exit_status=1))
    orchestrator = Orchestrator(config, executor, 'ib_write_bw', sleep=clock.sleep, clock=clock)

    with pytest.raises(DispatchError) as excinfo:
        orchestrator.execute(result)

    assert excinfo.value.phase == 'server'
    assert sorted(f.host for f in excinfo.value.failures) == ['node1', 'node4']
    assert orchestrator.report.server_failures
    assert executor.calls_matching('ps aux') == []


def test_client_dispatch_failure(config, executor, clock, generation):
    executor.on('ps aux', ps_counts({'node1': 4}))

    def reject_node3(host, command):
        return RemoteResult(stderr='boom', exit_status=1) if host == 'node3' else RemoteResult()

    executor.on('( ib_write_bw', reject_node3)
    orchestrator = Orchestrator(config, executor, 'ib_write_bw', sleep=clock.sleep, clock=clock)

    with pytest.raises(DispatchError) as excinfo:
        orchestrator.execute(generation)

    assert excinfo.value.phase == 'client'
    assert [f.host for f in excinfo.value.failures] == ['node3']
    assert orchestrator.report.client_failures[0].reason == 'exit 1: boom'


def test_wait_for_completion(executor, clock):
    counts = iter([3, 1, 0])
    executor.on('ps aux', ps_counts(lambda host: next(counts)))
    summary = wait_for_completion(executor, ['node1'], 'ib_write_bw', interval=5,
                                  sleep=clock.sleep, clock=clock, verbose=False)

    assert summary.all_completed
    assert clock.sleeps == [5, 5]


def test_cleanup_reports(executor):
    executor.on('rm -f', lambda host, cmd: RemoteResult(exit_status=1, stderr='ro fs')
                if host == 'b' else RemoteResult())
    failures = cleanup_reports(executor, ['a', 'b'], '/root/')

    assert ('a', 'rm -f /root/*a*.json') in executor.calls
    assert list(failures) == ['b']


def test_stop_all_treats_no_process_as_success(executor):
    def killall(host, command):
        if host == 'a':
            return RemoteResult(stderr='ib_write_bw: no process found', exit_status=1)
        if host == 'b':
            return RemoteResult(stderr='Permission denied', exit_status=1)
        return RemoteResult()

    executor.on('killall', killall)
    failures = stop_all(executor, ['a', 'b', 'c'], 'ib_write_bw')
    assert list(failures) == ['b']
