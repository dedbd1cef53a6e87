import pytest

from meshbench.artifacts import ArtifactName, ArtifactRecord, Family, parse_artifact_name
from meshbench.correlator import (CellState, cell_state, correlate_bandwidth, correlate_latency,
                                  correlate_p2p)
from meshbench.topology import Endpoint, Role


def lat(src, dst, value, role=Role.CLIENT, port=20000):
    src_host, src_hca = src.split(':')
    dst_host, dst_hca = dst.split(':')
    if role is Role.CLIENT:
        name = f'latency_incast_c_{src_host}_{src_hca}_to_{dst_host}_{dst_hca}_p{port}.json'
    else:
        name = f'latency_incast_s_{dst_host}_{dst_hca}_from_{src_host}_{src_hca}_p{port}.json'
    return ArtifactRecord(parse_artifact_name(name), metric=value)


def bw(role, host, hca, value, port=20000):
    return ArtifactRecord(ArtifactName(Family.BANDWIDTH, host, hca, port, role=role), metric=value)


def test_latency_matrix_and_statistics():
    records = [
        lat('c1:mlx5_0', 's1:mlx5_0', 2.0),
        lat('c1:mlx5_0', 's1:mlx5_1', 4.0),
        lat('c2:mlx5_0', 's1:mlx5_0', 3.0),
        lat('c2:mlx5_0', 's1:mlx5_0', 3.0, role=Role.SERVER),
    ]
    summary = correlate_latency(records, bipartite=True)

    assert summary.matrix == {'c1:mlx5_0': {'s1:mlx5_0': 2.0, 's1:mlx5_1': 4.0},
                              'c2:mlx5_0': {'s1:mlx5_0': 3.0}}
    assert summary.statistics.min == 2.0
    assert summary.statistics.max == 4.0
    assert summary.statistics.avg == pytest.approx(3.0)
    assert summary.statistics.count == 3
    assert summary.per_source == {'c1:mlx5_0': 3.0, 'c2:mlx5_0': 3.0}
    assert summary.per_target == {'s1:mlx5_0': 2.5, 's1:mlx5_1': 4.0}
    assert summary.listener_files == 1
    assert summary.gaps() == [('c2:mlx5_0', 's1:mlx5_1')]


def test_gap_and_self_cells_are_distinct():
    records = [lat('a:mlx5_0', 'b:mlx5_0', 1.5)]
    summary = correlate_latency(records)

    assert summary.sources == summary.targets == ['a:mlx5_0', 'b:mlx5_0']
    assert cell_state(summary, 'a:mlx5_0', 'b:mlx5_0') is CellState.VALUE
    assert cell_state(summary, 'b:mlx5_0', 'a:mlx5_0') is CellState.GAP
    assert cell_state(summary, 'a:mlx5_0', 'a:mlx5_0') is CellState.SELF
    assert summary.per_source == {}


def test_expected_endpoints_show_up_as_gaps():
    summary = correlate_latency([], bipartite=True,
                                sources=[Endpoint('c1', 'mlx5_0')], targets=[Endpoint('s1', 'mlx5_0')])

    assert summary.gaps() == [('c1:mlx5_0', 's1:mlx5_0')]
    assert summary.statistics.count == 0


def test_correlation_is_idempotent():
    records = [lat('c1:mlx5_0', 's1:mlx5_0', 2.0), lat('c2:mlx5_0', 's1:mlx5_0', 5.0)]
    first = correlate_latency(records, bipartite=True)
    second = correlate_latency(records, bipartite=True)

    assert first == second


def test_repeated_samples_are_averaged_for_latency():
    records = [lat('c1:mlx5_0', 's1:mlx5_0', 2.0, port=1), lat('c1:mlx5_0', 's1:mlx5_0', 4.0, port=2)]
    assert correlate_latency(records).value('c1:mlx5_0', 's1:mlx5_0') == 3.0


def test_bandwidth_verdicts():
    records = [
        bw(Role.SERVER, 's1', 'mlx5_0', 390.0),
        bw(Role.CLIENT, 'c1', 'mlx5_0', 100.0, port=20000),
        bw(Role.CLIENT, 'c1', 'mlx5_0', 95.0, port=20001),
        bw(Role.CLIENT, 'c2', 'mlx5_0', 150.0),
    ]
    report = correlate_bandwidth(records, speed=400)

    assert report.total_server_bw == 400
    assert report.theoretical_per_client == 200
    c1, c2 = report.clients
    assert c1.endpoint == Endpoint('c1', 'mlx5_0')
    assert c1.actual == 195.0
    assert c1.status == 'OK'
    assert c2.delta == -50.0
    assert c2.delta_percent == pytest.approx(-25.0)
    assert c2.status == 'NOT OK'
    assert report.servers[0].status == 'OK'
    assert report.failing == [c2]


def test_bandwidth_without_clients():
    report = correlate_bandwidth([bw(Role.SERVER, 's1', 'mlx5_0', 0.0)], speed=400)

    assert report.theoretical_per_client == 0
    assert report.servers[0].status == 'NOT OK'


def test_p2p_averages():
    records = [
        ArtifactRecord(ArtifactName(Family.P2P, 'n1', 'mlx5_0', 1), metric=100.0),
        ArtifactRecord(ArtifactName(Family.P2P, 'n1', 'mlx5_0', 2), metric=200.0),
        ArtifactRecord(ArtifactName(Family.P2P, 'n2', 'mlx5_0', 1), metric=300.0),
    ]
    report = correlate_p2p(records)

    assert [(e.endpoint.host, e.avg_speed, e.count) for e in report.endpoints] == [
        ('n1', 150.0, 2), ('n2', 300.0, 1)]
    assert report.total_endpoints == 2
    assert report.avg_speed == 225.0
