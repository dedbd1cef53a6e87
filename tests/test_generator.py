import os

import pytest

from meshbench.commands import Measurement
from meshbench.config import GroupConfig
from meshbench.errors import ConfigurationError, PeerResolutionError, PortBudgetExceeded
from meshbench.generator import ScriptGenerator, write_scripts


def test_incast_bandwidth_bundles(config, resolver):
    result = ScriptGenerator(config, Measurement.BANDWIDTH, resolver).generate()

    assert len(result.pairs) == 4
    assert [s.host for s in result.server_bundle] == ['node1']
    assert [s.host for s in result.client_bundle] == ['node2', 'node3']
    assert result.expected_counts() == {'node1': 4}

    server_cmds = result.server_bundle[0].commands
    assert all(cmd.startswith('ib_write_bw') for cmd in server_cmds)
    assert '/tmp/reports/report_s_node1_mlx5_0_20000.json' in server_cmds[0]
    assert '-p 20003' in server_cmds[3]

    node2 = result.client_bundle[0]
    assert node2.command_count == 2
    assert '10.0.0.1' in node2.commands[0]
    assert '/tmp/reports/report_c_node2_mlx5_0_20000.json' in node2.commands[0]


def test_only_listener_hosts_are_resolved(config, resolver):
    ScriptGenerator(config, Measurement.BANDWIDTH, resolver).generate()
    assert resolver.asked == [['node1']]


def test_port_budget_checked_before_resolution(config, resolver):
    config.start_port = 65535
    with pytest.raises(PortBudgetExceeded):
        ScriptGenerator(config, Measurement.BANDWIDTH, resolver).generate()
    assert resolver.asked == []


def test_resolution_failure_propagates(config):
    def failing(hosts):
        raise PeerResolutionError([])

    with pytest.raises(PeerResolutionError):
        ScriptGenerator(config, Measurement.BANDWIDTH, failing).generate()


def test_fullmesh_latency_names(config, resolver):
    config.stream_type = 'fullmesh'
    config.server = GroupConfig(['n1'], ['mlx5_0'])
    config.client = GroupConfig(['n2'], ['mlx5_0'])
    result = ScriptGenerator(config, Measurement.LATENCY, resolver).generate()

    assert len(result.pairs) == 2
    assert {s.host for s in result.server_bundle} == {'n1', 'n2'}
    n1_server = next(s for s in result.server_bundle if s.host == 'n1')
    assert 'latency_fullmesh_s_n1_mlx5_0_from_n2_mlx5_0_p20000.json' in n1_server.command
    assert n1_server.commands[0].startswith('ib_write_lat')


def test_p2p_names_and_pairing(config, resolver):
    config.stream_type = 'p2p'
    config.server = GroupConfig(['s1'], ['mlx5_0', 'mlx5_1'])
    config.client = GroupConfig(['c1'], ['mlx5_0', 'mlx5_1'])
    result = ScriptGenerator(config, Measurement.BANDWIDTH, resolver).generate()

    client_cmds = result.client_bundle[0].commands
    assert '-d mlx5_1' in client_cmds[0]
    assert 'report_c1_mlx5_1_20000.json' in client_cmds[0]


@pytest.mark.parametrize('stream_type', ['p2p', 'localtest'])
def test_latency_rejects_unsupported_patterns(config, resolver, stream_type):
    config.stream_type = stream_type
    config.client = GroupConfig(['c1'], ['mlx5_0'])
    with pytest.raises(ConfigurationError):
        ScriptGenerator(config, Measurement.LATENCY, resolver).generate()


def test_roles_override(config, resolver):
    swapped = config.roles().swapped()
    result = ScriptGenerator(config, Measurement.LATENCY, resolver).generate(swapped)

    assert [s.host for s in result.server_bundle] == ['node2', 'node3']
    assert resolver.asked == [['node2', 'node3']]


def test_write_scripts(tmp_path, config, resolver):
    result = ScriptGenerator(config, Measurement.BANDWIDTH, resolver).generate()
    paths = write_scripts(result, tmp_path / 'out')

    assert [p.name for p in paths] == ['node1_server.sh', 'node2_client.sh', 'node3_client.sh']
    content = paths[0].read_text()
    assert content.startswith('#!/bin/bash')
    assert content.count('( ib_write_bw') == 4
    assert os.access(paths[0], os.X_OK)
