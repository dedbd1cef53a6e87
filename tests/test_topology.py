import pytest

from meshbench.errors import ConfigurationError, PortBudgetExceeded
from meshbench.topology import (ConnectionPair, Endpoint, PairingRule, Pattern, RoleGroup,
                                TopologyRoles, TopologySpec, generate_pairs)


def roles(rule, server_hosts, server_hcas, client_hosts=(), client_hcas=()):
    return TopologyRoles(
        server=RoleGroup(server_hosts, server_hcas),
        client=RoleGroup(client_hosts, client_hcas),
        rule=rule,
    )


def assert_contiguous_ports(pairs, start):
    assert [p.port for p in pairs] == list(range(start, start + len(pairs)))


@pytest.mark.parametrize('rule, expected', [
    (PairingRule.ALL_PAIRS, 5 * 4),  # b:mlx5_0 sits in both groups, counted once
    (PairingRule.BIPARTITE, 4 * 2),
    (PairingRule.INDEXED_STAGGERED, 2 * 2),
    (PairingRule.ALL_PAIRS_WITH_SELF, 4 * 4),
])
def test_pair_counts_and_contiguous_ports(rule, expected):
    r = roles(rule, ['a', 'b'], ['mlx5_0', 'mlx5_1'], ['b', 'c'], ['mlx5_0'])
    spec = TopologySpec(r, 30000)
    pairs = list(spec.pairs())

    assert spec.count() == expected
    assert len(pairs) == expected
    assert_contiguous_ports(pairs, 30000)
    assert len({p.port for p in pairs}) == len(pairs)


def test_fullmesh_two_hosts_one_adapter():
    pairs = generate_pairs(roles(PairingRule.ALL_PAIRS, ['n1'], ['mlx5_0'], ['n2'], ['mlx5_0']), 20000)

    assert [p.port for p in pairs] == [20000, 20001]
    assert {(p.source.host, p.target.host) for p in pairs} == {('n2', 'n1'), ('n1', 'n2')}


def test_fullmesh_deduplicates_and_skips_self():
    r = roles(PairingRule.ALL_PAIRS, ['n1', 'n2'], ['mlx5_0'], ['n2'], ['mlx5_0'])
    pairs = generate_pairs(r, 20000)

    assert len(pairs) == 2
    assert all(p.source != p.target for p in pairs)


def test_incast_scenario():
    r = roles(PairingRule.BIPARTITE, ['s1'], ['mlx5_0', 'mlx5_1'], ['c1', 'c2'], ['mlx5_0'])
    pairs = generate_pairs(r, 20000)

    assert [p.port for p in pairs] == [20000, 20001, 20002, 20003]
    assert {p.listener.host for p in pairs} == {'s1'}
    assert {p.initiator.host for p in pairs} == {'c1', 'c2'}
    # listener-major order
    assert [p.target.adapter for p in pairs] == ['mlx5_0', 'mlx5_0', 'mlx5_1', 'mlx5_1']


def test_incast_port_counter_is_global_across_server_hosts():
    r = roles(PairingRule.BIPARTITE, ['s1', 's2'], ['mlx5_0'], ['c1'], ['mlx5_0'])
    pairs = generate_pairs(r, 20000)

    assert [(p.target.host, p.port) for p in pairs] == [('s1', 20000), ('s2', 20001)]


def test_p2p_staggers_adapters():
    hcas = ['mlx5_0', 'mlx5_1', 'mlx5_2']
    pairs = generate_pairs(roles(PairingRule.INDEXED_STAGGERED, ['s1'], hcas, ['c1'], hcas), 20000)

    assert len(pairs) == 3
    first = pairs[0]
    assert first.port == 20000
    assert first.target == Endpoint('s1', 'mlx5_0')
    assert first.source == Endpoint('c1', 'mlx5_1')
    assert [p.source.adapter for p in pairs] == ['mlx5_1', 'mlx5_2', 'mlx5_0']
    assert all(p.source.adapter != p.target.adapter for p in pairs)


def test_p2p_pairs_hosts_by_index():
    pairs = generate_pairs(
        roles(PairingRule.INDEXED_STAGGERED, ['s1', 's2'], ['mlx5_0'], ['c1', 'c2'], ['mlx5_0']), 20000)

    assert [(p.source.host, p.target.host) for p in pairs] == [('c1', 's1'), ('c2', 's2')]


def test_p2p_requires_equal_host_counts():
    r = roles(PairingRule.INDEXED_STAGGERED, ['s1', 's2'], ['mlx5_0'], ['c1'], ['mlx5_0'])
    with pytest.raises(ConfigurationError):
        TopologySpec(r, 20000).pairs()


def test_localtest_includes_diagonal():
    pairs = generate_pairs(roles(PairingRule.ALL_PAIRS_WITH_SELF, ['n1'], ['mlx5_0', 'mlx5_1']), 20000)

    assert len(pairs) == 4
    assert sum(1 for p in pairs if p.source == p.target) == 2


def test_port_budget_fails_before_enumeration():
    r = roles(PairingRule.BIPARTITE, ['s1'], ['mlx5_0', 'mlx5_1'], ['c1'], ['mlx5_0', 'mlx5_1'])
    spec = TopologySpec(r, 65534)

    with pytest.raises(PortBudgetExceeded) as excinfo:
        spec.pairs()
    assert excinfo.value.required == 4
    assert excinfo.value.available == 2


def test_port_budget_exact_fit():
    r = roles(PairingRule.BIPARTITE, ['s1'], ['mlx5_0'], ['c1'], ['mlx5_0', 'mlx5_1'])
    pairs = generate_pairs(r, 65534)
    assert [p.port for p in pairs] == [65534, 65535]


def test_duplicate_endpoints_rejected():
    r = roles(PairingRule.BIPARTITE, ['s1', 's1'], ['mlx5_0'], ['c1'], ['mlx5_0'])
    with pytest.raises(ConfigurationError):
        r.validate()


def test_host_with_underscore_rejected():
    r = roles(PairingRule.BIPARTITE, ['node_1'], ['mlx5_0'], ['c1'], ['mlx5_0'])
    with pytest.raises(ConfigurationError):
        r.validate()


@pytest.mark.parametrize('adapter', ['eth_to_sw', 'port_from_a', 'mlx5_to', ''])
def test_adapter_with_direction_word_rejected(adapter):
    r = roles(PairingRule.BIPARTITE, ['s1'], ['mlx5_0'], ['c1'], [adapter])
    with pytest.raises(ConfigurationError):
        r.validate()


@pytest.mark.parametrize('adapter', ['to_a', 'tor_0', 'from1_x', 'mlx5_bond_0'])
def test_adapter_with_direction_word_as_substring_allowed(adapter):
    roles(PairingRule.BIPARTITE, ['s1'], [adapter], ['c1'], ['mlx5_0']).validate()


def test_swapped_returns_new_value():
    original = roles(PairingRule.BIPARTITE, ['s1'], ['mlx5_0'], ['c1', 'c2'], ['mlx5_1'])
    swapped = original.swapped()

    assert swapped.server.hosts == ('c1', 'c2')
    assert swapped.client.hosts == ('s1',)
    assert original.server.hosts == ('s1',)
    assert swapped.swapped() == original


def test_pattern_mapping():
    r = TopologyRoles.for_pattern(Pattern.P2P, RoleGroup(['a'], ['x']), RoleGroup(['b'], ['x']))
    assert r.rule is PairingRule.INDEXED_STAGGERED
    with pytest.raises(ConfigurationError):
        Pattern.parse('ring')


def test_connection_pair_roles():
    pair = ConnectionPair(Endpoint('c1', 'mlx5_0'), Endpoint('s1', 'mlx5_1'), 20000)
    assert pair.initiator.host == 'c1'
    assert pair.listener.host == 's1'
