import pytest

from dynamic_network_sim.attributes import AttributeStore
from dynamic_network_sim.errors import EdgeNotFound, InvalidEdge
from dynamic_network_sim.network import NetworkState


def _network(n=4, strict=True):
    attributes = AttributeStore(["group"])
    network = NetworkState(attributes, strict=strict)
    for i in range(n):
        network.add_node(attributes.allocate({"group": i % 2}))
    return attributes, network


def test_add_edge_is_symmetric():
    _, network = _network()
    network.add_edge(0, 1, step=3, duration=10.0, persistence=0.9)

    assert network.has_edge(0, 1)
    assert network.has_edge(1, 0)
    assert network.edges_of(0) == {1}
    assert network.edges_of(1) == {0}
    assert network.degree(0) == 1
    assert network.edge_count == 1


def test_edge_data():
    _, network = _network()
    network.add_edge(2, 3, step=5, duration=4.0, persistence=0.75)

    [(a, b, data)] = list(network.edges(data=True))

    assert {a, b} == {2, 3}
    assert data == {"created": 5, "duration": 4.0, "persistence": 0.75}


def test_self_loop_is_invalid():
    _, network = _network()

    with pytest.raises(InvalidEdge):
        network.add_edge(1, 1, step=0)


def test_edge_to_inactive_node_is_invalid():
    attributes, network = _network()
    network.remove_node(3)
    attributes.deactivate(3)

    with pytest.raises(InvalidEdge):
        network.add_edge(0, 3, step=0)
    with pytest.raises(InvalidEdge):
        network.add_edge(0, 10, step=0)


def test_duplicated_edge_is_invalid():
    _, network = _network()
    network.add_edge(0, 1, step=0)

    with pytest.raises(InvalidEdge):
        network.add_edge(1, 0, step=1)


def test_strict_remove_missing_edge():
    _, network = _network()

    with pytest.raises(EdgeNotFound):
        network.remove_edge(0, 1)


def test_lenient_remove_missing_edge():
    _, network = _network(strict=False)
    network.add_edge(0, 1, step=0)
    network.remove_edge(0, 1)
    network.remove_edge(0, 1)

    assert network.edge_count == 0


def test_remove_node_drops_its_edges():
    attributes, network = _network()
    network.add_edge(0, 1, step=0)
    network.add_edge(0, 2, step=0)
    network.add_edge(2, 3, step=0)

    partners = network.remove_node(0)
    attributes.deactivate(0)

    assert partners == [1, 2]
    assert network.edge_count == 1
    assert network.degree(1) == 0
    network.check_invariants()


def test_check_invariants_detects_dangling_edge():
    attributes, network = _network()
    network.add_edge(0, 1, step=0)
    attributes.deactivate(1)

    with pytest.raises(AssertionError):
        network.check_invariants()


def test_degree_of_unknown_node():
    _, network = _network()

    assert network.degree(42) == 0
    assert network.edges_of(42) == set()
