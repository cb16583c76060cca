import numpy as np
import pytest

from dynamic_network_sim import demography
from dynamic_network_sim.attributes import AttributeStore
from dynamic_network_sim.network import NetworkState


def _population(statuses):
    attributes = AttributeStore(["group", demography.STATUS, demography.ENTRY_STEP])
    network = NetworkState(attributes)
    for i, status in enumerate(statuses):
        node = attributes.allocate({"group": i % 2, demography.STATUS: status, demography.ENTRY_STEP: 0})
        network.add_node(node)
    return attributes, network


def _rates(arrival=0.0, susceptible=0.0, infected=0.0, recovered=0.0):
    return demography.DemographicRates(
        arrivalRate=arrival,
        departureRates={
            demography.SUSCEPTIBLE_STATE: susceptible,
            demography.INFECTED_STATE: infected,
            demography.RECOVERED_STATE: recovered,
        },
    )


def test_closed_population():
    assert demography.CLOSED_POPULATION.closed
    assert not _rates(arrival=0.1).closed
    assert not _rates(infected=0.1).closed


def test_closed_population_never_changes():
    attributes, network = _population(["S"] * 10)
    generator = np.random.default_rng(0)

    assert demography.applyDepartures(attributes, network, demography.CLOSED_POPULATION, generator) == []
    assert demography.applyArrivals(
        attributes, network, demography.CLOSED_POPULATION, "group", [0, 1], 1, generator
    ) == []
    assert len(attributes) == 10


def test_departNode_removes_edges():
    attributes, network = _population(["S"] * 4)
    network.add_edge(0, 1, step=0)
    network.add_edge(0, 2, step=0)

    partners = demography.departNode(attributes, network, 0)

    assert partners == [1, 2]
    assert not attributes.is_active(0)
    assert network.edge_count == 0
    network.check_invariants()


def test_departures_depend_on_status():
    attributes, network = _population(["S"] * 50 + ["I"] * 50)

    departed = demography.applyDepartures(attributes, network, _rates(infected=1.0), np.random.default_rng(0))

    assert departed == list(range(50, 100))
    assert len(attributes) == 50
    assert set(attributes.count_by(demography.STATUS)) == {"S"}
    network.check_invariants()


def test_departures_rate():
    attributes, network = _population(["S"] * 2000)

    departed = demography.applyDepartures(attributes, network, _rates(susceptible=0.1), np.random.default_rng(2))

    assert len(departed) == pytest.approx(200, abs=50)


def test_arrivals_are_susceptible_and_new():
    attributes, network = _population(["I"] * 100)

    arrived = demography.applyArrivals(
        attributes, network, _rates(arrival=0.5), "group", [0, 1], 3, np.random.default_rng(1)
    )

    assert arrived
    assert min(arrived) >= 100
    for node in arrived:
        assert attributes.get(node, demography.STATUS) == demography.SUSCEPTIBLE_STATE
        assert attributes.get(node, demography.ENTRY_STEP) == 3
        assert network.degree(node) == 0
    network.check_invariants()


def test_arrivals_per_group_scale_with_group_size():
    attributes = AttributeStore(["group", demography.STATUS, demography.ENTRY_STEP])
    network = NetworkState(attributes)
    for _ in range(1000):
        network.add_node(attributes.allocate({"group": "big", demography.STATUS: "S"}))
    network.add_node(attributes.allocate({"group": "small", demography.STATUS: "S"}))

    arrived = demography.applyArrivals(
        attributes, network, _rates(arrival=0.1), "group", ["big", "small", "empty"], 1, np.random.default_rng(4)
    )

    groups = attributes.count_by("group", arrived)
    assert groups["big"] == pytest.approx(100, abs=35)
    assert groups["small"] <= 5
    assert groups["empty"] == 0
