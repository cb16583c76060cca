import numpy as np
import pytest

from dynamic_network_sim import epidemic
from dynamic_network_sim.attributes import AttributeStore
from dynamic_network_sim.demography import STATUS
from dynamic_network_sim.errors import ConfigurationError
from dynamic_network_sim.network import NetworkState


def _star(centre="I", leaves=("S", "S", "S")):
    """One node connected to every other node"""
    attributes = AttributeStore([STATUS])
    network = NetworkState(attributes)
    for status in (centre,) + tuple(leaves):
        network.add_node(attributes.allocate({STATUS: status}))
    for leaf in range(1, len(leaves) + 1):
        network.add_edge(0, leaf, step=0)
    return attributes, network


@pytest.mark.parametrize(
    "probability,acts,discordant,expected",
    [(0.5, 1.0, 1, 0.5), (0.5, 1.0, 3, 0.875), (0.1, 2.0, 1, 0.19), (0.3, 0.0, 5, 0.0), (1.0, 1.0, 1, 1.0)],
)
def test_infectionProbability(probability, acts, discordant, expected):
    parameters = epidemic.EpidemicParameters(epidemic.SI, probability, acts)

    assert epidemic.infectionProbability(parameters, discordant) == pytest.approx(expected)


def test_discordantPartnerships():
    attributes, network = _star(centre="S", leaves=("I", "I", "S"))

    assert epidemic.discordantPartnerships(attributes, network) == {0: 2}


def test_certain_transmission_infects_every_partner():
    attributes, network = _star()
    parameters = epidemic.EpidemicParameters(epidemic.SI, 1.0, 1.0)

    infected = epidemic.applyInfection(attributes, network, parameters, np.random.default_rng(0))

    assert infected == [1, 2, 3]
    assert attributes.count_by(STATUS) == {"I": 4}


def test_no_transmission_without_infected():
    attributes, network = _star(centre="S")
    parameters = epidemic.EpidemicParameters(epidemic.SI, 1.0, 1.0)

    assert epidemic.applyInfection(attributes, network, parameters, np.random.default_rng(0)) == []


def test_infection_does_not_chain_within_a_step():
    attributes = AttributeStore([STATUS])
    network = NetworkState(attributes)
    for status in ("I", "S", "S"):
        network.add_node(attributes.allocate({STATUS: status}))
    network.add_edge(0, 1, step=0)
    network.add_edge(1, 2, step=0)
    parameters = epidemic.EpidemicParameters(epidemic.SI, 1.0, 1.0)

    assert epidemic.applyInfection(attributes, network, parameters, np.random.default_rng(0)) == [1]
    assert attributes.get(2, STATUS) == "S"
    assert epidemic.applyInfection(attributes, network, parameters, np.random.default_rng(0)) == [2]


def test_si_never_recovers():
    attributes, _ = _star(leaves=())
    parameters = epidemic.EpidemicParameters(epidemic.SI, 1.0, 1.0, recoveryRate=1.0)

    assert epidemic.applyRecovery(attributes, parameters, [0], np.random.default_rng(0)) == []
    assert attributes.get(0, STATUS) == "I"


@pytest.mark.parametrize("model,state", [(epidemic.SIS, "S"), (epidemic.SIR, "R")])
def test_recovery(model, state):
    attributes, _ = _star(leaves=("S", "I"))
    parameters = epidemic.EpidemicParameters(model, 0.5, 1.0, recoveryRate=1.0)

    recovered = epidemic.applyRecovery(attributes, parameters, [0, 1, 2], np.random.default_rng(0))

    assert recovered == [0, 2]
    assert attributes.get(0, STATUS) == state
    assert attributes.get(2, STATUS) == state


def test_recovery_skips_departed_candidates():
    attributes, _ = _star(leaves=("I",))
    attributes.deactivate(1)
    parameters = epidemic.EpidemicParameters(epidemic.SIR, 0.5, 1.0, recoveryRate=1.0)

    assert epidemic.applyRecovery(attributes, parameters, [0, 1], np.random.default_rng(0)) == [0]


def test_unknown_model():
    attributes, _ = _star(leaves=())
    parameters = epidemic.EpidemicParameters("SEIR", 0.5, 1.0, recoveryRate=0.5)

    with pytest.raises(ConfigurationError):
        epidemic.applyRecovery(attributes, parameters, [0], np.random.default_rng(0))
