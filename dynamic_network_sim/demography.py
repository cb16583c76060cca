"""
Arrivals and departures of nodes.

Within a step departures always happen before arrivals, so nodes arriving in a step can form partnerships in that
same step, while nodes departing in it never do.
"""
import logging
from typing import Any, Dict, List, NamedTuple

import numpy as np  # type: ignore

from dynamic_network_sim.attributes import AttributeStore, NodeId
from dynamic_network_sim.network import NetworkState

logger = logging.getLogger(__name__)

STATUS = "status"
ENTRY_STEP = "entry_step"

SUSCEPTIBLE_STATE = "S"
INFECTED_STATE = "I"
RECOVERED_STATE = "R"
STATES = (SUSCEPTIBLE_STATE, INFECTED_STATE, RECOVERED_STATE)


class DemographicRates(NamedTuple):
    """
    Per-step rates of the open population. ``arrivalRate`` is per capita: each group receives a Poisson number of
    new nodes with mean ``arrivalRate`` times the current size of the group. ``departureRates`` is the per-step
    departure probability of a node in each disease state.
    """
    arrivalRate: float
    departureRates: Dict[str, float]

    @property
    def closed(self) -> bool:
        return self.arrivalRate == 0.0 and not any(self.departureRates.values())


CLOSED_POPULATION = DemographicRates(arrivalRate=0.0, departureRates={state: 0.0 for state in STATES})


def departNode(attributes: AttributeStore, network: NetworkState, node: NodeId) -> List[NodeId]:
    """
    Removes a node from the population along with all its partnerships

    :return: the node's partners at the time of departure
    """
    partners = network.remove_node(node)
    attributes.deactivate(node)
    return partners


def applyDepartures(
        attributes: AttributeStore,
        network: NetworkState,
        rates: DemographicRates,
        generator: np.random.Generator,
) -> List[NodeId]:
    """
    Draws, independently for each active node, whether it departs in this step. The probability depends on the node's
    disease status.

    :param attributes: the population, modified in place
    :param network: the network, modified in place
    :param rates: demographic rates
    :param generator: random number generator for this trial
    :return: the ids of the nodes that departed
    """
    nodes = attributes.active_nodes()
    if not nodes or not any(rates.departureRates.values()):
        return []
    probabilities = np.array([rates.departureRates[attributes.get(node, STATUS)] for node in nodes])
    draws = generator.random(len(nodes))
    departed = [node for node, leaves in zip(nodes, draws < probabilities) if leaves]
    for node in departed:
        departNode(attributes, network, node)
    return departed


def applyArrivals(
        attributes: AttributeStore,
        network: NetworkState,
        rates: DemographicRates,
        groupAttribute: str,
        levels: List[Any],
        step: int,
        generator: np.random.Generator,
) -> List[NodeId]:
    """
    Adds new susceptible nodes to each group of the population.

    :param attributes: the population, modified in place
    :param network: the network, new nodes are added without edges
    :param rates: demographic rates
    :param groupAttribute: attribute holding the group of each node
    :param levels: the groups, in the order arrivals are drawn
    :param step: current step, stored as the entry step of the new nodes
    :param generator: random number generator for this trial
    :return: the ids of the new nodes
    """
    if rates.arrivalRate == 0.0:
        return []
    sizes = attributes.count_by(groupAttribute)
    arrived = []
    for level in levels:
        for _ in range(int(generator.poisson(rates.arrivalRate * sizes.get(level, 0)))):
            node = attributes.allocate({groupAttribute: level, STATUS: SUSCEPTIBLE_STATE, ENTRY_STEP: step})
            network.add_node(node)
            arrived.append(node)
    return arrived
