r"""
Disease transmission over the active partnerships.

A susceptible node with :math:`k` discordant partnerships (partners who are infected) becomes infected in a step with
probability

.. math::

    1 - (1 - \beta)^{\alpha k}

where :math:`\beta` is the transmission probability per act and :math:`\alpha` the number of acts per partnership
per step. In the SI model infection is absorbing. SIS and SIR models add recovery, to susceptible or to recovered
respectively, with a fixed per-step probability.
"""
import logging
from typing import Dict, Iterable, List, NamedTuple

import numpy as np  # type: ignore

from dynamic_network_sim.attributes import AttributeStore, NodeId
from dynamic_network_sim.demography import INFECTED_STATE, RECOVERED_STATE, STATUS, SUSCEPTIBLE_STATE
from dynamic_network_sim.errors import ConfigurationError
from dynamic_network_sim.network import NetworkState

logger = logging.getLogger(__name__)

SI = "SI"
SIS = "SIS"
SIR = "SIR"
DISEASE_MODELS = (SI, SIS, SIR)


class EpidemicParameters(NamedTuple):
    """
    Parameters of the disease process
    """
    model: str
    infectionProbability: float
    actRate: float
    recoveryRate: float = 0.0


def discordantPartnerships(attributes: AttributeStore, network: NetworkState) -> Dict[NodeId, int]:
    """
    Number of infected partners of every susceptible node that has at least one

    :param attributes: the population
    :param network: the current network
    :return: dict from susceptible node to its number of discordant partnerships
    """
    counts: Dict[NodeId, int] = {}
    for a, b in network.edges():
        statusA = attributes.get(a, STATUS)
        statusB = attributes.get(b, STATUS)
        if statusA == SUSCEPTIBLE_STATE and statusB == INFECTED_STATE:
            counts[a] = counts.get(a, 0) + 1
        elif statusB == SUSCEPTIBLE_STATE and statusA == INFECTED_STATE:
            counts[b] = counts.get(b, 0) + 1
    return counts


def infectionProbability(parameters: EpidemicParameters, discordant: int) -> float:
    """
    Per-step probability of infection for a susceptible with the given number of discordant partnerships

    >>> infectionProbability(EpidemicParameters(SI, 0.5, 1.0), 2)
    0.75

    """
    return 1.0 - (1.0 - parameters.infectionProbability) ** (parameters.actRate * discordant)


def applyInfection(
        attributes: AttributeStore,
        network: NetworkState,
        parameters: EpidemicParameters,
        generator: np.random.Generator,
) -> List[NodeId]:
    """
    Infects susceptible nodes through their discordant partnerships. Discordance is evaluated once, at the start of
    the call, so nodes infected here do not transmit until the next step.

    :param attributes: the population, modified in place
    :param network: the current network
    :param parameters: disease parameters
    :param generator: random number generator for this trial
    :return: the newly infected nodes, in ascending id order
    """
    discordant = discordantPartnerships(attributes, network)
    if not discordant:
        return []
    nodes = sorted(discordant)
    probabilities = np.array([infectionProbability(parameters, discordant[node]) for node in nodes])
    draws = generator.random(len(nodes))
    infected = [node for node, caught in zip(nodes, draws < probabilities) if caught]
    for node in infected:
        attributes.set(node, STATUS, INFECTED_STATE)
    return infected


def applyRecovery(
        attributes: AttributeStore,
        parameters: EpidemicParameters,
        candidates: Iterable[NodeId],
        generator: np.random.Generator,
) -> List[NodeId]:
    """
    Recovers infected nodes. Only SIS and SIR models recover; in the SI model this is a no-op.

    :param attributes: the population, modified in place
    :param parameters: disease parameters
    :param candidates: nodes allowed to recover; the ones no longer active or infected are skipped
    :param generator: random number generator for this trial
    :return: the nodes that recovered
    """
    if parameters.model == SI or parameters.recoveryRate == 0.0:
        return []
    if parameters.model not in DISEASE_MODELS:
        raise ConfigurationError(f"Unknown disease model {parameters.model}")
    nodes = [
        node for node in candidates
        if attributes.is_active(node) and attributes.get(node, STATUS) == INFECTED_STATE
    ]
    if not nodes:
        return []
    newState = SUSCEPTIBLE_STATE if parameters.model == SIS else RECOVERED_STATE
    draws = generator.random(len(nodes))
    recovered = [node for node, recovers in zip(nodes, draws < parameters.recoveryRate) if recovers]
    for node in recovered:
        attributes.set(node, STATUS, newState)
    return recovered
