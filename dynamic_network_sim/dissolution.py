r"""
Partnership dissolution.

Every step each edge survives independently with a fixed probability. For an edge whose expected duration is ``D``
steps the requested persistence is :math:`1 - 1/D` (zero when :math:`D \le 1`), which gives a geometric lifetime with
mean ``D``. Edges also end when either endpoint departs, so the persistence actually applied is inflated for that
competing risk:

.. math::

    p_{\text{applied}} = \frac{1 - 1/D}{(1 - d)^2}

where ``d`` is the per-step departure probability of a node. The combined survival of an edge, own persistence times
both endpoints staying, is then the requested one. When ``d`` is large compared to the dissolution hazard the adjusted
value goes over 1; it is clamped and a NumericDegeneracyWarning is emitted, since the durations produced by the
simulation will be shorter than requested.

Durations can optionally differ between partnerships whose endpoints share an attribute value (``matched``) and
those whose endpoints do not (``mixed``).
"""
import logging
import math
import warnings
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import numpy as np  # type: ignore

from dynamic_network_sim.errors import ConfigurationError, NumericDegeneracyWarning
from dynamic_network_sim.network import NetworkState

logger = logging.getLogger(__name__)

MIXED = "mixed"
MATCHED = "matched"


class DissolutionCoefficients(NamedTuple):
    """
    Dissolution parameters for each dyad class. Dicts are keyed by MIXED and MATCHED; without a match attribute both
    keys hold the same values
    """
    durations: Dict[str, float]
    departureRate: float
    matchAttribute: Optional[str]
    requestedPersistence: Dict[str, float]
    persistence: Dict[str, float]
    coefficients: Dict[str, float]
    clamped: bool


def persistenceProbability(duration: float) -> float:
    """
    Per-step probability that an edge with the given expected duration survives, ignoring departures

    >>> persistenceProbability(4)
    0.75
    >>> persistenceProbability(1)
    0.0

    :param duration: expected duration, in steps
    :return: probability of persisting through one step
    """
    if duration <= 1:
        return 0.0
    return 1.0 - 1.0 / duration


def logOdds(probability: float) -> float:
    """log(p / (1 - p)), with the limits at 0 and 1"""
    if probability <= 0.0:
        return -math.inf
    if probability >= 1.0:
        return math.inf
    return math.log(probability / (1.0 - probability))


def adjustForDepartures(persistence: float, departureRate: float) -> float:
    """
    Inflates a persistence probability so that, combined with the departure of either endpoint, it matches the
    requested value. The result is not clamped.

    :param persistence: requested persistence
    :param departureRate: per-step departure probability of each endpoint
    :return: persistence to apply in the dissolution draws
    """
    return persistence / (1.0 - departureRate) ** 2


def dissolutionCoefficients(
        duration: float,
        departureRate: float = 0.0,
        matchedDuration: Optional[float] = None,
        matchAttribute: Optional[str] = None,
) -> DissolutionCoefficients:
    """
    Computes the per-class persistence of partnerships.

    :param duration: mean partnership duration, in steps, of every partnership (or of the mixed ones if
                     ``matchedDuration`` is given)
    :param departureRate: exogenous per-step departure probability, in [0, 1)
    :param matchedDuration: mean duration of partnerships whose endpoints share ``matchAttribute``
    :param matchAttribute: attribute used to tell matched partnerships apart
    :return: the dissolution coefficients
    """
    if not 0.0 <= departureRate < 1.0:
        raise ConfigurationError(f"exogenous departure rate must be in [0, 1), got {departureRate}")
    if (matchedDuration is None) != (matchAttribute is None):
        raise ConfigurationError("a matched duration needs a match attribute and vice versa")

    durations = {MIXED: float(duration), MATCHED: float(duration if matchedDuration is None else matchedDuration)}
    for name, value in durations.items():
        if not value > 0.0 or math.isinf(value):
            raise ConfigurationError(f"{name} partnership duration must be a positive number, got {value}")

    requested = {}
    persistence = {}
    coefficients = {}
    clamped = False
    for name in (MIXED, MATCHED) if matchAttribute is not None else (MIXED,):
        value = durations[name]
        requested[name] = persistenceProbability(value)
        adjusted = adjustForDepartures(requested[name], departureRate)
        if adjusted > 1.0:
            clamped = True
            message = (
                f"Persistence of {name} partnerships adjusted for departures is {adjusted:.4f} > 1, clamping to 1. "
                f"Durations of {value} steps cannot be reached with a departure rate of {departureRate}"
            )
            logger.warning(message)
            warnings.warn(message, NumericDegeneracyWarning)
            adjusted = 1.0
        persistence[name] = adjusted
        coefficients[name] = logOdds(adjusted)
    if matchAttribute is None:
        for values in (requested, persistence, coefficients):
            values[MATCHED] = values[MIXED]

    logger.debug("Dissolution persistence: %s, coefficients: %s", persistence, coefficients)
    return DissolutionCoefficients(
        durations=durations,
        departureRate=departureRate,
        matchAttribute=matchAttribute,
        requestedPersistence=requested,
        persistence=persistence,
        coefficients=coefficients,
        clamped=clamped,
    )


def dyadClassName(coefficients: DissolutionCoefficients, matched: bool) -> str:
    """Which duration class applies to a partnership, given whether its endpoints share the match attribute"""
    if coefficients.matchAttribute is not None and matched:
        return MATCHED
    return MIXED


def dissolveEdges(
        network: NetworkState,
        generator: np.random.Generator,
) -> List[Tuple[int, int, Dict[str, Any]]]:
    """
    Draws, independently for every edge, whether it persists into the next step, and removes the ones that do not.
    Each edge uses the persistence probability it was created with.

    :param network: the network, modified in place
    :param generator: random number generator for this trial
    :return: the edges that were dissolved, with the data they had (creation step, duration and persistence)
    """
    edges = list(network.edges(data=True))
    if not edges:
        return []
    persistence = np.array([data["persistence"] for _, _, data in edges])
    draws = generator.random(len(edges))
    dissolved = []
    for (a, b, data), survives in zip(edges, draws < persistence):
        if not survives:
            network.remove_edge(a, b)
            dissolved.append((a, b, data))
    return dissolved
