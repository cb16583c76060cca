r"""
Partnership formation.

Formation follows a dyad-independent exponential random graph model with three kinds of terms:

- ``edges`` -- the number of edges
- ``nodefactor.<attr>.<level>`` -- the number of edge endpoints whose attribute ``attr`` equals ``level`` (the total
  degree of that group)
- ``nodematch.<attr>`` -- the number of edges whose endpoints share the value of ``attr``

For a dyad :math:`(i, j)` the change statistics :math:`x_{ij}` of these terms depend only on the attribute values of
:math:`i` and :math:`j` (their profiles), so all dyads between two profiles form a *dyad class* with the same formation
probability

.. math::

    p_{ij} = \text{expit}(x_{ij} \cdot \theta + \text{offset})

Each step, for every class, the number of new edges is drawn from a Binomial over the eligible (active and not yet
adjacent) dyads of the class, and that many distinct eligible dyads are then picked uniformly at random. This has the
same distribution as drawing an independent Bernoulli for every eligible dyad, but only touches the dyads that become
edges.

Targets on the boundary of what a population allows (e.g. every edge within groups) need infinite coefficients. The
classes they pin get a fixed probability of exactly 0 or 1 instead, which is used in place of the linear predictor.
"""
import itertools
import logging
import warnings
from collections import Counter
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np  # type: ignore
from scipy.special import expit  # type: ignore

from dynamic_network_sim.attributes import AttributeStore, NodeId
from dynamic_network_sim.dissolution import DissolutionCoefficients, dyadClassName
from dynamic_network_sim.errors import ConfigurationError, NumericDegeneracyWarning
from dynamic_network_sim.network import Edge, NetworkState

logger = logging.getLogger(__name__)

EDGES = "edges"
NODEFACTOR = "nodefactor"
NODEMATCH = "nodematch"

SATURATION_TOLERANCE = 1e-12

Profile = Tuple[Any, ...]
DyadClass = Tuple[Profile, Profile]


class FormationTerm(NamedTuple):
    """
    A term of the formation formula
    """
    kind: str
    attribute: Optional[str] = None
    level: Any = None

    @property
    def label(self) -> str:
        if self.kind == EDGES:
            return EDGES
        if self.kind == NODEFACTOR:
            return f"{NODEFACTOR}.{self.attribute}.{self.level}"
        return f"{NODEMATCH}.{self.attribute}"


class FormationModel(NamedTuple):
    """
    Formula and fitted coefficients of a formation model. ``profileAttributes`` lists the node attributes the
    formula (and the dissolution model it was fitted with) depend on, in the order they appear in profiles.
    ``fixedProbabilities`` holds the dyad classes whose probability is pinned to 0 or 1.
    """
    formula: Tuple[FormationTerm, ...]
    coefficients: Tuple[float, ...]
    profileAttributes: Tuple[str, ...]
    fixedProbabilities: Tuple[Tuple[DyadClass, float], ...] = ()


def parseTerm(label: str) -> FormationTerm:
    """
    Parses a term label. Levels are kept as strings, see :meth:`resolveLevels`.

    >>> parseTerm("nodefactor.group.1")
    FormationTerm(kind='nodefactor', attribute='group', level='1')

    :param label: the statistic name, e.g. ``edges`` or ``nodematch.group``
    :return: the term
    """
    parts = label.strip().split(".")
    if parts == [EDGES]:
        return FormationTerm(EDGES)
    if parts[0] == NODEMATCH and len(parts) == 2 and parts[1]:
        return FormationTerm(NODEMATCH, attribute=parts[1])
    if parts[0] == NODEFACTOR and len(parts) >= 3 and parts[1]:
        return FormationTerm(NODEFACTOR, attribute=parts[1], level=".".join(parts[2:]))
    raise ConfigurationError(f"Unknown formation term: {label}")


def resolveLevels(formula: Iterable[FormationTerm], levels: Dict[str, Sequence[Any]]) -> Tuple[FormationTerm, ...]:
    """
    Replaces the string levels of nodefactor terms with the matching attribute values

    :param formula: terms as parsed from labels
    :param levels: the values each attribute can take
    :return: the same terms with levels of the right type
    """
    resolved = []
    for term in formula:
        if term.attribute is not None and term.attribute not in levels:
            raise ConfigurationError(f"{term.label} refers to an unknown attribute")
        if term.kind == NODEFACTOR:
            matches = [value for value in levels[term.attribute] if str(value) == str(term.level)]
            if not matches:
                raise ConfigurationError(f"{term.label} refers to an unknown level of {term.attribute}")
            term = term._replace(level=matches[0])
        resolved.append(term)
    return tuple(resolved)


def profileAttributes(formula: Iterable[FormationTerm], dissolution: Optional[DissolutionCoefficients] = None):
    """The sorted attributes used by the formula and by the dissolution match attribute"""
    names = {term.attribute for term in formula if term.attribute is not None}
    if dissolution is not None and dissolution.matchAttribute is not None:
        names.add(dissolution.matchAttribute)
    return tuple(sorted(names))


def nodeProfile(attributes: AttributeStore, node: NodeId, attrs: Sequence[str]) -> Profile:
    return tuple(attributes.get(node, name) for name in attrs)


def groupByProfile(attributes: AttributeStore, attrs: Sequence[str]) -> Dict[Profile, List[NodeId]]:
    """Active nodes grouped by profile, each group in ascending id order"""
    groups: Dict[Profile, List[NodeId]] = {}
    for node in attributes.active_nodes():
        groups.setdefault(nodeProfile(attributes, node, attrs), []).append(node)
    return groups


def dyadClass(a: Profile, b: Profile) -> DyadClass:
    """Canonical (unordered) key of the class of dyads between profiles a and b"""
    return (a, b) if repr(a) <= repr(b) else (b, a)


def dyadClassCounts(profileCounts: Dict[Profile, int]) -> Dict[DyadClass, int]:
    """
    Number of dyads in each class

    >>> dyadClassCounts({(0,): 3, (1,): 2})
    {((0,), (0,)): 3, ((0,), (1,)): 6, ((1,), (1,)): 1}

    :param profileCounts: number of nodes with each profile
    :return: number of dyads for each class
    """
    profiles = sorted(profileCounts, key=repr)
    counts = {}
    for i, a in enumerate(profiles):
        for b in profiles[i:]:
            if a == b:
                counts[(a, b)] = profileCounts[a] * (profileCounts[a] - 1) // 2
            else:
                counts[(a, b)] = profileCounts[a] * profileCounts[b]
    return counts


def changeStatistics(formula: Sequence[FormationTerm], attrs: Sequence[str], a: Profile, b: Profile) -> np.ndarray:
    """
    How much each term of the formula increases when an edge between nodes with profiles a and b is added

    :param formula: formation terms
    :param attrs: attribute names matching the profile positions
    :param a: profile of one endpoint
    :param b: profile of the other endpoint
    :return: vector with one entry per term
    """
    index = {name: i for i, name in enumerate(attrs)}
    stats = []
    for term in formula:
        if term.kind == EDGES:
            stats.append(1.0)
        elif term.kind == NODEFACTOR:
            i = index[term.attribute]
            stats.append(float(a[i] == term.level) + float(b[i] == term.level))
        elif term.kind == NODEMATCH:
            i = index[term.attribute]
            stats.append(float(a[i] == b[i]))
        else:
            raise ConfigurationError(f"Unknown formation term: {term.kind}")
    return np.array(stats)


def designMatrix(formula: Sequence[FormationTerm], attrs: Sequence[str], classes: Sequence[DyadClass]) -> np.ndarray:
    """Change statistics of every dyad class, one row per class"""
    if not classes:
        return np.zeros((0, len(formula)))
    return np.array([changeStatistics(formula, attrs, a, b) for a, b in classes])


def formationProbability(model: FormationModel, a: Profile, b: Profile, offset: float = 0.0) -> float:
    """Probability that an eligible dyad between profiles a and b becomes an edge in one step"""
    fixed = dict(model.fixedProbabilities)
    key = dyadClass(a, b)
    if key in fixed:
        return fixed[key]
    eta = float(np.dot(changeStatistics(model.formula, model.profileAttributes, a, b), model.coefficients))
    return float(expit(eta + offset))


def isSaturated(probability: float) -> bool:
    """
    >>> isSaturated(0.5), isSaturated(1.0)
    (False, True)
    """
    return probability < SATURATION_TOLERANCE or probability > 1.0 - SATURATION_TOLERANCE


def warnSaturated(description: str, a: Profile, b: Profile, probability: float):
    message = f"{description} probability between profiles {a} and {b} saturates at {probability:.3g}"
    logger.warning(message)
    warnings.warn(message, NumericDegeneracyWarning)


def isMatched(coefficients: DissolutionCoefficients, attrs: Sequence[str], a: Profile, b: Profile) -> bool:
    if coefficients.matchAttribute is None:
        return False
    i = list(attrs).index(coefficients.matchAttribute)
    return a[i] == b[i]


def addPartnership(
        network: NetworkState,
        dissolution: DissolutionCoefficients,
        matched: bool,
        a: NodeId,
        b: NodeId,
        step: int,
):
    """Adds an edge with the duration and persistence of its dissolution class"""
    name = dyadClassName(dissolution, matched)
    network.add_edge(
        a,
        b,
        step,
        duration=dissolution.durations[name],
        persistence=dissolution.persistence[name],
    )


def _sampleDyads(
        nodesA: List[NodeId],
        nodesB: List[NodeId],
        count: int,
        eligible: int,
        network: NetworkState,
        generator: np.random.Generator,
) -> List[Edge]:
    """
    Picks ``count`` distinct non-adjacent dyads uniformly among the ones between nodesA and nodesB (within nodesA if
    both are the same list)
    """
    same = nodesA is nodesB
    if count * 2 > eligible:
        # dense case, enumerate every eligible dyad
        pairs = itertools.combinations(nodesA, 2) if same else itertools.product(nodesA, nodesB)
        candidates = [(a, b) for a, b in pairs if not network.has_edge(a, b)]
        assert len(candidates) == eligible, f"eligible dyads mismatch: {len(candidates)} != {eligible}"
        picked = generator.choice(len(candidates), size=count, replace=False)
        return [candidates[i] for i in sorted(picked)]

    chosen: Dict[Edge, None] = {}
    while len(chosen) < count:
        a = nodesA[generator.integers(len(nodesA))]
        b = nodesB[generator.integers(len(nodesB))]
        if a == b:
            continue
        pair = (min(a, b), max(a, b))
        if pair in chosen or network.has_edge(a, b):
            continue
        chosen[pair] = None
    return list(chosen)


def edgeClassCounts(network: NetworkState, attributes: AttributeStore, attrs: Sequence[str]) -> Counter:
    """Number of existing edges in each dyad class"""
    counts: Counter = Counter()
    for a, b in network.edges():
        counts[dyadClass(nodeProfile(attributes, a, attrs), nodeProfile(attributes, b, attrs))] += 1
    return counts


# pylint: disable=too-many-arguments
# pylint: disable=too-many-locals
def formEdges(
        model: FormationModel,
        dissolution: DissolutionCoefficients,
        network: NetworkState,
        attributes: AttributeStore,
        step: int,
        generator: np.random.Generator,
        offset: float = 0.0,
) -> List[Edge]:
    """
    Activates new edges among the eligible dyads.

    :param model: formation model with fitted coefficients
    :param dissolution: dissolution coefficients, giving the duration and persistence of new edges
    :param network: the network, modified in place
    :param attributes: the population
    :param step: current simulation step, stored as the creation step of new edges
    :param generator: random number generator for this trial
    :param offset: added to the linear predictor of every dyad (used to preserve the mean degree when the population
                   size changes)
    :return: the new edges
    """
    attrs = model.profileAttributes
    groups = groupByProfile(attributes, attrs)
    classCounts = dyadClassCounts({profile: len(nodes) for profile, nodes in groups.items()})
    existing = edgeClassCounts(network, attributes, attrs)

    fixed = dict(model.fixedProbabilities)
    formed = []
    for (a, b), dyads in classCounts.items():
        eligible = dyads - existing[(a, b)]
        if eligible <= 0:
            continue
        probability = formationProbability(model, a, b, offset)
        if (a, b) not in fixed and isSaturated(probability):
            warnSaturated("Formation", a, b, probability)
        count = int(generator.binomial(eligible, probability))
        if count == 0:
            continue
        nodesA = groups[a]
        nodesB = nodesA if a == b else groups[b]
        matched = isMatched(dissolution, attrs, a, b)
        for i, j in _sampleDyads(nodesA, nodesB, count, eligible, network, generator):
            addPartnership(network, dissolution, matched, i, j, step)
            formed.append((i, j))
    return formed


def termStatistic(term: FormationTerm, network: NetworkState, attributes: AttributeStore) -> float:
    """Observed value of one formation term on the current network"""
    if term.kind == EDGES:
        return float(network.edge_count)
    if term.kind == NODEFACTOR:
        return float(sum(network.degree(node) for node in attributes.nodes_where(term.attribute, term.level)))
    if term.kind == NODEMATCH:
        return float(sum(
            1 for a, b in network.edges() if attributes.get(a, term.attribute) == attributes.get(b, term.attribute)
        ))
    raise ConfigurationError(f"Unknown formation term: {term.kind}")


def summaryStatistics(
        formula: Iterable[FormationTerm],
        network: NetworkState,
        attributes: AttributeStore,
) -> Dict[str, float]:
    """Observed value of every formation term, keyed by label"""
    return {term.label: termStatistic(term, network, attributes) for term in formula}
