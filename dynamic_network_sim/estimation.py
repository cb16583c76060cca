r"""
Estimation of the formation model from target statistics.

The formation model is dyad independent, so its likelihood factorises over dyad classes (see
:mod:`dynamic_network_sim.formation`). With :math:`M_c` dyads in class :math:`c`, change statistics :math:`x_c` and an
offset :math:`o_c`, the maximum likelihood coefficients for target statistics :math:`t` maximise

.. math::

    \ell(\theta) = \theta \cdot t - \sum_c M_c \log(1 + e^{x_c \theta + o_c})

i.e. they are the coefficients under which the expected statistics equal the targets.

Two fits are made:

1. The *cross-sectional* model (no offset): the probability that a dyad is an edge at any given time. It is used to
   draw the network at the start of a trial.
2. The *formation* model. In each step an edge persists with probability :math:`p_c` (its requested persistence) and
   an eligible dyad forms an edge with probability :math:`f_c`. The stationary probability :math:`\pi_c` of this two
   state chain satisfies

   .. math::

       \text{logit}(\pi_c) = \text{logit}(f_c) - \log(1 - p_c)

   so fitting the formation coefficients with offsets :math:`o_c = -\log(1 - p_c)` makes the simulated network
   reproduce the targets on average. When durations are the same for every class this is exactly the cross-sectional
   fit with :math:`\log(1 - p)` added to the edges coefficient.

Before fitting, the targets are checked for realizability: there must be expected edge counts between 0 and the number
of dyads of every class which reproduce all the targets. Classes whose expected count sits at the same bound in every
such solution (say, the mixed dyads when every edge must be within groups) would need infinite coefficients, so they
are pinned to a probability of 0 or 1 and left out of the likelihood. Each pinned class raises a
`NumericDegeneracyWarning`.
"""
import logging
import math
from typing import Dict, List, NamedTuple, Sequence, Tuple

import numpy as np  # type: ignore
from scipy import optimize  # type: ignore
from scipy.special import expit  # type: ignore

from dynamic_network_sim.dissolution import DissolutionCoefficients, dyadClassName
from dynamic_network_sim.errors import ConfigurationError, UnrealizableTargetError
from dynamic_network_sim.formation import (
    EDGES,
    DyadClass,
    FormationModel,
    FormationTerm,
    Profile,
    designMatrix,
    dyadClassCounts,
    formationProbability,
    isMatched,
    isSaturated,
    warnSaturated,
)

logger = logging.getLogger(__name__)

BOUNDARY_TOLERANCE = 1e-6


class NetworkModelFit(NamedTuple):
    """
    Result of the estimation, never modified after it is created
    """
    formation: FormationModel
    crossSectional: FormationModel
    dissolution: DissolutionCoefficients
    targets: Tuple[float, ...]
    classCounts: Dict[DyadClass, int]
    populationSize: int

    @property
    def targetStatistics(self) -> Dict[str, float]:
        return {term.label: target for term, target in zip(self.formation.formula, self.targets)}


def _softplus(x: np.ndarray) -> np.ndarray:
    return np.logaddexp(0.0, x)


def expectedStatistics(
        design: np.ndarray,
        counts: np.ndarray,
        coefficients: np.ndarray,
        offsets: np.ndarray,
) -> np.ndarray:
    """Expected value of every term when each dyad of class c is an edge with probability expit(x_c theta + o_c)"""
    probabilities = expit(design @ coefficients + offsets)
    return design.T @ (counts * probabilities)


def _classBounds(
        design: np.ndarray,
        counts: np.ndarray,
        targets: np.ndarray,
        klass: int,
) -> Tuple[float, float]:
    """Lowest and highest expected edge count of one class over all the solutions reproducing the targets"""
    bounds = [(0.0, float(count)) for count in counts]
    objective = np.zeros(design.shape[0])
    objective[klass] = 1.0
    extremes = []
    for sign in (1.0, -1.0):
        result = optimize.linprog(
            sign * objective, A_eq=design.T, b_eq=targets, bounds=bounds, method="highs"
        )
        if result.status != 0:
            raise UnrealizableTargetError(f"Could not bound the edges of dyad class {klass}: {result.message}")
        extremes.append(sign * result.fun)
    return extremes[0], extremes[1]


def checkRealizable(design: np.ndarray, counts: np.ndarray, targets: np.ndarray, labels: Sequence[str]) -> np.ndarray:
    """
    Raises UnrealizableTargetError unless some expected edge count per class, between 0 and the number of dyads in the
    class, reproduces the targets. Solved as a linear program maximising the distance to the bounds: if that distance
    is 0, the classes stuck at a bound in every solution are pinned there.

    >>> design = np.array([[1.0, 1.0], [1.0, 0.0], [1.0, 1.0]])
    >>> counts, targets = np.array([45.0, 100.0, 45.0]), np.array([40.0, 40.0])
    >>> checkRealizable(design, counts, targets, ["edges", "nodematch.group"]).tolist()
    [nan, 0.0, nan]

    :param design: change statistics, one row per class
    :param counts: number of dyads per class
    :param targets: target statistics
    :param labels: names of the targets, for error messages
    :return: for every class, the probability it is pinned to (0 or 1), or nan if it is free
    """
    if design.shape[0] == 0 or np.linalg.matrix_rank(design) < design.shape[1]:
        raise UnrealizableTargetError(f"Terms {list(labels)} cannot be told apart on this population")

    nClasses = design.shape[0]
    pinned = np.full(nClasses, np.nan)
    feasible = optimize.linprog(
        np.zeros(nClasses),
        A_eq=design.T,
        b_eq=targets,
        bounds=[(0.0, float(count)) for count in counts],
        method="highs",
    )
    if feasible.status != 0:
        raise UnrealizableTargetError(
            f"Targets {dict(zip(labels, targets))} cannot be realised on this population"
        )

    # variables: expected edges per class, then the slack s; maximise s
    objective = np.zeros(nClasses + 1)
    objective[-1] = -1.0
    equality = np.hstack([design.T, np.zeros((design.shape[1], 1))])
    identity = np.eye(nClasses)
    ones = np.ones((nClasses, 1))
    inequality = np.vstack([np.hstack([-identity, ones]), np.hstack([identity, ones])])
    upper = np.concatenate([np.zeros(nClasses), counts])
    bounds = [(0.0, float(count)) for count in counts] + [(0.0, max(float(counts.max()) / 2.0, 0.0))]

    result = optimize.linprog(
        objective,
        A_ub=inequality,
        b_ub=upper,
        A_eq=equality,
        b_eq=targets,
        bounds=bounds,
        method="highs",
    )
    if result.status == 0 and -result.fun > BOUNDARY_TOLERANCE:
        return pinned

    for klass, count in enumerate(counts):
        lowest, highest = _classBounds(design, counts, targets, klass)
        tolerance = BOUNDARY_TOLERANCE * max(1.0, float(count))
        if highest <= tolerance:
            pinned[klass] = 0.0
        elif lowest >= count - tolerance:
            pinned[klass] = 1.0
    if np.isnan(pinned).all():
        raise UnrealizableTargetError(
            f"Targets {dict(zip(labels, targets))} are on the boundary of this population, but no dyad class is pinned"
        )
    return pinned


def _independentColumns(design: np.ndarray) -> List[int]:
    """Indices of a maximal set of linearly independent columns, picked in order"""
    columns: List[int] = []
    for column in range(design.shape[1]):
        if np.linalg.matrix_rank(design[:, columns + [column]]) > len(columns):
            columns.append(column)
    return columns


def fitPinnedModel(
        design: np.ndarray,
        counts: np.ndarray,
        targets: np.ndarray,
        offsets: np.ndarray,
        pinned: np.ndarray,
) -> np.ndarray:
    """
    Fits the classes that are not pinned to the part of the targets the pinned classes do not already account for.
    Terms that cannot be told apart on the remaining classes keep a coefficient of 0.

    :param design: change statistics, one row per class
    :param counts: number of dyads per class
    :param targets: target statistics
    :param offsets: fixed offset added to the linear predictor of each class
    :param pinned: pinned probability of every class, nan for the free ones (see :func:`checkRealizable`)
    :return: the fitted coefficients
    """
    free = np.isnan(pinned)
    coefficients = np.zeros(design.shape[1])
    if not free.any():
        return coefficients
    remaining = targets - design[~free].T @ (pinned[~free] * counts[~free])
    columns = _independentColumns(design[free])
    coefficients[columns] = fitDyadIndependentModel(
        design[free][:, columns], counts[free], remaining[columns], offsets[free]
    )
    return coefficients


def fitDyadIndependentModel(
        design: np.ndarray,
        counts: np.ndarray,
        targets: np.ndarray,
        offsets: np.ndarray,
        rtol: float = 1e-6,
) -> np.ndarray:
    """
    Maximum likelihood coefficients of a dyad independent model

    :param design: change statistics, one row per class
    :param counts: number of dyads per class
    :param targets: target statistics
    :param offsets: fixed offset added to the linear predictor of each class
    :param rtol: relative tolerance on the expected statistics
    :return: the fitted coefficients
    """
    def negativeLogLikelihood(theta):
        return -(theta @ targets) + counts @ _softplus(design @ theta + offsets)

    def gradient(theta):
        return expectedStatistics(design, counts, theta, offsets) - targets

    def hessian(theta):
        p = expit(design @ theta + offsets)
        weights = counts * p * (1.0 - p)
        return design.T @ (design * weights[:, None])

    # start from the density of the edges term, every other coefficient at 0
    theta0 = np.zeros(design.shape[1])
    edgeColumns = np.flatnonzero(np.all(design == 1.0, axis=0))
    if edgeColumns.size:
        edgesIndex = int(edgeColumns[0])
        density = targets[edgesIndex] / counts.sum()
        if 0.0 < density < 1.0:
            theta0[edgesIndex] = math.log(density / (1.0 - density)) - float(np.average(offsets, weights=counts))

    result = optimize.minimize(
        negativeLogLikelihood,
        theta0,
        jac=gradient,
        hess=hessian,
        method="trust-exact",
        options={"gtol": 1e-8, "maxiter": 1000},
    )
    expected = expectedStatistics(design, counts, result.x, offsets)
    if not np.allclose(expected, targets, rtol=rtol, atol=1e-8):
        raise UnrealizableTargetError(
            f"Estimation did not converge ({result.message}): expected {expected.tolist()}, targets {targets.tolist()}"
        )
    logger.debug("Estimation converged after %s iterations", result.nit)
    return result.x


def _warnSaturated(model: FormationModel, classes: Sequence[DyadClass], name: str):
    for a, b in classes:
        probability = formationProbability(model, a, b)
        if isSaturated(probability):
            warnSaturated(name, a, b, probability)


def estimateNetworkModel(
        formula: Sequence[FormationTerm],
        targets: Sequence[float],
        profileCounts: Dict[Profile, int],
        attrs: Sequence[str],
        dissolution: DissolutionCoefficients,
) -> NetworkModelFit:
    """
    Fits the cross-sectional and formation coefficients reproducing the targets.

    :param formula: formation terms; must include ``edges``
    :param targets: one target per term
    :param profileCounts: number of nodes of each profile in the population the model is fitted on
    :param attrs: attribute names matching the profile positions
    :param dissolution: dissolution coefficients the formation model is paired with
    :return: the fitted model
    """
    formula = tuple(formula)
    if len(formula) != len(targets):
        raise ConfigurationError("There must be exactly one target per formation term")
    if EDGES not in [term.kind for term in formula]:
        raise ConfigurationError("The formation formula must include the edges term")
    if len({term.label for term in formula}) != len(formula):
        raise ConfigurationError("Formation terms must not be repeated")

    allCounts = dyadClassCounts(profileCounts)
    classes: List[DyadClass] = [key for key, count in allCounts.items() if count > 0]
    counts = np.array([allCounts[key] for key in classes], dtype=float)
    design = designMatrix(formula, attrs, classes)
    targetArray = np.array(targets, dtype=float)
    labels = [term.label for term in formula]

    pinned = checkRealizable(design, counts, targetArray, labels)
    fixed = tuple((classes[i], float(pinned[i])) for i in np.flatnonzero(~np.isnan(pinned)))

    crossSectional = fitPinnedModel(design, counts, targetArray, np.zeros(len(classes)), pinned)
    hazards = np.array([
        1.0 - dissolution.requestedPersistence[dyadClassName(dissolution, isMatched(dissolution, attrs, a, b))]
        for a, b in classes
    ])
    formation = fitPinnedModel(design, counts, targetArray, -np.log(hazards), pinned)

    crossModel = FormationModel(formula, tuple(crossSectional.tolist()), tuple(attrs), fixed)
    formationModel = FormationModel(formula, tuple(formation.tolist()), tuple(attrs), fixed)
    _warnSaturated(crossModel, classes, "Cross-sectional edge")
    _warnSaturated(formationModel, classes, "Formation")

    logger.info(
        "Estimated formation coefficients %s (cross-sectional %s)",
        dict(zip(labels, formationModel.coefficients)),
        dict(zip(labels, crossModel.coefficients)),
    )
    return NetworkModelFit(
        formation=formationModel,
        crossSectional=crossModel,
        dissolution=dissolution,
        targets=tuple(float(t) for t in targets),
        classCounts=dict(allCounts),
        populationSize=int(sum(profileCounts.values())),
    )
