"""
This module implements a single trial of the dynamic network simulation. The end result of a trial is a pandas
DataFrame with one row per step: the size of the population, the number of people in each disease state (overall and
by group), the number of active partnerships and the flows that happened in the step.

The main type of this module is the `ModelConfiguration` class, an immutable data object with all the data needed to
run the model, including the fitted network model. It is built, and validated, by :meth:`createModelConfiguration`
(from input tables) or :meth:`buildModelConfiguration`. A trial is run by :meth:`runTrial`, which never modifies the
configuration, so a single configuration can be shared by trials running in parallel.

Each step of a trial runs, in this order:

1. departures, then arrivals (:mod:`dynamic_network_sim.demography`)
2. dissolution of partnerships (:mod:`dynamic_network_sim.dissolution`)
3. formation of partnerships (:mod:`dynamic_network_sim.formation`)
4. infection, then recovery (:mod:`dynamic_network_sim.epidemic`)

after which the network invariants are checked and a snapshot is recorded.
"""
# pylint: disable=import-error
import logging
import math
import warnings
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import numpy as np  # type: ignore
import pandas as pd  # type: ignore

from dynamic_network_sim import loaders
from dynamic_network_sim.attributes import AttributeStore, NodeId
from dynamic_network_sim.common import Issue, IssueSeverity, Lazy, log_issue
from dynamic_network_sim.demography import (
    ENTRY_STEP,
    INFECTED_STATE,
    RECOVERED_STATE,
    STATES,
    STATUS,
    SUSCEPTIBLE_STATE,
    DemographicRates,
    applyArrivals,
    applyDepartures,
)
from dynamic_network_sim.dissolution import DissolutionCoefficients, dissolveEdges
from dynamic_network_sim.epidemic import EpidemicParameters, applyInfection, applyRecovery
from dynamic_network_sim.errors import ConfigurationError, NumericDegeneracyWarning, TrialFailure
from dynamic_network_sim.estimation import NetworkModelFit, estimateNetworkModel
from dynamic_network_sim.formation import FormationTerm, Profile, formEdges, profileAttributes, summaryStatistics
from dynamic_network_sim.network import NetworkState

logger = logging.getLogger(__name__)

STATE_COLUMNS = {
    SUSCEPTIBLE_STATE: "susceptible_count",
    INFECTED_STATE: "infected_count",
    RECOVERED_STATE: "recovered_count",
}


class ModelConfiguration(NamedTuple):
    """
    This type has all the internal data used by this model
    """
    population: loaders.PopulationParameters
    fit: NetworkModelFit
    epidemic: EpidemicParameters
    demography: DemographicRates
    initialInfected: int
    steps: int
    trials: int
    stratifyBy: Optional[str]
    preserveMeanDegree: bool
    failFast: bool
    randomSeed: int = 0


class TrialStatus(Enum):
    """
    Lifecycle of a trial
    """
    INITIALIZED = "initialized"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepSnapshot(NamedTuple):
    """
    Summary of the population and network at the end of a step
    """
    step: int
    populationSize: int
    counts: Dict[str, int]
    countsByGroup: Dict[Any, Dict[str, int]]
    edges: int
    incidence: int
    recoveries: int
    arrivals: int
    departures: int
    formed: int
    dissolved: int
    statistics: Dict[str, float]


def populationProfileCounts(population: loaders.PopulationParameters, attrs: Tuple[str, ...]) -> Dict[Profile, int]:
    """
    Number of nodes of each profile in the initial population. The group is the only node attribute, so every
    profile attribute is the group attribute.

    >>> populationProfileCounts(loaders.createPopulation({0: 3, 1: 2}), ())
    {(): 5}
    """
    counts: Dict[Profile, int] = {}
    for level, count in population.groupSizes.items():
        if count > 0:
            profile = tuple(level for _ in attrs)
            counts[profile] = counts.get(profile, 0) + count
    return counts


# pylint: disable=too-many-arguments
def buildModelConfiguration(
        population: loaders.PopulationParameters,
        formula: Tuple[FormationTerm, ...],
        targets: Tuple[float, ...],
        dissolution: DissolutionCoefficients,
        epidemic: EpidemicParameters,
        demography: DemographicRates,
        initialInfected: int,
        steps: int,
        trials: int = 1,
        stratifyBy: Optional[str] = None,
        preserveMeanDegree: bool = True,
        failFast: bool = False,
        randomSeed: int = 0,
) -> ModelConfiguration:
    """
    Validates the parameters and estimates the network model.

    :param population: composition of the initial population
    :param formula: formation terms
    :param targets: target statistics, one per term
    :param dissolution: dissolution coefficients
    :param epidemic: disease parameters
    :param demography: arrival and departure rates
    :param initialInfected: number of nodes infected at the start, chosen at random from the whole population. Ignored
                            if the population fixes the initial infections per group
    :param steps: number of steps of each trial
    :param trials: number of trials
    :param stratifyBy: attribute used to break down the disease counts, or None
    :param preserveMeanDegree: whether formation keeps the mean degree constant as the population size changes
    :param failFast: whether one failing trial stops all the others
    :param randomSeed: seed the generators of every trial are spawned from
    :return: the model configuration
    """
    loaders.checkAttributes([term.attribute for term in formula], population)
    loaders.checkAttributes([dissolution.matchAttribute, stratifyBy], population)
    loaders.checkFormationTargets(tuple(formula), tuple(targets))
    loaders.checkEpidemicParameters(epidemic)
    loaders.checkDemographicRates(demography)
    if population.initialInfected is None and not 0 <= initialInfected <= population.size:
        raise ConfigurationError(
            f"initial infected count must be between 0 and the population size {population.size}, got {initialInfected}"
        )
    if steps <= 0:
        raise ConfigurationError(f"step count must be positive, got {steps}")
    if trials <= 0:
        raise ConfigurationError(f"trial count must be positive, got {trials}")

    attrs = profileAttributes(formula, dissolution)
    fit = estimateNetworkModel(formula, targets, populationProfileCounts(population, attrs), attrs, dissolution)

    return ModelConfiguration(
        population=population,
        fit=fit,
        epidemic=epidemic,
        demography=demography,
        initialInfected=initialInfected,
        steps=steps,
        trials=trials,
        stratifyBy=stratifyBy,
        preserveMeanDegree=preserveMeanDegree,
        failFast=failFast,
        randomSeed=randomSeed,
    )


# pylint: disable=too-many-arguments
def createModelConfiguration(
        population_table: pd.DataFrame,
        formation_targets_table: pd.DataFrame,
        dissolution_table: pd.DataFrame,
        epidemic_table: pd.DataFrame,
        demography_table: pd.DataFrame,
        simulation_table: pd.DataFrame,
) -> Tuple[ModelConfiguration, List[Issue]]:
    """
    Create the model configuration from the input tables

    :param population_table: groups and their sizes
    :param formation_targets_table: target statistics of the formation model
    :param dissolution_table: partnership durations and departure rate
    :param epidemic_table: disease parameters
    :param demography_table: arrival and departure rates
    :param simulation_table: steps, trials and reporting
    :return: the configuration and the issues found while building it
    """
    issues: List[Issue] = []
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", NumericDegeneracyWarning)

        population = loaders.readPopulation(population_table)
        formula, targets = loaders.readFormationTargets(formation_targets_table, population)
        dissolution = loaders.readDissolution(dissolution_table, population)
        epidemic, initialInfected = loaders.readEpidemic(epidemic_table)
        demography, preserveMeanDegree = loaders.readDemography(demography_table)
        control = loaders.readSimulation(simulation_table)

        config = buildModelConfiguration(
            population,
            formula,
            targets,
            dissolution,
            epidemic,
            demography,
            initialInfected,
            control.steps,
            control.trials,
            control.stratifyBy,
            preserveMeanDegree,
            control.failFast,
            control.randomSeed,
        )

    for warning in caught:
        if issubclass(warning.category, NumericDegeneracyWarning):
            issues.append(Issue(description=str(warning.message), severity=IssueSeverity.MEDIUM.value))
        else:
            warnings.warn_explicit(warning.message, warning.category, warning.filename, warning.lineno)

    susceptibleDeparture = demography.departureRates[SUSCEPTIBLE_STATE]
    if not math.isclose(dissolution.departureRate, susceptibleDeparture):
        log_issue(
            logger,
            f"Dissolution is adjusted for a departure rate of {dissolution.departureRate}, but susceptible nodes "
            f"depart at a rate of {susceptibleDeparture}",
            IssueSeverity.LOW,
            issues,
        )
    logger.info(
        "Population: %s, Groups: %s, Targets: %s",
        population.size,
        population.groupSizes,
        config.fit.targetStatistics,
    )
    return config, issues


def createPopulation(population: loaders.PopulationParameters) -> Tuple[AttributeStore, NetworkState]:
    """
    Allocates the initial nodes, all susceptible and without partnerships, in group order

    :param population: composition of the population
    :return: the attribute store and an empty network over it
    """
    attributes = AttributeStore([population.groupAttribute, STATUS, ENTRY_STEP])
    network = NetworkState(attributes)
    for level, count in population.groupSizes.items():
        for _ in range(count):
            node = attributes.allocate({population.groupAttribute: level, STATUS: SUSCEPTIBLE_STATE, ENTRY_STEP: 0})
            network.add_node(node)
    return attributes, network


def meanDegreeOffset(initialSize: int, currentSize: int) -> float:
    """
    Offset added to the formation log-odds so the mean degree stays the same as the population changes size

    >>> meanDegreeOffset(100, 100)
    0.0
    """
    if currentSize <= 0 or initialSize <= 0:
        return 0.0
    return math.log(initialSize / currentSize)


class Trial:
    """
    One run of the model. A trial goes from INITIALIZED (population and initial network created, step 0 recorded),
    through RUNNING, to COMPLETED after the last step. If a step raises, the trial becomes FAILED and cannot be
    advanced any further.

    :param config: the model configuration, never modified
    :param generator: random number generator used for everything random in this trial
    """
    def __init__(self, config: ModelConfiguration, generator: np.random.Generator):
        self.config = config
        self.generator = generator
        self.step = 0
        self.snapshots: List[StepSnapshot] = []
        self.attributes, self.network = createPopulation(config.population)
        self.initialSize = len(self.attributes)

        fit = config.fit
        formEdges(fit.crossSectional, fit.dissolution, self.network, self.attributes, 0, generator)
        self._infectInitial()
        self.network.check_invariants()
        self.snapshots.append(self._snapshot())
        self.status = TrialStatus.INITIALIZED

    def _infectInitial(self):
        population = self.config.population
        if population.initialInfected is not None:
            chosen: List[NodeId] = []
            for level, count in population.initialInfected.items():
                nodes = self.attributes.nodes_where(population.groupAttribute, level)
                chosen.extend(self.generator.choice(nodes, size=count, replace=False).tolist())
        else:
            nodes = self.attributes.active_nodes()
            chosen = self.generator.choice(nodes, size=self.config.initialInfected, replace=False).tolist()
        for node in chosen:
            self.attributes.set(node, STATUS, INFECTED_STATE)

    def _snapshot(self, **flows) -> StepSnapshot:
        config = self.config
        nodes = self.attributes.active_nodes()
        statuses = self.attributes.count_by(STATUS)
        countsByGroup: Dict[Any, Dict[str, int]] = {}
        if config.stratifyBy is not None:
            for level in config.population.levels:
                inGroup = self.attributes.nodes_where(config.stratifyBy, level)
                byStatus = self.attributes.count_by(STATUS, inGroup)
                countsByGroup[level] = {state: byStatus.get(state, 0) for state in STATES}
        return StepSnapshot(
            step=self.step,
            populationSize=len(nodes),
            counts={state: statuses.get(state, 0) for state in STATES},
            countsByGroup=countsByGroup,
            edges=self.network.edge_count,
            incidence=flows.get("incidence", 0),
            recoveries=flows.get("recoveries", 0),
            arrivals=flows.get("arrivals", 0),
            departures=flows.get("departures", 0),
            formed=flows.get("formed", 0),
            dissolved=flows.get("dissolved", 0),
            statistics=summaryStatistics(config.fit.formation.formula, self.network, self.attributes),
        )

    def advance(self) -> StepSnapshot:
        """
        Runs the next step of the trial

        :return: the snapshot recorded at the end of the step
        """
        if self.status in (TrialStatus.COMPLETED, TrialStatus.FAILED):
            raise RuntimeError(f"Cannot advance a {self.status.value} trial")
        self.status = TrialStatus.RUNNING
        try:
            snapshot = self._advance()
        except Exception:
            self.status = TrialStatus.FAILED
            raise
        if self.step >= self.config.steps:
            self.status = TrialStatus.COMPLETED
        return snapshot

    def _advance(self) -> StepSnapshot:
        config = self.config
        fit = config.fit
        self.step += 1

        departed = applyDepartures(self.attributes, self.network, config.demography, self.generator)
        arrived = applyArrivals(
            self.attributes,
            self.network,
            config.demography,
            config.population.groupAttribute,
            config.population.levels,
            self.step,
            self.generator,
        )

        dissolved = dissolveEdges(self.network, self.generator)

        offset = meanDegreeOffset(self.initialSize, len(self.attributes)) if config.preserveMeanDegree else 0.0
        formed = formEdges(
            fit.formation, fit.dissolution, self.network, self.attributes, self.step, self.generator, offset
        )

        infectedBefore = self.attributes.nodes_where(STATUS, INFECTED_STATE)
        infected = applyInfection(self.attributes, self.network, config.epidemic, self.generator)
        recovered = applyRecovery(self.attributes, config.epidemic, infectedBefore, self.generator)

        self.network.check_invariants()
        snapshot = self._snapshot(
            incidence=len(infected),
            recoveries=len(recovered),
            arrivals=len(arrived),
            departures=len(departed),
            formed=len(formed),
            dissolved=len(dissolved),
        )
        self.snapshots.append(snapshot)
        logger.debug(
            "Step (%s/%s). Status: %s, edges: %s",
            self.step,
            config.steps,
            Lazy(lambda: snapshot.counts),
            snapshot.edges,
        )
        return snapshot

    def run(self) -> Tuple[StepSnapshot, ...]:
        """Runs every remaining step and returns all the snapshots, including step 0"""
        while self.status not in (TrialStatus.COMPLETED, TrialStatus.FAILED):
            self.advance()
        return tuple(self.snapshots)


def snapshotsToPandas(snapshots: List[StepSnapshot], config: ModelConfiguration) -> pd.DataFrame:
    """
    Converts the snapshots of a trial into a DataFrame with one row per step

    :param snapshots: the snapshots, in step order
    :param config: the configuration the trial ran with
    :return: the per-step records
    """
    levels = config.population.levels if config.stratifyBy is not None else []
    labels = [term.label for term in config.fit.formation.formula]
    rows = []
    for snapshot in snapshots:
        row: Dict[str, Any] = {"step": snapshot.step, "population_size": snapshot.populationSize}
        for state, column in STATE_COLUMNS.items():
            row[column] = snapshot.counts[state]
        row.update(
            active_edge_count=snapshot.edges,
            incidence=snapshot.incidence,
            recoveries=snapshot.recoveries,
            arrivals=snapshot.arrivals,
            departures=snapshot.departures,
            formed=snapshot.formed,
            dissolved=snapshot.dissolved,
        )
        for level in levels:
            for state, column in STATE_COLUMNS.items():
                row[f"{column}.{level}"] = snapshot.countsByGroup[level][state]
        for label in labels:
            row[f"stat.{label}"] = snapshot.statistics[label]
        rows.append(row)
    return pd.DataFrame(rows)


def runTrial(config: ModelConfiguration, generator: np.random.Generator) -> pd.DataFrame:
    """Run one trial of the simulation.

    Any error is wrapped in a TrialFailure, except for broken network invariants (AssertionError), which are
    raised as they are.

    :param config: the model configuration, which is not modified
    :param generator: Seeded random number generated to use in this trial
    :return: A time series with one row per step, starting at step 0
    """
    trial = None
    try:
        trial = Trial(config, generator)
        trial.run()
    except AssertionError:
        raise
    except Exception as e:
        if trial is None:
            raise TrialFailure(f"{type(e).__name__} while initializing: {e}") from e
        raise TrialFailure(
            f"{type(e).__name__} at step {trial.step}: {e}",
            partial=snapshotsToPandas(trial.snapshots, config),
        ) from e
    return snapshotsToPandas(trial.snapshots, config)
