"""This module contains functions and classes to read and check input tables."""

import math
from typing import Any, Dict, Iterable, NamedTuple, Optional, Tuple

import pandas as pd  # type: ignore

from dynamic_network_sim.demography import (
    INFECTED_STATE,
    RECOVERED_STATE,
    SUSCEPTIBLE_STATE,
    DemographicRates,
)
from dynamic_network_sim.dissolution import DissolutionCoefficients, dissolutionCoefficients
from dynamic_network_sim.epidemic import DISEASE_MODELS, SI, EpidemicParameters
from dynamic_network_sim.errors import ConfigurationError
from dynamic_network_sim.formation import EDGES, NODEFACTOR, NODEMATCH, FormationTerm, parseTerm, resolveLevels

DEFAULT_GROUP_ATTRIBUTE = "group"


class PopulationParameters(NamedTuple):
    """
    Composition of the initial population. ``initialInfected`` optionally fixes the number of initially infected nodes
    in each group
    """
    size: int
    groupAttribute: str
    groupSizes: Dict[Any, int]
    initialInfected: Optional[Dict[Any, int]] = None

    @property
    def levels(self):
        return list(self.groupSizes)


class SimulationControl(NamedTuple):
    """
    How many trials to run, for how long, and how to report them
    """
    steps: int
    trials: int
    stratifyBy: Optional[str]
    randomSeed: int
    failFast: bool


def _readParameterTable(table: pd.DataFrame, name: str) -> Dict[str, Any]:
    if table.size == 0:
        raise ConfigurationError(f"{name} parameters cannot be empty")
    for column in ("Parameter", "Value"):
        if column not in table.columns:
            raise ConfigurationError(f"'{column}' column should be in {name} parameters")
    if table.Parameter.duplicated().any():
        raise ConfigurationError(f"duplicated entries in {name} parameters")
    return table.set_index("Parameter").Value.to_dict()


def _isMissing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == "" or value.strip().lower() == "none"
    try:
        return math.isnan(value)
    except TypeError:
        return False


def _required(parameters: Dict[str, Any], key: str, name: str) -> Any:
    if key not in parameters or _isMissing(parameters[key]):
        raise ConfigurationError(f"{key} is missing from {name} parameters")
    return parameters[key]


def _asFloat(value: Any, key: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from None
    if math.isnan(number):
        raise ConfigurationError(f"{key} must be a number, got {value!r}")
    return number


def _asInt(value: Any, key: str) -> int:
    number = _asFloat(value, key)
    if math.isinf(number) or not number.is_integer():
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    return int(number)


def _asBool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "1.0"):
        return True
    if text in ("false", "0", "no", "0.0"):
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {value!r}")


def _assertProbability(value: float, key: str):
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{key} must be in [0, 1], got {value}")


def createPopulation(
        groupSizes: Dict[Any, int],
        groupAttribute: str = DEFAULT_GROUP_ATTRIBUTE,
        size: Optional[int] = None,
        initialInfected: Optional[Dict[Any, int]] = None,
) -> PopulationParameters:
    """
    Validates the population composition.

    :param groupSizes: number of nodes in each group
    :param groupAttribute: name of the attribute holding the group
    :param size: total population size; must be the sum of group sizes if given
    :param initialInfected: optional number of initially infected nodes per group
    :return: the population parameters
    """
    if not groupSizes:
        raise ConfigurationError("population needs at least one group")
    for level, count in groupSizes.items():
        if not isinstance(count, int) or count < 0:
            raise ConfigurationError(f"size of group {level} must be a non-negative integer, got {count!r}")
    total = sum(groupSizes.values())
    if size is None:
        size = total
    if size <= 0:
        raise ConfigurationError(f"population size must be positive, got {size}")
    if total != size:
        raise ConfigurationError(f"group sizes add up to {total}, not to the population size {size}")
    if initialInfected is not None:
        for level, count in initialInfected.items():
            if level not in groupSizes:
                raise ConfigurationError(f"initial infections given for unknown group {level}")
            if not 0 <= count <= groupSizes[level]:
                raise ConfigurationError(f"cannot infect {count} nodes in group {level} of size {groupSizes[level]}")
    return PopulationParameters(
        size=size,
        groupAttribute=groupAttribute,
        groupSizes=dict(groupSizes),
        initialInfected=None if initialInfected is None else dict(initialInfected),
    )


def readPopulation(table: pd.DataFrame) -> PopulationParameters:
    """
    Read the population composition. The table has one row per group, with columns ``Group`` and ``Size``, an optional
    ``Infected`` column with the initially infected nodes of each group and an optional ``Attribute`` column naming the
    group attribute (the same on every row, "group" by default).

    :param table: population data
    :return: the population parameters
    """
    for column in ("Group", "Size"):
        if column not in table.columns:
            raise ConfigurationError(f"'{column}' column should be in the population table")
    if table.Group.duplicated().any():
        raise ConfigurationError("duplicated groups in the population table")

    attribute = DEFAULT_GROUP_ATTRIBUTE
    if "Attribute" in table.columns:
        names = set(table.Attribute)
        if len(names) != 1:
            raise ConfigurationError(f"population table must use a single attribute, got {names}")
        attribute = str(names.pop())

    groupSizes = {}
    infected: Optional[Dict[Any, int]] = {} if "Infected" in table.columns else None
    for row in table.to_dict(orient="records"):
        level = row["Group"]
        groupSizes[level] = _asInt(row["Size"], f"size of group {level}")
        if infected is not None:
            infected[level] = _asInt(row["Infected"], f"infected in group {level}")
    return createPopulation(groupSizes, attribute, initialInfected=infected)


def checkFormationTargets(formula: Tuple[FormationTerm, ...], targets: Tuple[float, ...]):
    """
    Checks targets that are inconsistent regardless of the population: negative values, matched edges or group
    degrees exceeding what the number of edges allows
    """
    values = {term.label: target for term, target in zip(formula, targets)}
    for label, target in values.items():
        if target < 0.0 or math.isinf(target):
            raise ConfigurationError(f"target of {label} must be a non-negative number, got {target}")
    if EDGES not in values:
        raise ConfigurationError("formation targets must include edges")
    edges = values[EDGES]
    for term in formula:
        if term.kind == NODEMATCH and values[term.label] > edges:
            raise ConfigurationError(f"{term.label} target {values[term.label]} exceeds the edges target {edges}")
        if term.kind == NODEFACTOR and values[term.label] > 2 * edges:
            raise ConfigurationError(f"{term.label} target {values[term.label]} exceeds twice the edges target {edges}")


def readFormationTargets(
        table: pd.DataFrame,
        population: PopulationParameters,
) -> Tuple[Tuple[FormationTerm, ...], Tuple[float, ...]]:
    """
    Read the formation formula and its target statistics, in table order. Columns are ``Statistic`` (e.g. ``edges``,
    ``nodefactor.group.1``, ``nodematch.group``) and ``Value``.

    :param table: target statistics
    :param population: the population the terms refer to
    :return: the formula and the targets, in the same order
    """
    for column in ("Statistic", "Value"):
        if column not in table.columns:
            raise ConfigurationError(f"'{column}' column should be in the formation targets")
    if table.size == 0:
        raise ConfigurationError("formation targets cannot be empty")

    terms = [parseTerm(str(label)) for label in table.Statistic]
    formula = resolveLevels(terms, {population.groupAttribute: population.levels})
    if len({term.label for term in formula}) != len(formula):
        raise ConfigurationError("formation targets must not repeat statistics")
    targets = tuple(_asFloat(value, f"target of {term.label}") for term, value in zip(formula, table.Value))
    checkFormationTargets(formula, targets)
    return formula, targets


def readDissolution(table: pd.DataFrame, population: PopulationParameters) -> DissolutionCoefficients:
    """
    Read the dissolution parameters: ``mean_partnership_duration``, optionally ``mean_matched_partnership_duration``
    (duration of partnerships within a group, which makes the other duration apply to partnerships across groups) and
    ``exogenous_departure_rate`` (0 by default).

    :param table: Parameter/Value table
    :param population: the population, used to know which attribute defines matched partnerships
    :return: dissolution coefficients
    """
    name = "dissolution"
    parameters = _readParameterTable(table, name)
    duration = _asFloat(_required(parameters, "mean_partnership_duration", name), "mean_partnership_duration")
    matched = parameters.get("mean_matched_partnership_duration")
    matchedDuration = None if _isMissing(matched) else _asFloat(matched, "mean_matched_partnership_duration")
    departure = parameters.get("exogenous_departure_rate")
    departureRate = 0.0 if _isMissing(departure) else _asFloat(departure, "exogenous_departure_rate")
    return dissolutionCoefficients(
        duration,
        departureRate,
        matchedDuration=matchedDuration,
        matchAttribute=None if matchedDuration is None else population.groupAttribute,
    )


def checkEpidemicParameters(parameters: EpidemicParameters):
    if parameters.model not in DISEASE_MODELS:
        raise ConfigurationError(f"disease model must be one of {DISEASE_MODELS}, got {parameters.model}")
    _assertProbability(parameters.infectionProbability, "infection_probability_per_act")
    _assertProbability(parameters.recoveryRate, "recovery_rate")
    if not 0.0 <= parameters.actRate < math.inf:
        raise ConfigurationError(f"acts_per_step must be a non-negative number, got {parameters.actRate}")


def readEpidemic(table: pd.DataFrame) -> Tuple[EpidemicParameters, int]:
    """
    Read the disease parameters: ``disease_model`` (SI, SIS or SIR; SI by default), ``infection_probability_per_act``,
    ``acts_per_step``, ``recovery_rate`` (0 by default) and ``initial_infected_count``.

    :param table: Parameter/Value table
    :return: the disease parameters and the number of initially infected nodes
    """
    name = "epidemic"
    parameters = _readParameterTable(table, name)
    model = parameters.get("disease_model")
    recovery = parameters.get("recovery_rate")
    epidemic = EpidemicParameters(
        model=SI if _isMissing(model) else str(model).strip().upper(),
        infectionProbability=_asFloat(
            _required(parameters, "infection_probability_per_act", name), "infection_probability_per_act"
        ),
        actRate=_asFloat(_required(parameters, "acts_per_step", name), "acts_per_step"),
        recoveryRate=0.0 if _isMissing(recovery) else _asFloat(recovery, "recovery_rate"),
    )
    checkEpidemicParameters(epidemic)
    initial = _asInt(_required(parameters, "initial_infected_count", name), "initial_infected_count")
    if initial < 0:
        raise ConfigurationError(f"initial_infected_count must be non-negative, got {initial}")
    return epidemic, initial


def checkDemographicRates(rates: DemographicRates):
    _assertProbability(rates.arrivalRate, "arrival_rate")
    if set(rates.departureRates) != {SUSCEPTIBLE_STATE, INFECTED_STATE, RECOVERED_STATE}:
        raise ConfigurationError(f"departure rates must be given for every state, got {list(rates.departureRates)}")
    for state, rate in rates.departureRates.items():
        _assertProbability(rate, f"departure rate of state {state}")


def readDemography(table: pd.DataFrame) -> Tuple[DemographicRates, bool]:
    """
    Read the demographic rates: ``arrival_rate``, ``departure_rate_susceptible``, ``departure_rate_infected``,
    ``departure_rate_recovered`` (all 0 by default, the recovered rate defaults to the susceptible one) and
    ``preserve_mean_degree`` (true by default).

    :param table: Parameter/Value table
    :return: demographic rates and whether formation keeps the mean degree constant as the population size changes
    """
    parameters = _readParameterTable(table, "demography")

    def rate(key, default=0.0):
        value = parameters.get(key)
        return default if _isMissing(value) else _asFloat(value, key)

    susceptible = rate("departure_rate_susceptible")
    rates = DemographicRates(
        arrivalRate=rate("arrival_rate"),
        departureRates={
            SUSCEPTIBLE_STATE: susceptible,
            INFECTED_STATE: rate("departure_rate_infected"),
            RECOVERED_STATE: rate("departure_rate_recovered", susceptible),
        },
    )
    checkDemographicRates(rates)
    preserve = parameters.get("preserve_mean_degree")
    return rates, True if _isMissing(preserve) else _asBool(preserve, "preserve_mean_degree")


def readSimulation(table: pd.DataFrame) -> SimulationControl:
    """
    Read the simulation control parameters: ``step_count``, ``trial_count``, ``stratify_by`` (an attribute or none),
    ``random_seed`` (0 by default) and ``fail_fast`` (false by default).

    :param table: Parameter/Value table
    :return: the simulation control
    """
    name = "simulation"
    parameters = _readParameterTable(table, name)
    steps = _asInt(_required(parameters, "step_count", name), "step_count")
    trials = _asInt(_required(parameters, "trial_count", name), "trial_count")
    if steps <= 0:
        raise ConfigurationError(f"step_count must be positive, got {steps}")
    if trials <= 0:
        raise ConfigurationError(f"trial_count must be positive, got {trials}")
    stratify = parameters.get("stratify_by")
    seed = parameters.get("random_seed")
    failFast = parameters.get("fail_fast")
    return SimulationControl(
        steps=steps,
        trials=trials,
        stratifyBy=None if _isMissing(stratify) else str(stratify).strip(),
        randomSeed=0 if _isMissing(seed) else readRandomSeed(seed),
        failFast=False if _isMissing(failFast) else _asBool(failFast, "fail_fast"),
    )


def readRandomSeed(value: Any) -> int:
    """
    Validates the random seed used to spawn the generators of every trial

    :param value: the seed, as read from the table
    :return: the seed as a non-negative integer
    """
    seed = _asInt(value, "random_seed")
    if seed < 0:
        raise ConfigurationError(f"random_seed must be non-negative, got {seed}")
    return seed


def checkAttributes(names: Iterable[Optional[str]], population: PopulationParameters):
    """Every attribute referred to by the model must be the group attribute of the population"""
    for name in names:
        if name is not None and name != population.groupAttribute:
            raise ConfigurationError(f"unknown attribute {name}, the population only has {population.groupAttribute}")
