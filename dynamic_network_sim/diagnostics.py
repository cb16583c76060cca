"""
Diagnostics of the fitted network model.

The network is simulated on its own, without disease, with the same demography, dissolution and formation steps the
full model uses. The simulated formation statistics are compared to their targets and the durations of the
partnerships that ended are compared to the requested mean durations. Large differences point at targets the model
cannot hold on this population, or at a departure rate too high for the requested durations.
"""
# pylint: disable=import-error
import logging
from typing import Dict, List, NamedTuple, Optional, Tuple

import numpy as np  # type: ignore
import pandas as pd  # type: ignore

from dynamic_network_sim.demography import applyArrivals, applyDepartures
from dynamic_network_sim.dissolution import dissolveEdges
from dynamic_network_sim.formation import formEdges, summaryStatistics
from dynamic_network_sim.simulation import ModelConfiguration, createPopulation, meanDegreeOffset

logger = logging.getLogger(__name__)


class NetworkDiagnostics(NamedTuple):
    """
    ``statistics`` compares each formation term to its target, ``duration`` compares the observed partnership
    durations to the requested ones and ``timeseries`` has the simulated statistics of every trial and step
    """
    statistics: pd.DataFrame
    duration: pd.DataFrame
    timeseries: pd.DataFrame


def simulateNetwork(
        config: ModelConfiguration,
        generator: np.random.Generator,
        steps: Optional[int] = None,
) -> Tuple[pd.DataFrame, List[Tuple[float, int]]]:
    """
    Simulates the dynamic network without disease

    :param config: the model configuration
    :param generator: random number generator for this run
    :param steps: number of steps to simulate, the configured step count by default
    :return: the formation statistics and edge count at every step, and the (requested duration, observed duration)
             of every partnership that ended
    """
    steps = config.steps if steps is None else steps
    fit = config.fit
    formula = fit.formation.formula
    attributes, network = createPopulation(config.population)
    initialSize = len(attributes)
    formEdges(fit.crossSectional, fit.dissolution, network, attributes, 0, generator)

    rows = [dict(step=0, **summaryStatistics(formula, network, attributes))]
    ended: List[Tuple[float, int]] = []
    for step in range(1, steps + 1):
        before = list(network.edges(data=True))
        applyDepartures(attributes, network, config.demography, generator)
        applyArrivals(
            attributes,
            network,
            config.demography,
            config.population.groupAttribute,
            config.population.levels,
            step,
            generator,
        )
        dissolveEdges(network, generator)
        # partnerships gone after departures and dissolution, before any dyad forms again
        for a, b, data in before:
            if not network.has_edge(a, b):
                ended.append((data["duration"], step - data["created"]))

        offset = meanDegreeOffset(initialSize, len(attributes)) if config.preserveMeanDegree else 0.0
        formEdges(fit.formation, fit.dissolution, network, attributes, step, generator, offset)
        network.check_invariants()
        rows.append(dict(step=step, **summaryStatistics(formula, network, attributes)))

    return pd.DataFrame(rows), ended


def _durationTable(ended: List[Tuple[float, int]], durations: Dict[str, float]) -> pd.DataFrame:
    rows = []
    for target in sorted(set(durations.values())):
        observed = [length for requested, length in ended if requested == target]
        rows.append({
            "partnerships": "/".join(name for name, value in durations.items() if value == target),
            "target": target,
            "mean": float(np.mean(observed)) if observed else np.nan,
            "ended": len(observed),
        })
    return pd.DataFrame(rows, columns=["partnerships", "target", "mean", "ended"])


def diagnoseNetwork(
        config: ModelConfiguration,
        steps: Optional[int] = None,
        trials: int = 1,
        random_seed: Optional[int] = None,
) -> NetworkDiagnostics:
    """
    Simulates the network a number of times and summarises how close it gets to its targets

    :param config: the model configuration
    :param steps: steps per simulation, the configured step count by default
    :param trials: number of independent simulations
    :param random_seed: seed of the simulations, the configured seed by default
    :return: the diagnostics
    """
    seed = config.randomSeed if random_seed is None else random_seed
    timeseries = []
    ended: List[Tuple[float, int]] = []
    for trial, seq in enumerate(np.random.SeedSequence(seed).spawn(trials)):
        df, trialEnded = simulateNetwork(config, np.random.default_rng(seq), steps)
        df.insert(0, "trial", trial)
        timeseries.append(df)
        ended.extend(trialEnded)
    series = pd.concat(timeseries, ignore_index=True)

    # the initial network is drawn from the cross-sectional model, only later steps say something about formation
    simulated = series[series.step > 0]
    rows = []
    for label, target in config.fit.targetStatistics.items():
        values = simulated[label] if not simulated.empty else series[label]
        mean = float(values.mean())
        rows.append({
            "term": label,
            "target": target,
            "mean": mean,
            "std": float(values.std()),
            "pct_diff": 100.0 * (mean - target) / target if target else np.nan,
        })
    statistics = pd.DataFrame(rows)
    duration = _durationTable(ended, config.fit.dissolution.durations)

    logger.info("Network diagnostics:\n%s\n%s", statistics.to_string(index=False), duration.to_string(index=False))
    return NetworkDiagnostics(statistics=statistics, duration=duration, timeseries=series)
