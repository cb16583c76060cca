import numpy as np
import pytest

from dynamic_network_sim import diagnostics
from dynamic_network_sim.demography import DemographicRates


def test_simulateNetwork(small_config):
    series, ended = diagnostics.simulateNetwork(small_config, np.random.default_rng(0), steps=30)

    assert series.step.tolist() == list(range(31))
    assert list(series.columns) == ["step", "edges"]
    assert ended
    assert all(requested == 10.0 and length >= 1 for requested, length in ended)


def test_simulateNetwork_duration_one(make_config):
    config = make_config(duration=1.0)

    _, ended = diagnostics.simulateNetwork(config, np.random.default_rng(0), steps=20)

    assert {length for _, length in ended} == {1}


def test_diagnoseNetwork(make_config):
    config = make_config(
        statistics=("edges", "nodematch.group"),
        targets=(50.0, 35.0),
        duration=5.0,
    )

    diagnosis = diagnostics.diagnoseNetwork(config, steps=300, trials=2, random_seed=1)

    statistics = diagnosis.statistics.set_index("term")
    assert statistics.loc["edges", "target"] == 50.0
    assert statistics.loc["edges", "mean"] == pytest.approx(50.0, rel=0.1)
    assert statistics.loc["nodematch.group", "mean"] == pytest.approx(35.0, rel=0.1)
    assert diagnosis.duration.partnerships.tolist() == ["mixed/matched"]
    assert diagnosis.duration["mean"].iloc[0] == pytest.approx(5.0, rel=0.1)
    assert sorted(diagnosis.timeseries.trial.unique()) == [0, 1]
    assert len(diagnosis.timeseries) == 2 * 301


def test_diagnoseNetwork_with_departures(make_config):
    config = make_config(
        duration=10.0,
        departureRate=0.01,
        demography=DemographicRates(0.01, {"S": 0.01, "I": 0.01, "R": 0.01}),
    )

    diagnosis = diagnostics.diagnoseNetwork(config, steps=400, trials=1, random_seed=2)

    # durations count partnerships ended by departures too
    assert diagnosis.duration["mean"].iloc[0] == pytest.approx(10.0, rel=0.15)
