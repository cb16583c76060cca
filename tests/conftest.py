import shutil
from pathlib import Path

import pandas as pd
import pytest

from dynamic_network_sim import data, loaders, simulation
from dynamic_network_sim.demography import CLOSED_POPULATION
from dynamic_network_sim.dissolution import dissolutionCoefficients
from dynamic_network_sim.epidemic import SI, EpidemicParameters
from dynamic_network_sim.formation import parseTerm, resolveLevels

# Path to directory containing test files for fixtures
FIXTURE_DIR = Path(__file__).parents[0] / "test_data"


@pytest.fixture
def base_data_dir():
    yield FIXTURE_DIR


@pytest.fixture
def data_dir(tmp_path):
    """A copy of the fixture inputs, so tests can write outputs and access logs next to them"""
    shutil.copytree(FIXTURE_DIR, tmp_path / "data")
    yield tmp_path / "data"


@pytest.fixture
def data_api(data_dir):  # pylint: disable=redefined-outer-name
    with data.Datastore.from_config(str(data_dir / "config.yaml"), uri="", git_sha="") as store:
        yield store


@pytest.fixture
def input_tables(data_api):  # pylint: disable=redefined-outer-name
    return [
        data_api.read_table("input/population"),
        data_api.read_table("input/formation-targets"),
        data_api.read_table("input/dissolution"),
        data_api.read_table("input/epidemic"),
        data_api.read_table("input/demography"),
        data_api.read_table("input/simulation"),
    ]


@pytest.fixture
def two_groups():
    return loaders.createPopulation({0: 50, 1: 50})


def makeConfiguration(
        groupSizes=None,
        statistics=("edges",),
        targets=(25.0,),
        duration=10.0,
        departureRate=0.0,
        epidemic=None,
        demography=CLOSED_POPULATION,
        initialInfected=5,
        steps=10,
        trials=1,
        stratifyBy="group",
        **kwargs,
):
    """Builds a ModelConfiguration with small defaults, for tests"""
    population = kwargs.pop("population", None) or loaders.createPopulation(groupSizes or {0: 50, 1: 50})
    formula = tuple(parseTerm(label) for label in statistics)
    formula = resolveLevels(formula, {population.groupAttribute: population.levels})
    return simulation.buildModelConfiguration(
        population,
        formula,
        tuple(targets),
        kwargs.pop("dissolution", None) or dissolutionCoefficients(duration, departureRate),
        epidemic or EpidemicParameters(SI, 0.3, 2.0),
        demography,
        initialInfected,
        steps,
        trials=trials,
        stratifyBy=stratifyBy,
        **kwargs,
    )


@pytest.fixture
def make_config():
    return makeConfiguration


@pytest.fixture
def small_config():
    return makeConfiguration()


@pytest.fixture
def simple_trial_output():
    return pd.DataFrame({
        "step": [0, 1, 2],
        "population_size": [10, 10, 10],
        "infected_count": [1, 2, 4],
    })
