import matplotlib

matplotlib.use("Agg")

# pylint: disable=wrong-import-position
import pandas as pd
import pytest
from matplotlib import pyplot as plt

from dynamic_network_sim import data
import dynamic_network_sim.visualisation as vis


@pytest.fixture
def aggregated():
    rows = []
    for step in range(3):
        for variable, value in [
            ("susceptible_count", 10 - step),
            ("infected_count", step),
            ("active_edge_count", 4),
            ("population_size", 10),
            ("susceptible_count.0", 5 - step),
            ("infected_count.0", step),
            ("susceptible_count.1", 5),
            ("infected_count.1", 0),
        ]:
            rows.append({"step": step, "variable": variable, "mean": value, "std": 0.0, "lower": value, "upper": value})
    yield pd.DataFrame(rows)
    plt.close("all")


# pylint: disable=redefined-outer-name
def test_plot_variables_defaults(aggregated):
    fig = vis.plot_variables(aggregated)

    titles = [ax.get_title() for ax in fig.axes if ax.get_visible()]
    assert titles == ["susceptible_count", "infected_count", "active_edge_count", "population_size"]


# pylint: disable=redefined-outer-name
def test_plot_variables_hides_unused_axes(aggregated):
    fig = vis.plot_variables(aggregated, ["infected_count", "population_size", "active_edge_count"])

    assert len(fig.axes) == 4
    assert [ax.get_visible() for ax in fig.axes] == [True, True, True, False]
    assert list(fig.axes[0].lines[0].get_ydata()) == [0, 1, 2]


# pylint: disable=redefined-outer-name
def test_plot_variables_invalid(aggregated):
    with pytest.raises(ValueError):
        vis.plot_variables(aggregated, [])
    with pytest.raises(ValueError):
        vis.plot_variables(aggregated, ["recovered_count"])


# pylint: disable=redefined-outer-name
def test_plot_prevalence(aggregated):
    fig = vis.plot_prevalence(aggregated)

    [ax] = fig.axes
    assert [line.get_label() for line in ax.lines] == ["group 0", "group 1"]
    assert list(ax.lines[0].get_ydata()) == pytest.approx([0.0, 0.2, 0.4])
    assert list(ax.lines[1].get_ydata()) == pytest.approx([0.0, 0.0, 0.0])


def test_plot_prevalence_needs_groups():
    df = pd.DataFrame([{"step": 0, "variable": "infected_count", "mean": 1.0, "lower": 1.0, "upper": 1.0}])

    with pytest.raises(ValueError):
        vis.plot_prevalence(df)


# pylint: disable=redefined-outer-name
def test_read_output(aggregated, data_dir):
    with data.Datastore.from_config(str(data_dir / "config.yaml")) as store:
        store.write_table("output/dynamic_network_sim/outbreak-timeseries", aggregated)
    [access_log] = list(data_dir.glob("access-*.yaml"))

    df = vis.read_output("output/dynamic_network_sim/outbreak-timeseries", str(access_log))

    pd.testing.assert_frame_equal(df, aggregated, check_dtype=False)
