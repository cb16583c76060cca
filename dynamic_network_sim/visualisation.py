"""
Visualisation tool for dynamic network simulation runs
"""
# pylint: disable=import-error
import argparse
import logging
import math
import sys
from pathlib import Path

import pandas as pd  # type: ignore
import yaml

from matplotlib import pyplot as plt  # type: ignore
from matplotlib.colors import ListedColormap  # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_VARIABLES = ["susceptible_count", "infected_count", "active_edge_count", "population_size"]


def plot_variables(df, variables=None, ncol=2, sharey=False, figsize=None, cmap=None):
    """
    Plots a grid of plots, one plot per variable of an aggregated run. Each plot has the mean of the variable over
    the trials and, as a band, its lower and upper quantiles. The graphs are all Value x Step

    :param df: pandas DataFrame with step, variable, mean, lower and upper columns
    :type df: pandas DataFrame
    :param variables: creates one plot per variable listed (None means the default variables available in df)
    :type variables: list (of column names of the trial output)
    :param ncol: number of columns (the number of rows will be calculated to fit all graphs)
    :type ncol: int
    :param sharey: set to true if all plots should have the same y-axis
    :type sharey: bool
    :param figsize: select the size of the figure
    :type figsize: tuple
    :param cmap: color map to use
    :type cmap: matplotlib colormap
    :return: returns a matplotlib figure
    :rtype: matplotlib figure
    """
    available = df.variable.unique().tolist()
    if variables is None:
        variables = [variable for variable in DEFAULT_VARIABLES if variable in available]
    if not variables:
        raise ValueError("variables cannot be an empty list")
    missing = [variable for variable in variables if variable not in available]
    if missing:
        raise ValueError(f"variables not in the output: {missing}")
    if cmap is None:
        cmap = ListedColormap(["#56B4E9", "#009E73", "#F0E442", "#0072B2", "#D55E00", "#CC79A7", "#999999", "#E69F00"])
    nrow = math.ceil(len(variables) / ncol)
    if figsize is None:
        figsize = (8 * ncol, nrow * 4)

    fig, axes = plt.subplots(nrow, ncol, squeeze=False, constrained_layout=True, sharey=sharey, figsize=figsize)

    for count, variable in enumerate(variables):
        ax = axes[count // ncol, count % ncol]
        color = cmap(count % cmap.N)
        series = df[df.variable == variable].sort_values("step")
        ax.plot(series.step, series["mean"], color=color, label="mean")
        if "lower" in series and "upper" in series:
            ax.fill_between(series.step, series.lower, series.upper, color=color, alpha=0.3, label="quantiles")
        ax.set_title(variable)
        ax.set_ylabel("Value")
        ax.set_xlabel("Step")

    for count in range(len(variables), nrow * ncol):
        axes[count // ncol, count % ncol].set_visible(False)

    handles, labels = axes[0, 0].get_legend_handles_labels()
    fig.legend(handles, labels, loc="upper right")

    return fig


def plot_prevalence(df, levels=None, figsize=None, cmap=None):
    """
    Plots the mean prevalence (infected over all the nodes) of every group in a stratified run, in a single graph

    :param df: aggregated output with ``infected_count.<level>`` and ``susceptible_count.<level>`` variables
    :param levels: groups to plot (None means every group in the output)
    :param figsize: select the size of the figure
    :param cmap: color map to use
    :return: returns a matplotlib figure
    """
    prefix = "infected_count."
    if levels is None:
        levels = [variable[len(prefix):] for variable in df.variable.unique() if variable.startswith(prefix)]
    if not levels:
        raise ValueError("the output is not stratified by group")
    if cmap is None:
        cmap = ListedColormap(["#56B4E9", "#009E73", "#F0E442", "#0072B2", "#D55E00", "#CC79A7", "#999999", "#E69F00"])

    means = df.pivot(index="step", columns="variable", values="mean")
    fig, ax = plt.subplots(constrained_layout=True, figsize=figsize or (8, 4))
    for count, level in enumerate(levels):
        columns = [f"{state}.{level}" for state in ("susceptible_count", "infected_count", "recovered_count")]
        total = means[[column for column in columns if column in means]].sum(axis=1)
        prevalence = means[f"{prefix}{level}"] / total.where(total > 0)
        ax.plot(prevalence.index, prevalence.values, color=cmap(count % cmap.N), label=f"group {level}")
    ax.set_ylabel("Prevalence")
    ax.set_xlabel("Step")
    ax.legend(loc="upper left")

    return fig


def read_output(data_product: str, path: str) -> pd.DataFrame:
    """
    Read a data product from the run in path

    :param data_product: the name of the data_product to read
    :param path: the path of the access log of the run
    :return: The output data, loaded as a pandas DataFrame
    """
    with open(path, encoding="utf8") as fp:
        access_log = yaml.safe_load(fp)
    outputs = list(
        filter(
            lambda x: x["type"] == "write" and x["call_metadata"]["data_product"] == data_product,
            access_log["io"]
        )
    )
    assert len(outputs) == 1, f"Expected exactly one output for {data_product}: {outputs}"

    output_path = Path(access_log["data_directory"]) / Path(outputs[0]["access_metadata"]["filename"])
    return pd.read_csv(output_path)


def build_args(argv):
    parser = argparse.ArgumentParser(
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        description="Reads the access*.yaml files and outputs graphs for a given run",
    )

    parser.add_argument(
        "--variables",
        default=None,
        metavar="variable,[variable,...]",
        help="Comma-separated list of variables to plot. The main counts will be plotted if not provided."
    )
    parser.add_argument(
        "--share-y",
        default=False,
        action="store_true",
        help="Toggle this flag if you want all y-axis to be shared",
    )
    parser.add_argument(
        "--prevalence",
        default=False,
        action="store_true",
        help="Plot the prevalence of each group instead, for runs stratified by group",
    )
    parser.add_argument(
        "--data-product",
        default="output/dynamic_network_sim/outbreak-timeseries",
        help="Use this to select which output file to read, in case more than one is available"
    )

    parser.add_argument("access_log_path", type=str, help="Path to a access log file")

    return parser.parse_args(argv)


def main(argv):
    """
    This is the main function of the visualisation tool. The tool outputs graphs for a given simulation run
    """
    logging.basicConfig(
        stream=sys.stdout,
        level=logging.INFO,
        format="[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s",
    )
    args = build_args(argv)
    df = read_output(args.data_product, args.access_log_path)
    if args.prevalence:
        plot_prevalence(df)
    else:
        plot_variables(df, args.variables.split(",") if args.variables else None, sharey=args.share_y)
    plt.show()


if __name__ == "__main__":
    # The logger name inherits from the package, if called as __main__
    logger = logging.getLogger(f"{__package__}.{__name__}")
    main(sys.argv[1:])
