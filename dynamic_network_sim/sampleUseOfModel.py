"""
This is the main module used to run simulations of an epidemic over a dynamic network
"""
# pylint: disable=import-error
import argparse
from concurrent import futures
import logging
import logging.config
from pathlib import Path
import sys
import time
from typing import Dict, List, NamedTuple, Optional, Sequence

import numpy as np  # type: ignore
import pandas as pd  # type: ignore

from dynamic_network_sim.common import Issue, IssueSeverity, log_issue
from dynamic_network_sim.errors import TrialFailure
from . import common, data, diagnostics
from . import simulation as ss

# Default logger, used if module not called as __main__
logger = logging.getLogger(__name__)

OUTPUT_PREFIX = "output/dynamic_network_sim"


def main(argv):
    """
    Main function to run the dynamic network simulation
    """
    t0 = time.time()

    args = build_args(argv)
    setup_logger(args)
    logger.info("Parameters\n%s", "\n".join(f"\t{key}={value}" for key, value in args._get_kwargs()))  # pylint: disable=protected-access

    issues: List[Issue] = []

    info = common.get_repo_info()
    if not info.git_sha:
        log_issue(
            logger,
            "Not running from a git repo, so no git_sha associated with the run",
            IssueSeverity.HIGH,
            issues,
        )
    elif info.is_dirty:
        log_issue(logger, "Running out of a dirty git repo", IssueSeverity.HIGH, issues)
    with data.Datastore.from_config(args.config, uri=info.uri, git_sha=info.git_sha) as store:
        config, new_issues = ss.createModelConfiguration(
            store.read_table("input/population"),
            store.read_table("input/formation-targets"),
            store.read_table("input/dissolution"),
            store.read_table("input/epidemic"),
            store.read_table("input/demography"),
            store.read_table("input/simulation"),
        )
        issues.extend(new_issues)

        if args.diagnose:
            logger.info("Running network diagnostics")
            diagnosis = diagnostics.diagnoseNetwork(config, trials=args.diagnose)
            store.write_table(
                f"{OUTPUT_PREFIX}/network-diagnostics",
                diagnosis.statistics,
                issues=issues,
                description="Simulated formation statistics compared to their targets",
            )
            store.write_table(
                f"{OUTPUT_PREFIX}/duration-diagnostics",
                diagnosis.duration,
                issues=issues,
                description="Observed partnership durations compared to the requested ones",
            )

        results = runSimulation(
            config,
            config.randomSeed,
            issues=issues,
            max_workers=None if not args.workers else args.workers,
        )
        aggregated = aggregateResults(results)

        logger.info("Writing output")
        store.write_table(
            f"{OUTPUT_PREFIX}/outbreak-timeseries",
            aggregated.output,
            issues=aggregated.issues,
            description=aggregated.description,
        )
        for result in results:
            store.write_table(
                f"{OUTPUT_PREFIX}/outbreak-timeseries/run-{result.trial}",
                result.output,
                issues=result.issues,
                description=result.description,
            )

        logger.info("Took %.2fs to run the simulation.", time.time() - t0)
        logger.info(
            "Use `python -m dynamic_network_sim.visualisation -h` to find out how to take "
            "a peak what you just ran. You will need use the access-<hash>.yaml file that was created by this run."
        )


class Result(NamedTuple):
    """
    This object contains the results of a simulation and a small description
    """
    trial: int
    output: pd.DataFrame
    issues: List[Issue]
    failed: bool = False
    error: str = ""
    description: str = "A dataframe of the number of people in each state, and of partnerships, over time"


def _cancel(delayed: Dict[futures.Future, int]):
    for pending in delayed:
        pending.cancel()


def runSimulation(
        config: ss.ModelConfiguration,
        random_seed: int,
        issues: List[Issue],
        max_workers: Optional[int] = None,
        executor: Optional[futures.Executor] = None,
) -> List[Result]:
    """Run all the trials of a model configuration

    If the configuration is fail fast, the first failing trial cancels the trials not started yet and its TrialFailure
    is raised. Otherwise every trial runs, and the failing ones are marked in their results, with whatever output they
    recorded before failing. A broken network invariant (AssertionError) in any trial cancels the remaining trials and
    is raised as it is, whether or not the configuration is fail fast.

    When no executor is given, the trials run in a new process pool, which is shut down without waiting for the trials
    still running if a trial fails. A given executor is left to its owner, so its running trials finish normally.

    :param config: object representing the model
    :param random_seed: seed to use when instantiating the SeedSequence object
    :param issues: list of issues to report alongside every trial
    :param max_workers: maximum number of processes to spawn when running multiple simulations
    :param executor: executor to run the trials in, instead of a new process pool
    :return: Result runs for all trials of the simulation, in trial order
    """
    if executor is None:
        pool = futures.ProcessPoolExecutor(max_workers=max_workers)
        try:
            done = runSimulation(config, random_seed, issues, executor=pool)
        except BaseException:
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        pool.shutdown(wait=True)
        return done

    delayed: Dict[futures.Future, int] = {}
    for trial, seq in enumerate(np.random.SeedSequence(random_seed).spawn(config.trials)):
        delayed[executor.submit(ss.runTrial, config, np.random.default_rng(seq))] = trial

    results: Dict[int, Result] = {}
    for t, future in enumerate(futures.as_completed(delayed), start=1):
        trial = delayed[future]
        logger.info("Finished simulation (%s/%s)", t, config.trials)
        try:
            df = future.result()
        except AssertionError as e:
            _cancel(delayed)
            logger.error("Trial %s broke a network invariant, cancelling the remaining trials: %s", trial, e)
            raise
        except TrialFailure as e:
            if config.failFast:
                _cancel(delayed)
                logger.error("Trial %s failed, cancelling the remaining trials: %s", trial, e.message)
                raise TrialFailure(f"Trial {trial} failed: {e.message}", trial=trial, partial=e.partial) from e
            trialIssues = list(issues)
            log_issue(logger, f"Trial {trial} failed: {e.message}", IssueSeverity.HIGH, trialIssues)
            results[trial] = Result(
                trial=trial,
                output=e.partial if e.partial is not None else pd.DataFrame(),
                issues=trialIssues,
                failed=True,
                error=e.message,
                description="Output of an individual model run, up to the step it failed",
            )
        else:
            results[trial] = Result(trial=trial, output=df, issues=list(issues), description="An individual model run")

    return [results[trial] for trial in sorted(results)]


def aggregateResults(results: List[Result], quantiles: Sequence[float] = (0.025, 0.975)) -> Result:
    """Aggregate results from runs

    :param results: result runs from runSimulation; failed runs are left out
    :param quantiles: the lower and upper quantiles reported for every step and variable
    :return: Mean, standard deviation and quantiles of every variable through time, over all the completed trials
    """
    completed = [result for result in results if not result.failed]
    if not completed:
        raise ValueError("There are no completed trials to aggregate")
    lower, upper = quantiles

    long = pd.concat(
        [result.output.assign(trial=result.trial).melt(id_vars=["step", "trial"]) for result in completed],
        ignore_index=True,
    )
    grouped = long.groupby(["step", "variable"], sort=False).value
    agg = pd.DataFrame({
        "mean": grouped.mean(),
        "std": grouped.std(),
        "lower": grouped.quantile(lower),
        "upper": grouped.quantile(upper),
    })

    issues: List[Issue] = []
    for result in results:
        issues.extend(issue for issue in result.issues if issue not in issues)
    failed = len(results) - len(completed)
    if failed:
        log_issue(
            logger,
            f"{failed} of {len(results)} trials failed and were not aggregated",
            IssueSeverity.HIGH,
            issues,
        )
    return Result(
        trial=-1,
        output=agg.reset_index().sort_values(["step", "variable"], ignore_index=True),
        issues=issues,
        description="Mean, stddev and quantiles for all the completed runs",
    )


def setup_logger(args: Optional[argparse.Namespace] = None) -> None:
    """
    Configure package-level logger instance.

    :param args: argparse.Namespace
        args.logfile (pathlib.Path) is used to create a logfile if present
        args.quiet and args.debug control logging level to sys.stderr

    This function can be called without args, in which case it configures the
    package logger to write INFO and above to STDERR.

    When called with args, it uses args.logfile to determine if logs (by
    default, INFO and above) should be written to a file, and the path of
    that file. args.quiet and args.debug are used to control reporting
    level.
    """
    logconf = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s",
            },
        },
        "handlers": {
            "stderr": {
                "level": "INFO",
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {__package__: {"handlers": ["stderr"], "level": "DEBUG"}},
    }

    if args is not None and args.logfile is not None:
        logdir = args.logfile.parents[0]
        # If the logfile is going in another directory, we must
        # create/check if the directory is there
        try:
            if not logdir == Path.cwd():
                logdir.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.error("Could not create %s for logging", logdir, exc_info=True)
            raise SystemExit(1)
        logconf["handlers"]["logfile"] = {  # type: ignore
            "class": "logging.FileHandler",
            "level": "INFO",
            "formatter": "standard",
            "filename": str(args.logfile),
            "encoding": "utf8",
        }
        logconf["loggers"][__package__]["handlers"].append("logfile")  # type: ignore

    if args is not None and args.quiet:
        logconf["handlers"]["stderr"]["level"] = "WARNING"  # type: ignore
    elif args is not None and args.debug:
        logconf["handlers"]["stderr"]["level"] = "DEBUG"  # type: ignore
        if "logfile" in logconf["handlers"]:  # type: ignore
            logconf["handlers"]["logfile"]["level"] = "DEBUG"  # type: ignore

    logging.config.dictConfig(logconf)


def build_args(argv):
    """Return parsed CLI arguments as argparse.Namespace.

    :param argv: CLI arguments
    :type argv: list
    """

    parser = argparse.ArgumentParser(
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        description="Simulates an epidemic spreading over a network of partnerships that form and dissolve over time",
    )
    parser.add_argument(
        "-l",
        "--logfile",
        dest="logfile",
        default=None,
        type=Path,
        help="Path for logging output",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        dest="quiet",
        action="store_true",
        help="Prints only warnings to stderr",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Provide debug output to STDERR"
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Data store configuration, pointing at the directory with the input tables",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Defaults to the number of CPUs in the machine",
    )
    parser.add_argument(
        "--diagnose",
        type=int,
        default=0,
        metavar="TRIALS",
        help="Simulate the network alone this many times and write diagnostics before running the model",
    )

    return parser.parse_args(argv)


if __name__ == "__main__":
    # The logger name inherits from the package, if called as __main__
    logger = logging.getLogger(f"{__package__}.{__name__}")
    main(sys.argv[1:])
