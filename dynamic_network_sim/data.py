"""
Directory backed store for the input and output tables of a run.

The store is configured by a small YAML file::

    data_directory: .
    access_log: access-{run_id}.yaml

Relative paths are resolved against the directory holding the configuration file. Every table is a CSV file named
after its data product (``input/population`` is read from ``<data_directory>/input/population.csv``). Reads and writes
are recorded and, when the store is closed, written to the access log together with the provenance of the run, so a
run can be traced back to the code and inputs that produced it.
"""
import datetime
import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd  # type: ignore
import yaml

from dynamic_network_sim.common import Issue

logger = logging.getLogger(__name__)

DEFAULT_ACCESS_LOG = "access-{run_id}.yaml"


class Datastore:
    """
    Reads and writes tables under ``data_directory``, keeping a log of every access

    :param data_directory: directory holding the tables
    :param access_log: path of the access log, with an optional ``{run_id}`` placeholder, or None to not write one
    :param uri: uri of the code repository, recorded in the access log
    :param git_sha: commit of the code, recorded in the access log
    :param config: the configuration the store was created from, recorded in the access log
    """
    def __init__(
            self,
            data_directory: Path,
            access_log: Optional[str] = DEFAULT_ACCESS_LOG,
            uri: str = "",
            git_sha: str = "",
            config: Optional[Dict[str, Any]] = None,
    ):
        self.data_directory = Path(data_directory)
        self.uri = uri
        self.git_sha = git_sha
        self.config = config or {}
        self.open_timestamp = datetime.datetime.now()
        self.run_id = hashlib.sha1(
            f"{self.data_directory.resolve()}{git_sha}{self.open_timestamp.isoformat()}".encode("utf8")
        ).hexdigest()
        self.access_log_path = None
        if access_log:
            self.access_log_path = self.data_directory / access_log.format(run_id=self.run_id)
        self.io: List[Dict[str, Any]] = []

    @classmethod
    def from_config(cls, config_filename: str, uri: str = "", git_sha: str = "") -> "Datastore":
        """
        Creates a store from a YAML configuration file

        :param config_filename: path to the configuration
        :param uri: uri of the code repository
        :param git_sha: commit of the code
        :return: the store
        """
        path = Path(config_filename)
        with open(path, encoding="utf8") as fp:
            config = yaml.safe_load(fp) or {}
        data_directory = path.parent / config.get("data_directory", ".")
        return cls(
            data_directory,
            access_log=config.get("access_log", DEFAULT_ACCESS_LOG),
            uri=uri,
            git_sha=git_sha,
            config=config,
        )

    def _path(self, data_product: str) -> Path:
        return self.data_directory / f"{data_product}.csv"

    def read_table(self, data_product: str) -> pd.DataFrame:
        """
        Reads a table

        :param data_product: name of the table, e.g. ``input/population``
        :return: the table
        """
        path = self._path(data_product)
        if not path.exists():
            raise FileNotFoundError(f"Data product {data_product} not found at {path}")
        logger.debug("Reading %s from %s", data_product, path)
        self.io.append({
            "type": "read",
            "timestamp": datetime.datetime.now().isoformat(),
            "call_metadata": {"data_product": data_product},
            "access_metadata": {"filename": str(path.relative_to(self.data_directory))},
        })
        return pd.read_csv(path)

    def write_table(
            self,
            data_product: str,
            value: pd.DataFrame,
            issues: Optional[List[Issue]] = None,
            description: str = "",
    ):
        """
        Writes a table, replacing it if it exists

        :param data_product: name of the table, e.g. ``output/dynamic_network_sim/outbreak-timeseries``
        :param value: the table
        :param issues: issues found while producing the table, recorded in the access log
        :param description: description of the table, recorded in the access log
        """
        path = self._path(data_product)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Writing %s to %s", data_product, path)
        value.to_csv(path, index=False)
        self.io.append({
            "type": "write",
            "timestamp": datetime.datetime.now().isoformat(),
            "call_metadata": {
                "data_product": data_product,
                "description": description,
                "issues": [{"description": issue.description, "severity": issue.severity} for issue in issues or []],
            },
            "access_metadata": {"filename": str(path.relative_to(self.data_directory))},
        })

    def close(self):
        """Writes the access log, if the store has one"""
        if self.access_log_path is None:
            return
        log = {
            "data_directory": str(self.data_directory.resolve()),
            "run_id": self.run_id,
            "open_timestamp": self.open_timestamp.isoformat(),
            "close_timestamp": datetime.datetime.now().isoformat(),
            "run_metadata": {"uri": self.uri, "git_sha": self.git_sha},
            "config": self.config,
            "io": self.io,
        }
        self.access_log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.access_log_path, "w", encoding="utf8") as fp:
            yaml.safe_dump(log, fp, sort_keys=False, allow_unicode=True)
        logger.info("Access log written to %s", self.access_log_path)

    def __enter__(self) -> "Datastore":
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
