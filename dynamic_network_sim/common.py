"""
Assortment of useful functions
"""
# pylint: disable=import-error
import logging
from enum import Enum
from typing import Callable, Any, NamedTuple, List

import git  # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_REPO_URI = "unknown"


class IssueSeverity(Enum):
    """
    This class defines the severity levels for issues found while running the model or loading data.
    """
    LOW = 1
    MEDIUM = 5
    HIGH = 10


class Issue(NamedTuple):
    """
    A problem found while loading data or running the model which did not stop the run, but which should be
    reported alongside its outputs
    """
    description: str
    severity: int


def log_issue(
        logger: logging.Logger,
        description: str,
        severity: IssueSeverity,
        issues: List[Issue]
) -> List[Issue]:
    """
    Appends issue to the issues list whilst logging its description at the appropriate log level

    :param logger: a python logger object
    :param description: an explanation of the issue found
    :param severity: the severity of the issue, from an enum of severities
    :param issues: list of issues, it will be modified in-place
    :return: Returns the same list of issues passed as a parameter for convenience
    """
    log = {
        IssueSeverity.LOW: logger.info,
        IssueSeverity.MEDIUM: logger.warning,
        IssueSeverity.HIGH: logger.error,
    }[severity]
    log(description)
    issues.append(Issue(description=description, severity=severity.value))
    return issues


class Lazy:
    """
    This class allows lazy evaluation of logging expressions. The idiom to accomplish that can be better explained in
    the example below::

        logger.info("The value of z is: %s", lazy(lambda: x + y))

    that will cause ``x + y`` to only be evaluated if the log level is info.

    :param f: A function which takes no parameters and which will only be evaluated when str is called in the returning
              object
    """
    def __init__(self, f: Callable[[], Any]):
        self.f = f

    def __str__(self):
        return str(self.f())

    def __repr__(self):
        return repr(self.f())


class RepoInfo(NamedTuple):
    """
    Provenance recorded in the access log of every run
    """
    git_sha: str
    uri: str
    is_dirty: bool


def get_repo_info() -> RepoInfo:
    """
    Retrieves the current git sha and uri for the current git repo

    :return: A RepoInfo object. If not inside a git repo, is_dirty will be True, git_sha empty and uri will be a
             default value
    """
    try:
        repo = git.Repo()
    except git.InvalidGitRepositoryError:
        return RepoInfo(git_sha="", uri=DEFAULT_REPO_URI, is_dirty=True)
    try:
        uri = next(repo.remote("origin").urls)
    except ValueError:
        logger.debug("The repo has no origin remote")
        uri = DEFAULT_REPO_URI
    return RepoInfo(git_sha=repo.head.commit.hexsha, uri=uri, is_dirty=repo.is_dirty())
