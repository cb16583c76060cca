import os
from unittest import mock

import git
import pytest

from dynamic_network_sim.common import DEFAULT_REPO_URI, Issue, IssueSeverity, Lazy, get_repo_info, log_issue


def test_lazy_never_evaluated():
    evals = []
    Lazy(lambda: evals.append(1))

    assert evals == []


def test_lazy_evaluates_on_str():
    evals = []
    lazy = Lazy(lambda: (evals.append(1), "hi"))

    assert str(lazy) == str((None, "hi"))
    assert evals == [1]


def test_lazy_evaluates_on_repr():
    evals = []
    lazy = Lazy(lambda: (evals.append(1), "hi"))

    assert repr(lazy) == repr((None, "hi"))
    assert evals == [1]


@pytest.fixture
def git_repo(tmp_path_factory):
    old_cwd = os.getcwd()
    os.chdir(str(tmp_path_factory.mktemp("repo")))
    repo = git.Repo.init()
    repo.create_remote("origin", "http://example.com")
    open("hello", "w").close()
    repo.index.add("hello")
    repo.index.commit("Initial version")
    yield repo
    os.chdir(old_cwd)


@pytest.fixture
def no_git_repo(tmp_path_factory):
    old_cwd = os.getcwd()
    repo = str(tmp_path_factory.mktemp("repo"))
    os.chdir(repo)
    yield repo
    os.chdir(old_cwd)


# pylint: disable=redefined-outer-name
def test_get_repo_info(git_repo):
    info = get_repo_info()
    assert not info.is_dirty
    assert info.git_sha == git_repo.head.commit.hexsha
    assert info.uri == "http://example.com"


# pylint: disable=redefined-outer-name
def test_get_repo_info_is_dirty(git_repo):
    with open("hello", "w") as fp:
        fp.write("hi")

    info = get_repo_info()
    assert info.is_dirty
    assert info.git_sha == git_repo.head.commit.hexsha
    assert info.uri == "http://example.com"


# pylint: disable=redefined-outer-name
# pylint: disable=unused-argument
def test_get_repo_info_no_repo(no_git_repo):
    info = get_repo_info()
    assert info.is_dirty
    assert info.git_sha == ""
    assert info.uri == DEFAULT_REPO_URI


@pytest.mark.parametrize(
    "severity,method",
    [(IssueSeverity.LOW, "info"), (IssueSeverity.MEDIUM, "warning"), (IssueSeverity.HIGH, "error")],
)
def test_log_issue_level(severity, method):
    logger = mock.MagicMock()
    issues = []
    log_issue(logger, "clamped persistence", severity, issues)

    assert issues == [Issue(description="clamped persistence", severity=severity.value)]
    getattr(logger, method).assert_called_once_with("clamped persistence")


def test_log_issue_appends_and_returns_same_list():
    logger = mock.MagicMock()
    issues = [Issue(description="earlier", severity=IssueSeverity.LOW.value)]

    returned = log_issue(logger, "later", IssueSeverity.HIGH, issues)

    assert returned is issues
    assert [issue.description for issue in issues] == ["earlier", "later"]


def test_issues_are_hashable():
    issue = Issue(description="hi", severity=IssueSeverity.MEDIUM.value)

    assert len({issue, Issue("hi", 5)}) == 1


def test_get_repo_info_without_origin(no_git_repo):  # pylint: disable=redefined-outer-name
    repo = git.Repo.init()
    open("hello", "w").close()
    repo.index.add("hello")
    repo.index.commit("Initial version")

    info = get_repo_info()

    assert info.git_sha == repo.head.commit.hexsha
    assert info.uri == DEFAULT_REPO_URI
