"""
Shared pytest fixtures for branch_cycle tests.
"""

import logging

import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

import git

from branch_cycle.config import Config
from branch_cycle.git_backend import OperationResult
from branch_cycle.logs import PACKAGE_LOGGER
from branch_cycle.status_store import CommitFingerprint


def _fingerprint(hash_, message='commit'):
    return CommitFingerprint(
        hash=hash_,
        date='2025-09-01T10:00:00+00:00',
        message=message,
        author='Dev <dev@example.com>')


@pytest.fixture
def make_fingerprint():
    """Factory for CommitFingerprint objects."""
    return _fingerprint


@pytest.fixture
def config():
    """Configuration with a branch prefix and a two-week cycle."""
    return Config(branch_prefix='release', cycle_days=14)


@pytest.fixture
def fixed_now():
    """Clock returning 2025-09-15 12:00 UTC."""
    moment = datetime(2025, 9, 15, 12, 0, tzinfo=timezone.utc)
    return lambda: moment


@pytest.fixture
def mock_backend():
    """
    Create complete mock GitBackend.

    - ``backend.existing``: set of branch names branch_exists() reports
      (the four environment branches by default)
    - ``backend.commits``: ref -> CommitFingerprint returned by
      latest_commit(); unknown refs get a stable "<ref>-head" hash
    - every mutating operation succeeds by default
    """
    backend = Mock()
    backend.dry_run = False
    backend.existing = {'base', 'uat', 'pre', 'pro'}
    backend.commits = {}

    backend.branch_exists.side_effect = lambda branch: branch in backend.existing
    backend.latest_commit.side_effect = \
        lambda ref: backend.commits.get(ref, _fingerprint(f"{ref}-head"))

    ok = OperationResult(success=True)
    backend.fetch.return_value = ok
    backend.pull.return_value = ok
    backend.checkout.return_value = ok
    backend.create_branch.return_value = ok
    backend.empty_commit.return_value = ok
    backend.merge.return_value = ok
    backend.push.return_value = ok
    backend.merge_abort.return_value = ok
    backend.reset_hard.return_value = ok
    backend.delete_branch.return_value = ok
    return backend


def _commit_file(repo, name, content, message):
    path = f"{repo.working_tree_dir}/{name}"
    with open(path, 'w', encoding='utf-8') as handle:
        handle.write(content)
    repo.git.add(name)
    repo.git.commit('-m', message)


@pytest.fixture
def commit_file():
    """Helper writing a file and committing it on the current branch."""
    return _commit_file


@pytest.fixture
def git_workspace(tmp_path):
    """
    Create a working repository with a bare 'origin' remote.

    The four environment branches (base, uat, pre, pro) exist locally and on
    the remote, all on the same initial commit. Returns (repo, remote_dir).
    """
    remote_dir = tmp_path / 'remote.git'
    git.Repo.init(remote_dir, bare=True)

    work_dir = tmp_path / 'work'
    repo = git.Repo.init(work_dir)
    with repo.config_writer() as writer:
        writer.set_value('user', 'name', 'Cycle Tester')
        writer.set_value('user', 'email', 'tester@example.com')
        writer.set_value('commit', 'gpgsign', 'false')

    repo.git.checkout('-b', 'base')
    _commit_file(repo, 'README.md', '# Test Project\n', 'Initial commit')
    repo.create_remote('origin', str(remote_dir))
    repo.git.push('origin', 'base')
    for branch in ('uat', 'pre', 'pro'):
        repo.git.branch(branch)
        repo.git.push('origin', branch)
    return repo, remote_dir


@pytest.fixture
def other_clone(git_workspace, tmp_path):
    """
    A second clone of the workspace remote, standing for another developer.

    Call ``push_commit(branch, name, content, message)`` on the returned
    helper to commit a file on branch and push it to origin.
    """
    _, remote_dir = git_workspace
    clone = git.Repo.clone_from(str(remote_dir), str(tmp_path / 'other'), branch='base')
    with clone.config_writer() as writer:
        writer.set_value('user', 'name', 'Other Dev')
        writer.set_value('user', 'email', 'other@example.com')
        writer.set_value('commit', 'gpgsign', 'false')

    def push_commit(branch, name, content, message):
        clone.git.fetch('origin')
        clone.git.checkout(branch)
        clone.git.pull('--no-rebase', 'origin', branch)
        _commit_file(clone, name, content, message)
        clone.git.push('origin', branch)

    return push_commit


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop the handlers setup_logging() attached during a test."""
    yield
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
