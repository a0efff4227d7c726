"Provides the GitBackend class"

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

import git
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from branch_cycle.decorators import with_session_lock
from branch_cycle.errors import ConfigError, ExitCode, GitOperationFailed
from branch_cycle.status_store import CommitFingerprint

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of a backend operation."""
    success: bool
    dry_run: bool = False
    conflict: bool = False
    existed: bool = False
    error: Optional[str] = None
    value: Any = None

    @property
    def failed(self) -> bool:
        return not self.success


def _git_error_text(err: GitCommandError) -> str:
    "Collects stdout and stderr of a failed git command."
    parts = [str(part).strip() for part in (err.stdout, err.stderr) if part]
    return '\n'.join(part for part in parts if part) or str(err)


class GitBackend:
    """
    Manages the git operations on the working directory.

    Every public operation goes through one re-entrant session lock: the
    working tree and its checked-out ref are a single shared resource.

    Mutating operations are wrapped by ``_execute``: in dry-run mode they are
    logged and replaced by a successful no-op, read operations still run.
    Critical operations raise GitOperationFailed on failure, non-critical
    ones log and return a failed OperationResult.
    """
    def __init__(self, base_dir=None, remote_name='origin', dry_run=False):
        self.__base_dir = base_dir
        self.__remote = remote_name
        self.__dry_run = dry_run
        self.__git_repo: git.Repo = None
        self.__current_branch: Optional[str] = None
        self._session_lock = threading.RLock()
        if base_dir:
            try:
                self.__git_repo = git.Repo(base_dir)
            except (InvalidGitRepositoryError, NoSuchPathError) as err:
                raise ConfigError(
                    f"Not a git repository: {base_dir}",
                    exit_code=ExitCode.FILE_NOT_FOUND) from err

    def __str__(self):
        res = ['[Git]']
        res.append(f'- directory: {self.__base_dir}')
        res.append(f'- remote: {self.__remote if self.has_remote() else "No remote"}')
        res.append(f'- current branch: {self.current_branch}')
        res.append(f'- repo is clean: {self.repos_is_clean()}')
        return '\n'.join(res)

    @property
    def remote_name(self) -> str:
        return self.__remote

    @property
    def dry_run(self) -> bool:
        return self.__dry_run

    @property
    @with_session_lock
    def current_branch(self) -> Optional[str]:
        "Returns the checked-out branch (None when HEAD is detached)."
        if self.__current_branch is None:
            try:
                self.__current_branch = str(self.__git_repo.active_branch)
            except TypeError:
                return None
        return self.__current_branch

    def repos_is_clean(self) -> bool:
        "Returns True if the git repository is clean, False otherwise."
        return not self.__git_repo.is_dirty(untracked_files=True)

    def has_remote(self) -> bool:
        "Returns True if the configured remote exists."
        if self.__git_repo is None:
            return False
        return any(remote.name == self.__remote for remote in self.__git_repo.remotes)

    def _execute(self, action: Callable[[], Any], description: str,
                 critical: bool = True) -> OperationResult:
        "Runs a mutating action honoring dry-run and criticality."
        logger.info(description)
        if self.__dry_run:
            logger.info("[DRY RUN] Would execute this action")
            return OperationResult(success=True, dry_run=True)
        try:
            value = action()
        except GitCommandError as err:
            text = _git_error_text(err)
            logger.error("Operation failed: %s", text)
            if critical:
                raise GitOperationFailed(description, text) from err
            return OperationResult(success=False, error=text)
        logger.debug("Operation completed")
        return OperationResult(success=True, value=value)

    # ------------------------------------------------------------- read side

    @with_session_lock
    def local_branch_exists(self, branch: str) -> bool:
        "Returns True if branch is in the local heads"
        return branch in self.__git_repo.heads

    @with_session_lock
    def remote_branch_exists(self, branch: str) -> bool:
        """
        Returns True if the remote has a head named branch.

        Queries the remote directly (``git ls-remote --heads``) rather than
        the possibly stale remote-tracking refs.

        Raises:
            GitOperationFailed: If the remote cannot be queried
        """
        if not self.has_remote():
            return False
        try:
            output = self.__git_repo.git.ls_remote('--heads', self.__remote, branch)
        except GitCommandError as err:
            raise GitOperationFailed(
                f"Checking existence of {self.__remote}/{branch}", _git_error_text(err)) from err
        suffix = f"refs/heads/{branch}"
        return any(line.strip().endswith(suffix) for line in output.splitlines())

    @with_session_lock
    def branch_exists(self, branch: str) -> bool:
        "Returns True if branch exists locally or on the remote."
        return self.local_branch_exists(branch) or self.remote_branch_exists(branch)

    def _resolve(self, ref: str) -> str:
        """
        Returns the revision to read ref from.

        The remote-tracking ref wins when present: a fetch only moves
        ``<remote>/*``, local branches used as sources are never pulled.
        Falls back to the local branch, else ref itself.
        """
        remote_ref = f"{self.__remote}/{ref}"
        try:
            self.__git_repo.git.rev_parse('--verify', '--quiet', f"refs/remotes/{remote_ref}")
            return remote_ref
        except GitCommandError:
            return ref

    def _local_first(self, ref: str) -> str:
        "Local branch when present, else the same lookup as _resolve."
        if self.local_branch_exists(ref):
            return ref
        return self._resolve(ref)

    @with_session_lock
    def latest_commit(self, ref: str) -> Optional[CommitFingerprint]:
        """
        Returns the fingerprint of the last commit of ref, None if ref is unknown.

        Examples:
            fingerprint = backend.latest_commit("release/2025-09-15")
            print(fingerprint.short_hash)
        """
        try:
            commit = self.__git_repo.commit(self._resolve(ref))
        except (BadName, ValueError, GitCommandError):
            return None
        message = commit.message.strip().splitlines()
        return CommitFingerprint(
            hash=commit.hexsha,
            date=commit.committed_datetime.isoformat(),
            message=message[0] if message else '',
            author=f"{commit.author.name} <{commit.author.email}>",
        )

    # ------------------------------------------------------------ write side

    def _checkout(self, branch: str) -> None:
        self.__current_branch = None
        self.__git_repo.git.checkout(branch)
        self.__current_branch = branch

    def _pull(self, branch: str) -> None:
        if self.remote_branch_exists(branch):
            self.__git_repo.git.pull('--no-rebase', self.__remote, branch)

    @with_session_lock
    def fetch(self, critical: bool = True) -> OperationResult:
        "Fetches all references from the remote, pruning deleted ones."
        if not self.has_remote():
            logger.warning("No remote '%s' configured, skipping fetch", self.__remote)
            return OperationResult(success=True)
        return self._execute(
            lambda: self.__git_repo.git.fetch(self.__remote, '--prune'),
            f"Fetching from {self.__remote}",
            critical)

    @with_session_lock
    def checkout(self, branch: str, critical: bool = True) -> OperationResult:
        self.__current_branch = None
        return self._execute(lambda: self._checkout(branch), f"Checking out {branch}", critical)

    @with_session_lock
    def pull(self, branch: str, critical: bool = True) -> OperationResult:
        "Checks out branch and pulls it from the remote."
        self.__current_branch = None

        def action():
            self._checkout(branch)
            self._pull(branch)

        return self._execute(action, f"Pulling from {self.__remote}/{branch}", critical)

    @with_session_lock
    def create_branch(self, from_branch: str, new_branch: str,
                      critical: bool = True) -> OperationResult:
        "Creates new_branch from the up to date from_branch and checks it out."
        if self.branch_exists(new_branch):
            logger.warning("Branch %s already exists. Skipping creation.", new_branch)
            return OperationResult(success=True, existed=True)
        self.__current_branch = None

        def action():
            self._checkout(from_branch)
            self._pull(from_branch)
            self.__current_branch = None
            self.__git_repo.git.checkout('-b', new_branch)
            self.__current_branch = new_branch

        return self._execute(action, f"Creating branch {new_branch} from {from_branch}", critical)

    @with_session_lock
    def empty_commit(self, message: str, critical: bool = True) -> OperationResult:
        "Commits nothing on the current branch, with message."
        return self._execute(
            lambda: self.__git_repo.git.commit('--allow-empty', '-m', message),
            f"Creating empty commit on {self.current_branch}: {message}",
            critical)

    @with_session_lock
    def merge(self, target: str, source: str, no_ff: bool = False,
              critical: bool = True) -> OperationResult:
        """
        Merges source into target.

        Checks out and pulls target, then merges source (its remote-tracking
        ref when there is one, see ``_resolve``).

        A conflict is never raised, whether it comes from the merge or from
        the pull of target: the result reports ``conflict`` and the caller
        decides how to recover (abort, else hard reset). The ``critical``
        flag applies to the other failures of preparing the merge.
        """
        description = f"Merging {source} into {target}"
        if no_ff:
            description += " (with merge commit)"
        if self.__dry_run:
            return self._execute(lambda: None, description, critical)

        preparing = f"Preparing {target} for merge"
        prepared = self._execute(
            lambda: (self._checkout(target), self._pull(target)), preparing, critical=False)
        if prepared.failed:
            text = prepared.error or ''
            prepared.conflict = 'CONFLICT' in text or self._has_unmerged_paths()
            if critical and not prepared.conflict:
                raise GitOperationFailed(preparing, text)
            return prepared

        args = [self._resolve(source), '--no-edit']
        if no_ff:
            args.append('--no-ff')
        logger.info(description)
        try:
            self.__git_repo.git.merge(*args)
        except GitCommandError as err:
            text = _git_error_text(err)
            conflict = 'CONFLICT' in text or self._has_unmerged_paths()
            logger.error("Merge of %s into %s failed: %s", source, target, text)
            return OperationResult(success=False, conflict=conflict, error=text)
        logger.debug("Operation completed")
        return OperationResult(success=True)

    def _has_unmerged_paths(self) -> bool:
        try:
            return bool(self.__git_repo.git.diff('--name-only', '--diff-filter=U').strip())
        except GitCommandError:
            return False

    @with_session_lock
    def merge_abort(self) -> OperationResult:
        """
        Aborts the merge in progress.

        Raises:
            GitOperationFailed: If there is nothing to abort or abort fails
        """
        return self._execute(
            lambda: self.__git_repo.git.merge('--abort'), "Aborting merge", critical=True)

    @with_session_lock
    def reset_hard(self, ref: str) -> OperationResult:
        """
        Resets the working tree to the last commit of ref.

        Raises:
            GitOperationFailed: If the reset fails
        """
        return self._execute(
            lambda: self.__git_repo.git.reset('--hard', self._local_first(ref)),
            f"Resetting working tree to {ref}",
            critical=True)

    @with_session_lock
    def rebase(self, branch: str, onto: str, critical: bool = True) -> OperationResult:
        "Rebases branch onto onto. A failed rebase is aborted before reporting."
        self.__current_branch = None

        def action():
            self._checkout(branch)
            self._pull(branch)
            try:
                self.__git_repo.git.rebase(self._resolve(onto))
            except GitCommandError:
                try:
                    self.__git_repo.git.rebase('--abort')
                except GitCommandError as abort_err:
                    logger.warning("Rebase abort failed: %s", _git_error_text(abort_err))
                raise

        return self._execute(action, f"Rebasing {branch} onto {onto}", critical)

    @with_session_lock
    def push(self, branch: str, force: bool = False, critical: bool = True) -> OperationResult:
        "Pushes branch to the remote, optionally with --force-with-lease."
        args = [self.__remote, branch]
        if force:
            args.append('--force-with-lease')

        def action():
            try:
                return self.__git_repo.git.push(*args)
            except GitCommandError as err:
                if 'up-to-date' in _git_error_text(err).lower():
                    logger.info("%s already up to date on %s", branch, self.__remote)
                    return None
                raise

        description = f"Pushing {branch} to {self.__remote}"
        if force:
            description += " (force)"
        return self._execute(action, description, critical)

    @with_session_lock
    def delete_branch(self, branch: str, critical: bool = False) -> OperationResult:
        """
        Deletes branch locally, then on the remote.

        Each side is only attempted when the branch exists there. Returns a
        failed result if either side failed (non-critical by default).
        """
        results = []
        if self.local_branch_exists(branch):
            if self.current_branch == branch:
                results.append(OperationResult(
                    success=False, error=f"{branch} is the checked-out branch"))
                logger.error("Cannot delete %s: branch is checked out", branch)
            else:
                results.append(self._execute(
                    lambda: self.__git_repo.git.branch('-D', branch),
                    f"Deleting local branch {branch}",
                    critical))
        if self.remote_branch_exists(branch):
            results.append(self._execute(
                lambda: self.__git_repo.git.push(self.__remote, '--delete', branch),
                f"Deleting remote branch {self.__remote}/{branch}",
                critical))
        errors = [result.error for result in results if result.failed]
        if errors:
            return OperationResult(success=False, error='\n'.join(errors))
        return OperationResult(success=True, dry_run=self.__dry_run)
