"""Local version-control primitives for the archive, using GitPython."""

import logging
import shutil
from pathlib import Path
from typing import Dict, Iterator, Optional

from git import Repo, GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from git.refs.head import Head
from git.refs.remote import RemoteReference

from ..errors import CloneError, SyncError, RepositoryLookupError
from .repository_info import LocalRepoState, RemoteBranch, TrackingLink


_PROGRESS_PREFIXES = ("From ", "* ", "hint:", "remote:", "Cloning into")


def _cause(error: Exception) -> str:
    """Pick the stderr line of a failed git command that names what went wrong."""
    lines = []
    for line in (getattr(error, "stderr", None) or "").splitlines():
        line = line.strip().strip("'").strip()
        if line.startswith("stderr:"):
            line = line[len("stderr:"):].strip().strip("'").strip()
        if line:
            lines.append(line)

    for line in lines:
        if line.startswith(("fatal:", "error:")):
            return line
    # fetch and pull print progress before the cause
    remaining = [line for line in lines if not line.startswith(_PROGRESS_PREFIXES)]
    if remaining:
        return remaining[-1]
    if lines:
        return lines[-1]
    return str(error)


class GitAdapter:
    """
    Wraps the git operations the sync controller and reconciler need.

    Every ``GitCommandError`` is translated into ``CloneError`` (mirror clone)
    or ``SyncError`` (everything on an existing archive).
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds after which network commands are killed; None blocks
        """
        self.timeout = timeout
        self.logger = logging.getLogger('orgarchive.git_sync.git_adapter')

    # State ----------------------------------------------------------------

    @staticmethod
    def has_metadata(repo_dir: Path) -> bool:
        return (repo_dir / ".git").exists()

    def _open(self, repo_dir: Path) -> Repo:
        try:
            return Repo(repo_dir)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise SyncError(f"not a git repository: {repo_dir}", "NOT_A_REPOSITORY") from e

    @staticmethod
    def _heads(repo: Repo) -> Dict[str, Head]:
        return {head.name: head for head in repo.heads}

    @staticmethod
    def _link_for(head: Head) -> Optional[TrackingLink]:
        tracking = head.tracking_branch()
        # branch.<name>.remote = "." tracks a local branch, not a remote one
        if tracking is None or tracking.remote_name == ".":
            return None
        return TrackingLink(tracking.remote_name, tracking.remote_head)

    def read_state(self, repo_dir: Path, remote_alias: Optional[str] = None) -> LocalRepoState:
        """Read the working copy's branches, tracking links and active branch."""
        if not self.has_metadata(repo_dir):
            return LocalRepoState(repo_dir=repo_dir, has_metadata=False, remote_alias=remote_alias)

        repo = self._open(repo_dir)
        branches = {name: self._link_for(head) for name, head in self._heads(repo).items()}
        active = None if repo.head.is_detached else repo.active_branch.name
        head_commit = repo.head.commit.hexsha if repo.head.is_valid() else None

        return LocalRepoState(
            repo_dir=repo_dir,
            has_metadata=True,
            active_branch=active,
            head_commit=head_commit,
            remote_alias=remote_alias,
            branches=branches,
        )

    def discover_remote_alias(self, repo_dir: Path, default_branch: str, preferred: str) -> str:
        """
        Find the remote alias used by a pre-existing archive.

        The default branch's upstream wins; otherwise ``preferred`` if configured,
        otherwise the first remote.
        """
        repo = self._open(repo_dir)
        head = self._heads(repo).get(default_branch)
        if head is not None:
            link = self._link_for(head)
            if link is not None:
                return link.remote_alias

        names = [remote.name for remote in repo.remotes]
        if preferred in names:
            return preferred
        if names:
            self.logger.debug(f"No upstream on '{default_branch}', using remote '{names[0]}'")
            return names[0]
        raise RepositoryLookupError(f"no remote configured in {repo_dir}", "NO_REMOTE")

    # Mirror clone ---------------------------------------------------------

    def clone_mirror(self, url: str, repo_dir: Path, remote_alias: str = "origin",
                     default_branch: Optional[str] = None) -> LocalRepoState:
        """
        Mirror-clone ``url`` into ``repo_dir/.git`` and turn it into a working tree.

        The clone keeps every ref, is configured as non-bare with full ref-update
        logging, and fetches ``refs/heads/*`` into ``refs/remotes/<alias>/*``.
        With ``default_branch`` the working tree is checked out on that branch.
        Nothing is left on disk if any step fails or is interrupted.
        """
        git_dir = repo_dir / ".git"
        if git_dir.exists():
            raise CloneError(f"local repository already exists: {repo_dir}", "LOCAL_REPO_EXISTS")

        try:
            repo_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CloneError(f"cannot create {repo_dir}: {e}", "DESTINATION_NOT_WRITABLE") from e

        self.logger.info(f"Mirror-cloning {url} into {repo_dir}")
        try:
            mirror = Repo.clone_from(url, git_dir, mirror=True)
            mirror.git.config("--bool", "core.bare", "false")
            mirror.git.config("core.logAllRefUpdates", "true")
            mirror.git.config("remote.origin.fetch", "+refs/heads/*:refs/remotes/origin/*")
            mirror.git.config("--unset", "remote.origin.mirror")
            mirror.close()

            repo = Repo(repo_dir)
            if remote_alias != "origin":
                repo.git.remote("rename", "origin", remote_alias)
            repo.git.fetch(remote_alias, kill_after_timeout=self.timeout)
            if default_branch is not None:
                self._checkout_cloned(repo, default_branch)
            repo.close()
        except GitCommandError as e:
            shutil.rmtree(git_dir, ignore_errors=True)
            raise CloneError(_cause(e), "GIT_CLONE_FAILED", url=url) from e
        except BaseException:
            # a half-made clone would pass for an archive on the next run
            shutil.rmtree(git_dir, ignore_errors=True)
            raise

        return self.read_state(repo_dir, remote_alias=remote_alias)

    @staticmethod
    def _checkout_cloned(repo: Repo, default_branch: str) -> None:
        try:
            repo.git.checkout("-f", default_branch)
        except GitCommandError as e:
            raise CloneError(
                f"cloned but cannot check out '{default_branch}': {_cause(e)}",
                "DEFAULT_BRANCH_CHECKOUT_FAILED",
            ) from e

    @staticmethod
    def has_working_tree(repo_dir: Path) -> bool:
        """False when the metadata exists but nothing was ever checked out."""
        return (repo_dir / ".git" / "index").exists()

    # Remote branches ------------------------------------------------------

    def list_remote_branches(self, repo_dir: Path, remote_alias: str) -> Iterator[RemoteBranch]:
        """Yield the branches the remote currently advertises, sorted by name."""
        repo = self._open(repo_dir)
        try:
            output = repo.git.ls_remote("--heads", remote_alias, kill_after_timeout=self.timeout)
        except GitCommandError as e:
            raise SyncError(_cause(e), "LS_REMOTE_FAILED", remote=remote_alias) from e

        for line in output.splitlines():
            ref, _, refname = line.partition("\t")
            if refname.startswith("refs/heads/"):
                yield RemoteBranch(name=refname[len("refs/heads/"):], ref=ref.strip())

    def _fetch_remote_branch(self, repo: Repo, remote_alias: str, name: str) -> None:
        repo.git.fetch(
            remote_alias,
            f"+refs/heads/{name}:refs/remotes/{remote_alias}/{name}",
            kill_after_timeout=self.timeout,
        )

    # Branch mutations -----------------------------------------------------

    def checkout(self, repo_dir: Path, ref: str, force: bool = False) -> None:
        repo = self._open(repo_dir)
        try:
            if force:
                repo.git.checkout("-f", ref)
            else:
                repo.git.checkout(ref)
        except GitCommandError as e:
            raise SyncError(_cause(e), "BRANCH_CHECKOUT_FAILED", branch=ref) from e

    def set_tracking(self, repo_dir: Path, name: str, link: TrackingLink) -> None:
        repo = self._open(repo_dir)
        head = self._heads(repo).get(name)
        if head is None:
            raise RepositoryLookupError(f"local branch '{name}' does not exist", "BRANCH_NOT_FOUND")
        remote_ref = RemoteReference(repo, f"refs/remotes/{link.remote_alias}/{link.remote_branch}")
        head.set_tracking_branch(remote_ref)

    def track_and_fast_forward(self, repo_dir: Path, name: str, link: TrackingLink) -> None:
        """
        Fast-forward an existing (checked-out) branch to its remote branch, then link it.

        The link is written only after the pull succeeded, so a failed pull leaves
        the branch exactly as it was.
        """
        repo = self._open(repo_dir)
        try:
            self._fetch_remote_branch(repo, link.remote_alias, link.remote_branch)
            repo.git.pull("--ff-only", link.remote_alias, link.remote_branch,
                          kill_after_timeout=self.timeout)
            self.set_tracking(repo_dir, name, link)
        except GitCommandError as e:
            raise SyncError(_cause(e), "PULL_FAILED", branch=name) from e

    def overwrite_from_remote(self, repo_dir: Path, name: str, link: TrackingLink) -> None:
        """Reset a local, non-checked-out branch to the remote tip and link it."""
        repo = self._open(repo_dir)
        try:
            self._fetch_remote_branch(repo, link.remote_alias, link.remote_branch)
            repo.git.branch("-f", name, f"refs/remotes/{link.remote_alias}/{link.remote_branch}")
            self.set_tracking(repo_dir, name, link)
        except GitCommandError as e:
            raise SyncError(_cause(e), "FETCH_FAILED", branch=name) from e

    def create_tracking_branch(self, repo_dir: Path, name: str, link: TrackingLink) -> None:
        """Create a local branch at the remote tip, tracking it."""
        repo = self._open(repo_dir)
        head = None
        try:
            self._fetch_remote_branch(repo, link.remote_alias, link.remote_branch)
            head = repo.create_head(name, f"refs/remotes/{link.remote_alias}/{link.remote_branch}")
            head.set_tracking_branch(
                RemoteReference(repo, f"refs/remotes/{link.remote_alias}/{link.remote_branch}")
            )
        except (GitCommandError, OSError, ValueError) as e:
            if head is not None:
                self._discard_branch(repo, name)
            raise SyncError(_cause(e), "BRANCH_CREATION_FAILED", branch=name) from e

    def _discard_branch(self, repo: Repo, name: str) -> None:
        """Remove a branch this run created but could not link."""
        try:
            repo.git.branch("-D", name)
        except GitCommandError as e:
            self.logger.warning(f"Could not remove unlinked branch '{name}': {_cause(e)}")

    def fetch_all_prune(self, repo_dir: Path) -> None:
        repo = self._open(repo_dir)
        try:
            repo.git.fetch("--all", "--prune", kill_after_timeout=self.timeout)
        except GitCommandError as e:
            raise SyncError(_cause(e), "FETCH_PRUNE_FAILED") from e
