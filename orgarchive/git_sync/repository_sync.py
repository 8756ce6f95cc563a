"""Per-repository synchronization: mirror on first sight, reconcile afterwards."""

import logging
from typing import Callable, List, Optional

from ..config import ArchiveConfig
from ..errors import ArchiveError, ErrorHandler
from ..hosting import GitHubCLI
from ..layout import RepoArchiveLayout
from .git_adapter import GitAdapter
from .performance_logger import PerformanceLogger
from .reconciler import BranchReconciler
from .repository_info import ArchiveTarget, LocalRepoState, RemoteBranch, SyncState, TrackingLink
from .utils import RepositorySyncReport, SyncResult


class RepositorySyncController:
    """
    Drives one repository through ``Uncloned -> Mirrored -> Syncing -> Settled``.

    ``CloneError`` and repository-level ``SyncError``/``RepositoryLookupError``
    propagate to the caller. Failures on individual branches are reported and
    recorded on the returned report instead.
    """

    def __init__(
        self,
        config: ArchiveConfig,
        git: GitAdapter,
        hosting: GitHubCLI,
        reconciler: Optional[BranchReconciler] = None,
        error_handler: Optional[ErrorHandler] = None,
        perf_logger: Optional[PerformanceLogger] = None,
    ):
        self.config = config
        self.git = git
        self.hosting = hosting
        self.error_handler = error_handler or ErrorHandler()
        self.reconciler = reconciler or BranchReconciler(git, self.error_handler)
        self.perf_logger = perf_logger or PerformanceLogger()
        self.logger = logging.getLogger('orgarchive.git_sync.repository_sync')

    def sync(
        self,
        target: ArchiveTarget,
        layout: RepoArchiveLayout,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> RepositorySyncReport:
        subject = target.full_name
        repo_dir = layout.repo_dir
        report = RepositorySyncReport(state=SyncState.UNCLONED)

        if self.git.has_metadata(repo_dir):
            remote_alias = self.git.discover_remote_alias(
                repo_dir, target.default_branch, self.config.remote_alias
            )
            if not self.git.has_working_tree(repo_dir):
                self.logger.warning(
                    f"{subject}: archive has no checked-out files, checking out '{target.default_branch}'"
                )
                self.git.checkout(repo_dir, target.default_branch, force=True)
        else:
            remote_alias = self._mirror(target, layout)
            report.cloned = True
            report.state = SyncState.MIRRORED

        report.state = SyncState.SYNCING
        state = self.git.read_state(repo_dir, remote_alias)
        original_branch = state.active_branch
        original_commit = state.head_commit
        self.logger.debug(
            f"{subject}: remote '{remote_alias}', active branch before run: "
            f"{original_branch or original_commit}"
        )

        try:
            self._checkout_default(state, target)

            with self.perf_logger.time_operation("sync", subject):
                remote_branches = list(self.git.list_remote_branches(repo_dir, remote_alias))
                report.reconcile = self.reconciler.reconcile(
                    state, remote_branches, target.default_branch, remote_alias, subject, should_stop
                )

                if report.reconcile.cancelled:
                    report.cancelled = True
                else:
                    report.branch_syncs = self._sync_tracked_branches(
                        state, remote_branches, remote_alias, subject, report, should_stop
                    )

                if not report.cancelled:
                    try:
                        self.git.fetch_all_prune(repo_dir)
                    except ArchiveError as e:
                        report.failures.append(self.error_handler.report(e, subject))
        finally:
            self._restore(state, original_branch, original_commit, report, subject)

        report.state = SyncState.SETTLED
        return report

    def _mirror(self, target: ArchiveTarget, layout: RepoArchiveLayout) -> str:
        """``Uncloned -> Mirrored``: create the archive from nothing."""
        subject = target.full_name
        url = self.hosting.clone_url(target.organization, target.repository)

        with self.perf_logger.time_operation("clone", subject, log_level=logging.INFO):
            state = self.git.clone_mirror(
                url, layout.repo_dir, self.config.remote_alias, target.default_branch
            )

        self.logger.info(f"{subject}: mirrored into {layout.repo_dir}")
        return state.remote_alias

    def _checkout_default(self, state: LocalRepoState, target: ArchiveTarget) -> None:
        """Put the working copy on the default branch, creating it if the remote renamed it."""
        default = target.default_branch
        if not state.has_branch(default):
            link = TrackingLink(state.remote_alias, default)
            self.logger.info(f"{target.full_name}: default branch '{default}' missing locally, creating it")
            self.git.create_tracking_branch(state.repo_dir, default, link)
            state.branches[default] = link

        if state.active_branch != default:
            self.git.checkout(state.repo_dir, default)
            state.active_branch = default

    def _sync_tracked_branches(
        self,
        state: LocalRepoState,
        remote_branches: List[RemoteBranch],
        remote_alias: str,
        subject: str,
        report: RepositorySyncReport,
        should_stop: Callable[[], bool],
    ) -> List[SyncResult]:
        """Ask the remote to sync every advertised branch that is now tracked."""
        results = []
        for branch in sorted(b.name for b in remote_branches):
            if state.tracking(branch) != TrackingLink(remote_alias, branch):
                continue
            if should_stop():
                report.cancelled = True
                break

            try:
                self.hosting.sync_branch(state.repo_dir, branch)
            except ArchiveError as e:
                failure = self.error_handler.report(e, f"{subject}@{branch}")
                report.failures.append(failure)
                results.append(SyncResult(
                    success=False,
                    message=failure.message,
                    operation="sync_branch",
                    error_code=failure.error_code,
                    branch_used=branch
                ))
                continue

            results.append(SyncResult(
                success=True,
                message=f"Synchronized branch '{branch}'",
                operation="sync_branch",
                branch_used=branch
            ))
        return results

    def _restore(
        self,
        state: LocalRepoState,
        original_branch: Optional[str],
        original_commit: Optional[str],
        report: RepositorySyncReport,
        subject: str,
    ) -> None:
        """Return the working copy to whatever was checked out before the run."""
        ref = original_branch or original_commit
        if not ref or state.active_branch == ref:
            report.restored_branch = ref
            return

        try:
            self.git.checkout(state.repo_dir, ref)
        except ArchiveError as e:
            report.failures.append(self.error_handler.report(e, f"{subject}@{ref}"))
            return

        state.active_branch = original_branch
        report.restored_branch = ref
