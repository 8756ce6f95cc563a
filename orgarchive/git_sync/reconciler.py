"""
Branch reconciliation.

Planning is a pure function over structured state; applying the plan goes
through the git adapter one branch at a time so a failure on one branch
leaves that branch as it was and does not stop the others.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..errors import ArchiveError, ErrorHandler
from .git_adapter import GitAdapter
from .repository_info import LocalRepoState, RemoteBranch, TrackingLink
from .utils import ActionKind, BranchAction, ReconcileReport


def plan_branch_actions(
    state: LocalRepoState,
    remote_branches: Iterable[RemoteBranch],
    default_branch: str,
    remote_alias: str,
) -> List[BranchAction]:
    """
    Compute one action per remote branch.

    Local branches without a remote counterpart get no action at all: they
    are kept as they are even though the remote no longer advertises them.
    Remote branches are processed in name order so logs are reproducible.
    """
    actions = []
    for branch in sorted(remote_branches, key=lambda b: b.name):
        wanted = TrackingLink(remote_alias, branch.name)

        if state.tracking(branch.name) == wanted:
            kind = ActionKind.CONVERGED
        elif branch.name == default_branch:
            kind = ActionKind.TRACK_DEFAULT
        elif state.has_branch(branch.name):
            # An untracked or mis-linked local branch with the remote's name is
            # taken to be a stale copy of the same line of history.
            kind = ActionKind.ADOPT_UNTRACKED
        else:
            kind = ActionKind.CREATE

        actions.append(BranchAction(kind=kind, branch=branch.name, link=wanted))
    return actions


class BranchReconciler:
    """Converges local branches and tracking links onto the remote's branch set."""

    def __init__(self, git: GitAdapter, error_handler: Optional[ErrorHandler] = None):
        self.git = git
        self.error_handler = error_handler or ErrorHandler()
        self.logger = logging.getLogger('orgarchive.git_sync.reconciler')

    def reconcile(
        self,
        state: LocalRepoState,
        remote_branches: Iterable[RemoteBranch],
        default_branch: str,
        remote_alias: str,
        subject: str,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> ReconcileReport:
        """
        Apply the plan for ``remote_branches`` to the working copy in ``state``.

        ``state`` is updated in place to reflect every action that succeeded.
        """
        report = ReconcileReport(
            actions=plan_branch_actions(state, remote_branches, default_branch, remote_alias)
        )

        for action in report.actions:
            if not action.mutates:
                self.logger.debug(f"{subject}: {action.branch} already tracks {action.link}")
                report.applied.append(action)
                continue

            if should_stop():
                self.logger.info(f"{subject}: cancelled before {action.describe()}")
                report.cancelled = True
                break

            try:
                self._apply(state.repo_dir, action)
            except ArchiveError as e:
                report.failures.append(
                    self.error_handler.report(e, f"{subject}@{action.branch}", {'action': action.kind.value})
                )
                continue

            state.branches[action.branch] = action.link
            report.applied.append(action)
            self.logger.info(f"{subject}: {action.describe()}")

        return report

    def _apply(self, repo_dir: Path, action: BranchAction) -> None:
        if action.kind is ActionKind.TRACK_DEFAULT:
            self.git.track_and_fast_forward(repo_dir, action.branch, action.link)
        elif action.kind is ActionKind.ADOPT_UNTRACKED:
            self.git.overwrite_from_remote(repo_dir, action.branch, action.link)
        elif action.kind is ActionKind.CREATE:
            self.git.create_tracking_branch(repo_dir, action.branch, action.link)
