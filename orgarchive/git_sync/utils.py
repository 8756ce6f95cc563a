"""Result records for synchronization operations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .repository_info import TrackingLink, SyncState
from ..errors import ErrorResponse


@dataclass
class SyncResult:
    """Result of one branch-level synchronization operation."""
    success: bool
    message: str
    operation: str
    error_code: Optional[str] = None
    branch_used: Optional[str] = None


class ActionKind(Enum):
    """What the reconciler does for one remote branch."""
    CONVERGED = "converged"              # already tracking the right remote branch
    TRACK_DEFAULT = "track_default"      # (re)link the default branch and fast-forward it
    ADOPT_UNTRACKED = "adopt_untracked"  # overwrite a same-named untracked branch and link it
    CREATE = "create"                    # new local branch tracking the remote branch


@dataclass(frozen=True)
class BranchAction:
    """One planned reconciliation step."""
    kind: ActionKind
    branch: str
    link: TrackingLink

    @property
    def mutates(self) -> bool:
        return self.kind is not ActionKind.CONVERGED

    def describe(self) -> str:
        return f"{self.kind.value} {self.branch} -> {self.link}"


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""
    actions: List[BranchAction] = field(default_factory=list)
    applied: List[BranchAction] = field(default_factory=list)
    failures: List[ErrorResponse] = field(default_factory=list)
    cancelled: bool = False

    @property
    def mutating_actions(self) -> List[BranchAction]:
        return [action for action in self.applied if action.mutates]


@dataclass
class RepositorySyncReport:
    """Outcome of running the sync controller on one repository."""
    state: SyncState
    cloned: bool = False
    reconcile: ReconcileReport = field(default_factory=ReconcileReport)
    branch_syncs: List[SyncResult] = field(default_factory=list)
    failures: List[ErrorResponse] = field(default_factory=list)
    restored_branch: Optional[str] = None
    cancelled: bool = False

    @property
    def all_failures(self) -> List[ErrorResponse]:
        return list(self.reconcile.failures) + list(self.failures)
