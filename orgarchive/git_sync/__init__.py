"""Repository synchronization for archive-org."""

from .git_adapter import GitAdapter
from .reconciler import BranchReconciler, plan_branch_actions
from .repository_info import ArchiveTarget, LocalRepoState, RemoteBranch, SyncState, TrackingLink
from .repository_sync import RepositorySyncController
from .utils import ActionKind, BranchAction, ReconcileReport, RepositorySyncReport, SyncResult

__all__ = [
    'GitAdapter',
    'BranchReconciler',
    'plan_branch_actions',
    'RepositorySyncController',
    'ArchiveTarget',
    'LocalRepoState',
    'RemoteBranch',
    'SyncState',
    'TrackingLink',
    'ActionKind',
    'BranchAction',
    'ReconcileReport',
    'RepositorySyncReport',
    'SyncResult',
]
