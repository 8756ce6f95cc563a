"""Repository, branch and tracking data structures."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional


class SyncState(Enum):
    """States of the per-repository synchronization state machine."""
    UNCLONED = "uncloned"   # No .git at the target path
    MIRRORED = "mirrored"   # Mirror clone created this run, default branch checked out
    SYNCING = "syncing"     # Reconciling branches against the remote
    SETTLED = "settled"     # Terminal for this run


@dataclass(frozen=True)
class ArchiveTarget:
    """One repository to archive. Immutable once processing starts."""
    organization: str
    repository: str
    default_branch: str

    @property
    def full_name(self) -> str:
        return f"{self.organization}/{self.repository}"


@dataclass(frozen=True)
class RemoteBranch:
    """A branch as advertised by the remote. Recomputed every run."""
    name: str
    ref: str


@dataclass(frozen=True)
class TrackingLink:
    """The remote branch a local branch follows."""
    remote_alias: str
    remote_branch: str

    def __str__(self) -> str:
        return f"{self.remote_alias}/{self.remote_branch}"


@dataclass
class LocalRepoState:
    """On-disk working-copy state of one archived repository."""
    repo_dir: Path
    has_metadata: bool
    active_branch: Optional[str] = None
    head_commit: Optional[str] = None
    remote_alias: Optional[str] = None
    # Local branch name -> tracking link, or None when untracked
    branches: Dict[str, Optional[TrackingLink]] = field(default_factory=dict)

    def tracking(self, branch: str) -> Optional[TrackingLink]:
        return self.branches.get(branch)

    def has_branch(self, branch: str) -> bool:
        return branch in self.branches
