"""Drives repository sync and release archiving over an organization's repositories."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from .config import ArchiveConfig, ReleaseMode
from .errors import ArchiveError, ErrorHandler, ErrorResponse
from .git_sync import ArchiveTarget, GitAdapter, RepositorySyncController, RepositorySyncReport, SyncState
from .git_sync.performance_logger import PerformanceLogger
from .hosting import GitHubCLI
from .layout import RepoArchiveLayout
from .releases import ReleaseArchiveReport, ReleaseArchiver
from .repo_lock import RepositoryLock


@dataclass
class RepositoryOutcome:
    """Result of processing one repository."""
    repository: str
    success: bool
    skipped: bool = False
    state: Optional[SyncState] = None
    sync: Optional[RepositorySyncReport] = None
    releases: Optional[ReleaseArchiveReport] = None
    error: Optional[ErrorResponse] = None

    @property
    def failures(self) -> List[ErrorResponse]:
        failures = []
        if self.error is not None:
            failures.append(self.error)
        if self.sync is not None:
            failures.extend(self.sync.all_failures)
        if self.releases is not None:
            failures.extend(self.releases.failures)
        return failures


@dataclass
class ArchiveSummary:
    """Per-repository outcomes of one run."""
    organization: str
    dry_run: bool = False
    cancelled: bool = False
    outcomes: List[RepositoryOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[RepositoryOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[RepositoryOutcome]:
        return [o for o in self.outcomes if not o.success and not o.skipped]

    @property
    def with_warnings(self) -> List[RepositoryOutcome]:
        return [o for o in self.succeeded if o.failures]

    def lines(self) -> List[str]:
        """Final status lines shown to the user."""
        processed = [o for o in self.outcomes if not o.skipped]
        lines = [
            f"{self.organization}: {len(self.succeeded)}/{len(processed)} repositories archived"
            + (f", {len(self.with_warnings)} with branch or release errors" if self.with_warnings else "")
        ]
        for outcome in self.outcomes:
            for failure in outcome.failures:
                lines.append(f"  {failure.one_line()}")
        if self.cancelled:
            skipped = sum(1 for o in self.outcomes if o.skipped)
            lines.append(f"Cancelled: {skipped} repositories not started")
        return lines


class ArchiveOrchestrator:
    """
    Processes repositories one at a time, continuing past failures.

    In dry-run mode only the paths that a real run would create or update are
    emitted; nothing is written and nothing on the remote is changed.
    """

    def __init__(
        self,
        config: ArchiveConfig,
        hosting: Optional[GitHubCLI] = None,
        git: Optional[GitAdapter] = None,
        sync_controller: Optional[RepositorySyncController] = None,
        release_archiver: Optional[ReleaseArchiver] = None,
        error_handler: Optional[ErrorHandler] = None,
        echo: Callable[[str], None] = print,
    ):
        self.config = config
        self.echo = echo
        self.error_handler = error_handler or ErrorHandler()
        self.perf_logger = PerformanceLogger()
        self.hosting = hosting or GitHubCLI(host=config.host, timeout=config.gh_timeout)
        self.git = git or GitAdapter(timeout=config.git_timeout)
        self.sync_controller = sync_controller or RepositorySyncController(
            config, self.git, self.hosting,
            error_handler=self.error_handler, perf_logger=self.perf_logger,
        )
        self.release_archiver = release_archiver or ReleaseArchiver(
            config, self.hosting,
            error_handler=self.error_handler, perf_logger=self.perf_logger,
        )
        self.logger = logging.getLogger('orgarchive.orchestrator')
        self._stop = threading.Event()

    def cancel(self) -> None:
        """Stop starting new repositories; the current one stops at its next branch."""
        self.logger.warning("Cancellation requested")
        self._stop.set()

    def is_cancelled(self) -> bool:
        return self._stop.is_set()

    def run(self, organization: str, repositories: Iterable[str]) -> ArchiveSummary:
        summary = ArchiveSummary(organization=organization, dry_run=self.config.dry_run)

        for name in repositories:
            if self.is_cancelled():
                summary.cancelled = True
                summary.outcomes.append(RepositoryOutcome(f"{organization}/{name}", success=False, skipped=True))
                continue

            if self.config.dry_run:
                outcome = self._dry_run(organization, name)
            else:
                outcome = self._process(organization, name)
            summary.outcomes.append(outcome)

        summary.cancelled = summary.cancelled or self.is_cancelled()
        if not self.config.dry_run:
            self.perf_logger.log_performance_summary()
        return summary

    def _dry_run(self, organization: str, name: str) -> RepositoryOutcome:
        subject = f"{organization}/{name}"
        layout = RepoArchiveLayout(self.config.path, organization, name)
        self.echo(str(layout.repo_dir))

        if self.config.release_mode is ReleaseMode.NONE:
            return RepositoryOutcome(subject, success=True)

        try:
            tags = self.hosting.resolve_release_tags(organization, name, self.config.release_mode)
        except ArchiveError as e:
            return RepositoryOutcome(subject, success=False, error=self.error_handler.report(e, subject))

        for tag in tags:
            self.echo(str(layout.release_dir(tag)))
        return RepositoryOutcome(subject, success=True)

    def _process(self, organization: str, name: str) -> RepositoryOutcome:
        subject = f"{organization}/{name}"
        layout = RepoArchiveLayout(self.config.path, organization, name)

        try:
            target = ArchiveTarget(
                organization=organization,
                repository=name,
                default_branch=self.hosting.get_default_branch(organization, name),
            )
            self.echo(str(layout.repo_dir))

            with RepositoryLock(layout.lock_file):
                sync_report = self.sync_controller.sync(target, layout, self.is_cancelled)
                release_report = self.release_archiver.archive(target, layout, self.is_cancelled)

        except ArchiveError as e:
            error = self.error_handler.report(e, subject)
            return RepositoryOutcome(subject, success=False, error=error)
        except Exception as e:
            self.logger.debug(f"Unexpected error archiving {subject}", exc_info=True)
            error = self.error_handler.report(e, subject)
            return RepositoryOutcome(subject, success=False, error=error)

        for tag in release_report.releases:
            self.echo(str(layout.release_dir(tag)))

        return RepositoryOutcome(
            repository=subject,
            success=True,
            state=sync_report.state,
            sync=sync_report,
            releases=release_report,
        )
