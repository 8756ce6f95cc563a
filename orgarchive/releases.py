"""Release archiving: notes and assets under ``releases/<tag>/``."""

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from .config import ArchiveConfig, ReleaseMode
from .errors import ArchiveError, DownloadError, ErrorHandler, ErrorResponse
from .git_sync.performance_logger import PerformanceLogger, format_data_size
from .git_sync.repository_info import ArchiveTarget
from .hosting import GitHubCLI, ReleaseAsset, ReleaseRecord
from .layout import RepoArchiveLayout


@dataclass
class ReleaseArchiveReport:
    """What one release pass did for a repository."""
    releases: List[str] = field(default_factory=list)
    downloaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[ErrorResponse] = field(default_factory=list)
    cancelled: bool = False


class ReleaseArchiver:
    """
    Mirrors a repository's releases into the archive.

    Release notes are rewritten on every run. Assets are fetched only when no
    file of the same name exists yet; downloads land in a staging folder first
    so a file present under its final name is always complete.
    """

    def __init__(
        self,
        config: ArchiveConfig,
        hosting: GitHubCLI,
        error_handler: Optional[ErrorHandler] = None,
        perf_logger: Optional[PerformanceLogger] = None,
    ):
        self.config = config
        self.hosting = hosting
        self.error_handler = error_handler or ErrorHandler()
        self.perf_logger = perf_logger or PerformanceLogger()
        self.logger = logging.getLogger('orgarchive.releases')

    def archive(
        self,
        target: ArchiveTarget,
        layout: RepoArchiveLayout,
        should_stop: Callable[[], bool] = lambda: False,
    ) -> ReleaseArchiveReport:
        report = ReleaseArchiveReport()
        mode = self.config.release_mode
        if mode is ReleaseMode.NONE:
            return report

        subject = target.full_name
        try:
            tags = self.hosting.resolve_release_tags(target.organization, target.repository, mode)
        except ArchiveError as e:
            report.failures.append(self.error_handler.report(e, f"{subject} releases"))
            return report

        if not tags:
            self.logger.debug(f"{subject}: no releases")
            return report

        with self.perf_logger.time_operation("releases", subject):
            for tag in tags:
                if should_stop():
                    report.cancelled = True
                    break
                self._archive_release(target, layout, tag, report)

        return report

    def _archive_release(
        self,
        target: ArchiveTarget,
        layout: RepoArchiveLayout,
        tag: str,
        report: ReleaseArchiveReport,
    ) -> None:
        subject = f"{target.full_name}#{tag}"
        try:
            record = self.hosting.get_release(target.organization, target.repository, tag)
            self.write_notes(layout, record)
        except ArchiveError as e:
            report.failures.append(self.error_handler.report(e, subject))
            return
        except OSError as e:
            report.failures.append(self.error_handler.report(
                DownloadError(f"cannot write release notes: {e}", "NOTES_WRITE_FAILED"), subject
            ))
            return

        for asset in record.assets:
            self._download_asset(target, layout, tag, asset, report)
        report.releases.append(tag)

    def write_notes(self, layout: RepoArchiveLayout, record: ReleaseRecord) -> Path:
        notes_file = layout.release_notes_file(record.tag)
        notes_file.parent.mkdir(parents=True, exist_ok=True)
        notes_file.write_text(record.body, encoding="utf-8")
        return notes_file

    def _download_asset(
        self,
        target: ArchiveTarget,
        layout: RepoArchiveLayout,
        tag: str,
        asset: ReleaseAsset,
        report: ReleaseArchiveReport,
    ) -> None:
        release_dir = layout.release_dir(tag)
        destination = release_dir / asset.name
        if destination.exists():
            self.logger.debug(f"{target.full_name}#{tag}: {asset.name} already present")
            report.skipped.append(asset.name)
            return

        staging = Path(tempfile.mkdtemp(prefix=".partial-", dir=release_dir))
        try:
            self.hosting.download_asset(target.organization, target.repository, tag, asset.name, staging)
            downloaded = staging / asset.name
            if not downloaded.exists():
                raise DownloadError(f"{asset.name} missing after download", "ASSET_MISSING")
            downloaded.replace(destination)
        except ArchiveError as e:
            report.failures.append(self.error_handler.report(e, f"{target.full_name}#{tag}/{asset.name}"))
            return
        except OSError as e:
            report.failures.append(self.error_handler.report(
                DownloadError(str(e), "ASSET_WRITE_FAILED"), f"{target.full_name}#{tag}/{asset.name}"
            ))
            return
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        report.downloaded.append(asset.name)
        self.logger.info(f"{target.full_name}#{tag}: downloaded {asset.name} ({format_data_size(asset.size)})")
