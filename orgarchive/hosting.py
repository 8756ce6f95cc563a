"""Remote-hosting primitives backed by the GitHub CLI (``gh``)."""

import glob
import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Sequence, Type

from .config import ReleaseMode
from .errors import ArchiveError, DownloadError, RepositoryLookupError, SyncError
from .platform import get_gh_executable


@dataclass(frozen=True)
class ReleaseAsset:
    """A downloadable file attached to a release."""
    name: str
    size: int = 0


@dataclass
class ReleaseRecord:
    """A release as published on the remote."""
    tag: str
    body: str = ""
    assets: List[ReleaseAsset] = field(default_factory=list)


class GitHubCLI:
    """
    Thin wrapper around ``gh`` for everything that needs the hosting platform.

    The optional host is passed to each child process through ``GH_HOST`` and
    is never written into this process's environment.
    """

    def __init__(self, host: Optional[str] = None, timeout: Optional[float] = None,
                 executable: Optional[str] = None):
        self.host = host
        self.timeout = timeout
        self.executable = executable or get_gh_executable()
        self.logger = logging.getLogger('orgarchive.hosting')

    def repo_spec(self, org: str, repo: str) -> str:
        if self.host:
            return f"{self.host}/{org}/{repo}"
        return f"{org}/{repo}"

    def clone_url(self, org: str, repo: str) -> str:
        return f"https://{self.host or 'github.com'}/{org}/{repo}.git"

    # Process plumbing -----------------------------------------------------

    def _env(self) -> dict:
        env = os.environ.copy()
        env["GH_PROMPT_DISABLED"] = "1"
        if self.host:
            env["GH_HOST"] = self.host
        return env

    def _run(
        self,
        args: Sequence[str],
        error_cls: Type[ArchiveError],
        error_code: str,
        cwd: Optional[Path] = None,
    ) -> str:
        command = [self.executable, *args]
        self.logger.debug(f"Running: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                cwd=cwd,
                env=self._env(),
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise error_cls(f"gh {args[0]} timed out after {self.timeout}s", "GH_TIMEOUT") from e
        except FileNotFoundError as e:
            raise error_cls(f"gh executable not found: {self.executable}", "GH_NOT_FOUND") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip().splitlines()
            message = detail[0] if detail else f"gh {' '.join(args[:2])} exited with {result.returncode}"
            raise error_cls(message, error_code, command=" ".join(args[:2]))
        return result.stdout

    def _json(self, args: Sequence[str], error_cls: Type[ArchiveError], error_code: str) -> Any:
        output = self._run(args, error_cls, error_code)
        try:
            return json.loads(output) if output.strip() else None
        except ValueError as e:
            raise error_cls(f"unparseable output from gh {args[0]}: {e}", "GH_BAD_OUTPUT") from e

    # Discovery ------------------------------------------------------------

    def resolve_owner(self, org: str) -> str:
        """Return the canonical, case-correct login of a user or organization."""
        login = self._run(
            ["api", f"users/{org}", "--jq", ".login"],
            RepositoryLookupError, "OWNER_NOT_FOUND",
        ).strip()
        if not login:
            raise RepositoryLookupError(f"owner '{org}' not found", "OWNER_NOT_FOUND")
        return login

    def list_repositories(self, org: str, topic: Optional[str] = None,
                          search: Optional[str] = None, limit: int = 10000) -> List[str]:
        """List repository names of ``org``. ``search`` overrides ``topic``."""
        if search:
            args = ["search", "repos", search, "--owner", org, "--json", "name",
                    "--limit", str(min(limit, 1000))]
        else:
            args = ["repo", "list", org, "--json", "name", "--limit", str(limit)]
            if topic:
                args += ["--topic", topic]

        data = self._json(args, RepositoryLookupError, "REPOSITORY_LISTING_FAILED") or []
        names = []
        for entry in data:
            name = entry.get("name")
            if name and name not in names:
                names.append(name)
        return names

    def get_default_branch(self, org: str, repo: str) -> str:
        data = self._json(
            ["repo", "view", self.repo_spec(org, repo), "--json", "defaultBranchRef"],
            RepositoryLookupError, "REPOSITORY_NOT_FOUND",
        ) or {}
        name = (data.get("defaultBranchRef") or {}).get("name")
        if not name:
            raise RepositoryLookupError(f"{org}/{repo} has no default branch", "NO_DEFAULT_BRANCH")
        return name

    # Branch sync ----------------------------------------------------------

    def sync_branch(self, repo_dir: Path, branch: str) -> None:
        """Fast-forward one local branch from its remote with ``gh repo sync``."""
        self._run(["repo", "sync", "--branch", branch], SyncError, "BRANCH_SYNC_FAILED", cwd=repo_dir)

    # Releases -------------------------------------------------------------

    def list_release_tags(self, org: str, repo: str, limit: int = 10000) -> List[str]:
        data = self._json(
            ["release", "list", "-R", self.repo_spec(org, repo), "--json", "tagName",
             "--limit", str(limit)],
            DownloadError, "RELEASE_LISTING_FAILED",
        ) or []
        return [entry["tagName"] for entry in data if entry.get("tagName")]

    def latest_release_tag(self, org: str, repo: str) -> str:
        data = self._json(
            ["release", "view", "-R", self.repo_spec(org, repo), "--json", "tagName"],
            DownloadError, "LATEST_RELEASE_FAILED",
        ) or {}
        tag = data.get("tagName")
        if not tag:
            raise DownloadError(f"{org}/{repo} reported no latest release", "LATEST_RELEASE_FAILED")
        return tag

    def resolve_release_tags(self, org: str, repo: str, mode: ReleaseMode) -> List[str]:
        """
        Tags to archive for ``mode``.

        The dedicated latest-release query is only asked when more than one
        release exists; with zero or one the listing is already unambiguous.
        """
        if mode is ReleaseMode.NONE:
            return []

        tags = self.list_release_tags(org, repo)
        if mode is ReleaseMode.LATEST and len(tags) > 1:
            return [self.latest_release_tag(org, repo)]
        return tags

    def get_release(self, org: str, repo: str, tag: str) -> ReleaseRecord:
        data = self._json(
            ["release", "view", tag, "-R", self.repo_spec(org, repo), "--json", "tagName,body,assets"],
            DownloadError, "RELEASE_VIEW_FAILED",
        ) or {}
        assets = [
            ReleaseAsset(name=asset["name"], size=int(asset.get("size") or 0))
            for asset in data.get("assets") or []
            if asset.get("name")
        ]
        return ReleaseRecord(tag=data.get("tagName") or tag, body=data.get("body") or "", assets=assets)

    def download_asset(self, org: str, repo: str, tag: str, asset_name: str, dest_dir: Path) -> None:
        """Download one asset of ``tag`` into ``dest_dir``, never overwriting."""
        self._run(
            ["release", "download", tag, "-R", self.repo_spec(org, repo),
             "-D", str(dest_dir), "-p", glob.escape(asset_name), "--skip-existing"],
            DownloadError, "ASSET_DOWNLOAD_FAILED",
        )
