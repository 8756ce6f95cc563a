"""On-disk layout of the archive: <path>/<org>/<repo>/{repo,releases/<tag>}."""

from dataclasses import dataclass
from pathlib import Path

REPO_DIRNAME = "repo"
RELEASES_DIRNAME = "releases"
LOCK_FILENAME = ".archive-org.lock"


def safe_tag(tag: str) -> str:
    """Tag names may contain slashes; keep each release in a single folder."""
    return tag.replace("/", "-").replace("\\", "-")


@dataclass(frozen=True)
class RepoArchiveLayout:
    """Path arithmetic for one archived repository. Never touches the disk."""
    root: Path
    organization: str
    repository: str

    @property
    def base_dir(self) -> Path:
        return self.root / self.organization / self.repository

    @property
    def repo_dir(self) -> Path:
        return self.base_dir / REPO_DIRNAME

    @property
    def git_dir(self) -> Path:
        return self.repo_dir / ".git"

    @property
    def releases_dir(self) -> Path:
        return self.base_dir / RELEASES_DIRNAME

    @property
    def lock_file(self) -> Path:
        return self.base_dir / LOCK_FILENAME

    def release_dir(self, tag: str) -> Path:
        return self.releases_dir / safe_tag(tag)

    def release_notes_file(self, tag: str) -> Path:
        return self.release_dir(tag) / f"RELEASE_NOTES-{safe_tag(tag)}.md"
