"""Configuration management for archive-org."""

import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, List, Tuple

from dotenv import load_dotenv

from .platform import normalize_path


class ReleaseMode(Enum):
    """Which releases to mirror for each repository."""
    ALL = "all"
    LATEST = "latest"
    NONE = "none"


@dataclass
class ArchiveConfig:
    """Configuration for one archive run, threaded explicitly through every component."""

    # Target
    organization: Optional[str] = None
    host: Optional[str] = None
    repositories: Tuple[str, ...] = ()
    topic: Optional[str] = None
    search: Optional[str] = None

    # Storage
    path: Path = field(default_factory=Path.cwd)

    # Behaviour
    release_mode: ReleaseMode = ReleaseMode.ALL
    dry_run: bool = False
    assume_yes: bool = False
    remote_alias: str = "origin"

    # Underlying commands block without a timeout unless one is configured
    git_timeout: Optional[float] = None
    gh_timeout: Optional[float] = None

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.path, str):
            self.path = Path(self.path)
        self.path = normalize_path(self.path)

        if isinstance(self.release_mode, str):
            try:
                self.release_mode = ReleaseMode(self.release_mode.lower())
            except ValueError:
                valid = [mode.value for mode in ReleaseMode]
                raise ValueError(f"Invalid release mode: {self.release_mode}. Must be one of {valid}")

        self.repositories = tuple(self.repositories or ())

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        self.log_level = self.log_level.upper()
        if self.log_level not in valid_log_levels:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")

        if not self.remote_alias or "/" in self.remote_alias:
            raise ValueError(f"Invalid remote alias: {self.remote_alias!r}")

        for name in ("git_timeout", "gh_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive")

    @property
    def owner_spec(self) -> Optional[str]:
        """The owner as typed on the command line, including any host prefix."""
        if not self.organization:
            return None
        if self.host:
            return f"{self.host}/{self.organization}"
        return self.organization


def split_owner(value: str) -> Tuple[Optional[str], str]:
    """Split ``[HOST/]ORG`` into its host and organization parts."""
    value = value.strip().strip("/")
    if "/" in value:
        host, _, org = value.rpartition("/")
        return host or None, org
    return None, value


def load_configuration(**overrides) -> ArchiveConfig:
    """Load configuration from .env, the environment and explicit overrides.

    Overrides whose value is ``None`` are ignored so that unset command-line
    options fall back to the environment.
    """
    load_dotenv()

    values = {
        "organization": os.getenv("ARCHIVE_ORG"),
        "host": os.getenv("ARCHIVE_ORG_HOST"),
        "path": os.getenv("ARCHIVE_ORG_PATH", str(Path.cwd())),
        "release_mode": os.getenv("ARCHIVE_ORG_RELEASE_FILES", ReleaseMode.ALL.value),
        "log_level": os.getenv("ARCHIVE_ORG_LOG_LEVEL", "INFO"),
        "remote_alias": os.getenv("ARCHIVE_ORG_REMOTE_ALIAS", "origin"),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})

    # An organization given as HOST/ORG carries its own host
    if values.get("organization"):
        host, org = split_owner(values["organization"])
        values["organization"] = org
        if host:
            values["host"] = host

    try:
        return ArchiveConfig(**values)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Configuration error: {e}")


def validate_configuration(config: ArchiveConfig) -> List[str]:
    """Validate configuration and return any errors or warnings."""
    errors = []

    if not config.organization:
        errors.append("ERROR: No organization given (positional argument or ARCHIVE_ORG)")

    if config.path.exists() and not config.path.is_dir():
        errors.append(f"ERROR: Archive path is not a directory: {config.path}")
    elif config.path.exists() and not config.dry_run and not os.access(config.path, os.W_OK):
        errors.append(f"ERROR: No write permission for archive path: {config.path}")

    if config.repositories and (config.topic or config.search):
        errors.append("WARNING: Explicit repository list overrides --topic/--search")
    elif config.topic and config.search:
        errors.append("WARNING: --search overrides --topic")

    logging.getLogger('orgarchive.config').debug(
        f"Configuration validated with {len(errors)} issue(s)"
    )
    return errors
