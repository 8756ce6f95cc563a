"""Error taxonomy and reporting for archive-org."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class ErrorCategory(Enum):
    """Categories of errors, ordered from batch-fatal to branch-level."""
    CONFIGURATION = "configuration"
    LOOKUP = "lookup"
    CLONE = "clone"
    SYNC = "sync"
    DOWNLOAD = "download"
    BUSY = "busy"
    SYSTEM = "system"


class ArchiveError(Exception):
    """Base class for every error raised by archive-org."""

    category = ErrorCategory.SYSTEM
    default_code = "ARCHIVE_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None, **context):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context


class ConfigError(ArchiveError):
    """No organization resolvable, empty repository list or unusable environment."""
    category = ErrorCategory.CONFIGURATION
    default_code = "CONFIG_ERROR"


class RepositoryLookupError(ArchiveError, LookupError):
    """An organization, repository, branch or default branch could not be resolved."""
    category = ErrorCategory.LOOKUP
    default_code = "LOOKUP_FAILED"


class CloneError(ArchiveError):
    """The initial mirror clone of a repository failed."""
    category = ErrorCategory.CLONE
    default_code = "CLONE_FAILED"


class SyncError(ArchiveError):
    """A fetch, pull, checkout or sync on an existing archive failed."""
    category = ErrorCategory.SYNC
    default_code = "SYNC_FAILED"


class DownloadError(ArchiveError):
    """A release listing, notes lookup or asset download failed."""
    category = ErrorCategory.DOWNLOAD
    default_code = "DOWNLOAD_FAILED"


class RepositoryBusyError(ArchiveError):
    """Another worker holds the lock on a repository's working directory."""
    category = ErrorCategory.BUSY
    default_code = "REPOSITORY_BUSY"


@dataclass
class ErrorResponse:
    """Serialisable record of a caught error, kept for the final summary."""
    error_code: str
    message: str
    timestamp: str
    category: str
    subject: str
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error response to dictionary format."""
        result = {
            "error_code": self.error_code,
            "message": self.message,
            "timestamp": self.timestamp,
            "category": self.category,
            "subject": self.subject,
        }
        if self.context:
            result["context"] = self.context
        return result

    def one_line(self) -> str:
        """Render the diagnostic printed for the user."""
        return f"{self.category} {self.subject}: {self.message}"


class ErrorHandler:
    """Turns caught exceptions into one-line diagnostics naming what failed."""

    def __init__(self, logger_name: str = 'orgarchive.error_handler'):
        self.logger = logging.getLogger(logger_name)

    def report(self, error: Exception, subject: str, context: Dict[str, Any] = None) -> ErrorResponse:
        """Log ``error`` against ``subject`` (``org/repo``, ``org/repo@branch`` ...)."""
        context = dict(context or {})

        if isinstance(error, ArchiveError):
            error_code = error.error_code
            category = error.category.value
            context.update(error.context)
        elif isinstance(error, PermissionError):
            error_code = "PERMISSION_DENIED"
            category = ErrorCategory.SYSTEM.value
        elif isinstance(error, OSError):
            error_code = "IO_ERROR"
            category = ErrorCategory.SYSTEM.value
        else:
            error_code = "UNEXPECTED_ERROR"
            category = ErrorCategory.SYSTEM.value

        response = ErrorResponse(
            error_code=error_code,
            message=str(error).strip().splitlines()[0] if str(error).strip() else type(error).__name__,
            timestamp=datetime.now().isoformat(),
            category=category,
            subject=subject,
            context=context or None,
        )

        self.logger.error(
            response.one_line(),
            extra={
                'operation': category,
                'error_code': error_code,
                'subject': subject,
            }
        )
        return response
