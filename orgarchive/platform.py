"""Executable discovery and path utilities for archive-org."""

import os
import platform
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Tuple, Union


def is_windows() -> bool:
    """Check if running on Windows."""
    return platform.system().lower() == "windows"


def normalize_path(path: Union[str, Path]) -> Path:
    """
    Normalize a path for the current platform.

    Expands ``~`` and environment variables and makes the result absolute
    without resolving symlinks inside the archive tree.

    Args:
        path: Path to normalize

    Returns:
        Normalized Path object
    """
    expanded = os.path.expandvars(os.path.expanduser(str(path)))
    return Path(os.path.abspath(expanded))


def get_git_executable() -> str:
    """Get the Git executable name for the current platform."""
    return "git.exe" if is_windows() else "git"


def get_gh_executable() -> str:
    """Get the GitHub CLI executable, honouring ``GH_PATH`` when set."""
    override = os.getenv("GH_PATH")
    if override:
        return override
    return "gh.exe" if is_windows() else "gh"


def validate_tool_availability(executable: str) -> Tuple[bool, Optional[str]]:
    """
    Validate that a command-line tool is available.

    Returns:
        Tuple of (is_available, error_message)
    """
    if shutil.which(executable) is None:
        return False, f"Executable '{executable}' not found on PATH"

    try:
        result = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            text=True,
            timeout=10
        )
    except subprocess.TimeoutExpired:
        return False, f"'{executable} --version' timed out"
    except OSError as e:
        return False, f"Error running '{executable}': {e}"

    if result.returncode != 0:
        return False, f"'{executable} --version' failed: {result.stderr.strip()}"
    return True, None
