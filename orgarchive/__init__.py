"""
archive-org - keep a local, re-runnable mirror archive of a GitHub organization.

Every repository is kept as a working mirror under ``<path>/<org>/<repo>/repo``
and every release under ``<path>/<org>/<repo>/releases/<tag>``.
"""

__version__ = "1.0.0"
__description__ = "Local mirror archive of a GitHub organization's repositories and releases"

__all__ = ["__version__"]
