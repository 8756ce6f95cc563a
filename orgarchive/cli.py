"""
Command line entry point.

Usage:
    archive-org [-f RELEASE_FILES] [-p PATH] [-r REPO...] [-t TOPIC] [-s QUERY] [-y] [-n] [HOST/]ORG
"""

import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional

import click

from .config import ArchiveConfig, ReleaseMode, load_configuration, validate_configuration
from .errors import ConfigError, RepositoryLookupError
from .hosting import GitHubCLI
from .orchestrator import ArchiveOrchestrator, ArchiveSummary
from .platform import get_git_executable, validate_tool_availability


def setup_logging(config: ArchiveConfig) -> None:
    """Configure logging for the ``orgarchive`` logger tree."""
    class StructuredFormatter(logging.Formatter):
        def format(self, record):
            if hasattr(record, 'operation'):
                record.msg = f"[{record.operation}] {record.msg}"
            return super().format(record)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    logger = logging.getLogger('orgarchive')
    logger.setLevel(getattr(logging, config.log_level))
    logger.handlers = [handler]
    logger.propagate = False

    # GitPython is chatty at DEBUG
    logging.getLogger('git').setLevel(logging.WARNING)


def resolve_repositories(config: ArchiveConfig, hosting: GitHubCLI, organization: str) -> List[str]:
    """An explicit ``-r`` list wins over ``-s``, which wins over ``-t``."""
    if config.repositories:
        return list(dict.fromkeys(config.repositories))
    try:
        return hosting.list_repositories(organization, topic=config.topic, search=config.search)
    except RepositoryLookupError as e:
        raise ConfigError(f"cannot list repositories of '{organization}': {e}", "REPOSITORY_LISTING_FAILED")


def check_tools(config: ArchiveConfig, hosting: GitHubCLI) -> None:
    executables = [hosting.executable]
    if not config.dry_run:
        executables.append(get_git_executable())
    for executable in executables:
        available, error = validate_tool_availability(executable)
        if not available:
            raise ConfigError(error, "TOOL_NOT_AVAILABLE")


def run_archive(
    config: ArchiveConfig,
    hosting: Optional[GitHubCLI] = None,
    echo: Callable[[str], None] = click.echo,
    confirm: Callable[..., bool] = click.confirm,
    orchestrator_factory: Callable[..., ArchiveOrchestrator] = ArchiveOrchestrator,
) -> Optional[ArchiveSummary]:
    """
    Resolve what to archive, confirm, and run the orchestrator.

    Raises ConfigError before any repository is touched when the run cannot
    start. Returns None when the user declines the confirmation prompt.
    """
    logger = logging.getLogger('orgarchive.cli')

    issues = validate_configuration(config)
    for issue in issues:
        if issue.startswith("WARNING:"):
            logger.warning(issue[9:])
    errors = [issue[7:] for issue in issues if issue.startswith("ERROR:")]
    if errors:
        raise ConfigError("; ".join(errors), "INVALID_CONFIGURATION")

    if hosting is None:
        hosting = GitHubCLI(host=config.host, timeout=config.gh_timeout)
        check_tools(config, hosting)

    try:
        organization = hosting.resolve_owner(config.organization)
    except RepositoryLookupError as e:
        raise ConfigError(f"cannot resolve organization '{config.owner_spec}': {e}", "ORG_NOT_FOUND")

    repositories = resolve_repositories(config, hosting, organization)
    if not repositories:
        raise ConfigError(f"no repositories to archive for '{organization}'", "EMPTY_REPOSITORY_LIST")

    if not (config.assume_yes or config.dry_run):
        for name in repositories:
            echo(f"  {organization}/{name}")
        question = (
            f"Archive {len(repositories)} repositories of {organization} into {config.path} "
            f"(releases: {config.release_mode.value})?"
        )
        if not confirm(question, default=True):
            echo("Aborted.")
            return None

    orchestrator = orchestrator_factory(config, hosting=hosting, echo=echo)
    previous_handler = _install_cancel_handler(orchestrator)
    try:
        summary = orchestrator.run(organization, repositories)
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    if not config.dry_run:
        for line in summary.lines():
            echo(line)
    return summary


def _install_cancel_handler(orchestrator: ArchiveOrchestrator):
    """First Ctrl-C cancels gracefully, the second one interrupts."""
    if threading.current_thread() is not threading.main_thread():
        return None

    previous = signal.getsignal(signal.SIGINT)

    def handle_sigint(signum, frame):
        orchestrator.cancel()
        signal.signal(signal.SIGINT, previous)

    signal.signal(signal.SIGINT, handle_sigint)
    return previous


def _split_repositories(values) -> tuple:
    names = []
    for value in values:
        names.extend(value.split())
    return tuple(names)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-f", "--release_files", "release_files",
              type=click.Choice([mode.value for mode in ReleaseMode], case_sensitive=False),
              default=None, help="Which release files to download (default: all)")
@click.option("-p", "--path", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Directory the archive lives in (default: current directory)")
@click.option("-r", "--repo", "repos", multiple=True,
              help='Repositories to archive, e.g. "name1 name2" (overrides -t/-s)')
@click.option("-t", "--topic", default=None, help="Only repositories with this topic")
@click.option("-s", "--search", default=None, help="Only repositories matching this search query (overrides -t)")
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="Do not ask for confirmation")
@click.option("-n", "--dry-run", "dry_run", is_flag=True, help="Only print the paths that would be archived")
@click.argument("owner", metavar="[HOST/]ORG", required=False)
def main(release_files, path, repos, topic, search, assume_yes, dry_run, owner):
    """Archive every repository and release of a GitHub organization or user."""
    try:
        config = load_configuration(
            organization=owner,
            path=path,
            release_mode=release_files,
            repositories=_split_repositories(repos) or None,
            topic=topic,
            search=search,
            dry_run=dry_run,
            assume_yes=assume_yes,
        )
    except ValueError as e:
        click.echo(f"error: {e}", err=True)
        sys.exit(1)

    setup_logging(config)

    try:
        run_archive(config)
    except ConfigError as e:
        click.echo(f"error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
