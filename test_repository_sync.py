#!/usr/bin/env python3
"""
Integration tests for the per-repository sync controller.

These tests drive real git repositories: a bare repository plays the remote,
a seed working copy pushes branches into it, and the archive is created and
re-synchronized from it. The hosting side is replaced by a stand-in that
serves the local clone URL and records branch sync requests.
"""

import os
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from git import GitCommandError
from git.refs.head import Head

# Add the project root to the path so we can import orgarchive modules
import sys
sys.path.insert(0, str(Path(__file__).parent))

from orgarchive.config import ArchiveConfig
from orgarchive.errors import CloneError, SyncError
from orgarchive.git_sync import GitAdapter, RepositorySyncController
from orgarchive.git_sync.git_adapter import _cause
from orgarchive.git_sync.repository_info import ArchiveTarget, SyncState, TrackingLink
from orgarchive.git_sync.utils import ActionKind
from orgarchive.layout import RepoArchiveLayout


GIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "Archive Test",
    "GIT_AUTHOR_EMAIL": "archive-test@example.com",
    "GIT_COMMITTER_NAME": "Archive Test",
    "GIT_COMMITTER_EMAIL": "archive-test@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def run_git(cwd, *args):
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


def branch_heads(repo_dir):
    """Map local branch name -> (commit, upstream) for a working copy."""
    output = run_git(
        repo_dir, "for-each-ref",
        "--format=%(refname:short)|%(objectname)|%(upstream:short)", "refs/heads",
    )
    heads = {}
    for line in output.splitlines():
        name, sha, upstream = line.split("|")
        heads[name] = (sha, upstream)
    return heads


class LocalHosting:
    """Serves a local clone URL and records ``gh repo sync`` requests."""

    def __init__(self, url, fail_on=()):
        self.url = url
        self.fail_on = set(fail_on)
        self.synced = []

    def clone_url(self, org, repo):
        return self.url

    def sync_branch(self, repo_dir, branch):
        self.synced.append(branch)
        if branch in self.fail_on:
            raise SyncError(f"could not sync {branch}", "BRANCH_SYNC_FAILED")


class RepositorySyncTestCase(unittest.TestCase):
    """Sets up acme/widgets with branches main and feature-x on a local remote."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.env_patch = patch.dict(os.environ, GIT_IDENTITY)
        self.env_patch.start()

        self.remote = self.temp_dir / "remote" / "widgets.git"
        self.remote.mkdir(parents=True)
        run_git(self.remote, "init", "-q", "--bare")
        run_git(self.remote, "symbolic-ref", "HEAD", "refs/heads/main")

        self.seed = self.temp_dir / "seed"
        self.seed.mkdir()
        run_git(self.seed, "init", "-q")
        run_git(self.seed, "symbolic-ref", "HEAD", "refs/heads/main")
        (self.seed / "README.md").write_text("# widgets\n")
        self.commit_all("Initial commit")
        run_git(self.seed, "checkout", "-q", "-b", "feature-x")
        (self.seed / "feature.txt").write_text("feature x\n")
        self.commit_all("Add feature x")
        run_git(self.seed, "checkout", "-q", "main")
        run_git(self.seed, "remote", "add", "origin", str(self.remote))
        run_git(self.seed, "push", "-q", "origin", "main", "feature-x")

        self.config = ArchiveConfig(
            organization="acme", path=self.temp_dir / "archive", release_mode="none"
        )
        self.layout = RepoArchiveLayout(self.config.path, "acme", "widgets")
        self.target = ArchiveTarget("acme", "widgets", "main")
        self.hosting = LocalHosting(str(self.remote))
        self.git = GitAdapter()
        self.controller = RepositorySyncController(self.config, self.git, self.hosting)

    def tearDown(self):
        self.env_patch.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def commit_all(self, message):
        run_git(self.seed, "add", "-A")
        run_git(self.seed, "-c", "commit.gpgsign=false", "commit", "-q", "-m", message)

    def remote_sha(self, branch):
        return run_git(self.remote, "rev-parse", f"refs/heads/{branch}")

    def sync(self):
        return self.controller.sync(self.target, self.layout)

    @property
    def repo_dir(self):
        return self.layout.repo_dir


class TestFirstRun(RepositorySyncTestCase):
    """A repository that was never archived."""

    def test_first_run_mirrors_and_tracks_every_branch(self):
        report = self.sync()

        self.assertTrue(report.cloned)
        self.assertEqual(report.state, SyncState.SETTLED)
        self.assertEqual(report.all_failures, [])

        heads = branch_heads(self.repo_dir)
        self.assertEqual(heads["main"], (self.remote_sha("main"), "origin/main"))
        self.assertEqual(heads["feature-x"], (self.remote_sha("feature-x"), "origin/feature-x"))

        state = self.git.read_state(self.repo_dir)
        self.assertEqual(state.active_branch, "main")
        self.assertEqual(state.tracking("feature-x"), TrackingLink("origin", "feature-x"))
        self.assertTrue((self.repo_dir / "README.md").exists())

    def test_first_run_configures_a_non_bare_logged_working_copy(self):
        self.sync()

        self.assertEqual(run_git(self.repo_dir, "config", "--bool", "core.bare"), "false")
        self.assertEqual(run_git(self.repo_dir, "config", "core.logAllRefUpdates"), "true")
        self.assertEqual(
            run_git(self.repo_dir, "config", "remote.origin.fetch"),
            "+refs/heads/*:refs/remotes/origin/*",
        )
        self.assertIn("origin/feature-x", run_git(self.repo_dir, "branch", "-r"))

    def test_first_run_syncs_every_remote_branch(self):
        report = self.sync()

        self.assertEqual(self.hosting.synced, ["feature-x", "main"])
        self.assertTrue(all(result.success for result in report.branch_syncs))

    def test_first_run_with_custom_remote_alias(self):
        self.config.remote_alias = "upstream"
        self.sync()

        heads = branch_heads(self.repo_dir)
        self.assertEqual(heads["main"][1], "upstream/main")
        self.assertEqual(heads["feature-x"][1], "upstream/feature-x")

    def test_failed_clone_leaves_no_repository_behind(self):
        self.hosting.url = str(self.temp_dir / "does-not-exist.git")

        with self.assertRaises(CloneError) as ctx:
            self.sync()

        self.assertEqual(ctx.exception.error_code, "GIT_CLONE_FAILED")
        self.assertFalse(self.layout.git_dir.exists())

    def test_missing_default_branch_fails_the_clone(self):
        self.target = ArchiveTarget("acme", "widgets", "trunk")

        with self.assertRaises(CloneError) as ctx:
            self.sync()
        self.assertEqual(ctx.exception.error_code, "DEFAULT_BRANCH_CHECKOUT_FAILED")
        self.assertFalse(self.layout.git_dir.exists())

    def test_interrupted_clone_leaves_no_repository_behind(self):
        with patch.object(GitAdapter, "_checkout_cloned", side_effect=KeyboardInterrupt):
            with self.assertRaises(KeyboardInterrupt):
                self.sync()

        self.assertFalse(self.layout.git_dir.exists())
        report = self.sync()
        self.assertTrue(report.cloned)
        self.assertTrue((self.repo_dir / "README.md").exists())

    def test_archive_without_checked_out_files_is_repaired(self):
        self.git.clone_mirror(str(self.remote), self.repo_dir, "origin")
        self.assertFalse((self.repo_dir / "README.md").exists())

        report = self.sync()

        self.assertFalse(report.cloned)
        self.assertEqual(report.all_failures, [])
        self.assertTrue((self.repo_dir / "README.md").exists())
        self.assertEqual(run_git(self.repo_dir, "status", "--porcelain"), "")


class TestRerun(RepositorySyncTestCase):
    """Repositories that already have an archive on disk."""

    def setUp(self):
        super().setUp()
        self.first = self.sync()
        self.hosting.synced.clear()

    def test_second_run_without_remote_changes_is_a_no_op(self):
        heads_before = branch_heads(self.repo_dir)
        state_before = self.git.read_state(self.repo_dir)

        report = self.sync()

        self.assertFalse(report.cloned)
        self.assertEqual(report.reconcile.mutating_actions, [])
        self.assertEqual(report.all_failures, [])
        self.assertEqual(branch_heads(self.repo_dir), heads_before)
        self.assertEqual(self.git.read_state(self.repo_dir), state_before)

    def test_branch_deleted_upstream_is_retained_locally(self):
        feature_sha = self.remote_sha("feature-x")
        run_git(self.remote, "branch", "-D", "feature-x")

        report = self.sync()

        self.assertEqual(report.all_failures, [])
        self.assertEqual(self.hosting.synced, ["main"])
        heads = branch_heads(self.repo_dir)
        self.assertIn("feature-x", heads)
        self.assertEqual(heads["feature-x"][0], feature_sha)
        # fetch --prune drops the stale remote-tracking ref only
        self.assertNotIn("origin/feature-x", run_git(self.repo_dir, "branch", "-r"))

        again = self.sync()
        self.assertEqual(again.all_failures, [])
        self.assertEqual(again.reconcile.mutating_actions, [])
        self.assertIn("feature-x", branch_heads(self.repo_dir))

    def test_new_upstream_branch_is_created_and_tracked(self):
        run_git(self.seed, "checkout", "-q", "-b", "release/2.0")
        (self.seed / "CHANGELOG.md").write_text("2.0\n")
        self.commit_all("Release 2.0")
        run_git(self.seed, "push", "-q", "origin", "release/2.0")

        report = self.sync()

        kinds = [(a.kind, a.branch) for a in report.reconcile.mutating_actions]
        self.assertEqual(kinds, [(ActionKind.CREATE, "release/2.0")])
        heads = branch_heads(self.repo_dir)
        self.assertEqual(heads["release/2.0"], (self.remote_sha("release/2.0"), "origin/release/2.0"))
        self.assertIn("release/2.0", self.hosting.synced)

    def test_active_branch_is_restored(self):
        run_git(self.repo_dir, "checkout", "-q", "feature-x")

        report = self.sync()

        self.assertEqual(report.restored_branch, "feature-x")
        self.assertEqual(self.git.read_state(self.repo_dir).active_branch, "feature-x")

    def test_detached_head_is_restored(self):
        run_git(self.repo_dir, "checkout", "-q", "--detach", "feature-x")
        detached_at = run_git(self.repo_dir, "rev-parse", "HEAD")

        self.sync()

        state = self.git.read_state(self.repo_dir)
        self.assertIsNone(state.active_branch)
        self.assertEqual(state.head_commit, detached_at)

    def test_existing_remote_alias_is_discovered(self):
        run_git(self.repo_dir, "remote", "rename", "origin", "upstream")

        report = self.sync()

        self.assertEqual(report.all_failures, [])
        self.assertEqual(report.reconcile.mutating_actions, [])
        self.assertEqual(self.hosting.synced, ["feature-x", "main"])
        self.assertEqual(branch_heads(self.repo_dir)["main"][1], "upstream/main")

    def test_untracked_local_branch_is_overwritten_from_remote(self):
        main_sha = self.remote_sha("main")
        run_git(self.repo_dir, "branch", "--unset-upstream", "feature-x")
        run_git(self.repo_dir, "branch", "-f", "feature-x", main_sha)

        report = self.sync()

        kinds = [(a.kind, a.branch) for a in report.reconcile.mutating_actions]
        self.assertEqual(kinds, [(ActionKind.ADOPT_UNTRACKED, "feature-x")])
        self.assertEqual(
            branch_heads(self.repo_dir)["feature-x"],
            (self.remote_sha("feature-x"), "origin/feature-x"),
        )

    def test_branch_sync_failure_does_not_stop_other_branches(self):
        self.hosting.fail_on = {"feature-x"}

        report = self.sync()

        self.assertEqual(report.state, SyncState.SETTLED)
        self.assertEqual(self.hosting.synced, ["feature-x", "main"])
        self.assertEqual([f.subject for f in report.failures], ["acme/widgets@feature-x"])
        succeeded = [r.branch_used for r in report.branch_syncs if r.success]
        self.assertEqual(succeeded, ["main"])

    def test_cancellation_skips_branch_sync_and_prune(self):
        run_git(self.remote, "branch", "-D", "feature-x")

        report = self.controller.sync(self.target, self.layout, should_stop=lambda: True)

        self.assertTrue(report.cancelled)
        self.assertEqual(self.hosting.synced, [])
        # no prune happened, the stale remote-tracking ref is still there
        self.assertIn("origin/feature-x", run_git(self.repo_dir, "branch", "-r"))

    def test_rejected_fast_forward_leaves_default_branch_unlinked(self):
        run_git(self.repo_dir, "branch", "--unset-upstream", "main")
        (self.repo_dir / "local.txt").write_text("archived locally\n")
        run_git(self.repo_dir, "add", "local.txt")
        run_git(self.repo_dir, "-c", "commit.gpgsign=false", "commit", "-q", "-m", "Local change")
        local_sha = run_git(self.repo_dir, "rev-parse", "main")
        (self.seed / "CHANGELOG.md").write_text("1.1\n")
        self.commit_all("Upstream change")
        run_git(self.seed, "push", "-q", "origin", "main")

        report = self.sync()

        self.assertEqual([f.subject for f in report.reconcile.failures], ["acme/widgets@main"])
        self.assertIn("fast-forward", report.reconcile.failures[0].message)
        self.assertEqual(branch_heads(self.repo_dir)["main"], (local_sha, ""))
        self.assertNotIn("main", self.hosting.synced)

    def test_branch_that_cannot_be_linked_is_removed(self):
        run_git(self.seed, "checkout", "-q", "-b", "release/2.0")
        run_git(self.seed, "push", "-q", "origin", "release/2.0")
        link = TrackingLink("origin", "release/2.0")

        with patch.object(Head, "set_tracking_branch", side_effect=ValueError("cannot write config")):
            with self.assertRaises(SyncError) as ctx:
                self.git.create_tracking_branch(self.repo_dir, "release/2.0", link)

        self.assertEqual(ctx.exception.error_code, "BRANCH_CREATION_FAILED")
        self.assertNotIn("release/2.0", branch_heads(self.repo_dir))

        report = self.sync()
        kinds = [(a.kind, a.branch) for a in report.reconcile.mutating_actions]
        self.assertEqual(kinds, [(ActionKind.CREATE, "release/2.0")])
        self.assertEqual(branch_heads(self.repo_dir)["release/2.0"][1], "origin/release/2.0")


class TestGitDiagnostics(unittest.TestCase):
    """The message reported for a failed git command."""

    def test_fatal_line_wins_over_progress(self):
        error = GitCommandError(
            ["git", "pull", "--ff-only", "origin", "main"], 128,
            stderr="From /srv/remote/widgets\n"
                   " * branch            main       -> FETCH_HEAD\n"
                   "hint: Diverging branches can't be fast-forwarded, you need to either:\n"
                   "fatal: Not possible to fast-forward, aborting.",
        )

        self.assertEqual(_cause(error), "fatal: Not possible to fast-forward, aborting.")

    def test_last_line_after_progress_is_used(self):
        error = GitCommandError(
            ["git", "fetch", "origin"], 1,
            stderr="From /srv/remote/widgets\n"
                   " * branch            main       -> FETCH_HEAD\n"
                   "Could not read from remote repository.",
        )

        self.assertEqual(_cause(error), "Could not read from remote repository.")

    def test_without_stderr_the_exception_text_is_used(self):
        self.assertEqual(_cause(ValueError("cannot write config")), "cannot write config")


if __name__ == "__main__":
    unittest.main()
