from __future__ import annotations

import json
import unittest
from dataclasses import replace

from git_spaces.exceptions import MirrorFetchError, MirrorLockTimeout
from git_spaces.locks import exclusive_lock
from git_spaces.mirror import STATE_FILE, MirrorManager

from gitfixtures import GitRepoTestCase, git, requires_git


@requires_git
class MirrorManagerTests(GitRepoTestCase):
    def test_creates_mirror_on_first_use(self) -> None:
        manager = MirrorManager(self.resolve_config())
        self.assertFalse(manager.exists())

        handle = manager.ensure_fresh()

        self.assertTrue(manager.exists())
        self.assertIsNone(handle.fetch_error)
        self.assertIsNotNone(handle.last_fetch)
        self.assertEqual(handle.origin, str(self.upstream))
        refs = git("for-each-ref", "--format=%(refname)", cwd=manager.path).splitlines()
        self.assertIn("refs/heads/main", refs)
        self.assertIn("refs/heads/feature", refs)
        state = json.loads((manager.path / STATE_FILE).read_text())
        self.assertEqual(state["origin"], str(self.upstream))

    def test_repeated_refresh_is_idempotent(self) -> None:
        manager = MirrorManager(self.resolve_config())
        manager.ensure_fresh()
        before = git("for-each-ref", cwd=manager.path)

        manager.ensure_fresh()

        self.assertEqual(git("for-each-ref", cwd=manager.path), before)

    def test_local_branches_overlay_origin(self) -> None:
        git("checkout", "-b", "local-only", cwd=self.repo)
        (self.repo / "local.txt").write_text("local\n")
        git("add", ".", cwd=self.repo)
        git("commit", "-m", "local", cwd=self.repo)
        manager = MirrorManager(self.resolve_config())

        manager.ensure_fresh()

        self.assertEqual(
            git("rev-parse", "refs/heads/local-only", cwd=manager.path),
            git("rev-parse", "HEAD", cwd=self.repo),
        )

    def test_no_fetch_skips_refresh_of_existing_mirror(self) -> None:
        manager = MirrorManager(self.resolve_config())
        first = manager.ensure_fresh()

        second = manager.ensure_fresh(no_fetch=True)

        self.assertEqual(second.last_fetch, first.last_fetch)

    def test_lock_timeout_when_another_process_holds_the_lock(self) -> None:
        config = self.resolve_config({"spaces.mirrors.lockTimeout": "0.2"})
        manager = MirrorManager(config)

        with exclusive_lock(manager.lock_path, timeout=0):
            self.assertTrue(manager.describe().fetching)
            with self.assertRaises(MirrorLockTimeout):
                manager.ensure_fresh()

        self.assertFalse(manager.exists())

    def test_fetch_failure_after_creation_is_not_fatal(self) -> None:
        config = self.resolve_config()
        MirrorManager(config).ensure_fresh()
        manager = MirrorManager(replace(config, origin=str(self.tmp / "missing.git")))

        with self.assertLogs("git_spaces.mirror", level="WARNING"):
            handle = manager.ensure_fresh()

        self.assertIsNotNone(handle.fetch_error)
        self.assertTrue(manager.exists())

    def test_creation_failure_is_fatal_and_cleans_up(self) -> None:
        config = replace(self.resolve_config(), repo_root=self.tmp / "not-a-repo")
        manager = MirrorManager(config)

        with self.assertRaises(MirrorFetchError) as ctx:
            manager.ensure_fresh()

        self.assertTrue(ctx.exception.fatal)
        self.assertFalse(manager.path.exists())


if __name__ == "__main__":
    unittest.main()
