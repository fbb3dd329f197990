from __future__ import annotations

import unittest

from git_spaces.hooks import SHELL_NOT_RUNNABLE, HookRunner
from git_spaces.models import HookDisposition, Space

from gitfixtures import GitRepoTestCase, requires_git


@requires_git
class HookRunnerTests(GitRepoTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.space_dir = self.tmp / "work" / "project-clones" / "demo"
        self.space_dir.mkdir(parents=True)
        self.space = Space(name="demo", path=self.space_dir, branch="topic", base_ref="main")
        self.out = self.tmp / "hook.out"

    def runner(self, hook: str, *commands: str) -> HookRunner:
        return HookRunner(self.resolve_config({f"spaces.hook.{hook}": list(commands)}))

    def test_no_commands_is_skipped(self) -> None:
        result = HookRunner(self.resolve_config()).run("postCreate", self.space)

        self.assertIs(result.disposition, HookDisposition.SKIPPED)
        self.assertTrue(result.ok)
        self.assertEqual(result.commands_run, 0)

    def test_environment_is_exposed(self) -> None:
        command = f'printf "%s|%s|%s|%s|%s|%s|%s" "$REPO_ROOT" "$SPACE" "$SPACE_PATH" "$CLONE_PATH" "$BRANCH" "$BASE_REF" "$(pwd -P)" > "{self.out}"'

        result = self.runner("postCreate", command).run("postCreate", self.space)

        self.assertIs(result.disposition, HookDisposition.SUCCESS)
        repo_root, name, space_path, clone_path, branch, base_ref, cwd = self.out.read_text().split("|")
        self.assertEqual(repo_root, str(self.repo))
        self.assertEqual(name, "demo")
        self.assertEqual(space_path, str(self.space_dir))
        self.assertEqual(clone_path, str(self.space_dir))
        self.assertEqual(branch, "topic")
        self.assertEqual(base_ref, "main")
        self.assertEqual(cwd, str(self.space_dir))

    def test_all_commands_run_after_a_failure(self) -> None:
        runner = self.runner("postCreate", "exit 4", f'echo second >> "{self.out}"')

        with self.assertLogs("git_spaces.hooks", level="ERROR"):
            result = runner.run("postCreate", self.space)

        self.assertIs(result.disposition, HookDisposition.FAILED)
        self.assertFalse(result.ok)
        self.assertEqual(result.commands_run, 2)
        self.assertEqual([failure.returncode for failure in result.failures], [4])
        self.assertEqual(self.out.read_text(), "second\n")

    def test_pre_remove_failure_aborts(self) -> None:
        with self.assertLogs("git_spaces.hooks", level="ERROR"):
            result = self.runner("preRemove", "false").run("preRemove", self.space)

        self.assertIs(result.disposition, HookDisposition.ABORT)

    def test_post_remove_failure_is_not_an_abort(self) -> None:
        with self.assertLogs("git_spaces.hooks", level="ERROR"):
            result = self.runner("postRemove", "false").run("postRemove", self.space, cwd=self.repo)

        self.assertIs(result.disposition, HookDisposition.FAILED)

    def test_missing_shell_is_a_failed_hook(self) -> None:
        config = self.resolve_config({"spaces.hook.postCreate": [f'echo ran > "{self.out}"']})
        runner = HookRunner(config, shell=str(self.tmp / "no-such-shell"))

        with self.assertLogs("git_spaces.hooks", level="ERROR"):
            result = runner.run("postCreate", self.space)

        self.assertIs(result.disposition, HookDisposition.FAILED)
        self.assertEqual([failure.returncode for failure in result.failures], [SHELL_NOT_RUNNABLE])
        self.assertFalse(self.out.exists())

    def test_missing_shell_aborts_pre_remove(self) -> None:
        config = self.resolve_config({"spaces.hook.preRemove": ["true"]})

        with self.assertLogs("git_spaces.hooks", level="ERROR"):
            result = HookRunner(config, shell=str(self.tmp / "no-such-shell")).run("preRemove", self.space)

        self.assertIs(result.disposition, HookDisposition.ABORT)

    def test_falls_back_to_repo_root_when_space_is_gone(self) -> None:
        self.space_dir.rmdir()

        self.runner("postRemove", f'pwd -P > "{self.out}"').run("postRemove", self.space)

        self.assertEqual(self.out.read_text().strip(), str(self.repo))


if __name__ == "__main__":
    unittest.main()
