"""Tests for lifecycle script execution."""

import asyncio
import json
import os

import pytest

from common.errors import ScriptError
from installer.plan import Plan
from installer.scripts import run_lifecycle_scripts
from installer.shell import new_path, run_script
from progress import Progress
from resolve.models import DependencyTree, ResolvedDependency


def place(project, path_parts, name, version, scripts=None):
    target = project.joinpath(*path_parts)
    target.mkdir(parents=True, exist_ok=True)
    data = {"name": name, "version": version}
    if scripts:
        data["scripts"] = scripts
    (target / "package.json").write_text(json.dumps(data))
    return target


def dep(name, version="1.0.0"):
    return ResolvedDependency(name, version, f"https://registry.test/{name}.tgz")


class RecordingShell:
    """Shell stand-in that records calls and returns scripted exit codes."""

    def __init__(self, failures=None):
        self.calls = []
        self.failures = failures or {}

    async def __call__(self, script, cwd, env=None):
        self.calls.append((script, os.path.basename(str(cwd)), env))
        await asyncio.sleep(0)
        return self.failures.get(script, 0)


@pytest.fixture
def scripted_plan(tmp_path):
    place(tmp_path, ["node_modules", "a"], "a", "1.0.0",
          scripts={"postinstall": "a-post", "preinstall": "a-pre", "test": "never"})
    place(tmp_path, ["node_modules", "a", "node_modules", "b"], "b", "1.0.0", scripts={"install": "b-install"})
    place(tmp_path, ["node_modules", "c"], "c", "1.0.0", scripts={"postinstall": "c-post"})
    tree_a = DependencyTree(dep("a"), {"b": DependencyTree(dep("b"))})
    return Plan.from_trees([tree_a, DependencyTree(dep("c"))])


class TestLifecycleScripts:
    """Order, environment and failure handling."""

    def test_parent_scripts_run_before_children_in_fixed_order(self, tmp_path, scripted_plan):
        """Parents run before children, preinstall through postinstall."""
        shell = RecordingShell()

        executed = asyncio.run(run_lifecycle_scripts(scripted_plan, tmp_path, shell=shell))

        assert executed == 4
        assert [c[0] for c in shell.calls] == ["a-pre", "a-post", "b-install", "c-post"]
        assert [c[1] for c in shell.calls] == ["a", "a", "b", "c"]

    def test_path_prefers_package_bin_then_project_bin(self, tmp_path, scripted_plan):
        """PATH starts with the package's bin dir, then the project's."""
        shell = RecordingShell()

        asyncio.run(run_lifecycle_scripts(scripted_plan, tmp_path, shell=shell))

        path_entries = shell.calls[2][2]["PATH"].split(os.pathsep)
        assert path_entries[0] == str(tmp_path / "node_modules" / "a" / "node_modules" / "b" / "node_modules" / ".bin")
        assert path_entries[1] == str(tmp_path / "node_modules" / ".bin")

    def test_failure_stops_everything_after_it(self, tmp_path, scripted_plan):
        """A failing script raises ScriptError and stops later scripts."""
        shell = RecordingShell(failures={"b-install": 2})

        with pytest.raises(ScriptError) as exc:
            asyncio.run(run_lifecycle_scripts(scripted_plan, tmp_path, shell=shell))

        assert exc.value.script == "install"
        assert exc.value.package == "b@1.0.0"
        assert exc.value.returncode == 2
        assert "c-post" not in [c[0] for c in shell.calls]

    def test_disallowed_scripts_only_warn(self, tmp_path, scripted_plan):
        """Disallowed scripts produce warnings instead of runs."""
        shell = RecordingShell()
        progress = Progress()

        executed = asyncio.run(
            run_lifecycle_scripts(scripted_plan, tmp_path, shell=shell, progress=progress, disallow=True)
        )

        assert executed == 0
        assert shell.calls == []
        assert len(progress.warnings) == 3

    def test_package_without_manifest_is_skipped(self, tmp_path):
        """A package without package.json runs nothing."""
        plan = Plan.from_trees([DependencyTree(dep("ghost"))])
        shell = RecordingShell()

        assert asyncio.run(run_lifecycle_scripts(plan, tmp_path, shell=shell)) == 0


class TestShell:
    """The subprocess-backed shell runner."""

    @pytest.mark.skipif(os.name == "nt", reason="POSIX shell syntax")
    def test_exit_status_is_returned(self, tmp_path):
        """The shell's exit status is returned."""
        assert asyncio.run(run_script("exit 3", tmp_path)) == 3

    @pytest.mark.skipif(os.name == "nt", reason="POSIX shell syntax")
    def test_env_and_cwd(self, tmp_path):
        """Scripts see the given environment and working directory."""
        env = dict(os.environ, BALE_TEST_VALUE="hello")
        code = asyncio.run(run_script('echo "$BALE_TEST_VALUE" > out.txt', tmp_path, env))
        assert code == 0
        assert (tmp_path / "out.txt").read_text().strip() == "hello"

    def test_new_path_prepends_in_order(self, tmp_path):
        """new_path prepends directories in order."""
        path = new_path([tmp_path / "one", tmp_path / "two"], base="/usr/bin")
        assert path.split(os.pathsep) == [str(tmp_path / "one"), str(tmp_path / "two"), "/usr/bin"]
