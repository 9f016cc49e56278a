"""Tests for the command layer: install, update, add/remove/upgrade, why, clean and run."""

import argparse
import asyncio
import json
import os
import shutil
import tempfile

import pytest

import cli_exec
import cli_install
import cli_manifest
import cli_run
import cli_why
from args import parse_args
from cli_config import BaleConfig, ConfigError, load_config
from common.errors import LockfileMismatchError, ManifestError, ResolutionError, ScriptError
from constants import Constants

from conftest import write_manifest


def ns(**kwargs):
    defaults = {"IMMUTABLE": False, "DEV": False, "PIN": False}
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


@pytest.fixture
def app(project, registry):
    """Project depending on `a` (which needs left-pad 2) and left-pad 1."""
    registry.publish("left-pad", "1.3.0")
    registry.publish("left-pad", "2.0.0")
    registry.publish("a", "1.0.0", dependencies={"left-pad": "^2.0.0"})
    write_manifest(project / "package.json", dependencies={"a": "^1.0.0", "left-pad": "^1.0.0"})
    return project


class TestInstall:
    """The install pipeline end to end against an in-memory registry."""

    def test_install_writes_lockfile_tree_and_snapshot(self, app, registry):
        """Install writes bale.lock, the nested tree and the plan snapshot."""
        plan = asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        assert plan.size() == 3
        assert (app / Constants.LOCKFILE).exists()
        assert (app / Constants.PLAN_FILE).exists()
        nested = app / "node_modules" / "a" / "node_modules" / "left-pad" / "package.json"
        assert json.loads(nested.read_text())["version"] == "2.0.0"

    def test_second_install_is_a_no_op(self, app, registry):
        """A repeated install downloads and places nothing."""
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))
        fetches = dict(registry.fetches)
        tarballs = dict(registry.tarball_fetches)
        lock_mtime = os.stat(app / Constants.LOCKFILE).st_mtime_ns

        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        assert dict(registry.fetches) == fetches
        assert dict(registry.tarball_fetches) == tarballs
        assert os.stat(app / Constants.LOCKFILE).st_mtime_ns == lock_mtime

    def test_reinstall_after_removing_node_modules_uses_store(self, app, registry):
        """Reinstalling after deleting node_modules reuses the store."""
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))
        tarballs = sum(registry.tarball_fetches.values())
        shutil.rmtree(app / "node_modules")

        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        assert sum(registry.tarball_fetches.values()) == tarballs
        assert (app / "node_modules" / "left-pad" / "package.json").exists()

    def test_immutable_without_lockfile_fails_before_touching_disk(self, app, registry):
        """Immutable install without a lockfile fails and creates nothing."""
        with pytest.raises(LockfileMismatchError):
            asyncio.run(cli_install.install(ns(IMMUTABLE=True), BaleConfig(), registry))

        assert registry.fetches == {}
        assert not (app / "node_modules").exists()

    def test_immutable_with_lockfile_installs_without_metadata(self, app, registry):
        """Immutable install from a lockfile makes no metadata requests."""
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))
        shutil.rmtree(app / "node_modules")
        registry.fetches.clear()

        asyncio.run(cli_install.install(ns(IMMUTABLE=True), BaleConfig(), registry))

        assert registry.fetches == {}
        assert (app / "node_modules" / "a").exists()

    def test_unresolvable_dependency_touches_nothing(self, project, registry):
        """A resolution error leaves the project directory untouched."""
        write_manifest(project / "package.json", dependencies={"ghost": "^1.0.0"})

        with pytest.raises(ResolutionError):
            asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        assert not (project / Constants.LOCKFILE).exists()
        assert not (project / "node_modules").exists()

    def test_lockfile_drops_removed_dependencies(self, app, registry):
        """Removing a dependency prunes it from the lockfile."""
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))
        write_manifest(app / "package.json", dependencies={"left-pad": "^1.0.0"})

        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        data = json.loads((app / Constants.LOCKFILE).read_text())
        assert list(data["packages"]) == ["left-pad@1.3.0"]

    @pytest.mark.skipif(os.name == "nt", reason="POSIX shell syntax")
    def test_failing_script_skips_plan_snapshot(self, project, registry):
        """A failing lifecycle script leaves no plan snapshot behind."""
        registry.publish("needs-build", "1.0.0", scripts={"postinstall": "exit 4"})
        write_manifest(project / "package.json", dependencies={"needs-build": "^1.0.0"})

        with pytest.raises(ScriptError) as exc:
            asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        assert exc.value.returncode == 4
        assert (project / "node_modules" / "needs-build").exists()
        assert not (project / Constants.PLAN_FILE).exists()

    def test_disallowed_scripts_are_not_run(self, project, registry):
        """Install scripts are skipped when config disallows them."""
        registry.publish("needs-build", "1.0.0", scripts={"postinstall": "exit 4"})
        write_manifest(project / "package.json", dependencies={"needs-build": "^1.0.0"})

        asyncio.run(cli_install.install(ns(), BaleConfig(disallow_install_scripts=True), registry))

        assert (project / Constants.PLAN_FILE).exists()


class TestUpdateAndClean:
    """Lockfile refresh and cache removal."""

    def test_update_picks_up_new_versions(self, app, registry):
        """Update re-resolves to newly published versions."""
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))
        registry.publish("left-pad", "1.4.0")

        graph = asyncio.run(cli_install.update(ns(), BaleConfig(), registry))

        assert "left-pad@1.4.0" in graph.packages()
        assert "left-pad@1.4.0" in json.loads((app / Constants.LOCKFILE).read_text())["packages"]

    def test_update_refuses_immutable(self, app, registry):
        """Update refuses to run with --immutable."""
        with pytest.raises(LockfileMismatchError) as exc:
            asyncio.run(cli_install.update(ns(IMMUTABLE=True), BaleConfig(), registry))
        assert exc.value.hint

    def test_clean(self, app, registry):
        """Clean removes node_modules and the private directory."""
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        cli_install.clean()

        assert not (app / "node_modules").exists()
        assert not (app / Constants.PRIVATE_DIR).exists()
        cli_install.clean()


class TestManifestCommands:
    """add, remove and upgrade edit package.json."""

    def test_add_writes_caret_latest(self, project, registry):
        """Add without a range writes a caret range on latest."""
        registry.publish("left-pad", "1.3.0")
        write_manifest(project / "package.json", name="app")

        asyncio.run(cli_manifest.add(ns(PACKAGES=["left-pad"]), BaleConfig(), registry))

        data = json.loads((project / "package.json").read_text())
        assert data == {"name": "app", "dependencies": {"left-pad": "^1.3.0"}}

    def test_add_pinned_dev_and_explicit(self, project, registry):
        """Pinned, dev and explicit-range adds land in the right section."""
        registry.publish("left-pad", "1.3.0")
        registry.publish("@types/node", "18.0.0")

        asyncio.run(cli_manifest.add(
            ns(PACKAGES=["left-pad", "@types/node@^18.0.0"], DEV=True, PIN=True), BaleConfig(), registry
        ))

        data = json.loads((project / "package.json").read_text())
        assert data["devDependencies"] == {"left-pad": "1.3.0", "@types/node": "^18.0.0"}
        assert registry.fetches["@types/node"] == 0

    def test_add_unknown_package_leaves_manifest_alone(self, project, registry):
        """A failed add does not rewrite package.json."""
        write_manifest(project / "package.json", name="app")
        before = (project / "package.json").read_text()

        with pytest.raises(ResolutionError):
            asyncio.run(cli_manifest.add(ns(PACKAGES=["ghost"]), BaleConfig(), registry))

        assert (project / "package.json").read_text() == before

    def test_remove(self, project):
        """Remove deletes the named dependency."""
        write_manifest(project / "package.json", dependencies={"a": "1.0.0", "b": "2.0.0"})

        cli_manifest.remove(ns(PACKAGES=["a"]))

        assert json.loads((project / "package.json").read_text())["dependencies"] == {"b": "2.0.0"}

    def test_remove_missing_name(self, project):
        """Removing an undeclared package is a ManifestError."""
        write_manifest(project / "package.json", dependencies={"a": "1.0.0"})
        with pytest.raises(ManifestError):
            cli_manifest.remove(ns(PACKAGES=["zzz"]))

    def test_upgrade(self, project, registry):
        """Upgrade moves every dependency to its latest version."""
        registry.publish("a", "2.5.0")
        registry.publish("b", "3.0.0")
        write_manifest(project / "package.json", dependencies={"a": "^1.0.0"}, dev_dependencies={"b": "~2.0.0"})

        asyncio.run(cli_manifest.upgrade(ns(), BaleConfig(), registry))

        data = json.loads((project / "package.json").read_text())
        assert data["dependencies"] == {"a": "^2.5.0"}
        assert data["devDependencies"] == {"b": "^3.0.0"}


class TestWhy:
    """Reverse dependency explanation."""

    def test_why_walks_up_to_package_json(self, app, registry, capsys):
        """why prints each requester up to package.json."""
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        lines = cli_why.why(ns(NAME="left-pad", VERSION="2.0.0"))

        assert "left-pad@2.0.0 is used by:" in lines
        assert " - a@1.0.0" in lines
        assert "a@1.0.0 is used by package.json" in lines
        assert "a@1.0.0 is used by package.json" in capsys.readouterr().out

    def test_why_all_versions(self, app, registry):
        """why without a version covers every installed version."""
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        lines = cli_why.why(ns(NAME="left-pad", VERSION=None))

        assert "left-pad@1.3.0 is used by package.json" in lines
        assert lines[-1] == "Analyzed 3 packages"

    def test_why_unused(self, app, registry):
        """why for an unused package is a ResolutionError."""
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))
        with pytest.raises(ResolutionError):
            cli_why.why(ns(NAME="nothing", VERSION=None))

    def test_why_survives_cycles(self, project, registry):
        """why terminates on cyclic dependencies."""
        registry.publish("a", "1.0.0", dependencies={"b": "^1.0.0"})
        registry.publish("b", "1.0.0", dependencies={"a": "^1.0.0"})
        write_manifest(project / "package.json", dependencies={"a": "^1.0.0"})
        asyncio.run(cli_install.install(ns(), BaleConfig(), registry))

        lines = cli_why.why(ns(NAME="b", VERSION=None))

        assert lines[-1] == "Analyzed 2 packages"


@pytest.mark.skipif(os.name == "nt", reason="POSIX shell syntax")
class TestRun:
    """Running manifest scripts."""

    def test_run_returns_script_exit_code(self, project, registry):
        """run returns the script's exit status."""
        write_manifest(project / "package.json", scripts={"fail": "exit 5", "ok": "true"})

        assert asyncio.run(cli_run.run_command(ns(SCRIPT="fail", SCRIPT_ARGS=[]), BaleConfig(), registry)) == 5
        assert asyncio.run(cli_run.run_command(ns(SCRIPT="ok", SCRIPT_ARGS=[]), BaleConfig(), registry)) == 0

    def test_run_sees_installed_bins(self, project, registry):
        """Scripts find installed bins on PATH."""
        registry.publish("tool", "1.0.0", bins={"tool": "tool.sh"},
                         files={"tool.sh": "#!/bin/sh\necho ran > tool-output.txt\n"})
        write_manifest(project / "package.json", dependencies={"tool": "^1.0.0"}, scripts={"go": "tool"})

        code = asyncio.run(cli_run.run_command(ns(SCRIPT="go", SCRIPT_ARGS=[]), BaleConfig(), registry))

        assert code == 0
        assert (project / "tool-output.txt").read_text().strip() == "ran"

    def test_unknown_script(self, project, registry):
        """Running an undefined script is a ManifestError."""
        write_manifest(project / "package.json", scripts={})
        with pytest.raises(ManifestError):
            asyncio.run(cli_run.run_command(ns(SCRIPT="nope", SCRIPT_ARGS=[]), BaleConfig(), registry))


@pytest.mark.skipif(os.name == "nt", reason="POSIX shell syntax")
class TestExec:
    """exec, x and create."""

    @pytest.fixture
    def scratch(self, tmp_path, monkeypatch):
        """Keep temporary projects under tmp_path."""
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        monkeypatch.setattr(tempfile, "tempdir", str(scratch))
        return scratch

    def test_exec_installs_then_runs_binary_with_arguments(self, project, registry):
        """exec puts the project's bins on PATH and forwards arguments."""
        registry.publish("echoer", "1.0.0", bins={"echoer": "echo.sh"},
                         files={"echo.sh": '#!/bin/sh\necho "$1" > exec-output.txt\nexit 4\n'})
        write_manifest(project / "package.json", dependencies={"echoer": "^1.0.0"})

        code = asyncio.run(cli_exec.exec_command(ns(EXE="echoer", EXE_ARGS=["--", "a b"]), BaleConfig(), registry))

        assert code == 4
        assert (project / "exec-output.txt").read_text().strip() == "a b"
        assert (project / Constants.LOCKFILE).exists()

    def test_x_installs_missing_command_into_temporary_project(self, project, registry, scratch):
        """x downloads a package whose binary is not on PATH and leaves the project untouched."""
        registry.publish("bale-test-hello", "1.0.0", bins={"bale-test-hello": "hello.sh"},
                         files={"hello.sh": '#!/bin/sh\necho "hi $1" > x-output.txt\n'})

        code = asyncio.run(cli_exec.download_and_exec(
            ns(NAME="bale-test-hello", EXE_ARGS=["there"]), BaleConfig(), registry
        ))

        assert code == 0
        assert (project / "x-output.txt").read_text().strip() == "hi there"
        assert not (project / "package.json").exists()
        assert not (project / Constants.NODE_MODULES).exists()
        assert list(scratch.iterdir()) == []

    def test_x_uses_command_already_on_path(self, project, registry, monkeypatch):
        """A command found on PATH runs without touching the registry."""
        monkeypatch.setattr(cli_exec.shutil, "which", lambda name: "/bin/" + name)

        code = asyncio.run(cli_exec.download_and_exec(ns(NAME="true", EXE_ARGS=[]), BaleConfig(), registry))

        assert code == 0
        assert sum(registry.fetches.values()) == 0

    def test_create_runs_starter_kit(self, project, registry, scratch):
        """create NAME runs the create-NAME package binary."""
        registry.publish("create-widget", "1.0.0", bins={"create-widget": "init.js"},
                         files={"init.js": "#!/bin/sh\ntouch scaffolded.txt\n"})

        code = asyncio.run(cli_exec.create(ns(NAME="widget"), BaleConfig(), registry))

        assert code == 0
        assert (project / "scaffolded.txt").exists()

    def test_command_name_drops_scope_and_range(self):
        """The binary name of a scoped token is its unscoped package name."""
        assert cli_exec.command_name("@scope/tool@^1.0.0") == "tool"
        assert cli_exec.command_name("tool") == "tool"


class TestConfigAndArgs:
    """Configuration loading and argument parsing."""

    def test_yaml_config_and_auth(self, project, monkeypatch):
        """YAML config sets the registry and per-prefix credentials."""
        for var in ("BALE_REGISTRY", "BALE_DOWNLOAD_CONCURRENCY", "BALE_DISALLOW_INSTALL_SCRIPTS"):
            monkeypatch.delenv(var, raising=False)
        (project / "bale.yml").write_text(
            "registry: https://npm.example.com/\n"
            "download_concurrency: 4\n"
            "disallow_install_scripts: true\n"
            "registries:\n"
            "  - url: https://npm.example.com/\n"
            "    token: abc\n"
            "  - url: https://npm.example.com/private/\n"
            "    username: u\n"
            "    password: p\n"
        )

        config = load_config(project_dir=str(project))

        assert config.registry == "https://npm.example.com/"
        assert config.download_concurrency == 4
        assert config.disallow_install_scripts is True
        assert config.auth_headers("https://npm.example.com/left-pad") == {"Authorization": "Bearer abc"}
        assert config.auth_headers("https://npm.example.com/private/x")["Authorization"].startswith("Basic ")
        assert config.auth_headers("https://other.example.com/x") == {}

    def test_env_overrides(self, project, monkeypatch):
        """BALE_* environment variables override the config file."""
        monkeypatch.setenv("BALE_REGISTRY", "https://mirror.test/")
        monkeypatch.setenv("BALE_DOWNLOAD_CONCURRENCY", "7")
        monkeypatch.setenv("BALE_DISALLOW_INSTALL_SCRIPTS", "yes")

        config = load_config(project_dir=str(project))

        assert config.registry == "https://mirror.test/"
        assert config.download_concurrency == 7
        assert config.disallow_install_scripts is True

    def test_explicit_missing_config(self, project):
        """A missing --config file is a ConfigError."""
        with pytest.raises(ConfigError):
            load_config("nope.yml")

    def test_json_config(self, project, monkeypatch):
        """bale.json is read like YAML."""
        monkeypatch.delenv("BALE_REGISTRY", raising=False)
        (project / "bale.json").write_text(json.dumps({"registry": "https://json.test/"}))
        assert load_config(project_dir=str(project)).registry == "https://json.test/"

    def test_parse_args(self):
        """Global and add flags land on the namespace."""
        args = parse_args(["--immutable", "-v", "add", "left-pad@^1.0.0", "-D", "--pin"])
        assert args.IMMUTABLE is True
        assert args.LOG_LEVEL == "DEBUG"
        assert args.COMMAND == "add"
        assert args.PACKAGES == ["left-pad@^1.0.0"]
        assert args.DEV and args.PIN

    def test_parse_install_alias(self):
        """The i alias and the why version argument parse."""
        assert parse_args(["i"]).COMMAND == "i"
        assert parse_args(["why", "left-pad", "1.3.0"]).VERSION == "1.3.0"

    def test_parse_exec_family_and_aliases(self):
        """exec and x keep trailing arguments; add accepts a and --exact."""
        exec_args = parse_args(["exec", "tsc", "--noEmit", "-p", "."])
        assert (exec_args.EXE, exec_args.EXE_ARGS) == ("tsc", ["--noEmit", "-p", "."])
        x_args = parse_args(["x", "cowsay@1", "moo"])
        assert (x_args.NAME, x_args.EXE_ARGS) == ("cowsay@1", ["moo"])
        assert parse_args(["create", "vite"]).NAME == "vite"
        added = parse_args(["a", "left-pad", "--exact"])
        assert added.COMMAND == "a" and added.PIN
        assert parse_args(["upgrade", "--exact"]).PIN


class TestMain:
    """Exit codes from the entry point."""

    def test_success_exits_zero(self, project, monkeypatch):
        """A successful command exits with status 0."""
        import bale

        monkeypatch.delenv("BALE_LOG_LEVEL", raising=False)
        write_manifest(project / "package.json", dependencies={"left-pad": "^1.0.0"})

        with pytest.raises(SystemExit) as exc:
            bale.main(["--cwd", str(project), "remove", "left-pad"])

        assert exc.value.code == 0
        assert "dependencies" not in json.loads((project / "package.json").read_text())

    def test_errors_map_to_their_exit_code(self, project, monkeypatch):
        """A BaleError exits with its own exit code."""
        import bale

        monkeypatch.delenv("BALE_LOG_LEVEL", raising=False)
        write_manifest(project / "package.json")

        with pytest.raises(SystemExit) as exc:
            bale.main(["remove", "ghost"])

        assert exc.value.code == ManifestError("ghost").exit_code.value
