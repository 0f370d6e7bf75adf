"""Tests for the CLI.

Commands run through Typer's CliRunner with every setting pointed at
tmp_path through ROOTFS_BUILDER_* environment variables. Builds use the
FakeChroot fixture for chroot commands.
"""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from rootfs_builder import __version__
from rootfs_builder.cli import app

runner = CliRunner()


@pytest.fixture
def cli_env(settings, tmp_path: Path) -> dict[str, str]:
    """Environment matching the ``settings`` fixture, with a file database."""
    return {
        "ROOTFS_BUILDER_PROJECTS_DIR": str(settings.projects_dir),
        "ROOTFS_BUILDER_PLATFORMS_DIR": str(settings.platforms_dir),
        "ROOTFS_BUILDER_RECIPES_DIR": str(settings.recipes_dir),
        "ROOTFS_BUILDER_BUILD_DIR": str(settings.build_dir),
        "ROOTFS_BUILDER_PLATFORM_BUILD_DIR": str(settings.platform_build_dir),
        "ROOTFS_BUILDER_JOBS_DIR": str(settings.jobs_dir),
        "ROOTFS_BUILDER_CACHE_DIR": str(settings.cache_dir),
        "ROOTFS_BUILDER_DB_URL": f"sqlite:///{tmp_path / 'db' / 'builds.db'}",
        "ROOTFS_BUILDER_HOST_ARCH": "amd64",
        "ROOTFS_BUILDER_HOST_RESOLV_CONF": str(settings.host_resolv_conf),
        "ROOTFS_BUILDER_EMULATOR_DIR": str(settings.emulator_dir),
        "ROOTFS_BUILDER_LOG_LEVEL": "WARNING",
    }


@pytest.fixture
def definitions(write_definition, make_rootfs, tmp_path: Path) -> None:
    """A root platform, a derived platform, a recipe and two projects."""
    root = make_rootfs(tmp_path / "bases" / "bookworm")
    write_definition("platform", "bookworm", {"arch": "amd64", "rootfs": str(root)})
    write_definition("platform", "bookworm-net", {"platform": "bookworm"})
    write_definition(
        "recipe", "tools", {"description": "CLI tools", "packages": {"curl": "*"}}
    )
    write_definition(
        "project",
        "kiosk",
        {"platform": "bookworm-net", "hostname": "kiosk", "packages": {"jq": "*"}},
    )
    write_definition("project", "bare", {})


def _invoke(args: list[str], env: dict[str, str]):
    return runner.invoke(app, args, env=env)


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Rootfs Builder" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self, cli_env) -> None:
        """CLI config should show every section."""
        result = _invoke(["config"], cli_env)
        assert result.exit_code == 0
        assert "Definitions:" in result.stdout
        assert "Paths:" in result.stdout
        assert "Host:" in result.stdout
        assert "Operational:" in result.stdout
        assert "Command timeout" in result.stdout

    def test_config_json(self, cli_env) -> None:
        """CLI config --json should output the effective settings."""
        result = _invoke(["config", "--json"], cli_env)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["host_arch"] == "amd64"
        assert data["jobs_dir"] == cli_env["ROOTFS_BUILDER_JOBS_DIR"]
        assert data["log_level"] == "WARNING"


class TestCLIBuild:
    """Test the build command."""

    def test_build_json(self, cli_env, definitions, fake_chroot) -> None:
        """A successful build prints its record."""
        result = _invoke(["build", "kiosk", "--json"], cli_env)

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["target_name"] == "kiosk"
        assert data["status"] == "succeeded"
        assert data["arch"] == "amd64"
        rootfs = Path(data["rootfs_path"])
        assert (rootfs / "etc" / "hostname").read_text() == "kiosk\n"

    def test_build_text(self, cli_env, definitions, fake_chroot) -> None:
        """A successful build reports the published location."""
        result = _invoke(["build", "kiosk"], cli_env)
        assert result.exit_code == 0, result.output
        assert "Built kiosk" in result.stdout

    def test_build_records_persisted(self, cli_env, definitions, fake_chroot) -> None:
        """The derived platform and the project are both recorded."""
        _invoke(["build", "kiosk"], cli_env)

        result = _invoke(["builds", "list", "--json"], cli_env)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [(b["target_kind"], b["target_name"]) for b in data] == [
            ("platform", "bookworm-net"),
            ("project", "kiosk"),
        ]

    def test_build_failure(self, cli_env, definitions) -> None:
        """A failed build exits 1 and keeps its failed record."""
        result = _invoke(["build", "bare"], cli_env)

        assert result.exit_code == 1
        assert "platform_missing" in result.stdout

        result = _invoke(["builds", "list", "--status", "failed", "--json"], cli_env)
        data = json.loads(result.stdout)
        assert len(data) == 1
        assert data[0]["target_name"] == "bare"
        assert data[0]["error_type"] == "platform_missing"
        assert data[0]["failed_stage"] == "derive_base"

    def test_build_unknown_project(self, cli_env, definitions) -> None:
        """An unknown project exits 1 with its error code."""
        result = _invoke(["build", "nope"], cli_env)
        assert result.exit_code == 1
        assert "project_not_found" in result.stdout


class TestCLIBuilds:
    """Test the builds commands."""

    def test_list_empty_json(self, cli_env) -> None:
        """builds list --json should return [] without records."""
        result = _invoke(["builds", "list", "--json"], cli_env)
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_list_empty_text(self, cli_env) -> None:
        """builds list without records says so."""
        result = _invoke(["builds", "list"], cli_env)
        assert result.exit_code == 0
        assert "No build records found" in result.stdout

    def test_list_invalid_status(self, cli_env) -> None:
        """An unknown status exits 1."""
        result = _invoke(["builds", "list", "--status", "done"], cli_env)
        assert result.exit_code == 1
        assert "Invalid status" in result.stdout

    def test_show_json(self, cli_env, definitions) -> None:
        """builds show --json prints one record."""
        _invoke(["build", "bare"], cli_env)

        result = _invoke(["builds", "show", "1", "--json"], cli_env)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["id"] == 1
        assert data["target_name"] == "bare"
        assert data["status"] == "failed"
        assert data["failed_stage"] == "derive_base"

    def test_show_text(self, cli_env, definitions) -> None:
        """builds show prints the error with its stage."""
        _invoke(["build", "bare"], cli_env)

        result = _invoke(["builds", "show", "1"], cli_env)
        assert result.exit_code == 0
        assert "Build #1" in result.stdout
        assert "Target: project bare" in result.stdout
        assert "Error (platform_missing) at derive_base" in result.stdout

    def test_show_unknown(self, cli_env) -> None:
        """An unknown build ID exits 1."""
        result = _invoke(["builds", "show", "42"], cli_env)
        assert result.exit_code == 1
        assert "build_not_found" in result.stdout


class TestCLIRecipes:
    """Test the recipes commands."""

    def test_list_json(self, cli_env, definitions) -> None:
        """recipes list --json returns recipe names."""
        result = _invoke(["recipes", "list", "--json"], cli_env)
        assert result.exit_code == 0
        assert json.loads(result.stdout) == ["tools"]

    def test_show_json(self, cli_env, definitions) -> None:
        """recipes show --json lists packages and cached files."""
        result = _invoke(["recipes", "show", "tools", "--json"], cli_env)
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {
            "name": "tools",
            "description": "CLI tools",
            "packages": {"curl": "*"},
            "cached": {},
        }

    def test_show_unknown(self, cli_env, definitions) -> None:
        """An unknown recipe exits 1."""
        result = _invoke(["recipes", "show", "nope"], cli_env)
        assert result.exit_code == 1
        assert "recipe_not_found" in result.stdout


class TestCLIPlatforms:
    """Test the platforms commands."""

    def test_list_json(self, cli_env, definitions) -> None:
        """platforms list --json returns platform names."""
        result = _invoke(["platforms", "list", "--json"], cli_env)
        assert result.exit_code == 0
        assert json.loads(result.stdout) == ["bookworm", "bookworm-net"]

    def test_list_empty(self, cli_env) -> None:
        """platforms list without definitions says so."""
        result = _invoke(["platforms", "list"], cli_env)
        assert result.exit_code == 0
        assert "No platforms found" in result.stdout

    def test_show_json(self, cli_env, definitions, tmp_path: Path) -> None:
        """platforms show --json describes the parent chain."""
        result = _invoke(["platforms", "show", "bookworm-net", "--json"], cli_env)
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {
            "name": "bookworm-net",
            "arch": "amd64",
            "foreign": False,
            "chain": ["bookworm-net", "bookworm"],
            "base_rootfs": str(tmp_path / "bases" / "bookworm"),
        }

    def test_build_root_platform(self, cli_env, definitions) -> None:
        """A root platform cannot be built."""
        result = _invoke(["platforms", "build", "bookworm"], cli_env)
        assert result.exit_code == 1
        assert "platform_not_buildable" in result.stdout

    def test_build_derived_platform(self, cli_env, definitions, fake_chroot) -> None:
        """A derived platform is built and published."""
        result = _invoke(["platforms", "build", "bookworm-net"], cli_env)
        assert result.exit_code == 0, result.output
        assert "Built platform bookworm-net" in result.stdout
