"""Shared fixtures for rootfs_builder tests.

Commands that need root (chroot) are replaced by FakeChroot; archival
copies, moves and removals run for real inside tmp_path.
"""

import shlex
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from rootfs_builder.config import Settings
from rootfs_builder.db import Base
from rootfs_builder.errors import ExecutionError
from rootfs_builder.types import CommandResult


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with every directory inside tmp_path and an amd64 host."""
    host = tmp_path / "host"
    (host / "bin").mkdir(parents=True)
    (host / "resolv.conf").write_text("nameserver 192.0.2.53\n")
    (host / "bin" / "qemu-arm-static").write_bytes(b"\x7fELF qemu")

    return Settings(
        projects_dir=tmp_path / "projects",
        platforms_dir=tmp_path / "platforms",
        recipes_dir=tmp_path / "recipes",
        build_dir=tmp_path / "out" / "projects",
        platform_build_dir=tmp_path / "out" / "platforms",
        jobs_dir=tmp_path / "jobs",
        cache_dir=tmp_path / "cache",
        db_url="sqlite:///:memory:",
        host_arch="amd64",
        host_resolv_conf=host / "resolv.conf",
        emulator_dir=host / "bin",
        noop_binary="/bin/true",
        max_workers=4,
        command_timeout=60,
    )


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing."""
    # Register every model with the metadata
    from rootfs_builder.builds import models as builds_models  # noqa: F401
    from rootfs_builder.recipes import models as recipes_models  # noqa: F401

    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session(engine):
    """Create a session for testing."""
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def write_definition(settings: Settings) -> Callable[[str, str, dict[str, Any]], Path]:
    """Return a helper writing ``<kind>s_dir/<name>/<kind>.yaml``."""

    def _write(kind: str, name: str, data: dict[str, Any]) -> Path:
        base_dir = {
            "project": settings.projects_dir,
            "platform": settings.platforms_dir,
            "recipe": settings.recipes_dir,
        }[kind]
        path = base_dir / name / f"{kind}.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data))
        return path

    return _write


def _make_rootfs(path: Path, repack: bool = False) -> Path:
    """Create a small rootfs tree at ``path``."""
    (path / "etc").mkdir(parents=True)
    (path / "etc" / "os-release").write_text("ID=debian\n")
    (path / "usr" / "bin").mkdir(parents=True)
    (path / "usr" / "bin" / "env").write_text("#!/bin/sh\n")
    (path / "bin").mkdir()
    (path / "bin" / "sh").symlink_to("/usr/bin/env")
    if repack:
        (path / "usr" / "bin" / "dpkg-repack").write_text("#!/bin/sh\n")
    return path


@pytest.fixture
def make_rootfs() -> Callable[..., Path]:
    """Return a helper creating a small rootfs tree."""
    return _make_rootfs


class FakeChroot:
    """Stand-in for run_command when it is asked to chroot.

    Records every shell command with the root and environment it ran with.
    ``fail_on`` makes commands containing that text exit 100;
    ``on_command(root, command)`` simulates side effects in the rootfs.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[Path, str, dict[str, str] | None]] = []
        self.fail_on: str | None = None
        self.on_command: Callable[[Path, str], None] | None = None

    @property
    def commands(self) -> list[str]:
        return [command for _, command, _ in self.calls]

    def __call__(
        self,
        cmd: list[str],
        timeout: int | None = None,
        env_override: dict[str, str] | None = None,
        log_path: Path | None = None,
        cwd: Path | None = None,
    ) -> CommandResult:
        assert cmd[:1] == ["chroot"]
        root, command = Path(cmd[1]), cmd[-1]
        self.calls.append((root, command, env_override))
        if self.fail_on and self.fail_on in command:
            raise ExecutionError(
                f"Command failed with exit code 100: {shlex.join(cmd)}",
                command=shlex.join(cmd),
                exit_code=100,
            )
        if self.on_command is not None:
            self.on_command(root, command)
        now = datetime.now(timezone.utc)
        return CommandResult(
            command=shlex.join(cmd), exit_code=0, started_at=now, finished_at=now
        )


@pytest.fixture
def fake_chroot():
    """Replace chroot execution with a FakeChroot."""
    fake = FakeChroot()
    with patch("rootfs_builder.builds.runner.run_command", side_effect=fake):
        yield fake
