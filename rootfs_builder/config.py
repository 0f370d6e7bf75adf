"""Configuration settings for rootfs_builder.

Settings come from ROOTFS_BUILDER_* environment variables, then a .env
file, then the defaults below. Definition directories default to the
working directory; build output, jobs and the recipe cache default to
the user data and cache homes.
"""

import platform
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from rootfs_builder.types import MACHINE_ARCHITECTURES


def _data_dir() -> Path:
    return Path.home() / ".local" / "share" / "rootfs-builder"


def _default_build_dir() -> Path:
    """Return the default directory for published project rootfs."""
    return _data_dir() / "build"


def _default_platform_build_dir() -> Path:
    """Return the default directory for published platform rootfs."""
    return _data_dir() / "platforms"


def _default_jobs_dir() -> Path:
    """Return the default directory for job working directories."""
    return _data_dir() / "jobs"


def _default_cache_dir() -> Path:
    """Return the default recipe package cache directory."""
    return Path.home() / ".cache" / "rootfs-builder" / "recipes"


def _default_host_arch() -> str:
    """Return the Debian architecture name of the running host."""
    machine = platform.machine().lower()
    return MACHINE_ARCHITECTURES.get(machine, machine)


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = _data_dir() / "db.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Every field can be set through an environment variable with the
    ROOTFS_BUILDER_ prefix, e.g. ROOTFS_BUILDER_HOST_ARCH=arm64.
    """

    model_config = SettingsConfigDict(
        env_prefix="ROOTFS_BUILDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Definitions
    projects_dir: Path = Field(
        default=Path("projects"),
        description="Directory holding <project>/project.yaml definitions",
    )
    platforms_dir: Path = Field(
        default=Path("platforms"),
        description="Directory holding <platform>/platform.yaml definitions",
    )
    recipes_dir: Path = Field(
        default=Path("recipes"),
        description="Directory holding <recipe>/recipe.yaml definitions",
    )

    # Outputs and working areas
    build_dir: Path = Field(
        default_factory=_default_build_dir,
        description="Root directory for published project rootfs",
    )
    platform_build_dir: Path = Field(
        default_factory=_default_platform_build_dir,
        description="Root directory for published platform rootfs",
    )
    jobs_dir: Path = Field(
        default_factory=_default_jobs_dir,
        description="Root directory for build job working directories",
    )
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for cached recipe packages",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL",
    )

    # Host and emulation
    host_arch: str = Field(
        default_factory=_default_host_arch,
        description="Debian architecture name of the build host",
    )
    host_resolv_conf: Path = Field(
        default=Path("/etc/resolv.conf"),
        description="Resolver configuration copied into foreign rootfs",
    )
    emulator_dir: Path = Field(
        default=Path("/usr/bin"),
        description="Host directory holding qemu-*-static binaries",
    )
    noop_binary: str = Field(
        default="/bin/true",
        description="Binary (inside the rootfs) that service stubs link to",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum concurrent filesystem operations within a stage",
    )
    command_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for a single external command",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
