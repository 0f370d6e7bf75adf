"""Shared type definitions for rootfs_builder.

This module contains enums, dataclasses, and lookup tables shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class BuildStatus(str, Enum):
    """Status of a build operation."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TargetKind(str, Enum):
    """Kind of definition a build publishes."""

    PROJECT = "project"
    PLATFORM = "platform"


class BuildStage(str, Enum):
    """Ordered stages of the build pipeline."""

    ACQUIRE_JOB = "acquire_job"
    DERIVE_BASE = "derive_base"
    WRITE_HOSTNAME = "write_hostname"
    PREPARE_ENVIRONMENT = "prepare_environment"
    STAGE_RECIPES = "stage_recipes"
    APPLY_PACKAGES = "apply_packages"
    INSTALL_PACKAGES = "install_packages"
    CLEAR_ENVIRONMENT = "clear_environment"
    DISCARD_PREVIOUS = "discard_previous"
    PUBLISH = "publish"
    RELEASE_JOB = "release_job"


class RecipeStatus(str, Enum):
    """Outcome of initializing a recipe during a build."""

    LOADED = "loaded"
    DROPPED = "dropped"


@dataclass(frozen=True)
class CommandResult:
    """Result of an external command."""

    command: str
    exit_code: int
    started_at: datetime
    finished_at: datetime
    output: str | None = None

    @property
    def duration(self) -> float:
        """Return the command duration in seconds."""
        return (self.finished_at - self.started_at).total_seconds()


# platform.machine() values mapped to Debian architecture names
MACHINE_ARCHITECTURES: dict[str, str] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "i386": "i386",
    "i686": "i386",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "armv6l": "armel",
    "ppc64le": "ppc64el",
    "s390x": "s390x",
    "riscv64": "riscv64",
    "mips64": "mips64el",
}

# Architectures a host runs without emulation, besides its own
NATIVE_COMPATIBLE: dict[str, frozenset[str]] = {
    "amd64": frozenset({"amd64", "i386"}),
}

# User-mode emulators, by target architecture
EMULATOR_BINARIES: dict[str, str] = {
    "amd64": "qemu-x86_64-static",
    "i386": "qemu-i386-static",
    "arm64": "qemu-aarch64-static",
    "armhf": "qemu-arm-static",
    "armel": "qemu-arm-static",
    "ppc64el": "qemu-ppc64le-static",
    "s390x": "qemu-s390x-static",
    "riscv64": "qemu-riscv64-static",
    "mips64el": "qemu-mips64el-static",
    "mipsel": "qemu-mipsel-static",
}


__all__ = [
    "EMULATOR_BINARIES",
    "MACHINE_ARCHITECTURES",
    "NATIVE_COMPATIBLE",
    "BuildStage",
    "BuildStatus",
    "CommandResult",
    "RecipeStatus",
    "TargetKind",
]
