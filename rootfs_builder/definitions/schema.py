"""Pydantic models for project, platform and recipe definitions.

Definitions are read from YAML/JSON files and validated before any build
work starts, so that package names and version constraints reaching the
package manager command line are known to be well-formed.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Debian policy 5.6.1 (name) and 5.6.12 (version), plus an optional
# multiarch qualifier such as "libc6:i386"
PACKAGE_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9+.\-]+(:[a-z0-9\-]+)?$")
VERSION_PATTERN = re.compile(r"^[A-Za-z0-9.+~:\-]+$")
HOSTNAME_PATTERN = re.compile(
    r"^[A-Za-z0-9]([A-Za-z0-9\-]{0,61}[A-Za-z0-9])?"
    r"(\.[A-Za-z0-9]([A-Za-z0-9\-]{0,61}[A-Za-z0-9])?)*$"
)
ARCH_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-]*$")

# Version constraint meaning "whatever the archive offers"
ANY_VERSION = "*"


def validate_package_map(packages: dict[str, Any] | None) -> dict[str, str] | None:
    """Validate a package-name to version-constraint mapping.

    Empty values (``None`` in YAML, ``""``) and ``"*"`` both mean the
    latest available version and are normalized to ``"*"``.

    Args:
        packages: Raw mapping from a definition file.

    Returns:
        Normalized mapping, or None.

    Raises:
        ValueError: If a name or version is malformed.
    """
    if packages is None:
        return None
    normalized: dict[str, str] = {}
    for name, version in packages.items():
        if not isinstance(name, str) or not PACKAGE_NAME_PATTERN.match(name):
            raise ValueError(f"invalid package name: '{name}'")
        if version is None:
            version = ""
        # YAML reads "1.0" as a float
        version = str(version).strip()
        if version in ("", ANY_VERSION):
            normalized[name] = ANY_VERSION
            continue
        if not VERSION_PATTERN.match(version):
            raise ValueError(f"invalid version constraint for '{name}': '{version}'")
        normalized[name] = version
    return normalized


class _BuildableSchema(BaseModel):
    """Fields shared by every definition that can be built into a rootfs."""

    model_config = ConfigDict(extra="forbid")

    description: str | None = Field(default=None, description="Longer description")
    hostname: str | None = Field(
        default=None, description="Content of /etc/hostname in the built rootfs"
    )
    packages: dict[str, str] | None = Field(
        default=None, description="Package name to version constraint"
    )
    recipes: dict[str, dict[str, Any] | None] | None = Field(
        default=None, description="Recipe name to opaque recipe parameters"
    )

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str | None) -> str | None:
        """Validate hostname is a valid DNS name."""
        if v is None:
            return v
        if len(v) > 253 or not HOSTNAME_PATTERN.match(v):
            raise ValueError(f"invalid hostname: '{v}'")
        return v

    @field_validator("packages", mode="before")
    @classmethod
    def validate_packages(cls, v: dict[str, Any] | None) -> dict[str, str] | None:
        """Validate package names and version constraints."""
        if v is not None and not isinstance(v, dict):
            raise ValueError("packages must be a mapping of name to version")
        return validate_package_map(v)


class ProjectSchema(_BuildableSchema):
    """Schema of a project definition.

    Attributes:
        platform: Name of the platform the project's rootfs derives from.
        description: Optional longer description.
        hostname: Optional hostname written into the rootfs.
        packages: Package name to version constraint.
        recipes: Recipe name to opaque recipe parameters.
    """

    platform: str | None = Field(
        default=None, description="Platform the rootfs derives from"
    )


class PlatformSchema(_BuildableSchema):
    """Schema of a platform definition.

    A root platform declares its architecture and the location of a
    prebuilt base rootfs. A derived platform names a parent platform and is
    built on top of the parent's rootfs, inheriting its architecture.

    Attributes:
        arch: Architecture identifier (root platforms).
        platform: Parent platform name (derived platforms).
        rootfs: Base rootfs location (root platforms).
    """

    arch: str | None = Field(default=None, description="Architecture identifier")
    platform: str | None = Field(default=None, description="Parent platform name")
    rootfs: str | None = Field(default=None, description="Base rootfs location")

    @field_validator("arch")
    @classmethod
    def validate_arch(cls, v: str | None) -> str | None:
        """Validate architecture identifier."""
        if v is None:
            return v
        if not ARCH_PATTERN.match(v):
            raise ValueError(f"invalid architecture: '{v}'")
        return v

    @model_validator(mode="after")
    def validate_base(self) -> "PlatformSchema":
        """A platform has either a parent or its own base rootfs, not both."""
        if self.platform and self.rootfs:
            raise ValueError("a platform cannot declare both 'rootfs' and 'platform'")
        return self


class RecipeSchema(BaseModel):
    """Schema of a recipe definition.

    Attributes:
        description: Optional longer description.
        packages: Package name to version constraint supplied by the recipe.
    """

    model_config = ConfigDict(extra="forbid")

    description: str | None = Field(default=None, description="Longer description")
    packages: dict[str, str] = Field(
        default_factory=dict, description="Package name to version constraint"
    )

    @field_validator("packages", mode="before")
    @classmethod
    def validate_packages(cls, v: dict[str, Any] | None) -> dict[str, str]:
        """Validate package names and version constraints."""
        if v is not None and not isinstance(v, dict):
            raise ValueError("packages must be a mapping of name to version")
        return validate_package_map(v) or {}


__all__ = [
    "ANY_VERSION",
    "PACKAGE_NAME_PATTERN",
    "PlatformSchema",
    "ProjectSchema",
    "RecipeSchema",
    "VERSION_PATTERN",
    "validate_package_map",
]
