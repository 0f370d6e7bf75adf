"""Package set merging and apt command composition.

The install sequence run inside the rootfs is fixed: refresh the package
indices, install, then drop the indices and the downloaded archives so
they do not end up in the published rootfs.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable, Mapping

from rootfs_builder.definitions.schema import ANY_VERSION

APT_UPDATE = "apt-get update"
APT_INSTALL = "apt-get install -f --no-install-recommends -q -y"
APT_LISTS_CLEANUP = "rm -fr /var/lib/apt/lists/*"
APT_CLEAN = "apt-get clean"


def package_spec(name: str, version: str | None) -> str:
    """Return the apt-get argument for a package and version constraint.

    Args:
        name: Package name.
        version: Exact version, ``"*"`` or empty for the latest one.

    Returns:
        ``name`` or ``name=version``.
    """
    if not version or version == ANY_VERSION:
        return name
    return f"{name}={version}"


def merge_packages(*sources: Mapping[str, str] | None) -> dict[str, str]:
    """Merge package mappings; later sources override earlier ones.

    Args:
        sources: Package name to version constraint mappings (None skipped).

    Returns:
        Merged mapping.
    """
    merged: dict[str, str] = {}
    for source in sources:
        if source:
            merged.update(source)
    return merged


def exclude_packages(
    packages: Mapping[str, str], names: Iterable[str]
) -> dict[str, str]:
    """Return ``packages`` without the given package names."""
    excluded = set(names)
    return {name: v for name, v in packages.items() if name not in excluded}


def compose_install_command(packages: Mapping[str, str]) -> str:
    """Compose the ``apt-get install`` command for a package set.

    Args:
        packages: Package name to version constraint.

    Returns:
        Shell command string with every package spec quoted.
    """
    specs = [shlex.quote(package_spec(n, v)) for n, v in packages.items()]
    return " ".join([APT_INSTALL, *specs])


def compose_install_commands(packages: Mapping[str, str]) -> list[str]:
    """Compose the full install sequence for a package set.

    Args:
        packages: Package name to version constraint.

    Returns:
        Index update, install, index cleanup and archive cleanup commands,
        or an empty list when there is nothing to install.
    """
    if not packages:
        return []
    return [
        APT_UPDATE,
        compose_install_command(packages),
        APT_LISTS_CLEANUP,
        APT_CLEAN,
    ]


__all__ = [
    "APT_CLEAN",
    "APT_INSTALL",
    "APT_LISTS_CLEANUP",
    "APT_UPDATE",
    "compose_install_command",
    "compose_install_commands",
    "exclude_packages",
    "merge_packages",
    "package_spec",
]
