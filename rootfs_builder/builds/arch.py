"""Platform and architecture resolution.

This module handles:
- Resolving a platform name to its architecture and base rootfs location
- Following parent platform references (derived platforms inherit the
  parent's architecture and build on the parent's rootfs)
- Deciding whether an architecture needs user-mode emulation on the host
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from rootfs_builder.definitions.service import load_platform
from rootfs_builder.errors import ConfigError, NotFoundError
from rootfs_builder.types import EMULATOR_BINARIES, NATIVE_COMPATIBLE

if TYPE_CHECKING:
    from rootfs_builder.config import Settings
    from rootfs_builder.definitions.schema import PlatformSchema

logger = logging.getLogger(__name__)


def is_foreign(arch: str, host_arch: str) -> bool:
    """Check whether ``arch`` binaries need emulation on ``host_arch``.

    Args:
        arch: Target architecture identifier.
        host_arch: Host architecture identifier.

    Returns:
        True if the host cannot execute the architecture natively.
    """
    if arch == host_arch:
        return False
    return arch not in NATIVE_COMPATIBLE.get(host_arch, frozenset())


def emulator_for(arch: str) -> str:
    """Return the static user-mode emulator binary name for an architecture.

    Raises:
        NotFoundError: If no emulator is known for the architecture.
    """
    try:
        return EMULATOR_BINARIES[arch]
    except KeyError:
        raise NotFoundError(
            f"No user-mode emulator known for architecture '{arch}'",
            code="emulator_not_found",
        ) from None


@dataclass(frozen=True)
class ArchitectureRef:
    """A resolved platform.

    Attributes:
        name: Platform name.
        arch: Effective architecture identifier.
        definition: The platform's validated definition.
        parent: Resolved parent platform, for derived platforms.
        base_rootfs: Prebuilt base rootfs location, for root platforms.
    """

    name: str
    arch: str
    definition: PlatformSchema
    parent: ArchitectureRef | None = None
    base_rootfs: Path | None = None

    @property
    def is_derived(self) -> bool:
        """Whether this platform builds on a parent platform's rootfs."""
        return self.parent is not None

    @classmethod
    def resolve(
        cls, name: str, settings: Settings | None = None
    ) -> ArchitectureRef:
        """Load a platform and its parent chain by name.

        Args:
            name: Platform name.
            settings: Application settings.

        Returns:
            The resolved ArchitectureRef.

        Raises:
            NotFoundError: If the platform or one of its parents is unknown.
            ConfigError: If the parent chain loops, or a root platform lacks
                an architecture or a base rootfs location.
        """
        return cls._resolve(name, settings, ())

    @classmethod
    def _resolve(
        cls, name: str, settings: Settings | None, chain: tuple[str, ...]
    ) -> ArchitectureRef:
        if name in chain:
            cycle = " -> ".join((*chain, name))
            raise ConfigError(f"Platform reference cycle: {cycle}")

        definition = load_platform(name, settings)

        if definition.platform:
            parent = cls._resolve(definition.platform, settings, (*chain, name))
            if definition.arch and definition.arch != parent.arch:
                logger.warning(
                    "Platform %s declares arch %s but inherits %s from %s",
                    name,
                    definition.arch,
                    parent.arch,
                    parent.name,
                )
            return cls(
                name=name,
                arch=parent.arch,
                definition=definition,
                parent=parent,
            )

        if not definition.arch:
            raise ConfigError(f"Platform {name} declares no architecture")
        if not definition.rootfs:
            raise ConfigError(
                f"Platform {name} declares neither a parent platform nor a rootfs"
            )

        return cls(
            name=name,
            arch=definition.arch,
            definition=definition,
            base_rootfs=Path(definition.rootfs),
        )


__all__ = ["ArchitectureRef", "emulator_for", "is_foreign"]
