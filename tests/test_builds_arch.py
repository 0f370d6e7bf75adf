"""Tests for builds/arch.py module.

Tests platform resolution and host architecture helpers.
"""

from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from rootfs_builder.builds.arch import ArchitectureRef, emulator_for, is_foreign
from rootfs_builder.errors import ConfigError, NotFoundError


class TestForeignArchitecture:
    """Tests for is_foreign and emulator_for."""

    @pytest.mark.parametrize(
        ("arch", "host", "expected"),
        [
            ("amd64", "amd64", False),
            ("i386", "amd64", False),
            ("armhf", "amd64", True),
            ("arm64", "amd64", True),
            ("amd64", "arm64", True),
            ("arm64", "arm64", False),
        ],
    )
    def test_is_foreign(self, arch, host, expected):
        """Only the host's own and compatible architectures run natively."""
        assert is_foreign(arch, host) is expected

    def test_emulator_for(self):
        """Each foreign architecture maps to a static qemu binary."""
        assert emulator_for("arm64") == "qemu-aarch64-static"
        assert emulator_for("armel") == "qemu-arm-static"

    def test_unknown_emulator(self):
        """An architecture without an emulator raises NotFoundError."""
        with pytest.raises(NotFoundError) as exc_info:
            emulator_for("vax")
        assert exc_info.value.code == "emulator_not_found"


class TestResolve:
    """Tests for ArchitectureRef.resolve."""

    def test_root_platform(self, settings, write_definition, tmp_path: Path):
        """A root platform has its own arch and base rootfs."""
        write_definition(
            "platform", "bookworm", {"arch": "armhf", "rootfs": str(tmp_path / "base")}
        )
        ref = ArchitectureRef.resolve("bookworm", settings)

        assert ref.name == "bookworm"
        assert ref.arch == "armhf"
        assert ref.base_rootfs == tmp_path / "base"
        assert ref.parent is None
        assert not ref.is_derived

    def test_derived_platform_inherits_arch(self, settings, write_definition):
        """A derived platform inherits its parent's architecture."""
        write_definition("platform", "bookworm", {"arch": "arm64", "rootfs": "/srv/b"})
        write_definition("platform", "bookworm-net", {"platform": "bookworm"})
        write_definition("platform", "bookworm-web", {"platform": "bookworm-net"})

        ref = ArchitectureRef.resolve("bookworm-web", settings)

        assert ref.arch == "arm64"
        assert ref.is_derived
        assert ref.base_rootfs is None
        assert ref.parent is not None
        assert ref.parent.name == "bookworm-net"
        assert ref.parent.parent is not None
        assert ref.parent.parent.name == "bookworm"

    def test_conflicting_arch_uses_parent(self, settings, write_definition, caplog):
        """A derived platform's own arch is overridden by the parent's."""
        write_definition("platform", "bookworm", {"arch": "arm64", "rootfs": "/srv/b"})
        write_definition("platform", "child", {"platform": "bookworm", "arch": "armhf"})

        ref = ArchitectureRef.resolve("child", settings)

        assert ref.arch == "arm64"
        assert "inherits arm64" in caplog.text

    def test_unknown_platform(self, settings):
        """An unknown platform raises NotFoundError."""
        with pytest.raises(NotFoundError):
            ArchitectureRef.resolve("nope", settings)

    def test_unknown_parent(self, settings, write_definition):
        """An unknown parent platform raises NotFoundError."""
        write_definition("platform", "child", {"platform": "nope"})
        with pytest.raises(NotFoundError):
            ArchitectureRef.resolve("child", settings)

    def test_cycle(self, settings, write_definition):
        """A parent chain that loops raises ConfigError."""
        write_definition("platform", "a", {"platform": "b"})
        write_definition("platform", "b", {"platform": "a"})
        with pytest.raises(ConfigError, match="cycle"):
            ArchitectureRef.resolve("a", settings)

    def test_root_without_arch(self, settings, write_definition):
        """A root platform must declare an architecture."""
        write_definition("platform", "bookworm", {"rootfs": "/srv/b"})
        with pytest.raises(ConfigError, match="architecture"):
            ArchitectureRef.resolve("bookworm", settings)

    def test_root_without_rootfs(self, settings, write_definition):
        """A root platform must declare a base rootfs."""
        write_definition("platform", "bookworm", {"arch": "amd64"})
        with pytest.raises(ConfigError, match="rootfs"):
            ArchitectureRef.resolve("bookworm", settings)

    def test_immutable(self, settings, write_definition):
        """A resolved platform cannot be changed."""
        write_definition("platform", "bookworm", {"arch": "amd64", "rootfs": "/srv/b"})
        ref = ArchitectureRef.resolve("bookworm", settings)
        with pytest.raises(FrozenInstanceError):
            ref.arch = "armhf"  # type: ignore[misc]
