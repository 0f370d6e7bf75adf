"""Root filesystem images on disk.

This module handles:
- Cloning a rootfs into a new location (archival copy)
- Moving a rootfs to its published location
- Removing a rootfs
- Preparing and clearing the chroot environment for foreign architectures
  (resolver config, static emulator, service-management stubs)
- Installing package files staged inside the rootfs
"""

from __future__ import annotations

import logging
import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING

from rootfs_builder.builds.arch import emulator_for, is_foreign
from rootfs_builder.builds.runner import ChrootExecuter, run_command
from rootfs_builder.config import get_settings
from rootfs_builder.errors import NotFoundError, ResourceError

if TYPE_CHECKING:
    from rootfs_builder.config import Settings

logger = logging.getLogger(__name__)

# Layout inside a rootfs, relative to its root
SERVICE_STUB_DIR = ".service-stubs"
RESOLV_CONF = Path("etc") / "resolv.conf"
RESOLV_CONF_ASIDE = Path("etc") / "resolv.conf.rootfs-builder"
EMULATOR_DIR = Path("usr") / "bin"
WORK_DIR = Path("var") / "cache" / "rootfs-builder"
PACKAGE_STAGING_DIR = WORK_DIR / "packages"
SNAPSHOT_DIR = WORK_DIR / "snapshots"

# Commands package maintainer scripts use to start daemons
SERVICE_COMMANDS = (
    "initctl",
    "invoke-rc.d",
    "restart",
    "start",
    "stop",
    "start-stop-daemon",
    "service",
)

CHROOT_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


class RootfsImage:
    """A root filesystem tree owned by this object.

    Attributes:
        arch: Architecture identifier of the binaries in the tree.
        path: Location of the tree (None until one is assigned).
        environment_ready: True between a successful prepare_environment()
            and the matching clear_environment().
    """

    def __init__(
        self,
        arch: str,
        path: Path | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.arch = arch
        self.path = path
        self.settings = settings or get_settings()
        self.environment_ready = False
        # Paths created by prepare_environment(), relative to the root
        self._environment_paths: list[Path] = []
        self._resolv_conf_set_aside = False

    def __repr__(self) -> str:
        return f"<RootfsImage(arch='{self.arch}', path='{self.path}')>"

    @property
    def is_foreign(self) -> bool:
        """Whether the host needs emulation to run this rootfs's binaries."""
        return is_foreign(self.arch, self.settings.host_arch)

    @property
    def root(self) -> Path:
        """Location of the rootfs, which must exist."""
        return self._require_path()

    @property
    def package_staging_dir(self) -> Path:
        """Directory inside the rootfs where package files are staged."""
        return self._require_path() / PACKAGE_STAGING_DIR

    def exists(self) -> bool:
        """Check that the rootfs location exists and has contents.

        Raises:
            ResourceError: If the location cannot be listed.
        """
        if self.path is None or not self.path.is_dir():
            return False
        try:
            return any(self.path.iterdir())
        except OSError as e:
            raise ResourceError(f"Cannot read rootfs {self.path}: {e}") from e

    def entries(self) -> list[Path]:
        """Return the top-level entries of the rootfs.

        Raises:
            NotFoundError: If the rootfs location is missing.
            ResourceError: If the location cannot be listed.
        """
        root = self._require_path()
        try:
            return sorted(root.iterdir())
        except OSError as e:
            raise ResourceError(f"Cannot read rootfs {root}: {e}") from e

    def _require_path(self) -> Path:
        if self.path is None or not self.path.is_dir():
            raise NotFoundError(
                f"No such rootfs: {self.path}", code="rootfs_not_found"
            )
        return self.path

    def clone(self, target_path: Path, log_path: Path | None = None) -> RootfsImage:
        """Copy this rootfs into a new location.

        Every top-level entry is copied with ``cp -a`` so permissions,
        ownership and symbolic links are preserved. The source is untouched.

        Args:
            target_path: Location of the new rootfs (created if absent).
            log_path: Optional build log.

        Returns:
            A new RootfsImage bound to ``target_path``.

        Raises:
            NotFoundError: If this rootfs is missing or empty.
            ResourceError: If the target cannot be created.
            ExecutionError: If the copy fails.
        """
        sources = self.entries()
        if not sources:
            raise NotFoundError(
                f"No such rootfs: {self.path} is empty", code="rootfs_empty"
            )

        try:
            target_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(
                f"Cannot create rootfs directory {target_path}: {e}"
            ) from e

        logger.info("Cloning rootfs %s -> %s", self.path, target_path)
        run_command(
            ["cp", "-a", *(str(s) for s in sources), str(target_path)],
            timeout=self.settings.command_timeout,
            log_path=log_path,
        )
        return RootfsImage(self.arch, target_path, settings=self.settings)

    def move(self, target_path: Path, log_path: Path | None = None) -> None:
        """Move every top-level entry of this rootfs into ``target_path``.

        Entries are renamed with ``mv -f``. An empty rootfs moves nothing
        but still takes the new location.

        Args:
            target_path: New location.
            log_path: Optional build log.

        Raises:
            NotFoundError: If the current location is missing.
            ResourceError: If the target cannot be created.
            ExecutionError: If the move fails.
        """
        sources = self.entries()
        if not sources:
            logger.debug("Rootfs %s is empty, nothing to move", self.path)
            self.path = target_path
            return

        try:
            target_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(
                f"Cannot create rootfs directory {target_path}: {e}"
            ) from e

        logger.info("Moving rootfs %s -> %s", self.path, target_path)
        run_command(
            ["mv", "-f", *(str(s) for s in sources), str(target_path)],
            timeout=self.settings.command_timeout,
            log_path=log_path,
        )
        self.path = target_path

    def remove(self) -> None:
        """Delete the rootfs location recursively.

        No-op if no location was ever set.
        """
        if self.path is None:
            return
        logger.info("Removing rootfs %s", self.path)
        run_command(
            ["rm", "-fr", str(self.path)], timeout=self.settings.command_timeout
        )

    def prepare_environment(self) -> None:
        """Make the rootfs runnable under chroot on this host.

        Native architectures need nothing. For a foreign architecture this
        copies the host resolver configuration and the static emulator into
        the rootfs, and creates a directory of service-management stubs
        linked to a no-op binary so maintainer scripts do not start daemons.
        Calling it again while the environment is active is a no-op.

        Raises:
            NotFoundError: If the rootfs or the emulator binary is missing.
            ResourceError: If a file cannot be created.
        """
        if self.environment_ready:
            return
        if not self.is_foreign:
            logger.debug("Rootfs arch %s is native, no emulation needed", self.arch)
            return

        root = self._require_path()
        emulator = emulator_for(self.arch)
        emulator_source = self.settings.emulator_dir / emulator
        if not emulator_source.is_file():
            raise NotFoundError(
                f"Emulator not found on host: {emulator_source}",
                code="emulator_not_found",
            )

        logger.info("Preparing %s emulation environment in %s", self.arch, root)
        self._environment_paths = []
        try:
            self._install_resolv_conf(root)
            self._install_emulator(root, emulator_source)
            self._install_service_stubs(root)
        except OSError as e:
            self._teardown()
            raise ResourceError(
                f"Cannot prepare emulation environment in {root}: {e}",
                code="environment_error",
            ) from e

        self.environment_ready = True

    def _install_resolv_conf(self, root: Path) -> None:
        resolv_conf = root / RESOLV_CONF
        resolv_conf.parent.mkdir(parents=True, exist_ok=True)
        # Often a symlink into /run; never write through it
        if resolv_conf.exists() or resolv_conf.is_symlink():
            resolv_conf.rename(root / RESOLV_CONF_ASIDE)
            self._resolv_conf_set_aside = True
        shutil.copyfile(self.settings.host_resolv_conf, resolv_conf)
        self._environment_paths.append(RESOLV_CONF)

    def _install_emulator(self, root: Path, emulator_source: Path) -> None:
        relative = EMULATOR_DIR / emulator_source.name
        target = root / relative
        if target.exists():
            logger.debug("Rootfs already ships %s", relative)
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(emulator_source, target)
        self._environment_paths.append(relative)

    def _install_service_stubs(self, root: Path) -> None:
        stub_dir = root / SERVICE_STUB_DIR
        stub_dir.mkdir()
        self._environment_paths.append(Path(SERVICE_STUB_DIR))

        noop = self.settings.noop_binary
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            futures = [
                pool.submit(os.symlink, noop, stub_dir / name)
                for name in SERVICE_COMMANDS
            ]
            for future in futures:
                future.result()

    def clear_environment(self) -> None:
        """Remove everything prepare_environment() put into the rootfs.

        Removes the service stubs, the emulator and the copied resolver
        configuration, and puts back a resolver configuration the rootfs
        had before. Calling it while the environment is inactive is a no-op.

        Raises:
            ResourceError: If a file cannot be removed.
        """
        if not self.environment_ready:
            return
        logger.info("Clearing emulation environment in %s", self.path)
        try:
            self._teardown()
        except OSError as e:
            raise ResourceError(
                f"Cannot clear emulation environment in {self.path}: {e}",
                code="environment_error",
            ) from e
        self.environment_ready = False

    def _teardown(self) -> None:
        root = self._require_path()
        while self._environment_paths:
            target = root / self._environment_paths.pop()
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink(missing_ok=True)
        if self._resolv_conf_set_aside:
            (root / RESOLV_CONF_ASIDE).rename(root / RESOLV_CONF)
            self._resolv_conf_set_aside = False

    def chroot_env(self) -> dict[str, str]:
        """Environment for commands run inside this rootfs."""
        path = CHROOT_PATH
        if self.environment_ready:
            path = f"/{SERVICE_STUB_DIR}:{CHROOT_PATH}"
        return {
            "PATH": path,
            "DEBIAN_FRONTEND": "noninteractive",
            "LC_ALL": "C",
        }

    def apply_packages(
        self, timeout: int | None = None, log_path: Path | None = None
    ) -> list[str]:
        """Install the package files staged in the rootfs.

        Every ``.deb`` in the staging directory is installed with dpkg
        inside the chroot; the staging directory is removed afterwards.
        Dependencies missing at this point are resolved by the following
        ``apt-get install -f``.

        Args:
            timeout: Command timeout in seconds.
            log_path: Optional build log.

        Returns:
            File names of the installed package files.

        Raises:
            ExecutionError: If dpkg fails.
        """
        staging = self.package_staging_dir
        if not staging.is_dir():
            return []

        package_files = sorted(p.name for p in staging.glob("*.deb"))
        if package_files:
            logger.info("Installing %d staged package(s)", len(package_files))
            executer = ChrootExecuter(self, timeout=timeout, log_path=log_path)
            executer.add_command(
                f"dpkg --install --recursive --force-depends /{PACKAGE_STAGING_DIR}"
            )
            executer.run()

        self.discard_work_path(PACKAGE_STAGING_DIR)
        return package_files

    def discard_work_path(self, relative: Path) -> None:
        """Remove a scratch path below the rootfs work directory.

        The work directory itself goes away once it is empty.

        Raises:
            ResourceError: If the path cannot be removed.
        """
        root = self._require_path()
        target = root / relative
        work_dir = root / WORK_DIR
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink(missing_ok=True)
            if work_dir.is_dir() and not any(work_dir.iterdir()):
                work_dir.rmdir()
        except OSError as e:
            raise ResourceError(f"Cannot remove {target}: {e}") from e


__all__ = [
    "PACKAGE_STAGING_DIR",
    "RESOLV_CONF",
    "SERVICE_COMMANDS",
    "SERVICE_STUB_DIR",
    "SNAPSHOT_DIR",
    "WORK_DIR",
    "RootfsImage",
]
