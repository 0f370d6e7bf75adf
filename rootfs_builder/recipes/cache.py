"""Recipe package caches.

A recipe names a set of packages. Once a build has installed them, the
installed packages are repackaged into ``.deb`` files and kept in the
recipe's cache store, so later builds can stage the files directly instead
of installing the packages from the network.

Cache entries are persisted in the ``recipe_cache_entries`` table. An entry
is only rewritten when its artifact file vanished; the cache only grows.
"""

from __future__ import annotations

import logging
import shlex
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from rootfs_builder.builds.rootfs import SNAPSHOT_DIR
from rootfs_builder.builds.runner import ChrootExecuter, run_command
from rootfs_builder.config import get_settings
from rootfs_builder.definitions.service import load_recipe
from rootfs_builder.errors import ResourceError
from rootfs_builder.recipes.models import RecipeCacheEntry

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from rootfs_builder.builds.rootfs import RootfsImage
    from rootfs_builder.config import Settings
    from rootfs_builder.definitions.schema import RecipeSchema

logger = logging.getLogger(__name__)

REPACK_TOOL = Path("usr") / "bin" / "dpkg-repack"


def compose_repack_command(export_dir: str, packages: list[str]) -> str:
    """Compose the shell command repackaging installed packages.

    Packages that are not installed are skipped; a repack failure aborts.

    Args:
        export_dir: Directory (inside the rootfs) receiving the .deb files.
        packages: Package names.

    Returns:
        Shell command string.
    """
    names = " ".join(shlex.quote(p) for p in packages)
    return (
        f"cd {shlex.quote(export_dir)} && for pkg in {names}; do "
        "if dpkg-query -W -f='${Status}' \"$pkg\" 2>/dev/null "
        "| grep -q 'ok installed'; then "
        'dpkg-repack "$pkg" || exit 1; fi; done'
    )


def _split_package_file(filename: str) -> tuple[str, str | None]:
    # <name>_<version>_<arch>.deb
    name, _, rest = filename.removesuffix(".deb").partition("_")
    version = rest.rpartition("_")[0] or None
    return name, version


class RecipeCache:
    """A named recipe and the cached package files it owns.

    Attributes:
        name: Recipe name.
        definition: Validated recipe definition.
        options: Opaque recipe parameters given by the project.
    """

    def __init__(
        self,
        session: Session,
        name: str,
        definition: RecipeSchema,
        entries: list[RecipeCacheEntry],
        options: dict[str, Any] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.name = name
        self.definition = definition
        self.options = options or {}
        self.settings = settings or get_settings()
        self._entries: dict[str, RecipeCacheEntry] = {}
        # Entries whose artifact file disappeared from the store
        self._stale: dict[str, RecipeCacheEntry] = {}
        for entry in entries:
            if Path(entry.artifact_path).is_file():
                self._entries[entry.package_name] = entry
            else:
                logger.warning(
                    "Cached package %s of recipe %s is missing: %s",
                    entry.package_name,
                    name,
                    entry.artifact_path,
                )
                self._stale[entry.package_name] = entry

    def __repr__(self) -> str:
        return f"<RecipeCache(name='{self.name}', cached={len(self._entries)})>"

    @classmethod
    def init(
        cls,
        session: Session,
        name: str,
        settings: Settings | None = None,
        options: dict[str, Any] | None = None,
    ) -> RecipeCache:
        """Load a recipe definition and its cache entries.

        Args:
            session: Database session.
            name: Recipe name.
            settings: Application settings.
            options: Opaque recipe parameters from the project.

        Returns:
            The RecipeCache.

        Raises:
            NotFoundError: If the recipe does not exist.
            ConfigError: If the recipe definition is invalid.
        """
        definition = load_recipe(name, settings)
        stmt = (
            select(RecipeCacheEntry)
            .where(RecipeCacheEntry.recipe_name == name)
            .order_by(RecipeCacheEntry.package_name)
        )
        entries = list(session.execute(stmt).scalars().all())
        return cls(session, name, definition, entries, options, settings)

    @property
    def packages(self) -> dict[str, str]:
        """Package name to version constraint supplied by the recipe."""
        return dict(self.definition.packages)

    @property
    def package_caches(self) -> dict[str, Path]:
        """Package name to cached artifact path."""
        return {name: Path(e.artifact_path) for name, e in self._entries.items()}

    @property
    def store_dir(self) -> Path:
        """Directory holding this recipe's cached package files."""
        return self.settings.cache_dir / self.name

    def uncached_packages(self) -> list[str]:
        """Return the recipe packages without a cache entry."""
        return [name for name in self.packages if name not in self._entries]

    def materialize(self, target_dir: Path) -> list[str]:
        """Copy every cached package file into ``target_dir``.

        Copies run concurrently and all complete before returning.

        Args:
            target_dir: Package staging directory.

        Returns:
            Names of the packages whose files were copied.

        Raises:
            ResourceError: If the target directory cannot be created.
            ExecutionError: If a copy fails.
        """
        caches = self.package_caches
        if not caches:
            logger.debug("Recipe %s has no cached packages", self.name)
            return []

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(
                f"Cannot create staging directory {target_dir}: {e}"
            ) from e

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            futures = [
                pool.submit(
                    run_command,
                    ["cp", "-a", str(path), str(target_dir)],
                    self.settings.command_timeout,
                )
                for path in caches.values()
            ]
            for future in futures:
                future.result()

        logger.info(
            "Staged %d cached package(s) of recipe %s", len(caches), self.name
        )
        return sorted(caches)

    def snapshot(
        self,
        rootfs: RootfsImage,
        timeout: int | None = None,
        log_path: Path | None = None,
    ) -> list[str]:
        """Cache the recipe packages installed in ``rootfs``.

        Installed packages of the recipe without a cache entry are rebuilt
        into ``.deb`` files with dpkg-repack inside the chroot, moved into
        the cache store and recorded. Packages that are not installed are
        left uncached. Requires dpkg-repack in the rootfs; without it nothing
        is cached.

        Args:
            rootfs: Rootfs the packages were installed into.
            timeout: Command timeout in seconds.
            log_path: Optional build log.

        Returns:
            Names of the newly cached packages.

        Raises:
            ResourceError: If the cache store cannot be created.
            ExecutionError: If repackaging or moving a file fails.
        """
        missing = self.uncached_packages()
        if not missing:
            return []

        root = rootfs.path
        if root is None or not (root / REPACK_TOOL).exists():
            logger.warning(
                "dpkg-repack is not installed in %s, recipe %s stays uncached",
                root,
                self.name,
            )
            return []

        export_rel = SNAPSHOT_DIR / self.name
        export_dir = root / export_rel
        try:
            export_dir.mkdir(parents=True, exist_ok=True)
            self.store_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(
                f"Cannot prepare cache for recipe {self.name}: {e}"
            ) from e

        executer = ChrootExecuter(rootfs, timeout=timeout, log_path=log_path)
        executer.add_command(compose_repack_command(f"/{export_rel}", missing))
        executer.run()

        wanted = {name.split(":", 1)[0]: name for name in missing}
        cached: list[str] = []
        for package_file in sorted(export_dir.glob("*.deb")):
            base_name, version = _split_package_file(package_file.name)
            package = wanted.get(base_name)
            if package is None:
                continue
            target = self.store_dir / package_file.name
            run_command(
                ["mv", "-f", str(package_file), str(target)],
                timeout=timeout,
                log_path=log_path,
            )
            self._record(package, version, target)
            cached.append(package)

        rootfs.discard_work_path(SNAPSHOT_DIR)
        self.session.flush()

        logger.info(
            "Cached %d package(s) for recipe %s", len(cached), self.name
        )
        return cached

    def _record(self, package: str, version: str | None, path: Path) -> None:
        entry = self._stale.pop(package, None)
        if entry is None:
            entry = RecipeCacheEntry(
                recipe_name=self.name,
                package_name=package,
                version=version,
                artifact_path=str(path),
            )
            self.session.add(entry)
        else:
            # The old file is gone; point the entry at the new one
            entry.version = version
            entry.artifact_path = str(path)
        self._entries[package] = entry


__all__ = ["RecipeCache", "compose_repack_command"]
