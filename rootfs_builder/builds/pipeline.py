"""Build pipeline.

This module handles:
- Describing what a build produces (BuildTarget)
- The immutable per-build context threaded through the stages
- The ordered stage list and the driver running it (BuildOrchestrator)
- Fetching a platform's rootfs, building a derived parent when missing

Stages run strictly in order. A failing stage skips the remaining regular
stages; the cleanup stages (clear_environment, release_job) run on every
path and the first error is raised once they are done.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rootfs_builder.builds.arch import ArchitectureRef
from rootfs_builder.builds.job import BuildJob
from rootfs_builder.builds.models import BuildRecord
from rootfs_builder.builds.packages import (
    compose_install_commands,
    exclude_packages,
    merge_packages,
)
from rootfs_builder.builds.rootfs import RootfsImage
from rootfs_builder.builds.runner import ChrootExecuter
from rootfs_builder.config import get_settings
from rootfs_builder.definitions.service import load_project
from rootfs_builder.errors import (
    ConfigError,
    NotFoundError,
    ResourceError,
)
from rootfs_builder.recipes.cache import RecipeCache
from rootfs_builder.types import BuildStage, BuildStatus, RecipeStatus, TargetKind

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from rootfs_builder.config import Settings

logger = logging.getLogger(__name__)

ROOTFS_DIRNAME = "rootfs"
HOSTNAME_FILE = Path("etc") / "hostname"


@dataclass(frozen=True)
class BuildTarget:
    """Something that is built into a published rootfs.

    Attributes:
        name: Project or platform name.
        kind: Whether a project or a derived platform is built.
        platform: Platform the rootfs derives from (None if undeclared).
        publish_dir: Directory the rootfs is published under.
        hostname: Content of /etc/hostname, if any.
        packages: Package name to version constraint.
        recipes: Recipe name to opaque recipe parameters.
    """

    name: str
    kind: TargetKind
    platform: ArchitectureRef | None
    publish_dir: Path
    hostname: str | None = None
    packages: Mapping[str, str] = field(default_factory=dict)
    recipes: Mapping[str, dict[str, Any] | None] = field(default_factory=dict)

    @property
    def arch(self) -> str | None:
        """Architecture of the rootfs, inherited from the platform."""
        return self.platform.arch if self.platform else None

    @property
    def rootfs_path(self) -> Path:
        """Published rootfs location."""
        return self.publish_dir / ROOTFS_DIRNAME

    @classmethod
    def from_project(cls, name: str, settings: Settings | None = None) -> BuildTarget:
        """Describe the build of a project.

        Raises:
            NotFoundError: If the project or its platform does not exist.
            ConfigError: If a definition is invalid.
        """
        if settings is None:
            settings = get_settings()
        project = load_project(name, settings)
        platform = None
        if project.platform:
            platform = ArchitectureRef.resolve(project.platform, settings)
        return cls(
            name=name,
            kind=TargetKind.PROJECT,
            platform=platform,
            publish_dir=settings.build_dir / name,
            hostname=project.hostname,
            packages=project.packages or {},
            recipes=project.recipes or {},
        )

    @classmethod
    def from_platform(
        cls, ref: ArchitectureRef, settings: Settings | None = None
    ) -> BuildTarget:
        """Describe the build of a derived platform.

        Raises:
            ConfigError: If the platform is a root platform (its rootfs is
                prebuilt, there is nothing to build).
        """
        if settings is None:
            settings = get_settings()
        if ref.parent is None:
            raise ConfigError(
                f"Platform {ref.name} is a root platform and is not built",
                code="platform_not_buildable",
            )
        definition = ref.definition
        return cls(
            name=ref.name,
            kind=TargetKind.PLATFORM,
            platform=ref.parent,
            publish_dir=settings.platform_build_dir / ref.name,
            hostname=definition.hostname,
            packages=definition.packages or {},
            recipes=definition.recipes or {},
        )


@dataclass(frozen=True)
class RecipeOutcome:
    """Result of initializing one configured recipe."""

    name: str
    status: RecipeStatus
    cache: RecipeCache | None = None
    reason: str | None = None

    @property
    def is_live(self) -> bool:
        return self.status == RecipeStatus.LOADED and self.cache is not None


@dataclass(frozen=True)
class BuildContext:
    """State of one build, replaced (never mutated) by each stage.

    Attributes:
        target: What is being built.
        settings: Application settings.
        session: Database session.
        record: Build record of this attempt.
        job: Acquired job, once acquire_job ran.
        rootfs: Rootfs being built, once derive_base ran.
        recipes: Recipe initialization outcomes, in configuration order.
        materialized: Packages staged from recipe caches.
        published: Published rootfs location, once publish ran.
        error: First error raised by a stage.
        failed_stage: Stage that raised ``error``.
    """

    target: BuildTarget
    settings: Settings
    session: Session
    record: BuildRecord
    job: BuildJob | None = None
    rootfs: RootfsImage | None = None
    recipes: tuple[RecipeOutcome, ...] = ()
    materialized: frozenset[str] = frozenset()
    published: Path | None = None
    error: BaseException | None = None
    failed_stage: BuildStage | None = None

    @property
    def live_recipes(self) -> list[RecipeCache]:
        """Caches of the recipes that initialized successfully."""
        return [o.cache for o in self.recipes if o.is_live and o.cache is not None]

    @property
    def log_path(self) -> Path | None:
        return self.job.log_path if self.job else None

    def pending_packages(self) -> dict[str, str]:
        """Packages still to install from the network.

        Recipe packages are merged first and the target's own packages
        override them; packages staged from a recipe cache are left out.
        """
        merged = merge_packages(
            *(cache.packages for cache in self.live_recipes),
            self.target.packages,
        )
        return exclude_packages(merged, self.materialized)

    def require_job(self) -> BuildJob:
        if self.job is None:
            raise ResourceError("No job acquired for this build")
        return self.job

    def require_rootfs(self) -> RootfsImage:
        if self.rootfs is None:
            raise NotFoundError("No rootfs derived for this build")
        return self.rootfs


StageFunc = Callable[[BuildContext], BuildContext]


@dataclass(frozen=True)
class Stage:
    """A named pipeline step; ``always`` steps run even after a failure."""

    name: BuildStage
    run: StageFunc
    always: bool = False


def acquire_job(ctx: BuildContext) -> BuildContext:
    job = BuildJob.acquire(ctx.settings.jobs_dir)
    ctx.record.job_id = job.job_id
    ctx.record.log_path = str(job.log_path)
    return replace(ctx, job=job)


def derive_base(ctx: BuildContext) -> BuildContext:
    """Clone the platform rootfs into the job directory.

    Raises:
        ConfigError: If the target declares no platform.
    """
    target = ctx.target
    if target.platform is None:
        raise ConfigError(
            f"{target.kind.value.capitalize()} {target.name} declares no platform,"
            " no base rootfs can be derived",
            code="platform_missing",
        )
    job = ctx.require_job()
    base = fetch_or_build_rootfs(ctx.session, target.platform, ctx.settings)
    rootfs = base.clone(job.path / ROOTFS_DIRNAME, log_path=job.log_path)
    return replace(ctx, rootfs=rootfs)


def write_hostname(ctx: BuildContext) -> BuildContext:
    hostname = ctx.target.hostname
    if not hostname:
        logger.debug("No hostname configured for %s", ctx.target.name)
        return ctx
    path = ctx.require_rootfs().root / HOSTNAME_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # A link may point outside the rootfs; replace it, never write through
        if path.is_symlink():
            path.unlink()
        path.write_text(f"{hostname}\n")
    except OSError as e:
        logger.warning("Cannot write hostname to %s: %s", path, e)
    return ctx


def prepare_environment(ctx: BuildContext) -> BuildContext:
    ctx.require_rootfs().prepare_environment()
    return ctx


def stage_recipes(ctx: BuildContext) -> BuildContext:
    """Initialize configured recipes and stage their cached packages.

    A recipe that is unknown or invalid is dropped and the build goes on
    without it.
    """
    rootfs = ctx.require_rootfs()
    outcomes: list[RecipeOutcome] = []
    materialized: set[str] = set()

    for name, options in ctx.target.recipes.items():
        try:
            cache = RecipeCache.init(ctx.session, name, ctx.settings, options)
        except (NotFoundError, ConfigError) as e:
            logger.warning("Dropping recipe %s: %s", name, e.message)
            outcomes.append(
                RecipeOutcome(name, RecipeStatus.DROPPED, reason=e.message)
            )
            continue
        materialized.update(cache.materialize(rootfs.package_staging_dir))
        outcomes.append(RecipeOutcome(name, RecipeStatus.LOADED, cache=cache))

    return replace(ctx, recipes=tuple(outcomes), materialized=frozenset(materialized))


def apply_packages(ctx: BuildContext) -> BuildContext:
    ctx.require_rootfs().apply_packages(
        timeout=ctx.settings.command_timeout, log_path=ctx.log_path
    )
    return ctx


def install_packages(ctx: BuildContext) -> BuildContext:
    """Install pending packages, then cache the recipes' installs."""
    rootfs = ctx.require_rootfs()
    commands = compose_install_commands(ctx.pending_packages())
    if commands:
        executer = ChrootExecuter(
            rootfs, timeout=ctx.settings.command_timeout, log_path=ctx.log_path
        )
        for command in commands:
            executer.add_command(command)
        executer.run()
    else:
        logger.debug("No packages to install for %s", ctx.target.name)

    for cache in ctx.live_recipes:
        cache.snapshot(
            rootfs, timeout=ctx.settings.command_timeout, log_path=ctx.log_path
        )
    return ctx


def clear_environment(ctx: BuildContext) -> BuildContext:
    if ctx.rootfs is not None:
        ctx.rootfs.clear_environment()
    return ctx


def discard_previous(ctx: BuildContext) -> BuildContext:
    previous = ctx.target.rootfs_path
    if not previous.exists():
        logger.debug("Nothing published yet at %s", previous)
        return ctx
    RootfsImage(ctx.require_rootfs().arch, previous, settings=ctx.settings).remove()
    return ctx


def publish(ctx: BuildContext) -> BuildContext:
    """Move the built rootfs to the target's published location.

    Raises:
        ResourceError: If the destination cannot be created.
    """
    rootfs = ctx.require_rootfs()
    destination = ctx.target.rootfs_path
    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ResourceError(f"Cannot create {destination}: {e}") from e
    rootfs.move(destination, log_path=ctx.log_path)
    logger.info("Published %s to %s", ctx.target.name, destination)
    return replace(ctx, published=destination)


def release_job(ctx: BuildContext) -> BuildContext:
    if ctx.job is not None:
        ctx.job.release()
    return ctx


STAGES: tuple[Stage, ...] = (
    Stage(BuildStage.ACQUIRE_JOB, acquire_job),
    Stage(BuildStage.DERIVE_BASE, derive_base),
    Stage(BuildStage.WRITE_HOSTNAME, write_hostname),
    Stage(BuildStage.PREPARE_ENVIRONMENT, prepare_environment),
    Stage(BuildStage.STAGE_RECIPES, stage_recipes),
    Stage(BuildStage.APPLY_PACKAGES, apply_packages),
    Stage(BuildStage.INSTALL_PACKAGES, install_packages),
    Stage(BuildStage.CLEAR_ENVIRONMENT, clear_environment, always=True),
    Stage(BuildStage.DISCARD_PREVIOUS, discard_previous),
    Stage(BuildStage.PUBLISH, publish),
    Stage(BuildStage.RELEASE_JOB, release_job, always=True),
)


class BuildOrchestrator:
    """Run the build stages for a target and record the attempt."""

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        stages: Sequence[Stage] = STAGES,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.stages = tuple(stages)

    def run(self, target: BuildTarget) -> BuildContext:
        """Build ``target`` and publish its rootfs.

        Args:
            target: What to build.

        Returns:
            The final BuildContext of a successful build.

        Raises:
            RootfsBuilderError: The first error raised by a stage, after the
                cleanup stages ran. The build record is marked failed.
        """
        record = BuildRecord(
            target_name=target.name,
            target_kind=target.kind.value,
            arch=target.arch,
            status=BuildStatus.PENDING.value,
        )
        self.session.add(record)
        self.session.flush()

        logger.info(
            "Building %s %s (build %d)", target.kind.value, target.name, record.id
        )
        record.mark_running()
        self.session.flush()

        ctx = BuildContext(
            target=target,
            settings=self.settings,
            session=self.session,
            record=record,
        )
        ctx = self._run_stages(ctx)

        if ctx.error is not None:
            error = ctx.error
            stage = ctx.failed_stage.value if ctx.failed_stage else None
            record.mark_failed(error, stage=stage)
            self.session.flush()
            logger.error(
                "Build %d of %s failed at stage %s: %s",
                record.id,
                target.name,
                stage or "?",
                error,
            )
            raise error

        record.mark_succeeded(str(ctx.published) if ctx.published else None)
        self.session.flush()
        logger.info("Build %d of %s succeeded", record.id, target.name)
        return ctx

    def _run_stages(self, ctx: BuildContext) -> BuildContext:
        for stage in self.stages:
            if ctx.error is not None and not stage.always:
                logger.debug("Skipping stage %s", stage.name.value)
                continue

            logger.info("Stage %s (%s)", stage.name.value, ctx.target.name)
            try:
                ctx = stage.run(ctx)
            except BaseException as e:
                # Cleanup must still run, the error is raised by run()
                if ctx.error is None and ctx.published is None:
                    ctx = replace(ctx, error=e, failed_stage=stage.name)
                else:
                    logger.error("Stage %s failed: %s", stage.name.value, e)
        return ctx


def fetch_or_build_rootfs(
    session: Session, ref: ArchitectureRef, settings: Settings | None = None
) -> RootfsImage:
    """Return the rootfs of a platform, building it first if needed.

    A root platform provides its prebuilt base rootfs. A derived platform
    provides its published rootfs; when that is missing the platform is
    built through the full pipeline (recursively for its own parents).

    Args:
        session: Database session.
        ref: Resolved platform.
        settings: Application settings.

    Returns:
        RootfsImage of the platform (read only, clone before changing it).

    Raises:
        NotFoundError: If a root platform's base rootfs is missing or empty.
    """
    if settings is None:
        settings = get_settings()

    if ref.parent is None:
        image = RootfsImage(ref.arch, ref.base_rootfs, settings=settings)
        if not image.exists():
            raise NotFoundError(
                f"Base rootfs of platform {ref.name} not found: {ref.base_rootfs}",
                code="rootfs_not_found",
            )
        return image

    target = BuildTarget.from_platform(ref, settings)
    image = RootfsImage(ref.arch, target.rootfs_path, settings=settings)
    if not image.exists():
        logger.info("Platform %s has no rootfs yet, building it", ref.name)
        BuildOrchestrator(session, settings).run(target)
    return image


__all__ = [
    "STAGES",
    "BuildContext",
    "BuildOrchestrator",
    "BuildTarget",
    "RecipeOutcome",
    "Stage",
    "fetch_or_build_rootfs",
]
