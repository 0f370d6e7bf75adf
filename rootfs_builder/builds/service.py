"""Build service module.

This module provides the high-level build API:
- build_project(): build and publish a project's rootfs
- build_platform(): build and publish a derived platform's rootfs
- Build record queries
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select

from rootfs_builder.builds.arch import ArchitectureRef
from rootfs_builder.builds.models import BuildRecord
from rootfs_builder.builds.pipeline import BuildOrchestrator, BuildTarget
from rootfs_builder.config import get_settings
from rootfs_builder.errors import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from rootfs_builder.config import Settings
    from rootfs_builder.types import BuildStatus

logger = logging.getLogger(__name__)


class BuildNotFoundError(NotFoundError):
    """Raised when a build record is not found."""

    def __init__(self, build_id: int, code: str = "build_not_found") -> None:
        super().__init__(f"Build not found: {build_id}", code=code)
        self.build_id = build_id


def build_project(
    session: Session, name: str, settings: Settings | None = None
) -> BuildRecord:
    """Build a project's rootfs and publish it.

    Missing derived parent platforms are built first.

    Args:
        session: Database session.
        name: Project name.
        settings: Application settings.

    Returns:
        The succeeded BuildRecord.

    Raises:
        NotFoundError: If the project, its platform or a base rootfs is
            missing.
        ConfigError: If a definition is invalid or declares no platform.
        ResourceError: If a working or publish directory cannot be created.
        ExecutionError: If a command fails during the build.
    """
    if settings is None:
        settings = get_settings()
    target = BuildTarget.from_project(name, settings)
    ctx = BuildOrchestrator(session, settings).run(target)
    return ctx.record


def build_platform(
    session: Session, name: str, settings: Settings | None = None
) -> BuildRecord:
    """Build a derived platform's rootfs and publish it.

    Args:
        session: Database session.
        name: Platform name.
        settings: Application settings.

    Returns:
        The succeeded BuildRecord.

    Raises:
        ConfigError: If the platform is a root platform, or invalid.
        NotFoundError: If the platform or a parent is missing.
        ExecutionError: If a command fails during the build.
    """
    if settings is None:
        settings = get_settings()
    ref = ArchitectureRef.resolve(name, settings)
    target = BuildTarget.from_platform(ref, settings)
    ctx = BuildOrchestrator(session, settings).run(target)
    return ctx.record


def get_build(session: Session, build_id: int) -> BuildRecord:
    """Get a build record by ID.

    Raises:
        BuildNotFoundError: If build not found.
    """
    build = session.get(BuildRecord, build_id)
    if build is None:
        raise BuildNotFoundError(build_id)
    return build


def list_builds(
    session: Session,
    target_name: str | None = None,
    status: BuildStatus | None = None,
    limit: int = 100,
) -> list[BuildRecord]:
    """List build records with optional filters, newest first.

    Args:
        session: Database session.
        target_name: Filter by project or platform name.
        status: Filter by status.
        limit: Maximum results to return.

    Returns:
        List of BuildRecord instances.
    """
    stmt = select(BuildRecord)

    if target_name is not None:
        stmt = stmt.where(BuildRecord.target_name == target_name)
    if status is not None:
        stmt = stmt.where(BuildRecord.status == status.value)

    stmt = stmt.order_by(BuildRecord.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


__all__ = [
    "BuildNotFoundError",
    "build_platform",
    "build_project",
    "get_build",
    "list_builds",
]
