"""Build ORM models.

This module defines the BuildRecord model storing one row per build
attempt of a project or derived platform.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from rootfs_builder.db import Base
from rootfs_builder.types import BuildStatus


class BuildRecord(Base):
    """ORM model for build attempts.

    Attributes:
        id: Primary key.
        target_name: Name of the project or platform being built.
        target_kind: Kind of target (project, platform).
        arch: Architecture identifier of the rootfs.
        status: Build status (pending, running, succeeded, failed).
        requested_at: Timestamp when build was requested.
        started_at: Timestamp when the pipeline started.
        finished_at: Timestamp when the pipeline finished.
        job_id: Identifier of the job working directory.
        rootfs_path: Published rootfs location (on success).
        log_path: Path to the job build log (removed with the job).
        failed_stage: Stage that raised the error if build failed.
        error_type: Error code if build failed.
        error_message: Error message if build failed.
    """

    __tablename__ = "build_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    target_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    target_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    arch: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BuildStatus.PENDING.value, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Paths
    job_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rootfs_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Error tracking
    failed_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_build_records_target_status", "target_name", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<BuildRecord(id={self.id}, target='{self.target_kind}:"
            f"{self.target_name}', status='{self.status}')>"
        )

    @property
    def duration(self) -> timedelta | None:
        """Time from the first stage to the end of the build, once finished."""
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def mark_running(self) -> None:
        self.status = BuildStatus.RUNNING.value
        self.started_at = datetime.now(timezone.utc)

    def mark_succeeded(self, rootfs_path: str | None = None) -> None:
        """Finish the build successfully, keeping the published location."""
        self.status = BuildStatus.SUCCEEDED.value
        self.finished_at = datetime.now(timezone.utc)
        if rootfs_path is not None:
            self.rootfs_path = rootfs_path

    def mark_failed(self, error: BaseException, stage: str | None = None) -> None:
        """Finish the build with the error that stopped it.

        The error type is the error's ``code`` when it has one (every
        RootfsBuilderError does), otherwise its class name.

        Args:
            error: First error raised by a stage.
            stage: Name of the stage that raised it.
        """
        self.status = BuildStatus.FAILED.value
        self.finished_at = datetime.now(timezone.utc)
        self.failed_stage = stage
        self.error_type = getattr(error, "code", None) or type(error).__name__
        self.error_message = str(error) or None

    def is_succeeded(self) -> bool:
        return self.status == BuildStatus.SUCCEEDED.value


__all__ = ["BuildRecord"]
