"""Build job working directories.

A job owns one private directory for the lifetime of a single build
attempt. Directory names combine a timestamp and a random token and are
created with an exclusive mkdir, so two jobs never share a directory even
when acquired concurrently.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType

from rootfs_builder.builds.runner import run_command
from rootfs_builder.errors import ResourceError

logger = logging.getLogger(__name__)

LOG_FILENAME = "build.log"


class BuildJob:
    """An exclusively owned working directory for one build attempt."""

    def __init__(self, job_id: str, path: Path) -> None:
        self.job_id = job_id
        self.path = path
        self.released = False

    def __repr__(self) -> str:
        return f"<BuildJob(id='{self.job_id}', path='{self.path}')>"

    def __enter__(self) -> BuildJob:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    @property
    def log_path(self) -> Path:
        """Build log collecting the output of the job's commands."""
        return self.path / LOG_FILENAME

    @classmethod
    def acquire(cls, jobs_dir: Path) -> BuildJob:
        """Create a fresh, empty job directory under ``jobs_dir``.

        Args:
            jobs_dir: Root directory for job working directories.

        Returns:
            The acquired BuildJob.

        Raises:
            ResourceError: If the directory cannot be created.
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        job_id = f"{timestamp}_{uuid.uuid4().hex[:8]}"
        path = jobs_dir / job_id

        try:
            jobs_dir.mkdir(parents=True, exist_ok=True)
            path.mkdir(mode=0o755)
        except OSError as e:
            raise ResourceError(
                f"Cannot create job directory {path}: {e}",
                code="job_create_error",
            ) from e

        logger.info("Acquired job %s at %s", job_id, path)
        return cls(job_id, path)

    def release(self) -> None:
        """Remove the job directory recursively.

        Calling this on a released job is a no-op.
        """
        if self.released:
            return
        if self.path.exists():
            run_command(["rm", "-fr", str(self.path)])
        self.released = True
        logger.info("Released job %s", self.job_id)


__all__ = ["BuildJob", "LOG_FILENAME"]
