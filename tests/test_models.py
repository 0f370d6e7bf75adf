"""Tests for ORM models and CRUD operations.

These tests verify the database models and basic CRUD operations using
an in-memory SQLite database.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from rootfs_builder.builds.models import BuildRecord
from rootfs_builder.db import (
    Base,
    create_all_tables,
    get_engine,
    get_session_factory,
    session_scope,
    sqlite_database_path,
)
from rootfs_builder.errors import ExecutionError
from rootfs_builder.recipes.models import RecipeCacheEntry
from rootfs_builder.types import BuildStatus


class TestDatabaseSetup:
    """Test database engine and table creation."""

    def test_create_all_tables(self):
        """create_all_tables should register every model table."""
        engine = get_engine("sqlite:///:memory:")
        create_all_tables(engine)
        assert "build_records" in Base.metadata.tables
        assert "recipe_cache_entries" in Base.metadata.tables

    def test_engine_creates_database_directory(self, tmp_path):
        """A file database should get its parent directory created."""
        db_path = tmp_path / "state" / "db.sqlite"
        engine = get_engine(f"sqlite:///{db_path}")
        create_all_tables(engine)
        assert db_path.parent.is_dir()

    def test_sqlite_database_path(self, tmp_path):
        """Only SQLite file databases have a path."""
        db_path = tmp_path / "db.sqlite"
        assert sqlite_database_path(f"sqlite:///{db_path}") == db_path
        assert sqlite_database_path("sqlite:///:memory:") is None
        assert sqlite_database_path("sqlite://") is None
        assert sqlite_database_path("postgresql://db/builds") is None

    def test_session_scope_commits(self, tmp_path):
        """session_scope should commit on success."""
        engine = get_engine(f"sqlite:///{tmp_path / 'db.sqlite'}")
        create_all_tables(engine)
        factory = get_session_factory(engine)

        with session_scope(factory) as session:
            session.add(BuildRecord(target_name="kiosk", target_kind="project"))

        with session_scope(factory) as session:
            assert session.query(BuildRecord).count() == 1

    def test_session_scope_rolls_back(self, tmp_path):
        """session_scope should roll back when the block raises."""
        engine = get_engine(f"sqlite:///{tmp_path / 'db.sqlite'}")
        create_all_tables(engine)
        factory = get_session_factory(engine)

        with pytest.raises(RuntimeError):
            with session_scope(factory) as session:
                session.add(BuildRecord(target_name="kiosk", target_kind="project"))
                session.flush()
                raise RuntimeError("boom")

        with session_scope(factory) as session:
            assert session.query(BuildRecord).count() == 0


class TestBuildRecord:
    """Test BuildRecord model."""

    def test_defaults(self, session):
        """A new record should be pending with a request timestamp."""
        record = BuildRecord(target_name="kiosk", target_kind="project", arch="armhf")
        session.add(record)
        session.commit()

        assert record.id is not None
        assert record.status == BuildStatus.PENDING.value
        assert record.requested_at is not None
        assert "kiosk" in repr(record)

    def test_lifecycle_success(self, session):
        """mark_running then mark_succeeded should set status and timestamps."""
        record = BuildRecord(target_name="kiosk", target_kind="project")
        session.add(record)
        record.mark_running()
        assert record.status == BuildStatus.RUNNING.value
        assert record.started_at is not None

        record.mark_succeeded("/srv/out/kiosk/rootfs")
        session.commit()
        assert record.is_succeeded()
        assert record.finished_at is not None
        assert record.rootfs_path == "/srv/out/kiosk/rootfs"
        assert record.duration is not None
        assert record.duration.total_seconds() >= 0

    def test_lifecycle_failure(self, session):
        """mark_failed should keep the error details."""
        record = BuildRecord(target_name="kiosk", target_kind="project")
        session.add(record)
        record.mark_running()
        error = ExecutionError("apt-get failed", command="apt-get install curl")
        record.mark_failed(error, stage="install_packages")
        session.commit()

        assert record.status == BuildStatus.FAILED.value
        assert not record.is_succeeded()
        assert record.failed_stage == "install_packages"
        assert record.error_type == "execution_error"
        assert record.error_message == "apt-get failed"

    def test_failure_without_code(self, session):
        """Errors without a code are recorded by class name."""
        record = BuildRecord(target_name="kiosk", target_kind="project")
        session.add(record)
        record.mark_failed(KeyboardInterrupt())

        assert record.error_type == "KeyboardInterrupt"
        assert record.error_message is None
        assert record.failed_stage is None
        assert record.duration is None


class TestRecipeCacheEntry:
    """Test RecipeCacheEntry model."""

    def test_create(self, session):
        """An entry should store its artifact location."""
        entry = RecipeCacheEntry(
            recipe_name="tools",
            package_name="curl",
            version="7.88.1-10",
            artifact_path="/cache/tools/curl_7.88.1-10_amd64.deb",
        )
        session.add(entry)
        session.commit()

        assert entry.id is not None
        assert entry.created_at is not None
        assert "curl" in repr(entry)

    def test_unique_per_recipe_and_package(self, session):
        """A recipe caches a package at most once."""
        for _ in range(2):
            session.add(
                RecipeCacheEntry(
                    recipe_name="tools",
                    package_name="curl",
                    artifact_path="/cache/tools/curl.deb",
                )
            )
        with pytest.raises(IntegrityError):
            session.commit()

    def test_same_package_in_two_recipes(self, session):
        """Different recipes may cache the same package."""
        for recipe in ("tools", "web"):
            session.add(
                RecipeCacheEntry(
                    recipe_name=recipe,
                    package_name="curl",
                    artifact_path=f"/cache/{recipe}/curl.deb",
                )
            )
        session.commit()
        assert session.query(RecipeCacheEntry).count() == 2
