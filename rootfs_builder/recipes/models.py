"""Recipe cache ORM models."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from rootfs_builder.db import Base


class RecipeCacheEntry(Base):
    """ORM model for one cached package artifact of a recipe.

    Entries are only rewritten when their artifact file disappeared from
    the store; a recipe's cache only grows.

    Attributes:
        id: Primary key.
        recipe_name: Name of the owning recipe.
        package_name: Debian package name.
        version: Version of the cached package, when known.
        artifact_path: Absolute path of the cached .deb file.
        created_at: Timestamp when the entry was recorded.
    """

    __tablename__ = "recipe_cache_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    recipe_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    package_name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str | None] = mapped_column(String(255), nullable=True)
    artifact_path: Mapped[str] = mapped_column(String(500), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "recipe_name", "package_name", name="uq_recipe_cache_entries_package"
        ),
    )

    def __repr__(self) -> str:
        """Return string representation of RecipeCacheEntry."""
        return (
            f"<RecipeCacheEntry(recipe='{self.recipe_name}', "
            f"package='{self.package_name}', version='{self.version}')>"
        )


__all__ = ["RecipeCacheEntry"]
