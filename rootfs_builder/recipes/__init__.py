"""Recipe cache module.

This module handles:
- ORM model for cached recipe packages
- Staging cached package files into a rootfs
- Snapshotting installed packages back into the cache
"""

from rootfs_builder.recipes.models import RecipeCacheEntry

__all__ = ["RecipeCacheEntry"]

# RecipeCache lives in rootfs_builder.recipes.cache (imports the builds
# subpackage, which would make this package import circular)
