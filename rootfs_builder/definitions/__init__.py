"""Definition management module.

This module handles:
- Validation schemas for projects, platforms and recipes
- Loading definitions from YAML/JSON files
- Name-based lookup with NotFoundError/ConfigError reporting
"""

from rootfs_builder.definitions.io import (
    find_definition_file,
    list_definition_names,
    load_definition_data,
)
from rootfs_builder.definitions.schema import (
    ANY_VERSION,
    PlatformSchema,
    ProjectSchema,
    RecipeSchema,
)
from rootfs_builder.definitions.service import (
    load_platform,
    load_project,
    load_recipe,
)

__all__ = [
    "ANY_VERSION",
    "PlatformSchema",
    "ProjectSchema",
    "RecipeSchema",
    "find_definition_file",
    "list_definition_names",
    "load_definition_data",
    "load_platform",
    "load_project",
    "load_recipe",
]
