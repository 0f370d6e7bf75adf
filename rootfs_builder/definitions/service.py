"""Definition lookup service.

Resolves project, platform and recipe names to validated schemas. This is
the configuration loader the build pipeline consumes; lookup failures are
reported with the shared error taxonomy so callers can tell a missing
definition (NotFoundError) from a broken one (ConfigError).
"""

import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from rootfs_builder.config import get_settings
from rootfs_builder.definitions.io import find_definition_file, load_definition_data
from rootfs_builder.definitions.schema import (
    PlatformSchema,
    ProjectSchema,
    RecipeSchema,
)
from rootfs_builder.errors import ConfigError, NotFoundError

if TYPE_CHECKING:
    from rootfs_builder.config import Settings

logger = logging.getLogger(__name__)

# Definition names become path components
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]*$")

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def _load(
    schema: type[SchemaT], base_dir: Path, name: str, kind: str
) -> tuple[SchemaT, Path]:
    if not name or not NAME_PATTERN.match(name):
        raise ConfigError(f"Invalid {kind} name: '{name}'")

    path = find_definition_file(base_dir, name, kind)
    if path is None:
        raise NotFoundError(f"No such {kind}: {name}", code=f"{kind}_not_found")

    try:
        data = load_definition_data(path)
        definition = schema.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid {kind} definition {path}: {e}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot parse {kind} definition {path}: {e}") from e
    except ValueError as e:
        raise ConfigError(f"Invalid {kind} definition {path}: {e}") from e

    logger.debug("Loaded %s '%s' from %s", kind, name, path)
    return definition, path


def load_project(name: str, settings: "Settings | None" = None) -> ProjectSchema:
    """Load and validate a project definition.

    Args:
        name: Project name.
        settings: Application settings.

    Returns:
        Validated ProjectSchema.

    Raises:
        NotFoundError: If the project does not exist.
        ConfigError: If the definition is invalid.
    """
    if settings is None:
        settings = get_settings()
    project, _ = _load(ProjectSchema, settings.projects_dir, name, "project")
    return project


def load_platform(name: str, settings: "Settings | None" = None) -> PlatformSchema:
    """Load and validate a platform definition.

    A relative ``rootfs`` location is resolved against the directory of
    the platform definition.

    Args:
        name: Platform name.
        settings: Application settings.

    Returns:
        Validated PlatformSchema.

    Raises:
        NotFoundError: If the platform does not exist.
        ConfigError: If the definition is invalid.
    """
    if settings is None:
        settings = get_settings()
    platform, path = _load(PlatformSchema, settings.platforms_dir, name, "platform")
    if platform.rootfs and not Path(platform.rootfs).is_absolute():
        rootfs = (path.parent / platform.rootfs).resolve()
        platform = platform.model_copy(update={"rootfs": str(rootfs)})
    return platform


def load_recipe(name: str, settings: "Settings | None" = None) -> RecipeSchema:
    """Load and validate a recipe definition.

    Args:
        name: Recipe name.
        settings: Application settings.

    Returns:
        Validated RecipeSchema.

    Raises:
        NotFoundError: If the recipe does not exist.
        ConfigError: If the definition is invalid.
    """
    if settings is None:
        settings = get_settings()
    recipe, _ = _load(RecipeSchema, settings.recipes_dir, name, "recipe")
    return recipe


__all__ = [
    "NAME_PATTERN",
    "load_platform",
    "load_project",
    "load_recipe",
]
