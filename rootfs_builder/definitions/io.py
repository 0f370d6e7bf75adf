"""Definition file loading.

This module provides helpers for reading project, platform and recipe
definitions from YAML or JSON files. Each definition lives in its own
directory, ``<base_dir>/<name>/<kind>.yaml`` (``.yml`` and ``.json`` are
accepted too).
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

DEFINITION_SUFFIXES = (".yaml", ".yml", ".json")

_PARSERS: dict[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.loads,
}


def load_definition_data(path: Path) -> dict[str, Any]:
    """Parse a definition file, choosing the parser by extension.

    An empty document is an empty definition.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If a YAML file cannot be parsed.
        json.JSONDecodeError: If a JSON file cannot be parsed.
        ValueError: If the extension is not supported or the document is
            not a mapping.
    """
    suffix = path.suffix.lower()
    parser = _PARSERS.get(suffix)
    if parser is None:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )

    text = path.read_text(encoding="utf-8")
    data = parser(text) if text.strip() else None
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping in {path}, got {type(data).__name__}")
    return data


def find_definition_file(base_dir: Path, name: str, kind: str) -> Path | None:
    """Locate the definition file of a named definition.

    Args:
        base_dir: Directory holding one subdirectory per definition.
        name: Definition name.
        kind: File stem (``project``, ``platform``, ``recipe``).

    Returns:
        Path to the first existing candidate, or None.
    """
    definition_dir = base_dir / name
    for suffix in DEFINITION_SUFFIXES:
        candidate = definition_dir / f"{kind}{suffix}"
        if candidate.is_file():
            return candidate
    return None


def list_definition_names(base_dir: Path, kind: str) -> list[str]:
    """List the names of all definitions of a kind under a directory.

    Args:
        base_dir: Directory holding one subdirectory per definition.
        kind: File stem (``project``, ``platform``, ``recipe``).

    Returns:
        Sorted definition names.
    """
    if not base_dir.is_dir():
        return []
    return sorted(
        entry.name
        for entry in base_dir.iterdir()
        if entry.is_dir() and find_definition_file(base_dir, entry.name, kind)
    )


__all__ = [
    "DEFINITION_SUFFIXES",
    "find_definition_file",
    "list_definition_names",
    "load_definition_data",
]
