"""Service catalog loading.

This module provides helpers for loading the service catalog from YAML or
JSON files. Catalog files hold either a ``services:`` list or a bare list
of descriptors.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from monoship.catalog.schema import ServiceCatalog
from monoship.errors import ConfigurationError


def load_yaml(path: Path) -> Any:
    """Load a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_json(path: Path) -> Any:
    """Load a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _format_validation_error(error: ValidationError) -> list[str]:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        problems.append(f"{location}: {item['msg']}" if location else item["msg"])
    return problems


def parse_catalog_data(data: Any) -> ServiceCatalog:
    """Parse and validate catalog data.

    Args:
        data: Mapping with a ``services`` key, a bare list, or None.

    Returns:
        Validated ServiceCatalog.

    Raises:
        ConfigurationError: If the data does not match the schema.
    """
    if data is None:
        data = {"services": []}
    elif isinstance(data, list):
        data = {"services": data}
    elif not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a mapping or list of services, got {type(data).__name__}"
        )

    try:
        return ServiceCatalog.model_validate(data)
    except ValidationError as e:
        problems = _format_validation_error(e)
        raise ConfigurationError(
            f"Invalid service catalog ({len(problems)} problem(s))",
            problems=problems,
        ) from e


def load_catalog(path: Path) -> ServiceCatalog:
    """Load and validate a catalog file (YAML or JSON by extension).

    Args:
        path: Path to the catalog file.

    Returns:
        Validated ServiceCatalog.

    Raises:
        ConfigurationError: If the file is missing, unreadable, has an
            unsupported extension, or does not validate.
    """
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = load_yaml(path)
        elif suffix == ".json":
            data = load_json(path)
        else:
            raise ConfigurationError(
                f"Unsupported catalog format: {suffix} (use .yaml, .yml or .json)"
            )
    except FileNotFoundError as e:
        raise ConfigurationError(f"Catalog file not found: {path}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Catalog file {path} is not parseable: {e}") from e
    return parse_catalog_data(data)


def dump_catalog(catalog: ServiceCatalog) -> str:
    """Render a catalog as YAML, omitting unset fields."""
    data = catalog.model_dump(mode="json", exclude_none=True)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


__all__ = ["dump_catalog", "load_catalog", "parse_catalog_data"]
