"""
Per-install configuration files.

A YAML template bundled with the package is copied into the host's data
directory the first time it is requested, then loaded from there so the
operator can edit it.
"""

from __future__ import annotations

import logging
import shutil
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

RESOURCE_PACKAGE = "stackutils.resources"


def read_resource_text(resource_name: str) -> Optional[str]:
    """Return the text of a packaged resource, or None if it is not bundled"""
    if not resource_name:
        raise ValueError("resource_name cannot be empty")

    resource = resources.files(RESOURCE_PACKAGE).joinpath(resource_name.replace("\\", "/"))
    if not resource.is_file():
        return None
    return resource.read_text(encoding="utf-8")


def save_resource(data_dir: Union[str, Path], resource_name: str) -> Path:
    """
    Copy a packaged resource into ``data_dir`` unless it already exists.

    Raises:
        ValueError: if the resource is not bundled with the package
    """
    if not resource_name:
        raise ValueError("resource_name cannot be empty")

    resource_name = resource_name.replace("\\", "/")
    resource = resources.files(RESOURCE_PACKAGE).joinpath(resource_name)
    if not resource.is_file():
        raise ValueError(f"The embedded resource '{resource_name}' cannot be found")

    out_file = Path(data_dir) / resource_name
    if out_file.exists():
        logger.warning(f"Could not save {resource_name} to {out_file} because it already exists")
        return out_file

    out_file.parent.mkdir(parents=True, exist_ok=True)
    with resource.open("rb") as src, open(out_file, "wb") as dst:
        shutil.copyfileobj(src, dst)

    logger.info(f"Saved {resource_name} to {out_file}")
    return out_file


def get_custom_config(data_dir: Union[str, Path], config_name: str) -> Optional[Dict[str, Any]]:
    """
    Load a YAML configuration file from ``data_dir``, creating it from the
    bundled template of the same name when it does not exist yet.

    Returns:
        The parsed mapping, or None if the file could not be created or read
    """
    config_file = Path(data_dir) / config_name
    try:
        if not config_file.exists():
            save_resource(data_dir, config_name)

        with open(config_file, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"An error occurred while loading {config_name}: {e}", exc_info=True)
        return None

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        logger.error(f"{config_name} must contain a mapping, got {type(loaded).__name__}")
        return None
    return loaded
