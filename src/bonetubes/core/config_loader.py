"""JSON config file loading utilities."""

import json
from pathlib import Path
from typing import Any

from bonetubes.constants import CONFIG_DIR, SKELETON_CONFIG_DIR


def load_json(path: Path) -> Any:
    """Load and return parsed JSON from a file."""
    with open(path) as f:
        return json.load(f)


def load_config(name: str) -> Any:
    """Load a config file from assets/config/."""
    return load_json(CONFIG_DIR / name)


def load_skeleton_config(name: str) -> Any:
    """Load a skeleton definition from assets/config/skeleton/.

    ``name`` may also be a path to a JSON file anywhere on disk.
    """
    path = Path(name)
    if path.suffix == ".json" and path.is_file():
        return load_json(path)
    return load_json(SKELETON_CONFIG_DIR / name)
