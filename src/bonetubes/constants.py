"""Shared constants and paths for bonetubes."""

from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
ASSETS_DIR = PROJECT_ROOT / "assets"
CONFIG_DIR = ASSETS_DIR / "config"
SKELETON_CONFIG_DIR = CONFIG_DIR / "skeleton"

# Tube mesh defaults
DEFAULT_RADIUS = 0.01
DEFAULT_RADIAL_SUBDIVISIONS = 6
DEFAULT_LATERAL_SUBDIVISIONS = 3
MIN_RADIAL_SUBDIVISIONS = 3
MIN_LATERAL_SUBDIVISIONS = 1

# Axis used for parentless bones and bones sitting on their parent's origin.
# Tunable: only the visual length of root tubes depends on it.
FALLBACK_AXIS_LENGTH = 0.01
# Below this length a bone axis counts as degenerate.
DEGENERATE_AXIS_LENGTH = 1e-9

# Skinning layout
MAX_BONE_INFLUENCES = 4
VERTICES_PER_QUAD = 4

# Parallel dispatch defaults (tuning only, never affects output)
DEFAULT_WORKERS = 4
DEFAULT_BATCH_SIZE = 16

# Config file names
TUBE_MESH_CONFIG = "tube_mesh.json"
