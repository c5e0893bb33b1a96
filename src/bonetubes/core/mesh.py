"""Triangle geometry container (no GL dependencies)."""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray


@dataclass
class BufferGeometry:
    """Vertex attribute arrays of one triangle mesh.

    positions: flat float32 array (x, y, z per vertex)
    normals: flat float32 array
    indices: flat uint32 triangle index array, None for non-indexed geometry
    vertex_colors: optional flat float32 RGBA per vertex (0..1)
    """
    positions: NDArray[np.float32]
    normals: NDArray[np.float32]
    indices: Optional[NDArray[np.uint32]] = None
    vertex_count: int = 0
    vertex_colors: Optional[NDArray[np.float32]] = None

    def __post_init__(self):
        if self.vertex_count == 0:
            self.vertex_count = len(self.positions) // 3

    @property
    def triangle_count(self) -> int:
        if self.indices is not None:
            return len(self.indices) // 3
        return self.vertex_count // 3

    def get_bounds(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Axis-aligned (min, max) corners of the vertex positions."""
        pos = self.positions.reshape(-1, 3)
        return pos.min(axis=0).astype(np.float64), pos.max(axis=0).astype(np.float64)
