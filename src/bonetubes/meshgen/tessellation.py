"""Unit-cylinder sample tables shared read-only by every bone task.

Besides the raw radial/lateral samples, the table carries the per-corner
layout of one bone's quads (which samples each emitted vertex uses, plus
its uv and colour). None of it depends on a bone's frame, so it is built
once per kernel invocation and every bone task reads it without copying.
"""

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from bonetubes.constants import (
    MIN_LATERAL_SUBDIVISIONS, MIN_RADIAL_SUBDIVISIONS, VERTICES_PER_QUAD,
)
from bonetubes.meshgen.errors import InvalidArgumentError


@dataclass(frozen=True)
class TessellationTable:
    """Radial and lateral samples of a unit cylinder.

    radial_samples: (R, 2) unit vectors, sample i = (sin(2πi/R), cos(2πi/R))
    lateral_samples: (L + 1,) scalars, sample i = i / L

    Per-corner arrays cover the L*R*4 vertices of one bone, quads ordered
    lateral-major, corners in (nextRadial, lateral), (radial, lateral),
    (radial, nextLateral), (nextRadial, nextLateral) order:

    corner_radial: (V,) wrapped radial sample index
    corner_lateral: (V,) lateral sample index
    corner_rings: (V, 3) radial sample swizzled to (x, 0, y)
    corner_heights: (V,) lateral sample value
    corner_normals: (V, 3) normalized ring direction
    corner_uvs: (V, 2) float32
    corner_colors: (V, 4) float32 checkerboard
    quad_corners: (L*R, 4) bone-local vertex index of each quad corner

    The emitter never reads corner_radial or corner_lateral; they stay on
    the table so its layout can be inspected corner by corner.
    """
    radial_samples: NDArray[np.float64]
    lateral_samples: NDArray[np.float64]
    radial_subdivisions: int
    lateral_subdivisions: int
    corner_radial: NDArray[np.int64]
    corner_lateral: NDArray[np.int64]
    corner_rings: NDArray[np.float64]
    corner_heights: NDArray[np.float64]
    corner_normals: NDArray[np.float64]
    corner_uvs: NDArray[np.float32]
    corner_colors: NDArray[np.float32]
    quad_corners: NDArray[np.int64]

    @property
    def quad_count(self) -> int:
        return self.radial_subdivisions * self.lateral_subdivisions

    @property
    def vertex_count(self) -> int:
        return self.quad_count * VERTICES_PER_QUAD


def _check_count(name: str, value, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise InvalidArgumentError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise InvalidArgumentError(f"{name} must be >= {minimum}, got {value}")


def validate_subdivisions(radial_subdivisions: int, lateral_subdivisions: int) -> None:
    _check_count("radial_subdivisions", radial_subdivisions, MIN_RADIAL_SUBDIVISIONS)
    _check_count("lateral_subdivisions", lateral_subdivisions, MIN_LATERAL_SUBDIVISIONS)


def build_tessellation(radial_subdivisions: int, lateral_subdivisions: int) -> TessellationTable:
    """Build the sample tables for the given subdivision counts."""
    validate_subdivisions(radial_subdivisions, lateral_subdivisions)
    R = int(radial_subdivisions)
    L = int(lateral_subdivisions)

    angles = np.arange(R, dtype=np.float64) * (2 * math.pi / R)
    radial = np.column_stack([np.sin(angles), np.cos(angles)])
    lateral = np.arange(L + 1, dtype=np.float64) / L

    # Quad grid, lateral-major
    lat = np.repeat(np.arange(L), R)
    rad = np.tile(np.arange(R), L)
    next_rad = (rad + 1) % R
    next_lat = lat + 1

    corner_radial = np.stack([next_rad, rad, rad, next_rad], axis=1).ravel()
    corner_lateral = np.stack([lat, lat, next_lat, next_lat], axis=1).ravel()
    # uv u runs past the seam to 1.0 instead of wrapping back to 0
    corner_u = np.stack([rad + 1, rad, rad, rad + 1], axis=1).ravel()

    ring = radial[corner_radial]
    corner_rings = np.column_stack([ring[:, 0], np.zeros(len(ring)), ring[:, 1]])
    lengths = np.linalg.norm(corner_rings, axis=1, keepdims=True)
    corner_normals = corner_rings / np.maximum(lengths, 1e-10)

    corner_uvs = np.column_stack([corner_u / R, corner_lateral / L]).astype(np.float32)
    corner_colors = np.column_stack([
        corner_radial % 2,
        corner_lateral % 2,
        (corner_radial + 1) % 2,
        (corner_lateral + 1) % 2,
    ]).astype(np.float32)

    quad_corners = np.arange(L * R * VERTICES_PER_QUAD).reshape(-1, VERTICES_PER_QUAD)

    table = TessellationTable(
        radial_samples=radial,
        lateral_samples=lateral,
        radial_subdivisions=R,
        lateral_subdivisions=L,
        corner_radial=corner_radial,
        corner_lateral=corner_lateral,
        corner_rings=corner_rings,
        corner_heights=lateral[corner_lateral],
        corner_normals=corner_normals,
        corner_uvs=corner_uvs,
        corner_colors=corner_colors,
        quad_corners=quad_corners,
    )
    for value in vars(table).values():
        if isinstance(value, np.ndarray):
            value.setflags(write=False)
    return table
