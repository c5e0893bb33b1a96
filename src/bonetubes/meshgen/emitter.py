"""Per-bone tube geometry.

Each bone gets a tube running from its origin to its parent's position,
built directly in the bone's local space, moved into root space and
written into the bone's private slice of the shared output buffers.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from bonetubes.constants import DEGENERATE_AXIS_LENGTH, FALLBACK_AXIS_LENGTH
from bonetubes.core.math_utils import (
    Mat4, Vec3,
    batch_transform_directions, batch_transform_points, mat4_inverse, transform_point, vec3,
)
from bonetubes.meshgen.buffers import BoneBlock
from bonetubes.meshgen.errors import DegenerateFrameError, InvalidArgumentError
from bonetubes.meshgen.tessellation import TessellationTable


@dataclass(frozen=True)
class BoneFrame:
    """Resolved transform of one bone.

    parent_world_position is None for a bone without a parent.
    """
    local_to_world: Mat4
    parent_world_position: Optional[Vec3] = None

    def __post_init__(self):
        object.__setattr__(
            self, "local_to_world", np.asarray(self.local_to_world, dtype=np.float64)
        )
        if self.parent_world_position is not None:
            object.__setattr__(
                self, "parent_world_position",
                np.asarray(self.parent_world_position, dtype=np.float64),
            )

    @property
    def world_to_local(self) -> Mat4:
        return mat4_inverse(self.local_to_world)

    @property
    def world_position(self) -> Vec3:
        return self.local_to_world[:3, 3].copy()


def bone_axis(
    frame: BoneFrame,
    fallback_axis_length: Optional[float] = FALLBACK_AXIS_LENGTH,
    bone_index: int = 0,
    world_to_local: Optional[Mat4] = None,
) -> Vec3:
    """Vector from the bone's origin to its parent, in the bone's local space.

    Parentless bones, and bones sitting on their parent's origin, get
    ``(0, fallback_axis_length, 0)``. With the fallback disabled (None)
    those raise DegenerateFrameError.
    """
    if frame.parent_world_position is not None:
        if world_to_local is None:
            world_to_local = frame.world_to_local
        axis = transform_point(world_to_local, frame.parent_world_position)
        if np.linalg.norm(axis) >= DEGENERATE_AXIS_LENGTH:
            return axis
    if fallback_axis_length is None:
        raise DegenerateFrameError(bone_index)
    return vec3(0.0, fallback_axis_length, 0.0)


def emit_bone(
    bone_index: int,
    frame: BoneFrame,
    table: TessellationTable,
    radius: float,
    world_to_root: Mat4,
    root_to_world: Mat4,
    block: BoneBlock,
    vertex_offset: int,
    fallback_axis_length: Optional[float] = FALLBACK_AXIS_LENGTH,
) -> None:
    """Write one bone's tube into its block.

    Positions are ``local_to_root @ (height * axis + radius * ring)`` and
    normals the ring direction through the linear part of local_to_root.
    Every corner is bound to this bone alone with weight 1. Quads hold
    absolute vertex indices starting at ``vertex_offset``.
    """
    if not radius > 0:
        raise InvalidArgumentError(f"radius must be positive, got {radius!r}")

    world_to_local = frame.world_to_local
    axis = bone_axis(frame, fallback_axis_length, bone_index, world_to_local)
    local_to_root = world_to_root @ frame.local_to_world

    local = tube_points(axis, table, radius)
    block.positions[:] = batch_transform_points(local_to_root, local)
    block.normals[:] = batch_transform_directions(local_to_root, table.corner_normals)
    block.uvs[:] = table.corner_uvs
    block.colors[:] = table.corner_colors

    block.bone_indices[:] = 0
    block.bone_indices[:, 0] = bone_index
    block.bone_weights[:] = 0.0
    block.bone_weights[:, 0] = 1.0

    block.quads[:] = table.quad_corners + vertex_offset
    block.bind_pose[:] = world_to_local @ root_to_world


def tube_points(axis: Vec3, table: TessellationTable, radius: float) -> NDArray[np.float64]:
    """Bone-local corner positions: height along the axis plus the scaled ring."""
    return table.corner_heights[:, np.newaxis] * axis + radius * table.corner_rings
