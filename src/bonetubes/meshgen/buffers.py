"""Output buffers and per-bone offset bookkeeping.

Every buffer is allocated once, up front, from (bone_count, radial, lateral).
Bone ``i`` owns the half-open vertex range ``[i*Q, (i+1)*Q)`` with
``Q = lateral * radial * 4`` and the quad range ``[i*L*R, (i+1)*L*R)``.
Ranges never overlap, so bone tasks can write concurrently without locks.
"""

from dataclasses import dataclass, fields

import numpy as np
from numpy.typing import NDArray

from bonetubes.constants import MAX_BONE_INFLUENCES, VERTICES_PER_QUAD


@dataclass(frozen=True)
class OffsetPlan:
    """Disjoint buffer ranges for every bone."""
    bone_count: int
    radial_subdivisions: int
    lateral_subdivisions: int

    @property
    def quads_per_bone(self) -> int:
        return self.lateral_subdivisions * self.radial_subdivisions

    @property
    def vertices_per_bone(self) -> int:
        return self.quads_per_bone * VERTICES_PER_QUAD

    @property
    def vertex_count(self) -> int:
        return self.bone_count * self.vertices_per_bone

    @property
    def quad_count(self) -> int:
        return self.bone_count * self.quads_per_bone

    def vertex_offset(self, bone_index: int) -> int:
        return bone_index * self.vertices_per_bone

    def quad_offset(self, bone_index: int) -> int:
        return bone_index * self.quads_per_bone

    def vertex_range(self, bone_index: int) -> range:
        start = self.vertex_offset(bone_index)
        return range(start, start + self.vertices_per_bone)

    def quad_range(self, bone_index: int) -> range:
        start = self.quad_offset(bone_index)
        return range(start, start + self.quads_per_bone)


@dataclass
class BoneBlock:
    """Views onto one bone's private slice of every output buffer."""
    positions: NDArray[np.float32]
    normals: NDArray[np.float32]
    uvs: NDArray[np.float32]
    colors: NDArray[np.float32]
    bone_indices: NDArray[np.int32]
    bone_weights: NDArray[np.float32]
    quads: NDArray[np.uint32]
    bind_pose: NDArray[np.float64]


@dataclass
class OutputBuffers:
    """Structure-of-arrays output of one kernel invocation.

    positions, normals: (V, 3) float32 in root space
    uvs: (V, 2) float32
    colors: (V, 4) float32
    bone_indices: (V, 4) int32, bone_weights: (V, 4) float32
    quads: (Q, 4) uint32 absolute vertex indices
    bind_poses: (N, 4, 4) float64
    """
    positions: NDArray[np.float32]
    normals: NDArray[np.float32]
    uvs: NDArray[np.float32]
    colors: NDArray[np.float32]
    bone_indices: NDArray[np.int32]
    bone_weights: NDArray[np.float32]
    quads: NDArray[np.uint32]
    bind_poses: NDArray[np.float64]

    @classmethod
    def allocate(cls, plan: OffsetPlan) -> "OutputBuffers":
        v = plan.vertex_count
        return cls(
            positions=np.zeros((v, 3), dtype=np.float32),
            normals=np.zeros((v, 3), dtype=np.float32),
            uvs=np.zeros((v, 2), dtype=np.float32),
            colors=np.zeros((v, 4), dtype=np.float32),
            bone_indices=np.zeros((v, MAX_BONE_INFLUENCES), dtype=np.int32),
            bone_weights=np.zeros((v, MAX_BONE_INFLUENCES), dtype=np.float32),
            quads=np.zeros((plan.quad_count, VERTICES_PER_QUAD), dtype=np.uint32),
            bind_poses=np.zeros((plan.bone_count, 4, 4), dtype=np.float64),
        )

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def quad_count(self) -> int:
        return len(self.quads)

    def block(self, plan: OffsetPlan, bone_index: int) -> BoneBlock:
        """Return views (not copies) onto bone_index's ranges."""
        vr = plan.vertex_range(bone_index)
        qr = plan.quad_range(bone_index)
        vs = slice(vr.start, vr.stop)
        qs = slice(qr.start, qr.stop)
        return BoneBlock(
            positions=self.positions[vs],
            normals=self.normals[vs],
            uvs=self.uvs[vs],
            colors=self.colors[vs],
            bone_indices=self.bone_indices[vs],
            bone_weights=self.bone_weights[vs],
            quads=self.quads[qs],
            bind_pose=self.bind_poses[bone_index],
        )

    def freeze(self) -> "OutputBuffers":
        """Make every array read-only before handing the buffers out."""
        for f in fields(self):
            getattr(self, f.name).setflags(write=False)
        return self
