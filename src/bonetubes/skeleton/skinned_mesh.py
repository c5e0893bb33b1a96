"""Assemble kernel output into a skinned mesh and pose it with its skeleton."""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from bonetubes.constants import MAX_BONE_INFLUENCES
from bonetubes.core.math_utils import Mat4
from bonetubes.core.mesh import BufferGeometry
from bonetubes.core.scene_graph import SceneNode
from bonetubes.meshgen.kernel import BoneTubeMesh

logger = logging.getLogger(__name__)


@dataclass
class SkinnedMesh:
    """A quad mesh bound to a list of bones.

    geometry holds root-space positions/normals and a triangulated index
    buffer; ``quads`` keeps the untriangulated 4-tuples. Vertex ``v`` is
    influenced by ``bone_indices[v, k]`` with ``bone_weights[v, k]``;
    zero-weight slots mean no influence.
    """
    name: str
    geometry: BufferGeometry
    quads: NDArray[np.uint32]
    uvs: NDArray[np.float32]
    bone_indices: NDArray[np.int32]
    bone_weights: NDArray[np.float32]
    bind_poses: NDArray[np.float64]
    world_to_root: Mat4
    bone_names: list[str] = field(default_factory=list)

    @property
    def bone_count(self) -> int:
        return len(self.bind_poses)

    @property
    def root_bone(self) -> Optional[str]:
        return self.bone_names[0] if self.bone_names else None

    @property
    def rest_positions(self) -> NDArray[np.float32]:
        return self.geometry.positions.reshape(-1, 3)

    @property
    def rest_normals(self) -> NDArray[np.float32]:
        return self.geometry.normals.reshape(-1, 3)


def quads_to_triangles(quads: NDArray) -> NDArray[np.uint32]:
    """Split each quad (a, b, c, d) into triangles (a, b, c) and (a, c, d)."""
    quads = np.asarray(quads).reshape(-1, 4)
    tris = np.empty((len(quads) * 2, 3), dtype=np.uint32)
    tris[0::2] = quads[:, [0, 1, 2]]
    tris[1::2] = quads[:, [0, 2, 3]]
    return tris


def build_skinned_mesh(
    result: BoneTubeMesh,
    bones: Sequence[SceneNode],
    name: str = "bone_tubes",
) -> SkinnedMesh:
    """Wrap the kernel buffers (without copying them) as a SkinnedMesh.

    ``bones[i]`` must be the node that produced bone frame ``i``.
    """
    if len(bones) != result.bone_count:
        raise ValueError(
            f"Mesh was generated for {result.bone_count} bones, got {len(bones)}"
        )
    buf = result.buffers
    geometry = BufferGeometry(
        positions=buf.positions.reshape(-1),
        normals=buf.normals.reshape(-1),
        indices=quads_to_triangles(buf.quads).reshape(-1),
        vertex_count=buf.vertex_count,
        vertex_colors=buf.colors.reshape(-1),
    )
    mesh = SkinnedMesh(
        name=name,
        geometry=geometry,
        quads=buf.quads,
        uvs=buf.uvs,
        bone_indices=buf.bone_indices,
        bone_weights=buf.bone_weights,
        bind_poses=buf.bind_poses,
        world_to_root=result.world_to_root,
        bone_names=[b.name for b in bones],
    )
    logger.debug(
        "Skinned mesh %s: %d vertices, %d triangles, %d bones",
        name, geometry.vertex_count, geometry.triangle_count, mesh.bone_count,
    )
    return mesh


def skin_matrices(
    mesh: SkinnedMesh,
    bones: Sequence[SceneNode],
    world_to_root: Optional[Mat4] = None,
) -> NDArray[np.float64]:
    """Per-bone (N, 4, 4) matrices taking rest root-space vertices to posed root space.

    Bone world matrices must already be up to date.
    """
    if len(bones) != mesh.bone_count:
        raise ValueError(f"Expected {mesh.bone_count} bones, got {len(bones)}")
    if world_to_root is None:
        world_to_root = mesh.world_to_root
    bone_world = np.stack([b.world_matrix for b in bones])
    return world_to_root @ bone_world @ mesh.bind_poses


def deform(
    mesh: SkinnedMesh,
    bones: Sequence[SceneNode],
    world_to_root: Optional[Mat4] = None,
) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
    """Linear blend skinning of the rest mesh by the bones' current pose.

    Returns (V, 3) positions and normals in root space.
    """
    mats = skin_matrices(mesh, bones, world_to_root)
    rest_p = mesh.rest_positions.astype(np.float64)
    rest_n = mesh.rest_normals.astype(np.float64)

    positions = np.zeros_like(rest_p)
    normals = np.zeros_like(rest_n)
    for slot in range(MAX_BONE_INFLUENCES):
        w = mesh.bone_weights[:, slot].astype(np.float64)
        if not np.any(w):
            continue
        m = mats[mesh.bone_indices[:, slot]]  # (V, 4, 4)
        p = np.einsum("vij,vj->vi", m[:, :3, :3], rest_p) + m[:, :3, 3]
        n = np.einsum("vij,vj->vi", m[:, :3, :3], rest_n)
        positions += w[:, np.newaxis] * p
        normals += w[:, np.newaxis] * n

    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    normals /= np.maximum(lengths, 1e-10)
    return positions.astype(np.float32), normals.astype(np.float32)
