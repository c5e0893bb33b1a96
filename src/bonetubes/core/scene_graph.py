"""Bone hierarchy with hierarchical transforms, mirroring Three.js group structure."""

from typing import Iterator, Optional

from bonetubes.core.math_utils import (
    Mat4, Vec3, Quat,
    mat4_identity, mat4_compose, mat4_inverse, quat_identity, vec3,
)


class SceneNode:
    """A node (bone) in the transform hierarchy.

    Mirrors Three.js Object3D: position, quaternion, scale → local matrix.
    World matrix = parent.world_matrix @ local_matrix.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self.parent: Optional["SceneNode"] = None
        self.children: list["SceneNode"] = []

        # Transform
        self.position: Vec3 = vec3()
        self.quaternion: Quat = quat_identity()
        self.scale: Vec3 = vec3(1, 1, 1)

        # Matrices
        self.local_matrix: Mat4 = mat4_identity()
        self.world_matrix: Mat4 = mat4_identity()

        # Dirty flag for matrix updates
        self._matrix_dirty: bool = True

    def add(self, child: "SceneNode") -> "SceneNode":
        """Add a child node. Removes from previous parent if any."""
        if child.parent is not None:
            child.parent.remove(child)
        child.parent = self
        self.children.append(child)
        child._matrix_dirty = True
        return self

    def remove(self, child: "SceneNode") -> "SceneNode":
        """Remove a child node."""
        if child in self.children:
            self.children.remove(child)
            child.parent = None
        return self

    def set_position(self, x: float, y: float, z: float) -> "SceneNode":
        self.position = vec3(x, y, z)
        self._matrix_dirty = True
        return self

    def set_quaternion(self, q: Quat) -> "SceneNode":
        self.quaternion = q.copy()
        self._matrix_dirty = True
        return self

    def set_scale(self, x: float, y: float, z: float) -> "SceneNode":
        self.scale = vec3(x, y, z)
        self._matrix_dirty = True
        return self

    def update_local_matrix(self) -> None:
        """Recompute local matrix from position, quaternion, scale."""
        self.local_matrix = mat4_compose(self.position, self.quaternion, self.scale)
        self._matrix_dirty = False

    def update_world_matrix(self, force: bool = False) -> None:
        """Update world matrices for this node and all descendants.

        Walks parents before children, so every parent matrix is current
        by the time its children read it.
        """
        for node in self:
            if node._matrix_dirty or force:
                node.update_local_matrix()
            if node.parent is not None:
                node.world_matrix = node.parent.world_matrix @ node.local_matrix
            else:
                node.world_matrix = node.local_matrix.copy()

    def __iter__(self) -> Iterator["SceneNode"]:
        """This node and all descendants, depth-first, parents before children."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def traverse(self, callback) -> None:
        for node in self:
            callback(node)

    @property
    def depth(self) -> int:
        """Number of ancestors."""
        depth = 0
        node = self.parent
        while node is not None:
            depth += 1
            node = node.parent
        return depth

    def find(self, name: str) -> Optional["SceneNode"]:
        """First node named ``name`` in depth-first order, or None."""
        return next((node for node in self if node.name == name), None)

    def get_world_position(self) -> Vec3:
        """Extract world position from world matrix."""
        return self.world_matrix[:3, 3].copy()

    def world_to_local(self) -> Mat4:
        return mat4_inverse(self.world_matrix)

    def parent_world_position(self) -> Optional[Vec3]:
        """World origin of the parent bone, None for a root."""
        if self.parent is None:
            return None
        return self.parent.get_world_position()

    def mark_dirty(self) -> None:
        """Mark this node and all descendants as needing matrix update."""
        for node in self:
            node._matrix_dirty = True


class Skeleton(SceneNode):
    """Root node of a bone hierarchy."""

    def __init__(self, name: str = "skeleton"):
        super().__init__(name=name)

    def update(self) -> None:
        """Update all world matrices in the hierarchy."""
        self.update_world_matrix(force=False)

    def bone_count(self) -> int:
        return sum(1 for _ in self)
