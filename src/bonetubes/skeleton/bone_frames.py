"""Flatten a bone hierarchy into the ordered frames the mesh kernel consumes."""

import logging
from typing import Any

from bonetubes.core.config_loader import load_skeleton_config
from bonetubes.core.math_utils import deg_to_rad, quat_from_euler
from bonetubes.core.scene_graph import SceneNode, Skeleton
from bonetubes.meshgen.emitter import BoneFrame

logger = logging.getLogger(__name__)


def collect_bones(root: SceneNode) -> list[SceneNode]:
    """All nodes under root, depth-first, root first."""
    return list(root)


def resolve_bone_frames(root: SceneNode) -> tuple[list[SceneNode], list[BoneFrame]]:
    """Update world matrices and resolve one BoneFrame per node.

    Bone i of the result is ``nodes[i]``. Each frame's parent position is
    its parent's world origin; a root without a parent gets None.
    """
    root.update_world_matrix(force=True)
    nodes = collect_bones(root)
    frames = []
    for node in nodes:
        frames.append(BoneFrame(
            local_to_world=node.world_matrix.copy(),
            parent_world_position=node.parent_world_position(),
        ))
    logger.debug("Resolved %d bone frames under %s", len(frames), root.name)
    return nodes, frames


def build_skeleton(defs: Any) -> Skeleton:
    """Build a Skeleton from bone definition dicts.

    ``defs`` is a list of dicts (or a dict with a ``bones`` list) with keys
    ``name``, ``parent`` (omitted for the root), ``position``, and optional
    ``rotation_deg`` (XYZ Euler) and ``scale``. Parents must be defined
    before their children and exactly one bone may lack a parent.
    """
    if isinstance(defs, dict):
        defs = defs.get("bones", [])
    if not defs:
        raise ValueError("Skeleton definition has no bones")

    skeleton = None
    by_name: dict[str, SceneNode] = {}
    for defn in defs:
        name = defn["name"]
        if name in by_name:
            raise ValueError(f"Duplicate bone name: {name!r}")
        parent_name = defn.get("parent")
        if parent_name is None:
            if skeleton is not None:
                raise ValueError(f"Second root bone: {name!r}")
            node = skeleton = Skeleton(name=name)
        else:
            parent = by_name.get(parent_name)
            if parent is None:
                raise ValueError(f"Bone {name!r} references unknown parent {parent_name!r}")
            node = SceneNode(name=name)
            parent.add(node)

        node.set_position(*defn.get("position", (0.0, 0.0, 0.0)))
        if "rotation_deg" in defn:
            rx, ry, rz = (deg_to_rad(a) for a in defn["rotation_deg"])
            node.set_quaternion(quat_from_euler(rx, ry, rz))
        if "scale" in defn:
            node.set_scale(*defn["scale"])
        by_name[name] = node

    if skeleton is None:
        raise ValueError("Skeleton definition has no root bone")
    skeleton.update()
    logger.info("Built skeleton %s with %d bones", skeleton.name, len(by_name))
    return skeleton


def load_skeleton(name: str) -> Skeleton:
    """Build a skeleton from assets/config/skeleton/<name> or a JSON path."""
    return build_skeleton(load_skeleton_config(name))
