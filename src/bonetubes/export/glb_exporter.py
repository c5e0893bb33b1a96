"""Export a skinned bone tube mesh to GLB (binary glTF 2.0).

GLB format:
  12-byte header | JSON chunk | BIN chunk

The mesh becomes one skinned primitive with:
  - POSITION / NORMAL accessors (vec3 float32, root space)
  - TEXCOORD_0 (vec2 float32), COLOR_0 (vec4 float32)
  - JOINTS_0 (vec4 uint16), WEIGHTS_0 (vec4 float32)
  - indices accessor (scalar uint32, quads split into counter-clockwise
    triangles)

Bones become a joint node hierarchy carrying their local matrices, and
the skin's inverseBindMatrices are the mesh bind poses. glTF matrices are
column-major, numpy's are row-major, so every matrix is written transposed.
"""

import json
import struct
import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from bonetubes.core.scene_graph import SceneNode
from bonetubes.skeleton.skinned_mesh import SkinnedMesh

logger = logging.getLogger(__name__)

# glTF constants
GLTF_FLOAT = 5126       # GL_FLOAT
GLTF_UNSIGNED_SHORT = 5123  # GL_UNSIGNED_SHORT
GLTF_UNSIGNED_INT = 5125  # GL_UNSIGNED_INT
GLTF_ARRAY_BUFFER = 34962
GLTF_ELEMENT_ARRAY_BUFFER = 34963

GLB_MAGIC = 0x46546C67
GLB_CHUNK_JSON = 0x4E4F534A
GLB_CHUNK_BIN = 0x004E4942


def gltf_triangles(quads: np.ndarray) -> np.ndarray:
    """Split quads (a, b, c, d) into (a, c, b) and (a, d, c).

    The tube corner order is clockwise seen from outside in a right-handed
    frame; glTF front faces are counter-clockwise, so the winding is
    reversed here rather than in the mesh buffers.
    """
    quads = np.asarray(quads).reshape(-1, 4)
    tris = np.empty((len(quads) * 2, 3), dtype=np.uint32)
    tris[0::2] = quads[:, [0, 2, 1]]
    tris[1::2] = quads[:, [0, 3, 2]]
    return tris


def export_skinned_glb(
    mesh: SkinnedMesh,
    bones: Sequence[SceneNode],
    path: str | Path,
) -> int:
    """Export the skinned mesh and its joint hierarchy to a GLB file.

    Parameters
    ----------
    mesh : SkinnedMesh
        Mesh built from the bones below.
    bones : sequence of SceneNode
        ``bones[i]`` is joint ``i`` of the skin.
    path : str or Path
        Output file path (should end with .glb).

    Returns
    -------
    int
        Size of the written file in bytes.
    """
    if len(bones) != mesh.bone_count:
        raise ValueError(f"Expected {mesh.bone_count} bones, got {len(bones)}")
    if mesh.bone_count > 0xFFFF:
        raise ValueError(f"Too many bones for JOINTS_0 (uint16): {mesh.bone_count}")

    path = Path(path)
    gltf, bin_data = _build_gltf(mesh, bones)
    json_str = json.dumps(gltf, separators=(",", ":"))

    # Pad JSON to 4-byte alignment
    json_bytes = json_str.encode("utf-8")
    json_pad = (4 - len(json_bytes) % 4) % 4
    json_bytes += b" " * json_pad

    # Pad binary to 4-byte alignment
    bin_pad = (4 - len(bin_data) % 4) % 4
    bin_data += b"\x00" * bin_pad

    # GLB header
    total_length = 12 + 8 + len(json_bytes) + 8 + len(bin_data)
    header = struct.pack("<III", GLB_MAGIC, 2, total_length)  # magic, version, length

    json_chunk_header = struct.pack("<II", len(json_bytes), GLB_CHUNK_JSON)
    bin_chunk_header = struct.pack("<II", len(bin_data), GLB_CHUNK_BIN)

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(header)
        f.write(json_chunk_header)
        f.write(json_bytes)
        f.write(bin_chunk_header)
        f.write(bin_data)

    logger.info("Exported %s (%d bones, %d vertices) to %s (%.1f KB)",
                mesh.name, mesh.bone_count, mesh.geometry.vertex_count, path,
                total_length / 1024)
    return total_length


def read_glb(path: str | Path) -> tuple[dict, bytes]:
    """Read back the JSON document and BIN chunk of a GLB file."""
    data = Path(path).read_bytes()
    if len(data) < 20:
        raise ValueError("Invalid GLB: too short")
    magic, version, length = struct.unpack_from("<III", data, 0)
    if magic != GLB_MAGIC or version != 2:
        raise ValueError("Invalid GLB: bad magic or version")
    if length != len(data):
        raise ValueError(f"Invalid GLB: header says {length} bytes, got {len(data)}")

    json_len, json_type = struct.unpack_from("<II", data, 12)
    if json_type != GLB_CHUNK_JSON:
        raise ValueError("Invalid GLB: first chunk is not JSON")
    gltf = json.loads(data[20:20 + json_len].decode("utf-8"))

    offset = 20 + json_len
    bin_data = b""
    if offset < len(data):
        bin_len, bin_type = struct.unpack_from("<II", data, offset)
        if bin_type != GLB_CHUNK_BIN:
            raise ValueError("Invalid GLB: second chunk is not BIN")
        bin_data = data[offset + 8:offset + 8 + bin_len]
    return gltf, bin_data


def _build_gltf(
    mesh: SkinnedMesh,
    bones: Sequence[SceneNode],
) -> tuple[dict, bytes]:
    """Build glTF JSON document and binary buffer for one skinned mesh."""
    buffers_list: list[bytes] = []
    buffer_views = []
    accessors = []
    byte_offset = 0

    def _add_accessor(array: np.ndarray, component_type: int, acc_type: str,
                      target: int | None = None, bounds: bool = False) -> int:
        nonlocal byte_offset
        raw = np.ascontiguousarray(array).tobytes()
        view = {"buffer": 0, "byteOffset": byte_offset, "byteLength": len(raw)}
        if target is not None:
            view["target"] = target
        bv_idx = len(buffer_views)
        buffer_views.append(view)
        buffers_list.append(raw)
        byte_offset += len(raw)

        accessor = {
            "bufferView": bv_idx,
            "componentType": component_type,
            "count": len(array),
            "type": acc_type,
        }
        if bounds:
            flat = array.reshape(len(array), -1)
            accessor["min"] = flat.min(axis=0).tolist()
            accessor["max"] = flat.max(axis=0).tolist()
        acc_idx = len(accessors)
        accessors.append(accessor)
        return acc_idx

    geom = mesh.geometry
    positions = geom.positions.reshape(-1, 3).astype(np.float32)
    normals = geom.normals.reshape(-1, 3).astype(np.float32)
    uvs = mesh.uvs.astype(np.float32)
    joints = mesh.bone_indices.astype(np.uint16)
    weights = mesh.bone_weights.astype(np.float32)
    indices = gltf_triangles(mesh.quads).reshape(-1)

    attributes = {
        "POSITION": _add_accessor(positions, GLTF_FLOAT, "VEC3", GLTF_ARRAY_BUFFER, bounds=True),
        "NORMAL": _add_accessor(normals, GLTF_FLOAT, "VEC3", GLTF_ARRAY_BUFFER),
        "TEXCOORD_0": _add_accessor(uvs, GLTF_FLOAT, "VEC2", GLTF_ARRAY_BUFFER),
        "JOINTS_0": _add_accessor(joints, GLTF_UNSIGNED_SHORT, "VEC4", GLTF_ARRAY_BUFFER),
        "WEIGHTS_0": _add_accessor(weights, GLTF_FLOAT, "VEC4", GLTF_ARRAY_BUFFER),
    }
    if geom.vertex_colors is not None:
        colors = geom.vertex_colors.reshape(-1, 4).astype(np.float32)
        attributes["COLOR_0"] = _add_accessor(colors, GLTF_FLOAT, "VEC4", GLTF_ARRAY_BUFFER)

    idx_acc_idx = _add_accessor(indices, GLTF_UNSIGNED_INT, "SCALAR",
                                GLTF_ELEMENT_ARRAY_BUFFER, bounds=True)
    ibm = np.transpose(mesh.bind_poses, (0, 2, 1)).astype(np.float32).reshape(-1, 16)
    ibm_acc_idx = _add_accessor(ibm, GLTF_FLOAT, "MAT4")

    # --- Joint nodes ---
    node_index = {id(b): i for i, b in enumerate(bones)}
    nodes = []
    root_joints = []
    for i, bone in enumerate(bones):
        parent = bone.parent
        in_skin = parent is not None and id(parent) in node_index
        matrix = bone.local_matrix if in_skin else bone.world_matrix
        node = {
            "name": bone.name or f"joint_{i}",
            "matrix": matrix.T.astype(np.float32).ravel().tolist(),
        }
        children = [node_index[id(c)] for c in bone.children if id(c) in node_index]
        if children:
            node["children"] = children
        nodes.append(node)
        if not in_skin:
            root_joints.append(i)

    mesh_node_idx = len(nodes)
    nodes.append({"name": mesh.name, "mesh": 0, "skin": 0})

    bin_data = b"".join(buffers_list)

    gltf = {
        "asset": {
            "version": "2.0",
            "generator": "bonetubes",
        },
        "scene": 0,
        "scenes": [{"nodes": root_joints + [mesh_node_idx]}],
        "nodes": nodes,
        "meshes": [{
            "name": mesh.name,
            "primitives": [{
                "attributes": attributes,
                "indices": idx_acc_idx,
                "material": 0,
            }],
        }],
        "skins": [{
            "name": f"{mesh.name}_skin",
            "inverseBindMatrices": ibm_acc_idx,
            "joints": list(range(len(bones))),
            "skeleton": root_joints[0],
        }],
        "materials": [{
            "name": f"{mesh.name}_material",
            "pbrMetallicRoughness": {
                "baseColorFactor": [1.0, 1.0, 1.0, 1.0],
                "metallicFactor": 0.0,
                "roughnessFactor": 0.8,
            },
        }],
        "accessors": accessors,
        "bufferViews": buffer_views,
        "buffers": [{"byteLength": len(bin_data)}],
    }

    return gltf, bin_data
