"""Bone tube mesh generation -- tessellation, per-bone emitter and parallel kernel."""

from bonetubes.meshgen.buffers import BoneBlock, OffsetPlan, OutputBuffers
from bonetubes.meshgen.emitter import BoneFrame, bone_axis, emit_bone, tube_points
from bonetubes.meshgen.errors import (
    DegenerateFrameError,
    InvalidArgumentError,
    MeshGenerationError,
)
from bonetubes.meshgen.kernel import (
    BoneTubeMesh,
    TubeMeshSettings,
    generate_bone_tubes,
    generate_from_settings,
)
from bonetubes.meshgen.tessellation import TessellationTable, build_tessellation

__all__ = [
    "BoneBlock",
    "BoneFrame",
    "BoneTubeMesh",
    "DegenerateFrameError",
    "InvalidArgumentError",
    "MeshGenerationError",
    "OffsetPlan",
    "OutputBuffers",
    "TessellationTable",
    "TubeMeshSettings",
    "bone_axis",
    "build_tessellation",
    "emit_bone",
    "generate_bone_tubes",
    "generate_from_settings",
    "tube_points",
]
