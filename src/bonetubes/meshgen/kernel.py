"""Parallel bone tube mesh generation.

Validates the whole request, builds the tessellation table once, allocates
every output buffer once, then runs the per-bone emitter over batches of
bones on a thread pool. Bones write only their own slices, so there are no
locks and the result does not depend on scheduling.
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from bonetubes.constants import (
    DEFAULT_BATCH_SIZE, DEFAULT_LATERAL_SUBDIVISIONS, DEFAULT_RADIAL_SUBDIVISIONS,
    DEFAULT_RADIUS, DEFAULT_WORKERS, FALLBACK_AXIS_LENGTH, TUBE_MESH_CONFIG,
)
from bonetubes.core.config_loader import load_config
from bonetubes.core.math_utils import Mat4, is_affine, mat4_inverse
from bonetubes.meshgen.buffers import OffsetPlan, OutputBuffers
from bonetubes.meshgen.emitter import BoneFrame, bone_axis, emit_bone
from bonetubes.meshgen.errors import InvalidArgumentError
from bonetubes.meshgen.tessellation import build_tessellation, validate_subdivisions

logger = logging.getLogger(__name__)


@dataclass
class BoneTubeMesh:
    """Result of one kernel invocation. Buffers are read-only."""
    buffers: OutputBuffers
    bone_count: int
    quads_per_bone: int
    radial_subdivisions: int
    lateral_subdivisions: int
    world_to_root: Mat4

    @property
    def vertex_count(self) -> int:
        return self.buffers.vertex_count

    @property
    def quad_count(self) -> int:
        return self.buffers.quad_count

    @property
    def plan(self) -> OffsetPlan:
        return OffsetPlan(self.bone_count, self.radial_subdivisions, self.lateral_subdivisions)


@dataclass
class TubeMeshSettings:
    """Tube shape and dispatch parameters."""
    radius: float = DEFAULT_RADIUS
    radial_subdivisions: int = DEFAULT_RADIAL_SUBDIVISIONS
    lateral_subdivisions: int = DEFAULT_LATERAL_SUBDIVISIONS
    fallback_axis_length: Optional[float] = FALLBACK_AXIS_LENGTH
    workers: int = DEFAULT_WORKERS
    batch_size: int = DEFAULT_BATCH_SIZE

    @classmethod
    def from_config(cls, name: str = TUBE_MESH_CONFIG) -> "TubeMeshSettings":
        """Load settings from a JSON file in assets/config/."""
        cfg = load_config(name)
        return cls(
            radius=cfg.get("radius", DEFAULT_RADIUS),
            radial_subdivisions=cfg.get("radial_subdivisions", DEFAULT_RADIAL_SUBDIVISIONS),
            lateral_subdivisions=cfg.get("lateral_subdivisions", DEFAULT_LATERAL_SUBDIVISIONS),
            fallback_axis_length=cfg.get("fallback_axis_length", FALLBACK_AXIS_LENGTH),
            workers=cfg.get("workers", DEFAULT_WORKERS),
            batch_size=cfg.get("batch_size", DEFAULT_BATCH_SIZE),
        )


def _check_positive(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
        raise InvalidArgumentError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidArgumentError(f"{name} must be positive and finite, got {value!r}")


def _check_positive_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
        raise InvalidArgumentError(f"{name} must be a positive integer, got {value!r}")


def validate_frames(
    frames: Sequence[BoneFrame],
    fallback_axis_length: Optional[float],
) -> None:
    """Reject malformed frames before anything is allocated.

    Raises InvalidArgumentError for non-affine matrices or bad parent
    positions and DegenerateFrameError for zero-length axes when the
    fallback is disabled.
    """
    for i, frame in enumerate(frames):
        if not isinstance(frame, BoneFrame):
            raise InvalidArgumentError(f"Bone {i}: expected BoneFrame, got {type(frame).__name__}")
        if not is_affine(frame.local_to_world):
            raise InvalidArgumentError(f"Bone {i}: local_to_world is not an invertible affine 4x4 matrix")
        parent = frame.parent_world_position
        if parent is not None and (parent.shape != (3,) or not np.all(np.isfinite(parent))):
            raise InvalidArgumentError(f"Bone {i}: parent_world_position must be a finite 3-vector")
        bone_axis(frame, fallback_axis_length, i)


def generate_bone_tubes(
    bone_frames: Iterable[BoneFrame],
    *,
    radius: float = DEFAULT_RADIUS,
    radial_subdivisions: int = DEFAULT_RADIAL_SUBDIVISIONS,
    lateral_subdivisions: int = DEFAULT_LATERAL_SUBDIVISIONS,
    world_to_root: Optional[Mat4] = None,
    fallback_axis_length: Optional[float] = FALLBACK_AXIS_LENGTH,
    workers: int = DEFAULT_WORKERS,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> BoneTubeMesh:
    """Build one tube per bone into a single skinned quad mesh.

    Parameters
    ----------
    bone_frames : ordered BoneFrames, bone 0 is the root
    radius : tube cross-section radius, > 0
    radial_subdivisions : samples around the tube, >= 3
    lateral_subdivisions : segments along the tube, >= 1
    world_to_root : matrix defining root space; defaults to the inverse of
        bone 0's local_to_world
    fallback_axis_length : axis length for parentless/degenerate bones,
        None to reject such bones
    workers : thread count, 1 runs in the calling thread
    batch_size : bones per task

    Returns
    -------
    BoneTubeMesh
    """
    frames = list(bone_frames)
    if not frames:
        raise InvalidArgumentError("At least one bone frame is required")
    validate_subdivisions(radial_subdivisions, lateral_subdivisions)
    _check_positive("radius", radius)
    _check_positive_int("workers", workers)
    _check_positive_int("batch_size", batch_size)
    if fallback_axis_length is not None:
        _check_positive("fallback_axis_length", fallback_axis_length)
    validate_frames(frames, fallback_axis_length)

    if world_to_root is None:
        world_to_root = frames[0].world_to_local
    else:
        world_to_root = np.asarray(world_to_root, dtype=np.float64)
        if not is_affine(world_to_root):
            raise InvalidArgumentError("world_to_root is not an invertible affine 4x4 matrix")
    root_to_world = mat4_inverse(world_to_root)

    start_time = time.perf_counter()
    table = build_tessellation(radial_subdivisions, lateral_subdivisions)
    plan = OffsetPlan(len(frames), table.radial_subdivisions, table.lateral_subdivisions)
    buffers = OutputBuffers.allocate(plan)

    def _emit_batch(first: int) -> None:
        for bone_index in range(first, min(first + batch_size, plan.bone_count)):
            emit_bone(
                bone_index, frames[bone_index], table, radius,
                world_to_root, root_to_world,
                buffers.block(plan, bone_index),
                plan.vertex_offset(bone_index),
                fallback_axis_length,
            )

    batch_starts = range(0, plan.bone_count, batch_size)
    if workers == 1 or len(batch_starts) == 1:
        for first in batch_starts:
            _emit_batch(first)
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bonetubes") as executor:
            # Consuming the iterator re-raises the first task error.
            for _ in executor.map(_emit_batch, batch_starts):
                pass

    buffers.freeze()
    logger.info(
        "Generated %d bone tubes: %d vertices, %d quads (%.1f ms, %d workers)",
        plan.bone_count, plan.vertex_count, plan.quad_count,
        (time.perf_counter() - start_time) * 1000.0, workers,
    )
    return BoneTubeMesh(
        buffers=buffers,
        bone_count=plan.bone_count,
        quads_per_bone=plan.quads_per_bone,
        radial_subdivisions=plan.radial_subdivisions,
        lateral_subdivisions=plan.lateral_subdivisions,
        world_to_root=world_to_root,
    )


def generate_from_settings(
    bone_frames: Iterable[BoneFrame],
    settings: TubeMeshSettings,
    world_to_root: Optional[Mat4] = None,
) -> BoneTubeMesh:
    return generate_bone_tubes(
        bone_frames,
        radius=settings.radius,
        radial_subdivisions=settings.radial_subdivisions,
        lateral_subdivisions=settings.lateral_subdivisions,
        world_to_root=world_to_root,
        fallback_axis_length=settings.fallback_axis_length,
        workers=settings.workers,
        batch_size=settings.batch_size,
    )
