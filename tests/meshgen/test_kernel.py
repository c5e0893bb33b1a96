"""Tests for the parallel bone tube kernel."""

import json

import numpy as np
import pytest

from bonetubes.core.math_utils import (
    mat4_identity, mat4_inverse, mat4_rotation_y, mat4_translation, vec3,
)
from bonetubes.meshgen.emitter import BoneFrame
from bonetubes.meshgen.errors import DegenerateFrameError, InvalidArgumentError
from bonetubes.meshgen.kernel import (
    TubeMeshSettings, generate_bone_tubes, generate_from_settings,
)


def _chain(n, spacing=1.0):
    """Straight chain along +Y: bone i at (0, i*spacing, 0), parent is bone i-1."""
    frames = [BoneFrame(mat4_identity())]
    for i in range(1, n):
        frames.append(BoneFrame(
            mat4_translation(0, i * spacing, 0),
            parent_world_position=vec3(0, (i - 1) * spacing, 0),
        ))
    return frames


def _all_buffers(result):
    b = result.buffers
    return [b.positions, b.normals, b.uvs, b.colors,
            b.bone_indices, b.bone_weights, b.quads, b.bind_poses]


# ── Sizes and indices ─────────────────────────────────────────────────

@pytest.mark.parametrize("radial,lateral,bones", [
    (3, 1, 1), (4, 1, 2), (6, 3, 5), (8, 2, 17), (3, 4, 33),
])
def test_buffer_sizes(radial, lateral, bones):
    result = generate_bone_tubes(
        _chain(bones), radius=0.1,
        radial_subdivisions=radial, lateral_subdivisions=lateral,
    )
    expected_vertices = bones * lateral * radial * 4
    assert result.vertex_count == expected_vertices
    assert result.quad_count == bones * lateral * radial
    assert result.quads_per_bone == lateral * radial
    for arr in (result.buffers.positions, result.buffers.normals, result.buffers.uvs,
                result.buffers.colors, result.buffers.bone_indices, result.buffers.bone_weights):
        assert len(arr) == expected_vertices
    assert result.buffers.bind_poses.shape == (bones, 4, 4)


def test_quad_indices_in_range_and_unique():
    result = generate_bone_tubes(_chain(7), radius=0.1,
                                 radial_subdivisions=5, lateral_subdivisions=3)
    quads = result.buffers.quads
    assert quads.max() < result.vertex_count
    # Every emitted vertex is referenced exactly once
    np.testing.assert_array_equal(np.sort(quads.ravel()), np.arange(result.vertex_count))


def test_quads_stay_within_own_bone():
    result = generate_bone_tubes(_chain(4), radius=0.1,
                                 radial_subdivisions=3, lateral_subdivisions=2)
    plan = result.plan
    for i in range(plan.bone_count):
        qr = plan.quad_range(i)
        vr = plan.vertex_range(i)
        block = result.buffers.quads[qr.start:qr.stop]
        assert block.min() == vr.start
        assert block.max() == vr.stop - 1


def test_bone_weights_per_block():
    result = generate_bone_tubes(_chain(3), radius=0.1,
                                 radial_subdivisions=4, lateral_subdivisions=2)
    plan = result.plan
    for i in range(3):
        vr = plan.vertex_range(i)
        idx = result.buffers.bone_indices[vr.start:vr.stop]
        w = result.buffers.bone_weights[vr.start:vr.stop]
        np.testing.assert_array_equal(idx[:, 0], i)
        np.testing.assert_array_equal(w[:, 0], 1.0)
        np.testing.assert_array_equal(w[:, 1:], 0.0)


# ── Isolation and determinism ─────────────────────────────────────────

def test_bones_do_not_overlap_in_space():
    frames = [
        BoneFrame(mat4_translation(-100, 0, 0), parent_world_position=vec3(-100, 1, 0)),
        BoneFrame(mat4_translation(100, 0, 0), parent_world_position=vec3(100, 1, 0)),
    ]
    result = generate_bone_tubes(frames, radius=0.5, world_to_root=mat4_identity(),
                                 radial_subdivisions=6, lateral_subdivisions=2)
    plan = result.plan
    first = plan.vertex_range(0)
    second = plan.vertex_range(1)
    x = result.buffers.positions[:, 0]
    assert np.all(np.abs(x[first.start:first.stop] + 100) <= 0.5 + 1e-5)
    assert np.all(np.abs(x[second.start:second.stop] - 100) <= 0.5 + 1e-5)


def test_changing_one_bone_leaves_others_bitwise_identical():
    frames = _chain(3)
    before = generate_bone_tubes(frames, radius=0.2, world_to_root=mat4_identity())
    moved = list(frames)
    moved[1] = BoneFrame(
        mat4_translation(5, 5, 5) @ mat4_rotation_y(1.0),
        parent_world_position=vec3(0, 0, 0),
    )
    after = generate_bone_tubes(moved, radius=0.2, world_to_root=mat4_identity())

    plan = before.plan
    for i in (0, 2):
        vr = plan.vertex_range(i)
        vs = slice(vr.start, vr.stop)
        assert before.buffers.positions[vs].tobytes() == after.buffers.positions[vs].tobytes()
        assert before.buffers.normals[vs].tobytes() == after.buffers.normals[vs].tobytes()
        assert before.buffers.bind_poses[i].tobytes() == after.buffers.bind_poses[i].tobytes()
    vr = plan.vertex_range(1)
    assert not np.array_equal(before.buffers.positions[vr.start:vr.stop],
                              after.buffers.positions[vr.start:vr.stop])


def test_repeated_invocations_are_identical():
    frames = _chain(9)
    a = generate_bone_tubes(frames, radius=0.05, workers=4, batch_size=2)
    b = generate_bone_tubes(frames, radius=0.05, workers=4, batch_size=2)
    for x, y in zip(_all_buffers(a), _all_buffers(b)):
        assert x.tobytes() == y.tobytes()


@pytest.mark.parametrize("workers,batch_size", [(2, 1), (4, 1), (3, 5), (8, 64)])
def test_parallel_matches_sequential(workers, batch_size):
    frames = _chain(21, spacing=0.3)
    seq = generate_bone_tubes(frames, radius=0.05, workers=1)
    par = generate_bone_tubes(frames, radius=0.05, workers=workers, batch_size=batch_size)
    for x, y in zip(_all_buffers(seq), _all_buffers(par)):
        assert x.tobytes() == y.tobytes()


def test_worker_error_propagates(monkeypatch):
    import bonetubes.meshgen.kernel as kernel

    real_emit = kernel.emit_bone

    def failing_emit(bone_index, *args, **kwargs):
        if bone_index == 5:
            raise RuntimeError("boom")
        return real_emit(bone_index, *args, **kwargs)

    monkeypatch.setattr(kernel, "emit_bone", failing_emit)
    with pytest.raises(RuntimeError, match="boom"):
        generate_bone_tubes(_chain(8), radius=0.1, workers=4, batch_size=1)


# ── Geometry ──────────────────────────────────────────────────────────

def test_normals_face_outward():
    frames = [BoneFrame(mat4_identity(), parent_world_position=vec3(0, 1, 0))]
    result = generate_bone_tubes(frames, radius=1.0,
                                 radial_subdivisions=4, lateral_subdivisions=1)
    pos = result.buffers.positions.astype(np.float64)
    axis_points = np.zeros_like(pos)
    axis_points[:, 1] = pos[:, 1]
    dots = np.einsum("ij,ij->i", result.buffers.normals, pos - axis_points)
    assert np.all(dots > 0)


def test_normals_are_unit_for_rigid_frames():
    frames = _chain(3)
    frames.append(BoneFrame(mat4_translation(0, 3, 0) @ mat4_rotation_y(0.7),
                            parent_world_position=vec3(0, 2, 0)))
    result = generate_bone_tubes(frames, radius=0.1)
    np.testing.assert_allclose(np.linalg.norm(result.buffers.normals, axis=1), 1.0, atol=1e-6)


def test_winding_is_consistent():
    frames = _chain(3)
    result = generate_bone_tubes(frames, radius=0.3,
                                 radial_subdivisions=8, lateral_subdivisions=2)
    pos = result.buffers.positions.astype(np.float64)
    q = result.buffers.quads.astype(np.int64)
    face = np.cross(pos[q[:, 1]] - pos[q[:, 0]], pos[q[:, 2]] - pos[q[:, 0]])
    dots = np.einsum("ij,ij->i", face, result.buffers.normals[q[:, 0]])
    # Same corner order everywhere, so every face agrees with its normal the same way
    assert np.all(dots != 0)
    assert np.all(np.sign(dots) == np.sign(dots[0]))


def test_uv_seam_continuity():
    radial = 5
    result = generate_bone_tubes(_chain(1), radius=0.1,
                                 radial_subdivisions=radial, lateral_subdivisions=1)
    uvs = result.buffers.uvs.reshape(-1, 4, 2)
    # corner 1 is (radial, lateral), corner 0 is (nextRadial, lateral)
    du = uvs[:, 0, 0] - uvs[:, 1, 0]
    np.testing.assert_allclose(du, 1.0 / radial, atol=1e-6)
    assert uvs[0, 1, 0] == 0.0
    assert uvs[-1, 0, 0] == pytest.approx(1.0)


def test_tube_length_matches_bone():
    frames = [
        BoneFrame(mat4_identity()),
        BoneFrame(mat4_translation(0, 2.5, 0), parent_world_position=vec3(0, 0, 0)),
    ]
    result = generate_bone_tubes(frames, radius=0.1,
                                 radial_subdivisions=6, lateral_subdivisions=4)
    vr = result.plan.vertex_range(1)
    y = result.buffers.positions[vr.start:vr.stop, 1]
    assert y.max() == pytest.approx(2.5, abs=1e-5)
    assert y.min() == pytest.approx(0.0, abs=1e-5)


def test_degenerate_bone_uses_fallback():
    frames = [
        BoneFrame(mat4_identity()),
        BoneFrame(mat4_translation(1, 0, 0), parent_world_position=vec3(1, 0, 0)),
    ]
    result = generate_bone_tubes(frames, radius=0.1, fallback_axis_length=0.25)
    for arr in _all_buffers(result)[:2]:
        assert np.all(np.isfinite(arr))
    vr = result.plan.vertex_range(1)
    y = result.buffers.positions[vr.start:vr.stop, 1]
    assert y.max() == pytest.approx(0.25, abs=1e-6)


def test_default_root_space_is_bone_zero():
    frames = [
        BoneFrame(mat4_translation(3, 4, 5) @ mat4_rotation_y(0.5)),
        BoneFrame(mat4_translation(3, 5, 5), parent_world_position=vec3(3, 4, 5)),
    ]
    result = generate_bone_tubes(frames, radius=0.1)
    np.testing.assert_array_almost_equal(result.buffers.bind_poses[0], np.eye(4))
    np.testing.assert_array_almost_equal(result.world_to_root, frames[0].world_to_local)


def test_bind_poses_invert_rest_pose():
    frames = _chain(4)
    world_to_root = mat4_inverse(mat4_translation(1, -2, 0.5))
    result = generate_bone_tubes(frames, radius=0.1, world_to_root=world_to_root)
    for i, frame in enumerate(frames):
        skin = world_to_root @ frame.local_to_world @ result.buffers.bind_poses[i]
        np.testing.assert_array_almost_equal(skin, np.eye(4))


def test_two_bone_end_to_end():
    frames = [
        BoneFrame(mat4_identity()),
        BoneFrame(mat4_translation(0, 1, 0), parent_world_position=vec3(0, 0, 0)),
    ]
    result = generate_bone_tubes(frames, radius=0.5,
                                 radial_subdivisions=3, lateral_subdivisions=2)
    assert result.vertex_count == 48
    assert result.quad_count == 12
    np.testing.assert_array_equal(result.buffers.bone_indices[:24, 0], 0)
    np.testing.assert_array_equal(result.buffers.bone_indices[24:, 0], 1)
    np.testing.assert_array_equal(result.buffers.quads[6], [24, 25, 26, 27])


def test_output_is_read_only():
    result = generate_bone_tubes(_chain(2), radius=0.1)
    for arr in _all_buffers(result):
        assert not arr.flags.writeable
    with pytest.raises(ValueError):
        result.buffers.positions[0, 0] = 1.0


def test_accepts_generator_input():
    result = generate_bone_tubes((f for f in _chain(3)), radius=0.1)
    assert result.bone_count == 3


# ── Validation ────────────────────────────────────────────────────────

@pytest.mark.parametrize("kwargs", [
    {"radial_subdivisions": 2},
    {"lateral_subdivisions": 0},
    {"radial_subdivisions": 4.0},
    {"radius": 0.0},
    {"radius": -1.0},
    {"radius": float("nan")},
    {"radius": float("inf")},
    {"radius": True},
    {"workers": 0},
    {"batch_size": 0},
    {"fallback_axis_length": 0.0},
    {"world_to_root": np.zeros((4, 4))},
])
def test_rejects_invalid_arguments(kwargs):
    params = {"radius": 0.1}
    params.update(kwargs)
    with pytest.raises(InvalidArgumentError):
        generate_bone_tubes(_chain(2), **params)


def test_rejects_empty_bone_list():
    with pytest.raises(InvalidArgumentError):
        generate_bone_tubes([], radius=0.1)


@pytest.mark.parametrize("frame", [
    BoneFrame(np.zeros((4, 4))),
    BoneFrame(np.diag([1.0, 1.0, 0.0, 1.0])),
    BoneFrame(np.full((4, 4), np.nan)),
    BoneFrame(np.eye(3)),
    BoneFrame(mat4_identity(), parent_world_position=vec3(np.nan, 0, 0)),
    BoneFrame(mat4_identity(), parent_world_position=[0.0, 1.0]),
])
def test_rejects_malformed_frames(frame):
    with pytest.raises(InvalidArgumentError):
        generate_bone_tubes(_chain(2) + [frame], radius=0.1)


def test_rejects_non_frame():
    with pytest.raises(InvalidArgumentError):
        generate_bone_tubes(_chain(1) + [mat4_identity()], radius=0.1)


def test_degenerate_without_fallback_fails_before_allocation(monkeypatch):
    import bonetubes.meshgen.kernel as kernel

    def no_alloc(plan):
        raise AssertionError("buffers allocated before validation")

    monkeypatch.setattr(kernel.OutputBuffers, "allocate", staticmethod(no_alloc))
    frames = _chain(3) + [BoneFrame(mat4_translation(0, 2, 0), parent_world_position=vec3(0, 2, 0))]
    with pytest.raises(DegenerateFrameError) as info:
        generate_bone_tubes(frames, radius=0.1, fallback_axis_length=None)
    # the parentless root is bone 0
    assert info.value.bone_index == 0


def test_degenerate_bone_index_reported():
    frames = [
        BoneFrame(mat4_identity(), parent_world_position=vec3(0, -1, 0)),
        BoneFrame(mat4_translation(0, 1, 0), parent_world_position=vec3(0, 0, 0)),
        BoneFrame(mat4_translation(0, 1, 0), parent_world_position=vec3(0, 1, 0)),
    ]
    with pytest.raises(DegenerateFrameError) as info:
        generate_bone_tubes(frames, radius=0.1, fallback_axis_length=None)
    assert info.value.bone_index == 2


# ── Settings ──────────────────────────────────────────────────────────

def test_settings_defaults():
    s = TubeMeshSettings()
    assert s.radius > 0
    assert s.radial_subdivisions >= 3
    assert s.lateral_subdivisions >= 1


def test_settings_from_config(tmp_path, monkeypatch):
    import bonetubes.core.config_loader as config_loader

    (tmp_path / "tubes.json").write_text(json.dumps({
        "radius": 0.2, "radial_subdivisions": 8, "fallback_axis_length": None,
    }))
    monkeypatch.setattr(config_loader, "CONFIG_DIR", tmp_path)
    s = TubeMeshSettings.from_config("tubes.json")
    assert s.radius == 0.2
    assert s.radial_subdivisions == 8
    assert s.lateral_subdivisions == TubeMeshSettings().lateral_subdivisions
    assert s.fallback_axis_length is None


def test_bundled_settings_load():
    s = TubeMeshSettings.from_config()
    assert s.radius == pytest.approx(0.01)
    assert s.radial_subdivisions == 6


def test_generate_from_settings():
    settings = TubeMeshSettings(radius=0.1, radial_subdivisions=4,
                                lateral_subdivisions=2, workers=2, batch_size=1)
    result = generate_from_settings(_chain(5), settings)
    assert result.radial_subdivisions == 4
    assert result.vertex_count == 5 * 2 * 4 * 4
