"""NumPy-backed math utilities: Vec3, Quaternion, Mat4 operations.

Provides lightweight wrappers and utility functions for 3D math.
Vectors are plain numpy arrays; quaternions are [x, y, z, w] arrays.
Matrices are 4x4 numpy arrays applied to column vectors (``m @ v``).
"""

import numpy as np
from numpy.typing import NDArray

# Type aliases
Vec3 = NDArray[np.float64]
Mat4 = NDArray[np.float64]
Quat = NDArray[np.float64]  # [x, y, z, w]


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> Vec3:
    return np.array([x, y, z], dtype=np.float64)


def mat4_identity() -> Mat4:
    return np.eye(4, dtype=np.float64)


def mat4_translation(x: float, y: float, z: float) -> Mat4:
    m = np.eye(4, dtype=np.float64)
    m[0, 3] = x
    m[1, 3] = y
    m[2, 3] = z
    return m


def mat4_scale(sx: float, sy: float, sz: float) -> Mat4:
    m = np.eye(4, dtype=np.float64)
    m[0, 0] = sx
    m[1, 1] = sy
    m[2, 2] = sz
    return m


def mat4_rotation_x(angle_rad: float) -> Mat4:
    c, s = np.cos(angle_rad), np.sin(angle_rad)
    m = np.eye(4, dtype=np.float64)
    m[1, 1] = c
    m[1, 2] = -s
    m[2, 1] = s
    m[2, 2] = c
    return m


def mat4_rotation_y(angle_rad: float) -> Mat4:
    c, s = np.cos(angle_rad), np.sin(angle_rad)
    m = np.eye(4, dtype=np.float64)
    m[0, 0] = c
    m[0, 2] = s
    m[2, 0] = -s
    m[2, 2] = c
    return m


def mat4_rotation_z(angle_rad: float) -> Mat4:
    c, s = np.cos(angle_rad), np.sin(angle_rad)
    m = np.eye(4, dtype=np.float64)
    m[0, 0] = c
    m[0, 1] = -s
    m[1, 0] = s
    m[1, 1] = c
    return m


def mat4_from_quaternion(q: Quat) -> Mat4:
    """Convert quaternion [x,y,z,w] to 4x4 rotation matrix."""
    x, y, z, w = q
    m = np.eye(4, dtype=np.float64)
    m[0, 0] = 1 - 2 * (y * y + z * z)
    m[0, 1] = 2 * (x * y - z * w)
    m[0, 2] = 2 * (x * z + y * w)
    m[1, 0] = 2 * (x * y + z * w)
    m[1, 1] = 1 - 2 * (x * x + z * z)
    m[1, 2] = 2 * (y * z - x * w)
    m[2, 0] = 2 * (x * z - y * w)
    m[2, 1] = 2 * (y * z + x * w)
    m[2, 2] = 1 - 2 * (x * x + y * y)
    return m


def mat4_compose(position: Vec3, quaternion: Quat, scale: Vec3) -> Mat4:
    """Compose TRS matrix from position, quaternion rotation, and scale."""
    m = mat4_from_quaternion(quaternion)
    m[:3, 0] *= scale[0]
    m[:3, 1] *= scale[1]
    m[:3, 2] *= scale[2]
    m[0, 3] = position[0]
    m[1, 3] = position[1]
    m[2, 3] = position[2]
    return m


def mat4_inverse(m: Mat4) -> Mat4:
    return np.linalg.inv(m)


def is_affine(m: NDArray, tol: float = 1e-9) -> bool:
    """True for a finite 4x4 matrix with a [0, 0, 0, 1] bottom row and an
    invertible linear part."""
    m = np.asarray(m)
    if m.shape != (4, 4) or not np.all(np.isfinite(m)):
        return False
    if not np.allclose(m[3], (0.0, 0.0, 0.0, 1.0), atol=tol):
        return False
    return abs(np.linalg.det(m[:3, :3])) > 1e-12


# Quaternion operations

def quat_identity() -> Quat:
    return np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)


def quat_from_euler(x: float, y: float, z: float, order: str = "XYZ") -> Quat:
    """Create quaternion from Euler angles (radians)."""
    cx, sx = np.cos(x / 2), np.sin(x / 2)
    cy, sy = np.cos(y / 2), np.sin(y / 2)
    cz, sz = np.cos(z / 2), np.sin(z / 2)

    if order == "XYZ":
        return np.array([
            sx * cy * cz + cx * sy * sz,
            cx * sy * cz - sx * cy * sz,
            cx * cy * sz + sx * sy * cz,
            cx * cy * cz - sx * sy * sz,
        ], dtype=np.float64)
    elif order == "ZYX":
        return np.array([
            sx * cy * cz - cx * sy * sz,
            cx * sy * cz + sx * cy * sz,
            cx * cy * sz - sx * sy * cz,
            cx * cy * cz + sx * sy * sz,
        ], dtype=np.float64)
    else:
        raise ValueError(f"Unsupported Euler order: {order}")


def quat_from_axis_angle(axis: Vec3, angle: float) -> Quat:
    """Create quaternion from axis-angle."""
    half = angle / 2
    s = np.sin(half)
    a = normalize(axis)
    return np.array([a[0] * s, a[1] * s, a[2] * s, np.cos(half)], dtype=np.float64)


# Vector operations

def normalize(v: Vec3) -> Vec3:
    n = np.linalg.norm(v)
    if n < 1e-10:
        return np.zeros_like(v)
    return v / n


def deg_to_rad(degrees: float) -> float:
    return degrees * np.pi / 180.0


def transform_point(m: Mat4, p: Vec3) -> Vec3:
    """Transform a point by a 4x4 matrix."""
    v = np.array([p[0], p[1], p[2], 1.0], dtype=np.float64)
    r = m @ v
    return r[:3]


def transform_direction(m: Mat4, d: Vec3) -> Vec3:
    """Transform a direction by a 4x4 matrix (ignores translation)."""
    return (m[:3, :3] @ d)


# ── Batch (vectorized) transforms ─────────────────────────────────────

def batch_transform_points(m: Mat4, points: NDArray) -> NDArray:
    """Transform (N, 3) points by a 4x4 affine matrix."""
    return points @ m[:3, :3].T + m[:3, 3]


def batch_transform_directions(m: Mat4, dirs: NDArray) -> NDArray:
    """Transform (N, 3) directions by the linear part of a 4x4 matrix."""
    return dirs @ m[:3, :3].T
