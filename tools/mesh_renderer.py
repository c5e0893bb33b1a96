"""Headless preview renderer for bone tube meshes.

Rasterises triangles with PIL: orthographic view, back-to-front triangle
sort, two-sided diffuse shading, and one colour per bone so the tubes of
neighbouring bones can be told apart.

Usage::

    from tools.mesh_renderer import render_mesh, triangle_colors_by_bone

    img = render_mesh(
        mesh.rest_positions, mesh.geometry.indices,
        triangle_colors_by_bone(mesh),
        azimuth=35, elevation=20,
        output_path="results/arm.png",
        title="arm",
    )
"""

import colorsys
from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw

from bonetubes.skeleton.skinned_mesh import SkinnedMesh

# Y-up views, angles in degrees
VIEWS = {
    "front":         {"azimuth": 0,   "elevation": 0},
    "side":          {"azimuth": 90,  "elevation": 0},
    "top":           {"azimuth": 0,   "elevation": 89},
    "three_quarter": {"azimuth": 35,  "elevation": 20},
}
DEFAULT_VIEWS = ["front", "side", "three_quarter"]

BACKGROUND = (24, 26, 32)
GOLDEN_RATIO_CONJUGATE = 0.618033988749895


def view_rotation(azimuth: float, elevation: float) -> np.ndarray:
    """3x3 matrix taking Y-up world axes into (screen x, screen y, depth).

    Depth grows away from the viewer.
    """
    az = np.radians(azimuth)
    el = np.radians(elevation)
    spin = np.array([
        [np.cos(az), 0.0, -np.sin(az)],
        [0.0, 1.0, 0.0],
        [np.sin(az), 0.0, np.cos(az)],
    ])
    tilt = np.array([
        [1.0, 0.0, 0.0],
        [0.0, np.cos(el), -np.sin(el)],
        [0.0, -np.sin(el), -np.cos(el)],
    ])
    return tilt @ spin


def project(positions: np.ndarray, azimuth: float = 0, elevation: float = 0) -> np.ndarray:
    """(V, 3) positions in view space: columns are screen x, screen y, depth."""
    return np.asarray(positions, dtype=np.float64).reshape(-1, 3) @ view_rotation(azimuth, elevation).T


def bone_palette(bone_count: int) -> np.ndarray:
    """(N, 3) uint8 colours, hues spread by the golden ratio."""
    palette = np.empty((bone_count, 3), dtype=np.uint8)
    for i in range(bone_count):
        rgb = colorsys.hsv_to_rgb((i * GOLDEN_RATIO_CONJUGATE) % 1.0, 0.55, 0.95)
        palette[i] = [round(c * 255) for c in rgb]
    return palette


def triangle_colors_by_bone(mesh: SkinnedMesh) -> np.ndarray:
    """Colour each triangle by the bone bound to its first corner."""
    first_corner = mesh.geometry.indices.reshape(-1, 3)[:, 0]
    return bone_palette(mesh.bone_count)[mesh.bone_indices[first_corner, 0]]


def shade(
    colors: np.ndarray,
    positions: np.ndarray,
    triangles: np.ndarray,
    light_dir=(0.3, 0.8, 0.4),
    ambient: float = 0.35,
) -> np.ndarray:
    """Scale triangle colours by |cos| between face normal and light."""
    light = np.asarray(light_dir, dtype=np.float64)
    light /= np.linalg.norm(light)
    corners = positions[triangles]
    face = np.cross(corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0])
    face /= np.maximum(np.linalg.norm(face, axis=1, keepdims=True), 1e-12)
    # tube faces are wound inward, so light both sides
    diffuse = np.abs(face @ light)
    factor = ambient + (1.0 - ambient) * diffuse
    return np.clip(colors * factor[:, np.newaxis], 0, 255).astype(np.uint8)


def _to_pixels(view: np.ndarray, width: int, height: int, margin: int) -> np.ndarray:
    lo = view[:, :2].min(axis=0)
    extent = np.maximum(view[:, :2].max(axis=0) - lo, 1e-9)
    scale = min((width - 2 * margin) / extent[0], (height - 2 * margin) / extent[1])
    offset = (np.array([width, height]) - extent * scale) / 2
    px = (view[:, :2] - lo) * scale + offset
    px[:, 1] = height - px[:, 1]
    return np.rint(px).astype(np.int64)


def render_mesh(
    positions: np.ndarray,
    triangles: np.ndarray,
    tri_colors: np.ndarray | None = None,
    azimuth: float = 0,
    elevation: float = 0,
    width: int = 800,
    height: int = 800,
    output_path: str | Path | None = None,
    title: str = "",
    margin: int = 40,
    lighting: bool = True,
) -> Image.Image:
    """Rasterise a triangle mesh, optionally saving it as PNG.

    tri_colors is (T, 3) uint8; None draws every triangle light grey.
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
    img = Image.new("RGB", (width, height), BACKGROUND)
    draw = ImageDraw.Draw(img)

    if len(triangles):
        if tri_colors is None:
            tri_colors = np.full((len(triangles), 3), 200, dtype=np.uint8)
        colors = shade(tri_colors, positions, triangles) if lighting else tri_colors

        view = project(positions, azimuth, elevation)
        px = _to_pixels(view, width, height, margin).tolist()
        far_to_near = np.argsort(view[triangles, 2].mean(axis=1), kind="stable")[::-1]
        for t in far_to_near:
            draw.polygon([tuple(px[v]) for v in triangles[t]], fill=tuple(int(c) for c in colors[t]))

    if title:
        draw.text((10, 10), title, fill=(255, 255, 255))
    draw.text((10, height - 25), f"{len(triangles)} triangles", fill=(170, 170, 170))

    if output_path:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        img.save(str(output_path))
    return img


def render_multiview(
    positions: np.ndarray,
    triangles: np.ndarray,
    output_dir: str | Path,
    tri_colors: np.ndarray | None = None,
    prefix: str = "",
    views: list[str] | None = None,
    width: int = 800,
    height: int = 800,
) -> dict[str, Path]:
    """Render one PNG per named view in VIEWS, returning {view: path}."""
    output_dir = Path(output_dir)
    paths = {}
    for name in views or DEFAULT_VIEWS:
        stem = f"{prefix}_{name}" if prefix else name
        paths[name] = output_dir / f"{stem}.png"
        render_mesh(
            positions, triangles, tri_colors,
            width=width, height=height,
            output_path=paths[name],
            title=stem,
            **VIEWS[name],
        )
    return paths
