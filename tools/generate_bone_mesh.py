"""CLI entry point: build a bone tube mesh from a skeleton definition.

Usage::

    # Sample arm skeleton with default tube settings, written to GLB:
    python -m tools.generate_bone_mesh sample_arm.json --output results/arm.glb

    # Thicker, smoother tubes, sequential generation, with PNG previews:
    python -m tools.generate_bone_mesh sample_arm.json --radius 0.05 \\
        --radial 12 --lateral 4 --workers 1 --preview-dir results/previews

    # Settings from a JSON file in assets/config/:
    python -m tools.generate_bone_mesh path/to/skeleton.json --settings tube_mesh.json
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

import numpy as np

from bonetubes.export.glb_exporter import export_skinned_glb
from bonetubes.meshgen.errors import MeshGenerationError
from bonetubes.meshgen.kernel import TubeMeshSettings, generate_from_settings
from bonetubes.skeleton.bone_frames import load_skeleton, resolve_bone_frames
from bonetubes.skeleton.skinned_mesh import build_skinned_mesh

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate a skinned tube mesh visualising a skeleton",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "skeleton",
        help="Skeleton JSON: a name under assets/config/skeleton/ or a file path",
    )
    parser.add_argument(
        "--settings", default=None, metavar="FILE",
        help="Tube settings JSON under assets/config/ (default: built-in defaults)",
    )
    parser.add_argument("--radius", type=float, default=None, help="Tube radius")
    parser.add_argument("--radial", type=int, default=None, help="Radial subdivisions (>= 3)")
    parser.add_argument("--lateral", type=int, default=None, help="Lateral subdivisions (>= 1)")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads")
    parser.add_argument(
        "--no-fallback", action="store_true",
        help="Reject parentless/degenerate bones instead of giving them a short fallback tube",
    )
    parser.add_argument(
        "--output", type=Path, default=Path("bone_tubes.glb"), metavar="FILE",
        help="Output GLB path (default: bone_tubes.glb)",
    )
    parser.add_argument(
        "--preview-dir", type=Path, default=None, metavar="DIR",
        help="Also render PNG previews into this directory",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable verbose logging",
    )
    return parser


def _settings_from_args(args: argparse.Namespace) -> TubeMeshSettings:
    settings = TubeMeshSettings.from_config(args.settings) if args.settings else TubeMeshSettings()
    if args.radius is not None:
        settings.radius = args.radius
    if args.radial is not None:
        settings.radial_subdivisions = args.radial
    if args.lateral is not None:
        settings.lateral_subdivisions = args.lateral
    if args.workers is not None:
        settings.workers = args.workers
    if args.no_fallback:
        settings.fallback_axis_length = None
    return settings


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")

    try:
        settings = _settings_from_args(args)
        skeleton = load_skeleton(args.skeleton)
        bones, frames = resolve_bone_frames(skeleton)
        result = generate_from_settings(frames, settings)
        mesh = build_skinned_mesh(result, bones, name=skeleton.name)
        size = export_skinned_glb(mesh, bones, args.output)
    except FileNotFoundError as e:
        parser.error(f"File not found: {e.filename}")
    except (MeshGenerationError, ValueError) as e:
        parser.error(str(e))
    except OSError as e:
        parser.error(f"Cannot write {args.output}: {e}")

    lo, hi = mesh.geometry.get_bounds()
    logger.info("Root-space bounds: %s .. %s", np.round(lo, 4), np.round(hi, 4))
    print(f"Wrote {args.output} ({len(bones)} bones, "
          f"{mesh.geometry.vertex_count} vertices, {size} bytes)")

    if args.preview_dir is not None:
        from tools.mesh_renderer import render_multiview, triangle_colors_by_bone

        paths = render_multiview(
            mesh.rest_positions, mesh.geometry.indices, args.preview_dir,
            tri_colors=triangle_colors_by_bone(mesh), prefix=skeleton.name,
        )
        for vname, p in paths.items():
            logger.info("Preview %s: %s", vname, p)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
