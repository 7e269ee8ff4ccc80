"""
panelcut - Mesh segmentation and pattern flattening

Developer command-line entry point
"""

import sys
import os
import logging
from pathlib import Path

# Ensure repository root is on sys.path so "panelcut" is importable from a checkout.
ROOT_DIR = Path(__file__).resolve().parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from panelcut.core.errors import PanelCutError
from panelcut.core.logging_utils import format_exception_message

_LOGGER = logging.getLogger(__name__)
DEFAULT_PANEL_COUNT = 6


def run_cli():
    """Command-line dispatch"""
    from panelcut.core.logging_utils import setup_logging

    log_path = setup_logging()

    if len(sys.argv) < 2:
        print_help()
        return 0

    cmd = sys.argv[1]

    if cmd in ('--help', '-h'):
        print_help()
        return 0

    try:
        if cmd == '--info' and len(sys.argv) > 2:
            show_file_info(sys.argv[2])
            return 0

        if cmd == '--segment' and len(sys.argv) > 2:
            segment_file(sys.argv[2], _panel_count_arg(3))
            return 0

        if cmd == '--flatten' and len(sys.argv) > 2:
            flatten_file(sys.argv[2], _panel_count_arg(3))
            return 0

        if cmd == '--validate' and len(sys.argv) > 2:
            validate_file(sys.argv[2], _panel_count_arg(3))
            return 0

        if os.path.exists(cmd):
            flatten_file(cmd, DEFAULT_PANEL_COUNT)
            return 0
    except (PanelCutError, FileNotFoundError, ValueError) as e:
        _LOGGER.error("Command %s failed", cmd, exc_info=True)
        print(format_exception_message("Error", e, log_path=log_path))
        return 1

    print(f"Error: Unknown command or file not found: {cmd}")
    print("Use --help for usage information")
    return 2


def _panel_count_arg(index: int) -> int:
    if len(sys.argv) <= index:
        return DEFAULT_PANEL_COUNT
    try:
        return int(sys.argv[index])
    except ValueError:
        raise ValueError(f"panel count must be an integer, got {sys.argv[index]!r}")


def print_help():
    from panelcut.core.mesh_loader import MeshLoader

    print("=" * 60)
    print("panelcut - Mesh segmentation and pattern flattening")
    print("=" * 60)
    print()
    print("Usage:")
    print("  python main.py <mesh_file>                  # Segment (K=6) and flatten")
    print("  python main.py --info <mesh_file>           # Show file info")
    print("  python main.py --segment <mesh_file> [K]    # Segment into at most K panels")
    print("  python main.py --flatten <mesh_file> [K]    # Segment and flatten")
    print("  python main.py --validate <mesh_file> [K]   # Segment, flatten and check pieces")
    print()
    print(f"Supported formats: {list(MeshLoader.SUPPORTED_FORMATS.keys())}")
    print()
    print("Examples:")
    print("  python main.py --segment chair_scan.ply 8")
    print("  python main.py --flatten cushion.obj 4")


def show_file_info(filepath: str):
    from panelcut.core.mesh_loader import MeshLoader

    print(f"\nFile Info: {filepath}")
    print("-" * 40)
    info = MeshLoader().get_file_info(filepath)
    for key, value in info.items():
        print(f"  {key}: {value}")


def _segment(filepath: str, panel_count: int):
    from panelcut.core.mesh_loader import MeshLoader
    from panelcut.core.pipeline import segment_mesh

    mesh = MeshLoader().load(filepath)
    print(f"  Loaded: {mesh.n_vertices:,} vertices, {mesh.n_triangles:,} triangles")
    result = segment_mesh(mesh, panel_count)
    print(
        f"  Segmented: {len(result.panels)} panels "
        f"({result.meta['kmeans_iterations']} iterations, {result.meta['elapsed_s']:.2f}s)"
    )
    return mesh, result.panels


def segment_file(filepath: str, panel_count: int):
    print(f"\nSegmenting: {filepath}")
    print("-" * 40)
    _, panels = _segment(filepath, panel_count)
    for i, panel in enumerate(panels):
        print(f"  [{i}] {panel.n_triangles:,} triangles, {panel.n_vertices:,} vertices, label {panel.cluster_label}")


def flatten_file(filepath: str, panel_count: int):
    from panelcut.core.pipeline import flatten

    print(f"\nFlattening: {filepath}")
    print("-" * 40)
    mesh, panels = _segment(filepath, panel_count)
    flats = flatten(panels, mesh)
    for i, flat in enumerate(flats):
        print(
            f"  [{i}] {flat.width:.2f} x {flat.height:.2f}, "
            f"mean error {flat.mean_relative_error:.1%}, max error {flat.max_relative_error:.1%}"
        )
    return flats


def validate_file(filepath: str, panel_count: int):
    from panelcut.core.pattern_layout import arrange_for_cutting
    from panelcut.core.pattern_validator import PatternValidator

    flats = arrange_for_cutting(flatten_file(filepath, panel_count))
    result = PatternValidator().validate_panel_set(flats)

    print()
    print(f"  Valid: {result.is_valid}")
    for panel_result in result.panel_results:
        print(f"  {panel_result.panel_id}: {panel_result.summary}")
        for issue in panel_result.issues + panel_result.warnings:
            print(f"    - [{issue.severity.value}] {issue.message}")
    for issue in result.layout_issues:
        print(f"  - [{issue.severity.value}] {issue.message}")
    if result.recommended_fabric_width is not None:
        print(f"  Recommended fabric width: {result.recommended_fabric_width:.0f}")


if __name__ == "__main__":
    sys.exit(run_cli())
