"""
Cutting layout helpers: row packing of pattern pieces and seam allowance outlines.
"""

from __future__ import annotations

from typing import Sequence
import logging

import numpy as np

from .flattener import FlattenedPanel

_LOGGER = logging.getLogger(__name__)

DEFAULT_SHEET_WIDTH = 800.0
DEFAULT_MARGIN = 20.0


def arrange_for_cutting(
    flats: Sequence[FlattenedPanel],
    max_width: float = DEFAULT_SHEET_WIDTH,
    margin: float = DEFAULT_MARGIN,
) -> list[FlattenedPanel]:
    """
    Place pieces left to right in rows, starting a new row when a piece would
    cross ``max_width``. Returns translated copies in input order; a piece
    wider than the sheet gets a row of its own.
    """
    placed: list[FlattenedPanel] = []
    x = 0.0
    y = 0.0
    row_height = 0.0
    for flat in flats:
        bbox = flat.bounding_box
        if x > 0.0 and x + bbox.width > max_width:
            x = 0.0
            y += row_height + margin
            row_height = 0.0
        placed.append(flat.translated(x - bbox.min_x, y - bbox.min_y))
        x += bbox.width + margin
        row_height = max(row_height, bbox.height)

    _LOGGER.debug("Arranged %d pieces, sheet length %.1f", len(placed), y + row_height)
    return placed


def signed_area(polygon: np.ndarray) -> float:
    """Shoelace area; positive for counter-clockwise loops."""
    p = np.asarray(polygon, dtype=np.float64).reshape(-1, 2)
    q = np.roll(p, -1, axis=0)
    return 0.5 * float(np.sum(p[:, 0] * q[:, 1] - q[:, 0] * p[:, 1]))


def offset_loop(polygon: np.ndarray, width: float) -> np.ndarray:
    """
    Move each loop vertex outward by ``width`` along the mean of the
    perpendiculars of its two adjacent edges.
    """
    p = np.asarray(polygon, dtype=np.float64).reshape(-1, 2)
    if p.shape[0] < 3:
        return p.copy()
    prev_edge = p - np.roll(p, 1, axis=0)
    next_edge = np.roll(p, -1, axis=0) - p
    # left-hand perpendiculars point inward on a counter-clockwise loop
    normals = np.column_stack([-prev_edge[:, 1], prev_edge[:, 0]])
    normals += np.column_stack([-next_edge[:, 1], next_edge[:, 0]])
    if signed_area(p) > 0:
        normals = -normals
    length = np.linalg.norm(normals, axis=1)
    unit = np.zeros_like(normals)
    ok = length > 1e-8
    unit[ok] = normals[ok] / length[ok, None]
    return p + unit * float(width)


def seam_allowance_outline(flat: FlattenedPanel, width: float = 5.0) -> list[np.ndarray]:
    """Offset outline ``(L, 2)`` for every seam loop of ``flat``."""
    return [offset_loop(flat.points_2d[loop], width) for loop in flat.boundary_loops()]
