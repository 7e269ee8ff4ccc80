"""
Panels: connected triangle subsets that become one pattern piece each.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import logging
import uuid

import numpy as np

from .errors import SegmentationFailed
from .mesh_store import Mesh

_LOGGER = logging.getLogger(__name__)

RGBA = tuple[float, float, float, float]

PANEL_PALETTE: tuple[RGBA, ...] = (
    (1.0, 0.0, 0.0, 1.0),  # red
    (0.0, 0.0, 1.0, 1.0),  # blue
    (0.0, 1.0, 0.0, 1.0),  # green
    (1.0, 1.0, 0.0, 1.0),  # yellow
    (1.0, 0.5, 0.0, 1.0),  # orange
    (0.5, 0.0, 0.5, 1.0),  # purple
    (0.0, 1.0, 1.0, 1.0),  # cyan
    (1.0, 0.0, 1.0, 1.0),  # magenta
)

MIN_PANEL_VERTICES = 3


def palette_color(label: int) -> RGBA:
    return PANEL_PALETTE[int(label) % len(PANEL_PALETTE)]


@dataclass(frozen=True, eq=False)
class Panel:
    """
    Attributes:
        vertex_indices: sorted unique vertex ids used by the panel
        triangle_indices: flat vertex id runs (3 per triangle, mesh winding)
        color: RGBA display color
        cluster_label: label the panel was assembled from
        source_triangles: triangle ids in the source mesh
        id: unique panel id
    """

    vertex_indices: np.ndarray
    triangle_indices: np.ndarray
    color: RGBA = PANEL_PALETTE[0]
    cluster_label: int = 0
    source_triangles: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __post_init__(self):
        for name in ("vertex_indices", "triangle_indices", "source_triangles"):
            arr = np.array(getattr(self, name), dtype=np.int64, copy=True).reshape(-1)
            if name == "vertex_indices":
                # flattened points follow this order
                arr = np.unique(arr)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @classmethod
    def from_triangles(cls, faces: Any, **kwargs) -> "Panel":
        """Build a panel whose vertex set is derived from ``faces``."""
        faces = np.asarray(faces, dtype=np.int64).reshape(-1)
        return cls(vertex_indices=np.unique(faces), triangle_indices=faces, **kwargs)

    @property
    def n_vertices(self) -> int:
        return int(self.vertex_indices.shape[0])

    @property
    def n_triangles(self) -> int:
        return int(self.triangle_indices.shape[0] // 3)

    @property
    def faces(self) -> np.ndarray:
        return self.triangle_indices.reshape(-1, 3)

    def is_consistent(self) -> bool:
        if self.triangle_indices.shape[0] % 3 != 0:
            return False
        if self.n_vertices < MIN_PANEL_VERTICES:
            return False
        return bool(np.array_equal(np.unique(self.triangle_indices), self.vertex_indices))


def assemble_panels(mesh: Mesh, labels: np.ndarray, k: int | None = None) -> list[Panel]:
    """
    One panel per non-empty label, in label order.

    Labels covering fewer than 3 distinct vertices are dropped.

    Raises:
        SegmentationFailed: no panel survived
    """
    labels = np.asarray(labels, dtype=np.int64).reshape(-1)
    if labels.shape[0] != mesh.n_triangles:
        raise SegmentationFailed(
            f"label count {labels.shape[0]} does not match triangle count {mesh.n_triangles}"
        )
    n_labels = (int(labels.max()) + 1 if labels.size else 0) if k is None else int(k)

    order = np.argsort(labels, kind="stable")
    counts = np.bincount(labels, minlength=n_labels) if labels.size else np.zeros(n_labels, dtype=np.int64)
    bounds = np.concatenate([[0], np.cumsum(counts)])

    panels: list[Panel] = []
    dropped = 0
    for label in range(n_labels):
        tris = order[bounds[label]:bounds[label + 1]]
        if tris.size == 0:
            continue
        faces = mesh.faces[tris]
        vertex_ids = np.unique(faces)
        if vertex_ids.size < MIN_PANEL_VERTICES:
            dropped += 1
            continue
        panels.append(
            Panel(
                vertex_indices=vertex_ids,
                triangle_indices=faces.reshape(-1),
                color=palette_color(label),
                cluster_label=label,
                source_triangles=tris,
            )
        )

    if dropped:
        _LOGGER.debug("Dropped %d clusters with fewer than %d vertices", dropped, MIN_PANEL_VERTICES)
    if not panels:
        raise SegmentationFailed("segmentation produced no usable panels")
    return panels
