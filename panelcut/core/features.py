"""
Per-vertex and per-triangle geometric features.

Features feed the clustering distance: position, unit normal, a discrete
curvature estimate (angle defect) and the local mean edge length. Everything
is computed with vectorized numpy scatter-adds; degenerate triangles are
excluded from the weighted terms rather than rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import logging
import numpy as np

from .cooperative import Checkpoint
from .errors import InvalidMesh
from .mesh_store import DEGENERATE_AREA, Mesh

_LOGGER = logging.getLogger(__name__)

UP = np.array([0.0, 0.0, 1.0], dtype=np.float64)


@dataclass(frozen=True, eq=False)
class FeatureRecord:
    position: np.ndarray
    normal: np.ndarray
    curvature: float
    average_edge_length: float


@dataclass(frozen=True, eq=False)
class FeatureSet:
    """
    Struct-of-arrays feature table.

    Attributes:
        positions: (K, 3)
        normals: (K, 3) unit vectors
        curvature: (K,)
        average_edge_length: (K,)
        meta: fallback counters for diagnostics
    """

    positions: np.ndarray
    normals: np.ndarray
    curvature: np.ndarray
    average_edge_length: np.ndarray
    meta: dict[str, Any] = field(default_factory=dict, compare=False)

    def __len__(self) -> int:
        return int(self.positions.shape[0])

    def record(self, i: int) -> FeatureRecord:
        return FeatureRecord(
            position=self.positions[i].copy(),
            normal=self.normals[i].copy(),
            curvature=float(self.curvature[i]),
            average_edge_length=float(self.average_edge_length[i]),
        )


class VertexFeatures(FeatureSet):
    """Features index-aligned with ``mesh.vertices``."""


class TriangleFeatures(FeatureSet):
    """Features index-aligned with ``mesh.faces``."""


@dataclass(frozen=True, eq=False)
class MeshFeatures:
    vertex: VertexFeatures
    triangle: TriangleFeatures
    vertex_area: np.ndarray


def _normalize_rows(vectors: np.ndarray, fallback: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    norms = np.linalg.norm(vectors, axis=1)
    ok = norms > 1e-12
    out = np.empty_like(vectors)
    out[ok] = vectors[ok] / norms[ok, None]
    out[~ok] = fallback
    return out, ~ok


def _corner_angles(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """(M, 3) interior angle at each triangle corner; 0 for degenerate corners."""
    angles = np.zeros(faces.shape, dtype=np.float64)
    for corner in range(3):
        p = vertices[faces[:, corner]]
        a = vertices[faces[:, (corner + 1) % 3]] - p
        b = vertices[faces[:, (corner + 2) % 3]] - p
        sin_term = np.linalg.norm(np.cross(a, b), axis=1)
        cos_term = np.einsum("ij,ij->i", a, b)
        angles[:, corner] = np.arctan2(sin_term, cos_term)
    return angles


def _average_edge_length(mesh: Mesh) -> np.ndarray:
    n = mesh.n_vertices
    edges = mesh.unique_edges()
    if edges.shape[0] == 0:
        return np.zeros(n, dtype=np.float64)
    lengths = np.linalg.norm(mesh.vertices[edges[:, 0]] - mesh.vertices[edges[:, 1]], axis=1)
    ends = edges.reshape(-1)
    total = np.bincount(ends, weights=np.repeat(lengths, 2), minlength=n)
    degree = np.bincount(ends, minlength=n)
    out = np.zeros(n, dtype=np.float64)
    has = degree > 0
    out[has] = total[has] / degree[has]
    return out


def compute_vertex_features(mesh: Mesh) -> tuple[VertexFeatures, np.ndarray]:
    """
    Vertex features plus the per-vertex incident area.

    Raises:
        InvalidMesh: fewer than 3 vertices or out-of-range indices
    """
    if mesh.n_vertices < 3:
        raise InvalidMesh(f"need at least 3 vertices for features, got {mesh.n_vertices}")
    if mesh.n_triangles and (int(mesh.faces.min()) < 0 or int(mesh.faces.max()) >= mesh.n_vertices):
        raise InvalidMesh("triangle references a vertex outside the mesh")

    n = mesh.n_vertices
    vertices = mesh.vertices
    faces = mesh.faces
    flat = faces.reshape(-1)

    cross = mesh.face_cross()
    areas = 0.5 * np.linalg.norm(cross, axis=1)
    usable = areas >= DEGENERATE_AREA
    n_degenerate = int(np.count_nonzero(~usable))
    if n_degenerate:
        _LOGGER.debug("Excluding %d degenerate triangles from normal weights", n_degenerate)

    # |cross| = 2 * area, so summing cross vectors is the area-weighted normal sum.
    weighted = np.where(usable[:, None], cross, 0.0)
    accum = np.column_stack(
        [np.bincount(flat, weights=np.repeat(weighted[:, axis], 3), minlength=n) for axis in range(3)]
    )
    normals, fell_back = _normalize_rows(accum, UP)

    incident = np.bincount(flat, minlength=n)
    vertex_area = np.bincount(flat, weights=np.repeat(areas, 3), minlength=n)
    angle_sum = np.bincount(flat, weights=_corner_angles(vertices, faces).reshape(-1), minlength=n)

    curvature = np.zeros(n, dtype=np.float64)
    interior = (incident >= 3) & (vertex_area > 1e-12)
    curvature[interior] = (2.0 * np.pi - angle_sum[interior]) / (vertex_area[interior] / 3.0)

    features = VertexFeatures(
        positions=vertices.copy(),
        normals=normals,
        curvature=curvature,
        average_edge_length=_average_edge_length(mesh),
        meta={
            "degenerate_triangles": n_degenerate,
            "normal_fallbacks": int(np.count_nonzero(fell_back)),
            "zero_curvature_vertices": int(np.count_nonzero(~interior)),
        },
    )
    return features, vertex_area


def compute_triangle_features(
    mesh: Mesh,
    vertex: VertexFeatures,
    vertex_area: np.ndarray,
) -> TriangleFeatures:
    faces = mesh.faces
    positions = vertex.positions[faces].mean(axis=1)
    curvature = vertex.curvature[faces].mean(axis=1)
    edge_length = vertex.average_edge_length[faces].mean(axis=1)

    corner_weight = (np.asarray(vertex_area, dtype=np.float64)[faces] / 3.0)[:, :, None]
    corner_normals = vertex.normals[faces]
    weighted = (corner_normals * corner_weight).sum(axis=1)
    normals, weak = _normalize_rows(weighted, UP)
    if np.any(weak):
        # zero corner weights: fall back to the plain mean, then to +Z
        plain, _ = _normalize_rows(corner_normals[weak].sum(axis=1), UP)
        normals[weak] = plain

    return TriangleFeatures(
        positions=positions,
        normals=normals,
        curvature=curvature,
        average_edge_length=edge_length,
        meta={"normal_fallbacks": int(np.count_nonzero(weak))},
    )


def extract_features(mesh: Mesh, *, checkpoint: Optional[Checkpoint] = None) -> MeshFeatures:
    vertex, vertex_area = compute_vertex_features(mesh)
    if checkpoint is not None:
        checkpoint.check("features")
    triangle = compute_triangle_features(mesh, vertex, vertex_area)
    _LOGGER.debug(
        "Features: %d vertices, %d triangles, meta=%s", len(vertex), len(triangle), vertex.meta
    )
    return MeshFeatures(vertex=vertex, triangle=triangle, vertex_area=vertex_area)
