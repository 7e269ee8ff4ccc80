"""
Panel Flattening Module
패널 평면화 - 3D 패널을 변 길이를 보존하며 2D 패턴 조각으로 펼침

Initial layout is a best-fit plane projection (or an LSCM solve), refined by
a spring relaxation in which every mesh edge of the panel pulls its two end
points toward its original 3D length.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
import logging
import time
import uuid

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from .config import FlatteningConfig
from .cooperative import Checkpoint
from .errors import EmptyPanel, InvalidGeometry
from .logging_utils import log_once
from .mesh_store import Mesh, boundary_edges, boundary_loops, unique_edges
from .panels import RGBA, Panel, PANEL_PALETTE

_LOGGER = logging.getLogger(__name__)

YIELD_EVERY = 25
_MIN_REST_LENGTH = 1e-12


@dataclass(frozen=True)
class BoundingBox2D:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @classmethod
    def from_points(cls, points: np.ndarray) -> "BoundingBox2D":
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        finite = pts[np.all(np.isfinite(pts), axis=1)]
        if finite.size == 0:
            return cls(0.0, 0.0, 0.0, 0.0)
        lo = finite.min(axis=0)
        hi = finite.max(axis=0)
        return cls(float(lo[0]), float(lo[1]), float(hi[0]), float(hi[1]))

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> tuple[float, float]:
        return (0.5 * (self.min_x + self.max_x), 0.5 * (self.min_y + self.max_y))

    def intersects(self, other: "BoundingBox2D") -> bool:
        return not (
            self.max_x < other.min_x
            or other.max_x < self.min_x
            or self.max_y < other.min_y
            or other.max_y < self.min_y
        )


@dataclass(eq=False)
class FlattenedPanel:
    """
    평면화된 패널 결과

    Attributes:
        points_2d: (V, 2) 2D 좌표, ``vertex_indices`` 순서와 동일
        edges: (E, 2) boundary (seam) edges as local point indices
        source_panel_id: id of the panel this piece came from
        bounding_box: axis-aligned box of ``points_2d``
        vertex_indices: (V,) mesh vertex ids of the points
        faces: (F, 3) local triangles
        spring_edges: (S, 2) every panel edge, local indices
        rest_lengths: (S,) 3D length of each spring edge (mesh units)
        scale: multiplier applied to output coordinates
        meta: iteration counts, initial layout used, errors
    """

    points_2d: np.ndarray
    edges: np.ndarray
    source_panel_id: uuid.UUID
    bounding_box: BoundingBox2D
    vertex_indices: np.ndarray
    faces: np.ndarray
    spring_edges: np.ndarray
    rest_lengths: np.ndarray
    color: RGBA = PANEL_PALETTE[0]
    scale: float = 1.0
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def n_points(self) -> int:
        return int(self.points_2d.shape[0])

    @property
    def edge_set(self) -> set[tuple[int, int]]:
        return {(int(a), int(b)) for a, b in self.edges.tolist()}

    @property
    def width(self) -> float:
        return self.bounding_box.width

    @property
    def height(self) -> float:
        return self.bounding_box.height

    @property
    def area(self) -> float:
        """2D 면적 (출력 단위)"""
        if self.faces.shape[0] == 0:
            return 0.0
        p = self.points_2d
        a = p[self.faces[:, 1]] - p[self.faces[:, 0]]
        b = p[self.faces[:, 2]] - p[self.faces[:, 0]]
        return float(0.5 * np.abs(a[:, 0] * b[:, 1] - a[:, 1] * b[:, 0]).sum())

    def edge_lengths_2d(self) -> np.ndarray:
        """2D length of every spring edge, in mesh units (scale removed)."""
        d = self.points_2d[self.spring_edges[:, 1]] - self.points_2d[self.spring_edges[:, 0]]
        return np.linalg.norm(d, axis=1) / float(self.scale)

    def edge_length_errors(self) -> np.ndarray:
        """Relative length error per spring edge (edges without length are skipped)."""
        return _relative_errors(self.points_2d / float(self.scale), self.spring_edges, self.rest_lengths)

    @property
    def mean_relative_error(self) -> float:
        err = self.edge_length_errors()
        return float(err.mean()) if err.size else 0.0

    @property
    def max_relative_error(self) -> float:
        err = self.edge_length_errors()
        return float(err.max()) if err.size else 0.0

    def boundary_loops(self) -> list[np.ndarray]:
        """Ordered local point indices of each seam loop."""
        return boundary_loops(self.edges)

    def translated(self, dx: float, dy: float) -> "FlattenedPanel":
        points = self.points_2d + np.array([dx, dy], dtype=np.float64)
        return FlattenedPanel(
            points_2d=points,
            edges=self.edges,
            source_panel_id=self.source_panel_id,
            bounding_box=BoundingBox2D.from_points(points),
            vertex_indices=self.vertex_indices,
            faces=self.faces,
            spring_edges=self.spring_edges,
            rest_lengths=self.rest_lengths,
            color=self.color,
            scale=self.scale,
            meta=dict(self.meta),
        )


def _relative_errors(points: np.ndarray, springs: np.ndarray, rest: np.ndarray) -> np.ndarray:
    usable = rest > _MIN_REST_LENGTH
    if not np.any(usable):
        return np.zeros(0, dtype=np.float64)
    s = springs[usable]
    r = rest[usable]
    lengths = np.linalg.norm(points[s[:, 1]] - points[s[:, 0]], axis=1)
    return np.abs(lengths - r) / r


def _panel_topology(panel: Panel, mesh: Mesh) -> tuple[np.ndarray, np.ndarray]:
    """
    Validate the panel against the mesh.

    Returns:
        (vertex_ids, local_faces): sorted unique mesh vertex ids and triangles
        re-indexed into them
    """
    vertex_ids = np.asarray(panel.vertex_indices, dtype=np.int64).reshape(-1)
    tri = np.asarray(panel.triangle_indices, dtype=np.int64).reshape(-1)
    if vertex_ids.size == 0:
        raise EmptyPanel(f"panel {panel.id} has no vertices")
    if tri.size == 0:
        raise EmptyPanel(f"panel {panel.id} has no triangles")
    if tri.size % 3 != 0:
        raise InvalidGeometry(f"panel {panel.id}: triangle index count {tri.size} is not a multiple of 3")

    vertex_ids = np.unique(vertex_ids)
    if vertex_ids.size < 3:
        raise InvalidGeometry(f"panel {panel.id} has {vertex_ids.size} vertices; at least 3 are needed")
    if int(vertex_ids[0]) < 0 or int(vertex_ids[-1]) >= mesh.n_vertices:
        raise InvalidGeometry(f"panel {panel.id} references vertices outside the mesh")

    pos = np.searchsorted(vertex_ids, tri)
    pos = np.clip(pos, 0, vertex_ids.size - 1)
    if not np.array_equal(vertex_ids[pos], tri):
        raise InvalidGeometry(f"panel {panel.id}: triangles reference vertices missing from vertex_indices")
    return vertex_ids, pos.reshape(-1, 3)


def _plane_basis(normal: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    if abs(float(normal[0])) < 0.9:
        temp = np.array([1.0, 0.0, 0.0])
    else:
        temp = np.array([0.0, 1.0, 0.0])
    u_axis = np.cross(normal, temp)
    u_axis /= np.linalg.norm(u_axis)
    v_axis = np.cross(normal, u_axis)
    v_axis /= np.linalg.norm(v_axis)
    return u_axis, v_axis


def _panel_normal(points: np.ndarray, faces: np.ndarray) -> tuple[np.ndarray, str]:
    """Area-weighted mean triangle normal, falling back to PCA, then +Z."""
    cross = np.cross(points[faces[:, 1]] - points[faces[:, 0]], points[faces[:, 2]] - points[faces[:, 0]])
    total = cross.sum(axis=0)
    norm = float(np.linalg.norm(total))
    if norm > 1e-12 and np.isfinite(norm):
        return total / norm, "area_weighted"

    centered = points - points.mean(axis=0)
    try:
        _, s, vh = np.linalg.svd(centered, full_matrices=False)
    except np.linalg.LinAlgError:
        _LOGGER.debug("PCA normal failed", exc_info=True)
    else:
        if s.size >= 2 and s[1] > 1e-12:
            n = vh[-1]
            return n / np.linalg.norm(n), "pca"
    return np.array([0.0, 0.0, 1.0]), "up"


def plane_layout(points: np.ndarray, faces: np.ndarray) -> tuple[np.ndarray, str]:
    """Project onto the panel's best-fit plane, origin at the vertex centroid."""
    normal, source = _panel_normal(points, faces)
    u_axis, v_axis = _plane_basis(normal)
    centered = points - points.mean(axis=0)
    uv = np.column_stack([centered @ u_axis, centered @ v_axis])
    return uv, source


def _pick_anchor_pair(points: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    """Approximate diameter (two farthest candidates) of the candidate set."""
    candidates = np.asarray(candidates, dtype=np.int64).reshape(-1)
    a0 = int(candidates[0])
    d0 = np.linalg.norm(points[candidates] - points[a0], axis=1)
    b = int(candidates[int(np.argmax(d0))])
    d1 = np.linalg.norm(points[candidates] - points[b], axis=1)
    a = int(candidates[int(np.argmax(d1))])
    if a == b:
        a = int(candidates[1]) if int(candidates[0]) == b else int(candidates[0])
    return np.array([b, a], dtype=np.int64)


def lscm_layout(points: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """
    LSCM (Least Squares Conformal Maps) 초기 파라미터화

    Two boundary anchors are pinned at (0, 0) and (d, 0), d being their 3D
    distance; the remaining coordinates solve the conformality least squares.
    """
    n = points.shape[0]
    p0 = points[faces[:, 0]]
    e1 = points[faces[:, 1]] - p0
    e2 = points[faces[:, 2]] - p0
    x1 = np.linalg.norm(e1, axis=1)
    ok = x1 > 1e-10
    x2 = np.zeros_like(x1)
    x2[ok] = np.einsum("ij,ij->i", e2[ok], e1[ok]) / x1[ok]
    e1_hat = np.zeros_like(e1)
    e1_hat[ok] = e1[ok] / x1[ok, None]
    y2 = np.linalg.norm(e2 - x2[:, None] * e1_hat, axis=1)
    area = 0.5 * x1 * y2
    ok &= area > 1e-10
    if not np.any(ok):
        raise np.linalg.LinAlgError("no non-degenerate triangle for LSCM")

    faces_ok = faces[ok]
    denom = 2.0 * np.sqrt(area[ok])
    z1 = x1[ok] + 0j
    z2 = x2[ok] + 1j * y2[ok]
    weights = np.column_stack([(z2 - z1) / denom, (0 - z2) / denom, (z1 - 0) / denom])

    m = faces_ok.shape[0]
    fi = np.repeat(np.arange(m), 3)
    vi = faces_ok.reshape(-1)
    w = weights.reshape(-1)
    rows = np.concatenate([2 * fi, 2 * fi, 2 * fi + 1, 2 * fi + 1])
    cols = np.concatenate([2 * vi, 2 * vi + 1, 2 * vi, 2 * vi + 1])
    vals = np.concatenate([w.real, -w.imag, w.imag, w.real])
    A = sparse.coo_matrix((vals, (rows, cols)), shape=(2 * m, 2 * n)).tocsc()

    boundary = np.unique(boundary_edges(faces))
    candidates = boundary if boundary.size >= 2 else np.arange(n)
    anchors = _pick_anchor_pair(points, candidates)
    dist = float(np.linalg.norm(points[anchors[1]] - points[anchors[0]]))
    if not np.isfinite(dist) or dist < 1e-9:
        dist = 1.0
    fixed_pos = np.array([[0.0, 0.0], [dist, 0.0]])

    free = np.setdiff1d(np.arange(n), anchors)
    free_cols = np.column_stack([2 * free, 2 * free + 1]).reshape(-1)
    fixed_cols = np.column_stack([2 * anchors, 2 * anchors + 1]).reshape(-1)

    A_free = A[:, free_cols]
    b = -(A[:, fixed_cols] @ fixed_pos.reshape(-1))
    AtA = (A_free.T @ A_free + sparse.eye(free_cols.size) * 1e-8).tocsc()
    x_free = spsolve(AtA, A_free.T @ b)

    uv = np.zeros((n, 2), dtype=np.float64)
    uv[anchors] = fixed_pos
    uv[free] = np.asarray(x_free).reshape(-1, 2)
    if not np.all(np.isfinite(uv)):
        raise np.linalg.LinAlgError("LSCM produced non-finite coordinates")
    return uv


def orient_pca(uv: np.ndarray) -> np.ndarray:
    """Rotate so the principal axis lies along +x; rigid, lengths unchanged."""
    pts = np.asarray(uv, dtype=np.float64)
    if pts.shape[0] < 2:
        return pts.copy()
    mean = pts.mean(axis=0)
    centered = pts - mean
    cov = centered.T @ centered / float(pts.shape[0])
    try:
        evals, evecs = np.linalg.eigh(cov)
    except np.linalg.LinAlgError:
        return pts.copy()

    axes = evecs[:, np.argsort(evals)[::-1]]
    for k in range(2):
        idx = int(np.argmax(np.abs(axes[:, k])))
        if axes[idx, k] < 0:
            axes[:, k] *= -1
    if float(np.linalg.det(axes)) < 0:
        axes[:, 1] *= -1
    return centered @ axes


def relax_springs(
    uv: np.ndarray,
    springs: np.ndarray,
    rest: np.ndarray,
    *,
    iterations: int,
    tolerance: float,
    factor: float = 1.0,
    checkpoint: Optional[Checkpoint] = None,
) -> tuple[np.ndarray, dict[str, Any]]:
    """
    Spring relaxation toward the 3D edge lengths.

    Each iteration moves every point toward the mean of the positions that
    would exactly satisfy each incident spring, with the neighbour held fixed.
    All points update from the same snapshot. The configuration with the
    lowest mean relative error seen is returned.

    ``tolerance`` is absolute: iteration stops once no point moves farther.
    """
    pts = np.array(uv, dtype=np.float64, copy=True)
    n = pts.shape[0]
    n_springs = springs.shape[0]
    i_idx = springs[:, 0]
    j_idx = springs[:, 1]
    degree = np.bincount(springs.reshape(-1), minlength=n).astype(np.float64)
    has_springs = degree > 0

    # row p sums the targets voted for point p by its incident springs
    gather = sparse.csr_matrix(
        (np.ones(2 * n_springs), (np.concatenate([i_idx, j_idx]), np.arange(2 * n_springs))),
        shape=(n, 2 * n_springs),
    )
    measured = rest > _MIN_REST_LENGTH
    rest_measured = rest[measured]

    def _mean_error(length: np.ndarray) -> float:
        if rest_measured.size == 0:
            return 0.0
        return float(np.mean(np.abs(length[measured] - rest_measured) / rest_measured))

    best = pts.copy()
    best_error = np.inf
    initial_error = None
    converged = False
    it = 0

    for it in range(1, int(iterations) + 1):
        p_i = pts[i_idx]
        p_j = pts[j_idx]
        d = p_j - p_i
        length = np.sqrt(np.einsum("ij,ij->i", d, d))

        # error of the configuration the previous step produced
        current = _mean_error(length)
        if initial_error is None:
            initial_error = current
        if current < best_error:
            best_error = current
            best = pts.copy()

        usable = length > 1e-15
        direction = np.zeros_like(d)
        direction[usable] = d[usable] / length[usable, None]
        offset = direction * rest[:, None]

        # degenerate springs vote for the current position
        target_i = np.where(usable[:, None], p_j - offset, p_i)
        target_j = np.where(usable[:, None], p_i + offset, p_j)

        accum = gather @ np.concatenate([target_i, target_j])
        goal = pts.copy()
        goal[has_springs] = accum[has_springs] / degree[has_springs, None]

        step = factor * (goal - pts)
        pts = pts + step
        displacement = float(np.linalg.norm(step, axis=1).max(initial=0.0))

        if displacement < tolerance:
            converged = True
            break
        if checkpoint is not None and it % YIELD_EVERY == 0:
            checkpoint.check("flattening")

    final_errors = _relative_errors(pts, springs, rest)
    final = float(final_errors.mean()) if final_errors.size else 0.0
    if initial_error is None:
        initial_error = final
    if final < best_error:
        best_error = final
        best = pts

    return best, {
        "iterations": it,
        "converged": converged,
        "initial_mean_error": initial_error,
        "mean_error": best_error,
    }


def flatten_panel(
    panel: Panel,
    mesh: Mesh,
    config: Optional[FlatteningConfig] = None,
    *,
    checkpoint: Optional[Checkpoint] = None,
) -> FlattenedPanel:
    """
    Flatten one panel.

    Raises:
        EmptyPanel: the panel has no vertices or no triangles
        InvalidGeometry: fewer than 3 vertices or broken index references
        FlatteningTimeout / Cancelled: raised by ``checkpoint``
    """
    cfg = config or FlatteningConfig()
    t0 = time.perf_counter()
    vertex_ids, faces = _panel_topology(panel, mesh)
    points = mesh.vertices[vertex_ids]

    springs = unique_edges(faces)
    rest = np.linalg.norm(points[springs[:, 1]] - points[springs[:, 0]], axis=1)
    mean_rest = float(rest.mean()) if rest.size else 0.0

    layout = str(cfg.initial_layout)
    uv = None
    if layout == "lscm":
        try:
            uv = lscm_layout(points, faces)
        except (np.linalg.LinAlgError, RuntimeError, ValueError) as e:
            log_once(
                _LOGGER,
                f"flattener:lscm_fallback:{type(e).__name__}",
                logging.WARNING,
                "LSCM initial layout failed (%s); using plane projection",
                e,
                exc_info=True,
            )
            layout = "plane"
    normal_source = None
    if uv is None:
        uv, normal_source = plane_layout(points, faces)

    uv, stats = relax_springs(
        uv,
        springs,
        rest,
        iterations=int(cfg.relaxation_iterations),
        tolerance=float(cfg.convergence_threshold) * mean_rest,
        factor=float(cfg.relaxation_factor),
        checkpoint=checkpoint,
    )

    if cfg.orient:
        uv = orient_pca(uv)
    uv = uv - uv.min(axis=0)
    uv = uv * float(cfg.scale)

    errors = _relative_errors(uv / float(cfg.scale), springs, rest)
    meta = dict(stats)
    meta.update(
        {
            "initial_layout": layout,
            "normal_source": normal_source,
            "max_error": float(errors.max()) if errors.size else 0.0,
            "elapsed_s": time.perf_counter() - t0,
        }
    )
    if meta["mean_error"] > 0.10:
        _LOGGER.info(
            "Panel %s flattened with high distortion: mean %.1f%%, max %.1f%%",
            panel.id,
            100.0 * meta["mean_error"],
            100.0 * meta["max_error"],
        )

    return FlattenedPanel(
        points_2d=uv,
        edges=boundary_edges(faces),
        source_panel_id=panel.id,
        bounding_box=BoundingBox2D.from_points(uv),
        vertex_indices=vertex_ids,
        faces=faces,
        spring_edges=springs,
        rest_lengths=rest,
        color=panel.color,
        scale=float(cfg.scale),
        meta=meta,
    )
