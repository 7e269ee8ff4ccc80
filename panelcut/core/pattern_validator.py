"""
Manufacturability checks for flattened pattern pieces.

Coordinates are assumed to be millimetres (apply the calibration ``scale``
when flattening). Checks never modify the pieces; they return issue lists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence
import logging
import uuid

import numpy as np

from .flattener import BoundingBox2D, FlattenedPanel

_LOGGER = logging.getLogger(__name__)

STANDARD_SEAM_ALLOWANCE = 5.0
MINIMUM_PANEL_AREA = 100.0
MINIMUM_EDGE_LENGTH = 10.0
MAXIMUM_ASPECT_RATIO = 20.0
MAXIMUM_MEAN_DISTORTION = 0.10
EDGE_RATIO_RANGE = (0.5, 2.0)

# Elements of a pairwise (segment x segment) mask evaluated per block.
_CHUNK_ELEMENTS = 4_000_000


class Severity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


class IssueType(str, Enum):
    GEOMETRY = "geometry"
    SIZE = "size"
    DISTORTION = "distortion"
    INTERSECTION = "intersection"
    GRAIN_LINE = "grain_line"


@dataclass(frozen=True)
class ValidationIssue:
    severity: Severity
    type: IssueType
    message: str
    panel_id: Optional[uuid.UUID] = None
    location: Optional[tuple[float, float]] = None

    @property
    def is_blocking(self) -> bool:
        return self.severity in (Severity.CRITICAL, Severity.ERROR)


@dataclass(frozen=True)
class ValidatorConfig:
    # 45", 60", 54", 42"
    fabric_widths: tuple[float, ...] = (1143.0, 1524.0, 1372.0, 1067.0)
    minimum_seam_allowance: float = 3.0
    maximum_seam_allowance: float = 15.0
    minimum_panel_area: float = MINIMUM_PANEL_AREA
    minimum_edge_length: float = MINIMUM_EDGE_LENGTH


@dataclass
class PanelValidationResult:
    panel_id: uuid.UUID
    issues: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(issue.is_blocking for issue in self.issues)

    @property
    def summary(self) -> str:
        if not self.is_valid:
            return f"Panel validation failed with {len(self.issues)} issues"
        if self.warnings:
            return f"Panel validation passed with {len(self.warnings)} warnings"
        return "Panel validation passed with no issues"


@dataclass
class FabricCompatibility:
    compatible_widths: list[float]
    recommended_width: Optional[float]
    issues: list[str]

    @property
    def requires_custom_width(self) -> bool:
        return not self.compatible_widths


@dataclass
class PatternSetValidationResult:
    panel_results: list[PanelValidationResult]
    layout_issues: list[ValidationIssue]
    fabric: FabricCompatibility
    total_area: float

    @property
    def is_valid(self) -> bool:
        if any(not r.is_valid for r in self.panel_results):
            return False
        return not any(issue.is_blocking for issue in self.layout_issues)

    @property
    def recommended_fabric_width(self) -> Optional[float]:
        return self.fabric.recommended_width


@dataclass
class FabricUtilization:
    total_panel_area: float
    total_fabric_area: float
    efficiency: float
    required_length: float
    oversized_panels: list[uuid.UUID]
    recommendations: list[str]

    @property
    def is_efficient(self) -> bool:
        return self.efficiency > 0.65


def _cross2(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return a[..., 0] * b[..., 1] - a[..., 1] * b[..., 0]


def segments_intersect(p1, p2, p3, p4) -> Optional[tuple[float, float]]:
    """Intersection point of segments p1-p2 and p3-p4; parallel segments never intersect."""
    hit, points = _segment_hits(*(np.asarray(p, dtype=np.float64).reshape(1, 2) for p in (p1, p2, p3, p4)))
    if hit[0]:
        return (float(points[0, 0]), float(points[0, 1]))
    return None


def points_in_polygon(points: np.ndarray, polygon: np.ndarray) -> np.ndarray:
    """Vectorised ray casting; polygons with fewer than 3 vertices contain nothing."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    poly = np.asarray(polygon, dtype=np.float64).reshape(-1, 2)
    inside = np.zeros(pts.shape[0], dtype=bool)
    if poly.shape[0] < 3 or pts.shape[0] == 0:
        return inside
    xi, yi = poly[:, 0], poly[:, 1]
    xj, yj = np.roll(xi, 1), np.roll(yi, 1)
    chunk = max(1, _CHUNK_ELEMENTS // poly.shape[0])
    for start in range(0, pts.shape[0], chunk):
        x = pts[start:start + chunk, 0:1]
        y = pts[start:start + chunk, 1:2]
        crosses = (yi > y) != (yj > y)
        with np.errstate(divide="ignore", invalid="ignore"):
            x_hit = (xj - xi) * (y - yi) / (yj - yi) + xi
        inside[start:start + chunk] = np.count_nonzero(crosses & (x < x_hit), axis=1) % 2 == 1
    return inside


def point_in_polygon(point, polygon: np.ndarray) -> bool:
    """Ray casting; polygons with fewer than 3 vertices contain nothing."""
    return bool(points_in_polygon(np.asarray(point, dtype=np.float64).reshape(1, 2), polygon)[0])


def _bbox_candidates(a0, a1, b0, b1, *, upper_only: bool = False) -> tuple[np.ndarray, np.ndarray]:
    """Segment pairs ``(ia, ib)`` whose bounding boxes touch, row-major order."""
    lo_a, hi_a = np.minimum(a0, a1), np.maximum(a0, a1)
    lo_b, hi_b = np.minimum(b0, b1), np.maximum(b0, b1)
    n_b = lo_b.shape[0]
    rows: list[np.ndarray] = []
    cols: list[np.ndarray] = []
    chunk = max(1, _CHUNK_ELEMENTS // max(n_b, 1))
    for start in range(0, lo_a.shape[0], chunk):
        stop = min(lo_a.shape[0], start + chunk)
        touch = np.all(
            (lo_a[start:stop, None, :] <= hi_b[None, :, :]) & (lo_b[None, :, :] <= hi_a[start:stop, None, :]),
            axis=2,
        )
        if upper_only:
            touch &= np.arange(start, stop)[:, None] < np.arange(n_b)[None, :]
        r, c = np.nonzero(touch)
        rows.append(r + start)
        cols.append(c)
    if not rows:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
    return np.concatenate(rows).astype(np.int64), np.concatenate(cols).astype(np.int64)


def _segment_hits(a0, a1, b0, b1) -> tuple[np.ndarray, np.ndarray]:
    """Row-wise ``segments_intersect``: (hit mask, intersection points)."""
    r = a1 - a0
    s = b1 - b0
    qp = b0 - a0
    rxs = _cross2(r, s)
    usable = np.abs(rxs) >= 1e-8
    with np.errstate(divide="ignore", invalid="ignore"):
        t = _cross2(qp, s) / rxs
        u = _cross2(qp, r) / rxs
    hit = usable & (t >= 0.0) & (t <= 1.0) & (u >= 0.0) & (u <= 1.0)
    return hit, a0 + np.where(usable, t, 0.0)[:, None] * r


def outline(flat: FlattenedPanel) -> np.ndarray:
    """Outer seam polygon (longest boundary loop) as ``(L, 2)`` points."""
    loops = flat.boundary_loops()
    if not loops:
        return flat.points_2d.copy()
    longest = max(loops, key=lambda loop: loop.shape[0])
    return flat.points_2d[longest]


def polygons_intersect(poly_a: np.ndarray, poly_b: np.ndarray) -> bool:
    poly_a = np.asarray(poly_a, dtype=np.float64).reshape(-1, 2)
    poly_b = np.asarray(poly_b, dtype=np.float64).reshape(-1, 2)
    if np.any(points_in_polygon(poly_a, poly_b)) or np.any(points_in_polygon(poly_b, poly_a)):
        return True
    a_next = np.roll(poly_a, -1, axis=0)
    b_next = np.roll(poly_b, -1, axis=0)
    ia, ib = _bbox_candidates(poly_a, a_next, poly_b, b_next)
    if ia.size == 0:
        return False
    hit, _ = _segment_hits(poly_a[ia], a_next[ia], poly_b[ib], b_next[ib])
    return bool(np.any(hit))


class PatternValidator:
    """
    Geometry, size and layout checks for flattened panels.

    Issues with ``critical`` / ``error`` severity make a result invalid;
    ``warning`` issues are advisory.
    """

    def __init__(self, config: Optional[ValidatorConfig] = None):
        self.config = config or ValidatorConfig()

    # ---- single panel ----

    def _basic_geometry(self, flat: FlattenedPanel) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        pts = np.asarray(flat.points_2d, dtype=np.float64)
        pid = flat.source_panel_id
        if pts.shape[0] < 3:
            issues.append(ValidationIssue(Severity.CRITICAL, IssueType.GEOMETRY, "Panel must have at least 3 points", pid))
            return issues

        if np.unique(pts, axis=0).shape[0] != pts.shape[0]:
            issues.append(ValidationIssue(Severity.ERROR, IssueType.GEOMETRY, "Panel contains duplicate points", pid))

        bbox = flat.bounding_box
        if bbox.width <= 0 or bbox.height <= 0:
            issues.append(
                ValidationIssue(
                    Severity.CRITICAL, IssueType.GEOMETRY, "Panel has invalid bounding box", pid, bbox.center
                )
            )

        areas = 0.5 * np.abs(_cross2(pts[1] - pts[0], pts[2:] - pts[0]))
        if not np.any(areas > 1e-6):
            issues.append(ValidationIssue(Severity.CRITICAL, IssueType.GEOMETRY, "All panel points are collinear", pid))
        return issues

    def _size(self, flat: FlattenedPanel) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        bbox = flat.bounding_box
        area = flat.area
        if area < self.config.minimum_panel_area:
            issues.append(
                ValidationIssue(
                    Severity.ERROR,
                    IssueType.SIZE,
                    f"Panel area too small: {area:.1f}mm² < {self.config.minimum_panel_area}mm² minimum",
                    flat.source_panel_id,
                    bbox.center,
                )
            )
        short_side = min(bbox.width, bbox.height)
        if short_side > 0:
            aspect = max(bbox.width, bbox.height) / short_side
            if aspect > MAXIMUM_ASPECT_RATIO:
                issues.append(
                    ValidationIssue(
                        Severity.WARNING,
                        IssueType.SIZE,
                        f"Panel has extreme aspect ratio ({aspect:.1f}:1), may be difficult to handle",
                        flat.source_panel_id,
                        bbox.center,
                    )
                )
        return issues

    def _seam_edges(self, flat: FlattenedPanel) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        edges = np.asarray(flat.edges, dtype=np.int64).reshape(-1, 2)
        if edges.size == 0:
            return issues
        n = flat.n_points
        if int(edges.min()) < 0 or int(edges.max()) >= n:
            issues.append(
                ValidationIssue(Severity.CRITICAL, IssueType.GEOMETRY, "Edge references invalid point indices", flat.source_panel_id)
            )
            return issues

        p = flat.points_2d
        lengths = np.linalg.norm(p[edges[:, 1]] - p[edges[:, 0]], axis=1)
        mids = 0.5 * (p[edges[:, 0]] + p[edges[:, 1]])

        for k in np.flatnonzero(lengths < self.config.minimum_edge_length):
            issues.append(
                ValidationIssue(
                    Severity.ERROR,
                    IssueType.GEOMETRY,
                    f"Edge too short: {lengths[k]:.1f}mm < {self.config.minimum_edge_length}mm minimum",
                    flat.source_panel_id,
                    (float(mids[k, 0]), float(mids[k, 1])),
                )
            )

        rest = _rest_lengths_for(flat, edges) * float(flat.scale)
        has_rest = rest > 0
        ratio = np.full(lengths.shape, 1.0)
        ratio[has_rest] = lengths[has_rest] / rest[has_rest]
        lo, hi = EDGE_RATIO_RANGE
        for k in np.flatnonzero(has_rest & ((ratio <= lo) | (ratio >= hi))):
            issues.append(
                ValidationIssue(
                    Severity.WARNING,
                    IssueType.DISTORTION,
                    f"Edge length significantly changed from 3D (ratio: {ratio[k]:.2f})",
                    flat.source_panel_id,
                    (float(mids[k, 0]), float(mids[k, 1])),
                )
            )
        return issues

    def _self_intersections(self, flat: FlattenedPanel) -> list[ValidationIssue]:
        edges = np.asarray(flat.edges, dtype=np.int64).reshape(-1, 2)
        if edges.shape[0] < 2:
            return []
        p = np.asarray(flat.points_2d, dtype=np.float64)
        if int(edges.min()) < 0 or int(edges.max()) >= p.shape[0]:
            # reported by the seam edge check
            return []
        a0, a1 = p[edges[:, 0]], p[edges[:, 1]]
        ia, ib = _bbox_candidates(a0, a1, a0, a1, upper_only=True)
        # edges sharing an end point meet there by construction
        ea, eb = edges[ia], edges[ib]
        disjoint = (ea[:, 0, None] != eb).all(axis=1) & (ea[:, 1, None] != eb).all(axis=1)
        ia, ib = ia[disjoint], ib[disjoint]
        hit, points = _segment_hits(a0[ia], a1[ia], a0[ib], a1[ib])
        return [
            ValidationIssue(
                Severity.CRITICAL,
                IssueType.INTERSECTION,
                "Panel edges intersect, creating invalid geometry",
                flat.source_panel_id,
                (float(x), float(y)),
            )
            for x, y in points[hit]
        ]

    def _distortion(self, flat: FlattenedPanel) -> list[ValidationIssue]:
        mean = flat.mean_relative_error
        if mean > MAXIMUM_MEAN_DISTORTION:
            return [
                ValidationIssue(
                    Severity.WARNING,
                    IssueType.DISTORTION,
                    f"High flattening distortion detected (average: {100.0 * mean:.1f}%)",
                    flat.source_panel_id,
                )
            ]
        return []

    def validate_panel(self, flat: FlattenedPanel) -> PanelValidationResult:
        result = PanelValidationResult(panel_id=flat.source_panel_id)
        found = self._basic_geometry(flat)
        if not any(i.severity is Severity.CRITICAL for i in found):
            found += self._size(flat)
            found += self._seam_edges(flat)
            found += self._self_intersections(flat)
        for issue in found + self._distortion(flat):
            if issue.severity is Severity.WARNING:
                result.warnings.append(issue)
            else:
                result.issues.append(issue)

        _LOGGER.debug(
            "Panel %s validation: valid=%s issues=%d warnings=%d",
            flat.source_panel_id,
            result.is_valid,
            len(result.issues),
            len(result.warnings),
        )
        return result

    # ---- panel sets ----

    def _overlaps(self, flats: Sequence[FlattenedPanel]) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        outlines = [outline(f) for f in flats]
        for i in range(len(flats)):
            for j in range(i + 1, len(flats)):
                if not flats[i].bounding_box.intersects(flats[j].bounding_box):
                    continue
                if polygons_intersect(outlines[i], outlines[j]):
                    a, b = flats[i].bounding_box, flats[j].bounding_box
                    overlap = BoundingBox2D(
                        max(a.min_x, b.min_x), max(a.min_y, b.min_y), min(a.max_x, b.max_x), min(a.max_y, b.max_y)
                    )
                    issues.append(
                        ValidationIssue(
                            Severity.ERROR,
                            IssueType.INTERSECTION,
                            "Panels overlap - this will cause cutting conflicts",
                            flats[i].source_panel_id,
                            overlap.center,
                        )
                    )
        return issues

    def fabric_compatibility(self, flats: Sequence[FlattenedPanel]) -> FabricCompatibility:
        widest = max((f.bounding_box.width for f in flats), default=0.0)
        compatible: list[float] = []
        issues: list[str] = []
        for width in self.config.fabric_widths:
            oversized = sum(1 for f in flats if f.bounding_box.width > width)
            if oversized:
                issues.append(f"Fabric width {int(width)}mm cannot accommodate {oversized} panels")
            else:
                compatible.append(float(width))

        recommended: Optional[float]
        if compatible:
            recommended = min(compatible)
        elif widest > 0:
            recommended = float(widest)
            issues.append(
                f"No standard fabric width can accommodate the widest panel ({int(widest)}mm); custom width required"
            )
        else:
            recommended = None
        return FabricCompatibility(compatible_widths=compatible, recommended_width=recommended, issues=issues)

    def _grain_line(self, flats: Sequence[FlattenedPanel]) -> list[ValidationIssue]:
        if len(flats) < 2:
            return []
        landscape = {f.bounding_box.width > f.bounding_box.height for f in flats}
        if len(landscape) == 1:
            return []
        return [
            ValidationIssue(
                Severity.WARNING,
                IssueType.GRAIN_LINE,
                "Panels have inconsistent orientations - may affect fabric grain alignment",
                flats[0].source_panel_id,
                flats[0].bounding_box.center,
            )
        ]

    def validate_panel_set(self, flats: Sequence[FlattenedPanel]) -> PatternSetValidationResult:
        flats = list(flats)
        result = PatternSetValidationResult(
            panel_results=[self.validate_panel(f) for f in flats],
            layout_issues=self._overlaps(flats) + self._grain_line(flats),
            fabric=self.fabric_compatibility(flats),
            total_area=float(sum(f.area for f in flats)),
        )
        _LOGGER.info(
            "Pattern set validation: %d panels, valid=%s, layout issues=%d",
            len(flats),
            result.is_valid,
            len(result.layout_issues),
        )
        return result

    def validate_fabric_utilization(self, flats: Sequence[FlattenedPanel], fabric_width: float) -> FabricUtilization:
        flats = list(flats)
        total_area = float(sum(f.area for f in flats))
        length = estimate_fabric_length(flats, fabric_width)
        fabric_area = length * float(fabric_width)
        efficiency = total_area / fabric_area if fabric_area > 0 else 0.0
        oversized = [f.source_panel_id for f in flats if f.bounding_box.width > fabric_width]

        recommendations: list[str] = []
        if efficiency < 0.5:
            recommendations.append(
                f"Very low fabric efficiency ({100.0 * efficiency:.1f}%) - consider rearranging panels"
            )
        elif efficiency < 0.65:
            recommendations.append(f"Low fabric efficiency ({100.0 * efficiency:.1f}%) - optimization possible")
        if oversized:
            recommendations.append(f"Consider using wider fabric or splitting {len(oversized)} oversized panels")
        if efficiency > 0.85:
            recommendations.append(f"Excellent fabric efficiency ({100.0 * efficiency:.1f}%)")

        return FabricUtilization(
            total_panel_area=total_area,
            total_fabric_area=fabric_area,
            efficiency=efficiency,
            required_length=length,
            oversized_panels=oversized,
            recommendations=recommendations,
        )


def estimate_fabric_length(flats: Sequence[FlattenedPanel], fabric_width: float) -> float:
    """Area-packing lower bound, at least the tallest piece, plus 10% handling."""
    if fabric_width <= 0:
        return 0.0
    by_area = sum(f.area for f in flats) / float(fabric_width)
    by_height = max((f.bounding_box.height for f in flats), default=0.0)
    return max(by_area, by_height) * 1.1


def _rest_lengths_for(flat: FlattenedPanel, edges: np.ndarray) -> np.ndarray:
    """3D rest length of each given edge (0 where the edge is not a spring)."""
    springs = np.asarray(flat.spring_edges, dtype=np.int64).reshape(-1, 2)
    out = np.zeros(edges.shape[0], dtype=np.float64)
    if springs.shape[0] == 0:
        return out
    n = max(int(flat.n_points), 1)
    spring_keys = springs.min(axis=1) * n + springs.max(axis=1)
    order = np.argsort(spring_keys)
    sorted_keys = spring_keys[order]
    keys = edges.min(axis=1) * n + edges.max(axis=1)
    pos = np.clip(np.searchsorted(sorted_keys, keys), 0, sorted_keys.size - 1)
    hit = sorted_keys[pos] == keys
    out[hit] = np.asarray(flat.rest_lengths, dtype=np.float64)[order[pos[hit]]]
    return out
