"""
Public entry points: ``segment`` a mesh into panels and ``flatten`` panels.

Each call owns its feature arrays, adjacency and labels; nothing is cached
between calls, so independent calls can run concurrently in threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence
import logging

import numpy as np

from .clustering import kmeans_cluster
from .config import FlatteningConfig, SegmentationConfig, SegmentationResolution
from .connectivity import enforce_connectivity, merge_degenerate_clusters
from .cooperative import CancellationToken, Checkpoint, YieldCallback
from .errors import FlatteningTimeout, InvalidMesh, InvalidPanelCount, SegmentationTimeout
from .features import extract_features
from .flattener import FlattenedPanel, flatten_panel
from .mesh_store import Mesh, build_triangle_adjacency
from .panels import Panel, assemble_panels
from .smoothing import smooth_boundaries

_LOGGER = logging.getLogger(__name__)


@dataclass
class SegmentationResult:
    panels: list[Panel]
    labels: np.ndarray
    meta: dict[str, Any] = field(default_factory=dict)


def segment_mesh(
    mesh: Mesh,
    target_panel_count: int,
    config: Optional[SegmentationConfig] = None,
    *,
    cancel_token: Optional[CancellationToken] = None,
    on_yield: Optional[YieldCallback] = None,
) -> SegmentationResult:
    """
    Segment ``mesh`` and keep the final labels and run statistics.

    ``target_panel_count`` above the triangle count is clamped to it.

    Raises:
        InvalidMesh, InvalidPanelCount, SegmentationTimeout,
        SegmentationFailed, Cancelled
    """
    cfg = config or SegmentationConfig()
    if not isinstance(mesh, Mesh):
        raise InvalidMesh(f"expected Mesh, got {type(mesh).__name__}")
    mesh.validate()

    k = int(target_panel_count)
    if k < 1:
        raise InvalidPanelCount(f"target panel count must be >= 1, got {target_panel_count}")
    if k > mesh.n_triangles:
        _LOGGER.debug("Clamping panel count %d to triangle count %d", k, mesh.n_triangles)
        k = mesh.n_triangles

    checkpoint = Checkpoint(
        timeout_seconds=cfg.timeout_seconds,
        timeout_error=SegmentationTimeout,
        cancel_token=cancel_token,
        on_yield=on_yield,
    )
    checkpoint.check("start")

    features = extract_features(mesh, checkpoint=checkpoint)
    adjacency = build_triangle_adjacency(mesh.faces)
    checkpoint.check("adjacency")

    clustering = kmeans_cluster(features.triangle, k, cfg, checkpoint=checkpoint)
    centroids = features.triangle.positions
    labels = enforce_connectivity(
        mesh, adjacency, clustering.labels, n_labels=k, centroids=centroids, checkpoint=checkpoint
    )
    labels = smooth_boundaries(adjacency, labels, cfg.smoothing_passes, checkpoint=checkpoint)
    # smoothing can pinch a cluster in two; repair once more
    labels = enforce_connectivity(
        mesh, adjacency, labels, n_labels=k, centroids=centroids, checkpoint=checkpoint
    )
    labels = merge_degenerate_clusters(mesh, adjacency, labels, centroids=centroids)
    checkpoint.check("assembly")

    panels = assemble_panels(mesh, labels, k)
    meta = {
        "target_panel_count": int(target_panel_count),
        "effective_panel_count": k,
        "kmeans_iterations": clustering.iterations,
        "kmeans_converged": clustering.converged,
        "features": dict(features.vertex.meta),
        "elapsed_s": checkpoint.elapsed,
        "yields": checkpoint.yields,
    }
    _LOGGER.info(
        "Segmented %d triangles into %d panels (K=%d, %d iterations, %.3fs)",
        mesh.n_triangles,
        len(panels),
        k,
        clustering.iterations,
        checkpoint.elapsed,
    )
    return SegmentationResult(panels=panels, labels=labels, meta=meta)


def segment(
    mesh: Mesh,
    target_panel_count: int,
    config: Optional[SegmentationConfig] = None,
    *,
    cancel_token: Optional[CancellationToken] = None,
    on_yield: Optional[YieldCallback] = None,
) -> list[Panel]:
    """Partition ``mesh`` into at most ``target_panel_count`` connected panels."""
    return segment_mesh(
        mesh, target_panel_count, config, cancel_token=cancel_token, on_yield=on_yield
    ).panels


def preview_segmentation(
    mesh: Mesh,
    resolution: SegmentationResolution = SegmentationResolution.MEDIUM,
    config: Optional[SegmentationConfig] = None,
    *,
    cancel_token: Optional[CancellationToken] = None,
    on_yield: Optional[YieldCallback] = None,
) -> list[Panel]:
    """Segment with the panel count of a preview ``resolution`` preset."""
    return segment(
        mesh, resolution.target_panel_count, config, cancel_token=cancel_token, on_yield=on_yield
    )


def flatten(
    panels: Sequence[Panel],
    mesh: Mesh,
    config: Optional[FlatteningConfig] = None,
    *,
    cancel_token: Optional[CancellationToken] = None,
    on_yield: Optional[YieldCallback] = None,
) -> list[FlattenedPanel]:
    """
    Flatten every panel, in order.

    Raises:
        EmptyPanel, InvalidGeometry, FlatteningTimeout, Cancelled
    """
    cfg = config or FlatteningConfig()
    checkpoint = Checkpoint(
        timeout_seconds=cfg.timeout_seconds,
        timeout_error=FlatteningTimeout,
        cancel_token=cancel_token,
        on_yield=on_yield,
    )
    out: list[FlattenedPanel] = []
    for panel in panels:
        checkpoint.check("flattening")
        out.append(flatten_panel(panel, mesh, cfg, checkpoint=checkpoint))

    if out:
        _LOGGER.info(
            "Flattened %d panels (worst mean edge error %.2f%%, %.3fs)",
            len(out),
            100.0 * max(f.meta.get("mean_error", 0.0) for f in out),
            checkpoint.elapsed,
        )
    return out
