"""
Exception hierarchy for segmentation and flattening.

Fatal conditions raise one of these; recoverable geometric degeneracies are
handled with logged fallbacks inside the stages instead.
"""

from __future__ import annotations


class PanelCutError(Exception):
    """Base class for every error raised by the engine."""

    code = "PANELCUT000"


class Cancelled(PanelCutError):
    """The caller's cancellation token was set while work was in progress."""

    code = "PANELCUT001"


class SegmentationError(PanelCutError):
    code = "SEG000"


class InvalidMesh(SegmentationError, ValueError):
    """Mesh has too few vertices, no triangles or out-of-range indices."""

    code = "SEG001"


class InvalidPanelCount(SegmentationError, ValueError):
    code = "SEG002"


class SegmentationTimeout(SegmentationError, TimeoutError):
    code = "SEG003"


class SegmentationFailed(SegmentationError):
    """Segmentation produced no usable panel."""

    code = "SEG004"


class FlatteningError(PanelCutError):
    code = "FLAT000"


class EmptyPanel(FlatteningError, ValueError):
    code = "FLAT001"


class InvalidGeometry(FlatteningError, ValueError):
    """Panel topology is malformed (index runs, dangling references)."""

    code = "FLAT002"


class FlatteningTimeout(FlatteningError, TimeoutError):
    code = "FLAT003"
