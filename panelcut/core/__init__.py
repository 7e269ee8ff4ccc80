"""
panelcut core modules
"""

from .config import DistanceWeights, FlatteningConfig, SegmentationConfig, SegmentationResolution
from .cooperative import CancellationToken, Checkpoint
from .errors import (
    Cancelled,
    EmptyPanel,
    FlatteningError,
    FlatteningTimeout,
    InvalidGeometry,
    InvalidMesh,
    InvalidPanelCount,
    PanelCutError,
    SegmentationError,
    SegmentationFailed,
    SegmentationTimeout,
)
from .flattener import BoundingBox2D, FlattenedPanel, flatten_panel
from .mesh_loader import MeshLoader
from .mesh_store import Mesh, TriangleAdjacency, build_triangle_adjacency
from .panels import PANEL_PALETTE, Panel, assemble_panels
from .pattern_layout import arrange_for_cutting, seam_allowance_outline
from .pattern_validator import PatternValidator, ValidatorConfig
from .pipeline import SegmentationResult, flatten, preview_segmentation, segment, segment_mesh

__all__ = [
    # Mesh
    'Mesh',
    'MeshLoader',
    'TriangleAdjacency',
    'build_triangle_adjacency',
    # Pipeline
    'segment',
    'segment_mesh',
    'preview_segmentation',
    'SegmentationResolution',
    'flatten',
    'SegmentationResult',
    'SegmentationConfig',
    'FlatteningConfig',
    'DistanceWeights',
    'CancellationToken',
    'Checkpoint',
    # Panels
    'Panel',
    'PANEL_PALETTE',
    'assemble_panels',
    'FlattenedPanel',
    'BoundingBox2D',
    'flatten_panel',
    # Pattern tools
    'PatternValidator',
    'ValidatorConfig',
    'arrange_for_cutting',
    'seam_allowance_outline',
    # Errors
    'PanelCutError',
    'Cancelled',
    'SegmentationError',
    'InvalidMesh',
    'InvalidPanelCount',
    'SegmentationTimeout',
    'SegmentationFailed',
    'FlatteningError',
    'EmptyPanel',
    'InvalidGeometry',
    'FlatteningTimeout',
]
