"""
Mesh Loader Module

Reads scanned meshes from disk into the immutable ``Mesh`` container.

Supports: OBJ, PLY, STL, OFF, GLTF/GLB formats
"""

from pathlib import Path
from typing import List, Union
import logging

import numpy as np
import trimesh

from .errors import InvalidMesh
from .mesh_store import Mesh

_LOGGER = logging.getLogger(__name__)


class MeshLoader:
    """
    Loader for the 3D formats trimesh understands.

    Scenes are merged into a single mesh; loading never reorders vertices, so
    vertex ids in the result match the file.
    """

    SUPPORTED_FORMATS = {
        '.obj': 'Wavefront OBJ',
        '.ply': 'Polygon File Format',
        '.stl': 'Stereolithography',
        '.off': 'Object File Format',
        '.gltf': 'GL Transmission Format',
        '.glb': 'GL Transmission Format (Binary)',
    }

    @classmethod
    def get_supported_formats(cls) -> dict:
        return cls.SUPPORTED_FORMATS.copy()

    def _load_trimesh(self, filepath: Path) -> trimesh.Trimesh:
        try:
            loaded = trimesh.load(str(filepath), force='mesh', process=False, maintain_order=True)
        except TypeError:
            # older trimesh without maintain_order
            loaded = trimesh.load(str(filepath), force='mesh', process=False)

        if isinstance(loaded, trimesh.Scene):
            meshes = [g for g in loaded.geometry.values() if isinstance(g, trimesh.Trimesh)]
            if not meshes:
                raise InvalidMesh(f"No triangle geometry found in: {filepath}")
            loaded = trimesh.util.concatenate(meshes)

        if not isinstance(loaded, trimesh.Trimesh):
            raise InvalidMesh(f"Expected a triangle mesh, got {type(loaded).__name__}")
        return loaded

    def load(self, filepath: Union[str, Path]) -> Mesh:
        """
        Load a mesh file.

        Raises:
            FileNotFoundError: the file does not exist
            ValueError: unsupported extension
            InvalidMesh: the file holds no usable triangles
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        ext = filepath.suffix.lower()
        if ext not in self.SUPPORTED_FORMATS:
            raise ValueError(
                f"Unsupported format: {ext} "
                f"(supported: {sorted(self.SUPPORTED_FORMATS)})"
            )

        mesh = Mesh.from_trimesh(self._load_trimesh(filepath))
        _LOGGER.info(
            "Loaded %s: %d vertices, %d triangles", filepath.name, mesh.n_vertices, mesh.n_triangles
        )
        return mesh

    def load_multiple(self, filepaths: List[Union[str, Path]]) -> List[Mesh]:
        return [self.load(fp) for fp in filepaths]

    def get_file_info(self, filepath: Union[str, Path]) -> dict:
        """File summary for the CLI ``--info`` command."""
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        ext = filepath.suffix.lower()
        info = {
            'filename': filepath.name,
            'format': self.SUPPORTED_FORMATS.get(ext, 'Unknown'),
            'extension': ext,
            'file_size_mb': round(filepath.stat().st_size / (1024 * 1024), 2),
        }

        try:
            mesh = Mesh.from_trimesh(self._load_trimesh(filepath))
        except (InvalidMesh, ValueError, OSError) as e:
            _LOGGER.debug("Failed to read mesh info for %s", filepath, exc_info=True)
            info['error'] = str(e)
            return info

        info['n_vertices'] = mesh.n_vertices
        info['n_triangles'] = mesh.n_triangles
        info['extents'] = [float(x) for x in np.asarray(mesh.extents).tolist()]
        info['n_boundary_edges'] = int(mesh.boundary_edges().shape[0])
        return info
