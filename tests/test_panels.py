import unittest

import numpy as np

from panelcut.core.errors import SegmentationFailed
from panelcut.core.mesh_store import Mesh
from panelcut.core.panels import PANEL_PALETTE, Panel, assemble_panels, palette_color
from tests.mesh_fixtures import unit_cube


class TestPanelAssembler(unittest.TestCase):
    def test_one_panel_per_label_in_order(self):
        mesh = unit_cube()
        labels = np.repeat(np.arange(6), 2)

        panels = assemble_panels(mesh, labels, 6)

        self.assertEqual(len(panels), 6)
        self.assertEqual([p.cluster_label for p in panels], list(range(6)))
        for p in panels:
            self.assertEqual(p.n_triangles, 2)
            self.assertEqual(p.n_vertices, 4)
            self.assertTrue(p.is_consistent())

    def test_empty_labels_are_skipped(self):
        panels = assemble_panels(unit_cube(), np.full(12, 3), 5)
        self.assertEqual(len(panels), 1)
        self.assertEqual(panels[0].cluster_label, 3)
        self.assertEqual(panels[0].color, PANEL_PALETTE[3])

    def test_degenerate_cluster_dropped(self):
        # triangle 1 only references two distinct vertices
        mesh = Mesh(vertices=np.eye(3), faces=[[0, 1, 2], [0, 0, 1]])
        panels = assemble_panels(mesh, np.array([0, 1]), 2)
        self.assertEqual([p.cluster_label for p in panels], [0])

    def test_no_panels_fails(self):
        mesh = Mesh(vertices=np.eye(3), faces=[[0, 0, 1]])
        with self.assertRaises(SegmentationFailed):
            assemble_panels(mesh, np.array([0]), 1)

    def test_triangle_indices_keep_mesh_winding(self):
        mesh = unit_cube()
        panels = assemble_panels(mesh, np.zeros(12, dtype=np.int64), 1)
        np.testing.assert_array_equal(panels[0].faces, mesh.faces)
        np.testing.assert_array_equal(panels[0].source_triangles, np.arange(12))

    def test_palette_cycles(self):
        self.assertEqual(palette_color(0), (1.0, 0.0, 0.0, 1.0))
        self.assertEqual(palette_color(8), palette_color(0))
        self.assertEqual(palette_color(13), PANEL_PALETTE[5])


class TestPanel(unittest.TestCase):
    def test_ids_are_unique(self):
        a = Panel.from_triangles([0, 1, 2])
        b = Panel.from_triangles([0, 1, 2])
        self.assertNotEqual(a.id, b.id)

    def test_from_triangles_derives_vertex_set(self):
        panel = Panel.from_triangles([[4, 2, 7], [2, 7, 9]])
        self.assertEqual(panel.vertex_indices.tolist(), [2, 4, 7, 9])
        self.assertTrue(panel.is_consistent())

    def test_vertex_set_is_sorted_and_unique(self):
        panel = Panel(vertex_indices=[2, 0, 1, 1], triangle_indices=[0, 1, 2])
        self.assertEqual(panel.vertex_indices.tolist(), [0, 1, 2])
        self.assertTrue(panel.is_consistent())

    def test_arrays_are_read_only(self):
        panel = Panel.from_triangles([0, 1, 2])
        with self.assertRaises(ValueError):
            panel.vertex_indices[0] = 5


if __name__ == "__main__":
    unittest.main()
