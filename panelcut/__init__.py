"""
panelcut - mesh segmentation and pattern flattening.
"""

__version__ = "0.1.0"
