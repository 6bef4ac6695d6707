"""
panogeo - planar transform estimation and chaining for image mosaics

Robust affine / homography fitting between image pairs, transform chaining with
a global bounding box, projection matrix decomposition and a rank-2
parameterization for fundamental matrix refinement.
"""

__version__ = "0.1.0"
