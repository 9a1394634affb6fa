from . import dual, edges, geometry, shape, triangulate, mesh, spatial, properties

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "dual",
    "edges",
    "geometry",
    "shape",
    "triangulate",
    "mesh",
    "spatial",
    "properties",
]
