from . import distances
from ._errors import IllegalStateError, LengthMismatchError, UnsupportedConfigurationError
from .ann import ApproximateNearestNeighbors
from .data_point import RawVectorDataPoint, as_data_points
from .export import export_embedding
from .layout import find_ab_params
from .random_source import NumpyRandomSource, ThreadSafeRandomSource, rejection_sample
from .sparse import SparseMatrix
from .umap import UMAP, VectorUMAP, umap, umap2, umap3

__all__ = [
    "UMAP",
    "VectorUMAP",
    "umap",
    "umap2",
    "umap3",
    "ApproximateNearestNeighbors",
    "SparseMatrix",
    "RawVectorDataPoint",
    "as_data_points",
    "distances",
    "export_embedding",
    "find_ab_params",
    "NumpyRandomSource",
    "ThreadSafeRandomSource",
    "rejection_sample",
    "IllegalStateError",
    "LengthMismatchError",
    "UnsupportedConfigurationError",
]
