"""Built-in distance functions over :class:`~fuzzymap.typing.SupportsData` points.

Each built-in also has a vectorised form over stacked payload matrices,
used by the neighbour search when it has the points as one array.
"""

from __future__ import annotations

import math
from collections.abc import Callable

import numpy as np
import numpy.typing as npt

from . import vector_math
from .typing import DistanceFunction, SupportsData


def cosine(lhs: SupportsData, rhs: SupportsData) -> float:
    """``1 - cos(lhs, rhs)``. Zero vectors give NaN."""
    denominator = vector_math.magnitude(lhs.data) * vector_math.magnitude(rhs.data)
    if denominator == 0.0:
        return math.nan
    return 1.0 - vector_math.dot(lhs.data, rhs.data) / denominator


def cosine_for_normalized(lhs: SupportsData, rhs: SupportsData) -> float:
    """Cosine distance for inputs already scaled to unit length."""
    return 1.0 - vector_math.dot(lhs.data, rhs.data)


def euclidean(lhs: SupportsData, rhs: SupportsData) -> float:
    return math.sqrt(vector_math.euclidean(lhs.data, rhs.data))


#: Distances whose neighbourhoods are best split with angular hyperplanes.
ANGULAR_DISTANCES = frozenset({cosine, cosine_for_normalized})


def _cosine_pairwise(lhs: npt.NDArray[np.float64], rhs: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    denominator = np.outer(np.linalg.norm(lhs, axis=1), np.linalg.norm(rhs, axis=1))
    with np.errstate(divide="ignore", invalid="ignore"):
        result = 1.0 - (lhs @ rhs.T) / denominator
    result[denominator == 0.0] = np.nan
    return result


def _cosine_for_normalized_pairwise(
    lhs: npt.NDArray[np.float64], rhs: npt.NDArray[np.float64]
) -> npt.NDArray[np.float64]:
    return 1.0 - lhs @ rhs.T


def _euclidean_pairwise(lhs: npt.NDArray[np.float64], rhs: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    diff = lhs[:, None, :] - rhs[None, :, :]
    return np.sqrt(np.einsum("ijk,ijk->ij", diff, diff))


_Kernel = Callable[[npt.NDArray[np.float64], npt.NDArray[np.float64]], npt.NDArray[np.float64]]

_PAIRWISE: dict[DistanceFunction, _Kernel] = {
    cosine: _cosine_pairwise,
    cosine_for_normalized: _cosine_for_normalized_pairwise,
    euclidean: _euclidean_pairwise,
}


def pairwise(
    distance: DistanceFunction, lhs: npt.NDArray[np.floating], rhs: npt.NDArray[np.floating]
) -> npt.NDArray[np.float64] | None:
    """All-pairs ``distance`` between the rows of ``lhs`` and ``rhs``.

    Returns ``None`` when ``distance`` is not a built-in, in which case the
    caller must fall back to calling it point by point.
    """
    kernel = _PAIRWISE.get(distance)
    if kernel is None:
        return None
    return kernel(np.asarray(lhs, dtype=np.float64), np.asarray(rhs, dtype=np.float64))
