"""Plain-vector data points and the explicit adapters around them."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np
import numpy.typing as npt

from .typing import SupportsData


class RawVectorDataPoint:
    """A data point that is nothing more than its float vector.

    The payload is stored as a read-only ``float32`` array; points are
    never mutated once built.

    Parameters
    ----------
    data : array-like of shape (n_features,)
    """

    __slots__ = ("_data",)

    def __init__(self, data: npt.ArrayLike) -> None:
        arr = np.array(data, dtype=np.float32)
        if arr.ndim != 1:
            raise ValueError(f"Expected 1D vector, got {arr.ndim}D.")
        arr.setflags(write=False)
        self._data = arr

    @property
    def data(self) -> npt.NDArray[np.float32]:
        return self._data

    def __len__(self) -> int:
        return int(self._data.shape[0])

    def __repr__(self) -> str:
        return f"RawVectorDataPoint(n_features={len(self)})"


def as_data_points(X: Any) -> list[RawVectorDataPoint]:
    """Wrap each row of a 2-D array as a :class:`RawVectorDataPoint`.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)

    Returns
    -------
    list of RawVectorDataPoint
    """
    arr = np.asarray(X, dtype=np.float32)
    if arr.ndim != 2:
        raise ValueError(f"Expected 2D array, got {arr.ndim}D.")
    return [RawVectorDataPoint(row) for row in arr]


def to_matrix(points: Sequence[SupportsData]) -> npt.NDArray[np.float32]:
    """Stack the payloads of ``points`` into a C-contiguous ``(n, d)`` matrix."""
    if len(points) == 0:
        return np.empty((0, 0), dtype=np.float32)
    rows = [np.asarray(p.data, dtype=np.float32) for p in points]
    width = rows[0].shape[0]
    for i, row in enumerate(rows):
        if row.shape[0] != width:
            raise ValueError(f"Point {i} has {row.shape[0]} features, expected {width}.")
    return np.ascontiguousarray(np.vstack(rows), dtype=np.float32)
