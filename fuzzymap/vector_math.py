"""Dense float-vector kernels shared by the distance functions and the layout.

All functions accept 1-D numpy arrays. Reductions are evaluated in
float64 and returned as Python floats so the result does not depend on
how numpy chooses to vectorise the loop. ``add`` and ``multiply`` work
in place, mirroring how the embedding buffer is jittered.
"""

from __future__ import annotations

import math

import numpy as np
import numpy.typing as npt

from ._errors import LengthMismatchError


def _check_lengths(lhs: npt.NDArray[np.floating], rhs: npt.NDArray[np.floating]) -> None:
    if lhs.shape[0] != rhs.shape[0]:
        raise LengthMismatchError(f"Vectors must have the same length, got {lhs.shape[0]} and {rhs.shape[0]}.")


def dot(lhs: npt.NDArray[np.floating], rhs: npt.NDArray[np.floating]) -> float:
    """Inner product of two equal-length vectors."""
    _check_lengths(lhs, rhs)
    return float(np.dot(lhs.astype(np.float64, copy=False), rhs.astype(np.float64, copy=False)))


def euclidean(lhs: npt.NDArray[np.floating], rhs: npt.NDArray[np.floating]) -> float:
    """Squared Euclidean distance (no square root)."""
    _check_lengths(lhs, rhs)
    diff = lhs.astype(np.float64) - rhs.astype(np.float64, copy=False)
    return float(np.dot(diff, diff))


def magnitude(values: npt.NDArray[np.floating]) -> float:
    """L2 norm, computed as ``sqrt(dot(values, values))``."""
    return math.sqrt(dot(values, values))


def add(values: npt.NDArray[np.floating], scalar: float) -> npt.NDArray[np.floating]:
    """Add ``scalar`` to every element of ``values`` in place and return it."""
    if values.size:
        np.add(values, scalar, out=values, casting="unsafe")
    return values


def multiply(values: npt.NDArray[np.floating], scalar: float) -> npt.NDArray[np.floating]:
    """Multiply every element of ``values`` by ``scalar`` in place and return it."""
    if values.size:
        np.multiply(values, scalar, out=values, casting="unsafe")
    return values
