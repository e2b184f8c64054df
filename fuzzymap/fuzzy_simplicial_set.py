"""Turn a k-NN graph into a symmetric fuzzy graph of membership strengths.

Each point gets a local metric: ``rho`` is the distance to its
``local_connectivity``-th nearest non-identical neighbour and ``sigma`` is
the bandwidth that makes the kernel mass of its neighbourhood equal to
``log2(k)``. Directed memberships ``exp(-(d - rho) / sigma)`` are then
combined with their transpose by a fuzzy set union (or intersection).
"""

from __future__ import annotations

import math

import numpy as np
import numpy.typing as npt

from .progress import scale_progress_reporter
from .sparse import SparseMatrix
from .typing import ProgressReporter

SMOOTH_K_TOLERANCE = 1e-5
MIN_K_DIST_SCALE = 1e-3


def _mean(values: npt.NDArray[np.floating]) -> float:
    # An empty row is a legitimate edge case and yields NaN.
    if values.shape[0] == 0:
        return math.nan
    return float(np.mean(values, dtype=np.float64))


def _valid_distances(row: npt.NDArray[np.floating]) -> npt.NDArray[np.float64]:
    row = np.asarray(row, dtype=np.float64)
    return row[np.isfinite(row)]


def smooth_knn_distance(
    distances: npt.NDArray[np.floating],
    k: float,
    local_connectivity: float = 1.0,
    n_iter: int = 64,
    bandwidth: float = 1.0,
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Calibrate the per-point bandwidth ``sigma`` and offset ``rho``.

    Parameters
    ----------
    distances : ndarray of shape (n_samples, n_neighbors)
        Row-sorted neighbour distances, the point itself first at 0.
        Non-finite entries mark missing neighbours and are ignored.
    k : float
        Target neighbourhood cardinality; the kernel mass aims at ``log2(k)``.
    local_connectivity : float, default=1.0
        Number of neighbours assumed fully connected; may be fractional.
    n_iter : int, default=64
        Binary-search iteration cap.
    bandwidth : float, default=1.0

    Returns
    -------
    sigmas : ndarray of shape (n_samples,)
    rhos : ndarray of shape (n_samples,)
    """
    target = math.log2(k) * bandwidth
    n_samples = distances.shape[0]
    rhos = np.zeros(n_samples, dtype=np.float64)
    sigmas = np.zeros(n_samples, dtype=np.float64)

    row_means = np.array([_mean(_valid_distances(row)) for row in distances], dtype=np.float64)
    global_min_scale = MIN_K_DIST_SCALE * _mean(row_means)

    for i in range(n_samples):
        lo = 0.0
        hi = math.inf
        mid = 1.0

        ith_distances = _valid_distances(distances[i])
        non_zero = ith_distances[ith_distances > 0.0]
        if non_zero.shape[0] >= local_connectivity:
            index = int(math.floor(local_connectivity))
            interpolation = local_connectivity - index
            if index > 0:
                rhos[i] = non_zero[index - 1]
                if interpolation > SMOOTH_K_TOLERANCE and index < non_zero.shape[0]:
                    rhos[i] += interpolation * (non_zero[index] - non_zero[index - 1])
            elif non_zero.shape[0] > 0:
                rhos[i] = interpolation * non_zero[0]
        elif non_zero.shape[0] > 0:
            rhos[i] = non_zero.max()

        # Slot 0 holds the point itself.
        tail = ith_distances[1:] - rhos[i]
        for _ in range(n_iter):
            psum = smoothed_kernel_sum(tail, mid)
            if abs(psum - target) < SMOOTH_K_TOLERANCE:
                break
            if psum > target:
                hi = mid
                mid = (lo + hi) / 2.0
            else:
                lo = mid
                if hi == math.inf:
                    mid *= 2
                else:
                    mid = (lo + hi) / 2.0

        sigmas[i] = mid
        if rhos[i] > 0.0:
            sigmas[i] = max(sigmas[i], MIN_K_DIST_SCALE * row_means[i])
        elif global_min_scale > 0.0:
            sigmas[i] = max(sigmas[i], global_min_scale)

    return sigmas, rhos


def smoothed_kernel_sum(offset_distances: npt.NDArray[np.float64], sigma: float) -> float:
    """``sum(1 if d <= 0 else exp(-d / sigma))`` over ``distance - rho`` values."""
    positive = offset_distances > 0.0
    return float(np.exp(-(offset_distances[positive] / sigma)).sum() + (~positive).sum())


def compute_membership_strengths(
    knn_indices: npt.NDArray[np.integer],
    knn_distances: npt.NDArray[np.floating],
    sigmas: npt.NDArray[np.floating],
    rhos: npt.NDArray[np.floating],
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.float32]]:
    """Directed membership strength of every (point, neighbour) slot.

    Returns ``(rows, cols, vals)`` triples in row-major slot order. ``-1``
    neighbour slots are dropped; a point's membership to itself is 0.
    """
    n_samples, n_neighbors = knn_indices.shape
    rows = np.repeat(np.arange(n_samples, dtype=np.int64), n_neighbors)
    cols = np.asarray(knn_indices, dtype=np.int64).ravel()
    dists = np.asarray(knn_distances, dtype=np.float64).ravel()
    offset = dists - np.repeat(np.asarray(rhos, dtype=np.float64), n_neighbors)
    scale = np.repeat(np.asarray(sigmas, dtype=np.float64), n_neighbors)

    keep = cols != -1
    rows, cols, offset, scale = rows[keep], cols[keep], offset[keep], scale[keep]

    vals = np.ones(rows.shape[0], dtype=np.float64)
    beyond = offset > 0.0
    vals[beyond] = np.exp(-(offset[beyond] / scale[beyond]))
    vals[cols == rows] = 0.0
    return rows, cols, vals.astype(np.float32)


def fuzzy_simplicial_set(
    knn_indices: npt.NDArray[np.integer],
    knn_distances: npt.NDArray[np.floating],
    n_points: int,
    n_neighbors: int,
    set_op_mix_ratio: float = 1.0,
    local_connectivity: float = 1.0,
    progress: ProgressReporter | None = None,
) -> SparseMatrix:
    """Build the symmetric ``n_points x n_points`` fuzzy graph.

    With ``A`` the directed membership matrix and ``P = A ∘ Aᵀ``, the result
    is ``mix * (A + Aᵀ - P) + (1 - mix) * P``: ``mix=1`` is the pure fuzzy
    union, ``mix=0`` the pure fuzzy intersection.
    """
    report = scale_progress_reporter(progress, 0.0, 1.0)
    report(0.1)
    sigmas, rhos = smooth_knn_distance(knn_distances, n_neighbors, local_connectivity)
    report(0.2)
    rows, cols, vals = compute_membership_strengths(knn_indices, knn_distances, sigmas, rhos)
    report(0.3)

    directed = SparseMatrix(rows.tolist(), cols.tolist(), vals.tolist(), shape=(n_points, n_points))
    transpose = directed.transpose()
    product = directed.pairwise_multiply(transpose)
    report(0.4)
    union = directed.add(transpose).subtract(product)
    report(0.5)
    union = union.multiply_scalar(set_op_mix_ratio)
    report(0.6)
    intersection = product.multiply_scalar(1.0 - set_op_mix_ratio)
    report(0.7)
    result = union.add(intersection)
    report(0.8)
    return result
