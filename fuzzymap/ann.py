"""Approximate k-nearest-neighbour graph via random-projection forest + NN-descent."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import Any

import numpy as np
import numpy.typing as npt

from . import distances as _distances
from .data_point import as_data_points, to_matrix
from .nn_descent import nn_descent
from .progress import scale_progress_reporter
from .random_source import NumpyRandomSource
from .rp_tree import FlatTree, make_forest, make_leaf_array
from .typing import DistanceFunction, ProgressReporter, RandomSource

logger = logging.getLogger(__name__)


def _round_half_down(value: float) -> int:
    # round() is banker's rounding; only the exact 0.5 case must go to 0.
    return 0 if value == 0.5 else int(math.floor(round(value)))


def n_trees_for(n_points: int) -> int:
    """Forest size heuristic: ``5 + round(sqrt(n) / 20)``."""
    return 5 + _round_half_down(math.sqrt(n_points) / 20.0)


def n_iters_for(n_points: int) -> int:
    """NN-descent iteration budget: ``max(5, round(log2(n)))``."""
    if n_points <= 1:
        return 5
    return max(5, int(math.floor(round(math.log2(n_points)))))


def nearest_neighbors(
    data: Sequence[Any],
    n_neighbors: int,
    distance: DistanceFunction,
    random: RandomSource,
    progress: ProgressReporter | None = None,
    angular: bool | None = None,
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float32], list[FlatTree]]:
    """Compute the approximate ``n_neighbors``-NN graph of ``data``.

    Parameters
    ----------
    data : sequence of data points
        Each point must expose a ``data`` float vector.
    n_neighbors : int
        Neighbours per point; each point is its own first neighbour.
    distance : callable
        ``distance(p, q) -> float`` over data points.
    random : RandomSource
    progress : callable, optional
        Receives completion fractions at fixed checkpoints.
    angular : bool, optional
        Use angular hyperplanes in the forest. Defaults to ``True`` for the
        built-in cosine distances.

    Returns
    -------
    indices : ndarray of shape (n_points, n_neighbors)
        ``-1`` where no neighbour was found.
    distances : ndarray of shape (n_points, n_neighbors)
        Ascending per row, ``inf`` for ``-1`` slots.
    forest : list of FlatTree
    """
    report = scale_progress_reporter(progress, 0.0, 1.0)
    n_points = len(data)
    if angular is None:
        angular = distance in _distances.ANGULAR_DISTANCES

    report(0.05)
    n_trees = n_trees_for(n_points)
    n_iters = n_iters_for(n_points)
    leaf_size = max(10, n_neighbors)
    report(0.1)

    matrix = to_matrix(data)
    forest = make_forest(
        matrix,
        n_trees,
        leaf_size,
        random,
        angular=angular,
        progress=scale_progress_reporter(report, 0.1, 0.4),
    )
    leaf_array = make_leaf_array(forest)
    report(0.45)

    refine_report = scale_progress_reporter(report, 0.5, 1.0)
    indices, dists = nn_descent(
        data,
        n_neighbors,
        distance,
        random,
        leaf_array=leaf_array,
        n_iters=n_iters,
        starting_iteration=lambda i, total: refine_report(i / total),
        matrix=matrix,
    )

    missing = int((indices < 0).sum())
    if missing:
        logger.debug("%d neighbour slots left unfilled (n_points=%d, k=%d)", missing, n_points, n_neighbors)
    return indices, dists.astype(np.float32), forest


class ApproximateNearestNeighbors:
    """Approximate Nearest Neighbors using Random Projection Forests and NN-descent.

    Builds the self k-NN graph of the fitted data. New query points are
    answered by pooling the forest leaves they fall into with the graph
    neighbours of those leaf members, then ranking the pool exactly.

    Args:
        n_neighbors (int, default=15): Neighbours per point (self included).
        distance (callable, default=euclidean): Distance over data points.
        seed (int, default=42): Random seed for reproducibility.
        random (RandomSource | None): Overrides ``seed`` when given.
    """

    def __init__(
        self,
        n_neighbors: int = 15,
        distance: DistanceFunction = _distances.euclidean,
        seed: int = 42,
        random: RandomSource | None = None,
    ):
        if n_neighbors < 1:
            raise ValueError("n_neighbors must be >= 1.")
        self.n_neighbors = n_neighbors
        self.distance = distance
        self.seed = seed
        self.random = random if random is not None else NumpyRandomSource(seed)
        self._points: list[Any] | None = None
        self._indices: npt.NDArray[np.int64] | None = None
        self._distances: npt.NDArray[np.float32] | None = None
        self._forest: list[FlatTree] = []

    def __repr__(self) -> str:
        return f"ApproximateNearestNeighbors(n_neighbors={self.n_neighbors})"

    def fit(self, X: np.ndarray) -> ApproximateNearestNeighbors:
        """Build the index on the data X.

        Args:
            X (np.ndarray): Array of shape (n_samples, n_features).

        Returns:
            self
        """
        self._points = as_data_points(X)
        self._indices, self._distances, self._forest = nearest_neighbors(
            self._points, self.n_neighbors, self.distance, self.random
        )
        return self

    def kneighbors(
        self, X: np.ndarray | None = None, n_neighbors: int | None = None
    ) -> tuple[np.ndarray, np.ndarray]:
        """Find the K-nearest neighbors of points in X.

        Args:
            X (np.ndarray | None): Query points of shape (n_queries, n_features).
                ``None`` returns the graph of the fitted data itself.
            n_neighbors (int | None): Neighbours to return; defaults to the
                fitted ``n_neighbors`` and may not exceed it for ``X=None``.

        Returns:
            neighbors (np.ndarray): Indices, shape (n_queries, n_neighbors).
            distances (np.ndarray): Distances, shape (n_queries, n_neighbors).
        """
        if self._points is None or self._indices is None or self._distances is None:
            raise RuntimeError("Index has not been built. Call fit() first.")
        k = self.n_neighbors if n_neighbors is None else n_neighbors

        if X is None:
            if k > self.n_neighbors:
                raise ValueError(f"n_neighbors={k} exceeds the fitted n_neighbors={self.n_neighbors}.")
            return self._indices[:, :k].copy(), self._distances[:, :k].copy()

        queries = as_data_points(X)
        indices = np.full((len(queries), k), -1, dtype=np.int64)
        dists = np.full((len(queries), k), np.inf, dtype=np.float32)
        for row, query in enumerate(queries):
            pool: set[int] = set()
            for tree in self._forest:
                for member in tree.search(query.data):
                    pool.add(int(member))
                    pool.update(int(j) for j in self._indices[member] if j >= 0)
            candidates = np.fromiter(pool, dtype=np.int64, count=len(pool))
            scores = np.array([self.distance(query, self._points[c]) for c in candidates], dtype=np.float32)
            order = np.argsort(scores, kind="stable")[:k]
            indices[row, : order.shape[0]] = candidates[order]
            dists[row, : order.shape[0]] = scores[order]
        return indices, dists
