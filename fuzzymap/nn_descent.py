"""NN-descent refinement of a candidate k-nearest-neighbour graph.

The graph is held in a :class:`NeighborHeap`: one bounded max-heap per
point, keyed on distance, so the worst current neighbour sits at slot 0
and can be replaced in ``O(log k)``. Each iteration runs a local join:
every pair of candidates that share a neighbour is compared, and a
candidate enters a heap only if it strictly beats the worst neighbour
held there.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import numpy as np
import numpy.typing as npt

from . import distances
from .random_source import rejection_sample
from .typing import RandomSource


class NeighborHeap:
    """Per-point bounded max-heaps of ``(distance, index, is_new)`` triples.

    Parameters
    ----------
    n_points : int
    size : int
        Number of neighbours kept per point.
    """

    def __init__(self, n_points: int, size: int) -> None:
        self.indices = np.full((n_points, size), -1, dtype=np.int64)
        self.distances = np.full((n_points, size), np.inf, dtype=np.float64)
        self.flags = np.zeros((n_points, size), dtype=bool)

    @property
    def size(self) -> int:
        return int(self.indices.shape[1])

    def push(self, row: int, distance: float, index: int, flag: bool = True) -> int:
        """Offer ``index`` as a neighbour of ``row``; return 1 if accepted, else 0."""
        distances = self.distances[row]
        if not distance < distances[0]:
            return 0
        indices = self.indices[row]
        if index in indices:
            return 0

        flags = self.flags[row]
        size = distances.shape[0]
        # Replace the root and sift the new entry down.
        i = 0
        while True:
            left = 2 * i + 1
            right = left + 1
            if left >= size:
                break
            if right >= size or distances[left] >= distances[right]:
                child = left
            else:
                child = right
            if distances[child] <= distance:
                break
            distances[i] = distances[child]
            indices[i] = indices[child]
            flags[i] = flags[child]
            i = child
        distances[i] = distance
        indices[i] = index
        flags[i] = flag
        return 1

    def deheap_sort(self) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float64]]:
        """Return ``(indices, distances)`` with each row sorted by ascending distance."""
        order = np.argsort(self.distances, axis=1, kind="stable")
        indices = np.take_along_axis(self.indices, order, axis=1)
        distances = np.take_along_axis(self.distances, order, axis=1)
        return indices, distances


def _build_candidates(
    heap: NeighborHeap, max_candidates: int, random: RandomSource
) -> tuple[list[list[int]], list[list[int]]]:
    """Collect new/old candidate lists (forward and reverse) for every point.

    New candidates that make it into a list are marked old in the heap so
    the next iteration does not join them again.
    """
    n_points = heap.indices.shape[0]
    new_candidates: list[list[int]] = [[] for _ in range(n_points)]
    old_candidates: list[list[int]] = [[] for _ in range(n_points)]
    for i in range(n_points):
        for slot in range(heap.size):
            j = int(heap.indices[i, slot])
            if j < 0 or j == i:
                continue
            target = new_candidates if heap.flags[i, slot] else old_candidates
            target[i].append(j)
            target[j].append(i)

    for candidates in (new_candidates, old_candidates):
        for i, row in enumerate(candidates):
            unique = list(dict.fromkeys(row))
            if len(unique) > max_candidates:
                keep = rejection_sample(max_candidates, len(unique), random)
                unique = [unique[p] for p in np.sort(keep)]
            candidates[i] = unique

    for i in range(n_points):
        selected = set(new_candidates[i])
        for slot in range(heap.size):
            if heap.flags[i, slot] and int(heap.indices[i, slot]) in selected:
                heap.flags[i, slot] = False
    return new_candidates, old_candidates


def _distance_block(
    data: Sequence[Any],
    distance: Callable[[Any, Any], float],
    matrix: npt.NDArray[np.floating] | None,
    lhs: npt.NDArray[np.int64],
    rhs: npt.NDArray[np.int64],
) -> npt.NDArray[np.float64]:
    """``distance(data[p], data[q])`` for every ``p`` in ``lhs`` and ``q`` in ``rhs``."""
    if matrix is not None:
        block = distances.pairwise(distance, matrix[lhs], matrix[rhs])
        if block is not None:
            return block
    return np.array(
        [[distance(data[p], data[q]) for q in rhs] for p in lhs], dtype=np.float64
    ).reshape(lhs.shape[0], rhs.shape[0])


def nn_descent(
    data: Sequence[Any],
    n_neighbors: int,
    distance: Callable[[Any, Any], float],
    random: RandomSource,
    leaf_array: npt.NDArray[np.int64] | None = None,
    n_iters: int = 10,
    max_candidates: int | None = None,
    delta: float = 0.001,
    starting_iteration: Callable[[int, int], None] | None = None,
    matrix: npt.NDArray[np.floating] | None = None,
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float64]]:
    """Approximate the ``n_neighbors`` nearest neighbours of every point.

    Parameters
    ----------
    data : sequence of data points
        Passed element-wise to ``distance``.
    n_neighbors : int
        Neighbours per point, the point itself included at distance 0.
    distance : callable
        ``distance(data[i], data[j]) -> float``.
    random : RandomSource
    leaf_array : ndarray of shape (n_leaves, leaf_size), optional
        ``-1``-padded candidate groups, typically from a random-projection
        forest. Every pair inside a leaf is compared to seed the heaps.
    n_iters : int, default=10
        Maximum number of refinement iterations.
    max_candidates : int, optional
        Cap on new/old candidate lists per point. Defaults to ``n_neighbors``.
    delta : float, default=0.001
        Stop early once an iteration updates fewer than
        ``delta * n_neighbors * n_points`` heap slots.
    starting_iteration : callable, optional
        Called as ``starting_iteration(i, n_iters)`` before each iteration.
    matrix : ndarray of shape (n_points, n_features), optional
        Stacked payloads of ``data``. With a built-in distance, distances
        are then computed a block at a time instead of pair by pair.

    Returns
    -------
    indices : ndarray of shape (n_points, n_neighbors)
        ``-1`` marks a slot for which no neighbour was found.
    distances : ndarray of shape (n_points, n_neighbors)
        Non-decreasing per row; ``inf`` for ``-1`` slots.
    """
    n_points = len(data)
    heap = NeighborHeap(n_points, n_neighbors)
    if max_candidates is None:
        max_candidates = n_neighbors

    def block(lhs: Sequence[int], rhs: Sequence[int]) -> npt.NDArray[np.float64]:
        return _distance_block(
            data, distance, matrix, np.asarray(lhs, dtype=np.int64), np.asarray(rhs, dtype=np.int64)
        )

    for i in range(n_points):
        heap.push(i, 0.0, i, False)

    if leaf_array is not None:
        for leaf in leaf_array:
            members = [int(p) for p in leaf if p >= 0]
            if len(members) < 2:
                continue
            dists = block(members, members)
            for a, p in enumerate(members):
                for b in range(a + 1, len(members)):
                    q = members[b]
                    heap.push(p, dists[a, b], q, True)
                    heap.push(q, dists[a, b], p, True)

    # Top up rows the leaves left short with random candidates.
    for i in np.flatnonzero((heap.indices < 0).any(axis=1)):
        i = int(i)
        candidates = [int(j) for j in rejection_sample(n_neighbors, n_points, random) if j != i]
        if not candidates:
            continue
        for j, d in zip(candidates, block([i], candidates)[0]):
            heap.push(i, d, j, True)

    for iteration in range(n_iters):
        if starting_iteration is not None:
            starting_iteration(iteration, n_iters)

        new_candidates, old_candidates = _build_candidates(heap, max_candidates, random)
        updates = 0
        for i in range(n_points):
            new = new_candidates[i]
            old = old_candidates[i]
            if not new:
                continue
            new_new = block(new, new)
            new_old = block(new, old) if old else None
            for a, p in enumerate(new):
                for b in range(a + 1, len(new)):
                    updates += _join(heap, p, new[b], new_new[a, b])
                if new_old is not None:
                    for b, q in enumerate(old):
                        updates += _join(heap, p, q, new_old[a, b])

        if updates <= delta * n_neighbors * n_points:
            break

    return heap.deheap_sort()


def _join(heap: NeighborHeap, p: int, q: int, d: float) -> int:
    if p == q:
        return 0
    return heap.push(p, d, q, True) + heap.push(q, d, p, True)
