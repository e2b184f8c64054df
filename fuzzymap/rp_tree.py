"""Random-projection trees that seed the nearest-neighbour search.

Each tree recursively cuts the point set with a random hyperplane until a
node holds at most ``leaf_size`` points. Trees are then flattened into
arrays so a query walks ``children`` instead of Python objects, and the
leaves of the whole forest are stacked into one ``-1``-padded leaf array.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt

from . import vector_math
from .random_source import rejection_sample
from .typing import RandomSource


@dataclass
class RandomProjectionTreeNode:
    indices: npt.NDArray[np.int64] | None = None
    hyperplane: npt.NDArray[np.float64] | None = None
    offset: float = 0.0
    left: RandomProjectionTreeNode | None = None
    right: RandomProjectionTreeNode | None = None

    @property
    def is_leaf(self) -> bool:
        return self.indices is not None

    def count_nodes(self) -> int:
        if self.is_leaf:
            return 1
        assert self.left is not None and self.right is not None
        return 1 + self.left.count_nodes() + self.right.count_nodes()

    def count_leaves(self) -> int:
        if self.is_leaf:
            return 1
        assert self.left is not None and self.right is not None
        return self.left.count_leaves() + self.right.count_leaves()


@dataclass
class FlatTree:
    """Array form of a random-projection tree.

    Attributes
    ----------
    hyperplanes : ndarray of shape (n_nodes, n_features)
        Split normal per node (zeros for leaves).
    offsets : ndarray of shape (n_nodes,)
    children : ndarray of shape (n_nodes, 2)
        Child node ids for internal nodes. A leaf stores ``(-1 - leaf_id, -1)``.
    indices : ndarray of shape (n_leaves, leaf_size)
        Point indices per leaf, padded with ``-1``.
    """

    hyperplanes: npt.NDArray[np.float64]
    offsets: npt.NDArray[np.float64]
    children: npt.NDArray[np.int64]
    indices: npt.NDArray[np.int64]

    def search(self, point: npt.NDArray[np.floating]) -> npt.NDArray[np.int64]:
        """Return the (unpadded) members of the leaf ``point`` falls into."""
        node = 0
        while self.children[node, 0] >= 0:
            margin = vector_math.dot(self.hyperplanes[node], point) + self.offsets[node]
            node = int(self.children[node, 0] if margin > 0 else self.children[node, 1])
        leaf = self.indices[-1 - int(self.children[node, 0])]
        return leaf[leaf >= 0]


_Split = Callable[
    [npt.NDArray[np.float32], npt.NDArray[np.int64], RandomSource],
    tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.float64], float],
]


def _pick_pivots(
    data: npt.NDArray[np.float32], indices: npt.NDArray[np.int64], random: RandomSource
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    n = indices.shape[0]
    left_index = random.next(0, n)
    right_index = random.next(0, n)
    if left_index == right_index:
        right_index = (right_index + 1) % n
    return (
        data[indices[left_index]].astype(np.float64),
        data[indices[right_index]].astype(np.float64),
    )


def _assign_sides(
    margins: npt.NDArray[np.float64], indices: npt.NDArray[np.int64], random: RandomSource
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
    go_left = margins > 0
    for tie in np.flatnonzero(margins == 0):
        go_left[tie] = random.next(0, 2) == 0

    # A degenerate cut (e.g. duplicated points) falls back to a random halving.
    if go_left.all() or not go_left.any():
        go_left[:] = False
        go_left[rejection_sample(indices.shape[0] // 2, indices.shape[0], random)] = True
    return indices[go_left], indices[~go_left]


def euclidean_random_projection_split(
    data: npt.NDArray[np.float32], indices: npt.NDArray[np.int64], random: RandomSource
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.float64], float]:
    """Split by the perpendicular bisector of two randomly chosen points."""
    left, right = _pick_pivots(data, indices, random)
    hyperplane = left - right
    offset = -float(np.dot(hyperplane, (left + right) / 2.0))
    margins = data[indices].astype(np.float64) @ hyperplane + offset
    left_indices, right_indices = _assign_sides(margins, indices, random)
    return left_indices, right_indices, hyperplane, offset


def angular_random_projection_split(
    data: npt.NDArray[np.float32], indices: npt.NDArray[np.int64], random: RandomSource
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.float64], float]:
    """Split by the bisecting great circle of two randomly chosen directions."""
    left, right = _pick_pivots(data, indices, random)
    left_norm = vector_math.magnitude(left) or 1.0
    right_norm = vector_math.magnitude(right) or 1.0
    hyperplane = left / left_norm - right / right_norm
    margins = data[indices].astype(np.float64) @ hyperplane
    left_indices, right_indices = _assign_sides(margins, indices, random)
    return left_indices, right_indices, hyperplane, 0.0


def make_tree(
    data: npt.NDArray[np.float32],
    leaf_size: int,
    random: RandomSource,
    angular: bool = False,
    indices: npt.NDArray[np.int64] | None = None,
) -> RandomProjectionTreeNode:
    """Grow one random-projection tree over the rows of ``data``."""
    if indices is None:
        indices = np.arange(data.shape[0], dtype=np.int64)
    if indices.shape[0] <= leaf_size:
        return RandomProjectionTreeNode(indices=indices)

    split: _Split = angular_random_projection_split if angular else euclidean_random_projection_split
    left_indices, right_indices, hyperplane, offset = split(data, indices, random)
    return RandomProjectionTreeNode(
        hyperplane=hyperplane,
        offset=offset,
        left=make_tree(data, leaf_size, random, angular, left_indices),
        right=make_tree(data, leaf_size, random, angular, right_indices),
    )


def flatten_tree(tree: RandomProjectionTreeNode, leaf_size: int, n_features: int) -> FlatTree:
    n_nodes = tree.count_nodes()
    n_leaves = tree.count_leaves()
    flat = FlatTree(
        hyperplanes=np.zeros((n_nodes, n_features), dtype=np.float64),
        offsets=np.zeros(n_nodes, dtype=np.float64),
        children=np.full((n_nodes, 2), -1, dtype=np.int64),
        indices=np.full((n_leaves, leaf_size), -1, dtype=np.int64),
    )

    def _fill(node: RandomProjectionTreeNode, node_id: int, leaf_id: int) -> tuple[int, int]:
        if node.is_leaf:
            assert node.indices is not None
            flat.children[node_id, 0] = -1 - leaf_id
            flat.indices[leaf_id, : node.indices.shape[0]] = node.indices
            return node_id + 1, leaf_id + 1

        assert node.left is not None and node.right is not None and node.hyperplane is not None
        flat.hyperplanes[node_id] = node.hyperplane
        flat.offsets[node_id] = node.offset
        flat.children[node_id, 0] = node_id + 1
        next_node, next_leaf = _fill(node.left, node_id + 1, leaf_id)
        flat.children[node_id, 1] = next_node
        return _fill(node.right, next_node, next_leaf)

    _fill(tree, 0, 0)
    return flat


def make_forest(
    data: npt.NDArray[np.float32],
    n_trees: int,
    leaf_size: int,
    random: RandomSource,
    angular: bool = False,
    progress: Callable[[float], None] | None = None,
) -> list[FlatTree]:
    """Build ``n_trees`` flattened trees, reporting ``i / n_trees`` before each one."""
    forest = []
    for i in range(n_trees):
        if progress is not None:
            progress(i / n_trees)
        tree = make_tree(data, leaf_size, random, angular)
        forest.append(flatten_tree(tree, leaf_size, data.shape[1]))
    return forest


def make_leaf_array(forest: list[FlatTree]) -> npt.NDArray[np.int64]:
    """Stack the leaves of every tree into one ``(total_leaves, leaf_size)`` array."""
    if not forest:
        return np.full((0, 0), -1, dtype=np.int64)
    return np.vstack([tree.indices for tree in forest])
