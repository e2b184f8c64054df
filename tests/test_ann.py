import numpy as np
import pytest
from sklearn.neighbors import NearestNeighbors

from fuzzymap import ApproximateNearestNeighbors, NumpyRandomSource, as_data_points, distances
from fuzzymap.ann import n_iters_for, n_trees_for, nearest_neighbors


def test_heuristics():
    assert n_trees_for(100) == 5  # sqrt(100) / 20 == 0.5 rounds down
    assert n_trees_for(2500) == 7  # 2.5 rounds to even
    assert n_trees_for(10_000) == 10
    assert n_iters_for(16) == 5
    assert n_iters_for(1000) == 10
    assert n_iters_for(1) == 5


def test_nearest_neighbors_shapes_and_progress():
    rng = np.random.default_rng(42)
    points = as_data_points(rng.standard_normal((60, 5)))
    reported = []
    indices, dists, forest = nearest_neighbors(
        points, 8, distances.euclidean, NumpyRandomSource(42), progress=reported.append
    )
    assert indices.shape == (60, 8)
    assert dists.shape == (60, 8)
    assert dists.dtype == np.float32
    assert len(forest) == n_trees_for(60)
    np.testing.assert_array_equal(indices[:, 0], np.arange(60))
    assert reported[:2] == [0.05, 0.1]
    assert all(0.0 <= p <= 1.0 for p in reported)
    assert reported == sorted(reported)


def test_cosine_uses_angular_forest():
    rng = np.random.default_rng(42)
    X = rng.standard_normal((50, 4))
    indices, _, forest = nearest_neighbors(as_data_points(X), 5, distances.cosine, NumpyRandomSource(0))
    assert all(np.all(tree.offsets == 0.0) for tree in forest)
    assert indices.shape == (50, 5)


def test_ann_basic_functionality():
    rng = np.random.RandomState(42)
    X = rng.rand(200, 10).astype(np.float32)

    ann = ApproximateNearestNeighbors(n_neighbors=10, seed=42)
    ann.fit(X)

    indices, distances_ = ann.kneighbors(X[:10], n_neighbors=5)
    assert indices.shape == (10, 5)
    assert distances_.shape == (10, 5)

    # The first neighbor of each point should be the point itself (distance == 0)
    for i in range(10):
        assert indices[i, 0] == i
        assert distances_[i, 0] < 1e-5


def test_ann_self_graph():
    rng = np.random.RandomState(0)
    X = rng.rand(100, 6).astype(np.float32)
    ann = ApproximateNearestNeighbors(n_neighbors=6, seed=0).fit(X)
    indices, dists = ann.kneighbors()
    assert indices.shape == (100, 6)
    indices, dists = ann.kneighbors(n_neighbors=3)
    assert indices.shape == (100, 3)
    with pytest.raises(ValueError):
        ann.kneighbors(n_neighbors=7)


def test_ann_recall_vs_sklearn():
    rng = np.random.RandomState(42)
    X = rng.rand(300, 8).astype(np.float32)

    ann = ApproximateNearestNeighbors(n_neighbors=10, seed=42)
    ann.fit(X)

    queries = rng.rand(20, 8).astype(np.float32)
    approx_indices, _ = ann.kneighbors(queries, n_neighbors=5)

    exact_nn = NearestNeighbors(n_neighbors=5, algorithm="brute")
    exact_nn.fit(X)
    _, exact_indices = exact_nn.kneighbors(queries)

    total_recall = 0
    for i in range(len(queries)):
        total_recall += len(set(approx_indices[i]) & set(exact_indices[i])) / 5.0

    avg_recall = total_recall / len(queries)
    assert avg_recall > 0.70, f"Recall was too low: {avg_recall}"


def test_ann_not_fitted():
    ann = ApproximateNearestNeighbors()
    with pytest.raises(RuntimeError, match="fit"):
        ann.kneighbors()


def test_ann_rejects_1d_input():
    with pytest.raises(ValueError):
        ApproximateNearestNeighbors().fit(np.ones(10, dtype=np.float32))


def test_ann_repr():
    assert repr(ApproximateNearestNeighbors(n_neighbors=7)) == "ApproximateNearestNeighbors(n_neighbors=7)"
