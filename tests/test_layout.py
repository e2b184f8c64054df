"""Tests for the SGD layout: curve parameters, edge schedule and epochs."""

from __future__ import annotations

import numpy as np
import pytest

from fuzzymap import NumpyRandomSource, SparseMatrix, ThreadSafeRandomSource, UnsupportedConfigurationError
from fuzzymap.layout import (
    OptimizationState,
    draw_negative_samples,
    find_ab_params,
    initialize_optimization,
    make_epochs_per_sample,
    optimize_layout_step,
    shuffle_together,
)


def _ring_graph(n: int = 12) -> SparseMatrix:
    rows, cols, vals = [], [], []
    for i in range(n):
        j = (i + 1) % n
        w = 1.0 if i % 2 == 0 else 0.5
        rows += [i, j]
        cols += [j, i]
        vals += [w, w]
    return SparseMatrix(rows, cols, vals, shape=(n, n))


# ── Curve parameters ───────────────────────────────────────────────────


def test_find_ab_params_default_curve() -> None:
    a, b = find_ab_params(1.0, 0.1)
    assert a == pytest.approx(1.577, abs=0.01)
    assert b == pytest.approx(0.895, abs=0.01)


@pytest.mark.parametrize(("spread", "min_dist"), [(1.0, 0.5), (2.0, 0.1), (0.5, 0.001)])
def test_find_ab_params_unsupported(spread: float, min_dist: float) -> None:
    with pytest.raises(UnsupportedConfigurationError):
        find_ab_params(spread, min_dist)


# ── Edge schedule ──────────────────────────────────────────────────────


def test_epochs_per_sample() -> None:
    result = make_epochs_per_sample(np.array([1.0, 0.5, 0.25, 0.0]), 100)
    np.testing.assert_allclose(result, [1.0, 2.0, 4.0, -1.0])


def test_epochs_per_sample_empty() -> None:
    assert make_epochs_per_sample(np.empty(0), 10).shape == (0,)


def test_shuffle_together_uses_one_permutation() -> None:
    a = np.arange(50)
    b = np.arange(50) * 10
    sa, sb = shuffle_together(NumpyRandomSource(42), a, b)
    np.testing.assert_array_equal(sb, sa * 10)
    np.testing.assert_array_equal(np.sort(sa), a)
    assert not np.array_equal(sa, a)


def test_shuffle_together_length_mismatch() -> None:
    with pytest.raises(ValueError):
        shuffle_together(NumpyRandomSource(0), np.arange(3), np.arange(4))


def test_initialize_optimization_schedule() -> None:
    graph = _ring_graph()
    state, embedding = initialize_optimization(graph, 50, 2, NumpyRandomSource(42), negative_sample_rate=5)
    assert embedding.shape == (12 * 2,)
    assert embedding.dtype == np.float32
    assert np.all(np.abs(embedding) <= 10.0)

    assert state.n_edges == graph.nnz
    assert state.n_vertices == 12
    edges = set(zip(state.tail.tolist(), state.head.tolist()))
    assert edges == {(r, c) for r, c, _ in graph.entries()}
    np.testing.assert_allclose(state.epochs_per_sample, 1.0 / state.weights)
    np.testing.assert_allclose(state.epochs_per_negative_sample, state.epochs_per_sample / 5)
    np.testing.assert_array_equal(state.epoch_of_next_sample, state.epochs_per_sample)
    assert state.current_epoch == 0
    assert not state.converged


def test_initialize_optimization_prunes_weak_edges() -> None:
    graph = SparseMatrix([0, 1, 0, 2], [1, 0, 2, 0], [1.0, 1.0, 0.01, 0.01], shape=(3, 3))
    state, _ = initialize_optimization(graph, 10, 2, NumpyRandomSource(0))
    assert state.n_edges == 2
    assert set(state.weights.tolist()) == {1.0}


def test_empty_graph() -> None:
    state, embedding = initialize_optimization(SparseMatrix([], [], [], shape=(4, 4)), 10, 3, NumpyRandomSource(0))
    assert state.n_edges == 0
    before = embedding.copy()
    optimize_layout_step(state, embedding, NumpyRandomSource(0))
    np.testing.assert_array_equal(embedding, before)
    assert state.current_epoch == 1


# ── Epochs ─────────────────────────────────────────────────────────────


def test_negative_samples_for_due_edges() -> None:
    state, _ = initialize_optimization(_ring_graph(), 20, 2, NumpyRandomSource(1), negative_sample_rate=4)
    offsets, samples = draw_negative_samples(state, 1, NumpyRandomSource(2))
    assert offsets.shape == (state.n_edges + 1,)
    assert offsets[-1] == samples.shape[0]
    assert np.all((samples >= 0) & (samples < state.n_vertices))
    for i in range(state.n_edges):
        count = offsets[i + 1] - offsets[i]
        if state.epoch_of_next_sample[i] <= 1:
            assert count == 3
        else:
            assert count == 0


def test_zero_negative_sample_rate_draws_nothing() -> None:
    state, _ = initialize_optimization(_ring_graph(), 20, 2, NumpyRandomSource(1), negative_sample_rate=0)
    assert np.all(np.isinf(state.epochs_per_negative_sample))
    offsets, samples = draw_negative_samples(state, 5, NumpyRandomSource(2))
    assert samples.shape == (0,)
    assert np.all(offsets == 0)


def test_step_advances_and_decays_alpha() -> None:
    random = NumpyRandomSource(42)
    state, embedding = initialize_optimization(_ring_graph(), 10, 2, random, learning_rate=1.0)
    before = embedding.copy()
    assert optimize_layout_step(state, embedding, random) == 1
    assert state.alpha == pytest.approx(1.0)
    assert optimize_layout_step(state, embedding, random) == 2
    assert state.alpha == pytest.approx(0.9)
    assert not np.array_equal(embedding, before)
    assert np.all(np.isfinite(embedding))


def test_step_after_convergence_is_noop() -> None:
    random = NumpyRandomSource(42)
    state, embedding = initialize_optimization(_ring_graph(), 3, 2, random)
    for _ in range(3):
        optimize_layout_step(state, embedding, random)
    assert state.converged
    frozen = embedding.copy()
    assert optimize_layout_step(state, embedding, random) == 3
    np.testing.assert_array_equal(embedding, frozen)


def test_serial_steps_are_deterministic() -> None:
    results = []
    for _ in range(2):
        random = NumpyRandomSource(7)
        state, embedding = initialize_optimization(_ring_graph(), 30, 2, random)
        for _ in range(30):
            optimize_layout_step(state, embedding, random)
        results.append(embedding)
    np.testing.assert_array_equal(results[0], results[1])


def test_parallel_kernel_runs() -> None:
    random = ThreadSafeRandomSource(7)
    state, embedding = initialize_optimization(_ring_graph(), 30, 2, random)
    for _ in range(30):
        optimize_layout_step(state, embedding, random)
    assert state.converged
    assert np.all(np.isfinite(embedding))


# ── Kernel arithmetic ──────────────────────────────────────────────────


class ScriptedRandomSource:
    """Hands out a fixed list of uniforms; integer draws are not expected."""

    def __init__(self, uniforms: list[float]) -> None:
        self._uniforms = list(uniforms)

    @property
    def is_thread_safe(self) -> bool:
        return False

    def next(self, lo: int, hi: int) -> int:
        raise AssertionError("unexpected integer draw")

    def fill_uniform(self, buffer: np.ndarray) -> None:
        n = buffer.shape[0]
        buffer[...] = self._uniforms[:n]
        del self._uniforms[:n]


def _one_edge_state(
    a: float,
    b: float,
    alpha: float,
    dim: int,
    next_negative: float = 0.0,
    negative_period: float = np.inf,
    move_other: bool = True,
) -> OptimizationState:
    # Edge 0 -> 1 among three vertices, due at epoch 0.
    return OptimizationState(
        head=np.array([0], dtype=np.int64),
        tail=np.array([1], dtype=np.int64),
        weights=np.array([1.0], dtype=np.float32),
        epochs_per_sample=np.array([1.0]),
        epoch_of_next_sample=np.array([0.0]),
        epochs_per_negative_sample=np.array([negative_period]),
        epoch_of_next_negative_sample=np.array([next_negative]),
        a=a,
        b=b,
        gamma=1.0,
        alpha=alpha,
        initial_alpha=alpha,
        move_other=move_other,
        n_epochs=10,
        n_vertices=3,
        dim=dim,
    )


@pytest.mark.parametrize("move_other", [True, False])
def test_attraction_update(move_other: bool) -> None:
    a, b = 2.0, 0.5
    state = _one_edge_state(a, b, alpha=1.0, dim=2, move_other=move_other)
    embedding = np.array([3.0, 4.0, 0.0, 0.0, 7.0, 7.0], dtype=np.float32)

    optimize_layout_step(state, embedding, ScriptedRandomSource([]))

    d = 25.0
    coeff = -2.0 * a * b * d ** (b - 1.0) / (a * d**b + 1.0)
    grad = coeff * np.array([3.0, 4.0])
    expected_tail = -grad if move_other else np.zeros(2)
    np.testing.assert_allclose(embedding[:2], [3.0, 4.0] + grad, rtol=1e-6)
    np.testing.assert_allclose(embedding[2:4], expected_tail, atol=1e-6)
    np.testing.assert_array_equal(embedding[4:], [7.0, 7.0])
    assert state.epoch_of_next_sample[0] == 1.0


def test_attraction_gradient_is_clipped() -> None:
    # a=10, b=0.5 at d=1e-4 gives a raw gradient near -9 on the first axis.
    state = _one_edge_state(10.0, 0.5, alpha=0.1, dim=2)
    embedding = np.array([0.01, 0.0, 0.0, 0.0, 5.0, 5.0], dtype=np.float32)

    optimize_layout_step(state, embedding, ScriptedRandomSource([]))

    np.testing.assert_allclose(embedding[:4], [0.01 - 0.4, 0.0, 0.4, 0.0], atol=1e-6)


def test_negative_samples_skip_anchor_push_coincident_and_repel() -> None:
    # Three samples: the anchor itself, the tail (same position) and vertex 2.
    alpha = 0.25
    state = _one_edge_state(1.0, 1.0, alpha=alpha, dim=1, next_negative=-1.5, negative_period=0.5)
    embedding = np.array([2.0, 2.0, 0.0], dtype=np.float32)

    optimize_layout_step(state, embedding, ScriptedRandomSource([0.0, 0.5, 0.9]))

    pushed = 2.0 + 4.0 * alpha
    d = pushed**2
    repulsion = 2.0 * 1.0 * 1.0 / ((0.001 + d) * (d + 1.0))
    expected_anchor = pushed + alpha * repulsion * pushed
    assert embedding[0] == pytest.approx(expected_anchor, rel=1e-6)
    assert embedding[1] == 2.0
    assert embedding[2] == 0.0
    assert state.epoch_of_next_negative_sample[0] == pytest.approx(-1.5 + 3 * 0.5)
    assert state.epoch_of_next_sample[0] == 1.0
    assert state.current_epoch == 1


def test_repulsion_gradient_is_clipped() -> None:
    # Tail coincides with the head so only the single negative sample moves the anchor.
    state = _one_edge_state(1.0, 1.0, alpha=1.0, dim=1, next_negative=-0.5, negative_period=0.5)
    embedding = np.array([0.05, 0.05, 0.0], dtype=np.float32)

    optimize_layout_step(state, embedding, ScriptedRandomSource([0.9]))

    assert embedding[0] == pytest.approx(0.05 + 4.0, rel=1e-6)
    assert state.epoch_of_next_negative_sample[0] == pytest.approx(0.0)
