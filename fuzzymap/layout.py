"""Stochastic-gradient layout of the fuzzy graph in the target space.

Edges are sampled in proportion to their membership strength: an edge of
weight ``w`` is visited every ``max_weight / w`` epochs. Each visit pulls
the two endpoints together and pushes the head away from a few uniformly
drawn vertices (negative sampling). The per-epoch work runs in a numba
kernel over a flat, row-major ``float32`` embedding buffer.

When the random source declares itself thread safe, the edges of an epoch
are processed by a parallel loop that updates the shared buffer without
locks. Two edges touching the same vertex may then race; SGD absorbs the
noise, but that path is not bit-reproducible. The sequential path is.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numba
import numpy as np
import numpy.typing as npt

from ._errors import UnsupportedConfigurationError
from .random_source import uniform
from .sparse import SparseMatrix
from .typing import RandomSource

#: Curve parameters fitted for ``spread=1, min_dist=0.1``.
DEFAULT_A = 1.5769434603113077
DEFAULT_B = 0.8950608779109733

INITIAL_EMBEDDING_RANGE = 10.0


def find_ab_params(spread: float, min_dist: float) -> tuple[float, float]:
    """Parameters ``(a, b)`` of the low-dimensional similarity ``1 / (1 + a * d^(2b))``.

    Only the default ``spread=1, min_dist=0.1`` curve is available; any
    other pair would need a non-linear least-squares fit.

    Raises
    ------
    UnsupportedConfigurationError
        For any other ``(spread, min_dist)``.
    """
    if not (math.isclose(spread, 1.0, rel_tol=1e-6) and math.isclose(min_dist, 0.1, rel_tol=1e-6)):
        raise UnsupportedConfigurationError(
            f"find_ab_params only supports spread=1, min_dist=0.1 (got spread={spread}, min_dist={min_dist})."
        )
    return DEFAULT_A, DEFAULT_B


def make_epochs_per_sample(weights: npt.NDArray[np.floating], n_epochs: int) -> npt.NDArray[np.float64]:
    """Epoch period of every edge: ``max_weight / weight``, or ``-1`` if never sampled."""
    result = np.full(weights.shape[0], -1.0, dtype=np.float64)
    if weights.shape[0] == 0:
        return result
    max_weight = float(weights.max())
    if max_weight <= 0.0:
        return result
    n_samples = n_epochs * (weights.astype(np.float64) / max_weight)
    positive = n_samples > 0
    result[positive] = float(n_epochs) / n_samples[positive]
    return result


def shuffle_together(
    random: RandomSource, *arrays: npt.NDArray[np.generic]
) -> tuple[npt.NDArray[np.generic], ...]:
    """Apply one Fisher-Yates permutation, driven by ``random``, to every array."""
    n = arrays[0].shape[0]
    for arr in arrays[1:]:
        if arr.shape[0] != n:
            raise ValueError("All arrays must have the same length to be shuffled together.")
    order = np.arange(n, dtype=np.int64)
    for last in range(n - 1, 0, -1):
        k = random.next(0, last + 1)
        order[k], order[last] = order[last], order[k]
    return tuple(arr[order] for arr in arrays)


@dataclass
class OptimizationState:
    """Everything the layout loop mutates or reads between epochs."""

    head: npt.NDArray[np.int64] = field(default_factory=lambda: np.empty(0, dtype=np.int64))
    tail: npt.NDArray[np.int64] = field(default_factory=lambda: np.empty(0, dtype=np.int64))
    weights: npt.NDArray[np.float32] = field(default_factory=lambda: np.empty(0, dtype=np.float32))
    epochs_per_sample: npt.NDArray[np.float64] = field(default_factory=lambda: np.empty(0))
    epoch_of_next_sample: npt.NDArray[np.float64] = field(default_factory=lambda: np.empty(0))
    epochs_per_negative_sample: npt.NDArray[np.float64] = field(default_factory=lambda: np.empty(0))
    epoch_of_next_negative_sample: npt.NDArray[np.float64] = field(default_factory=lambda: np.empty(0))
    a: float = DEFAULT_A
    b: float = DEFAULT_B
    gamma: float = 1.0
    alpha: float = 1.0
    initial_alpha: float = 1.0
    move_other: bool = True
    current_epoch: int = 0
    n_epochs: int = 500
    n_vertices: int = 0
    dim: int = 2

    @property
    def n_edges(self) -> int:
        return int(self.head.shape[0])

    @property
    def converged(self) -> bool:
        return self.current_epoch >= self.n_epochs


def initialize_optimization(
    graph: SparseMatrix,
    n_epochs: int,
    dim: int,
    random: RandomSource,
    a: float = DEFAULT_A,
    b: float = DEFAULT_B,
    learning_rate: float = 1.0,
    repulsion_strength: float = 1.0,
    negative_sample_rate: float = 5.0,
) -> tuple[OptimizationState, npt.NDArray[np.float32]]:
    """Build the edge schedule and a random initial embedding for ``graph``.

    Entries weaker than ``max_weight / n_epochs`` would never be sampled
    and are dropped first.

    Returns
    -------
    state : OptimizationState
    embedding : ndarray of shape (n_vertices * dim,)
        Row-major buffer filled with uniform noise in ``[-10, 10]``.
    """
    n_vertices = graph.shape[0]
    graph_max = max(graph.values(), default=0.0)
    pruned = graph.map(lambda value: 0.0 if value < graph_max / n_epochs else value)

    embedding = np.empty(n_vertices * dim, dtype=np.float32)
    uniform(embedding, INITIAL_EMBEDDING_RANGE, random)

    rows, cols, weights = pruned.to_coo()
    nonzero = weights != 0
    head, tail, weights = shuffle_together(random, cols[nonzero], rows[nonzero], weights[nonzero])

    epochs_per_sample = make_epochs_per_sample(weights, n_epochs)
    if negative_sample_rate > 0:
        epochs_per_negative_sample = epochs_per_sample / negative_sample_rate
    else:
        epochs_per_negative_sample = np.full_like(epochs_per_sample, np.inf)

    state = OptimizationState(
        head=np.ascontiguousarray(head, dtype=np.int64),
        tail=np.ascontiguousarray(tail, dtype=np.int64),
        weights=np.ascontiguousarray(weights, dtype=np.float32),
        epochs_per_sample=epochs_per_sample,
        epoch_of_next_sample=epochs_per_sample.copy(),
        epochs_per_negative_sample=epochs_per_negative_sample,
        epoch_of_next_negative_sample=epochs_per_negative_sample.copy(),
        a=a,
        b=b,
        gamma=repulsion_strength,
        alpha=learning_rate,
        initial_alpha=learning_rate,
        move_other=True,
        current_epoch=0,
        n_epochs=n_epochs,
        n_vertices=n_vertices,
        dim=dim,
    )
    return state, embedding


@numba.njit()
def clip(val):
    """Clamp a gradient term to ``[-4, 4]``."""
    if val > 4.0:
        return 4.0
    elif val < -4.0:
        return -4.0
    else:
        return val


@numba.njit()
def _rdist(embedding, current, other, dim):
    """Squared Euclidean distance between two rows of the flat buffer."""
    result = 0.0
    for d in range(dim):
        diff = embedding[current + d] - embedding[other + d]
        result += diff * diff
    return result


@numba.njit()
def _sgd_edge(
    i,
    embedding,
    head,
    tail,
    epochs_per_sample,
    epoch_of_next_sample,
    epochs_per_negative_sample,
    epoch_of_next_negative_sample,
    negative_offsets,
    negative_samples,
    dim,
    a,
    b,
    gamma,
    alpha,
    move_other,
):
    j = head[i]
    current = j * dim
    other = tail[i] * dim

    dist_squared = _rdist(embedding, current, other, dim)
    if dist_squared > 0.0:
        grad_coeff = -2.0 * a * b * pow(dist_squared, b - 1.0)
        grad_coeff /= a * pow(dist_squared, b) + 1.0
    else:
        grad_coeff = 0.0

    for d in range(dim):
        grad_d = clip(grad_coeff * (embedding[current + d] - embedding[other + d]))
        embedding[current + d] += grad_d * alpha
        if move_other:
            embedding[other + d] += -grad_d * alpha

    epoch_of_next_sample[i] += epochs_per_sample[i]

    start = negative_offsets[i]
    end = negative_offsets[i + 1]
    for p in range(start, end):
        k = negative_samples[p]
        other = k * dim
        dist_squared = _rdist(embedding, current, other, dim)

        if dist_squared > 0.0:
            grad_coeff = 2.0 * gamma * b
            grad_coeff /= (0.001 + dist_squared) * (a * pow(dist_squared, b) + 1.0)
        elif j == k:
            continue
        else:
            grad_coeff = 0.0

        for d in range(dim):
            if grad_coeff > 0.0:
                grad_d = clip(grad_coeff * (embedding[current + d] - embedding[other + d]))
            else:
                grad_d = 4.0
            embedding[current + d] += grad_d * alpha

    if end > start:
        epoch_of_next_negative_sample[i] += (end - start) * epochs_per_negative_sample[i]


def _optimize_layout_epoch(
    embedding,
    head,
    tail,
    epochs_per_sample,
    epoch_of_next_sample,
    epochs_per_negative_sample,
    epoch_of_next_negative_sample,
    negative_offsets,
    negative_samples,
    n,
    dim,
    a,
    b,
    gamma,
    alpha,
    move_other,
):
    for i in numba.prange(epochs_per_sample.shape[0]):
        if epochs_per_sample[i] > 0.0 and epoch_of_next_sample[i] <= n:
            _sgd_edge(
                i,
                embedding,
                head,
                tail,
                epochs_per_sample,
                epoch_of_next_sample,
                epochs_per_negative_sample,
                epoch_of_next_negative_sample,
                negative_offsets,
                negative_samples,
                dim,
                a,
                b,
                gamma,
                alpha,
                move_other,
            )


_optimize_layout_epoch_serial = numba.njit(_optimize_layout_epoch, parallel=False)
_optimize_layout_epoch_parallel = numba.njit(_optimize_layout_epoch, parallel=True, fastmath=True)


def draw_negative_samples(
    state: OptimizationState, n: int, random: RandomSource
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
    """Draw every negative sample epoch ``n`` needs in one bulk call.

    An edge due this epoch gets ``floor((n - next_negative) / period)``
    samples (never fewer than 0). Samples for edge ``i`` live in
    ``samples[offsets[i]:offsets[i + 1]]``.
    """
    n_edges = state.n_edges
    counts = np.zeros(n_edges, dtype=np.int64)
    due = (
        (state.epochs_per_sample > 0)
        & (state.epoch_of_next_sample <= n)
        & np.isfinite(state.epochs_per_negative_sample)
    )
    if due.any():
        counts[due] = np.floor(
            (n - state.epoch_of_next_negative_sample[due]) / state.epochs_per_negative_sample[due]
        ).astype(np.int64)
        np.maximum(counts, 0, out=counts)

    offsets = np.zeros(n_edges + 1, dtype=np.int64)
    np.cumsum(counts, out=offsets[1:])
    total = int(offsets[-1])
    if total == 0:
        return offsets, np.empty(0, dtype=np.int64)

    draws = np.empty(total, dtype=np.float64)
    random.fill_uniform(draws)
    samples = np.minimum((draws * state.n_vertices).astype(np.int64), state.n_vertices - 1)
    return offsets, samples


def optimize_layout_step(
    state: OptimizationState, embedding: npt.NDArray[np.float32], random: RandomSource
) -> int:
    """Run one epoch of SGD on ``embedding`` in place and return the new epoch count.

    Once ``state.n_epochs`` epochs have run this is a no-op.
    """
    n = state.current_epoch
    if n >= state.n_epochs:
        return state.current_epoch

    offsets, samples = draw_negative_samples(state, n, random)
    kernel = _optimize_layout_epoch_parallel if random.is_thread_safe else _optimize_layout_epoch_serial
    kernel(
        embedding,
        state.head,
        state.tail,
        state.epochs_per_sample,
        state.epoch_of_next_sample,
        state.epochs_per_negative_sample,
        state.epoch_of_next_negative_sample,
        offsets,
        samples,
        n,
        state.dim,
        state.a,
        state.b,
        state.gamma,
        state.alpha,
        state.move_other,
    )

    state.alpha = state.initial_alpha * (1.0 - n / state.n_epochs)
    state.current_epoch += 1
    return state.current_epoch
