"""Concrete random sources and the helpers that consume them.

The pipeline never reaches for global random state; every stage receives
an object satisfying :class:`~fuzzymap.typing.RandomSource`.
"""

from __future__ import annotations

import threading

import numpy as np
import numpy.typing as npt

from . import vector_math
from .typing import RandomSource


class NumpyRandomSource:
    """Seedable random source backed by :func:`numpy.random.default_rng`.

    Not safe for concurrent use, so the layout optimizer runs its epoch
    kernel sequentially and repeated runs with the same seed are
    bit-identical.

    Parameters
    ----------
    seed : int | None, default=None
        Seed for the underlying PCG64 generator.
    """

    def __init__(self, seed: int | None = None) -> None:
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def __repr__(self) -> str:
        return f"NumpyRandomSource(seed={self.seed})"

    @property
    def is_thread_safe(self) -> bool:
        return False

    def next(self, lo: int, hi: int) -> int:
        return int(self._rng.integers(lo, hi))

    def fill_uniform(self, buffer: npt.NDArray[np.floating]) -> None:
        buffer[...] = self._rng.random(buffer.shape)


class ThreadSafeRandomSource(NumpyRandomSource):
    """Lock-guarded :class:`NumpyRandomSource`.

    Declares itself thread safe, which lets the layout optimizer process
    the edges of an epoch in parallel. The parallel path updates the
    shared embedding without synchronisation, so results are only
    statistically reproducible.
    """

    def __init__(self, seed: int | None = None) -> None:
        super().__init__(seed)
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ThreadSafeRandomSource(seed={self.seed})"

    @property
    def is_thread_safe(self) -> bool:
        return True

    def next(self, lo: int, hi: int) -> int:
        with self._lock:
            return super().next(lo, hi)

    def fill_uniform(self, buffer: npt.NDArray[np.floating]) -> None:
        with self._lock:
            super().fill_uniform(buffer)


def uniform(values: npt.NDArray[np.floating], spread: float, random: RandomSource) -> npt.NDArray[np.floating]:
    """Overwrite ``values`` in place with uniform noise from ``[-spread, spread]``."""
    random.fill_uniform(values)
    vector_math.multiply(values, 2 * spread)
    vector_math.add(values, -spread)
    return values


def rejection_sample(n_samples: int, pool_size: int, random: RandomSource) -> npt.NDArray[np.int64]:
    """Draw ``n_samples`` distinct integers from ``[0, pool_size)``.

    Asking for at least ``pool_size`` samples returns the whole pool in
    order; a non-positive argument returns an empty array.
    """
    if pool_size <= 0 or n_samples <= 0:
        return np.empty(0, dtype=np.int64)
    if n_samples >= pool_size:
        return np.arange(pool_size, dtype=np.int64)

    taken = np.zeros(pool_size, dtype=bool)
    result = np.empty(n_samples, dtype=np.int64)
    filled = 0
    while filled < n_samples:
        candidate = random.next(0, pool_size)
        if taken[candidate]:
            continue
        taken[candidate] = True
        result[filled] = candidate
        filled += 1
    return result
