from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

if TYPE_CHECKING:
    import numpy as np


class SupportsData(Protocol):
    """Protocol for anything that carries a fixed-length float payload.

    The nearest-neighbour engine and the built-in distance functions only
    ever look at ``data``; points are otherwise identified by their index
    in the input sequence.
    """

    @property
    def data(self) -> np.ndarray: ...


class RandomSource(Protocol):
    """Injected source of randomness used by every stochastic stage.

    ``next(lo, hi)`` draws an integer in ``[lo, hi)``. ``fill_uniform``
    overwrites a float buffer in place with draws from ``[0, 1)``.
    ``is_thread_safe`` tells the layout optimizer whether the parallel
    epoch kernel may be used.
    """

    @property
    def is_thread_safe(self) -> bool: ...

    def next(self, lo: int, hi: int) -> int: ...

    def fill_uniform(self, buffer: np.ndarray) -> None: ...


T = TypeVar("T", bound=SupportsData)

#: Pure, deterministic function of two points returning their distance.
DistanceFunction = Callable[[Any, Any], float]

#: Receives a completion fraction in ``[0, 1]``; called synchronously.
ProgressReporter = Callable[[float], None]


class SupportsEmbedding(Protocol):
    """Protocol for fitted models that expose a point embedding."""

    @property
    def embedding_(self) -> np.ndarray: ...
