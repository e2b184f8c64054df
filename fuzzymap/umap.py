"""UMAP – Uniform Manifold Approximation and Projection.

Provides the stepwise ``UMAP`` orchestrator (generic over any point type
exposing a ``data`` vector), the array-friendly ``VectorUMAP`` and the
one-shot helpers ``umap``, ``umap2`` and ``umap3``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Generic

import numpy as np
import numpy.typing as npt

from . import distances
from ._errors import IllegalStateError
from .ann import nearest_neighbors
from .data_point import RawVectorDataPoint, as_data_points
from .fuzzy_simplicial_set import fuzzy_simplicial_set
from .layout import OptimizationState, find_ab_params, initialize_optimization, optimize_layout_step
from .progress import log, scale_progress_reporter
from .random_source import NumpyRandomSource
from .sparse import SparseMatrix
from .typing import DistanceFunction, ProgressReporter, RandomSource, T

if TYPE_CHECKING:
    import scipy.sparse as sp

logger = logging.getLogger(__name__)


class UMAP(Generic[T]):
    """Uniform Manifold Approximation and Projection (UMAP).

    Non-linear dimensionality reduction that builds a fuzzy k-NN graph of
    the input and lays it out in ``n_components`` dimensions with
    negative-sampling SGD. The embedding starts from uniform noise in
    ``[-10, 10]`` and is advanced one epoch per :meth:`step` call.

    Parameters
    ----------
    distance : callable, default=distances.cosine
        ``distance(p, q) -> float`` over data points.
    random : RandomSource, optional
        Source of all randomness. A thread-safe source enables the
        parallel (non bit-reproducible) epoch kernel.
    seed : int, default=42
        Seed of the default ``NumpyRandomSource`` when ``random`` is None.
    n_components : int, default=2
        Number of output dimensions.
    n_neighbors : int, default=15
        Size of the local neighbourhood (``k``).
    n_epochs : int, optional
        Fixed number of optimisation epochs. Must be positive. By default
        it is chosen from the dataset size.
    progress : callable, optional
        Receives an overall completion fraction in ``[0, 1]``.
        ``initialize_fit`` covers ``[0, 0.8]`` and the ``step`` calls the rest.
    verbose : int, default=0
        Verbosity level.
    learning_rate, local_connectivity, min_dist, spread,
    negative_sample_rate, repulsion_strength, set_op_mix_ratio
        Standard UMAP hyperparameters. Only ``spread=1, min_dist=0.1`` is
        supported.

    Examples
    --------
    >>> import numpy as np
    >>> from fuzzymap import UMAP, as_data_points
    >>> points = as_data_points(np.random.default_rng(42).standard_normal((50, 10)))
    >>> model = UMAP(n_neighbors=10)
    >>> n_epochs = model.initialize_fit(points)
    >>> for _ in range(n_epochs):
    ...     _ = model.step()
    >>> model.get_embedding().shape
    (50, 2)
    """

    def __init__(
        self,
        distance: DistanceFunction = distances.cosine,
        random: RandomSource | None = None,
        seed: int = 42,
        n_components: int = 2,
        n_neighbors: int = 15,
        n_epochs: int | None = None,
        progress: ProgressReporter | None = None,
        verbose: int = 0,
        learning_rate: float = 1.0,
        local_connectivity: float = 1.0,
        min_dist: float = 0.1,
        spread: float = 1.0,
        negative_sample_rate: int = 5,
        repulsion_strength: float = 1.0,
        set_op_mix_ratio: float = 1.0,
    ) -> None:
        if n_epochs is not None and n_epochs <= 0:
            raise ValueError(f"n_epochs must be a positive value if set, got {n_epochs}.")
        if n_components < 1:
            raise ValueError(f"n_components must be >= 1, got {n_components}.")
        if n_neighbors < 2:
            raise ValueError(f"n_neighbors must be >= 2, got {n_neighbors}.")
        if not 0.0 <= set_op_mix_ratio <= 1.0:
            raise ValueError(f"set_op_mix_ratio must be in [0, 1], got {set_op_mix_ratio}.")
        if negative_sample_rate < 0:
            raise ValueError(f"negative_sample_rate must be >= 0, got {negative_sample_rate}.")

        self.distance = distance
        self.seed = seed
        self.random: RandomSource = random if random is not None else NumpyRandomSource(seed)
        self.n_components = n_components
        self.n_neighbors = n_neighbors
        self.n_epochs = n_epochs
        self.progress = progress
        self.verbose = verbose
        self.learning_rate = learning_rate
        self.local_connectivity = local_connectivity
        self.min_dist = min_dist
        self.spread = spread
        self.negative_sample_rate = negative_sample_rate
        self.repulsion_strength = repulsion_strength
        self.set_op_mix_ratio = set_op_mix_ratio
        self._a, self._b = find_ab_params(spread, min_dist)

        self._data: Sequence[T] | None = None
        self._knn_indices: npt.NDArray[np.int64] | None = None
        self._knn_distances: npt.NDArray[np.float32] | None = None
        self._graph: SparseMatrix | None = None
        self._state: OptimizationState | None = None
        self._embedding: npt.NDArray[np.float32] = np.empty(0, dtype=np.float32)
        self._initialized: bool = False

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(n_components={self.n_components}, "
            f"n_neighbors={self.n_neighbors}, n_epochs={self.n_epochs})"
        )

    # ── Nearest neighbours ─────────────────────────────────────────────
    def nearest_neighbors(
        self, data: Sequence[T], progress: ProgressReporter | None = None
    ) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float32]]:
        """Approximate ``n_neighbors``-NN graph of ``data``.

        Parameters
        ----------
        data : sequence of data points
        progress : callable, optional
            Receives completion fractions in ``[0, 1]`` for this call only.

        Returns
        -------
        indices : ndarray of shape (n_samples, n_neighbors)
            ``-1`` marks a slot for which no neighbour was found.
        distances : ndarray of shape (n_samples, n_neighbors)
        """
        indices, dists, _ = nearest_neighbors(data, self.n_neighbors, self.distance, self.random, progress)
        return indices, dists

    # ── Fit ────────────────────────────────────────────────────────────
    def initialize_fit(
        self,
        data: Sequence[T],
        knn_indices: npt.ArrayLike | None = None,
        knn_distances: npt.ArrayLike | None = None,
    ) -> int:
        """Build the fuzzy graph and the optimisation state for ``data``.

        Calling again with the same ``data`` object once initialised is a
        no-op.

        Parameters
        ----------
        data : sequence of data points
        knn_indices, knn_distances : array-like of shape (n_samples, n_neighbors), optional
            Precomputed neighbour graph to use instead of the built-in search.

        Returns
        -------
        int
            Number of epochs, i.e. how many times :meth:`step` should be called.
        """
        if self._initialized and self._data is data:
            return self._get_n_epochs()
        if len(data) == 0:
            raise ValueError("Expected at least one data point.")

        report = scale_progress_reporter(self.progress, 0.0, 0.8)
        n_samples = len(data)
        self._initialized = False
        self._data = data

        t0 = time.perf_counter()
        if knn_indices is not None or knn_distances is not None:
            self._knn_indices, self._knn_distances = self._validate_knn(knn_indices, knn_distances, n_samples)
            log(self.verbose, f"Using precomputed {self.n_neighbors}-NN graph for {n_samples} points.")
        else:
            log(self.verbose, f"Searching {self.n_neighbors} nearest neighbours of {n_samples} points...")
            self._knn_indices, self._knn_distances = self.nearest_neighbors(
                data, scale_progress_reporter(report, 0.0, 0.3)
            )
            log(self.verbose, f"Neighbour search done in {time.perf_counter() - t0:.2f}s.")

        t0 = time.perf_counter()
        self._graph = fuzzy_simplicial_set(
            self._knn_indices,
            self._knn_distances,
            n_samples,
            self.n_neighbors,
            set_op_mix_ratio=self.set_op_mix_ratio,
            local_connectivity=self.local_connectivity,
            progress=scale_progress_reporter(report, 0.3, 1.0),
        )
        log(self.verbose, f"Fuzzy graph with {self._graph.nnz} entries built in {time.perf_counter() - t0:.2f}s.")

        n_epochs = self._get_n_epochs()
        self._state, self._embedding = initialize_optimization(
            self._graph,
            n_epochs,
            self.n_components,
            self.random,
            a=self._a,
            b=self._b,
            learning_rate=self.learning_rate,
            repulsion_strength=self.repulsion_strength,
            negative_sample_rate=self.negative_sample_rate,
        )
        if self._state.n_edges == 0:
            logger.warning("Fuzzy graph has no edges to optimise; the embedding will stay at its random initialisation.")
        log(self.verbose, f"Optimising {self._state.n_edges} edges for {n_epochs} epochs.")

        self._initialized = True
        return n_epochs

    def step(self) -> int:
        """Advance the layout by one epoch and return the number of epochs completed."""
        state = self._require_state()
        current = state.current_epoch
        n_epochs = self._get_n_epochs()
        if current < n_epochs:
            optimize_layout_step(state, self._embedding, self.random)
            if self.progress is not None:
                scale_progress_reporter(self.progress, 0.8, 1.0)(current / n_epochs)
        return state.current_epoch

    def get_embedding(self) -> npt.NDArray[np.float32]:
        """Snapshot of the current coordinates, shape ``(n_samples, n_components)``."""
        state = self._require_state()
        return self._embedding.reshape(state.n_vertices, state.dim).copy()

    def fit(self, data: Sequence[T]) -> UMAP[T]:
        """Initialise on ``data`` and run every remaining epoch.

        Returns
        -------
        self
        """
        n_epochs = self.initialize_fit(data)
        t0 = time.perf_counter()
        while self.step() < n_epochs:
            pass
        log(self.verbose, f"Layout optimisation completed in {time.perf_counter() - t0:.2f}s.")
        return self

    def fit_transform(self, data: Sequence[T]) -> npt.NDArray[np.float32]:
        """Fit UMAP and return the low-dimensional embedding."""
        return self.fit(data).transform(data)

    def transform(self, data: Sequence[T]) -> npt.NDArray[np.float32]:
        """Return the embedding computed during ``fit()``.

        .. note::

            This UMAP is transductive: ``transform`` only returns the
            embedding of the data it was fitted on.
        """
        state = self._require_state()
        if len(data) != state.n_vertices:
            raise ValueError(
                f"transform() only supports the data passed to fit(): expected {state.n_vertices} points, got {len(data)}."
            )
        return self.get_embedding()

    # ── Properties ─────────────────────────────────────────────────────
    @property
    def embedding_(self) -> npt.NDArray[np.float32]:
        """The current embedding, shape ``(n_samples, n_components)``."""
        return self.get_embedding()

    @property
    def graph_(self) -> sp.csr_matrix:
        """The symmetric fuzzy graph as a ``scipy.sparse.csr_matrix``."""
        if self._graph is None:
            raise IllegalStateError("UMAP graph has not been initialized. Call .initialize_fit() first.")
        return self._graph.to_scipy()

    @property
    def knn_indices_(self) -> npt.NDArray[np.int64]:
        if self._knn_indices is None:
            raise IllegalStateError("UMAP has not been fitted yet. Call .initialize_fit() first.")
        return self._knn_indices

    @property
    def knn_distances_(self) -> npt.NDArray[np.float32]:
        if self._knn_distances is None:
            raise IllegalStateError("UMAP has not been fitted yet. Call .initialize_fit() first.")
        return self._knn_distances

    @property
    def n_epochs_(self) -> int:
        """Number of epochs the layout runs for."""
        return self._get_n_epochs()

    @property
    def current_epoch(self) -> int:
        return self._require_state().current_epoch

    # ── Internal helpers ───────────────────────────────────────────────
    find_ab_params = staticmethod(find_ab_params)

    def _get_n_epochs(self) -> int:
        if self.n_epochs is not None:
            return self.n_epochs
        if self._graph is None:
            raise IllegalStateError("UMAP graph has not been initialized. Call .initialize_fit() first.")

        n_samples = self._graph.shape[0]
        if n_samples <= 2500:
            return 500
        elif n_samples <= 5000:
            return 400
        elif n_samples <= 7500:
            return 300
        return 200

    def _require_state(self) -> OptimizationState:
        if not self._initialized or self._state is None:
            raise IllegalStateError("UMAP has not been fitted yet. Call .initialize_fit() first.")
        return self._state

    def _validate_knn(
        self, knn_indices: Any, knn_distances: Any, n_samples: int
    ) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float32]]:
        if knn_indices is None or knn_distances is None:
            raise ValueError("knn_indices and knn_distances must be supplied together.")
        indices = np.asarray(knn_indices, dtype=np.int64)
        dists = np.asarray(knn_distances, dtype=np.float32)
        expected = (n_samples, self.n_neighbors)
        if indices.shape != expected or dists.shape != expected:
            raise ValueError(
                f"Precomputed KNN must have shape {expected}, got {indices.shape} and {dists.shape}."
            )
        return indices, dists


class VectorUMAP(UMAP[RawVectorDataPoint]):
    """:class:`UMAP` over plain float vectors.

    Accepts 2-D arrays (or sequences of 1-D rows) wherever :class:`UMAP`
    takes data points and wraps them with
    :func:`~fuzzymap.data_point.as_data_points`. Already wrapped points are
    passed through. Passing the same array object again reuses the wrapped
    points, so ``initialize_fit`` stays idempotent.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._raw: Any = None
        self._points: list[RawVectorDataPoint] = []

    def _as_points(self, X: Any) -> Sequence[RawVectorDataPoint]:
        if not _is_raw_vectors(X):
            return X
        if X is self._raw:
            return self._points
        points = as_data_points(X)
        self._raw, self._points = X, points
        return points

    def nearest_neighbors(  # type: ignore[override]
        self, X: npt.ArrayLike, progress: ProgressReporter | None = None
    ) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float32]]:
        return super().nearest_neighbors(self._as_points(X), progress)

    def initialize_fit(  # type: ignore[override]
        self,
        X: npt.ArrayLike,
        knn_indices: npt.ArrayLike | None = None,
        knn_distances: npt.ArrayLike | None = None,
    ) -> int:
        return super().initialize_fit(self._as_points(X), knn_indices, knn_distances)


def _is_raw_vectors(X: Any) -> bool:
    # ndarray rows expose a ``data`` memoryview, so test for raw vectors first.
    if isinstance(X, np.ndarray):
        return True
    if len(X) == 0:
        return False
    first = X[0]
    return isinstance(first, (np.ndarray, list, tuple)) or np.isscalar(first)


# ── Convenience functions ──────────────────────────────────────────────


def umap(x: npt.ArrayLike, n_components: int = 2, **kwargs: Any) -> npt.NDArray[np.float32]:
    """Project data using UMAP.

    Parameters
    ----------
    x : array-like of shape (n_samples, n_features)
    n_components : int, default=2
    **kwargs
        Forwarded to ``VectorUMAP()``.
    """
    return VectorUMAP(n_components=n_components, **kwargs).fit_transform(x)


def umap2(x: npt.ArrayLike, **kwargs: Any) -> npt.NDArray[np.float32]:
    """Project data into exactly 2 dimensions using UMAP."""
    return umap(x, n_components=2, **kwargs)


def umap3(x: npt.ArrayLike, **kwargs: Any) -> npt.NDArray[np.float32]:
    """Project data into exactly 3 dimensions using UMAP."""
    return umap(x, n_components=3, **kwargs)
