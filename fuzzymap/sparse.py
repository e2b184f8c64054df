"""Dictionary-of-keys sparse matrix used to assemble the fuzzy graph.

Entries live in a ``dict`` keyed by ``(row, col)``. Every elementwise
operation walks the stored entries only, so cost scales with the number
of non-zeros rather than with ``rows * cols``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING, Any

import numpy as np
import numpy.typing as npt

if TYPE_CHECKING:
    import scipy.sparse as sp

_Key = tuple[int, int]


class SparseMatrix:
    """Sparse ``rows x cols`` float matrix.

    Parameters
    ----------
    rows, cols : iterable of int
        Coordinates of the initial entries.
    values : iterable of float
        Values of the initial entries. Later duplicates overwrite earlier ones.
    shape : tuple[int, int]
        Fixed dimensions of the matrix.

    Examples
    --------
    >>> m = SparseMatrix([0, 1], [1, 0], [0.5, 0.25], shape=(2, 2))
    >>> m.transpose().get(1, 0)
    0.5
    """

    __slots__ = ("_entries", "shape")

    def __init__(
        self,
        rows: Iterable[int],
        cols: Iterable[int],
        values: Iterable[float],
        shape: tuple[int, int],
    ) -> None:
        rows = list(rows)
        cols = list(cols)
        values = list(values)
        if not (len(rows) == len(cols) == len(values)):
            raise ValueError(
                "The input lists rows, cols and values must all have the same number of elements, "
                f"got {len(rows)}, {len(cols)} and {len(values)}."
            )
        self.shape = (int(shape[0]), int(shape[1]))
        self._entries: dict[_Key, float] = {}
        for row, col, value in zip(rows, cols, values):
            self.set(int(row), int(col), float(value))

    @classmethod
    def _from_entries(cls, entries: dict[_Key, float], shape: tuple[int, int]) -> SparseMatrix:
        matrix = cls.__new__(cls)
        matrix.shape = shape
        matrix._entries = entries
        return matrix

    @classmethod
    def from_scipy(cls, matrix: Any) -> SparseMatrix:
        """Build from any ``scipy.sparse`` matrix, keeping explicit zeros."""
        coo = matrix.tocoo()
        return cls(coo.row.tolist(), coo.col.tolist(), coo.data.tolist(), shape=coo.shape)

    def __repr__(self) -> str:
        return f"SparseMatrix(shape={self.shape}, nnz={self.nnz})"

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SparseMatrix):
            return NotImplemented
        return self.shape == other.shape and self._entries == other._entries

    __hash__ = None  # type: ignore[assignment]

    @property
    def nnz(self) -> int:
        """Number of stored entries (explicit zeros included)."""
        return len(self._entries)

    # ── Element access ─────────────────────────────────────────────────

    def _check_dims(self, row: int, col: int) -> None:
        if __debug__:
            if not (0 <= row < self.shape[0] and 0 <= col < self.shape[1]):
                raise IndexError(f"Index ({row}, {col}) out of bounds for shape {self.shape}.")

    def get(self, row: int, col: int, default: float = 0.0) -> float:
        self._check_dims(row, col)
        return self._entries.get((row, col), default)

    def set(self, row: int, col: int, value: float) -> None:
        self._check_dims(row, col)
        self._entries[(row, col)] = value

    def entries(self) -> Iterator[tuple[int, int, float]]:
        """Yield ``(row, col, value)`` in storage order."""
        for (row, col), value in self._entries.items():
            yield row, col, value

    def rows(self) -> Iterator[int]:
        return (row for row, _ in self._entries)

    def cols(self) -> Iterator[int]:
        return (col for _, col in self._entries)

    def values(self) -> Iterator[float]:
        return iter(self._entries.values())

    def for_each(self, fn: Callable[[float, int, int], None]) -> None:
        for (row, col), value in self._entries.items():
            fn(value, row, col)

    # ── Mapping ────────────────────────────────────────────────────────

    def map(self, fn: Callable[[float], float]) -> SparseMatrix:
        """Apply ``fn`` to every stored value. Keys are kept even if mapped to 0."""
        return SparseMatrix._from_entries({key: fn(value) for key, value in self._entries.items()}, self.shape)

    def map_entries(self, fn: Callable[[float, int, int], float]) -> SparseMatrix:
        """Like :meth:`map` but ``fn`` also receives the row and column."""
        return SparseMatrix._from_entries(
            {(row, col): fn(value, row, col) for (row, col), value in self._entries.items()},
            self.shape,
        )

    def multiply_scalar(self, scalar: float) -> SparseMatrix:
        return self.map(lambda value: value * scalar)

    def transpose(self) -> SparseMatrix:
        return SparseMatrix._from_entries(
            {(col, row): value for (row, col), value in self._entries.items()},
            (self.shape[1], self.shape[0]),
        )

    # ── Elementwise algebra ────────────────────────────────────────────

    def add(self, other: SparseMatrix) -> SparseMatrix:
        """Elementwise sum over the union of keys; missing entries count as 0."""
        return self._elementwise(other, lambda x, y: x + y)

    def subtract(self, other: SparseMatrix) -> SparseMatrix:
        """Elementwise difference over the union of keys; missing entries count as 0."""
        return self._elementwise(other, lambda x, y: x - y)

    def pairwise_multiply(self, other: SparseMatrix) -> SparseMatrix:
        """Elementwise (Hadamard) product over the intersection of keys."""
        other_entries = other._entries
        return SparseMatrix._from_entries(
            {key: value * other_entries[key] for key, value in self._entries.items() if key in other_entries},
            self.shape,
        )

    def _elementwise(self, other: SparseMatrix, op: Callable[[float, float], float]) -> SparseMatrix:
        other_entries = other._entries
        entries = {key: op(value, other_entries.get(key, 0.0)) for key, value in self._entries.items()}
        for key, value in other_entries.items():
            if key not in entries:
                entries[key] = op(0.0, value)
        return SparseMatrix._from_entries(entries, self.shape)

    # ── Export ─────────────────────────────────────────────────────────

    def to_array(self) -> npt.NDArray[np.float32]:
        """Dense ``(rows, cols)`` copy."""
        out = np.zeros(self.shape, dtype=np.float32)
        for (row, col), value in self._entries.items():
            out[row, col] = value
        return out

    def to_coo(self) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.float32]]:
        """Return ``(rows, cols, values)`` sorted by row, then column."""
        n = len(self._entries)
        rows = np.fromiter((key[0] for key in self._entries), dtype=np.int64, count=n)
        cols = np.fromiter((key[1] for key in self._entries), dtype=np.int64, count=n)
        values = np.fromiter(self._entries.values(), dtype=np.float32, count=n)
        order = np.lexsort((cols, rows))
        return rows[order], cols[order], values[order]

    def to_csr(self) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float32], npt.NDArray[np.int64]]:
        """Return ``(indices, values, indptr)`` following CSR conventions.

        ``indices`` and ``values`` hold one slot per stored entry, ordered
        by row and then column. ``indptr`` has ``rows + 1`` entries; the
        entries of row ``r`` are ``indptr[r]:indptr[r + 1]``.
        """
        rows, cols, values = self.to_coo()
        counts = np.bincount(rows, minlength=self.shape[0]) if rows.size else np.zeros(self.shape[0], dtype=np.int64)
        indptr = np.zeros(self.shape[0] + 1, dtype=np.int64)
        np.cumsum(counts, out=indptr[1:])
        return cols, values, indptr

    def to_scipy(self) -> sp.csr_matrix:
        """Convert to a ``scipy.sparse.csr_matrix`` of ``float32``."""
        import scipy.sparse as sp

        indices, values, indptr = self.to_csr()
        return sp.csr_matrix((values, indices, indptr), shape=self.shape)
