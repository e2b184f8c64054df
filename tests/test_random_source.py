"""Tests for the random sources, uniform fill and rejection sampling."""

from __future__ import annotations

import numpy as np
import pytest

from fuzzymap import NumpyRandomSource, ThreadSafeRandomSource, rejection_sample
from fuzzymap.random_source import uniform


def test_next_in_range() -> None:
    random = NumpyRandomSource(42)
    draws = [random.next(3, 7) for _ in range(200)]
    assert min(draws) >= 3
    assert max(draws) < 7


def test_same_seed_same_stream() -> None:
    a, b = NumpyRandomSource(1), NumpyRandomSource(1)
    assert [a.next(0, 1000) for _ in range(20)] == [b.next(0, 1000) for _ in range(20)]


def test_fill_uniform_in_unit_interval() -> None:
    buffer = np.zeros(500, dtype=np.float32)
    NumpyRandomSource(42).fill_uniform(buffer)
    assert np.all(buffer >= 0.0) and np.all(buffer < 1.0)
    assert buffer.std() > 0


def test_thread_safety_flag() -> None:
    assert not NumpyRandomSource(0).is_thread_safe
    assert ThreadSafeRandomSource(0).is_thread_safe


def test_thread_safe_source_matches_plain_stream() -> None:
    a, b = NumpyRandomSource(5), ThreadSafeRandomSource(5)
    assert [a.next(0, 50) for _ in range(10)] == [b.next(0, 50) for _ in range(10)]


def test_uniform_spread() -> None:
    values = np.empty(1000, dtype=np.float32)
    uniform(values, 10.0, NumpyRandomSource(42))
    assert values.min() >= -10.0
    assert values.max() <= 10.0
    assert values.min() < -5.0 and values.max() > 5.0


# ── Rejection sampling ─────────────────────────────────────────────────


def test_rejection_sample_distinct() -> None:
    sample = rejection_sample(20, 50, NumpyRandomSource(42))
    assert sample.shape == (20,)
    assert len(set(sample.tolist())) == 20
    assert sample.min() >= 0 and sample.max() < 50


def test_rejection_sample_whole_pool() -> None:
    np.testing.assert_array_equal(rejection_sample(10, 4, NumpyRandomSource(0)), np.arange(4))


@pytest.mark.parametrize(("n_samples", "pool_size"), [(0, 10), (5, 0), (-1, 10)])
def test_rejection_sample_empty(n_samples: int, pool_size: int) -> None:
    assert rejection_sample(n_samples, pool_size, NumpyRandomSource(0)).shape == (0,)
