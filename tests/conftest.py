"""pytest configuration and shared fixtures."""

from __future__ import annotations

import numpy as np
import pytest


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: full-length layouts or larger neighbour searches (deselect with -m 'not slow')",
    )


@pytest.fixture(scope="session")
def blobs() -> np.ndarray:
    """Three well-separated Gaussian clusters, 30 points each, 8 features."""
    rng = np.random.default_rng(7)
    centers = np.array([[0.0] * 8, [10.0] * 8, [-10.0, 10.0] * 4], dtype=np.float32)
    X = np.vstack([rng.standard_normal((30, 8)) + c for c in centers])
    return X.astype(np.float32)
