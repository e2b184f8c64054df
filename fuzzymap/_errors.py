"""Exception types raised by fuzzymap."""

from __future__ import annotations


class LengthMismatchError(ValueError):
    """Raised when two vectors that must share a length do not."""


class IllegalStateError(RuntimeError):
    """Raised when a pipeline stage is used before ``initialize_fit()`` has run."""


class UnsupportedConfigurationError(ValueError):
    """Raised for ``(spread, min_dist)`` pairs without hard-coded curve parameters."""
