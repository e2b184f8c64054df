"""Progress-callback plumbing and verbose console output."""

from __future__ import annotations

import time

from .typing import ProgressReporter


def _ignore(progress: float) -> None:
    pass


def scale_progress_reporter(reporter: ProgressReporter | None, start: float, end: float) -> ProgressReporter:
    """Map a sub-task's ``[0, 1]`` progress onto ``[start, end]`` of ``reporter``.

    A missing reporter yields a no-op callable, so callers never need to
    check for ``None``.
    """
    if reporter is None:
        return _ignore
    span = end - start

    def _scaled(progress: float) -> None:
        reporter(span * progress + start)

    return _scaled


def log(verbose: int, message: str) -> None:
    """Print ``message`` with a wall-clock prefix when ``verbose`` is set."""
    if verbose:
        print(f"[{time.strftime('%X')}] {message}")
