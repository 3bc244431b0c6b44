"""Running mean that ignores missing values."""

import math

import numpy as np


class RunningAverage:
    """
    Incremental mean over finite values.

    Example:
        >>> avg = RunningAverage()
        >>> for v in (10, 20, float("nan"), 30):
        ...     avg.add(v)
        >>> avg.count, avg.average
        (3, 20.0)
    """

    def __init__(self):
        self._total = 0.0
        self._count = 0

    def add(self, value: float) -> None:
        if value is None or not math.isfinite(value):
            return
        self._total += float(value)
        self._count += 1

    def add_many(self, values) -> None:
        """Add every finite value of an array in one step."""
        values = np.asarray(values, dtype=float).reshape(-1)
        finite = values[np.isfinite(values)]
        self._total += float(finite.sum())
        self._count += int(finite.size)

    @property
    def count(self) -> int:
        return self._count

    @property
    def average(self) -> float:
        if self._count == 0:
            return 0.0
        return self._total / self._count
