"""Wall-clock timing hooks for the processing stages.

Components take a Timings sink instead of keeping global counters. The
default NullTimings records nothing; Chronometer accumulates wall time
per named stage.
"""

from __future__ import annotations

import time
from typing import Protocol


class Timings(Protocol):
    """Sink for named start/stop timing events."""

    def start(self, name: str) -> None:
        ...

    def stop(self, name: str) -> None:
        ...


class NullTimings:
    """Timings sink that discards all events."""

    def start(self, name: str) -> None:
        pass

    def stop(self, name: str) -> None:
        pass


class Chronometer:
    """Accumulate wall time and call counts per named stage."""

    def __init__(self) -> None:
        self._started: dict[str, float] = {}
        self._totals: dict[str, float] = {}
        self._counts: dict[str, int] = {}

    def start(self, name: str) -> None:
        """Start timing a stage. Restarting a running stage resets it."""
        self._started[name] = time.perf_counter()

    def stop(self, name: str) -> None:
        """Stop timing a stage and add the elapsed time.

        Raises:
            KeyError: If the stage was not started
        """
        elapsed = time.perf_counter() - self._started.pop(name)
        self._totals[name] = self._totals.get(name, 0.0) + elapsed
        self._counts[name] = self._counts.get(name, 0) + 1

    def total(self, name: str) -> float:
        """Return accumulated seconds for a stage (0 if never stopped)."""
        return self._totals.get(name, 0.0)

    def count(self, name: str) -> int:
        """Return how often a stage was stopped."""
        return self._counts.get(name, 0)

    def mean(self, name: str) -> float:
        """Return average seconds per call for a stage."""
        count = self.count(name)
        return self.total(name) / count if count else 0.0

    @property
    def names(self) -> list[str]:
        """Return the names of all timed stages."""
        return list(self._totals.keys())

    def summary(self) -> dict[str, float]:
        """Return accumulated seconds per stage."""
        return dict(self._totals)

    def reset(self) -> None:
        """Forget all measurements."""
        self._started.clear()
        self._totals.clear()
        self._counts.clear()
