"""Phase timing for article generation runs.

Tracks wall-clock duration per named pipeline phase using an injectable
clock, so tests can drive time deterministically.

Example:
    timer = PhaseTimer()

    timer.start(PhaseName.SCOUT)
    ...  # research
    timer.end(PhaseName.SCOUT)

    with timer.phase("editor"):
        ...  # planning

    timer.get_durations()
    # {"scout": 1500, "editor": 2000, "specialist": 0, ...}
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Protocol, Union


class PhaseName(str, Enum):
    """Stages of the generation pipeline."""

    SCOUT = "scout"
    EDITOR = "editor"
    SPECIALIST = "specialist"
    REVIEWER = "reviewer"
    VALIDATION = "validation"
    FIXER = "fixer"


PhaseLike = Union[PhaseName, str]


class Clock(Protocol):
    """Time source returning milliseconds."""

    def now(self) -> float: ...


class SystemClock:
    """Monotonic clock in milliseconds."""

    def now(self) -> float:
        return time.monotonic() * 1000.0


system_clock = SystemClock()


def _coerce_phase(phase: PhaseLike) -> PhaseName:
    if isinstance(phase, PhaseName):
        return phase
    try:
        return PhaseName(phase)
    except ValueError:
        valid = ", ".join(p.value for p in PhaseName)
        raise ValueError(f"Unknown phase {phase!r}. Expected one of: {valid}") from None


class PhaseTimer:
    """Records the duration of each pipeline phase.

    Only the most recent start/end pair of a phase counts: a second ``start``
    before ``end`` discards the first start, and a second completed pair
    overwrites the earlier duration.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock: Clock = clock or system_clock
        self._start_times: dict[PhaseName, float] = {}
        self._durations: dict[PhaseName, int] = {}

    def start(self, phase: PhaseLike) -> None:
        """Start (or restart) timing ``phase``."""
        self._start_times[_coerce_phase(phase)] = self._clock.now()

    def end(self, phase: PhaseLike) -> int:
        """Stop timing ``phase`` and return its duration in milliseconds.

        Returns 0 without touching any state if the phase was never started.
        """
        key = _coerce_phase(phase)
        started = self._start_times.pop(key, None)
        if started is None:
            return 0
        duration = int(round(self._clock.now() - started))
        self._durations[key] = duration
        return duration

    @contextmanager
    def phase(self, phase: PhaseLike) -> Iterator[None]:
        """Time the body of a ``with`` block as ``phase``."""
        self.start(phase)
        try:
            yield
        finally:
            self.end(phase)

    def get_duration(self, phase: PhaseLike) -> int:
        return self._durations.get(_coerce_phase(phase), 0)

    def get_durations(self) -> dict[str, int]:
        """Durations for every phase; untimed phases report 0."""
        return {p.value: self._durations.get(p, 0) for p in PhaseName}

    def get_total_duration(self) -> int:
        return sum(self._durations.values())

    def is_running(self, phase: PhaseLike) -> bool:
        return _coerce_phase(phase) in self._start_times

    def is_completed(self, phase: PhaseLike) -> bool:
        """True once a duration is recorded and the phase is not running again."""
        key = _coerce_phase(phase)
        return key in self._durations and key not in self._start_times

    def reset(self) -> None:
        """Clear all timing state so the timer can be reused."""
        self._start_times.clear()
        self._durations.clear()
