"""Tests for PhaseTimer."""

import pytest

from content_pipeline.core.timing import PhaseName, PhaseTimer
from tests.fakes import FakeClock


class TestPhaseTimer:
    def test_records_duration_of_completed_phase(self, clock):
        timer = PhaseTimer(clock)
        timer.start(PhaseName.SCOUT)
        clock.advance(1500)
        assert timer.end(PhaseName.SCOUT) == 1500
        assert timer.get_duration("scout") == 1500
        assert timer.is_completed("scout")

    def test_every_phase_reported_with_zero_default(self, clock):
        timer = PhaseTimer(clock)
        durations = timer.get_durations()
        assert set(durations) == {p.value for p in PhaseName}
        assert all(v == 0 for v in durations.values())

    def test_end_without_start_is_noop(self, clock):
        timer = PhaseTimer(clock)
        assert timer.end("editor") == 0
        assert not timer.is_completed("editor")
        assert timer.get_total_duration() == 0

    def test_restart_discards_first_start(self, clock):
        timer = PhaseTimer(clock)
        timer.start("editor")
        clock.advance(1000)
        timer.start("editor")
        clock.advance(250)
        assert timer.end("editor") == 250

    def test_second_pair_overwrites_duration(self, clock):
        timer = PhaseTimer(clock)
        with timer.phase("reviewer"):
            clock.advance(400)
        with timer.phase("reviewer"):
            clock.advance(100)
        assert timer.get_duration("reviewer") == 100

    def test_running_phase_is_not_completed(self, clock):
        timer = PhaseTimer(clock)
        with timer.phase("fixer"):
            clock.advance(10)
        timer.start("fixer")
        assert timer.is_running("fixer")
        assert not timer.is_completed("fixer")

    def test_total_and_reset(self, clock):
        timer = PhaseTimer(clock)
        for phase, ms in (("scout", 100), ("editor", 200), ("specialist", 300)):
            with timer.phase(phase):
                clock.advance(ms)
        assert timer.get_total_duration() == 600
        timer.reset()
        assert timer.get_total_duration() == 0
        assert not timer.is_completed("scout")

    def test_context_manager_records_on_error(self, clock):
        timer = PhaseTimer(clock)
        with pytest.raises(RuntimeError):
            with timer.phase("validation"):
                clock.advance(75)
                raise RuntimeError("boom")
        assert timer.get_duration("validation") == 75

    def test_unknown_phase_rejected(self):
        timer = PhaseTimer(FakeClock())
        with pytest.raises(ValueError, match="Unknown phase"):
            timer.start("publishing")
