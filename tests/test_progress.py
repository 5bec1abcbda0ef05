"""Tests for ProgressTracker."""

from __future__ import annotations

import time

import pytest

from xcgen.progress import (
    PHASE_CLOSURE,
    PHASE_EXTRACT,
    PHASE_FILTER,
    PHASE_OPTIONS,
    PHASE_WRITE,
    ProgressTracker,
)


class TestProgressTracker:
    def test_basic_flow(self):
        tracker = ProgressTracker()
        tracker.start_phase(PHASE_EXTRACT)
        tracker.complete_phase(PHASE_EXTRACT, detail="rules=4")

        summary = tracker.get_summary()
        assert len(summary["phases"]) == 1
        assert summary["phases"][0]["status"] == "completed"
        assert summary["phases"][0]["detail"] == "rules=4"

    def test_fail_phase(self):
        tracker = ProgressTracker()
        tracker.start_phase(PHASE_EXTRACT)
        tracker.fail_phase(PHASE_EXTRACT, "bazel query exited with 1")

        summary = tracker.get_summary()
        assert summary["phases"][0]["status"] == "failed"
        assert summary["phases"][0]["error"] == "bazel query exited with 1"

    def test_skip_phase(self):
        tracker = ProgressTracker()
        tracker.skip_phase(PHASE_CLOSURE, "no tests selected")

        assert tracker.status_of(PHASE_CLOSURE) == "skipped"
        assert tracker.phases[0].duration is None

    def test_complete_unknown_phase_is_ignored(self):
        tracker = ProgressTracker()
        tracker.complete_phase(PHASE_WRITE)
        assert tracker.phases == []
        assert tracker.status_of(PHASE_WRITE) is None

    def test_duration_measured(self):
        tracker = ProgressTracker()
        with tracker.phase(PHASE_OPTIONS):
            time.sleep(0.01)

        duration = tracker.phases[0].duration
        assert duration is not None and duration >= 0.01

    def test_callback(self):
        events = []
        tracker = ProgressTracker()
        tracker.callbacks.append(lambda p: events.append((p.phase, p.status)))

        tracker.start_phase("a")
        tracker.complete_phase("a")

        assert events == [("a", "running"), ("a", "completed")]

    def test_failing_callback_does_not_stop_tracking(self):
        def _boom(p):
            raise RuntimeError("listener broke")

        tracker = ProgressTracker()
        tracker.callbacks.append(_boom)
        tracker.start_phase("a")
        tracker.complete_phase("a")
        assert tracker.status_of("a") == "completed"

    def test_generation_phases_in_order(self):
        tracker = ProgressTracker()
        for name in (PHASE_CLOSURE, PHASE_FILTER, PHASE_OPTIONS):
            with tracker.phase(name):
                pass

        summary = tracker.get_summary()
        assert [p["phase"] for p in summary["phases"]] == ["host_closure", "path_filter", "options"]
        assert summary["total_duration"] >= 0

    def test_merge(self):
        outer = ProgressTracker()
        outer.start_phase(PHASE_EXTRACT)
        outer.complete_phase(PHASE_EXTRACT)

        inner = ProgressTracker()
        inner.start_phase(PHASE_CLOSURE)
        inner.fail_phase(PHASE_CLOSURE, "missing host")

        outer.merge(inner)
        assert [p.phase for p in outer.phases] == [PHASE_EXTRACT, PHASE_CLOSURE]
        assert outer.status_of(PHASE_CLOSURE) == "failed"

    def test_phase_context_completes(self):
        tracker = ProgressTracker()
        with tracker.phase(PHASE_WRITE) as p:
            p.detail = "out/App.xcodeproj"

        assert tracker.status_of(PHASE_WRITE) == "completed"
        assert tracker.phases[0].detail == "out/App.xcodeproj"

    def test_phase_context_fails_and_reraises(self):
        tracker = ProgressTracker()
        with pytest.raises(ValueError):
            with tracker.phase(PHASE_EXTRACT):
                raise ValueError("bad xml")

        assert tracker.status_of(PHASE_EXTRACT) == "failed"
        assert tracker.phases[0].error == "bad xml"

    def test_finished_phase_is_not_reopened(self):
        tracker = ProgressTracker()
        tracker.start_phase("a")
        tracker.fail_phase("a", "boom")
        tracker.complete_phase("a")
        assert tracker.status_of("a") == "failed"
