"""Phase tracking for a single generation run."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import structlog

log = structlog.get_logger("xcgen.progress")

# Generation phases, in pipeline order
PHASE_EXTRACT = "extract"
PHASE_CLOSURE = "host_closure"
PHASE_FILTER = "path_filter"
PHASE_OPTIONS = "options"
PHASE_WRITE = "write"


class PhaseStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PhaseProgress:
    phase: str
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: float | None = None
    ended_at: float | None = None
    detail: str = ""
    error: str | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return round(self.ended_at - self.started_at, 3)

    @property
    def finished(self) -> bool:
        return self.status in (PhaseStatus.COMPLETED, PhaseStatus.FAILED, PhaseStatus.SKIPPED)


class ProgressTracker:
    """Ordered record of the phases a run went through.

    Callbacks receive the ``PhaseProgress`` after every transition.
    Restarting a phase name replaces the earlier record in lookups;
    both records stay in ``phases``.
    """

    def __init__(self) -> None:
        self.phases: list[PhaseProgress] = []
        self._by_name: dict[str, PhaseProgress] = {}
        self.callbacks: list[Callable[[PhaseProgress], None]] = []

    def start_phase(self, phase: str) -> PhaseProgress:
        p = PhaseProgress(phase=phase, status=PhaseStatus.RUNNING, started_at=time.monotonic())
        self._add(p)
        return p

    def complete_phase(self, phase: str, detail: str = "") -> None:
        self._finish(phase, PhaseStatus.COMPLETED, detail=detail)

    def fail_phase(self, phase: str, error: str) -> None:
        self._finish(phase, PhaseStatus.FAILED, error=error)

    def skip_phase(self, phase: str, reason: str) -> None:
        self._add(PhaseProgress(phase=phase, status=PhaseStatus.SKIPPED, detail=reason))

    @contextmanager
    def phase(self, phase: str) -> Iterator[PhaseProgress]:
        """Run a block as *phase*: failed if it raises, completed otherwise.

        Set ``detail`` on the yielded record to annotate the completion.
        """
        p = self.start_phase(phase)
        try:
            yield p
        except Exception as e:
            self.fail_phase(phase, str(e))
            raise
        self.complete_phase(phase, detail=p.detail)

    def merge(self, other: ProgressTracker) -> None:
        """Append another tracker's phases after this one's."""
        for p in other.phases:
            self.phases.append(p)
            self._by_name[p.phase] = p

    def status_of(self, phase: str) -> PhaseStatus | None:
        p = self._by_name.get(phase)
        return p.status if p else None

    def get_summary(self) -> dict[str, Any]:
        return {
            "phases": [
                {
                    "phase": p.phase,
                    "status": p.status.value,
                    "duration": p.duration,
                    "detail": p.detail,
                    "error": p.error,
                }
                for p in self.phases
            ],
            "total_duration": round(sum(p.duration or 0 for p in self.phases), 3),
        }

    def _add(self, p: PhaseProgress) -> None:
        self.phases.append(p)
        self._by_name[p.phase] = p
        self._notify(p)

    def _finish(
        self, phase: str, status: PhaseStatus, detail: str = "", error: str | None = None
    ) -> None:
        p = self._by_name.get(phase)
        if p is None or p.finished:
            return
        p.status = status
        p.ended_at = time.monotonic()
        p.detail = detail
        p.error = error
        self._notify(p)

    def _notify(self, p: PhaseProgress) -> None:
        for cb in self.callbacks:
            try:
                cb(p)
            except Exception:
                log.debug("progress.callback_error", phase=p.phase, exc_info=True)
