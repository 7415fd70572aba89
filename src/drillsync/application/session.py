"""
Practice session controller.

Drives one session from a pre-built queue to completion:

    CONFIGURING --start(non-empty)--> ACTIVE --advance()...--> COMPLETE
    CONFIGURING --start([])--> CONFIGURING   (declined, nothing rendered)

Reviews are persisted by the record store as they happen, so abandoning a
session is just dropping the controller.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Protocol

from drillsync.domain.models import (
    ExerciseProgress,
    QueueItem,
    SelfRating,
    SessionOutcome,
    SessionPhase,
    SessionState,
    SessionSummary,
)

logger = logging.getLogger(__name__)

ProgressLookup = Callable[[], dict[str, ExerciseProgress]]


class Renderer(Protocol):
    """Implemented by whatever UI layer presents the session."""

    def render(self, item: QueueItem, state: SessionState) -> None: ...

    def render_results(self, summary: SessionSummary) -> None: ...


class SessionController:
    def __init__(
        self,
        renderer: Renderer,
        progress: ProgressLookup | None = None,
        on_completed: Callable[[QueueItem], None] | None = None,
    ):
        """
        Args:
            renderer: Receives the current item and, at the end, the summary.
            progress: Returns the exercise-outcome table for the summary tally.
            on_completed: Called for every completed item (activity tracking).
        """
        self.renderer = renderer
        self._progress = progress or dict
        self._on_completed = on_completed
        self.phase = SessionPhase.CONFIGURING
        self.state: SessionState | None = None
        self.summary: SessionSummary | None = None

    @property
    def is_active(self) -> bool:
        return self.phase == SessionPhase.ACTIVE

    def start(self, queue: Sequence[QueueItem]) -> bool:
        """
        Begin a session. Returns False, staying in CONFIGURING, when the
        queue is empty so the caller can suggest another policy.
        """
        if self.phase == SessionPhase.ACTIVE:
            raise RuntimeError("a session is already active")
        if not queue:
            logger.info("[session] declined to start: empty queue")
            return False

        self.state = SessionState(queue=list(queue))
        self.summary = None
        self.phase = SessionPhase.ACTIVE
        logger.debug(f"[session] started with {len(queue)} items")
        self._render_current()
        return True

    def complete(self) -> None:
        self.advance(SessionOutcome.COMPLETED)

    def skip(self) -> None:
        self.advance(SessionOutcome.SKIPPED)

    def advance(self, outcome: SessionOutcome) -> None:
        if self.phase != SessionPhase.ACTIVE or self.state is None:
            raise RuntimeError(f"cannot advance a session in phase {self.phase.value}")

        item = self.state.current
        if outcome == SessionOutcome.COMPLETED:
            self.state.completed += 1
            if self._on_completed and item is not None:
                self._on_completed(item)
        else:
            self.state.skipped += 1

        self.state.index += 1
        if self.state.index >= self.state.total:
            self._finish()
        else:
            self._render_current()

    def _render_current(self) -> None:
        assert self.state is not None
        item = self.state.current
        if item is not None:
            self.renderer.render(item, self.state)

    def _finish(self) -> None:
        assert self.state is not None
        self.phase = SessionPhase.COMPLETE
        self.summary = summarize(self.state, self._progress())
        logger.info(
            f"[session] complete: {self.summary.completed} completed, "
            f"{self.summary.skipped} skipped"
        )
        self.renderer.render_results(self.summary)


def summarize(state: SessionState, progress: dict[str, ExerciseProgress]) -> SessionSummary:
    """Session counters plus the self-rating tally over the queued keys."""
    tally = {SelfRating.GOT_IT: 0, SelfRating.STRUGGLED: 0, SelfRating.PEEKED: 0}
    for item in state.queue:
        entry = progress.get(item.key)
        if entry is not None and entry.self_rating in tally:
            tally[entry.self_rating] += 1
    return SessionSummary(
        completed=state.completed,
        skipped=state.skipped,
        got_it=tally[SelfRating.GOT_IT],
        struggled=tally[SelfRating.STRUGGLED],
        peeked=tally[SelfRating.PEEKED],
        total=state.total,
    )
