"""Caller-facing API for starting, polling and cancelling analysis runs."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field

from loguru import logger

from contractflags.config import AnalysisConfig
from contractflags.errors import Cancelled, NotReady, RunInProgress
from contractflags.models import AnalysisResult, AnalyzerRun
from contractflags.orchestrator import Orchestrator, ProgressEvent, ProgressSink, Stage

_run_ids = itertools.count(1)


@dataclass(eq=False)
class RunHandle:
    """Opaque reference to one analysis run within a session."""

    run_id: int
    document_ref: str
    events: list[ProgressEvent] = field(default_factory=list)
    _task: asyncio.Task | None = field(default=None, repr=False)
    _cancelled: bool = field(default=False, repr=False)

    @property
    def stage(self) -> Stage:
        return self.events[-1].stage if self.events else Stage.PENDING

    @property
    def done(self) -> bool:
        return self._cancelled or (self._task is not None and self._task.done())


class AnalysisSession:
    """Holds at most one in-flight run for one document session.

    ``conflict="cancel"`` cancels the active run when a new one starts;
    ``conflict="reject"`` raises :class:`RunInProgress` instead.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        *,
        conflict: str = "cancel",
        progress: ProgressSink | None = None,
    ):
        if conflict not in ("cancel", "reject"):
            raise ValueError(f"Unknown conflict policy: {conflict}")
        self.orchestrator = orchestrator
        self.conflict = conflict
        self.progress = progress
        self._active: RunHandle | None = None

    def _record(self, handle: RunHandle):
        def sink(event: ProgressEvent) -> None:
            handle.events.append(event)
            if self.progress is not None:
                self.progress(event)

        return sink

    def start_analysis(self, document_ref: str, config: AnalysisConfig | None = None) -> RunHandle:
        """Schedule a run on the running event loop and return its handle."""

        active = self._active
        if active is not None and not active.done:
            if self.conflict == "reject":
                raise RunInProgress(f"Run {active.run_id} for {active.document_ref} is still in flight")
            logger.info(f"Cancelling run {active.run_id} to start a new analysis")
            self.cancel(active)

        handle = RunHandle(run_id=next(_run_ids), document_ref=str(document_ref))
        handle._task = asyncio.get_running_loop().create_task(
            self.orchestrator.run(document_ref, config, progress=self._record(handle)),
            name=f"contractflags-run-{handle.run_id}",
        )
        self._active = handle
        return handle

    def get_progress(self, handle: RunHandle) -> Stage:
        return handle.stage

    def cancel(self, handle: RunHandle) -> None:
        """Signal the run to stop. A cancelled run never publishes a result."""

        if handle._task is None or handle._task.done():
            return
        handle._cancelled = True
        handle._task.cancel()
        logger.info(f"Cancelled run {handle.run_id} for {handle.document_ref}")

    def _outcome(self, handle: RunHandle) -> tuple[AnalysisResult, tuple[AnalyzerRun, ...]]:
        if handle._cancelled or (handle._task is not None and handle._task.cancelled()):
            raise Cancelled(f"Run {handle.run_id} was cancelled")
        if handle._task is None or not handle._task.done():
            raise NotReady(f"Run {handle.run_id} is at stage {handle.stage.name}")
        return handle._task.result()

    def get_result(self, handle: RunHandle) -> AnalysisResult:
        """Return the published result.

        Raises ``NotReady`` while the run is in flight, ``Cancelled`` after
        cancellation, and re-raises the run's fatal error
        (``DocumentUnreadable`` or ``NoAnalyzerSucceeded``).
        """

        result, _ = self._outcome(handle)
        return result

    def get_partial_failures(self, handle: RunHandle) -> tuple[AnalyzerRun, ...]:
        _, failures = self._outcome(handle)
        return failures

    async def wait(self, handle: RunHandle) -> AnalysisResult:
        """Wait for the run to reach a terminal state, then behave as :meth:`get_result`."""

        if handle._task is not None:
            await asyncio.wait({handle._task})
        return self.get_result(handle)
