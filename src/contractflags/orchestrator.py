"""Run the enabled analyzers concurrently and build one analysis result.

The orchestrator is the only component that spawns concurrent work: one
asyncio task per enabled analyzer, each bounded by the configured timeout.
Failures and timeouts are recorded on the analyzer's run and never abort
sibling analyzers; the run only fails as a whole when every analyzer fails.

Progress is reported through a fixed sequence of stages. Analyzer stages
advance as a watermark: ``ANALYZER_A_DONE`` is reached once analyzer A and
every analyzer ordered before it have finished, so events always arrive in
stage order even when analyzers complete out of order.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Mapping

from loguru import logger

from contractflags.aggregator import Aggregator
from contractflags.analyzers import Analyzer
from contractflags.config import SOURCE_ORDER, AnalysisConfig
from contractflags.documents import DocumentProvider, FileDocumentProvider
from contractflags.errors import NoAnalyzerSucceeded
from contractflags.models import AnalysisResult, AnalyzerRun, AnalyzerStatus, Source
from contractflags.summary import summarize
from contractflags.utils import utc_timestamp


class Stage(IntEnum):
    PENDING = 0
    DOCUMENT_PARSED = 1
    RULE_ENGINE_DONE = 2
    ANALYZER_A_DONE = 3
    ANALYZER_B_DONE = 4
    AGGREGATION_DONE = 5
    COMPLETE = 6

    @property
    def percent(self) -> int:
        return _STAGE_PERCENT[self]


_STAGE_PERCENT = {
    Stage.PENDING: 0,
    Stage.DOCUMENT_PARSED: 15,
    Stage.RULE_ENGINE_DONE: 35,
    Stage.ANALYZER_A_DONE: 55,
    Stage.ANALYZER_B_DONE: 75,
    Stage.AGGREGATION_DONE: 90,
    Stage.COMPLETE: 100,
}

ANALYZER_STAGES = {
    Source.RULE_ENGINE: Stage.RULE_ENGINE_DONE,
    Source.ANALYZER_A: Stage.ANALYZER_A_DONE,
    Source.ANALYZER_B: Stage.ANALYZER_B_DONE,
}


@dataclass(frozen=True)
class ProgressEvent:
    stage: Stage
    timestamp: str


ProgressSink = Callable[[ProgressEvent], None]


class ProgressTracker:
    """Emits each stage exactly once, in order, to an optional sink."""

    def __init__(self, sink: ProgressSink | None = None):
        self.sink = sink
        self.stage = Stage.PENDING

    def advance_to(self, target: Stage) -> None:
        while self.stage < target:
            self.stage = Stage(self.stage + 1)
            logger.debug(f"Stage {self.stage.name} ({self.stage.percent}%)")
            if self.sink is None:
                continue
            try:
                self.sink(ProgressEvent(stage=self.stage, timestamp=utc_timestamp()))
            except Exception as exc:
                logger.warning(f"Progress sink failed on {self.stage.name}: {exc}")

    def advance_analyzers(self, runs: Mapping[Source, AnalyzerRun]) -> None:
        target = Stage.DOCUMENT_PARSED
        for source in SOURCE_ORDER:
            run = runs.get(source)
            if run is not None and not run.status.is_terminal:
                break
            target = ANALYZER_STAGES[source]
        self.advance_to(target)


class Orchestrator:
    def __init__(
        self,
        analyzers: Mapping[Source, Analyzer],
        provider: DocumentProvider | None = None,
    ):
        self.analyzers = dict(analyzers)
        self.provider = provider or FileDocumentProvider()

    async def aclose(self) -> None:
        for analyzer in self.analyzers.values():
            close = getattr(analyzer, "aclose", None)
            if close is not None:
                await close()

    async def _invoke(self, run: AnalyzerRun, analyzer: Analyzer, text: str, config: AnalysisConfig) -> None:
        run.status = AnalyzerStatus.RUNNING
        started = time.perf_counter()
        try:
            findings = await asyncio.wait_for(analyzer.analyze(text, config), timeout=config.timeout)
            run.findings = list(findings or [])
        except asyncio.TimeoutError:
            run.status = AnalyzerStatus.TIMED_OUT
            run.error = f"Timed out after {config.timeout}s"
            logger.warning(f"Analyzer {run.source.value} timed out after {config.timeout}s")
        except Exception as exc:
            run.status = AnalyzerStatus.FAILED
            run.error = str(exc) or type(exc).__name__
            logger.warning(f"Analyzer {run.source.value} failed: {run.error}")
        else:
            run.status = AnalyzerStatus.SUCCEEDED
            logger.info(f"Analyzer {run.source.value} returned {len(run.findings)} raw finding(s)")
        finally:
            run.elapsed = time.perf_counter() - started

    async def _run_analyzers(
        self,
        text: str,
        config: AnalysisConfig,
        tracker: ProgressTracker,
    ) -> list[AnalyzerRun]:
        runs = {source: AnalyzerRun(source) for source in config.enabled}
        tasks = []
        for source, run in runs.items():
            analyzer = self.analyzers.get(source)
            if analyzer is None:
                run.status = AnalyzerStatus.FAILED
                run.error = "Analyzer is not registered"
                continue
            tasks.append(
                asyncio.create_task(
                    self._invoke(run, analyzer, text, config),
                    name=f"contractflags-{source.value}",
                )
            )

        tracker.advance_analyzers(runs)
        pending = set(tasks)
        try:
            while pending:
                _, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                tracker.advance_analyzers(runs)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return [runs[source] for source in config.enabled]

    async def run(
        self,
        document_ref: str,
        config: AnalysisConfig | None = None,
        progress: ProgressSink | None = None,
    ) -> tuple[AnalysisResult, tuple[AnalyzerRun, ...]]:
        """Analyze one document.

        Returns the published result and the analyzer runs that failed or
        timed out. Raises ``DocumentUnreadable`` before any analyzer starts
        and ``NoAnalyzerSucceeded`` when every enabled analyzer fails.
        Cancelling this coroutine cancels every outstanding analyzer.
        """

        config = config or AnalysisConfig()
        tracker = ProgressTracker(progress)
        started = time.perf_counter()
        logger.info(
            f"Analyzing {document_ref} with {', '.join(src.value for src in config.enabled) or 'no analyzers'}"
        )

        text = await asyncio.to_thread(self.provider.get_content, document_ref)
        tracker.advance_to(Stage.DOCUMENT_PARSED)

        runs = await self._run_analyzers(text, config, tracker)
        succeeded = [run for run in runs if run.status is AnalyzerStatus.SUCCEEDED]
        failures = tuple(run for run in runs if run.status is not AnalyzerStatus.SUCCEEDED)
        if not succeeded:
            logger.error(f"No analyzer succeeded for {document_ref}")
            raise NoAnalyzerSucceeded(failures)

        aggregator = Aggregator(config.overlap)
        findings = aggregator.merge(succeeded)
        tracker.advance_to(Stage.AGGREGATION_DONE)

        result = AnalysisResult(
            document_ref=str(document_ref),
            findings=tuple(findings),
            summary=summarize(findings, config.scoring),
            processing_time=round(time.perf_counter() - started, 1),
            generated_at=utc_timestamp(),
            unavailable_sources=tuple(run.source for run in failures),
            warnings=tuple(aggregator.dropped),
        )
        tracker.advance_to(Stage.COMPLETE)
        logger.info(
            f"Analysis of {document_ref} finished: {result.total_flags} finding(s), "
            f"risk {result.overall_risk_score}"
        )
        return result, failures

