from __future__ import annotations

import asyncio

import pytest

from contractflags.config import AnalysisConfig
from contractflags.errors import DocumentUnreadable, NoAnalyzerSucceeded
from contractflags.models import AnalyzerRun, AnalyzerStatus, Severity, Source
from contractflags.orchestrator import Orchestrator, ProgressTracker, Stage
from contractflags.rules import RuleEngineAnalyzer
from tests.fakes import FakeAnalyzer, StaticProvider, raw_finding

DOCUMENT = "merger.docx"
TEXT = "Section 8.2 Liability. Party A shall be liable for all damages."


def _orchestrator(*analyzers, documents=None):
    provider = StaticProvider(documents if documents is not None else {DOCUMENT: TEXT})
    return Orchestrator({analyzer.source: analyzer for analyzer in analyzers}, provider)


def _config(*sources, timeout=5.0):
    return AnalysisConfig(enabled=sources or tuple(Source), timeout=timeout)


@pytest.mark.asyncio
async def test_run_merges_findings_from_every_analyzer():
    rules = FakeAnalyzer(Source.RULE_ENGINE, [raw_finding(severity="HIGH", score=7)])
    first = FakeAnalyzer(Source.ANALYZER_A, [raw_finding(severity="CRITICAL", score=9, location="Section 8.2, Page 4")])
    second = FakeAnalyzer(
        Source.ANALYZER_B,
        [raw_finding(category="tax", title="Transfer Taxes", location="Section 4.1", severity="MEDIUM", score=5)],
    )

    result, failures = await _orchestrator(rules, first, second).run(DOCUMENT, _config())

    assert failures == ()
    assert result.document_ref == DOCUMENT
    assert result.total_flags == 2
    liability, tax = result.findings
    assert (liability.id, tax.id) == ("1", "2")
    assert liability.severity is Severity.CRITICAL
    assert liability.source is Source.ANALYZER_A
    assert liability.corroborating_sources == (Source.RULE_ENGINE,)
    assert tax.source is Source.ANALYZER_B
    assert result.summary.by_source == {"rule_engine": 0, "analyzer_a": 1, "analyzer_b": 1}
    assert result.unavailable_sources == ()


@pytest.mark.asyncio
async def test_timed_out_analyzer_is_excluded_and_reported():
    rules = FakeAnalyzer(Source.RULE_ENGINE, [raw_finding()])
    slow = FakeAnalyzer(Source.ANALYZER_A, [raw_finding(category="tax", location="Section 1")], delay=10)

    result, failures = await _orchestrator(rules, slow).run(
        DOCUMENT, _config(Source.RULE_ENGINE, Source.ANALYZER_A, timeout=0.05)
    )

    assert [finding.source for finding in result.findings] == [Source.RULE_ENGINE]
    [failure] = failures
    assert failure.source is Source.ANALYZER_A
    assert failure.status is AnalyzerStatus.TIMED_OUT
    assert slow.cancelled
    assert result.unavailable_sources == (Source.ANALYZER_A,)


@pytest.mark.asyncio
async def test_failed_analyzer_does_not_abort_siblings():
    broken = FakeAnalyzer(Source.ANALYZER_B, error="rate limited")
    rules = FakeAnalyzer(Source.RULE_ENGINE, [raw_finding()])

    result, failures = await _orchestrator(rules, broken).run(
        DOCUMENT, _config(Source.RULE_ENGINE, Source.ANALYZER_B)
    )

    assert result.total_flags == 1
    assert failures[0].status is AnalyzerStatus.FAILED
    assert failures[0].error == "rate limited"


@pytest.mark.asyncio
async def test_all_analyzers_failing_raises():
    broken = FakeAnalyzer(Source.ANALYZER_A, error="boom")
    slow = FakeAnalyzer(Source.ANALYZER_B, delay=10)

    with pytest.raises(NoAnalyzerSucceeded) as excinfo:
        await _orchestrator(broken, slow).run(DOCUMENT, _config(Source.ANALYZER_A, Source.ANALYZER_B, timeout=0.05))

    statuses = {run.source: run.status for run in excinfo.value.failures}
    assert statuses == {Source.ANALYZER_A: AnalyzerStatus.FAILED, Source.ANALYZER_B: AnalyzerStatus.TIMED_OUT}


@pytest.mark.asyncio
async def test_unregistered_analyzer_counts_as_failure():
    rules = FakeAnalyzer(Source.RULE_ENGINE, [raw_finding()])

    _, failures = await _orchestrator(rules).run(DOCUMENT, _config(Source.RULE_ENGINE, Source.ANALYZER_A))

    assert [(run.source, run.status) for run in failures] == [(Source.ANALYZER_A, AnalyzerStatus.FAILED)]


@pytest.mark.asyncio
async def test_unreadable_document_starts_no_analyzer():
    rules = FakeAnalyzer(Source.RULE_ENGINE, [raw_finding()])

    with pytest.raises(DocumentUnreadable):
        await _orchestrator(rules, documents={}).run(DOCUMENT, _config(Source.RULE_ENGINE))

    assert rules.calls == 0


@pytest.mark.asyncio
async def test_progress_reports_each_stage_once_in_order():
    fast = FakeAnalyzer(Source.ANALYZER_B, [raw_finding()])
    slow = FakeAnalyzer(Source.RULE_ENGINE, [raw_finding(category="tax")], delay=0.05)
    events = []

    await _orchestrator(fast, slow).run(DOCUMENT, _config(Source.RULE_ENGINE, Source.ANALYZER_B), events.append)

    stages = [event.stage for event in events]
    assert stages == list(Stage)[1:]
    assert [stage.percent for stage in stages] == [15, 35, 55, 75, 90, 100]


@pytest.mark.asyncio
async def test_failing_progress_sink_is_ignored():
    def sink(event):
        raise RuntimeError("display closed")

    result, _ = await _orchestrator(FakeAnalyzer(Source.RULE_ENGINE, [raw_finding()])).run(
        DOCUMENT, _config(Source.RULE_ENGINE), sink
    )

    assert result.total_flags == 1


@pytest.mark.asyncio
async def test_cancelling_run_cancels_outstanding_analyzers():
    slow = FakeAnalyzer(Source.ANALYZER_A, delay=10)
    task = asyncio.create_task(_orchestrator(slow).run(DOCUMENT, _config(Source.ANALYZER_A)))

    await asyncio.wait_for(slow.started.wait(), timeout=1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert slow.cancelled


@pytest.mark.asyncio
async def test_aclose_closes_analyzers_that_hold_resources():
    llm = FakeAnalyzer(Source.ANALYZER_A)
    orchestrator = _orchestrator(RuleEngineAnalyzer(), llm)

    await orchestrator.aclose()

    assert llm.closed == 1


@pytest.mark.asyncio
async def test_malformed_findings_become_warnings():
    rules = FakeAnalyzer(Source.RULE_ENGINE, [raw_finding(), raw_finding(title="  ", location="Section 2")])

    result, _ = await _orchestrator(rules).run(DOCUMENT, _config(Source.RULE_ENGINE))

    assert result.total_flags == 1
    assert result.warnings == ("Dropped finding #1 from rule_engine: title: empty",)


def test_tracker_watermark_waits_for_earlier_analyzers():
    events = []
    tracker = ProgressTracker(events.append)
    tracker.advance_to(Stage.DOCUMENT_PARSED)
    runs = {
        Source.RULE_ENGINE: AnalyzerRun(Source.RULE_ENGINE, status=AnalyzerStatus.RUNNING),
        Source.ANALYZER_A: AnalyzerRun(Source.ANALYZER_A, status=AnalyzerStatus.SUCCEEDED),
    }

    tracker.advance_analyzers(runs)
    assert tracker.stage is Stage.DOCUMENT_PARSED

    runs[Source.RULE_ENGINE].status = AnalyzerStatus.SUCCEEDED
    tracker.advance_analyzers(runs)
    assert tracker.stage is Stage.ANALYZER_B_DONE
    assert [event.stage for event in events] == [
        Stage.DOCUMENT_PARSED,
        Stage.RULE_ENGINE_DONE,
        Stage.ANALYZER_A_DONE,
        Stage.ANALYZER_B_DONE,
    ]
