"""Serialize analysis results into envelopes and render them as text."""
from __future__ import annotations

import json
from typing import IO, Iterable, Sequence

from contractflags.models import (
    CATEGORY_LABELS,
    SOURCE_LABELS,
    AnalysisResult,
    AnalyzerRun,
    Finding,
    Severity,
)
from contractflags.summary import ScoringPolicy, risk_band

TOOL_ANALYZE = "contractflags-analyze"
TOOL_QUERY = "contractflags-query"


def file_entry(
    result: AnalysisResult,
    items: Sequence[Finding],
    *,
    sha256: str | None = None,
    partial_failures: Iterable[AnalyzerRun] = (),
) -> dict:
    """Return the envelope entry for one analyzed document."""

    return {
        "path": result.document_ref,
        "sha256": sha256,
        "result": result.as_dict(),
        "items": [finding.as_dict() for finding in items],
        "partialFailures": [run.as_dict() for run in partial_failures],
    }


def load_results(handle: IO, policy: ScoringPolicy | None = None) -> list[tuple[dict, AnalysisResult]]:
    """Read an envelope written by ``contractflags analyze``.

    Summaries are recomputed with ``policy``. Returns ``(entry, result)``
    pairs; raises ``ValueError`` for anything that is not a consistent
    contractflags envelope.
    """

    try:
        payload = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Report is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict) or "files" not in payload:
        raise ValueError("Report is not a contractflags envelope")

    loaded = []
    for entry in payload["files"]:
        if "result" not in entry:
            raise ValueError(f"Entry for {entry.get('path', '?')} carries no result")
        loaded.append((entry, AnalysisResult.from_dict(entry["result"], policy)))
    return loaded


def severity_counts(findings: Iterable[Finding]) -> dict[str, int]:
    counts = {severity.value: 0 for severity in Severity}
    for finding in findings:
        counts[finding.severity.value] += 1
    return counts


def _clip(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


def render_table(result: AnalysisResult, rows: Sequence[Finding]) -> str:
    """Render a result header and the given rows as a plain-text table."""

    lines = [
        f"{result.document_ref}",
        f"  Overall risk: {result.overall_risk_score}/10 ({risk_band(result.overall_risk_score)})"
        f"  Flags: {result.total_flags}  Processing time: {result.processing_time}s",
    ]
    if result.unavailable_sources:
        lines.append(
            "  Unavailable: " + ", ".join(SOURCE_LABELS[src] for src in result.unavailable_sources)
        )
    lines.append(f"  {len(rows)} flags match your filters")
    lines.append("")

    header = f"{'ID':>4}  {'SEVERITY':<8}  {'SCORE':>5}  {'CATEGORY':<14}  {'SOURCE':<10}  {'LOCATION':<20}  TITLE"
    lines.append(header)
    for finding in rows:
        lines.append(
            f"{finding.id:>4}  {finding.severity.value:<8}  {finding.score:>5}  "
            f"{_clip(CATEGORY_LABELS[finding.category], 14):<14}  "
            f"{SOURCE_LABELS[finding.source]:<10}  "
            f"{_clip(finding.location, 20):<20}  {finding.title}"
        )
    return "\n".join(lines)


def render_finding(finding: Finding) -> str:
    """Render the full detail of one finding."""

    lines = [
        finding.title,
        f"  {finding.severity.value} | {CATEGORY_LABELS[finding.category]} | {SOURCE_LABELS[finding.source]}",
    ]
    if finding.corroborating_sources:
        lines.append(
            "  Corroborated by: "
            + ", ".join(SOURCE_LABELS[src] for src in finding.corroborating_sources)
        )
    lines.extend(
        [
            "",
            "Description",
            f"  {finding.description}",
            "Location",
            f"  {finding.location}",
            "Relevant Text",
            f'  "{finding.quote}"',
            "Recommendation",
            f"  {finding.recommendation}",
            "",
            f"Risk Score: {finding.score}/10 ({risk_band(finding.score)})",
        ]
    )
    return "\n".join(lines)
