"""Aggregate statistics over a canonical finding set."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from contractflags.models import Category, Finding, Severity, Source, Summary


@dataclass(frozen=True)
class ScoringPolicy:
    """Severity weights applied to finding scores when computing the overall risk."""

    critical: float = 2.0
    high: float = 1.5
    medium: float = 1.0
    low: float = 0.5

    def weight(self, severity: Severity) -> float:
        return {
            Severity.CRITICAL: self.critical,
            Severity.HIGH: self.high,
            Severity.MEDIUM: self.medium,
            Severity.LOW: self.low,
        }[severity]


DEFAULT_SCORING = ScoringPolicy()


def _empty_counts(enum_type) -> dict[str, int]:
    return {member.value: 0 for member in enum_type}


def overall_risk_score(findings: Iterable[Finding], policy: ScoringPolicy = DEFAULT_SCORING) -> float:
    """Return the severity-weighted mean score, clamped to [0, 10] and rounded to 0.1."""

    weighted_total = 0.0
    weight_total = 0.0
    for finding in findings:
        weight = policy.weight(finding.severity)
        weighted_total += weight * finding.score
        weight_total += weight

    if weight_total <= 0:
        return 0.0

    raw = min(10.0, max(0.0, weighted_total / weight_total))
    return float(Decimal(repr(raw)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def summarize(findings: Iterable[Finding], policy: ScoringPolicy | None = None) -> Summary:
    """Count findings by severity, category and source and compute the overall risk score."""

    findings = list(findings)
    by_severity = _empty_counts(Severity)
    by_category = _empty_counts(Category)
    by_source = _empty_counts(Source)

    for finding in findings:
        by_severity[finding.severity.value] += 1
        by_category[finding.category.value] += 1
        by_source[finding.source.value] += 1

    return Summary(
        by_severity=by_severity,
        by_category=by_category,
        by_source=by_source,
        overall_risk_score=overall_risk_score(findings, policy or DEFAULT_SCORING),
    )


def risk_band(score: float) -> str:
    if score >= 8:
        return "high"
    if score >= 6:
        return "elevated"
    if score >= 4:
        return "moderate"
    return "low"
