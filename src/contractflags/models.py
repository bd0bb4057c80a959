"""Shared data models used across the analysis pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from contractflags.summary import ScoringPolicy


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Return the severity for ``value`` regardless of case."""

        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class Category(str, Enum):
    LIABILITY = "liability"
    FINANCIAL = "financial"
    VAGUE_LANGUAGE = "vague_language"
    COMPLIANCE = "compliance"
    EMPLOYEE = "employee"
    INTELLECTUAL_PROPERTY = "intellectual_property"
    TAX = "tax"
    JURISDICTION = "jurisdiction"
    CUSTOMER = "customer"
    OTHER = "other"


class Source(str, Enum):
    RULE_ENGINE = "rule_engine"
    ANALYZER_A = "analyzer_a"
    ANALYZER_B = "analyzer_b"


class AnalyzerStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (
            AnalyzerStatus.SUCCEEDED,
            AnalyzerStatus.FAILED,
            AnalyzerStatus.TIMED_OUT,
        )


CATEGORY_LABELS = {
    Category.LIABILITY: "Liability",
    Category.FINANCIAL: "Financial",
    Category.VAGUE_LANGUAGE: "Vague Language",
    Category.COMPLIANCE: "Compliance",
    Category.EMPLOYEE: "Employee",
    Category.INTELLECTUAL_PROPERTY: "IP",
    Category.TAX: "Tax",
    Category.JURISDICTION: "Jurisdiction",
    Category.CUSTOMER: "Customer",
    Category.OTHER: "Other",
}

SOURCE_LABELS = {
    Source.RULE_ENGINE: "Rules",
    Source.ANALYZER_A: "Analyzer A",
    Source.ANALYZER_B: "Analyzer B",
}


@dataclass(frozen=True)
class Finding:
    """One detected contractual risk issue."""

    id: str
    category: Category
    severity: Severity
    title: str
    description: str
    quote: str
    location: str
    score: int
    recommendation: str
    source: Source
    corroborating_sources: tuple[Source, ...] = ()

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "quote": self.quote,
            "location": self.location,
            "score": self.score,
            "recommendation": self.recommendation,
            "source": self.source.value,
            "corroboratingSources": [src.value for src in self.corroborating_sources],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Finding":
        return cls(
            id=str(data["id"]),
            category=Category(data["category"]),
            severity=Severity(data["severity"]),
            title=data["title"],
            description=data["description"],
            quote=data["quote"],
            location=data["location"],
            score=int(data["score"]),
            recommendation=data["recommendation"],
            source=Source(data["source"]),
            corroborating_sources=tuple(
                Source(value) for value in data.get("corroboratingSources", [])
            ),
        )


@dataclass
class AnalyzerRun:
    """Transient state of one analyzer within one orchestration."""

    source: Source
    status: AnalyzerStatus = AnalyzerStatus.PENDING
    findings: list[Mapping[str, Any]] = field(default_factory=list)
    error: str | None = None
    elapsed: float = 0.0

    def as_dict(self) -> dict:
        return {
            "source": self.source.value,
            "status": self.status.value,
            "error": self.error,
            "elapsed": round(self.elapsed, 3),
        }


@dataclass(frozen=True)
class Summary:
    by_severity: Mapping[str, int]
    by_category: Mapping[str, int]
    by_source: Mapping[str, int]
    overall_risk_score: float = 0.0

    def __post_init__(self):
        for name in ("by_severity", "by_category", "by_source"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    def as_dict(self) -> dict:
        return {
            "bySeverity": dict(self.by_severity),
            "byCategory": dict(self.by_category),
            "bySource": dict(self.by_source),
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Immutable aggregated output of one analysis run over one document."""

    document_ref: str
    findings: tuple[Finding, ...]
    summary: Summary
    processing_time: float
    generated_at: str
    unavailable_sources: tuple[Source, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def overall_risk_score(self) -> float:
        return self.summary.overall_risk_score

    @property
    def total_flags(self) -> int:
        return len(self.findings)

    def as_dict(self) -> dict:
        return {
            "documentRef": self.document_ref,
            "totalFlags": self.total_flags,
            "overallRiskScore": self.overall_risk_score,
            "processingTime": self.processing_time,
            "generatedAt": self.generated_at,
            "findings": [finding.as_dict() for finding in self.findings],
            "summary": self.summary.as_dict(),
            "unavailableSources": [src.value for src in self.unavailable_sources],
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        policy: "ScoringPolicy | None" = None,
    ) -> "AnalysisResult":
        """Rebuild a result from :meth:`as_dict` output.

        The summary is recomputed from the findings with ``policy`` (default
        weights when omitted). Raises ``ValueError`` when the payload's
        derived values disagree with its findings.
        """

        from contractflags.summary import summarize

        findings = tuple(Finding.from_dict(item) for item in data["findings"])
        total = data.get("totalFlags", len(findings))
        if total != len(findings):
            raise ValueError(
                f"totalFlags is {total} but the payload holds {len(findings)} findings"
            )

        summary = summarize(findings, policy)
        stored = data.get("summary", {})
        for name, expected in summary.as_dict().items():
            if dict(stored.get(name) or {}) != expected:
                raise ValueError(f"summary.{name} does not match the findings")

        stored_score = data.get("overallRiskScore")
        if stored_score is not None and float(stored_score) != summary.overall_risk_score:
            raise ValueError(
                f"overallRiskScore is {stored_score} but the findings score "
                f"{summary.overall_risk_score}"
            )

        return cls(
            document_ref=data["documentRef"],
            findings=findings,
            summary=summary,
            processing_time=float(data.get("processingTime", 0.0)),
            generated_at=data.get("generatedAt", ""),
            unavailable_sources=tuple(
                Source(value) for value in data.get("unavailableSources", [])
            ),
            warnings=tuple(data.get("warnings", [])),
        )
