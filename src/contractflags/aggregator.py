"""Merge raw analyzer output into one canonical, deduplicated finding set."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from numbers import Real
from typing import Any, Iterable, Mapping

from loguru import logger

from contractflags.errors import MalformedFinding
from contractflags.models import AnalyzerRun, AnalyzerStatus, Category, Finding, Severity, Source

TEXT_FIELDS = ("title", "description", "quote", "location", "recommendation")

_TOKEN_RE = re.compile(r"[\w.]+")

# Earlier sources win ties after severity and score.
_SOURCE_PREFERENCE = {
    Source.RULE_ENGINE: 0,
    Source.ANALYZER_A: 1,
    Source.ANALYZER_B: 2,
}


@dataclass(frozen=True)
class OverlapPolicy:
    """Decides whether two location strings refer to overlapping document regions.

    ``mode="contains"`` treats locations as overlapping when their token
    sequences are equal or one is a contiguous run inside the other, so
    ``"Section 8.2"`` overlaps ``"Section 8.2, Page 23"`` but not
    ``"Section 8.21"``. ``mode="exact"`` requires equal normalized text.
    """

    mode: str = "contains"

    def __post_init__(self):
        if self.mode not in ("contains", "exact"):
            raise ValueError(f"Unknown location match mode: {self.mode}")

    def overlaps(self, first: str, second: str) -> bool:
        left = _location_tokens(first)
        right = _location_tokens(second)
        if not left or not right:
            return False
        if left == right:
            return True
        if self.mode == "exact":
            return False
        shorter, longer = sorted((left, right), key=len)
        width = len(shorter)
        return any(
            longer[start : start + width] == shorter
            for start in range(len(longer) - width + 1)
        )


DEFAULT_OVERLAP = OverlapPolicy()


def _location_tokens(location: str) -> list[str]:
    return [token.strip(".") for token in _TOKEN_RE.findall(location.casefold()) if token.strip(".")]


@dataclass
class _Candidate:
    category: Category
    severity: Severity
    title: str
    description: str
    quote: str
    location: str
    score: int
    recommendation: str
    source: Source
    corroborating: tuple[Source, ...] = ()

    def beats(self, other: "_Candidate") -> bool:
        if self.severity.rank != other.severity.rank:
            return self.severity.rank > other.severity.rank
        if self.score != other.score:
            return self.score > other.score
        return _SOURCE_PREFERENCE[self.source] < _SOURCE_PREFERENCE[other.source]

    def sources(self) -> tuple[Source, ...]:
        return (self.source, *self.corroborating)


def _require_text(raw: Mapping[str, Any], name: str) -> str:
    value = raw.get(name)
    if value is None:
        raise MalformedFinding(name, "missing")
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    if not value:
        raise MalformedFinding(name, "empty")
    return value


def _parse_score(raw: Mapping[str, Any]) -> int:
    value = raw.get("score")
    if value is None:
        raise MalformedFinding("score", "missing")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError as exc:
            raise MalformedFinding("score", f"not a number: {value!r}") from exc
    if isinstance(value, bool) or not isinstance(value, Real):
        raise MalformedFinding("score", f"not a number: {value!r}")
    if not math.isfinite(value):
        raise MalformedFinding("score", f"not finite: {value!r}")
    clamped = min(10.0, max(0.0, float(value)))
    return int(Decimal(repr(clamped)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize(raw: Mapping[str, Any], source: Source) -> _Candidate:
    """Validate and trim one raw finding.

    Raises :class:`MalformedFinding` when a required field is missing or invalid.
    """

    if not isinstance(raw, Mapping):
        raise MalformedFinding("finding", f"expected a mapping, got {type(raw).__name__}")

    texts = {name: _require_text(raw, name) for name in TEXT_FIELDS}

    raw_severity = _require_text(raw, "severity")
    try:
        severity = Severity.parse(raw_severity)
    except ValueError as exc:
        raise MalformedFinding("severity", f"unknown value {raw_severity!r}") from exc

    raw_category = _require_text(raw, "category").lower().replace(" ", "_").replace("-", "_")
    try:
        category = Category(raw_category)
    except ValueError:
        logger.debug(f"Mapping unknown category {raw_category!r} from {source.value} to 'other'")
        category = Category.OTHER

    return _Candidate(
        category=category,
        severity=severity,
        score=_parse_score(raw),
        source=source,
        **texts,
    )


class Aggregator:
    """Normalizes, deduplicates and numbers findings from successful analyzer runs."""

    def __init__(self, overlap: OverlapPolicy | None = None):
        self.overlap = overlap or DEFAULT_OVERLAP
        self.dropped: list[str] = []

    def _find_duplicate(
        self,
        kept: list[_Candidate],
        candidate: _Candidate,
        skip: int | None = None,
    ) -> int | None:
        for index, existing in enumerate(kept):
            if index == skip or existing.category != candidate.category:
                continue
            if set(candidate.sources()) & set(existing.sources()):
                continue
            if self.overlap.overlaps(existing.location, candidate.location):
                return index
        return None

    @staticmethod
    def _combine(existing: _Candidate, candidate: _Candidate) -> _Candidate:
        winner, loser = (candidate, existing) if candidate.beats(existing) else (existing, candidate)
        extra = tuple(src for src in loser.sources() if src not in winner.sources())
        return replace(winner, corroborating=winner.corroborating + extra)

    def merge(self, runs: Iterable[AnalyzerRun]) -> list[Finding]:
        self.dropped = []
        kept: list[_Candidate] = []

        for run in runs:
            if run.status is not AnalyzerStatus.SUCCEEDED:
                continue
            for position, raw in enumerate(run.findings):
                try:
                    candidate = normalize(raw, run.source)
                except MalformedFinding as exc:
                    message = f"Dropped finding #{position} from {run.source.value}: {exc}"
                    logger.warning(message)
                    self.dropped.append(message)
                    continue

                index = self._find_duplicate(kept, candidate)
                if index is None:
                    kept.append(candidate)
                    continue

                kept[index] = self._combine(kept[index], candidate)
                logger.debug(
                    f"Merged {candidate.source.value} finding into {kept[index].source.value} "
                    f"at {kept[index].location!r}"
                )

                # The merged location may now overlap another kept finding.
                other = self._find_duplicate(kept, kept[index], skip=index)
                while other is not None:
                    first, second = sorted((index, other))
                    kept[first] = self._combine(kept[first], kept[second])
                    del kept[second]
                    index = first
                    other = self._find_duplicate(kept, kept[index], skip=index)

        return [
            Finding(
                id=str(number),
                category=item.category,
                severity=item.severity,
                title=item.title,
                description=item.description,
                quote=item.quote,
                location=item.location,
                score=item.score,
                recommendation=item.recommendation,
                source=item.source,
                corroborating_sources=item.corroborating,
            )
            for number, item in enumerate(kept, start=1)
        ]


def merge(runs: Iterable[AnalyzerRun], overlap: OverlapPolicy | None = None) -> list[Finding]:
    return Aggregator(overlap).merge(runs)
