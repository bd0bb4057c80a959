"""Filter and sort views over an analysis result without mutating it."""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Sequence

from contractflags.models import AnalysisResult, Finding

ALL = "all"
SORT_KEYS = ("severity", "title", "category", "score", "source", "location")
DIRECTIONS = ("asc", "desc")


def _predicate_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    value = str(value)
    if value == ALL:
        return None
    return value


@dataclass(frozen=True)
class FilterSpec:
    """Independent optional predicates combined with logical AND.

    ``"all"`` or ``None`` disables a predicate; an empty ``search`` matches
    everything.
    """

    severity: Any = ALL
    category: Any = ALL
    source: Any = ALL
    search: str = ""

    def matches(self, finding: Finding) -> bool:
        severity = _predicate_value(self.severity)
        if severity is not None and finding.severity.value != severity:
            return False

        category = _predicate_value(self.category)
        if category is not None and finding.category.value != category:
            return False

        source = _predicate_value(self.source)
        if source is not None and finding.source.value != source:
            return False

        if self.search:
            needle = self.search.lower()
            if needle not in finding.title.lower() and needle not in finding.description.lower():
                return False

        return True


@dataclass(frozen=True)
class SortSpec:
    key: str
    direction: str = "desc"

    def __post_init__(self):
        if self.key not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {self.key}")
        if self.direction not in DIRECTIONS:
            raise ValueError(f"Unknown sort direction: {self.direction}")


def next_sort(current: SortSpec | None, key: str) -> SortSpec:
    """Return the sort state after selecting ``key``.

    Selecting the active key flips its direction; any other key starts at ``desc``.
    """

    if current is None or current.key != key:
        return SortSpec(key=key, direction="desc")
    return SortSpec(key=key, direction="asc" if current.direction == "desc" else "desc")


def _sort_value(finding: Finding, key: str):
    if key == "score":
        return finding.score
    value = getattr(finding, key)
    if isinstance(value, Enum):
        return value.value
    return str(value)


def query(
    result: AnalysisResult | Sequence[Finding],
    filter: FilterSpec | None = None,
    sort: SortSpec | None = None,
) -> list[Finding]:
    """Return the findings matching ``filter`` ordered by ``sort``.

    ``sorted`` is stable in both directions, so findings with equal keys keep
    their aggregation order.
    """

    findings = result.findings if isinstance(result, AnalysisResult) else result
    spec = filter or FilterSpec()
    selected = [finding for finding in findings if spec.matches(finding)]

    if sort is None:
        return selected

    return sorted(
        selected,
        key=lambda finding: _sort_value(finding, sort.key),
        reverse=sort.direction == "desc",
    )


class ResultView:
    """Interactive filter/sort state over one published result."""

    def __init__(self, result: AnalysisResult):
        self.result = result
        self.filter = FilterSpec()
        self.sort: SortSpec | None = None

    def filter_by(self, **predicates) -> "ResultView":
        self.filter = replace(self.filter, **predicates)
        return self

    def sort_by(self, key: str) -> SortSpec:
        self.sort = next_sort(self.sort, key)
        return self.sort

    def rows(self) -> list[Finding]:
        return query(self.result, self.filter, self.sort)

    @property
    def count(self) -> int:
        return len(self.rows())

    def get(self, finding_id: str) -> Finding:
        for finding in self.result.findings:
            if finding.id == finding_id:
                return finding
        raise KeyError(finding_id)
