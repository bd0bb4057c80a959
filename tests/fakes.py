"""In-memory collaborators for orchestrator and session tests."""
from __future__ import annotations

import asyncio

from contractflags.errors import AnalyzerError, DocumentUnreadable
from contractflags.models import AnalyzerRun, AnalyzerStatus, Category, Finding, Severity, Source


def raw_finding(**overrides) -> dict:
    finding = {
        "category": "liability",
        "severity": "HIGH",
        "title": "Unlimited Liability Clause",
        "description": "The agreement exposes the buyer to uncapped losses.",
        "quote": "Party A shall be liable for all damages",
        "location": "Section 8.2",
        "score": 7,
        "recommendation": "Negotiate a liability cap.",
    }
    finding.update(overrides)
    return finding


def succeeded_run(source: Source, *findings: dict) -> AnalyzerRun:
    return AnalyzerRun(source=source, status=AnalyzerStatus.SUCCEEDED, findings=list(findings))


def make_finding(id: str, **overrides) -> Finding:
    values = {
        "category": Category.LIABILITY,
        "severity": Severity.MEDIUM,
        "title": f"Finding {id}",
        "description": f"Description {id}",
        "quote": "quoted text",
        "location": f"Section {id}",
        "score": 5,
        "recommendation": "Fix it.",
        "source": Source.RULE_ENGINE,
    }
    values.update(overrides)
    return Finding(id=id, **values)


class StaticProvider:
    def __init__(self, documents: dict[str, str]):
        self.documents = documents

    def get_content(self, document_ref: str) -> str:
        try:
            return self.documents[document_ref]
        except KeyError:
            raise DocumentUnreadable(f"No such document: {document_ref}") from None


class FakeAnalyzer:
    """Returns canned findings after an optional delay, or fails."""

    def __init__(self, source: Source, findings=(), *, delay: float = 0.0, error: str | None = None):
        self.source = source
        self.findings = list(findings)
        self.delay = delay
        self.error = error
        self.calls = 0
        self.cancelled = False
        self.started = asyncio.Event()
        self.closed = 0

    async def analyze(self, text, config=None):
        self.calls += 1
        self.started.set()
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise AnalyzerError(self.error)
        return list(self.findings)

    async def aclose(self):
        self.closed += 1
