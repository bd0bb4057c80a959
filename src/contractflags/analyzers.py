"""Analyzer capability interface and the default backend registry."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence

from contractflags.llm import LLMAnalyzer
from contractflags.models import Source
from contractflags.rules import RuleEngineAnalyzer

if TYPE_CHECKING:
    from contractflags.config import AnalysisConfig, Settings


class Analyzer(Protocol):
    """Produces raw findings from document text.

    Implementations raise :class:`contractflags.errors.AnalyzerError` on
    failure; time limits are imposed by the orchestrator.
    """

    source: Source

    async def analyze(self, text: str, config: "AnalysisConfig") -> Sequence[Mapping[str, Any]]:
        ...


def build_analyzers(settings: "Settings") -> dict[Source, Analyzer]:
    """Return one analyzer per source, configured from ``settings``."""

    return {
        Source.RULE_ENGINE: RuleEngineAnalyzer(),
        Source.ANALYZER_A: LLMAnalyzer(
            Source.ANALYZER_A,
            settings.analyzer_a_model,
            base_url=settings.analyzer_a_base_url,
            api_key=settings.analyzer_a_api_key,
            timeout=settings.analyzer_timeout_seconds,
            max_retries=settings.llm_max_retries,
            max_chars=settings.llm_max_document_chars,
        ),
        Source.ANALYZER_B: LLMAnalyzer(
            Source.ANALYZER_B,
            settings.analyzer_b_model,
            base_url=settings.analyzer_b_base_url,
            api_key=settings.analyzer_b_api_key,
            timeout=settings.analyzer_timeout_seconds,
            max_retries=settings.llm_max_retries,
            max_chars=settings.llm_max_document_chars,
        ),
    }
