"""LLM-backed analyzer for any OpenAI-compatible chat completions endpoint."""
from __future__ import annotations

import json
from typing import Any

from loguru import logger
from openai import APIError, AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from contractflags.errors import AnalyzerError
from contractflags.models import Category, Severity, Source

PROMPT_RED_FLAGS = """You are a contract risk reviewer performing due diligence.

Read the contract text and identify legal and financial red flags. Only report
issues that are supported by the text. Quote the relevant text exactly.

For every red flag provide:
- "category": one of {categories}
- "severity": one of {severities}
- "title": a short headline
- "description": why the clause is risky
- "quote": the exact excerpt from the contract
- "location": where the excerpt appears, using the document's own numbering
  (for example "Section 8.2" or "Article V")
- "score": an integer from 0 (negligible) to 10 (severe)
- "recommendation": what to negotiate or change

Return JSON with the following structure:
{{"flags": [{{"category": "...", "severity": "...", "title": "...", "description": "...",
"quote": "...", "location": "...", "score": 0, "recommendation": "..."}}]}}

Return {{"flags": []}} when the contract contains no red flags."""


class FlagScan(BaseModel):
    # Individual flags stay loose; the aggregator validates and drops them one by one.
    flags: list[dict[str, Any]] = Field(default_factory=list)


def build_messages(text: str, max_chars: int) -> list[dict[str, str]]:
    system = PROMPT_RED_FLAGS.format(
        categories=", ".join(category.value for category in Category),
        severities=", ".join(severity.value for severity in Severity),
    )
    if len(text) > max_chars:
        text = text[:max_chars]
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": f"CONTRACT TEXT:\n\n{text}"},
    ]


def parse_flags(content: str | None) -> list[dict[str, Any]]:
    """Parse a JSON model response into raw flag mappings.

    Raises :class:`AnalyzerError` for empty, non-JSON, or wrongly shaped responses.
    """

    if not content or not content.strip():
        raise AnalyzerError("Model returned an empty response")
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise AnalyzerError(f"Model response is not valid JSON: {exc}") from exc
    if isinstance(payload, list):
        payload = {"flags": payload}
    try:
        return FlagScan.model_validate(payload).flags
    except ValidationError as exc:
        raise AnalyzerError(f"Model response has an unexpected shape: {exc}") from exc


class LLMAnalyzer:
    """Sends the document to a chat model and returns its flags as raw findings."""

    def __init__(
        self,
        source: Source,
        model: str,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 120.0,
        max_retries: int = 2,
        max_chars: int = 60000,
        client: Any = None,
    ):
        self.source = source
        self.model = model
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_chars = max_chars
        self._client = client
        self._owns_client = client is None

    def _get_client(self):
        if self._client is None:
            try:
                self._client = AsyncOpenAI(
                    api_key=self.api_key,
                    base_url=self.base_url,
                    timeout=self.timeout,
                    max_retries=self.max_retries,
                )
            except OpenAIError as exc:
                raise AnalyzerError(f"{self.source.value} is not configured: {exc}") from exc
        return self._client

    async def analyze(self, text: str, config=None) -> list[dict[str, Any]]:
        client = self._get_client()
        messages = build_messages(text, self.max_chars)
        logger.debug(f"Requesting red flags from {self.model} for {self.source.value}")

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except APIError as exc:
            raise AnalyzerError(f"{self.model} API error: {exc}") from exc

        if not response.choices:
            raise AnalyzerError(f"{self.model} returned no choices")
        return parse_flags(response.choices[0].message.content)

    async def aclose(self) -> None:
        """Close the HTTP client this analyzer built, if any."""

        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None
