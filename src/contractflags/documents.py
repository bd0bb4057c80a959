"""Read contract text and map character offsets to human-readable locations."""
from __future__ import annotations

import bisect
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from docx2python import docx2python

from contractflags.errors import DocumentUnreadable

PAGE_BREAK = "\f"

_HEADING_RE = re.compile(
    r"(?:^|(?<=\f))[ \t\f]*(?:(?P<kind>(?i:section|article|clause))[ \t]+(?P<label>\d+(?:\.\d+)*|[IVXLC]+)\b"
    r"|(?P<number>\d+(?:\.\d+)+)\.?[ \t]+\S)",
    re.MULTILINE,
)
_PARAGRAPH_RE = re.compile(r"[^\n]+")


class DocumentProvider(Protocol):
    def get_content(self, document_ref: str) -> str:
        ...


def _flatten(paragraphs: list) -> list[str]:
    """Flatten docx2python's nested paragraph representation into strings."""

    flat: list[str] = []

    def _walk(node):
        if isinstance(node, str):
            flat.append(node)
        elif isinstance(node, list):
            for child in node:
                _walk(child)

    _walk(paragraphs)
    return flat


def read_docx_text(path: str) -> str:
    content = docx2python(path, html=False)
    try:
        paragraphs = [paragraph.strip() for paragraph in _flatten(content.body)]
    finally:
        content.close()
    return "\n".join(paragraph for paragraph in paragraphs if paragraph)


class FileDocumentProvider:
    """Reads ``.docx`` files through docx2python and anything else as UTF-8 text."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def get_content(self, document_ref: str) -> str:
        path = Path(document_ref)
        if not path.is_file():
            raise DocumentUnreadable(f"No such document: {document_ref}")

        try:
            if path.suffix.lower() == ".docx":
                text = read_docx_text(str(path))
            else:
                text = path.read_text(encoding=self.encoding)
        except UnicodeDecodeError as exc:
            raise DocumentUnreadable(f"{document_ref} is not {self.encoding} text: {exc}") from exc
        except Exception as exc:
            raise DocumentUnreadable(f"Failed to open {document_ref}: {exc}") from exc

        if not text.strip():
            raise DocumentUnreadable(f"{document_ref} contains no text")
        return text


@dataclass(frozen=True)
class _Heading:
    offset: int
    label: str


class DocumentLocator:
    """Maps character offsets in a text to ``Section``/``Paragraph``/``Page`` labels."""

    def __init__(self, text: str):
        self.text = text
        self.headings = [
            _Heading(match.start(), self._heading_label(match))
            for match in _HEADING_RE.finditer(text)
        ]
        self._heading_offsets = [heading.offset for heading in self.headings]
        self._paragraph_offsets = [match.start() for match in _PARAGRAPH_RE.finditer(text)]
        self._page_breaks = [index for index, char in enumerate(text) if char == PAGE_BREAK]

    @staticmethod
    def _heading_label(match: re.Match) -> str:
        if match.group("number"):
            return f"Section {match.group('number')}"
        return f"{match.group('kind').capitalize()} {match.group('label')}"

    def locate(self, offset: int) -> str:
        index = bisect.bisect_right(self._heading_offsets, offset) - 1
        if index >= 0:
            label = self.headings[index].label
        else:
            paragraph = max(1, bisect.bisect_right(self._paragraph_offsets, offset))
            label = f"Paragraph {paragraph}"

        if self._page_breaks:
            page = bisect.bisect_right(self._page_breaks, offset) + 1
            label = f"{label}, Page {page}"
        return label


def locate(text: str, offset: int) -> str:
    return DocumentLocator(text).locate(offset)
