"""Shared utilities for hashing, timestamps, excerpts, and JSON envelope creation."""
from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timezone
from typing import IO, Iterable

from contractflags import __version__

_SENTENCE_END_RE = re.compile(r"[.;](?=\s|$)|[\n\f]")


def utc_timestamp() -> str:
    """Return an ISO 8601 UTC timestamp suitable for envelopes and logs."""

    return datetime.now(timezone.utc).isoformat()


def hash_file(path: str, *, chunk_size: int = 8192) -> str:
    """Return the SHA-256 hex digest for a file without loading it entirely into memory."""

    sha = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            sha.update(chunk)
    return sha.hexdigest()


def build_envelope(*, tool: str, files: Iterable[dict], generated_at: str | None = None) -> dict:
    """Construct a standard contractflags JSON envelope for command outputs."""

    return {
        "contractflags_version": __version__,
        "tool": tool,
        "generated_at": generated_at or utc_timestamp(),
        "files": list(files),
    }


def dump_json_line(data: dict, output_handle: IO) -> None:
    """Serialize a dictionary as JSON followed by a newline to support streaming outputs."""

    json.dump(data, output_handle)
    output_handle.write("\n")


def sentence_excerpt(text: str, start: int, end: int, *, limit: int = 240) -> str:
    """Return the sentence around ``text[start:end]``, clipped to ``limit`` characters.

    Sentences end at a period or semicolon followed by whitespace, or at a line
    or page break. A clipped excerpt keeps the matched span and marks elided
    text with ``...``.
    """

    left = 0
    right = len(text)
    for boundary in _SENTENCE_END_RE.finditer(text):
        if boundary.end() <= start:
            left = boundary.end()
        elif boundary.start() >= end:
            right = boundary.end()
            break

    sentence = text[left:right].strip()
    if len(sentence) <= limit:
        return sentence

    match_start = start - left
    window_start = max(0, min(match_start - limit // 4, len(text[left:right]) - limit))
    clipped = text[left:right][window_start : window_start + limit].strip()
    prefix = "..." if window_start > 0 else ""
    suffix = "..." if window_start + limit < right - left else ""
    return f"{prefix}{clipped}{suffix}"
