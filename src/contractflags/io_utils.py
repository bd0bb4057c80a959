"""Shared utilities for handling CLI input paths and output streams."""
from __future__ import annotations

import glob
import io
import os
from typing import IO, List, Optional, Sequence, Tuple, Union

import click


def resolve_documents(paths: Sequence[str]) -> List[str]:
    """Resolve CLI document arguments into absolute paths.

    Expands glob patterns, de-duplicates resolved paths, and sorts the result.
    """

    resolved: List[str] = []
    seen: set[str] = set()

    for raw_path in paths:
        matches = glob.glob(raw_path)
        if not matches:
            raise click.ClickException(f"No files matched pattern: {raw_path}")

        for match in matches:
            absolute = os.path.abspath(match)
            if absolute in seen or os.path.isdir(absolute):
                continue
            seen.add(absolute)
            resolved.append(absolute)

    if not resolved:
        raise click.ClickException("No input files provided")

    resolved.sort()

    return resolved


def open_report(path: str) -> Tuple[IO, bool]:
    """Return a text handle for a saved report and whether the caller should close it."""

    if path == "-":
        return click.get_text_stream("stdin"), False
    try:
        return open(path, "r", encoding="utf-8"), True
    except OSError as exc:  # pragma: no cover - thin wrapper
        raise click.ClickException(str(exc)) from exc


def resolve_output_handle(
    output: Optional[Union[str, IO]], mode: str = "w"
) -> Tuple[IO, bool]:
    """Return an output handle and whether it should be closed by the caller."""

    if output is None:
        return click.get_text_stream("stdout"), False

    if isinstance(output, io.IOBase):
        return output, False

    if isinstance(output, str):
        if output == "-":
            return click.get_text_stream("stdout"), False
        try:
            return open(output, mode), True
        except OSError as exc:  # pragma: no cover - thin wrapper
            raise click.ClickException(str(exc)) from exc

    raise click.ClickException("Invalid output destination")
