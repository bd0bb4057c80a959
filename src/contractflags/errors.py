"""Exceptions raised by the analysis pipeline."""
from __future__ import annotations

from typing import Sequence


class ContractFlagsError(Exception):
    """Base class for all contractflags errors."""


class DocumentUnreadable(ContractFlagsError):
    """The document could not be read; no analyzer was started."""


class AnalyzerError(ContractFlagsError):
    """A single analyzer failed."""


class NoAnalyzerSucceeded(ContractFlagsError):
    """Every enabled analyzer failed or timed out."""

    def __init__(self, failures: Sequence = ()):
        self.failures = tuple(failures)
        detail = ", ".join(
            f"{run.source.value}: {run.status.value}" for run in self.failures
        )
        message = "No analyzer succeeded"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class Cancelled(ContractFlagsError):
    """The run was cancelled before it produced a result."""


class NotReady(ContractFlagsError):
    """The run has not reached a terminal state yet."""


class RunInProgress(ContractFlagsError):
    """Another run is already in flight for this session."""


class MalformedFinding(ContractFlagsError):
    """A raw finding is missing a required field or carries an invalid value."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")
