# psilite/errors.py
from __future__ import annotations

__all__ = [
    "PsiBlastError",
    "MalformedHeaderError",
    "MalformedReportError",
    "OutOfRangeError",
]


class PsiBlastError(Exception):
    """Base class for report parsing errors."""


class MalformedHeaderError(PsiBlastError, ValueError):
    """A header field (query length, PHI-BLAST pattern) could not be parsed."""


class MalformedReportError(PsiBlastError, ValueError):
    """Round markers are out of sequence; the report cannot be split."""


class OutOfRangeError(PsiBlastError, IndexError):
    """Requested round is outside [1, number_of_iterations()]."""

    def __init__(self, round_number: int, total: int) -> None:
        self.round_number = round_number
        self.total = total
        if total:
            msg = f"round {round_number} out of range; report has rounds 1..{total}"
        else:
            msg = f"round {round_number} out of range; report has no rounds"
        super().__init__(msg)
