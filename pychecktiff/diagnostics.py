#!/usr/bin/env python3
"""
    Copyright (c) 2025 Bc. Dominik Sabota, VUT FIT Brno

    pychecktiff - TIFF/JP4 container integrity checker

    This program is free software: you can redistribute it and/or modify
    it under the terms of the GNU General Public License as published by
    the Free Software Foundation, either version 3 of the License.
    See <https://www.gnu.org/licenses/> for details.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

# ---------------------------------------------------------------------------
# CONSTANTS
# ---------------------------------------------------------------------------

MAX_MESSAGE_LENGTH = 512    # characters kept per diagnostic


class Severity(Enum):
    ERROR   = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class DiagnosticRecord:
    severity: Severity
    text:     str


class DiagnosticSink:
    """
    Ordered collector of decoder diagnostics for one validation run.

    Records are kept in insertion order and storage grows as needed,
    nothing is ever dropped. Only the result exporter calls drain().
    """

    def __init__(self) -> None:
        self._records: List[DiagnosticRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def record(self, severity: Severity, message: str) -> None:
        """Store a copy of message truncated to MAX_MESSAGE_LENGTH."""
        self._records.append(DiagnosticRecord(severity, str(message)[:MAX_MESSAGE_LENGTH]))

    def drain(self) -> Tuple[List[str], List[str]]:
        """Return (errors, warnings) in insertion order and reset the sink."""
        records, self._records = self._records, []
        errors   = [r.text for r in records if r.severity is Severity.ERROR]
        warnings = [r.text for r in records if r.severity is Severity.WARNING]
        return errors, warnings
