#!/usr/bin/env python3
"""
    Copyright (c) 2025 Bc. Dominik Sabota, VUT FIT Brno

    pychecktiff - TIFF/JP4 container integrity checker

    This program is free software: you can redistribute it and/or modify
    it under the terms of the GNU General Public License as published by
    the Free Software Foundation, either version 3 of the License.
    See <https://www.gnu.org/licenses/> for details.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List

from .diagnostics import DiagnosticSink


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of one validation call: decoder errors and warnings in the
    order they were observed.

    Unpacks like the two-item list older callers expect:
        errors, warnings = validate_tiff_from_file(path)
    """

    errors:   List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def __iter__(self) -> Iterator[List[str]]:
        yield self.errors
        yield self.warnings

    def to_dict(self) -> Dict[str, List[str]]:
        return {"errors": list(self.errors), "warnings": list(self.warnings)}


def export_results(sink: DiagnosticSink) -> ValidationResult:
    """Drain the sink into a ValidationResult, leaving it empty for the next run."""
    errors, warnings = sink.drain()
    return ValidationResult(errors=errors, warnings=warnings)
