#!/usr/bin/env python3
"""
    Copyright (c) 2025 Bc. Dominik Sabota, VUT FIT Brno

    pychecktiff - TIFF/JP4 container integrity checker

    This program is free software: you can redistribute it and/or modify
    it under the terms of the GNU General Public License as published by
    the Free Software Foundation, either version 3 of the License.
    See <https://www.gnu.org/licenses/> for details.
"""

import logging
import os
import threading

from . import handlers
from .diagnostics import DiagnosticSink
from .results import ValidationResult, export_results
from .source import SourceKind
from .tiffio import TiffFile, tiff_error, tiff_open

logger = logging.getLogger(__name__)

# Decoder handlers are process-wide: one validation in flight at a time,
# from open to drain.
_validation_lock = threading.Lock()


def _check_target(kind: SourceKind, target) -> None:
    if kind is SourceKind.FILE:
        if not isinstance(target, (str, os.PathLike)):
            raise TypeError("validate_tiff_from_file() argument must be str or path-like, "
                            f"not {type(target).__name__}")
    elif not isinstance(target, (bytes, bytearray, memoryview)):
        raise TypeError("validate_tiff_from_buffer() argument must be a bytes-like object, "
                        f"not {type(target).__name__}")
    elif not memoryview(target).c_contiguous:
        raise TypeError("validate_tiff_from_buffer() argument must be a contiguous buffer")


def _scan_directory(tif: TiffFile) -> int:
    """
    Decode every scanline of every plane of the current directory. Returns rows read.

    A row that cannot be produced means the rest of its strip or tile band
    is gone too, so the scan moves on to the next band. Work is bounded by
    the number of segments, not by the declared ImageLength.
    """
    directory = tif.directory
    band_rows = directory.segment_length
    scanned = 0
    for sample in range(directory.planes):
        row = 0
        while row < directory.length:
            if tif.read_scanline(row, sample) is None:
                if tif.failed:
                    return scanned
                row = (row // band_rows + 1) * band_rows
                continue
            scanned += 1
            row += 1
    return scanned


def _scan(kind: SourceKind, target, all_directories: bool) -> None:
    tif = tiff_open(kind, target)
    if tif is None:
        return
    try:
        index = 0
        while True:
            rows = _scan_directory(tif)
            logger.debug("%s: directory %d scanned, %d row(s)", tif.name, index, rows)
            if not all_directories or not tif.read_next_directory():
                break
            index += 1
    finally:
        tif.close()


def validate(kind: SourceKind, target, all_directories: bool = True) -> ValidationResult:
    """
    Full-scan validation of one TIFF container.

    Opens target through the source variant for kind, decodes every
    scanline, closes it and returns the diagnostics captured meanwhile.
    Only wrong argument types raise; every decoder fault ends up in the
    result.
    """
    _check_target(kind, target)
    sink = DiagnosticSink()

    with _validation_lock, handlers.capture(sink):
        try:
            _scan(kind, target, all_directories)
        except Exception as exc:
            logger.exception("Unexpected failure while scanning %s source", kind.value)
            tiff_error("TIFFReadScanline", "Unexpected decoder failure: %s", exc)
        result = export_results(sink)

    logger.debug("%s validation: %d error(s), %d warning(s)",
                 kind.value, len(result.errors), len(result.warnings))
    return result


def validate_tiff_from_file(path, *, all_directories: bool = True) -> ValidationResult:
    """Check integrity of a TIFF file on disk."""
    return validate(SourceKind.FILE, path, all_directories)


def validate_tiff_from_buffer(buffer, *, all_directories: bool = True) -> ValidationResult:
    """Check integrity of a TIFF held in memory. The buffer is only borrowed for the call."""
    return validate(SourceKind.BUFFER, buffer, all_directories)
