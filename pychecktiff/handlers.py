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
from contextlib import contextmanager
from typing import Iterator, Optional

from . import tiffio
from .diagnostics import DiagnosticSink, Severity

logger = logging.getLogger(__name__)

_installed = False
_active_sink: Optional[DiagnosticSink] = None


def _forward(severity: Severity, module: str, fmt: str, args: tuple) -> None:
    message = fmt % args if args else fmt
    sink = _active_sink
    if sink is None:
        # decoder used outside a validation call
        logger.log(logging.ERROR if severity is Severity.ERROR else logging.WARNING,
                   "%s: %s", module, message)
        return
    logger.debug("captured %s from %s: %s", severity.value, module, message)
    sink.record(severity, message)


def _error_handler(module: str, fmt: str, args: tuple) -> None:
    _forward(Severity.ERROR, module, fmt, args)


def _warning_handler(module: str, fmt: str, args: tuple) -> None:
    _forward(Severity.WARNING, module, fmt, args)


def install_handlers() -> None:
    """Route decoder errors and warnings through this module. Safe to call repeatedly."""
    global _installed
    if _installed:
        return
    tiffio.set_error_handler(_error_handler)
    tiffio.set_warning_handler(_warning_handler)
    _installed = True


@contextmanager
def capture(sink: DiagnosticSink) -> Iterator[DiagnosticSink]:
    """Bind sink as the target of decoder diagnostics for the duration of the block."""
    global _active_sink
    install_handlers()
    previous, _active_sink = _active_sink, sink
    try:
        yield sink
    finally:
        _active_sink = previous
