"""pychecktiff - check integrity of TIFF/JP4 containers by decoding every scanline."""

import logging

from ._version import __version__
from .diagnostics import MAX_MESSAGE_LENGTH, DiagnosticRecord, DiagnosticSink, Severity
from .results import ValidationResult
from .source import BufferSource, FileSource, SourceKind, VirtualSource
from .validator import validate, validate_tiff_from_buffer, validate_tiff_from_file

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "MAX_MESSAGE_LENGTH",
    "DiagnosticRecord",
    "DiagnosticSink",
    "Severity",
    "ValidationResult",
    "BufferSource",
    "FileSource",
    "SourceKind",
    "VirtualSource",
    "validate",
    "validate_tiff_from_buffer",
    "validate_tiff_from_file",
]
