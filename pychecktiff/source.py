#!/usr/bin/env python3
"""
    Copyright (c) 2025 Bc. Dominik Sabota, VUT FIT Brno

    pychecktiff - TIFF/JP4 container integrity checker

    This program is free software: you can redistribute it and/or modify
    it under the terms of the GNU General Public License as published by
    the Free Software Foundation, either version 3 of the License.
    See <https://www.gnu.org/licenses/> for details.
"""

import io
import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Union

# ---------------------------------------------------------------------------
# CONSTANTS
# ---------------------------------------------------------------------------

SEEK_SET    = io.SEEK_SET
SEEK_CUR    = io.SEEK_CUR
SEEK_END    = io.SEEK_END
SEEK_FAILED = -1           # returned by seek() when the target would be negative

BufferLike = Union[bytes, bytearray, memoryview]
PathLike   = Union[str, "os.PathLike[str]"]


class SourceKind(Enum):
    FILE   = "file"
    BUFFER = "buffer"


# ---------------------------------------------------------------------------
# SOURCES
# ---------------------------------------------------------------------------

class VirtualSource(ABC):
    """
    Seekable, read-only byte source handed to the TIFF decoder.

    Semantics shared by every backing:
      read()  - short reads at end of data, never past it
      seek()  - SEEK_FAILED and cursor reset to 0 for negative targets;
                targets past the end are accepted
      size()  - constant for the lifetime of the source
    """

    name = "<source>"

    def __init__(self) -> None:
        self._cursor = 0
        self.closed  = False

    def __enter__(self) -> "VirtualSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @abstractmethod
    def size(self) -> int:
        ...

    @abstractmethod
    def _read_at(self, offset: int, count: int) -> bytes:
        ...

    def tell(self) -> int:
        return self._cursor

    def seek(self, offset: int, whence: int = SEEK_SET) -> int:
        if whence == SEEK_SET:
            target = offset
        elif whence == SEEK_CUR:
            target = self._cursor + offset
        elif whence == SEEK_END:
            target = self.size() + offset
        else:
            raise ValueError(f"invalid whence ({whence})")
        if target < 0:
            self._cursor = 0
            return SEEK_FAILED
        self._cursor = target
        return target

    def read(self, count: int = -1) -> bytes:
        available = max(self.size() - self._cursor, 0)
        if count < 0 or count > available:
            count = available
        if count == 0:
            return b""
        data = self._read_at(self._cursor, count)
        self._cursor += len(data)
        return data

    def readinto(self, buffer) -> int:
        """Copy up to len(buffer) bytes at the cursor into buffer; return the count."""
        view = memoryview(buffer).cast("B")
        data = self.read(len(view))
        view[:len(data)] = data
        return len(data)

    def close(self) -> None:
        self.closed = True


class FileSource(VirtualSource):
    """Source backed by a file on disk; owns the handle it opens."""

    def __init__(self, path: PathLike) -> None:
        super().__init__()
        self.name  = os.fspath(path)
        self._fh   = open(self.name, "rb")
        self._size = os.fstat(self._fh.fileno()).st_size

    def size(self) -> int:
        return self._size

    def _read_at(self, offset: int, count: int) -> bytes:
        self._fh.seek(offset)
        return self._fh.read(count)

    def close(self) -> None:
        if not self.closed:
            self._fh.close()
        super().close()


class BufferSource(VirtualSource):
    """Source over a caller-owned buffer. Borrowed, never copied or kept."""

    name = "<memory>"

    def __init__(self, buffer: BufferLike) -> None:
        super().__init__()
        self._view: Optional[memoryview] = memoryview(buffer).cast("B")

    def size(self) -> int:
        return len(self._view) if self._view is not None else 0

    def _read_at(self, offset: int, count: int) -> bytes:
        return bytes(self._view[offset:offset + count])

    def close(self) -> None:
        # drop the borrowed view, the buffer itself belongs to the caller
        self._view = None
        super().close()


def open_source(kind: SourceKind, target) -> VirtualSource:
    """Open the source variant for kind. FileSource raises OSError when the file cannot be opened."""
    if kind is SourceKind.FILE:
        return FileSource(target)
    if kind is SourceKind.BUFFER:
        return BufferSource(target)
    raise ValueError(f"unknown source kind: {kind!r}")
