"""Shared fixtures: in-memory TIFF builders and handler capture."""

import struct
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from pychecktiff import tiffio

# field type -> (struct code, size)
_TYPES = {1: ("B", 1), 2: ("s", 1), 3: ("H", 2), 4: ("I", 4), 7: ("s", 1), 16: ("Q", 8)}

SHORT, LONG, UNDEFINED, LONG8 = 3, 4, 7, 16


def build_tiff(tags: Dict[int, Optional[Tuple[int, Sequence]]],
               segments: Sequence[bytes] = (),
               *,
               byteorder: str = "<",
               bigtiff: bool = False,
               offsets_tag: int = 273,
               counts_tag: int = 279,
               sort_tags: bool = True,
               next_ifd=0) -> bytes:
    """
    Assemble a single-directory TIFF.

    tags maps tag -> (field type, values); a value of None drops the tag.
    Offsets and byte counts for `segments` are filled in unless given.
    next_ifd="self" makes the directory point at itself.
    """
    header_size = 16 if bigtiff else 8
    offset_type = LONG8 if bigtiff else LONG

    data = b"".join(segments)
    offsets, pos = [], header_size
    for segment in segments:
        offsets.append(pos)
        pos += len(segment)

    tags = dict(tags)
    if segments:
        tags.setdefault(offsets_tag, (offset_type, offsets))
        tags.setdefault(counts_tag, (offset_type, [len(s) for s in segments]))
    tags = {tag: value for tag, value in tags.items() if value is not None}
    items = sorted(tags.items()) if sort_tags else list(tags.items())

    ifd_offset = header_size + len(data) + (len(data) % 2)
    count_size, entry_size, field_size = (8, 20, 8) if bigtiff else (2, 12, 4)
    ifd_size   = count_size + len(items) * entry_size + field_size
    extra      = b""
    entries    = b""
    for tag, (ftype, values) in items:
        code, size = _TYPES[ftype]
        if code == "s":
            payload, count = bytes(values), len(values)
        else:
            payload, count = struct.pack(f"{byteorder}{len(values)}{code}", *values), len(values)
        if len(payload) <= field_size:
            field = payload.ljust(field_size, b"\0")
        else:
            where = ifd_offset + ifd_size + len(extra)
            field = struct.pack(byteorder + ("Q" if bigtiff else "I"), where)
            extra += payload + b"\0" * (len(payload) % 2)
        if bigtiff:
            entries += struct.pack(byteorder + "HHQ", tag, ftype, count) + field
        else:
            entries += struct.pack(byteorder + "HHI", tag, ftype, count) + field

    nxt = ifd_offset if next_ifd == "self" else next_ifd
    if bigtiff:
        ifd = struct.pack(byteorder + "Q", len(items)) + entries + struct.pack(byteorder + "Q", nxt)
        header = (b"II" if byteorder == "<" else b"MM") + struct.pack(byteorder + "HHHQ", 43, 8, 0, ifd_offset)
    else:
        ifd = struct.pack(byteorder + "H", len(items)) + entries + struct.pack(byteorder + "I", nxt)
        header = (b"II" if byteorder == "<" else b"MM") + struct.pack(byteorder + "HI", 42, ifd_offset)

    return header + data + b"\0" * (len(data) % 2) + ifd + extra


def gray_tags(width: int, length: int, rows_per_strip: Optional[int] = None,
              compression: int = 1) -> Dict[int, Optional[Tuple[int, Sequence]]]:
    tags = {
        256: (SHORT, [width]),
        257: (SHORT, [length]),
        258: (SHORT, [8]),
        259: (SHORT, [compression]),
        262: (SHORT, [1]),
        277: (SHORT, [1]),
    }
    if rows_per_strip is not None:
        tags[278] = (LONG, [rows_per_strip])
    return tags


def gray_rows(width: int, length: int) -> List[bytes]:
    return [bytes((row * 10 + col) % 256 for col in range(width)) for row in range(length)]


def strips_of(rows: List[bytes], rows_per_strip: int) -> List[bytes]:
    return [b"".join(rows[i:i + rows_per_strip]) for i in range(0, len(rows), rows_per_strip)]


def gray_tiff(width: int = 8, length: int = 8, rows_per_strip: int = 2, **kwargs) -> bytes:
    """Uncompressed 8-bit grayscale TIFF, rows_per_strip rows per strip."""
    rows = gray_rows(width, length)
    return build_tiff(gray_tags(width, length, rows_per_strip),
                      strips_of(rows, rows_per_strip), **kwargs)


def packbits_literal(data: bytes, row_bytes: int) -> bytes:
    """PackBits-encode data row by row as literal runs only."""
    out = b""
    for start in range(0, len(data), row_bytes):
        row = data[start:start + row_bytes]
        for i in range(0, len(row), 128):
            chunk = row[i:i + 128]
            out += bytes((len(chunk) - 1,)) + chunk
    return out


@pytest.fixture
def gray_bytes() -> bytes:
    return gray_tiff()


@pytest.fixture
def gray_path(tmp_path, gray_bytes):
    path = tmp_path / "gray.tif"
    path.write_bytes(gray_bytes)
    return path


class Captured:
    def __init__(self) -> None:
        self.errors:   List[str] = []
        self.warnings: List[str] = []


@pytest.fixture
def captured():
    """Install list-collecting decoder handlers, restore the previous ones afterwards."""
    seen = Captured()
    previous_error = tiffio.set_error_handler(
        lambda module, fmt, args: seen.errors.append(fmt % args))
    previous_warning = tiffio.set_warning_handler(
        lambda module, fmt, args: seen.warnings.append(fmt % args))
    yield seen
    tiffio.set_error_handler(previous_error)
    tiffio.set_warning_handler(previous_warning)
