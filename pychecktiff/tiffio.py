#!/usr/bin/env python3
"""
    Copyright (c) 2025 Bc. Dominik Sabota, VUT FIT Brno

    pychecktiff - TIFF/JP4 container integrity checker

    This program is free software: you can redistribute it and/or modify
    it under the terms of the GNU General Public License as published by
    the Free Software Foundation, either version 3 of the License.
    See <https://www.gnu.org/licenses/> for details.
"""

# ============================================================================
# IMPORTS
# ============================================================================

import io
import logging
import struct
import warnings
import zlib
from typing import Callable, Dict, List, Optional, Set, Tuple

from PIL import Image

from .source import SEEK_FAILED, SEEK_SET, SourceKind, VirtualSource, open_source

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

CLASSIC_VERSION       = 42
BIGTIFF_VERSION       = 43
BYTE_ORDERS           = {b"II": "<", b"MM": ">"}
MAX_DIRECTORY_ENTRIES = 4096
PACKBITS_MAX_EXPANSION = 64     # output bytes per input byte, upper bound

# Field type -> (struct code, item size); RATIONAL types hold two items
FIELD_TYPES: Dict[int, Tuple[str, int]] = {
    1:  ("B", 1),  2:  ("s", 1),  3:  ("H", 2),  4:  ("I", 4),
    5:  ("I", 8),  6:  ("b", 1),  7:  ("s", 1),  8:  ("h", 2),
    9:  ("i", 4),  10: ("i", 8),  11: ("f", 4),  12: ("d", 8),
    13: ("I", 4),  16: ("Q", 8),  17: ("q", 8),  18: ("Q", 8),
}

# Structural tags
IMAGE_WIDTH      = 256
IMAGE_LENGTH     = 257
BITS_PER_SAMPLE  = 258
COMPRESSION      = 259
PHOTOMETRIC      = 262
STRIP_OFFSETS    = 273
SAMPLES_PER_PIXEL = 277
ROWS_PER_STRIP   = 278
STRIP_BYTE_COUNTS = 279
PLANAR_CONFIG    = 284
TILE_WIDTH       = 322
TILE_LENGTH      = 323
TILE_OFFSETS     = 324
TILE_BYTE_COUNTS = 325
JPEG_TABLES      = 347

TAG_NAMES: Dict[int, str] = {
    254: "NewSubfileType", 255: "SubfileType", 256: "ImageWidth", 257: "ImageLength",
    258: "BitsPerSample", 259: "Compression", 262: "PhotometricInterpretation",
    263: "Threshholding", 264: "CellWidth", 265: "CellLength", 266: "FillOrder",
    269: "DocumentName", 270: "ImageDescription", 271: "Make", 272: "Model",
    273: "StripOffsets", 274: "Orientation", 277: "SamplesPerPixel",
    278: "RowsPerStrip", 279: "StripByteCounts", 280: "MinSampleValue",
    281: "MaxSampleValue", 282: "XResolution", 283: "YResolution",
    284: "PlanarConfiguration", 285: "PageName", 286: "XPosition", 287: "YPosition",
    288: "FreeOffsets", 289: "FreeByteCounts", 290: "GrayResponseUnit",
    291: "GrayResponseCurve", 292: "T4Options", 293: "T6Options",
    296: "ResolutionUnit", 297: "PageNumber", 301: "TransferFunction",
    305: "Software", 306: "DateTime", 315: "Artist", 316: "HostComputer",
    317: "Predictor", 318: "WhitePoint", 319: "PrimaryChromaticities",
    320: "ColorMap", 321: "HalftoneHints", 322: "TileWidth", 323: "TileLength",
    324: "TileOffsets", 325: "TileByteCounts", 330: "SubIFDs", 332: "InkSet",
    333: "InkNames", 334: "NumberOfInks", 336: "DotRange", 337: "TargetPrinter",
    338: "ExtraSamples", 339: "SampleFormat", 340: "SMinSampleValue",
    341: "SMaxSampleValue", 342: "TransferRange", 347: "JPEGTables",
    512: "JPEGProc", 513: "JPEGInterchangeFormat", 514: "JPEGInterchangeFormatLength",
    515: "JPEGRestartInterval", 517: "JPEGLosslessPredictors",
    518: "JPEGPointTransforms", 519: "JPEGQTables", 520: "JPEGDCTables",
    521: "JPEGACTables", 529: "YCbCrCoefficients", 530: "YCbCrSubSampling",
    531: "YCbCrPositioning", 532: "ReferenceBlackWhite", 700: "XMLPacket",
    32781: "ImageID", 32995: "Matteing", 32996: "DataType", 32997: "ImageDepth",
    32998: "TileDepth", 33421: "CFARepeatPatternDim", 33422: "CFAPattern",
    33432: "Copyright", 33723: "RichTIFFIPTC", 34377: "Photoshop",
    34665: "ExifIFD", 34675: "ICCProfile", 34853: "GPSInfoIFD",
    37706: "TIFF_RSID", 37724: "ImageSourceData", 40965: "InteroperabilityIFD",
    42016: "ImageUniqueID", 50706: "DNGVersion", 50707: "DNGBackwardVersion",
    50708: "UniqueCameraModel", 50709: "LocalizedCameraModel",
    50710: "CFAPlaneColor", 50711: "CFALayout", 50712: "LinearizationTable",
    50713: "BlackLevelRepeatDim", 50714: "BlackLevel", 50717: "WhiteLevel",
    50718: "DefaultScale", 50719: "DefaultCropOrigin", 50720: "DefaultCropSize",
    50721: "ColorMatrix1", 50722: "ColorMatrix2", 50727: "AnalogBalance",
    50728: "AsShotNeutral", 50730: "BaselineExposure", 50733: "BayerGreenSplit",
    50738: "AntiAliasStrength", 50739: "ShadowScale", 50740: "DNGPrivateData",
    50778: "CalibrationIlluminant1", 50779: "CalibrationIlluminant2",
    50781: "RawDataUniqueID", 50829: "ActiveArea", 50839: "ImageJMetaData",
}

REQUIRED_TAGS = (IMAGE_WIDTH, IMAGE_LENGTH)

COMPRESSION_NONE     = 1
COMPRESSION_LZW      = 5
COMPRESSION_OJPEG    = 6
COMPRESSION_JPEG     = 7
COMPRESSION_DEFLATE  = 8
COMPRESSION_PACKBITS = 32773
COMPRESSION_ADOBE_DEFLATE = 32946

COMPRESSION_NAMES = {
    COMPRESSION_NONE: "None", 2: "CCITT RLE", 3: "CCITT Group 3",
    4: "CCITT Group 4", COMPRESSION_LZW: "LZW", COMPRESSION_OJPEG: "Old-style JPEG",
    COMPRESSION_JPEG: "JPEG", COMPRESSION_DEFLATE: "Deflate",
    COMPRESSION_PACKBITS: "PackBits", COMPRESSION_ADOBE_DEFLATE: "Deflate",
    34712: "JPEG 2000", 34887: "LERC", 34925: "LZMA", 50000: "ZSTD", 50001: "WebP",
}


# ============================================================================
# ERROR / WARNING HANDLERS
# ============================================================================

Handler = Callable[[str, str, tuple], None]


def _log_error(module: str, fmt: str, args: tuple) -> None:
    logger.error("%s: %s", module, fmt % args)


def _log_warning(module: str, fmt: str, args: tuple) -> None:
    logger.warning("%s: %s", module, fmt % args)


_error_handler:   Optional[Handler] = _log_error
_warning_handler: Optional[Handler] = _log_warning


def set_error_handler(handler: Optional[Handler]) -> Optional[Handler]:
    """Install the process-wide error handler and return the previous one."""
    global _error_handler
    previous, _error_handler = _error_handler, handler
    return previous


def set_warning_handler(handler: Optional[Handler]) -> Optional[Handler]:
    """Install the process-wide warning handler and return the previous one."""
    global _warning_handler
    previous, _warning_handler = _warning_handler, handler
    return previous


def tiff_error(module: str, fmt: str, *args) -> None:
    if _error_handler is not None:
        _error_handler(module, fmt, args)


def tiff_warning(module: str, fmt: str, *args) -> None:
    if _warning_handler is not None:
        _warning_handler(module, fmt, args)


def tag_name(tag: int) -> str:
    return TAG_NAMES.get(tag, f"Tag {tag}")


# ============================================================================
# CODECS
# ============================================================================

def lzw_decode(data: bytes, limit: int) -> bytes:
    """
    Decode a TIFF LZW stream (MSB-first codes, early change).

    Stops at the EndOfInformation code, at limit output bytes or when the
    input runs out. Raises ValueError on an impossible code.
    """
    out    = bytearray()
    table  = [bytes((i,)) for i in range(256)] + [b"", b""]
    width  = 9
    bitbuf = 0
    nbits  = 0
    pos    = 0
    prev: Optional[bytes] = None

    while len(out) < limit:
        while nbits < width:
            if pos >= len(data):
                return bytes(out)
            bitbuf = (bitbuf << 8) | data[pos]
            pos   += 1
            nbits += 8
        nbits -= width
        code    = (bitbuf >> nbits) & ((1 << width) - 1)
        bitbuf &= (1 << nbits) - 1

        if code == 257:
            break
        if code == 256:
            del table[258:]
            width = 9
            prev  = None
            continue

        if prev is None:
            if code > 255:
                raise ValueError(f"corrupted LZW table at code {code}")
            entry = table[code]
        elif code < len(table):
            entry = table[code]
            table.append(prev + entry[:1])
        elif code == len(table):
            entry = prev + prev[:1]
            table.append(entry)
        else:
            raise ValueError(f"corrupted LZW table at code {code}")

        out += entry
        prev = entry
        if len(table) >= (1 << width) - 1 and width < 12:
            width += 1

    return bytes(out)


def packbits_decode(data: bytes, row_bytes: int, rows: int) -> bytes:
    """
    Decode PackBits rows with Pillow; ValueError on short or broken data.

    The output is never sized past what data can expand to (a two-byte run
    yields at most 128 bytes), whatever row count the directory claims.
    """
    if row_bytes == 0 or rows == 0:
        return b""
    rows = min(rows, len(data) * PACKBITS_MAX_EXPANSION // row_bytes + 1)
    return Image.frombytes("L", (row_bytes, rows), data, "packbits", "L").tobytes()


def deflate_decode(data: bytes, limit: int) -> bytes:
    return zlib.decompressobj().decompress(data, limit)


# ============================================================================
# DIRECTORY
# ============================================================================

class TiffDirectory:
    """
    One parsed image file directory.

    Holds the raw tag values plus the layout derived from them: how many
    strips or tiles ("segments") the image is cut into and how many bytes
    each one has to decode to.
    """

    def __init__(self, offset: int, tags: Dict[int, tuple], next_offset: int) -> None:
        self.offset      = offset
        self.tags        = tags
        self.next_offset = next_offset

        self.width       = self._scalar(IMAGE_WIDTH, 0)
        self.length      = self._scalar(IMAGE_LENGTH, 0)
        self.bits        = self._scalar(BITS_PER_SAMPLE, 1)
        self.samples     = self._scalar(SAMPLES_PER_PIXEL, 1)
        self.compression = self._scalar(COMPRESSION, COMPRESSION_NONE)
        self.planar      = self._scalar(PLANAR_CONFIG, 1)
        self.tiled       = TILE_WIDTH in tags or TILE_LENGTH in tags or TILE_OFFSETS in tags

        if self.tiled:
            self.segment_width  = self._scalar(TILE_WIDTH, 0)
            self.segment_length = self._scalar(TILE_LENGTH, 0)
        else:
            self.segment_width  = self.width
            self.segment_length = self._scalar(ROWS_PER_STRIP, 0xFFFFFFFF)

        self.offsets:    List[int] = []
        self.bytecounts: List[int] = []
        self.jpeg_tables = self._bytes(JPEG_TABLES)

    def _bytes(self, tag: int) -> bytes:
        # UNDEFINED values arrive as one bytes item, BYTE values as ints
        value = self.tags.get(tag, ())
        if len(value) == 1 and isinstance(value[0], bytes):
            return value[0]
        if all(isinstance(v, int) and 0 <= v <= 0xFF for v in value):
            return bytes(value)
        return b""

    def _scalar(self, tag: int, default: int) -> int:
        value = self.tags.get(tag)
        if not value or not isinstance(value[0], int):
            return default
        return value[0]

    @property
    def kind(self) -> str:
        return "tile" if self.tiled else "strip"

    @property
    def offsets_tag(self) -> int:
        return TILE_OFFSETS if self.tiled else STRIP_OFFSETS

    @property
    def bytecounts_tag(self) -> int:
        return TILE_BYTE_COUNTS if self.tiled else STRIP_BYTE_COUNTS

    @property
    def planes(self) -> int:
        return self.samples if self.planar == 2 else 1

    def row_bytes(self, width: int) -> int:
        per_plane = 1 if self.planar == 2 else self.samples
        return (width * self.bits * per_plane + 7) // 8

    @property
    def segments_across(self) -> int:
        if not self.tiled:
            return 1
        return -(-self.width // self.segment_width)

    @property
    def segments_down(self) -> int:
        return -(-self.length // self.segment_length)

    @property
    def segments_per_plane(self) -> int:
        return self.segments_across * self.segments_down

    @property
    def segment_count(self) -> int:
        return self.segments_per_plane * self.planes

    def segment_rows(self, index: int) -> int:
        """Rows a segment decodes to; tiles are always full height, the last strip may be short."""
        if self.tiled:
            return self.segment_length
        band = (index % self.segments_per_plane) // self.segments_across
        return min(self.segment_length, self.length - band * self.segment_length)

    def segment_size(self, index: int) -> int:
        return self.segment_rows(index) * self.row_bytes(self.segment_width)


class _Segment:
    """Decoded strip or tile; rows past the decoded data are unavailable."""

    __slots__ = ("data", "row_bytes")

    def __init__(self, data: bytes, row_bytes: int) -> None:
        self.data      = data
        self.row_bytes = row_bytes

    def row(self, index: int) -> Optional[bytes]:
        start = index * self.row_bytes
        end   = start + self.row_bytes
        if end > len(self.data):
            return None
        return self.data[start:end]


# ============================================================================
# DECODER
# ============================================================================

class TiffFile:
    """
    Minimal read-only TIFF decoder driven through a VirtualSource.

    Every fault is reported through the process-wide error and warning
    handlers; methods return None / False instead of raising. `failed` is
    set once the current directory cannot be decoded any further.
    """

    def __init__(self, source: VirtualSource, name: str, byteorder: str, bigtiff: bool) -> None:
        self.source     = source
        self.name       = name
        self.byteorder  = byteorder
        self.bigtiff    = bigtiff
        self.directory: Optional[TiffDirectory] = None
        self.failed     = False

        self._visited:  Set[int] = set()
        self._segments: Dict[int, Optional[_Segment]] = {}
        self._band: Optional[Tuple[int, int]] = None
        self._codec_reported = False

    # -------------------------------------------------------------------------
    # OPEN / CLOSE
    # -------------------------------------------------------------------------

    @classmethod
    def client_open(cls, source: VirtualSource, name: Optional[str] = None) -> Optional["TiffFile"]:
        """Read the header and first directory from source. None when the container is not usable."""
        module = "TIFFClientOpen"
        name   = name or source.name

        header = cls._read_source(source, 0, 8)
        if len(header) < 8:
            tiff_error(module, "Cannot read TIFF header")
            return None

        byteorder = BYTE_ORDERS.get(header[:2])
        if byteorder is None:
            magic = struct.unpack("<H", header[:2])[0]
            tiff_error(module, "Not a TIFF or MDI file, bad magic number %d (0x%x)", magic, magic)
            return None

        version = struct.unpack(byteorder + "H", header[2:4])[0]
        if version == CLASSIC_VERSION:
            first_ifd = struct.unpack(byteorder + "I", header[4:8])[0]
            tif = cls(source, name, byteorder, bigtiff=False)
        elif version == BIGTIFF_VERSION:
            offset_size, reserved = struct.unpack(byteorder + "HH", header[4:8])
            if offset_size != 8 or reserved != 0:
                tiff_error(module, "Not a TIFF file, bad BigTIFF offsetsize %d (0x%x)",
                           offset_size, offset_size)
                return None
            rest = cls._read_source(source, 8, 8)
            if len(rest) < 8:
                tiff_error(module, "Cannot read TIFF header")
                return None
            first_ifd = struct.unpack(byteorder + "Q", rest)[0]
            tif = cls(source, name, byteorder, bigtiff=True)
        else:
            tiff_error(module, "Not a TIFF file, bad version number %d (0x%x)", version, version)
            return None

        logger.debug("%s: %s TIFF, %s, first directory at %d", name,
                     "Big" if tif.bigtiff else "classic",
                     "little-endian" if byteorder == "<" else "big-endian", first_ifd)

        if not tif._read_directory(first_ifd):
            return None
        return tif

    def close(self) -> None:
        self._segments.clear()
        self.directory = None
        self.source.close()

    def __enter__(self) -> "TiffFile":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # LOW LEVEL I/O
    # -------------------------------------------------------------------------

    @staticmethod
    def _read_source(source: VirtualSource, offset: int, count: int) -> bytes:
        if source.seek(offset, SEEK_SET) == SEEK_FAILED:
            return b""
        return source.read(count)

    def _read_at(self, offset: int, count: int) -> bytes:
        return self._read_source(self.source, offset, count)

    @property
    def _offset_code(self) -> str:
        return "Q" if self.bigtiff else "I"

    @property
    def _offset_size(self) -> int:
        return 8 if self.bigtiff else 4

    # -------------------------------------------------------------------------
    # DIRECTORIES
    # -------------------------------------------------------------------------

    def read_next_directory(self) -> bool:
        """Advance to the next directory in the chain. False at the end or on failure."""
        if self.directory is None or self.directory.next_offset == 0:
            return False
        return self._read_directory(self.directory.next_offset)

    def _read_directory(self, offset: int) -> bool:
        module = "TIFFReadDirectory"
        order  = self.byteorder

        if offset in self._visited:
            tiff_error(module, "Cycle detected in chaining of TIFF directories at offset %d", offset)
            return False
        self._visited.add(offset)

        count_size, entry_size = (8, 20) if self.bigtiff else (2, 12)
        raw_count = self._read_at(offset, count_size)
        if len(raw_count) < count_size:
            tiff_error("TIFFFetchDirectory", "Can not read TIFF directory count")
            return False
        count = struct.unpack(order + ("Q" if self.bigtiff else "H"), raw_count)[0]
        if count == 0 or count > MAX_DIRECTORY_ENTRIES:
            tiff_error("TIFFFetchDirectory",
                       "Sanity check on directory count failed, this is probably not a valid IFD offset")
            return False

        raw_entries = self._read_at(offset + count_size, count * entry_size)
        if len(raw_entries) < count * entry_size:
            tiff_error("TIFFFetchDirectory", "Can not read TIFF directory")
            return False

        raw_next = self._read_at(offset + count_size + count * entry_size, self._offset_size)
        next_offset = struct.unpack(order + self._offset_code, raw_next)[0] \
            if len(raw_next) == self._offset_size else 0

        tags: Dict[int, tuple] = {}
        previous_tag = -1
        unsorted_reported = False
        for i in range(count):
            entry = raw_entries[i * entry_size:(i + 1) * entry_size]
            if self.bigtiff:
                tag, ftype, n = struct.unpack(order + "HHQ", entry[:12])
                field = entry[12:]
            else:
                tag, ftype, n = struct.unpack(order + "HHI", entry[:8])
                field = entry[8:]

            if tag < previous_tag and not unsorted_reported:
                tiff_warning(module, "Invalid TIFF directory; tags are not sorted in ascending order")
                unsorted_reported = True
            previous_tag = tag

            if tag in tags:
                tiff_warning(module, "Duplicate field \"%s\" (tag %d) ignored", tag_name(tag), tag)
                continue
            if tag not in TAG_NAMES:
                tiff_warning(module, "Unknown field with tag %d (0x%x) encountered", tag, tag)
            if ftype not in FIELD_TYPES:
                tiff_warning(module, "Wrong data type %d for \"%s\"; tag ignored", ftype, tag_name(tag))
                continue

            value = self._fetch_value(tag, ftype, n, field)
            if value is not None:
                tags[tag] = value

        directory = TiffDirectory(offset, tags, next_offset)
        if not self._setup_directory(directory):
            return False

        self.directory = directory
        self.failed = False
        self._segments.clear()
        self._band = None
        self._codec_reported = False
        logger.debug("%s: directory at %d, %dx%d, %d %s(s), compression %d", self.name, offset,
                     directory.width, directory.length, directory.segment_count,
                     directory.kind, directory.compression)
        return True

    def _fetch_value(self, tag: int, ftype: int, count: int, field: bytes) -> Optional[tuple]:
        code, size = FIELD_TYPES[ftype]
        nbytes = count * size
        essential = tag in (STRIP_OFFSETS, STRIP_BYTE_COUNTS, TILE_OFFSETS, TILE_BYTE_COUNTS) \
            or tag in REQUIRED_TAGS

        if nbytes <= len(field):
            data = field[:nbytes]
        else:
            offset = struct.unpack(self.byteorder + self._offset_code, field[:self._offset_size])[0]
            data = b""
            if offset + nbytes <= self.source.size():
                data = self._read_at(offset, nbytes)
            if len(data) < nbytes:
                report = tiff_error if essential else tiff_warning
                report("TIFFFetchNormalTag", "IO error during reading of \"%s\"; tag ignored",
                       tag_name(tag))
                return None

        if code == "s":
            return (data,)
        items = count * 2 if ftype in (5, 10) else count
        return struct.unpack(f"{self.byteorder}{items}{code}", data)

    def _setup_directory(self, directory: TiffDirectory) -> bool:
        module = "TIFFReadDirectory"

        for tag in REQUIRED_TAGS:
            if tag not in directory.tags:
                tiff_error(module, "TIFF directory is missing required \"%s\" field", tag_name(tag))
                return False

        if PHOTOMETRIC not in directory.tags:
            assumed = "RGB" if directory.samples >= 3 else "min-is-black"
            tiff_warning(module, "Photometric tag is missing, assuming %s", assumed)

        if directory.planar not in (1, 2):
            tiff_warning(module, "Unknown PlanarConfiguration value %d, assuming contiguous",
                         directory.planar)
            directory.planar = 1

        if directory.tiled:
            if directory.segment_width == 0 or directory.segment_length == 0:
                tiff_error(module, "Zero tile width or length (%dx%d)",
                           directory.segment_width, directory.segment_length)
                return False
            if directory.segment_width % 16 or directory.segment_length % 16:
                tiff_warning(module, "Nonstandard tile size %dx%d, convert file",
                             directory.segment_width, directory.segment_length)
        else:
            if directory.segment_length == 0:
                tiff_warning(module, "Invalid RowsPerStrip value 0, assuming %d", directory.length)
                directory.segment_length = directory.length
            directory.segment_length = max(min(directory.segment_length, directory.length), 1)

        nsegments = directory.segment_count
        if nsegments == 0:
            return True

        offsets_tag, counts_tag = directory.offsets_tag, directory.bytecounts_tag
        if offsets_tag not in directory.tags:
            tiff_error(module, "TIFF directory is missing required \"%s\" field", tag_name(offsets_tag))
            return False
        directory.offsets = list(directory.tags[offsets_tag])
        if len(directory.offsets) < nsegments:
            tiff_error(module, "Incorrect count for \"%s\"; expected %d, got %d",
                       tag_name(offsets_tag), nsegments, len(directory.offsets))

        if counts_tag not in directory.tags:
            tiff_warning(module, "TIFF directory is missing required \"%s\" field, "
                         "calculating from imagelength", tag_name(counts_tag))
            directory.bytecounts = self._estimate_bytecounts(directory)
        else:
            directory.bytecounts = list(directory.tags[counts_tag])
            if len(directory.bytecounts) < nsegments:
                tiff_error(module, "Incorrect count for \"%s\"; expected %d, got %d",
                           tag_name(counts_tag), nsegments, len(directory.bytecounts))
            elif (nsegments == 1 and directory.compression == COMPRESSION_NONE and directory.offsets
                    and (directory.bytecounts[0] == 0
                         or directory.bytecounts[0] > self.source.size() - directory.offsets[0])):
                tiff_warning(module, "Bogus \"%s\" field, ignoring and calculating from imagelength",
                             tag_name(counts_tag))
                directory.bytecounts = self._estimate_bytecounts(directory)
        return True

    def _estimate_bytecounts(self, directory: TiffDirectory) -> List[int]:
        size = self.source.size()
        counts = []
        for index, offset in enumerate(directory.offsets):
            available = max(size - offset, 0)
            if directory.compression == COMPRESSION_NONE:
                counts.append(min(directory.segment_size(index), available))
            else:
                counts.append(available)
        return counts

    # -------------------------------------------------------------------------
    # SCANLINES
    # -------------------------------------------------------------------------

    def read_scanline(self, row: int, sample: int = 0) -> Optional[bytes]:
        """
        Decode the strip or tile band holding row and return that scanline.

        For tiled images the scanline is the concatenation of the tile rows
        across the band, padding included. Returns None when the row cannot
        be produced; the cause has been reported through the handlers once.
        """
        module = "TIFFReadScanline"
        directory = self.directory
        if directory is None or self.failed:
            return None
        if row >= directory.length:
            tiff_error(module, "Row out of range, max %d", directory.length - 1)
            return None
        if sample >= directory.planes:
            tiff_error(module, "Sample out of range, max %d", directory.planes - 1)
            return None

        band = row // directory.segment_length
        if self._band != (sample, band):
            self._segments.clear()
            self._band = (sample, band)

        first = sample * directory.segments_per_plane + band * directory.segments_across
        parts = []
        for index in range(first, first + directory.segments_across):
            segment = self._segment(index)
            if self.failed:
                return None
            parts.append(segment.row(row - band * directory.segment_length) if segment else None)
        if any(part is None for part in parts):
            return None
        return b"".join(parts)

    def _segment(self, index: int) -> Optional[_Segment]:
        if index not in self._segments:
            self._segments[index] = self._load_segment(index)
        return self._segments[index]

    def _load_segment(self, index: int) -> Optional[_Segment]:
        directory = self.directory
        kind      = directory.kind
        module    = "TIFFFillTile" if directory.tiled else "TIFFFillStrip"

        if index >= len(directory.offsets) or index >= len(directory.bytecounts):
            available = min(len(directory.offsets), len(directory.bytecounts))
            tiff_error(module, "%d: %s out of range, max %d", index,
                       kind.capitalize(), available - 1)
            self.failed = True
            return None

        offset, bytecount = directory.offsets[index], directory.bytecounts[index]
        if bytecount == 0:
            tiff_error(module, "Invalid %s byte count %d, %s %d", kind, bytecount, kind, index)
            return None

        raw = self._read_at(offset, bytecount)
        if len(raw) < bytecount:
            tiff_error(module, "Read error on %s %d; got %d bytes, expected %d",
                       kind, index, len(raw), bytecount)
            return None

        row_bytes = directory.row_bytes(directory.segment_width)
        rows      = directory.segment_rows(index)
        expected  = rows * row_bytes
        try:
            decoded = self._decode(raw, index, row_bytes, rows)
        except MemoryError:
            tiff_error(module, "Cannot allocate %d bytes for %s %d", expected, kind, index)
            return None
        if decoded is None:
            return None
        if directory.compression == COMPRESSION_JPEG:
            # decoded JPEG rows use Pillow's stride, not the TIFF one
            return _Segment(decoded, len(decoded) // rows)
        if len(decoded) < expected:
            tiff_error(module, "Not enough data for %s %d; expected %d bytes, got %d",
                       kind, index, expected, len(decoded))
        return _Segment(decoded, row_bytes)

    def _decode(self, raw: bytes, index: int, row_bytes: int, rows: int) -> Optional[bytes]:
        directory   = self.directory
        kind        = directory.kind
        compression = directory.compression
        expected    = row_bytes * rows

        if compression == COMPRESSION_NONE:
            return raw

        if compression == COMPRESSION_LZW:
            if len(raw) >= 2 and raw[0] == 0 and raw[1] & 0x1:
                tiff_warning("LZWPreDecode", "Old-style LZW codes, convert file")
                return self._unsupported(compression)
            try:
                return lzw_decode(raw, expected)
            except ValueError as exc:
                tiff_error("LZWDecode", "Decoding error in %s %d, %s", kind, index, exc)
                return None

        if compression in (COMPRESSION_DEFLATE, COMPRESSION_ADOBE_DEFLATE):
            try:
                return deflate_decode(raw, expected)
            except zlib.error as exc:
                tiff_error("ZIPDecode", "Decoding error in %s %d, %s", kind, index, exc)
                return None

        if compression == COMPRESSION_PACKBITS:
            try:
                return packbits_decode(raw, row_bytes, rows)
            except ValueError as exc:
                tiff_error("PackBitsDecode", "Decoding error in %s %d, %s", kind, index, exc)
                return None

        if compression == COMPRESSION_JPEG:
            return self._decode_jpeg(raw, index, rows)

        return self._unsupported(compression)

    def _decode_jpeg(self, raw: bytes, index: int, rows: int) -> Optional[bytes]:
        directory = self.directory
        kind      = directory.kind
        tables    = directory.jpeg_tables
        stream    = tables[:-2] + raw[2:] if len(tables) > 4 else raw

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                with Image.open(io.BytesIO(stream)) as im:
                    im.load()
                    width, height = im.size
                    data = im.tobytes()
            except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
                tiff_error("JPEGDecode", "Decoding error in %s %d, %s", kind, index, exc)
                return None
            finally:
                for item in caught:
                    tiff_warning("JPEGDecode", "%s", item.message)

        if width != directory.segment_width or height < rows:
            tiff_error("JPEGDecode", "Improper JPEG %s size %dx%d, expected %dx%d",
                       kind, width, height, directory.segment_width, rows)
            return None
        return data[:rows * (len(data) // height)]

    def _unsupported(self, compression: int) -> None:
        if not self._codec_reported:
            tiff_error("TIFFReadScanline", "Compression scheme %d (%s) decoding is not implemented",
                       compression, COMPRESSION_NAMES.get(compression, "unknown"))
            self._codec_reported = True
        self.failed = True
        return None


def tiff_open(kind: SourceKind, target, name: Optional[str] = None) -> Optional[TiffFile]:
    """
    Open target through the matching VirtualSource and read its first directory.

    The returned TiffFile owns the source; on any failure the source is
    released here and None is returned.
    """
    try:
        source = open_source(kind, target)
    except OSError as exc:
        tiff_error("TIFFOpen", "Cannot open: %s", exc.strerror or exc)
        return None

    try:
        tif = TiffFile.client_open(source, name)
    except BaseException:
        source.close()
        raise
    if tif is None:
        source.close()
    return tif
