"""
PE/COFF Image Reader
=====================

Offset-driven reader for the Portable Executable format, working directly
on a seekable binary stream so that multi-gigabyte game executables are
never loaded into memory.

The reader extracts only what the protection classifier needs:
    - DOS header (MZ stub) and ``e_lfanew`` bound check
    - PE signature verification
    - COFF file header (section count, optional-header size)
    - Optional-header magic (PE32 vs PE32+)
    - Section table (name, virtual size/address, raw size/offset, characteristics)
    - Import directory (DLL names and by-name function imports)
    - Overlay size (bytes trailing the last section)

Parsing is a linear pipeline of gates.  A file that fails a gate before the
section table is read becomes an :class:`InvalidImage`; failures while
walking imports are contained and only shrink the import sets.

Nothing here logs directly.  Callers may pass a ``diagnostics`` callable
that receives one human-readable line per contained failure.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
      https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
    - Pietrek, M. (2002). An In-Depth Look into the Win32 Portable
      Executable File Format. MSDN Magazine.
"""

from __future__ import annotations

import os
import struct
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, NamedTuple, Optional, Sequence, Union

from drmscan.core.models import (
    ImageDescriptor,
    ImageOutcome,
    InvalidImage,
    InvalidReason,
    Section,
)


DiagnosticSink = Callable[[str], None]


def null_sink(message: str) -> None:
    """Default diagnostic sink."""


# ---------------------------------------------------------------------------
# PE Constants
# ---------------------------------------------------------------------------

MIN_IMAGE_SIZE: int = 64

MZ_MAGIC: bytes = b"MZ"
PE_MAGIC: bytes = b"PE\x00\x00"
E_LFANEW_OFFSET: int = 0x3C

PE32_MAGIC: int = 0x10B      # PE32 (32-bit)
PE32PLUS_MAGIC: int = 0x20B  # PE32+ (64-bit)

COFF_HEADER_SIZE: int = 20
SECTION_HEADER_SIZE: int = 40
IMPORT_DESCRIPTOR_SIZE: int = 20

# Offset of the import entry of the data-directory array, measured from the
# start of the optional header.
IMPORT_DIRECTORY_OFFSET_PE32: int = 104
IMPORT_DIRECTORY_OFFSET_PE32PLUS: int = 120

MAX_THUNKS_PER_LIBRARY: int = 50
MAX_NAME_LENGTH: int = 256

ORDINAL_FLAG_32: int = 0x80000000
ORDINAL_FLAG_64: int = 0x8000000000000000
HINT_NAME_RVA_MASK: int = 0x7FFFFFFF

# Section characteristics
IMAGE_SCN_CNT_CODE: int = 0x00000020
IMAGE_SCN_CNT_INITIALIZED_DATA: int = 0x00000040
IMAGE_SCN_CNT_UNINITIALIZED_DATA: int = 0x00000080
IMAGE_SCN_MEM_EXECUTE: int = 0x20000000
IMAGE_SCN_MEM_READ: int = 0x40000000
IMAGE_SCN_MEM_WRITE: int = 0x80000000

# name bytes, VirtualSize, VirtualAddress, SizeOfRawData, PointerToRawData,
# 12 bytes of relocation / line-number fields, Characteristics
_SECTION_FMT: str = "<8sIIII12xI"


# ---------------------------------------------------------------------------
# Intermediate results
# ---------------------------------------------------------------------------

class ImageHeader(NamedTuple):
    """Header fields needed to locate the section table and import directory."""
    bitness: int
    pe_header_offset: int
    number_of_sections: int
    size_of_optional_header: int
    optional_header_start: int
    file_size: int

    @property
    def section_table_offset(self) -> int:
        return self.optional_header_start + self.size_of_optional_header

    @property
    def import_directory_offset(self) -> int:
        if self.bitness == 64:
            return self.optional_header_start + IMPORT_DIRECTORY_OFFSET_PE32PLUS
        return self.optional_header_start + IMPORT_DIRECTORY_OFFSET_PE32


class HeaderRejected(NamedTuple):
    """The stream is not a recognised PE image."""
    detail: str


class ImportDescriptor(NamedTuple):
    """One ``IMAGE_IMPORT_DESCRIPTOR`` (timestamp and forwarder chain dropped)."""
    original_first_thunk: int
    name_rva: int
    first_thunk: int


class ImportTable(NamedTuple):
    """Names collected from the import directory, in discovery order."""
    libraries: tuple[str, ...] = ()
    functions: tuple[str, ...] = ()


class TruncatedImageError(Exception):
    """A fixed-size structure ran past the end of the stream."""


# ---------------------------------------------------------------------------
# Low-level reads
# ---------------------------------------------------------------------------

def _read_exact(stream: BinaryIO, size: int) -> bytes:
    offset = stream.tell()
    data = stream.read(size)
    if len(data) != size:
        raise TruncatedImageError(
            f"needed {size} bytes at offset 0x{offset:x}, got {len(data)}"
        )
    return data


def _read_u16(stream: BinaryIO) -> int:
    return struct.unpack("<H", _read_exact(stream, 2))[0]


def _read_u32(stream: BinaryIO) -> int:
    return struct.unpack("<I", _read_exact(stream, 4))[0]


def _stream_length(stream: BinaryIO) -> int:
    stream.seek(0, os.SEEK_END)
    return stream.tell()


def read_c_string(stream: BinaryIO, max_length: int = MAX_NAME_LENGTH) -> str:
    """Read a NUL-terminated ASCII string at the current position.

    At most *max_length* bytes are consumed and a string stopped by that
    cap is returned as-is.  Reaching end of file before the terminator
    raises :class:`TruncatedImageError`.
    """
    offset = stream.tell()
    raw = stream.read(max_length)
    end = raw.find(b"\x00")
    if end != -1:
        raw = raw[:end]
    elif len(raw) < max_length:
        raise TruncatedImageError(f"unterminated string at offset 0x{offset:x}")
    return raw.decode("ascii", errors="replace")


# ---------------------------------------------------------------------------
# Header Reader
# ---------------------------------------------------------------------------

def read_header(stream: BinaryIO) -> Union[ImageHeader, HeaderRejected]:
    """Validate the DOS stub and PE signature, then decode the COFF header.

    Never raises for malformed input; every rejection is returned as a
    :class:`HeaderRejected` carrying the reason.
    """
    file_size = _stream_length(stream)
    if file_size < MIN_IMAGE_SIZE:
        return HeaderRejected(f"file too small ({file_size} bytes)")

    stream.seek(0)
    if stream.read(2) != MZ_MAGIC:
        return HeaderRejected("missing MZ signature")

    stream.seek(E_LFANEW_OFFSET)
    pe_offset = _read_u32(stream)
    if pe_offset >= file_size - 4:
        return HeaderRejected(f"PE header offset 0x{pe_offset:x} is past end of file")

    stream.seek(pe_offset)
    if stream.read(4) != PE_MAGIC:
        return HeaderRejected(f"missing PE signature at 0x{pe_offset:x}")

    try:
        _machine = _read_u16(stream)
        number_of_sections = _read_u16(stream)
        stream.seek(12, os.SEEK_CUR)  # timestamp, symbol table pointer, symbol count
        size_of_optional_header = _read_u16(stream)
        stream.seek(2, os.SEEK_CUR)  # characteristics

        optional_header_start = stream.tell()
        magic = _read_u16(stream)
    except TruncatedImageError as exc:
        return HeaderRejected(f"truncated COFF header: {exc}")

    # Unknown magic values (ROM images, garbage) are treated as PE32.
    bitness = 64 if magic == PE32PLUS_MAGIC else 32

    return ImageHeader(
        bitness=bitness,
        pe_header_offset=pe_offset,
        number_of_sections=number_of_sections,
        size_of_optional_header=size_of_optional_header,
        optional_header_start=optional_header_start,
        file_size=file_size,
    )


# ---------------------------------------------------------------------------
# Section Table Reader
# ---------------------------------------------------------------------------

def read_sections(stream: BinaryIO, header: ImageHeader) -> tuple[Section, ...]:
    """Decode ``header.number_of_sections`` 40-byte section headers.

    Section fields are not checked against the file size; consumers that
    dereference them must guard their own reads.

    Raises:
        TruncatedImageError: If the table itself runs past end of file.
    """
    stream.seek(header.section_table_offset)
    sections: list[Section] = []

    for _ in range(header.number_of_sections):
        (
            raw_name,
            virtual_size,
            virtual_address,
            raw_data_size,
            raw_data_pointer,
            characteristics,
        ) = struct.unpack(_SECTION_FMT, _read_exact(stream, SECTION_HEADER_SIZE))

        sections.append(Section(
            name=raw_name.rstrip(b"\x00").decode("ascii", errors="replace"),
            virtual_size=virtual_size,
            virtual_address=virtual_address,
            raw_data_size=raw_data_size,
            raw_data_pointer=raw_data_pointer,
            characteristics=characteristics,
        ))

    return tuple(sections)


# ---------------------------------------------------------------------------
# RVA Resolver
# ---------------------------------------------------------------------------

def resolve_rva(sections: Sequence[Section], rva: int) -> Optional[int]:
    """Translate a relative virtual address into a file offset.

    The first section in table order whose virtual range contains *rva*
    wins, even when later sections overlap it.

    Returns:
        The file offset, or ``None`` if no section maps *rva*.
    """
    for section in sections:
        if section.contains_rva(rva):
            return rva - section.virtual_address + section.raw_data_pointer
    return None


# ---------------------------------------------------------------------------
# Overlay Calculator
# ---------------------------------------------------------------------------

def compute_overlay(sections: Sequence[Section], file_size: int) -> int:
    """Bytes stored after the furthest-reaching section's raw data (>= 0)."""
    if not sections:
        return 0
    last_end = max(section.raw_end for section in sections)
    return max(0, file_size - last_end)


# ---------------------------------------------------------------------------
# Import Table Walker
# ---------------------------------------------------------------------------

def iter_import_descriptors(stream: BinaryIO, table_offset: int) -> Iterator[ImportDescriptor]:
    """Yield import descriptors until one with a zero name RVA.

    The only bound is the stream itself: a table that never terminates ends
    with :class:`TruncatedImageError` once it runs off the end of the file.
    """
    index = 0
    while True:
        stream.seek(table_offset + index * IMPORT_DESCRIPTOR_SIZE)
        original_first_thunk, _timestamp, _forwarder, name_rva, first_thunk = struct.unpack(
            "<IIIII", _read_exact(stream, IMPORT_DESCRIPTOR_SIZE)
        )
        if name_rva == 0:
            return
        yield ImportDescriptor(original_first_thunk, name_rva, first_thunk)
        index += 1


def iter_thunk_names(
    stream: BinaryIO,
    sections: Sequence[Section],
    thunk_rva: int,
    bitness: int,
) -> Iterator[str]:
    """Yield function names from one import lookup table.

    Reads at most :data:`MAX_THUNKS_PER_LIBRARY` entries.  A zero entry ends
    the table early; ordinal imports are counted but yield nothing.
    """
    thunk_offset = resolve_rva(sections, thunk_rva)
    if thunk_offset is None:
        return

    if bitness == 64:
        width, fmt, ordinal_flag = 8, "<Q", ORDINAL_FLAG_64
    else:
        width, fmt, ordinal_flag = 4, "<I", ORDINAL_FLAG_32

    for index in range(MAX_THUNKS_PER_LIBRARY):
        stream.seek(thunk_offset + index * width)
        value = struct.unpack(fmt, _read_exact(stream, width))[0]
        if value == 0:
            return
        if value & ordinal_flag:
            continue

        hint_offset = resolve_rva(sections, value & HINT_NAME_RVA_MASK)
        if hint_offset is None:
            continue
        stream.seek(hint_offset + 2)  # skip the 2-byte hint
        name = read_c_string(stream)
        if name:
            yield name


def walk_imports(
    stream: BinaryIO,
    header: ImageHeader,
    sections: Sequence[Section],
    diagnostics: DiagnosticSink = null_sink,
) -> ImportTable:
    """Collect imported DLL and function names, best effort.

    Any failure stops the walk but keeps every name found before it.
    DLL names are lower-cased; function names keep their case.
    """
    libraries: list[str] = []
    functions: list[str] = []

    try:
        stream.seek(header.import_directory_offset)
        import_rva, import_size = struct.unpack("<II", _read_exact(stream, 8))
        if import_rva == 0 or import_size == 0:
            return ImportTable()

        table_offset = resolve_rva(sections, import_rva)
        if table_offset is None:
            diagnostics(f"import directory RVA 0x{import_rva:x} maps to no section")
            return ImportTable()

        for descriptor in iter_import_descriptors(stream, table_offset):
            name_offset = resolve_rva(sections, descriptor.name_rva)
            if name_offset is None:
                continue

            stream.seek(name_offset)
            library = read_c_string(stream).lower()
            if library:
                libraries.append(library)

            if descriptor.original_first_thunk:
                for function in iter_thunk_names(
                    stream, sections, descriptor.original_first_thunk, header.bitness
                ):
                    functions.append(function)
    except Exception as exc:
        diagnostics(
            f"import walk stopped after {len(libraries)} libraries: "
            f"{type(exc).__name__}: {exc}"
        )

    return ImportTable(tuple(libraries), tuple(functions))


# ---------------------------------------------------------------------------
# Top-level parse
# ---------------------------------------------------------------------------

def parse_image(
    stream: BinaryIO,
    path: str = "<stream>",
    diagnostics: DiagnosticSink = null_sink,
) -> ImageOutcome:
    """Run header, section, overlay and import stages over an open stream."""
    try:
        header = read_header(stream)
        if isinstance(header, HeaderRejected):
            diagnostics(f"{path}: {header.detail}")
            return InvalidImage(path=path, detail=header.detail)

        try:
            sections = read_sections(stream, header)
        except TruncatedImageError as exc:
            detail = f"truncated section table: {exc}"
            diagnostics(f"{path}: {detail}")
            return InvalidImage(path=path, detail=detail)

        overlay_size = compute_overlay(sections, header.file_size)
        imports = walk_imports(stream, header, sections, diagnostics)
    except (TruncatedImageError, struct.error, ValueError) as exc:
        diagnostics(f"{path}: parse error: {exc}")
        return InvalidImage(path=path, detail=str(exc))

    return ImageDescriptor(
        path=path,
        bitness=header.bitness,
        sections=sections,
        imported_libraries=frozenset(imports.libraries),
        imported_functions=frozenset(imports.functions),
        overlay_size=overlay_size,
        file_size=header.file_size,
    )


def analyze(
    path: Union[str, Path],
    diagnostics: DiagnosticSink = null_sink,
) -> ImageOutcome:
    """Parse the PE image at *path* without loading or executing it.

    Each call opens its own read-only handle, so concurrent calls need no
    locking.  On Windows, Python opens files in share-read/write mode, so
    a running launcher holding the executable does not block the read.

    Returns:
        :class:`ImageDescriptor` for a recognised image, otherwise
        :class:`InvalidImage`.  Never raises.
    """
    path_str = str(path)
    try:
        with open(path, "rb") as stream:
            return parse_image(stream, path_str, diagnostics)
    except (OSError, ValueError) as exc:
        diagnostics(f"{path_str}: cannot read: {exc}")
        return InvalidImage(
            path=path_str,
            reason=InvalidReason.RESOURCE,
            detail=str(exc),
        )


def describe_characteristics(characteristics: int) -> str:
    """Convert a section characteristics bitmask to a readable string.

    Returns:
        Flags string like ``"R X CODE"``, or ``"-"`` when none apply.
    """
    parts: list[str] = []
    if characteristics & IMAGE_SCN_MEM_READ:
        parts.append("R")
    if characteristics & IMAGE_SCN_MEM_WRITE:
        parts.append("W")
    if characteristics & IMAGE_SCN_MEM_EXECUTE:
        parts.append("X")
    if characteristics & IMAGE_SCN_CNT_CODE:
        parts.append("CODE")
    if characteristics & IMAGE_SCN_CNT_INITIALIZED_DATA:
        parts.append("IDATA")
    if characteristics & IMAGE_SCN_CNT_UNINITIALIZED_DATA:
        parts.append("UDATA")
    return " ".join(parts) if parts else "-"
