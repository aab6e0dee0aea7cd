"""Shared fixtures: synthetic PE32 / PE32+ images written to ``tmp_path``."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

import pytest

from scancore.logger import ScanLogger


PE_OFFSET = 0x80
FILE_ALIGNMENT = 0x200
SECTION_ALIGNMENT = 0x1000
OPTIONAL_HEADER_SIZE_32 = 224
OPTIONAL_HEADER_SIZE_64 = 240

SCN_CODE_RX = 0x60000020
SCN_DATA_R = 0x40000040


@dataclass
class SectionSpec:
    name: str
    data: bytes = b""
    characteristics: int = SCN_DATA_R
    virtual_address: Optional[int] = None
    virtual_size: Optional[int] = None
    raw_data_pointer: Optional[int] = None


ImportSpec = dict[str, Sequence[Union[str, int]]]


def _align(value: int, alignment: int) -> int:
    return (value + alignment - 1) // alignment * alignment


def _import_section(imports: ImportSpec, base_rva: int, bitness: int) -> tuple[bytes, int]:
    """Build an ``.idata`` payload: descriptors, lookup tables, then names."""
    width, fmt = (8, "<Q") if bitness == 64 else (4, "<I")
    ordinal_flag = 1 << 63 if bitness == 64 else 0x80000000

    descriptors_size = (len(imports) + 1) * 20
    lookup_offsets: list[int] = []
    cursor = descriptors_size
    for funcs in imports.values():
        lookup_offsets.append(cursor)
        cursor += (len(funcs) + 1) * width

    data = bytearray(cursor)

    def append(blob: bytes) -> int:
        offset = len(data)
        data.extend(blob)
        if len(data) % 2:
            data.append(0)
        return offset

    for index, (dll, funcs) in enumerate(imports.items()):
        name_offset = append(dll.encode("ascii") + b"\x00")
        lookup = lookup_offsets[index]
        for slot, func in enumerate(funcs):
            if isinstance(func, int):
                value = ordinal_flag | func
            else:
                value = base_rva + append(b"\x00\x00" + func.encode("ascii") + b"\x00")
            struct.pack_into(fmt, data, lookup + slot * width, value)
        struct.pack_into(
            "<IIIII", data, index * 20,
            base_rva + lookup, 0, 0, base_rva + name_offset, base_rva + lookup,
        )

    return bytes(data), descriptors_size


def build_pe(
    *,
    bitness: int = 32,
    sections: Sequence[SectionSpec] = (),
    imports: Optional[ImportSpec] = None,
    overlay: bytes = b"",
    import_directory: Optional[tuple[int, int]] = None,
    magic: Optional[int] = None,
) -> bytes:
    """Assemble a minimal but well-formed PE image.

    Sections get consecutive 4 KiB-aligned RVAs and 512-byte-aligned raw
    data unless the SectionSpec overrides them.  When *imports* is given an
    ``.idata`` section is appended and the import data directory points
    at it.
    """
    specs = list(sections)
    rvas: list[int] = []
    next_rva = SECTION_ALIGNMENT
    for spec in specs:
        rva = spec.virtual_address if spec.virtual_address is not None else next_rva
        rvas.append(rva)
        extent = max(len(spec.data), spec.virtual_size or 0, 1)
        next_rva = max(next_rva, _align(rva + extent, SECTION_ALIGNMENT))

    if imports:
        payload, descriptors_size = _import_section(imports, next_rva, bitness)
        specs.append(SectionSpec(".idata", payload, SCN_DATA_R, virtual_address=next_rva))
        rvas.append(next_rva)
        if import_directory is None:
            import_directory = (next_rva, descriptors_size)

    optional_size = OPTIONAL_HEADER_SIZE_64 if bitness == 64 else OPTIONAL_HEADER_SIZE_32
    optional_start = PE_OFFSET + 4 + 20
    table_offset = optional_start + optional_size
    headers_size = _align(table_offset + 40 * len(specs), FILE_ALIGNMENT)

    image = bytearray(headers_size)
    image[0:2] = b"MZ"
    struct.pack_into("<I", image, 0x3C, PE_OFFSET)
    image[PE_OFFSET:PE_OFFSET + 4] = b"PE\x00\x00"
    struct.pack_into(
        "<HHIIIHH", image, PE_OFFSET + 4,
        0x8664 if bitness == 64 else 0x14C, len(specs), 0, 0, 0, optional_size, 0x0102,
    )
    if magic is None:
        magic = 0x20B if bitness == 64 else 0x10B
    struct.pack_into("<H", image, optional_start, magic)
    if import_directory is not None:
        directory_offset = optional_start + (120 if bitness == 64 else 104)
        struct.pack_into("<II", image, directory_offset, *import_directory)

    for index, spec in enumerate(specs):
        rva = rvas[index]
        raw_size = _align(len(spec.data), FILE_ALIGNMENT)
        raw_pointer = spec.raw_data_pointer if spec.raw_data_pointer is not None else len(image)
        virtual_size = spec.virtual_size if spec.virtual_size is not None else max(len(spec.data), 1)

        struct.pack_into(
            "<8sIIII12xI", image, table_offset + index * 40,
            spec.name.encode("ascii"), virtual_size, rva, raw_size, raw_pointer,
            spec.characteristics,
        )
        if spec.raw_data_pointer is None and raw_size:
            image.extend(spec.data.ljust(raw_size, b"\x00"))

    image.extend(overlay)
    return bytes(image)


@pytest.fixture
def pe_bytes() -> Callable[..., bytes]:
    """The :func:`build_pe` helper."""
    return build_pe


@pytest.fixture
def pe_file(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a built image to ``tmp_path`` (or *directory*)."""

    def _write(name: str = "sample.exe", directory: Optional[Path] = None, **kwargs) -> Path:
        target_dir = directory or tmp_path
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        path.write_bytes(build_pe(**kwargs))
        return path

    return _write


@pytest.fixture
def quiet_logger() -> ScanLogger:
    return ScanLogger("tests", log_level="DEBUG", console_output=False)


@pytest.fixture
def section_spec() -> type[SectionSpec]:
    return SectionSpec
