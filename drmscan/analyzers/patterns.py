"""
Byte-Pattern Scanner
=====================

Streaming existence check for literal strings anywhere in a file.

The file is read in fixed 64 KiB chunks.  The last ``len(needle) - 1``
bytes of each buffer are carried into the next one, so a match that
straddles a chunk boundary is still seen, while memory stays bounded by
one chunk plus the carry.

Case-insensitive matching folds ASCII letters only (``bytes.lower``), on
both the needle and the data.
"""

from __future__ import annotations

from typing import BinaryIO

from drmscan.core.models import ImageDescriptor
from drmscan.parsers.pe_parser import DiagnosticSink, null_sink


SCAN_CHUNK_SIZE: int = 64 * 1024


def encode_literal(literal: str) -> bytes:
    """ASCII bytes of *literal*; non-ASCII characters become ``?``."""
    return literal.encode("ascii", errors="replace")


def stream_contains(
    stream: BinaryIO,
    needle: bytes,
    case_insensitive: bool = True,
    chunk_size: int = SCAN_CHUNK_SIZE,
) -> bool:
    """Return ``True`` at the first occurrence of *needle* in *stream*.

    Scanning starts at the stream's current position.  An empty needle
    never matches.
    """
    if not needle:
        return False
    if case_insensitive:
        needle = needle.lower()

    carry_len = len(needle) - 1
    carry = b""
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            return False
        if case_insensitive:
            chunk = chunk.lower()
        buffer = carry + chunk
        if needle in buffer:
            return True
        carry = buffer[-carry_len:] if carry_len else b""


def contains_pattern(
    descriptor: ImageDescriptor,
    literal: str,
    case_insensitive: bool = True,
    diagnostics: DiagnosticSink = null_sink,
) -> bool:
    """Whether *literal* occurs anywhere in the image file.

    Read errors are reported through *diagnostics* and count as no match.
    """
    if not literal:
        return False
    try:
        with open(descriptor.path, "rb") as stream:
            return stream_contains(stream, encode_literal(literal), case_insensitive)
    except (OSError, ValueError) as exc:
        diagnostics(f"{descriptor.path}: pattern scan for {literal!r} failed: {exc}")
        return False
