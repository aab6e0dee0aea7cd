"""
Section Entropy Analyzer
=========================

Computes Shannon entropy over the stored bytes of PE sections to flag
packed, encrypted or compressed regions.

    H(X) = -sum_{i=0}^{255} p(x_i) * log2(p(x_i))

Only the first :data:`ENTROPY_SAMPLE_SIZE` bytes of a section are sampled,
which bounds the cost on sections hundreds of megabytes long.

References:
    - Shannon, C. E. (1948). A Mathematical Theory of Communication.
    - Lyda, R., & Hamrock, J. (2007). Using Entropy Analysis to Find
      Encrypted and Packed Malware. IEEE Security & Privacy, 5(2), 40-45.
"""

from __future__ import annotations

from typing import BinaryIO

from scancore.math_utils import shannon_entropy

from drmscan.core.models import ImageDescriptor, Section
from drmscan.parsers.pe_parser import DiagnosticSink, null_sink


ENTROPY_SAMPLE_SIZE: int = 65536

# ---------------------------------------------------------------------------
# Entropy classification thresholds
# ---------------------------------------------------------------------------

ENTROPY_NULL: float = 1.0
ENTROPY_CODE_HIGH: float = 4.5
ENTROPY_STRUCTURED_HIGH: float = 6.5
ENTROPY_COMPRESSED_HIGH: float = 7.0
ENTROPY_PACKED_HIGH: float = 7.5


def classify_entropy(entropy: float) -> str:
    """Classify an entropy value into a human-readable category.

    Args:
        entropy: Shannon entropy in [0.0, 8.0].

    Returns:
        Classification string.
    """
    if entropy < ENTROPY_NULL:
        return "null/empty"
    elif entropy < ENTROPY_CODE_HIGH:
        return "code/data"
    elif entropy < ENTROPY_STRUCTURED_HIGH:
        return "structured data"
    elif entropy < ENTROPY_COMPRESSED_HIGH:
        return "compressed or high-entropy code"
    elif entropy < ENTROPY_PACKED_HIGH:
        return "likely packed"
    else:
        return "encrypted/compressed"


def section_entropy(
    stream: BinaryIO,
    section: Section,
    diagnostics: DiagnosticSink = null_sink,
) -> float:
    """Entropy of the first 64 KiB of *section*'s raw data in *stream*.

    A section with no raw data, or whose pointer lies past end of file,
    has entropy 0.0.  Read failures are reported and also yield 0.0.
    """
    if section.raw_data_size == 0:
        return 0.0
    try:
        stream.seek(section.raw_data_pointer)
        sample = stream.read(min(section.raw_data_size, ENTROPY_SAMPLE_SIZE))
    except (OSError, ValueError) as exc:
        diagnostics(f"entropy read failed for section {section.name!r}: {exc}")
        return 0.0
    return shannon_entropy(sample)


def compute_entropy(
    descriptor: ImageDescriptor,
    section: Section,
    diagnostics: DiagnosticSink = null_sink,
) -> float:
    """Entropy of one section of an already-parsed image, in [0, 8]."""
    try:
        with open(descriptor.path, "rb") as stream:
            return section_entropy(stream, section, diagnostics)
    except (OSError, ValueError) as exc:
        diagnostics(f"{descriptor.path}: cannot reopen for entropy: {exc}")
        return 0.0


def compute_section_entropies(
    descriptor: ImageDescriptor,
    diagnostics: DiagnosticSink = null_sink,
) -> list[tuple[Section, float]]:
    """Entropy of every section, in table order, using a single file handle."""
    try:
        with open(descriptor.path, "rb") as stream:
            return [
                (section, section_entropy(stream, section, diagnostics))
                for section in descriptor.sections
            ]
    except (OSError, ValueError) as exc:
        diagnostics(f"{descriptor.path}: cannot reopen for entropy: {exc}")
        return [(section, 0.0) for section in descriptor.sections]
