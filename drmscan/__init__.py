"""
drmscan -- PE/COFF Protection Signal Inspector
===============================================

drmscan reads Windows PE/COFF executables without loading or running
them and extracts the structural signals used to recognise DRM and
packers: architecture, section table, imported DLLs and functions,
overlay size, per-section entropy, and literal-string presence.

Capabilities:
    - Streaming PE32 / PE32+ header, section and import-table parsing
    - RVA to file-offset translation
    - Overlay size calculation
    - Sampled per-section Shannon entropy
    - Chunked case-insensitive literal search
    - Game-directory DRM classification and emulator compatibility scoring
    - Rich console output and JSON reports

References:
    - Microsoft. (2024). PE Format.
    - Shannon, C. E. (1948). A Mathematical Theory of Communication.
"""

from drmscan.analyzers.entropy_map import compute_entropy
from drmscan.analyzers.patterns import contains_pattern
from drmscan.core.models import ImageDescriptor, InvalidImage, InvalidReason, Section
from drmscan.parsers.pe_parser import analyze

__version__ = "1.0.0"
__all__ = [
    "analyze",
    "compute_entropy",
    "contains_pattern",
    "ImageDescriptor",
    "InvalidImage",
    "InvalidReason",
    "Section",
]
