"""
ScanCore Mathematical Utilities
================================

Byte-distribution statistics backed by NumPy.

References:
    [1] Shannon, C. E. (1948). A Mathematical Theory of Communication.
        Bell System Technical Journal, 27(3), 379-423.
    [2] Lyda, R. & Hamrock, J. (2007). Using Entropy Analysis to Find
        Encrypted and Packed Malware. IEEE Security & Privacy, 5(2).
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


IntArray = NDArray[np.int64]
FloatArray = NDArray[np.floating]


def byte_histogram(data: bytes) -> IntArray:
    """Count occurrences of each byte value.

    Args:
        data: Raw byte sequence.

    Returns:
        Array of length 256 where index *b* holds the count of byte *b*.
    """
    if not data:
        return np.zeros(256, dtype=np.int64)
    arr = np.frombuffer(data, dtype=np.uint8)
    return np.bincount(arr, minlength=256).astype(np.int64)


def frequency_distribution(data: bytes) -> FloatArray:
    """Compute the normalised byte-frequency distribution.

    Args:
        data: Raw byte sequence.

    Returns:
        Array of length 256 summing to 1.0 (all zeros for empty input).
    """
    counts = byte_histogram(data).astype(np.float64)
    total = counts.sum()
    if total == 0:
        return counts
    return counts / total


def shannon_entropy(data: bytes) -> float:
    """Compute the Shannon entropy of a byte sequence.

    .. math::

        H = -\\sum_{i=0}^{255} p_i \\, \\log_2(p_i)

    where :math:`p_i` is the relative frequency of byte value *i*, summed
    over values that actually occur.  The result is in bits per byte and
    ranges from 0.0 (constant stream) to 8.0 (uniform over 256 symbols).

    Reference:
        Shannon, C. E. (1948). A Mathematical Theory of Communication.

    Args:
        data: Raw byte sequence to analyse.

    Returns:
        Shannon entropy in bits per byte. Returns 0.0 for empty input.
    """
    if not data:
        return 0.0

    probs = frequency_distribution(data)
    probs = probs[probs > 0.0]
    entropy = float(-(probs * np.log2(probs)).sum())
    return entropy if entropy > 0.0 else 0.0
