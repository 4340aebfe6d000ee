# noqa: D401
"""Stable content fingerprints for image bytes."""

from __future__ import annotations

from typing import Union

import numpy as np

DEFAULT_SAMPLE_SIZE = 1000

# FNV-1a parameters, see http://www.isthe.com/chongo/tech/comp/fnv/
FNV_PARAMS = {
    32: (0x811C9DC5, 0x01000193),
    64: (0xCBF29CE484222325, 0x100000001B3),
}


def fnv1a(data: bytes, bits: int = 32) -> int:
    """Compute the FNV-1a hash of ``data``.

    Args:
        data: Bytes to hash
        bits: Hash width, 32 or 64

    Returns:
        Unsigned integer hash value
    """
    try:
        offset_basis, prime = FNV_PARAMS[bits]
    except KeyError:
        raise ValueError(f"Unsupported FNV width: {bits}") from None
    mask = (1 << bits) - 1
    value = offset_basis
    for byte in data:
        value ^= byte
        value = (value * prime) & mask
    return value


def to_base36(value: int) -> str:
    return np.base_repr(value, base=36).lower()


def sample_bytes(data: bytes, sample_size: int = DEFAULT_SAMPLE_SIZE) -> bytes:
    """Pick at most ``sample_size`` evenly spaced bytes from ``data``."""
    if sample_size < 1:
        raise ValueError("sample_size must be positive")
    stride = max(1, len(data) // sample_size)
    return data[::stride][:sample_size]


def fingerprint(
    image_bytes: Union[bytes, bytearray, memoryview],
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    bits: int = 32,
) -> str:
    """Derive a short, platform-independent identifier from image content.

    Equal byte sequences always produce equal fingerprints; the cost is
    bounded by ``sample_size`` regardless of input length.
    """
    data = bytes(image_bytes)
    return to_base36(fnv1a(sample_bytes(data, sample_size), bits=bits))


__all__ = ["DEFAULT_SAMPLE_SIZE", "fingerprint", "fnv1a", "sample_bytes", "to_base36"]
