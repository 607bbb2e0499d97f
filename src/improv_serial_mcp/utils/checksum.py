"""8-bit additive checksum used by Improv Serial frames."""

from __future__ import annotations


def checksum8(data: bytes) -> int:
    """Return the sum of all bytes in ``data`` truncated to 8 bits."""
    return sum(data) & 0xFF
