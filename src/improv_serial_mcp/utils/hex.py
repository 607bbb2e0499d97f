"""Hex formatting for debug output."""

from __future__ import annotations

from collections.abc import Iterable


def to_hex(value: int, size: int = 2) -> str:
    """Format an integer as ``0x``-prefixed, zero-padded upper-case hex.

    >>> to_hex(10)
    '0x0A'
    >>> to_hex(-1)
    '-0x01'
    """
    digits = f"{abs(value):X}".rjust(size, "0")
    return f"-0x{digits}" if value < 0 else f"0x{digits}"


def hex_formatter(data: Iterable[int]) -> str:
    """Render a byte sequence as ``[0x49, 0x4D, ...]``."""
    return "[" + ", ".join(to_hex(b) for b in data) + "]"
