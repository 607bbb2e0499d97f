"""Exception types for Improv Serial protocol and session errors.

Frame-level errors (``ImprovProtocolError`` and subclasses) are raised by
the parser and swallowed by the session's read loop after logging. All
other errors surface to whoever issued the failing operation.
"""

from __future__ import annotations

from .commands import error_name


class ImprovError(Exception):
    """Base exception for all Improv Serial errors."""


class ImprovProtocolError(ImprovError):
    """A received frame could not be turned into a packet."""


class PacketDecodeError(ImprovProtocolError):
    """Frame is structurally invalid.

    Attributes:
        reason: Short failure tag (e.g. ``"bad_magic"``, ``"truncated_field"``).
        data_preview: First 16 bytes of the offending frame.
    """

    def __init__(self, reason: str, data: bytes = b""):
        self.reason = reason
        # Frames may carry a Wi-Fi password; keep only a short preview.
        self.data_preview = bytes(data[:16]) if data else b""
        super().__init__(f"Packet decode failed: {reason}")


class ChecksumMismatch(ImprovProtocolError):
    """Checksum byte does not match the sum of the preceding bytes."""

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Received invalid checksum 0x{received:02X}. Expected 0x{expected:02X}"
        )


class UnsupportedVersion(ImprovProtocolError):
    """Frame declares a protocol version this client does not speak."""

    def __init__(self, version: int):
        self.version = version
        super().__init__(f"Received unsupported version {version}")


class RpcError(ImprovError):
    """The device reported an error while an RPC was pending.

    The ``TIMEOUT`` code is also used when a caller-supplied timeout expires.
    """

    def __init__(self, code: int):
        self.code = code
        self.name = error_name(code)
        super().__init__(self.name)


class CallInProgress(ImprovError):
    """Another RPC that expects a response is still pending."""

    def __init__(self) -> None:
        super().__init__("Only 1 RPC command that requires feedback can be active")


class DeviceNotDetected(ImprovError):
    """No Improv state was received during initialization."""

    def __init__(self) -> None:
        super().__init__("Improv Wi-Fi Serial not detected")


class ConnectionClosed(ImprovError):
    """The read loop ended while an RPC was still pending."""

    def __init__(self) -> None:
        super().__init__("Connection closed while waiting for a response")


class PortNotReady(ImprovError):
    """The byte source or sink is missing."""

    def __init__(self, detail: str = "Port is not ready") -> None:
        super().__init__(detail)
