"""Frame builder and stream de-framer for Improv Serial.

Frame layout::

    +---------+---------+------+--------+-------------------+----------+
    |  Magic  | Version | Type | Length |      Payload      | Checksum |
    | 6 bytes | 1 byte  | 1 B  |  1 B   |  ``Length`` bytes |  1 byte  |
    +---------+---------+------+--------+-------------------+----------+

- Magic: ASCII ``IMPROV``
- Version: ``0x01``
- Checksum: 8-bit sum of every byte before it (magic through payload)

Frames share the serial line with the device's plain-text log output, so
the de-framer has to find frames inside arbitrary text without any
delimiter other than the magic and the declared length.
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum

from ..utils.checksum import checksum8

MAGIC = b"IMPROV"
PROTOCOL_VERSION = 0x01
HEADER_SIZE = 9  # magic(6) + version(1) + type(1) + length(1)
CHECKSUM_SIZE = 1
MAX_PAYLOAD_SIZE = 0xFF
NEWLINE = 0x0A


def frame_length(payload_length: int) -> int:
    """Total size on the wire of a frame carrying ``payload_length`` bytes."""
    return HEADER_SIZE + payload_length + CHECKSUM_SIZE


def build_frame(message_type: int, payload: bytes = b"") -> bytes:
    """Build a complete frame.

    Args:
        message_type: One of :class:`~.commands.MessageType`.
        payload: Message-specific payload, at most 255 bytes.

    Returns:
        Header, payload and trailing checksum byte.

    Raises:
        ValueError: If the payload does not fit the 1-byte length field.
    """
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ValueError(
            f"Payload must be at most {MAX_PAYLOAD_SIZE} bytes, got {len(payload)}"
        )
    body = MAGIC + bytes([PROTOCOL_VERSION, message_type, len(payload)]) + payload
    return body + bytes([checksum8(body)])


class _Sync(Enum):
    UNKNOWN = "unknown"
    PROTOCOL = "protocol"
    NON_PROTOCOL = "non_protocol"


class FrameAccumulator:
    """Incrementally split a serial byte stream into candidate frames.

    Bytes are consumed one at a time. Runs of bytes that do not start with
    the magic are dropped through the next newline. Candidate frames are
    returned without checksum or version validation; that is the parser's
    job.

    Usage::

        framer = FrameAccumulator()
        for chunk in chunks:
            for frame in framer.feed(chunk):
                packet = parse_packet(frame)
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._pending = bytearray()
        self._sync = _Sync.UNKNOWN
        self._expected = 0

    @property
    def buffer(self) -> bytes:
        """Bytes accumulated toward the current frame."""
        return bytes(self._buffer)

    @property
    def in_frame(self) -> bool:
        return self._sync is _Sync.PROTOCOL

    def reset(self) -> None:
        """Drop all buffered state."""
        self._buffer.clear()
        self._pending.clear()
        self._sync = _Sync.UNKNOWN
        self._expected = 0

    def feed(self, data: bytes) -> Iterator[bytes]:
        """Add ``data`` and lazily yield every frame completed so far.

        Input is queued before iteration starts, so bytes left over by a
        generator that was not exhausted are picked up by the next call.
        """
        self._pending.extend(data)
        while self._pending:
            byte = self._pending[0]
            del self._pending[0]
            frame = self._push(byte)
            if frame is not None:
                yield frame

    def _push(self, byte: int) -> bytes | None:
        if self._sync is _Sync.NON_PROTOCOL:
            if byte == NEWLINE:
                self._sync = _Sync.UNKNOWN
            return None

        if self._sync is _Sync.PROTOCOL:
            self._buffer.append(byte)
            if len(self._buffer) < self._expected:
                return None
            frame = bytes(self._buffer)
            self._buffer.clear()
            self._sync = _Sync.UNKNOWN
            return frame

        # The length byte is the only header position where 0x0A is valid
        # (a payload length of 10); anywhere else it ends the line.
        if byte == NEWLINE and not (
            len(self._buffer) == HEADER_SIZE - 1 and self._buffer[: len(MAGIC)] == MAGIC
        ):
            self._buffer.clear()
            return None

        self._buffer.append(byte)
        if len(self._buffer) < HEADER_SIZE:
            return None

        if self._buffer[: len(MAGIC)] != MAGIC:
            self._buffer.clear()
            self._sync = _Sync.NON_PROTOCOL
            return None

        self._sync = _Sync.PROTOCOL
        self._expected = frame_length(self._buffer[HEADER_SIZE - 1])
        return None
