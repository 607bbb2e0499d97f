"""Frame builders and an in-memory transport shared by the tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

from improv_serial_mcp.protocol.commands import MessageType
from improv_serial_mcp.protocol.framing import build_frame
from improv_serial_mcp.protocol.parser import RpcPacket, parse_packet


def state_frame(state: int) -> bytes:
    return build_frame(MessageType.CURRENT_STATE, bytes([state]))


def error_frame(code: int) -> bytes:
    return build_frame(MessageType.ERROR_STATE, bytes([code]))


def encode_fields(fields: Iterable[str]) -> bytes:
    data = b""
    for value in fields:
        encoded = value.encode("utf-8")
        data += bytes([len(encoded)]) + encoded
    return data


def result_frame(command: int, fields: Iterable[str] = ()) -> bytes:
    data = encode_fields(fields)
    return build_frame(MessageType.RPC_RESULT, bytes([command, len(data)]) + data)


def written_rpc(data: bytes) -> RpcPacket:
    """Decode bytes written by the session (frame plus newline)."""
    assert data.endswith(b"\n")
    packet = parse_packet(data[:-1])
    assert isinstance(packet, RpcPacket)
    return packet


Responder = Callable[[RpcPacket], Iterable[bytes]]


class FakeTransport:
    """Byte source and sink backed by a queue.

    ``responder`` is called for every RPC written and returns the chunks
    the "device" sends back.
    """

    def __init__(self, responder: Responder | None = None) -> None:
        self.incoming: asyncio.Queue[bytes] = asyncio.Queue()
        self.written: list[bytes] = []
        self.responder = responder

    async def read(self, size: int) -> bytes:
        return await self.incoming.get()

    async def write(self, data: bytes) -> None:
        self.written.append(bytes(data))
        if self.responder is not None:
            for chunk in self.responder(written_rpc(data)):
                self.incoming.put_nowait(chunk)

    def feed(self, *chunks: bytes) -> None:
        for chunk in chunks:
            self.incoming.put_nowait(chunk)

    def end(self) -> None:
        """Simulate the peer closing the stream."""
        self.incoming.put_nowait(b"")
