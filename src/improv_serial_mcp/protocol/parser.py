"""Packet decoding for frames received from the device."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.device import DeviceInfo, NetworkEntry
from ..utils.checksum import checksum8
from .commands import DeviceState, ErrorCode, MessageType, RpcCommand, to_error_code
from .exceptions import ChecksumMismatch, PacketDecodeError, UnsupportedVersion
from .framing import CHECKSUM_SIZE, HEADER_SIZE, MAGIC, PROTOCOL_VERSION


@dataclass
class StatePacket:
    """CURRENT_STATE (0x01)."""

    state: DeviceState


@dataclass
class ErrorPacket:
    """ERROR_STATE (0x02). Unknown codes are kept as plain ints."""

    error: ErrorCode | int


@dataclass
class RpcPacket:
    """RPC (0x03) request, as sent by a client."""

    command: RpcCommand | int
    data: bytes = b""


@dataclass
class RpcResultPacket:
    """RPC_RESULT (0x04). An empty ``fields`` list ends a streamed response."""

    command: RpcCommand | int
    fields: list[str] = field(default_factory=list)


Packet = StatePacket | ErrorPacket | RpcPacket | RpcResultPacket


def _command(value: int) -> RpcCommand | int:
    try:
        return RpcCommand(value)
    except ValueError:
        return value


def parse_fields(data: bytes) -> list[str]:
    """Split a sequence of length-prefixed UTF-8 strings."""
    fields: list[str] = []
    idx = 0
    while idx < len(data):
        length = data[idx]
        end = idx + 1 + length
        if end > len(data):
            raise PacketDecodeError("truncated_field", data)
        fields.append(data[idx + 1 : end].decode("utf-8", errors="replace"))
        idx = end
    return fields


def _parse_state(payload: bytes, frame: bytes) -> StatePacket:
    if len(payload) < 1:
        raise PacketDecodeError("empty_state", frame)
    try:
        return StatePacket(state=DeviceState(payload[0]))
    except ValueError:
        raise PacketDecodeError(f"unknown_state_0x{payload[0]:02X}", frame) from None


def _parse_error(payload: bytes, frame: bytes) -> ErrorPacket:
    if len(payload) < 1:
        raise PacketDecodeError("empty_error", frame)
    return ErrorPacket(error=to_error_code(payload[0]))


def _parse_rpc(payload: bytes, frame: bytes) -> RpcPacket:
    if len(payload) < 2 or payload[1] != len(payload) - 2:
        raise PacketDecodeError("rpc_length_mismatch", frame)
    return RpcPacket(command=_command(payload[0]), data=payload[2:])


def _parse_rpc_result(payload: bytes, frame: bytes) -> RpcResultPacket:
    if len(payload) < 2:
        raise PacketDecodeError("short_rpc_result", frame)
    total = payload[1]
    if 2 + total > len(payload):
        raise PacketDecodeError("rpc_result_length_mismatch", frame)
    return RpcResultPacket(
        command=_command(payload[0]),
        fields=parse_fields(payload[2 : 2 + total]),
    )


_PARSERS = {
    MessageType.CURRENT_STATE: _parse_state,
    MessageType.ERROR_STATE: _parse_error,
    MessageType.RPC: _parse_rpc,
    MessageType.RPC_RESULT: _parse_rpc_result,
}


def parse_packet(frame: bytes) -> Packet:
    """Validate a complete frame and decode it into a packet.

    Args:
        frame: One frame as produced by :class:`~.framing.FrameAccumulator`.

    Raises:
        PacketDecodeError: Magic, length or payload structure is wrong.
        ChecksumMismatch: The trailing checksum does not match.
        UnsupportedVersion: The version byte is not ``0x01``.
    """
    if len(frame) < HEADER_SIZE + CHECKSUM_SIZE:
        raise PacketDecodeError("too_short", frame)
    if frame[: len(MAGIC)] != MAGIC:
        raise PacketDecodeError("bad_magic", frame)

    length = frame[HEADER_SIZE - 1]
    if len(frame) != HEADER_SIZE + length + CHECKSUM_SIZE:
        raise PacketDecodeError("length_mismatch", frame)

    expected = checksum8(frame[:-1])
    if frame[-1] != expected:
        raise ChecksumMismatch(expected=expected, received=frame[-1])

    version = frame[len(MAGIC)]
    if version != PROTOCOL_VERSION:
        raise UnsupportedVersion(version)

    try:
        message_type = MessageType(frame[len(MAGIC) + 1])
    except ValueError:
        raise PacketDecodeError("unknown_type", frame) from None

    payload = frame[HEADER_SIZE:-1]
    return _PARSERS[message_type](payload, frame)


def parse_device_info(fields: list[str]) -> DeviceInfo:
    """Build :class:`DeviceInfo` from a REQUEST_INFO result.

    Fields arrive as firmware name, firmware version, chip family, device name.
    """
    if len(fields) < 4:
        raise PacketDecodeError(f"info_expected_4_fields_got_{len(fields)}")
    firmware, version, chip_family, name = fields[:4]
    return DeviceInfo(firmware=firmware, version=version, chip_family=chip_family, name=name)


def parse_network(fields: list[str]) -> NetworkEntry:
    """Build :class:`NetworkEntry` from one ``[name, rssi, secured]`` record."""
    if len(fields) < 3:
        raise PacketDecodeError(f"network_expected_3_fields_got_{len(fields)}")
    name, rssi, secured = fields[:3]
    try:
        rssi_value = int(rssi)
    except ValueError:
        raise PacketDecodeError(f"bad_rssi_{rssi!r}") from None
    return NetworkEntry(name=name, rssi=rssi_value, secured=secured == "YES")
