"""Protocol constants and RPC request builders.

Message types, device states and error codes are single bytes on the wire.
RPC commands are carried inside an RPC frame's payload as
``[command, data_length, *data]`` and echoed back in RPC_RESULT frames.
"""

from __future__ import annotations

from enum import IntEnum

from .framing import MAX_PAYLOAD_SIZE, build_frame


class MessageType(IntEnum):
    """Frame message types."""

    CURRENT_STATE = 0x01  # device -> client
    ERROR_STATE = 0x02  # device -> client
    RPC = 0x03  # client -> device
    RPC_RESULT = 0x04  # device -> client


class DeviceState(IntEnum):
    """Provisioning state reported by the device."""

    READY = 0x02
    PROVISIONING = 0x03
    PROVISIONED = 0x04


class ErrorCode(IntEnum):
    """Error state reported by the device."""

    NO_ERROR = 0x00
    INVALID_RPC_PACKET = 0x01
    UNKNOWN_RPC_COMMAND = 0x02
    UNABLE_TO_CONNECT = 0x03
    TIMEOUT = 0xFE  # never sent by devices; raised locally on timer expiry
    UNKNOWN_ERROR = 0xFF


class RpcCommand(IntEnum):
    """RPC command identifiers."""

    SEND_WIFI_SETTINGS = 0x01
    REQUEST_CURRENT_STATE = 0x02
    REQUEST_INFO = 0x03
    REQUEST_WIFI_NETWORKS = 0x04


# User-facing descriptions, keyed by error code
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.NO_ERROR: "No error",
    ErrorCode.INVALID_RPC_PACKET: "Invalid RPC packet",
    ErrorCode.UNKNOWN_RPC_COMMAND: "Unknown RPC command",
    ErrorCode.UNABLE_TO_CONNECT: "Unable to connect",
    ErrorCode.TIMEOUT: "Timeout",
    ErrorCode.UNKNOWN_ERROR: "Unknown error",
}


def to_error_code(value: int) -> ErrorCode | int:
    """Map a raw error byte to :class:`ErrorCode`, keeping unknown values."""
    try:
        return ErrorCode(value)
    except ValueError:
        return value


def error_name(code: int) -> str:
    """Protocol name of an error code, e.g. ``UNABLE_TO_CONNECT``."""
    try:
        return ErrorCode(code).name
    except ValueError:
        return f"UNKNOWN_ERROR (0x{code:02X})"


def describe_error(code: int) -> str:
    """Human readable description of an error code."""
    try:
        return ERROR_MESSAGES[ErrorCode(code)]
    except ValueError:
        return f"Unknown error ({code})"


def build_rpc(command: RpcCommand, data: bytes = b"") -> bytes:
    """Build an RPC frame for ``command`` with ``data`` as its arguments."""
    if len(data) > MAX_PAYLOAD_SIZE - 2:
        raise ValueError(
            f"RPC data must be at most {MAX_PAYLOAD_SIZE - 2} bytes, got {len(data)}"
        )
    payload = bytes([command, len(data)]) + data
    return build_frame(MessageType.RPC, payload)


def encode_wifi_settings(ssid: str, password: str) -> bytes:
    """Encode SSID and password as two length-prefixed UTF-8 strings."""
    data = b""
    for label, value in (("SSID", ssid), ("Password", password)):
        encoded = value.encode("utf-8")
        if len(encoded) > 0xFF:
            raise ValueError(f"{label} must be at most 255 bytes, got {len(encoded)}")
        data += bytes([len(encoded)]) + encoded
    return data


def build_send_wifi_settings(ssid: str, password: str) -> bytes:
    """Build a SEND_WIFI_SETTINGS request (0x01)."""
    return build_rpc(RpcCommand.SEND_WIFI_SETTINGS, encode_wifi_settings(ssid, password))


def build_request_current_state() -> bytes:
    """Build a REQUEST_CURRENT_STATE request (0x02)."""
    return build_rpc(RpcCommand.REQUEST_CURRENT_STATE)


def build_request_info() -> bytes:
    """Build a REQUEST_INFO request (0x03)."""
    return build_rpc(RpcCommand.REQUEST_INFO)


def build_request_wifi_networks() -> bytes:
    """Build a REQUEST_WIFI_NETWORKS request (0x04)."""
    return build_rpc(RpcCommand.REQUEST_WIFI_NETWORKS)
