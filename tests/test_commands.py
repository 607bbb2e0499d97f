"""Tests for protocol constants and RPC builders."""

import pytest

from improv_serial_mcp.protocol.commands import (
    DeviceState,
    ErrorCode,
    MessageType,
    RpcCommand,
    build_request_current_state,
    build_request_info,
    build_request_wifi_networks,
    build_rpc,
    build_send_wifi_settings,
    describe_error,
    encode_wifi_settings,
    error_name,
    to_error_code,
)
from improv_serial_mcp.protocol.parser import RpcPacket, parse_packet


def test_enum_values():
    """Wire values of every enum."""
    assert [int(t) for t in MessageType] == [0x01, 0x02, 0x03, 0x04]
    assert [int(s) for s in DeviceState] == [0x02, 0x03, 0x04]
    assert [int(c) for c in RpcCommand] == [0x01, 0x02, 0x03, 0x04]
    assert ErrorCode.NO_ERROR == 0x00
    assert ErrorCode.UNABLE_TO_CONNECT == 0x03
    assert ErrorCode.TIMEOUT == 0xFE
    assert ErrorCode.UNKNOWN_ERROR == 0xFF


def test_build_rpc_payload_layout():
    frame = build_rpc(RpcCommand.REQUEST_INFO, b"\x07\x08")
    assert frame[7] == MessageType.RPC
    assert frame[8] == 4
    assert frame[9:13] == bytes([0x03, 0x02, 0x07, 0x08])
    assert frame[13] == sum(frame[:13]) & 0xFF


def test_build_rpc_rejects_oversized_data():
    with pytest.raises(ValueError):
        build_rpc(RpcCommand.SEND_WIFI_SETTINGS, bytes(254))


def test_provision_home_secret_exact_bytes():
    """SSID and password are length-prefixed and concatenated."""
    frame = build_send_wifi_settings("Home", "secret")
    payload = bytes([0x01, 0x0C, 4]) + b"Home" + bytes([6]) + b"secret"
    body = b"IMPROV" + bytes([0x01, 0x03, len(payload)]) + payload
    assert frame == body + bytes([sum(body) & 0xFF])
    assert frame[8] == 14


def test_wifi_settings_utf8():
    data = encode_wifi_settings("Café", "")
    assert data == bytes([5]) + "Café".encode("utf-8") + bytes([0])


def test_wifi_settings_too_long():
    with pytest.raises(ValueError):
        encode_wifi_settings("x" * 256, "")
    with pytest.raises(ValueError):
        # each part fits, the whole payload does not
        build_send_wifi_settings("s" * 200, "p" * 60)


@pytest.mark.parametrize(
    "builder, command",
    [
        (build_request_current_state, RpcCommand.REQUEST_CURRENT_STATE),
        (build_request_info, RpcCommand.REQUEST_INFO),
        (build_request_wifi_networks, RpcCommand.REQUEST_WIFI_NETWORKS),
    ],
)
def test_request_builders_have_no_data(builder, command):
    packet = parse_packet(builder())
    assert packet == RpcPacket(command=command, data=b"")


def test_error_names():
    assert error_name(0x03) == "UNABLE_TO_CONNECT"
    assert error_name(0x42) == "UNKNOWN_ERROR (0x42)"
    assert to_error_code(0x02) is ErrorCode.UNKNOWN_RPC_COMMAND
    assert to_error_code(0x42) == 0x42


def test_describe_error():
    assert describe_error(ErrorCode.UNABLE_TO_CONNECT) == "Unable to connect"
    assert describe_error(ErrorCode.TIMEOUT) == "Timeout"
    assert describe_error(0x42) == "Unknown error (66)"
