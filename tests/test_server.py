"""Tests for the MCP tool functions."""

from __future__ import annotations

import asyncio
import sys
from unittest.mock import MagicMock, patch

import pytest

from improv_serial_mcp.protocol.commands import DeviceState, ErrorCode, RpcCommand

from helpers import FakeTransport, error_frame, result_frame, state_frame


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_instance.prompt.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch.dict(sys.modules, {}):
        with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
            # Remove cached server module so it re-imports with our mock
            sys.modules.pop("improv_serial_mcp.server", None)
            import improv_serial_mcp.server as server_mod

    return server_mod


class FakeSerial(FakeTransport):
    """FakeTransport with the SerialConnection open/close surface."""

    def __init__(self, responder=None, fail_open=False):
        super().__init__(responder)
        self.fail_open = fail_open
        self.opened = False
        self.closed = False

    def open(self):
        if self.fail_open:
            raise ConnectionError("Could not open serial port /dev/ttyUSB9")
        self.opened = True

    def close(self):
        self.closed = True


def device(packet):
    if packet.command == RpcCommand.REQUEST_CURRENT_STATE:
        return [state_frame(DeviceState.READY)]
    if packet.command == RpcCommand.REQUEST_INFO:
        return [result_frame(RpcCommand.REQUEST_INFO, ["ESPHome", "2024.6.0", "ESP32", "kitchen"])]
    if packet.command == RpcCommand.REQUEST_WIFI_NETWORKS:
        return [error_frame(ErrorCode.UNKNOWN_RPC_COMMAND)]
    if packet.command == RpcCommand.SEND_WIFI_SETTINGS:
        return [state_frame(DeviceState.PROVISIONING), error_frame(ErrorCode.UNABLE_TO_CONNECT)]
    return []


@pytest.fixture
def server():
    server_mod = _get_server_module()
    yield server_mod
    server_mod._session = None
    server_mod._connection = None


async def _connect(server, responder=device, **kwargs):
    fake = FakeSerial(responder, **kwargs)
    with patch.object(server, "SerialConnection", return_value=fake):
        result = await server.connect("/dev/ttyUSB0", timeout=0.2)
    return fake, result


@pytest.mark.asyncio
async def test_connect_reports_info_and_state(server):
    fake, result = await _connect(server)

    assert result["connected"] is True
    assert result["info"] == {
        "firmware": "ESPHome",
        "version": "2024.6.0",
        "chip_family": "ESP32",
        "name": "kitchen",
    }
    assert result["state"] == "READY"
    assert result["connection"] == "CONNECTED"
    assert fake.opened

    again = await server.connect("/dev/ttyUSB0")
    assert again["message"] == "Already connected"

    assert await server.disconnect() == {"disconnected": True}
    assert fake.closed
    assert server._session is None


@pytest.mark.asyncio
async def test_connect_device_not_detected(server):
    fake, result = await _connect(server, responder=None)

    assert result["connected"] is False
    assert "Unable to detect Improv service" in result["error"]
    assert fake.closed
    assert server._session is None


@pytest.mark.asyncio
async def test_connect_port_open_failure(server):
    fake, result = await _connect(server, fail_open=True)

    assert result == {"connected": False, "error": "Could not open serial port /dev/ttyUSB9"}


@pytest.mark.asyncio
async def test_connect_write_failure_closes_port(server):
    class BrokenWriteSerial(FakeSerial):
        async def write(self, data):
            raise ConnectionError("Serial port write failed")

    fake = BrokenWriteSerial(device)
    with patch.object(server, "SerialConnection", return_value=fake):
        result = await server.connect("/dev/ttyUSB0", timeout=0.2)

    assert result == {"connected": False, "error": "Serial port write failed"}
    assert fake.opened
    assert fake.closed
    assert server._session is None
    assert server._connection is None


@pytest.mark.asyncio
async def test_connect_cancelled_closes_port(server):
    fake = FakeSerial(None)
    with patch.object(server, "SerialConnection", return_value=fake):
        task = asyncio.create_task(server.connect("/dev/ttyUSB0", timeout=5))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert fake.closed
    assert server._session is None


@pytest.mark.asyncio
async def test_tools_require_connection(server):
    with pytest.raises(RuntimeError):
        await server.get_device_info()
    with pytest.raises(RuntimeError):
        await server.scan_networks()


@pytest.mark.asyncio
async def test_scan_unsupported_means_manual_entry(server):
    await _connect(server)

    result = await server.scan_networks()

    assert result == {"networks": [], "manual_entry": True}
    await server.disconnect()


@pytest.mark.asyncio
async def test_provision_error_is_described(server):
    await _connect(server)

    result = await server.provision_wifi("Home", "wrong")

    assert result == {"error": "Unable to connect", "code": "UNABLE_TO_CONNECT"}
    status = await server.get_device_state()
    assert status["state"] == "READY"
    await server.disconnect()


@pytest.mark.asyncio
async def test_provision_rejects_oversized_ssid(server):
    fake, _ = await _connect(server)
    fake.written.clear()

    result = await server.provision_wifi("x" * 300, "secret")

    assert "at most 255 bytes" in result["error"]
    assert fake.written == []
    await server.disconnect()


@pytest.mark.asyncio
async def test_get_device_info(server):
    await _connect(server)

    assert (await server.get_device_info())["name"] == "kitchen"
    await server.disconnect()
