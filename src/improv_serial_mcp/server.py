"""MCP server entry point for Improv Wi-Fi Serial devices.

Exposes tools to connect to a device over a serial port, inspect it,
scan for networks and send Wi-Fi credentials, using the official Python
MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .models.device import ConnectionState
from .protocol.commands import DeviceState, ErrorCode, describe_error
from .protocol.exceptions import DeviceNotDetected, ImprovError, RpcError
from .session import DEFAULT_INIT_TIMEOUT, ImprovSerialSession
from .transport.serial_connection import DEFAULT_BAUDRATE, SerialConfig, SerialConnection

logger = logging.getLogger(__name__)

DEFAULT_PROVISION_TIMEOUT = 30.0

mcp = FastMCP(
    "improv-serial",
    instructions="Provision Improv Wi-Fi Serial devices over a serial port",
)

# Global connection state
_connection: SerialConnection | None = None
_session: ImprovSerialSession | None = None


def _get_session() -> ImprovSerialSession:
    """Get the active session, raising if not connected."""
    if _session is None or _session.connection_state is ConnectionState.ERROR:
        raise RuntimeError("Not connected to device. Use the 'connect' tool first.")
    return _session


def _error_result(err: Exception) -> dict[str, Any]:
    if isinstance(err, RpcError):
        return {"error": describe_error(err.code), "code": err.name}
    return {"error": str(err)}


def _state_name(state: DeviceState | None) -> str | None:
    return state.name if state is not None else None


def _status(session: ImprovSerialSession) -> dict[str, Any]:
    result: dict[str, Any] = {
        "connection": session.connection_state.value,
        "state": _state_name(session.state),
        "next_url": session.next_url,
    }
    if session.error != ErrorCode.NO_ERROR:
        result["error"] = describe_error(session.error)
    return result


async def _teardown() -> None:
    global _connection, _session
    if _session is not None:
        await _session.close()
        _session = None
    if _connection is not None:
        _connection.close()
        _connection = None


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect(
    port: str,
    baudrate: int = DEFAULT_BAUDRATE,
    timeout: float = DEFAULT_INIT_TIMEOUT,
) -> dict[str, Any]:
    """Open a serial port and detect an Improv Wi-Fi Serial device on it.

    Requests the current state (and the next URL if the device is already
    provisioned), then the firmware and chip information.

    Args:
        port: Serial port path, e.g. ``/dev/ttyUSB0`` or ``COM3``.
        baudrate: Port speed; Improv devices normally use 115200.
        timeout: Seconds to wait for the device to answer.
    """
    global _connection, _session
    if _session is not None and _session.connection_state is not ConnectionState.ERROR:
        return {"connected": True, "message": "Already connected", **_status(_session)}
    await _teardown()

    connection = SerialConnection(SerialConfig(port=port, baudrate=baudrate))
    try:
        connection.open()
    except ConnectionError as e:
        return {"connected": False, "error": str(e)}

    session = ImprovSerialSession(connection, connection)
    try:
        info = await session.initialize(timeout=timeout)
    except DeviceNotDetected as e:
        connection.close()
        return {
            "connected": False,
            "error": f"Unable to detect Improv service on connected device: {e}",
        }
    except (ImprovError, ConnectionError) as e:
        connection.close()
        return {"connected": False, **_error_result(e)}
    except BaseException:
        connection.close()
        raise

    _connection, _session = connection, session
    return {"connected": True, "info": info.to_dict(), **_status(session)}


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Stop talking to the device and close the serial port."""
    await _teardown()
    return {"disconnected": True}


# ─── DEVICE TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
async def get_device_state() -> dict[str, Any]:
    """Refresh and return the device's provisioning state.

    Already provisioned devices also report the URL to continue setup at.
    """
    session = _get_session()
    try:
        await session.request_current_state(timeout=DEFAULT_INIT_TIMEOUT)
    except ImprovError as e:
        return _error_result(e)
    return _status(session)


@mcp.tool()
async def get_device_info() -> dict[str, Any]:
    """Retrieve firmware name and version, chip family and device name."""
    session = _get_session()
    try:
        info = await session.request_info(timeout=DEFAULT_INIT_TIMEOUT)
    except ImprovError as e:
        return _error_result(e)
    return info.to_dict()


@mcp.tool()
async def scan_networks(timeout: float = DEFAULT_PROVISION_TIMEOUT) -> dict[str, Any]:
    """List the Wi-Fi networks the device can see, sorted by name.

    Devices without scan support report ``manual_entry``; the SSID then
    has to be typed in by hand.
    """
    session = _get_session()
    try:
        networks = await session.scan(timeout=timeout)
    except RpcError as e:
        if e.code == ErrorCode.UNKNOWN_RPC_COMMAND:
            return {"networks": [], "manual_entry": True}
        return _error_result(e)
    except ImprovError as e:
        return _error_result(e)
    return {"networks": [n.to_dict() for n in networks], "manual_entry": False}


@mcp.tool()
async def provision_wifi(
    ssid: str,
    password: str = "",
    timeout: float = DEFAULT_PROVISION_TIMEOUT,
) -> dict[str, Any]:
    """Send Wi-Fi credentials to the device and wait for it to connect.

    Args:
        ssid: Network name.
        password: Network password; empty for open networks.
        timeout: Seconds to wait for the device to join the network.
    """
    session = _get_session()
    try:
        next_url = await session.provision(ssid, password, timeout=timeout)
    except ValueError as e:
        return {"error": str(e)}
    except ImprovError as e:
        return _error_result(e)
    return {"provisioned": True, "ssid": ssid, "next_url": next_url, **_status(session)}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("improv://device/status")
def resource_status() -> str:
    """Connection and provisioning status of the current device."""
    if _session is None:
        return json.dumps({"connection": None})
    return json.dumps(_status(_session))


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
