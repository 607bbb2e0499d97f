"""Improv Wi-Fi Serial client and MCP server."""

from .models.device import ConnectionState, DeviceInfo, NetworkEntry
from .protocol.commands import DeviceState, ErrorCode, RpcCommand
from .protocol.exceptions import (
    CallInProgress,
    ConnectionClosed,
    DeviceNotDetected,
    ImprovError,
    PortNotReady,
    RpcError,
)
from .session import ImprovSerialSession

__version__ = "0.1.0"
