"""Data models for device information and scan results."""

from .device import ConnectionState, DeviceInfo, NetworkEntry
