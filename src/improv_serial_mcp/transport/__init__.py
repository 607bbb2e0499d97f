"""Transport layer: serial port access."""

from .serial_connection import DEFAULT_BAUDRATE, SerialConfig, SerialConnection
