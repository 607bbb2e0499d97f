"""Improv Serial session: the client side of the protocol over a byte stream.

A session owns one background read task that feeds incoming bytes through
the framer and parser, tracks the device's state and error, and resolves
the single outstanding RPC. Public operations write a request and then
wait for the read task to see the answer.

Usage::

    session = ImprovSerialSession(connection, connection)
    info = await session.initialize()
    networks = await session.scan()
    await session.provision("Home", "secret", timeout=30)
    await session.close()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterator
from typing import Any, Protocol

from .models.device import ConnectionState, DeviceInfo, NetworkEntry
from .protocol.commands import (
    DeviceState,
    ErrorCode,
    RpcCommand,
    build_rpc,
    encode_wifi_settings,
    error_name,
)
from .protocol.exceptions import (
    ConnectionClosed,
    DeviceNotDetected,
    ImprovProtocolError,
    PortNotReady,
    RpcError,
)
from .protocol.framing import FrameAccumulator
from .protocol.parser import (
    ErrorPacket,
    RpcResultPacket,
    StatePacket,
    parse_device_info,
    parse_network,
    parse_packet,
)
from .protocol.rpc import RpcCorrelator
from .utils.hex import hex_formatter

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 256
DEFAULT_INIT_TIMEOUT = 1.0
# Written after every frame so line-buffered device consoles stay in sync
FRAME_TERMINATOR = b"\n"

EVENT_STATE_CHANGED = "state-changed"
EVENT_ERROR_CHANGED = "error-changed"
EVENT_DISCONNECT = "disconnect"


class ByteSource(Protocol):
    async def read(self, size: int) -> bytes:
        """Return at least one byte, or ``b""`` once the stream has ended."""
        ...


class ByteSink(Protocol):
    async def write(self, data: bytes) -> None: ...


class ImprovSerialSession:
    """Detect, query and provision an Improv Serial device.

    Attributes:
        state: Last reported :class:`DeviceState`, ``None`` until one arrives.
        error: Last reported error code.
        info: Result of the last successful :meth:`request_info`.
        next_url: URL reported after provisioning, or by an already
            provisioned device when its state is requested.
        connection_state: ``CONNECTING`` until the device reports a state
            or error, ``ERROR`` once the read loop has ended.
    """

    def __init__(
        self,
        reader: ByteSource | None,
        writer: ByteSink | None,
        log: logging.Logger | None = None,
    ) -> None:
        if reader is None:
            raise PortNotReady("Port is not readable")
        if writer is None:
            raise PortNotReady("Port is not writable")
        self._source = reader
        self._sink = writer
        self._logger = log or logger

        self.state: DeviceState | None = None
        self.error: ErrorCode | int = ErrorCode.NO_ERROR
        self.info: DeviceInfo | None = None
        self.next_url: str | None = None
        self.connection_state = ConnectionState.CONNECTING

        self._framer = FrameAccumulator()
        self._rpc = RpcCorrelator(self._logger)
        self._read_task: asyncio.Task | None = None
        self._disconnected = False
        self._listeners: dict[str, list[Callable[..., Any]]] = {
            EVENT_STATE_CHANGED: [],
            EVENT_ERROR_CHANGED: [],
            EVENT_DISCONNECT: [],
        }

    @property
    def reading(self) -> bool:
        return self._read_task is not None and not self._read_task.done()

    # ─── LISTENERS ───────────────────────────────────────────────────

    def add_listener(self, event: str, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register ``callback`` for ``event`` and return a function removing it.

        ``state-changed`` passes the new :class:`DeviceState`,
        ``error-changed`` the new error code, ``disconnect`` nothing.
        """
        self._listeners_for(event).append(callback)
        return lambda: self.remove_listener(event, callback)

    def remove_listener(self, event: str, callback: Callable[..., Any]) -> None:
        with contextlib.suppress(ValueError):
            self._listeners_for(event).remove(callback)

    def _listeners_for(self, event: str) -> list[Callable[..., Any]]:
        try:
            return self._listeners[event]
        except KeyError:
            raise ValueError(f"Unknown event {event!r}") from None

    def _emit(self, event: str, *args: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception:
                self._logger.exception("Error in %s listener", event)

    # ─── LIFECYCLE ───────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background read task if it is not running."""
        if self.reading:
            return
        if self._disconnected:
            raise PortNotReady("Session is closed")
        self._read_task = asyncio.get_running_loop().create_task(
            self._process_input(), name="improv-serial-reader"
        )

    async def initialize(self, timeout: float = DEFAULT_INIT_TIMEOUT) -> DeviceInfo:
        """Detect the device, fetch its state and info.

        Raises:
            DeviceNotDetected: No state was reported within ``timeout``.
            ImprovError: Any other failure. The session is closed on every
                failure path.
        """
        self._logger.info("Initializing Improv Serial")
        self.start()
        try:
            try:
                await self.request_current_state(timeout=timeout)
            except RpcError as err:
                if err.code != ErrorCode.TIMEOUT:
                    raise
                raise DeviceNotDetected() from err
            return await self.request_info(timeout=timeout)
        except BaseException:
            self.connection_state = ConnectionState.ERROR
            await self.close()
            raise

    async def close(self) -> None:
        """Stop the read task and wait until it has finished."""
        task = self._read_task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})
        # A task cancelled before its first step never runs its cleanup
        self._handle_disconnect()

    # ─── OPERATIONS ──────────────────────────────────────────────────

    async def request_current_state(self, timeout: float | None = None) -> DeviceState | None:
        """Ask the device for its state.

        Every device answers with a CURRENT_STATE frame. A provisioned device
        also sends an RPC result whose first field is the next URL, which is
        stored in :attr:`next_url`.
        """
        state_changed = asyncio.get_running_loop().create_future()

        def on_state(state: DeviceState) -> None:
            if not state_changed.done():
                state_changed.set_result(state)

        remove = self.add_listener(EVENT_STATE_CHANGED, on_state)
        rpc_result: asyncio.Future | None = None
        try:
            with self._deadline(timeout):
                rpc_result = await self._send_rpc_with_response(
                    RpcCommand.REQUEST_CURRENT_STATE, timeout=timeout
                )
                await asyncio.wait({rpc_result, state_changed}, return_when=asyncio.FIRST_COMPLETED)

                # Only a provisioned device follows up with an RPC result
                if not rpc_result.done() and self.state is not DeviceState.PROVISIONED:
                    self._rpc.discard(rpc_result)
                    return self.state

                fields = await rpc_result
                self.next_url = fields[0] if fields else None
                return self.state
        except BaseException as err:
            self._rpc.discard(rpc_result)
            if not isinstance(err, asyncio.CancelledError):
                self._logger.error("Error fetching current state: %s", err)
            raise
        finally:
            remove()

    async def request_info(self, timeout: float | None = None) -> DeviceInfo:
        """Fetch firmware, version, chip family and device name."""
        fields = await self._call(RpcCommand.REQUEST_INFO, timeout=timeout)
        self.info = parse_device_info(fields)
        return self.info

    async def provision(self, ssid: str, password: str, timeout: float | None = None) -> str | None:
        """Send Wi-Fi credentials and return the next URL, if the device sent one."""
        data = encode_wifi_settings(ssid, password)
        fields = await self._call(RpcCommand.SEND_WIFI_SETTINGS, data, timeout=timeout)
        self.next_url = fields[0] if fields else None
        return self.next_url

    async def scan(self, timeout: float | None = None) -> list[NetworkEntry]:
        """List the networks visible to the device, sorted by name.

        Devices without scan support answer with ``UNKNOWN_RPC_COMMAND``,
        which is raised as :class:`RpcError` like any other failure.
        """
        records = await self._call(RpcCommand.REQUEST_WIFI_NETWORKS, streaming=True, timeout=timeout)
        networks = [parse_network(record) for record in records]
        networks.sort(key=lambda network: network.name.lower())
        return networks

    # ─── RPC PLUMBING ────────────────────────────────────────────────

    async def _call(
        self,
        command: RpcCommand,
        data: bytes = b"",
        *,
        streaming: bool = False,
        timeout: float | None = None,
    ) -> list:
        with self._deadline(timeout):
            future = await self._send_rpc_with_response(
                command, data, streaming=streaming, timeout=timeout
            )
            try:
                return await future
            except asyncio.CancelledError:
                self._rpc.discard(future)
                raise

    async def _send_rpc_with_response(
        self,
        command: RpcCommand,
        data: bytes = b"",
        streaming: bool = False,
        timeout: float | None = None,
    ) -> asyncio.Future:
        if self._disconnected:
            raise ConnectionClosed()
        if not self.reading:
            raise PortNotReady("Session is not started")
        # Raises CallInProgress before anything is written
        future = self._rpc.begin(command, streaming=streaming)
        try:
            await asyncio.wait_for(self._write(build_rpc(command, data)), timeout)
        except asyncio.TimeoutError:
            # The write blocked past the deadline; the rejected future
            # carries the timeout to the caller.
            self._expire()
        except BaseException:
            self._rpc.discard(future)
            raise
        return future

    async def _write(self, frame: bytes) -> None:
        data = frame + FRAME_TERMINATOR
        self._logger.debug("Writing to stream: %s", hex_formatter(data))
        await self._sink.write(data)

    @contextlib.contextmanager
    def _deadline(self, timeout: float | None) -> Iterator[None]:
        if timeout is None:
            yield
            return
        handle = asyncio.get_running_loop().call_later(timeout, self._expire)
        try:
            yield
        finally:
            handle.cancel()

    def _expire(self) -> None:
        pending = self._rpc.pending
        if pending is None:
            return
        self._logger.error("Timed out waiting for %s", pending.command.name)
        self._apply_error(ErrorCode.TIMEOUT)

    # ─── READ LOOP ───────────────────────────────────────────────────

    async def _process_input(self) -> None:
        self._logger.debug("Starting read loop")
        try:
            while True:
                chunk = await self._source.read(READ_CHUNK_SIZE)
                if not chunk:
                    self._logger.debug("Stream closed by peer")
                    break
                for frame in self._framer.feed(chunk):
                    self._handle_frame(frame)
        except asyncio.CancelledError:
            self._logger.debug("Read loop cancelled")
            raise
        except Exception:
            self._logger.exception("Error while reading serial port")
        finally:
            self._logger.debug("Finished read loop")
            self._handle_disconnect()

    def _handle_frame(self, frame: bytes) -> None:
        try:
            packet = parse_packet(frame)
        except ImprovProtocolError as err:
            self._logger.error("Dropping frame %s: %s", hex_formatter(frame), err)
            return

        self._logger.debug("PROCESS %s", packet)
        if isinstance(packet, StatePacket):
            self._mark_connected()
            self.state = packet.state
            self._emit(EVENT_STATE_CHANGED, self.state)
        elif isinstance(packet, ErrorPacket):
            self._mark_connected()
            self._apply_error(packet.error)
        elif isinstance(packet, RpcResultPacket):
            self._rpc.handle_result(packet)
        else:
            self._logger.error("Unable to handle packet %s", packet)

    def _mark_connected(self) -> None:
        if self.connection_state is ConnectionState.CONNECTING:
            self._logger.info("Improv Serial device detected")
            self.connection_state = ConnectionState.CONNECTED

    def _apply_error(self, code: ErrorCode | int) -> None:
        self.error = code
        if code != ErrorCode.NO_ERROR:
            self._logger.debug("Device error %s", error_name(code))
        self._rpc.handle_error(code)
        self._emit(EVENT_ERROR_CHANGED, self.error)

    def _handle_disconnect(self) -> None:
        if self._disconnected:
            return
        self._disconnected = True
        self.connection_state = ConnectionState.ERROR
        self._framer.reset()
        self._rpc.fail(ConnectionClosed())
        self._emit(EVENT_DISCONNECT)
