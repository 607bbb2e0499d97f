"""Correlation of RPC requests with their results.

The protocol has no request ids, so only one RPC that expects a response
may be outstanding at a time. Results are matched by command code.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .commands import ErrorCode, RpcCommand, error_name
from .exceptions import CallInProgress, RpcError
from .parser import RpcResultPacket

logger = logging.getLogger(__name__)


@dataclass
class PendingRpc:
    """The single outstanding call.

    Single-response calls resolve with the first matching result's fields.
    Streaming calls collect one field list per result and resolve with all
    of them when an empty result arrives.
    """

    command: RpcCommand
    future: asyncio.Future
    streaming: bool = False
    records: list[list[str]] = field(default_factory=list)


class RpcCorrelator:
    """Owns the pending-call slot for one session."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._logger = log or logger
        self._pending: PendingRpc | None = None

    @property
    def pending(self) -> PendingRpc | None:
        return self._pending

    def begin(self, command: RpcCommand, streaming: bool = False) -> asyncio.Future:
        """Register a new call and return the future it will resolve.

        Raises:
            CallInProgress: If another call is still pending.
        """
        if self._pending is not None:
            raise CallInProgress()
        future = asyncio.get_running_loop().create_future()
        self._pending = PendingRpc(command=command, future=future, streaming=streaming)
        return future

    def discard(self, future: asyncio.Future | None) -> None:
        """Forget the pending call without resolving it.

        Only the call that owns ``future`` is dropped; a call registered by
        someone else is left alone.
        """
        if future is not None and self._pending is not None and self._pending.future is future:
            self._pending = None

    def handle_result(self, packet: RpcResultPacket) -> None:
        pending = self._pending
        if pending is None:
            self._logger.error("Received result while not waiting for one")
            return
        if packet.command != pending.command:
            self._logger.error(
                "Received result for command %s but expected %s",
                packet.command,
                pending.command,
            )
            return

        if not pending.streaming:
            self._resolve(list(packet.fields))
        elif packet.fields:
            pending.records.append(list(packet.fields))
        else:
            self._resolve(pending.records)

    def handle_error(self, code: int) -> None:
        if code == ErrorCode.NO_ERROR or self._pending is None:
            return
        self._logger.debug("Rejecting %s with %s", self._pending.command.name, error_name(code))
        self.fail(RpcError(code))

    def fail(self, exc: BaseException) -> None:
        """Reject the pending call, if any, with ``exc``."""
        pending = self._pending
        self._pending = None
        if pending is not None and not pending.future.done():
            pending.future.set_exception(exc)

    def _resolve(self, value: list) -> None:
        pending = self._pending
        self._pending = None
        if pending is not None and not pending.future.done():
            pending.future.set_result(value)
