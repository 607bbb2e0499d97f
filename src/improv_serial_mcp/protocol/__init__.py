"""Protocol layer: framing, checksums, RPC builders, packet parsing and RPC correlation."""

from .framing import FrameAccumulator, build_frame
from .commands import DeviceState, ErrorCode, MessageType, RpcCommand, build_rpc
from .parser import parse_packet
