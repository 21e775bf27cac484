from .events import FrameBuffer, FrameDecodeError, PushMessage, decode_frame
from .fsm import ConnectionEvent, ConnectionState, transition
from .stream import PushStreamClient

__all__ = [
    "ConnectionEvent",
    "ConnectionState",
    "FrameBuffer",
    "FrameDecodeError",
    "PushMessage",
    "PushStreamClient",
    "decode_frame",
    "transition",
]
