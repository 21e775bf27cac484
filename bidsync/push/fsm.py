"""Push connection finite state machine."""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"


class ConnectionEvent(str, Enum):
    CONNECT = "connect"
    OPENED = "opened"
    FAILED = "failed"
    SERVER_CLOSED = "server_closed"
    RETRY_SCHEDULED = "retry_scheduled"
    DISCONNECT = "disconnect"


_TRANSITIONS = {
    (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, ConnectionEvent.OPENED): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTING, ConnectionEvent.FAILED): ConnectionState.ERROR,
    (ConnectionState.CONNECTED, ConnectionEvent.FAILED): ConnectionState.ERROR,
    (ConnectionState.CONNECTED, ConnectionEvent.SERVER_CLOSED): ConnectionState.CLOSED,
    (ConnectionState.ERROR, ConnectionEvent.RETRY_SCHEDULED): ConnectionState.RECONNECTING,
    (ConnectionState.CLOSED, ConnectionEvent.RETRY_SCHEDULED): ConnectionState.RECONNECTING,
    (ConnectionState.RECONNECTING, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
}


def transition(current: ConnectionState, event: ConnectionEvent) -> ConnectionState:
    # Session loss forces the connection down from wherever it is.
    if event is ConnectionEvent.DISCONNECT:
        return ConnectionState.DISCONNECTED
    try:
        return _TRANSITIONS[(current, event)]
    except KeyError as exc:
        raise ValueError(f"invalid transition from {current} via {event}") from exc
