"""
Event Socket client.

Frame decoding, command serialization and the connection that
demultiplexes replies and notifications on a single socket.
"""

from .command import Command
from .config import ConnectionConfig
from .connection import Connection, ConnectionHandler
from .event import Event, EventName, EventType
from .exceptions import (
    ESLError, ProtocolError, FrameDecodingError, TruncatedFrameError,
    UnsupportedFormatError, UnknownContentTypeError, CommandError,
    ConnectionError, ServerDisconnectionError, TimeoutError,
    ConnectionClosedError, AuthenticationError, ConfigurationError
)
from .headers import HeaderMap

__all__ = [
    "Command",
    "Connection",
    "ConnectionConfig",
    "ConnectionHandler",
    "Event",
    "EventName",
    "EventType",
    "HeaderMap",
    "ESLError",
    "ProtocolError",
    "FrameDecodingError",
    "TruncatedFrameError",
    "UnsupportedFormatError",
    "UnknownContentTypeError",
    "CommandError",
    "ConnectionError",
    "ServerDisconnectionError",
    "TimeoutError",
    "ConnectionClosedError",
    "AuthenticationError",
    "ConfigurationError",
]
