"""
Custom exceptions for the Event Socket client.
"""


class ESLError(Exception):
    """Base exception for all Event Socket related errors."""
    pass


class ProtocolError(ESLError):
    """Raised when protocol violations occur."""
    pass


class FrameDecodingError(ProtocolError):
    """Raised when a frame cannot be decoded."""
    pass


class TruncatedFrameError(FrameDecodingError):
    """Raised when the stream ends in the middle of a frame."""
    pass


class UnsupportedFormatError(FrameDecodingError):
    """Raised for event formats the decoder does not handle (json, xml)."""
    pass


class UnknownContentTypeError(ProtocolError):
    """
    Raised when a frame carries an unrecognized Content-Type.

    The frame has been consumed completely, so the stream is still
    positioned at a frame boundary.
    """

    def __init__(self, message: str, event=None):
        super().__init__(message)
        self.event = event


class CommandError(ProtocolError):
    """Raised when the switch answers a request with a failure reply."""

    def __init__(self, message: str, reply: str = "", event=None):
        super().__init__(message)
        self.reply = reply
        self.event = event


class ConnectionError(ESLError):
    """Raised when connection issues occur."""
    pass


class ServerDisconnectionError(ConnectionError):
    """Raised when the server closes the stream."""
    pass


class TimeoutError(ConnectionError):
    """Raised when connection or operation times out."""
    pass


class ConnectionClosedError(ConnectionError):
    """Raised to callers still waiting for a reply when the connection closes."""
    pass


class AuthenticationError(ESLError):
    """Raised when authentication fails."""
    pass


class ConfigurationError(ESLError):
    """Raised when configuration is invalid."""
    pass
