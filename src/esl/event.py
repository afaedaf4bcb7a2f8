"""
Event Socket frame decoding.

This module turns the byte stream sent by the switch into classified
Event objects.

Frame Format:
    Name: value
    Name: value
    Content-Length: N        (optional)
    <blank line>
    <N bytes of body>        (present only with Content-Length)

Plain-text notifications (Content-Type: text/event-plain) carry a second,
percent-escaped header block inside their body.
"""

import logging
from enum import IntEnum
from typing import Optional
from urllib.parse import unquote_plus

from .exceptions import (
    CommandError, FrameDecodingError, TruncatedFrameError,
    UnknownContentTypeError, UnsupportedFormatError
)
from .headers import HeaderMap


logger = logging.getLogger(__name__)


class EventType(IntEnum):
    """Classification of a decoded frame."""
    ERROR = 0
    AUTH_REQUEST = 1
    CONNECT = 2
    COMMAND_REPLY = 3
    API_RESPONSE = 4
    DISCONNECT = 5
    GENERIC = 6


class ContentTypes:
    AUTH_REQUEST = "auth/request"
    COMMAND_REPLY = "command/reply"
    API_RESPONSE = "api/response"
    EVENT_PLAIN = "text/event-plain"
    EVENT_JSON = "text/event-json"
    EVENT_XML = "text/event-xml"
    DISCONNECT_NOTICE = "text/disconnect-notice"
    RUDE_REJECTION = "text/rude-rejection"


class EventName(IntEnum):
    """Names of the notifications published by the switch."""
    CUSTOM = 0
    CLONE = 1
    CHANNEL_CREATE = 2
    CHANNEL_DESTROY = 3
    CHANNEL_STATE = 4
    CHANNEL_CALLSTATE = 5
    CHANNEL_ANSWER = 6
    CHANNEL_HANGUP = 7
    CHANNEL_HANGUP_COMPLETE = 8
    CHANNEL_EXECUTE = 9
    CHANNEL_EXECUTE_COMPLETE = 10
    CHANNEL_HOLD = 11
    CHANNEL_UNHOLD = 12
    CHANNEL_BRIDGE = 13
    CHANNEL_UNBRIDGE = 14
    CHANNEL_PROGRESS = 15
    CHANNEL_PROGRESS_MEDIA = 16
    CHANNEL_OUTGOING = 17
    CHANNEL_PARK = 18
    CHANNEL_UNPARK = 19
    CHANNEL_APPLICATION = 20
    CHANNEL_ORIGINATE = 21
    CHANNEL_UUID = 22
    API = 23
    LOG = 24
    INBOUND_CHAN = 25
    OUTBOUND_CHAN = 26
    STARTUP = 27
    SHUTDOWN = 28
    PUBLISH = 29
    UNPUBLISH = 30
    TALK = 31
    NOTALK = 32
    SESSION_CRASH = 33
    MODULE_LOAD = 34
    MODULE_UNLOAD = 35
    DTMF = 36
    MESSAGE = 37
    PRESENCE_IN = 38
    NOTIFY_IN = 39
    PRESENCE_OUT = 40
    PRESENCE_PROBE = 41
    MESSAGE_WAITING = 42
    MESSAGE_QUERY = 43
    ROSTER = 44
    CODEC = 45
    BACKGROUND_JOB = 46
    DETECTED_SPEECH = 47
    DETECTED_TONE = 48
    PRIVATE_COMMAND = 49
    HEARTBEAT = 50
    TRAP = 51
    ADD_SCHEDULE = 52
    DEL_SCHEDULE = 53
    EXE_SCHEDULE = 54
    RE_SCHEDULE = 55
    RELOADXML = 56
    NOTIFY = 57
    PHONE_FEATURE = 58
    PHONE_FEATURE_SUBSCRIBE = 59
    SEND_MESSAGE = 60
    RECV_MESSAGE = 61
    REQUEST_PARAMS = 62
    CHANNEL_DATA = 63
    GENERAL = 64
    COMMAND = 65
    SESSION_HEARTBEAT = 66
    CLIENT_DISCONNECTED = 67
    SERVER_DISCONNECTED = 68
    SEND_INFO = 69
    RECV_INFO = 70
    RECV_RTCP_MESSAGE = 71
    CALL_SECURE = 72
    NAT = 73
    RECORD_START = 74
    RECORD_STOP = 75
    PLAYBACK_START = 76
    PLAYBACK_STOP = 77
    CALL_UPDATE = 78
    FAILURE = 79
    SOCKET_DATA = 80
    MEDIA_BUG_START = 81
    MEDIA_BUG_STOP = 82
    CONFERENCE_DATA_QUERY = 83
    CONFERENCE_DATA = 84
    CALL_SETUP_REQ = 85
    CALL_SETUP_RESULT = 86
    CALL_DETAIL = 87
    DEVICE_STATE = 88
    ALL = 89

    @classmethod
    def lookup(cls, name: str) -> "EventName":
        """Map an Event-Name header value to its tag; unknown names map to CUSTOM."""
        return cls.__members__.get(name.strip(), cls.CUSTOM)


class Event:
    """
    A decoded Event Socket frame.

    The notification fields (uid, name, app, app_data, stamp) and the body
    header map are only populated for GENERIC events.
    """

    def __init__(self, event_type: EventType = EventType.ERROR,
                 header: Optional[HeaderMap] = None,
                 raw_body: Optional[bytes] = None):
        self.type = event_type
        self.header = header if header is not None else HeaderMap()
        self.raw_body = raw_body
        self.body: Optional[HeaderMap] = None
        self.uid: Optional[str] = None
        self.name: Optional[EventName] = None
        self.app: Optional[str] = None
        self.app_data: Optional[str] = None
        self.stamp: Optional[int] = None

    @classmethod
    def read(cls, stream) -> "Event":
        """
        Decode one frame from a buffered binary stream.

        Args:
            stream: Object with ``readline()`` and ``read(n)`` returning bytes,
                positioned at a frame boundary

        Returns:
            Event: The decoded and classified event

        Raises:
            ServerDisconnectionError: Stream ended cleanly at a frame boundary
            TruncatedFrameError: Stream ended inside a frame
            FrameDecodingError: Malformed header block or Content-Length
            UnsupportedFormatError: json or xml encoded notification
            CommandError: Command reply without a success marker
            UnknownContentTypeError: Unrecognized Content-Type (frame consumed)
        """
        event = cls(header=HeaderMap.read(stream))

        length_text = event.header.get("Content-Length")
        if length_text:
            try:
                length = int(length_text)
            except ValueError:
                raise FrameDecodingError(f"convert content-length {length_text!r}")
            if length < 0:
                raise FrameDecodingError(f"negative content-length {length}")
            event.raw_body = _read_exact(stream, length)

        content_type = event.header.get("Content-Type")

        if content_type == ContentTypes.AUTH_REQUEST:
            event.type = EventType.AUTH_REQUEST
        elif content_type == ContentTypes.COMMAND_REPLY:
            event.type = EventType.COMMAND_REPLY
            reply = event.header.get("Reply-Text")
            if "+OK" not in reply and "%2BOK" not in reply:
                raise CommandError(f"command error: {reply.strip()}", reply=reply.strip(), event=event)
            if "%" in reply:
                event.header.escaped = True
        elif content_type == ContentTypes.EVENT_PLAIN:
            event.type = EventType.GENERIC
            event._parse_text_body()
        elif content_type in (ContentTypes.EVENT_JSON, ContentTypes.EVENT_XML):
            raise UnsupportedFormatError(f"unsupported format {content_type}")
        elif content_type in (ContentTypes.DISCONNECT_NOTICE, ContentTypes.RUDE_REJECTION):
            event.type = EventType.DISCONNECT
        elif content_type == ContentTypes.API_RESPONSE:
            event.type = EventType.API_RESPONSE
        else:
            raise UnknownContentTypeError(f"unknown content type {content_type!r}", event=event)

        return event

    def _parse_text_body(self) -> None:
        self.body = HeaderMap.parse(self.raw_body or b"", escaped=True)
        self.uid = self.get("Unique-ID")
        self.name = EventName.lookup(self.get("Event-Name"))
        self.app = self.get("Application")
        self.app_data = self.get("Application-Data").strip()

        stamp = self.get("Event-Date-Timestamp")
        try:
            self.stamp = int(stamp) if stamp else 0
        except ValueError:
            raise FrameDecodingError(f"parse text body: invalid timestamp {stamp!r}")

    def get(self, name: str) -> str:
        """
        Look a header up in the frame header, then in the body header.

        The value is returned unescaped and is empty if not found anywhere.
        """
        value = self.header.get(name)
        if not value and self.body is not None:
            value = self.body.get(name)
        return value

    @property
    def content_type(self) -> str:
        return self.header.get("Content-Type")

    def text_body(self) -> str:
        """
        Return the text payload that follows the nested header block.

        Notifications such as BACKGROUND_JOB carry a Content-Length inside
        the nested headers; the payload is the tail of the raw body.
        """
        if self.body is None or not self.raw_body:
            return ""
        length_text = self.body.get("Content-Length")
        if not length_text:
            return ""
        try:
            length = int(length_text)
        except ValueError:
            logger.error(f"convert body length {length_text!r}")
            return ""
        tail = self.raw_body[-length:] if 0 < length <= len(self.raw_body) else b""
        text = tail.decode("utf-8", errors="replace")
        return text[:-1] if text.endswith("\n") else text

    def __str__(self) -> str:
        body = unquote_plus((self.raw_body or b"").decode("utf-8", errors="replace"))
        return f"{self.header}\n.\n{body}====================\n"

    def __repr__(self) -> str:
        if self.type == EventType.GENERIC and self.name is not None:
            return f"Event(type={self.type.name}, name={self.name.name}, uid={self.uid!r})"
        return f"Event(type={self.type.name}, content_type={self.content_type!r})"


def _read_exact(stream, num_bytes: int) -> bytes:
    """Read exactly num_bytes from the stream."""
    data = b""
    while len(data) < num_bytes:
        chunk = stream.read(num_bytes - len(data))
        if not chunk:
            raise TruncatedFrameError(f"read body: got {len(data)} of {num_bytes} bytes")
        data += chunk
    return data
