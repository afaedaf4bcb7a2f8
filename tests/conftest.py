"""
Shared fixtures: a scripted switch on the far end of a socket pair.
"""

import socket
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.esl.connection import ConnectionHandler


AUTH_REQUEST = b"Content-Type: auth/request\n\n"


def command_reply(reply_text: str, **headers) -> bytes:
    """Build a command/reply frame."""
    lines = ["Content-Type: command/reply", f"Reply-Text: {reply_text}"]
    lines.extend(f"{name.replace('_', '-')}: {value}" for name, value in headers.items())
    return ("\n".join(lines) + "\n\n").encode("utf-8")


def api_response(body: str) -> bytes:
    """Build an api/response frame."""
    data = body.encode("utf-8")
    return f"Content-Type: api/response\nContent-Length: {len(data)}\n\n".encode("utf-8") + data


def plain_event(**fields) -> bytes:
    """Build a text/event-plain notification from nested header fields."""
    body = "".join(f"{name.replace('_', '-')}: {value}\n" for name, value in fields.items()) + "\n"
    data = body.encode("utf-8")
    return f"Content-Length: {len(data)}\nContent-Type: text/event-plain\n\n".encode("utf-8") + data


class DialedSocket:
    """Client end of the pair, posing as a freshly created TCP socket."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self.address = None

    def connect(self, address):
        self.address = address

    def __getattr__(self, name):
        return getattr(self._sock, name)


class FakeSwitch:
    """
    Server end of a socket pair.

    Frames written with send() are buffered until the client reads them,
    so a reply may be queued before the request that triggers it is sent.
    """

    def __init__(self):
        self.client_sock, self.server_sock = socket.socketpair()
        self.server_sock.settimeout(5)
        self.reader = self.server_sock.makefile("rb")

    def dial(self, *args, **kwargs) -> DialedSocket:
        return DialedSocket(self.client_sock)

    def send(self, frame: bytes) -> None:
        self.server_sock.sendall(frame)

    def read_request(self) -> bytes:
        """Read one request: a block of lines up to a blank line, plus any body."""
        lines = []
        while True:
            line = self.reader.readline()
            if not line:
                raise EOFError("client closed the connection")
            if line == b"\n":
                break
            lines.append(line)
        data = b"".join(lines) + b"\n"
        for line in lines:
            name, _, value = line.decode("utf-8").partition(":")
            if name.strip().lower() == "content-length":
                data += self.reader.read(int(value))
        return data

    def hang_up(self) -> None:
        """Close the server end; the client sees end of stream."""
        try:
            self.server_sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.reader.close()
        self.server_sock.close()

    def close(self) -> None:
        self.hang_up()
        self.client_sock.close()


class RecordingHandler(ConnectionHandler):
    """Handler that keeps everything it is given."""

    def __init__(self):
        self.events = []
        self.disconnects = []
        self.close_count = 0
        self.connected = threading.Event()
        self.event_received = threading.Event()
        self.disconnected = threading.Event()
        self.closed = threading.Event()

    def on_connect(self, connection):
        self.connected.set()

    def on_event(self, connection, event):
        self.events.append(event)
        self.event_received.set()

    def on_disconnect(self, connection, event):
        self.disconnects.append(event)
        self.disconnected.set()

    def on_close(self, connection):
        self.close_count += 1
        self.closed.set()


@pytest.fixture
def switch():
    """A fake switch that has already queued its greeting and accepted the password."""
    fake = FakeSwitch()
    fake.send(AUTH_REQUEST)
    fake.send(command_reply("+OK accepted"))
    yield fake
    fake.close()


@pytest.fixture
def caller():
    """Thread pool for issuing blocking requests while the test plays the switch."""
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=False)
