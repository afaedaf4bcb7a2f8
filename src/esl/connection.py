"""
Event Socket connection.

This module implements the inbound Event Socket connection: dialing the
switch, the password handshake, and the read loop that separates replies
to our own requests from the asynchronous notifications pushed by the
switch on the same socket.

Replies carry no request identifier, so they are matched to requests by
order: every request registers a future in the FIFO of its reply kind at
the moment it is written, and the read loop resolves the oldest one.

Example usage:
    class Printer(ConnectionHandler):
        def on_event(self, connection, event):
            print(event.name, event.uid)

    conn = Connection("127.0.0.1", 8021, handler=Printer())
    conn.connect()
    conn.start()
    conn.send_recv("event", "plain", "CHANNEL_ANSWER")
    print(conn.api("status"))
"""

import logging
import socket
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Deque, Dict, Mapping, Optional, Union

from .command import Command
from .config import (
    ConnectionConfig, DEFAULT_DISPATCH_WORKERS, DEFAULT_MAX_RETRIES,
    DEFAULT_PASSWORD, DEFAULT_PORT, DEFAULT_TIMEOUT, READ_BUFFER_SIZE
)
from .event import Event, EventType
from .exceptions import (
    AuthenticationError, CommandError, ConnectionClosedError, ConnectionError,
    ESLError, FrameDecodingError, TimeoutError, UnknownContentTypeError
)
from .session import SessionRecorder


class ConnectionHandler:
    """
    Lifecycle callbacks invoked by a Connection.

    Subclass and override the hooks you need; the defaults do nothing.
    on_event runs on the dispatch pool, the other hooks run on the thread
    that triggered them.
    """

    def on_connect(self, connection: "Connection") -> None:
        """Called once the connection is authenticated."""

    def on_event(self, connection: "Connection", event: Event) -> None:
        """Called for every notification."""

    def on_disconnect(self, connection: "Connection", event: Event) -> None:
        """Called when the switch sends a disconnect notice."""

    def on_close(self, connection: "Connection") -> None:
        """Called exactly once when the connection is closed."""


class ReplyKind:
    COMMAND = "command/reply"
    API = "api/response"


class Connection:
    """
    Inbound Event Socket connection to a switch.
    """

    def __init__(self, host: str, port: int = DEFAULT_PORT,
                 handler: Optional[ConnectionHandler] = None,
                 password: str = DEFAULT_PASSWORD,
                 timeout: float = DEFAULT_TIMEOUT,
                 max_retries: int = DEFAULT_MAX_RETRIES,
                 reply_timeout: Optional[float] = None,
                 dispatch_workers: int = DEFAULT_DISPATCH_WORKERS,
                 record_session: bool = False,
                 logger: Optional[logging.Logger] = None):
        self.host = host
        self.port = port
        self.handler = handler or ConnectionHandler()
        self.password = password
        self.timeout = timeout
        self.max_retries = max_retries
        self.reply_timeout = reply_timeout
        self.dispatch_workers = dispatch_workers
        self.logger = logger or logging.getLogger(__name__)
        self.session_recorder = SessionRecorder() if record_session else None
        self.user_data = None

        self.socket: Optional[socket.socket] = None
        self.connected = False
        self._reader = None
        self._reading = False
        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._pending: Dict[str, Deque[Future]] = {
            ReplyKind.COMMAND: deque(),
            ReplyKind.API: deque(),
        }
        self._executor: Optional[ThreadPoolExecutor] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._loop_error: Optional[ESLError] = None

    @classmethod
    def from_config(cls, config: ConnectionConfig,
                    handler: Optional[ConnectionHandler] = None,
                    record_session: bool = False) -> "Connection":
        """Create a connection from a validated ConnectionConfig."""
        config.validate()
        return cls(
            config.host,
            config.port,
            handler=handler,
            password=config.password,
            timeout=config.timeout,
            max_retries=config.max_retries,
            reply_timeout=config.reply_timeout,
            dispatch_workers=config.dispatch_workers,
            record_session=record_session,
        )

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    # Connection setup

    def connect(self) -> None:
        """
        Dial, authenticate and start delivering notifications.

        Raises:
            ConnectionError: If already connected or every dial attempt fails
            AuthenticationError: If the handshake fails
        """
        self.connect_retry(self.max_retries)
        self._dispatch(self.handler.on_connect, self)

    def connect_retry(self, max_retries: int) -> None:
        """
        Open the socket with up to max_retries attempts, then authenticate.

        Raises:
            ValueError: If max_retries is below 1
            ConnectionError: If already connected, or wrapping the last attempt's error
            AuthenticationError: If the handshake fails
        """
        if self.connected:
            raise ConnectionError(f"Already connected to {self.address}")
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        self.logger.info(f"Connecting to {self.address}")
        for attempt in range(1, max_retries + 1):
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.settimeout(self.timeout)
            try:
                sock.connect((self.host, self.port))
            except OSError as e:
                sock.close()
                if attempt == max_retries:
                    error_msg = f"last dial attempt: {e}"
                    self.logger.error(error_msg)
                    self._record_event("error", error_msg, {"error_type": "connection_failed"})
                    raise ConnectionError(error_msg) from e
                self.logger.warning(f"dial attempt #{attempt}: {e}, retrying")
                continue
            self.socket = sock
            break

        self._reader = self.socket.makefile("rb", buffering=READ_BUFFER_SIZE)
        self._record_event("connection", f"Connected to {self.address}",
                           {"host": self.host, "port": self.port, "timeout": self.timeout})
        self.authenticate()

    def authenticate(self) -> None:
        """
        Perform the password handshake with the switch.

        Raises:
            AuthenticationError: If authentication fails; the socket is released
        """
        try:
            event = Event.read(self._reader)
        except (ESLError, OSError) as e:
            self._abort_handshake(f"socket read error: {e}", e)
        self._record_response(event)
        if event.type != EventType.AUTH_REQUEST:
            self._abort_handshake(f"bad auth preamble: [{event.header}]")

        try:
            self.write(f"auth {self.password}\n\n".encode("utf-8"))
        except ConnectionError as e:
            self._abort_handshake(f"password write: {e}", e)

        try:
            event = Event.read(self._reader)
        except CommandError as e:
            self._abort_handshake(f"auth rejected: {e.reply}", e)
        except (ESLError, OSError) as e:
            self._abort_handshake(f"auth reply: {e}", e)
        self._record_response(event)
        if event.type != EventType.COMMAND_REPLY:
            self._abort_handshake(f"bad reply type: {event.type.name}")

        self.socket.settimeout(None)
        self._executor = ThreadPoolExecutor(
            max_workers=self.dispatch_workers,
            thread_name_prefix="esl-dispatch",
        )
        self.connected = True
        self.logger.info("Authentication successful")

    def _abort_handshake(self, error_msg: str, cause: Optional[BaseException] = None) -> None:
        self.logger.error(f"Authentication failed: {error_msg}")
        self._record_event("error", error_msg, {"error_type": "authentication_failed"})
        self._release_socket()
        raise AuthenticationError(error_msg) from cause

    # Requests

    def write(self, data: bytes) -> int:
        """
        Write raw bytes to the switch.

        Returns:
            int: Number of bytes written

        Raises:
            ConnectionError: If the socket is gone or the write fails
        """
        with self._write_lock:
            return self._send(data)

    def _send(self, data: bytes) -> int:
        if self.socket is None:
            raise ConnectionError("Not connected to server")
        # Record first; the reply can be read before sendall returns
        if self.session_recorder:
            self.session_recorder.record_request(data)
        try:
            self.socket.sendall(data)
        except OSError as e:
            error_msg = f"Failed to send frame: {e}"
            self.logger.error(error_msg)
            self._record_event("error", error_msg, {"error_type": "send_failed"})
            raise ConnectionError(error_msg) from e

        if self.logger.isEnabledFor(logging.DEBUG):
            first_line = data.split(b"\n", 1)[0].decode("utf-8", errors="replace")
            if first_line.startswith("auth "):
                first_line = "auth ********"
            self.logger.debug(f"Sent {first_line!r} ({len(data)} bytes)")
        return len(data)

    def _roundtrip(self, kind: str, data: bytes, timeout: Optional[float]) -> Event:
        future: Future = Future()
        with self._write_lock:
            self._enqueue(kind, future)
            try:
                self._send(data)
            except ConnectionError:
                self._discard(kind, future)
                raise

        if timeout is None:
            timeout = self.reply_timeout
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            # The future keeps its place so a late reply is not handed to the next caller
            raise TimeoutError(f"no {kind} received within {timeout}s")

    def _enqueue(self, kind: str, future: Future) -> None:
        with self._state_lock:
            if not self.connected:
                raise ConnectionClosedError("Connection is closed")
            self._pending[kind].append(future)

    def _discard(self, kind: str, future: Future) -> None:
        with self._state_lock:
            try:
                self._pending[kind].remove(future)
            except ValueError:
                pass  # already drained by close()

    def _command(self, data: bytes, label: str, timeout: Optional[float]) -> Event:
        try:
            event = self._roundtrip(ReplyKind.COMMAND, data, timeout)
        except CommandError as e:
            raise CommandError(f"{label}: {e.reply}", reply=e.reply, event=e.event) from e

        reply = event.header.get("Reply-Text")
        if reply.startswith("-ERR"):
            raise CommandError(f"{label}: {reply.strip()}", reply=reply.strip(), event=event)
        return event

    def request(self, data: bytes, timeout: Optional[float] = None) -> Event:
        """
        Write a pre-formatted request and wait for its command reply.

        Raises:
            CommandError: If the switch rejects the request
            TimeoutError: If no reply arrives within timeout
            ConnectionClosedError: If the connection closes while waiting
        """
        label = data.split(b"\n", 1)[0].decode("utf-8", errors="replace")
        return self._command(data, label, timeout)

    def send_recv(self, cmd: str, *args: str, timeout: Optional[float] = None) -> Event:
        """
        Send a plain command and wait for its reply.

        Returns:
            Event: The command reply

        Raises:
            CommandError: If the reply text carries -ERR
        """
        line = " ".join((cmd,) + args)
        return self._command(f"{line}\n\n".encode("utf-8"), f"send_recv {line}", timeout)

    def must_send_recv(self, cmd: str, *args: str) -> Event:
        """Like send_recv, but close the connection before re-raising a failure."""
        try:
            return self.send_recv(cmd, *args)
        except ESLError as e:
            self.logger.error(f"send_recv {cmd} failed, closing: {e}")
            self.close()
            raise

    def send_event(self, name: str, headers: Optional[Mapping[str, str]] = None,
                   body: Union[bytes, str] = b"", timeout: Optional[float] = None) -> Event:
        """
        Inject a custom event into the switch.

        Returns:
            Event: The command reply
        """
        if isinstance(body, str):
            body = body.encode("utf-8")
        lines = [f"sendevent {name}"]
        lines.extend(f"{k}: {v}" for k, v in (headers or {}).items())
        lines.append(f"Content-Length: {len(body)}")
        data = ("\n".join(lines) + "\n\n").encode("utf-8") + body
        return self._command(data, f"send event {name}", timeout)

    def api(self, cmd: str, *args: str, timeout: Optional[float] = None) -> str:
        """
        Run an API query and return its output.

        Raises:
            CommandError: If the output starts with -ERR
        """
        line = " ".join((cmd,) + args)
        event = self._roundtrip(ReplyKind.API, f"api {line}\n\n".encode("utf-8"), timeout)
        body = (event.raw_body or b"").decode("utf-8", errors="replace")
        response = body.strip()
        if response.startswith("-ERR"):
            raise CommandError(f"api {line}: {response}", reply=response, event=event)
        return body

    def bg_api(self, cmd: str, *args: str, timeout: Optional[float] = None) -> str:
        """
        Start an API query in the background.

        Returns:
            str: The job UUID; the result arrives later as a BACKGROUND_JOB event
        """
        event = self.send_recv(f"bgapi {cmd}", *args, timeout=timeout)
        return event.get("Job-UUID")

    def execute(self, app: str, uuid: str, *params: str, timeout: Optional[float] = None) -> Event:
        """Run a dialplan application on a call leg without waiting for it to finish."""
        cmd = Command(uid=uuid, app=app, args=" ".join(params), sync=False)
        return cmd.execute(self, timeout=timeout)

    def execute_sync(self, app: str, uuid: str, *params: str, timeout: Optional[float] = None) -> Event:
        """Run a dialplan application on a call leg with the event lock held."""
        cmd = Command(uid=uuid, app=app, args=" ".join(params), sync=True)
        return cmd.execute(self, timeout=timeout)

    # Read loop

    def start(self) -> threading.Thread:
        """Run handle_events on a background thread."""
        if self._loop_thread is not None and self._loop_thread.is_alive():
            return self._loop_thread
        self._loop_error = None
        self._reading = True
        self._loop_thread = threading.Thread(target=self._run_loop, name="esl-read-loop", daemon=True)
        self._loop_thread.start()
        return self._loop_thread

    def _run_loop(self) -> None:
        try:
            self.handle_events()
        except ESLError as e:
            self._loop_error = e

    def join(self, timeout: Optional[float] = None) -> None:
        """
        Wait for the background read loop to finish.

        Raises:
            ESLError: The failure that stopped the read loop, if any
        """
        if self._loop_thread is not None:
            self._loop_thread.join(timeout)
        if self._loop_error is not None:
            raise self._loop_error

    def handle_events(self) -> None:
        """
        Read and route frames until the connection closes.

        Returns normally when the stream ends after close().

        Raises:
            ServerDisconnectionError: If the switch closes the stream
            FrameDecodingError: If a frame cannot be decoded or routed
        """
        reader = self._reader
        self._reading = True
        try:
            while self.connected:
                try:
                    event = Event.read(reader)
                except CommandError as e:
                    self._record_response(e.event)
                    self._resolve(ReplyKind.COMMAND, error=e)
                    continue
                except UnknownContentTypeError as e:
                    self.logger.warning(f"Skipping frame: {e}")
                    self._record_response(e.event)
                    continue
                except (ESLError, OSError) as e:
                    if not self.connected:
                        self.logger.debug(f"Read loop stopped: {e}")
                        return
                    self.logger.error(f"Event read loop: {e}")
                    self._record_event("error", f"Event read loop: {e}", {"error_type": "receive_failed"})
                    self.close()
                    if isinstance(e, ESLError):
                        raise
                    raise ConnectionError(f"event read loop: {e}") from e

                self.logger.debug(f"Received {event!r}")
                self._record_response(event)
                self._route(event)
        finally:
            self._reading = False
            if not self.connected:
                self._close_reader()

    def _route(self, event: Event) -> None:
        if event.type == EventType.GENERIC:
            self._dispatch(self.handler.on_event, self, event)
        elif event.type == EventType.COMMAND_REPLY:
            self._resolve(ReplyKind.COMMAND, event=event)
        elif event.type == EventType.API_RESPONSE:
            self._resolve(ReplyKind.API, event=event)
        elif event.type == EventType.DISCONNECT:
            self.logger.info("Disconnect notice received")
            try:
                self.handler.on_disconnect(self, event)
            except Exception:
                self.logger.exception("on_disconnect handler failed")
        else:
            self.close()
            raise FrameDecodingError(f"invalid event: [{event.header}]")

    def _resolve(self, kind: str, event: Optional[Event] = None,
                 error: Optional[BaseException] = None) -> None:
        with self._state_lock:
            queue = self._pending[kind]
            future = queue.popleft() if queue else None
        if future is None:
            self.logger.warning(f"Dropping unsolicited {kind} frame")
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(event)

    def _dispatch(self, callback: Callable, *args) -> None:
        executor = self._executor
        if executor is None:
            self.logger.warning(f"No dispatch pool, dropping {getattr(callback, '__name__', 'callback')}")
            return
        try:
            future = executor.submit(callback, *args)
        except RuntimeError:
            self.logger.debug("Dispatch pool stopped, dropping callback")
            return
        future.add_done_callback(self._log_callback_failure)

    def _log_callback_failure(self, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self.logger.error(f"Handler callback failed: {error!r}", exc_info=error)

    # Teardown

    def close(self) -> None:
        """
        Close the connection.

        Safe to call more than once. The first call on a connected
        connection fires the handler's on_close hook. Callers still waiting
        for a reply receive ConnectionClosedError.
        """
        with self._state_lock:
            was_connected = self.connected
            self.connected = False
            pending = [future for queue in self._pending.values() for future in queue]
            for queue in self._pending.values():
                queue.clear()

        if was_connected:
            self.logger.info(f"Disconnected from {self.address}")
            self._record_event("disconnection", "Client disconnected")
            try:
                self.handler.on_close(self)
            except Exception:
                self.logger.exception("on_close handler failed")

        for future in pending:
            future.set_exception(ConnectionClosedError("Connection closed while waiting for reply"))

        self._release_socket()
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    def _release_socket(self) -> None:
        sock = self.socket
        self.socket = None
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                self.logger.debug(f"Socket shutdown: {e}")
            sock.close()
        if not self._reading:
            self._close_reader()

    def _close_reader(self) -> None:
        reader = self._reader
        self._reader = None
        if reader is not None:
            reader.close()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # Session recording

    def _record_event(self, event_type: str, description: str, details: Optional[dict] = None) -> None:
        if self.session_recorder:
            self.session_recorder.record_event(event_type, description, details)

    def _record_response(self, event: Optional[Event]) -> None:
        if self.session_recorder and event is not None:
            self.session_recorder.record_response(event)
