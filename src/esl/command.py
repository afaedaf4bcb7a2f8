"""
Application execution requests.

A Command asks the switch to run a dialplan application on a call leg:

    sendmsg <uuid>
    call-command: execute
    execute-app-name: <app>
    execute-app-arg: <args>
    event-lock: true|false
    <blank line>
"""

import io
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from .exceptions import FrameDecodingError, ServerDisconnectionError
from .headers import HeaderMap

if TYPE_CHECKING:
    from .connection import Connection
    from .event import Event


@dataclass
class Command:
    """One "execute application" request for a call leg."""
    uid: str
    app: str
    args: str = ""
    sync: bool = False

    def serialize(self) -> bytes:
        """Format the command as expected by the switch."""
        lines = [
            f"sendmsg {self.uid}",
            "call-command: execute",
            f"execute-app-name: {self.app}",
            f"execute-app-arg: {self.args}",
            f"event-lock: {'true' if self.sync else 'false'}",
        ]
        return ("\n".join(lines) + "\n\n").encode("utf-8")

    def execute(self, connection: "Connection", timeout: Optional[float] = None) -> "Event":
        """
        Send the command over a connection and wait for its reply.

        Returns:
            Event: The command reply

        Raises:
            CommandError: If the switch rejects the command
        """
        return connection.request(self.serialize(), timeout=timeout)

    @classmethod
    def parse(cls, data: bytes) -> "Command":
        """
        Read a serialized command back.

        Raises:
            FrameDecodingError: If data is not an execute request
        """
        stream = io.BytesIO(data)
        first_line = stream.readline().decode("utf-8", errors="replace").strip()
        verb, _, uid = first_line.partition(" ")
        if verb != "sendmsg":
            raise FrameDecodingError(f"not a sendmsg request: {first_line!r}")

        try:
            headers = HeaderMap.read(stream)
        except ServerDisconnectionError:
            raise FrameDecodingError("sendmsg request without headers")
        if headers.get("call-command") != "execute":
            raise FrameDecodingError(f"unexpected call-command {headers.get('call-command')!r}")

        return cls(
            uid=uid.strip(),
            app=headers.get("execute-app-name"),
            args=headers.get("execute-app-arg"),
            sync=headers.get("event-lock").lower() == "true",
        )
