"""
MIME style header maps used by Event Socket frames.

A header block is a run of ``Name: value`` lines terminated by a blank
line. The same format is used for the outer frame header and for the
nested header block carried in the body of plain-text notifications.
"""

import io
from typing import Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import unquote_plus

from .exceptions import FrameDecodingError, ServerDisconnectionError, TruncatedFrameError


_TOKEN_CHARS = frozenset(
    "!#$%&'*+-.^_`|~0123456789"
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
)


def canonical_key(name: str) -> str:
    """
    Return the canonical form of a header name.

    The first letter and any letter following a hyphen are upper-cased,
    the rest lower-cased: ``content-type`` becomes ``Content-Type``.
    Names containing characters outside the token set are returned as-is.
    """
    if not name or any(ch not in _TOKEN_CHARS for ch in name):
        return name
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


class HeaderMap:
    """
    Case-insensitive, multi-valued header storage.

    When ``escaped`` is set the stored values are percent-escaped and
    every read returns the decoded value.
    """

    def __init__(self, headers: Optional[Dict[str, Union[str, List[str]]]] = None, escaped: bool = False):
        self.escaped = escaped
        self._values: Dict[str, List[str]] = {}
        for name, value in (headers or {}).items():
            if isinstance(value, str):
                self.add(name, value)
            else:
                for item in value:
                    self.add(name, item)

    def add(self, name: str, value: str) -> None:
        """Append a value for ``name``, keeping any earlier ones."""
        self._values.setdefault(canonical_key(name), []).append(value)

    def _decode(self, value: str) -> str:
        if self.escaped:
            return unquote_plus(value)
        return value

    def get(self, name: str, default: str = "") -> str:
        """Return the first value stored for ``name``, unescaped."""
        values = self._values.get(canonical_key(name))
        if not values:
            return default
        return self._decode(values[0])

    def get_all(self, name: str) -> List[str]:
        """Return every value stored for ``name``, unescaped."""
        return [self._decode(v) for v in self._values.get(canonical_key(name), [])]

    def raw(self, name: str, default: str = "") -> str:
        """Return the first value for ``name`` exactly as it was received."""
        values = self._values.get(canonical_key(name))
        return values[0] if values else default

    def items(self) -> Iterator[Tuple[str, str]]:
        for name, values in self._values.items():
            yield name, ",".join(self._decode(v) for v in values)

    def to_dict(self) -> Dict[str, str]:
        return dict(self.items())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and canonical_key(name) in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __str__(self) -> str:
        return "\n".join(f"{name}: {value}" for name, value in self.items())

    def __repr__(self) -> str:
        return f"HeaderMap({self._values!r}, escaped={self.escaped})"

    @classmethod
    def read(cls, stream, escaped: bool = False, allow_eof: bool = False) -> "HeaderMap":
        """
        Read one header block from a buffered binary stream.

        Args:
            stream: Object with a ``readline()`` method returning bytes
            escaped: Whether the values in this block are percent-escaped
            allow_eof: Treat end of stream as the end of the block

        Returns:
            HeaderMap: The parsed block

        Raises:
            ServerDisconnectionError: Stream ended before the block started
            TruncatedFrameError: Stream ended inside the block
            FrameDecodingError: A line is not a valid header line
        """
        headers = cls(escaped=escaped)
        last_key: Optional[str] = None
        started = False

        while True:
            line = stream.readline()
            if not line:
                if allow_eof:
                    return headers
                if not started:
                    raise ServerDisconnectionError("end of stream")
                raise TruncatedFrameError("end of stream inside header block")
            if not line.endswith(b"\n") and not allow_eof:
                raise TruncatedFrameError("end of stream inside header line")
            started = True

            text = line.decode("utf-8", errors="replace").rstrip("\r\n")
            if not text:
                return headers

            if text[0] in " \t":
                # Continuation of the previous value
                if last_key is None:
                    raise FrameDecodingError(f"malformed header continuation: {text!r}")
                values = headers._values[last_key]
                values[-1] = f"{values[-1]} {text.strip()}"
                continue

            name, sep, value = text.partition(":")
            name = name.strip()
            if not sep or not name:
                raise FrameDecodingError(f"malformed header line: {text!r}")
            last_key = canonical_key(name)
            headers.add(last_key, value.strip())

    @classmethod
    def parse(cls, data: bytes, escaped: bool = False) -> "HeaderMap":
        """Parse a header block held in memory; a missing blank line is tolerated."""
        return cls.read(io.BytesIO(data), escaped=escaped, allow_eof=True)
