"""Reply framing: detect the end of a reply and split it into coded lines.

Reply layout::

    +--------+-------+-----------+-----+
    |  Code  | Delim | Content   | LF  |   one or more lines
    |  3 B   | 1 B   | variable  | 1 B |
    +--------+-------+-----------+-----+
    |  000   | ' '   | ignored   | LF  |   terminator line
    +--------+-------+-----------+-----+

A reply ends at the first ``\\n000`` in the accumulated bytes and is complete
once the newline closing that terminator line has arrived. Lines are only
split after that, so the result does not depend on how the stream was
chunked across reads.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ProtocolParseError
from .codes import ResponseCode

TERMINATOR = b"\n000"
LINE_SEPARATOR = b"\n"
CODE_WIDTH = 3
CONTENT_OFFSET = CODE_WIDTH + 1  # code + one-character delimiter


@dataclass
class Response:
    """A single coded reply line."""

    code: int
    content: str

    def __repr__(self) -> str:
        return f"Response(code={self.code:03d}, content={self.content!r})"


class ResponseAccumulator:
    """Collects reply bytes until the terminator line has been read.

    The reply is recognised as ending once ``\\n000`` appears; bytes are
    then accepted up to the newline that closes the terminator line, so no
    part of it is left for the next command. The search only covers newly
    appended bytes (plus an overlap for a terminator split across two
    chunks).
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._scanned = 0
        # Offset just past the matched "000", once seen
        self._terminator_end: int | None = None
        self._end = 0
        self._complete = False

    @property
    def complete(self) -> bool:
        return self._complete

    @property
    def data(self) -> bytes:
        """The reply bytes, up to and including the terminator line."""
        if self._complete:
            return bytes(self._buffer[: self._end])
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> bool:
        """Append a chunk and return whether the reply is complete."""
        if self._complete:
            return True

        self._buffer += chunk

        if self._terminator_end is None:
            # A reply consisting of the terminator line alone has no leading newline
            if self._buffer.startswith(TERMINATOR[1:]):
                self._terminator_end = len(TERMINATOR) - 1
            else:
                start = max(0, self._scanned - (len(TERMINATOR) - 1))
                found = self._buffer.find(TERMINATOR, start)
                if found != -1:
                    self._terminator_end = found + len(TERMINATOR)
                self._scanned = len(self._buffer)

        if self._terminator_end is not None:
            newline = self._buffer.find(LINE_SEPARATOR, self._terminator_end)
            if newline != -1:
                self._end = newline + 1
                self._complete = True
        return self._complete


def split_records(data: bytes) -> list[bytes]:
    """Split a reply on newlines, dropping empty records."""
    return [record for record in data.split(LINE_SEPARATOR) if record]


def parse_record(record: bytes) -> Response | None:
    """Parse one reply line into a Response.

    Returns:
        The parsed ``Response``, or ``None`` for the ``000`` terminator line.

    Raises:
        ProtocolParseError: If the line does not start with three ASCII
            digits followed by a space (or the end of the line).
    """
    code_bytes = record[:CODE_WIDTH]
    delimiter = record[CODE_WIDTH:CONTENT_OFFSET]
    # bytes.isdigit() only accepts ASCII digits
    if (
        len(code_bytes) < CODE_WIDTH
        or not code_bytes.isdigit()
        or delimiter not in (b"", b" ", b"\r")
    ):
        text = record.decode("utf-8", errors="replace")
        raise ProtocolParseError(f"Invalid response code in line {text!r}")

    code = int(code_bytes)
    if code == ResponseCode.END:
        return None

    content = record[CONTENT_OFFSET:].decode("utf-8", errors="replace")
    if content.endswith("\r"):
        content = content[:-1]
    return Response(code=code, content=content)


def parse_responses(data: bytes) -> list[Response]:
    """Frame a complete reply into its ordered list of responses.

    The terminator line is not included.

    Raises:
        ProtocolParseError: If any line has an unparseable code.
    """
    responses: list[Response] = []
    for record in split_records(data):
        response = parse_record(record)
        if response is not None:
            responses.append(response)
    return responses
