"""TCP connection to an iqdb server.

The protocol is half-duplex: one command is written, then its reply is
read to the terminator line before the next command may be sent. The
connection does no locking of its own; callers sharing one connection
between threads must serialize access themselves.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import BinaryIO

from ..errors import TransportError
from ..protocol.commands import LINE_TERMINATOR, build_payload_command
from ..protocol.framing import Response, ResponseAccumulator, parse_responses

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5588
READ_CHUNK_SIZE = 4096
PAYLOAD_CHUNK_SIZE = 4096


@dataclass
class ServerAddress:
    """Host and port of an iqdb server."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def parse_address(address: str) -> ServerAddress:
    """Parse ``host:port`` (or a bare ``host``) into a ServerAddress.

    Raises:
        ValueError: If the port is not a number in 1-65535.
    """
    host, sep, port_text = address.strip().rpartition(":")
    if not sep:
        return ServerAddress(host=port_text or DEFAULT_HOST)

    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid port in address {address!r}") from None
    if not 1 <= port <= 65535:
        raise ValueError(f"Port must be 1-65535, got {port}")
    return ServerAddress(host=host.strip("[]") or DEFAULT_HOST, port=port)


class TCPConnection:
    """Manages one TCP connection to an iqdb server.

    Usage::

        conn = TCPConnection("localhost", 5588)
        conn.open()
        responses = conn.send_command("query 0 0 10 /images/cat.jpg")
        conn.close()
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        timeout: float | None = None,
        read_chunk_size: int = READ_CHUNK_SIZE,
        payload_chunk_size: int = PAYLOAD_CHUNK_SIZE,
    ) -> None:
        self._address = ServerAddress(host=host, port=port)
        self._timeout = timeout
        self._read_chunk_size = read_chunk_size
        self._payload_chunk_size = payload_chunk_size
        self._sock: socket.socket | None = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    @property
    def address(self) -> ServerAddress:
        return self._address

    def open(self) -> ServerAddress:
        """Connect to the server.

        Returns:
            The address connected to.

        Raises:
            ConnectionError: If the connection cannot be established.
        """
        if self._sock is not None:
            return self._address

        try:
            sock = socket.create_connection(
                (self._address.host, self._address.port), timeout=self._timeout
            )
        except OSError as e:
            raise ConnectionError(
                f"Could not connect to iqdb server at {self._address}: {e}"
            ) from e

        self._sock = sock
        logger.info("Connected to iqdb at %s", self._address)
        return self._address

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._sock is None:
            return

        try:
            self._sock.close()
        except OSError as e:
            logger.warning("Error closing connection: %s", e)
        finally:
            self._sock = None
            logger.info("Disconnected from %s", self._address)

    def __enter__(self) -> TCPConnection:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise ConnectionError("Not connected to iqdb server")
        return self._sock

    def write_raw(self, data: bytes) -> None:
        """Write bytes verbatim.

        Raises:
            ConnectionError: If not connected.
            TransportError: If the write fails.
        """
        sock = self._require_socket()
        try:
            sock.sendall(data)
        except OSError as e:
            raise TransportError(f"Write failed: {e}") from e

    def write_line(self, text: str) -> None:
        """Write a command line followed by the line terminator."""
        logger.debug("-> %s", text)
        self.write_raw((text + LINE_TERMINATOR).encode("utf-8"))

    def read_chunk(self) -> bytes:
        """Read whatever is available, up to the read chunk size.

        Raises:
            ConnectionError: If not connected.
            TransportError: If the read fails or the server closed the stream.
        """
        sock = self._require_socket()
        try:
            data = sock.recv(self._read_chunk_size)
        except OSError as e:
            raise TransportError(f"Read failed: {e}") from e
        if not data:
            raise TransportError("Read failed: connection closed by server")
        return data

    def read_response(self) -> bytes:
        """Read until the reply terminator line has arrived.

        Returns:
            The raw reply bytes.
        """
        accumulator = ResponseAccumulator()
        while not accumulator.feed(self.read_chunk()):
            pass
        logger.debug("<- %d bytes", len(accumulator))
        return accumulator.data

    def send_command(self, command: str) -> list[Response]:
        """Send a command line and return its parsed reply.

        Raises:
            TransportError: If the exchange fails.
            ProtocolParseError: If a reply line has no valid code.
        """
        self.write_line(command)
        return parse_responses(self.read_response())

    def send_payload_command(
        self,
        prefix: str,
        payload_size: int,
        source: BinaryIO,
    ) -> list[Response]:
        """Send a command followed by ``payload_size`` bytes read from ``source``.

        The command line is ``<prefix> :<payload_size>``. The payload is
        streamed in chunks until ``source`` is exhausted and followed by a
        CRLF terminator.

        Raises:
            TransportError: If reading the source or the exchange fails.
            ProtocolParseError: If a reply line has no valid code.
        """
        self.write_line(build_payload_command(prefix, payload_size))

        sent = 0
        while True:
            try:
                chunk = source.read(self._payload_chunk_size)
            except OSError as e:
                raise TransportError(f"Payload read failed after {sent} bytes: {e}") from e
            if not chunk:
                break
            self.write_raw(chunk)
            sent += len(chunk)

        if sent != payload_size:
            logger.warning("Announced %d payload bytes but sent %d", payload_size, sent)

        self.write_raw(LINE_TERMINATOR.encode("ascii"))
        return parse_responses(self.read_response())
