"""High-level iqdb client.

Wraps a :class:`TCPConnection` with query helpers that return typed results::

    with connect("localhost:5588") as client:
        for match in client.query_file(0, QueryFlag.NONE, 10, "cat.jpg"):
            print(match.image_id, match.score)
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import BinaryIO

from .protocol.codes import QueryFlag
from .protocol.commands import build_query, build_query_prefix
from .protocol.framing import Response
from .protocol.parser import (
    MultiQueryResult,
    QueryResult,
    decode_multi_query_results,
    decode_query_results,
)
from .transport.tcp_connection import TCPConnection, parse_address

logger = logging.getLogger(__name__)


class Client:
    """A connection to one iqdb server.

    One command is in flight at a time. Do not share a client between
    threads without external locking.
    """

    def __init__(self, address: str, timeout: float | None = None) -> None:
        server = parse_address(address)
        self._conn = TCPConnection(server.host, server.port, timeout=timeout)

    @property
    def connected(self) -> bool:
        return self._conn.connected

    @property
    def address(self) -> str:
        return str(self._conn.address)

    def open(self) -> Client:
        """Connect to the server. Raises ConnectionError on failure."""
        self._conn.open()
        return self

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> Client:
        if not self.connected:
            self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def command(self, line: str) -> list[Response]:
        """Send a raw command line and return the parsed reply."""
        return self._conn.send_command(line)

    def query(
        self,
        db_id: int,
        flags: int | QueryFlag,
        num_results: int,
        filename: str,
    ) -> list[QueryResult]:
        """Query with an image file that lives on the server."""
        responses = self.command(build_query(db_id, flags, num_results, filename))
        return decode_query_results(responses)

    def multi_query(
        self,
        db_id: int,
        flags: int | QueryFlag,
        num_results: int,
        filename: str,
    ) -> list[MultiQueryResult]:
        """Like :meth:`query`, but decodes database-tagged (201) matches."""
        responses = self.command(build_query(db_id, flags, num_results, filename))
        return decode_multi_query_results(responses)

    def query_with_payload(
        self,
        db_id: int,
        flags: int | QueryFlag,
        num_results: int,
        payload_size: int,
        source: BinaryIO,
    ) -> list[QueryResult]:
        """Query with image data uploaded from ``source``."""
        responses = self._conn.send_payload_command(
            build_query_prefix(db_id, flags, num_results), payload_size, source
        )
        return decode_query_results(responses)

    def query_bytes(
        self,
        db_id: int,
        flags: int | QueryFlag,
        num_results: int,
        data: bytes,
    ) -> list[QueryResult]:
        """Query with in-memory image data."""
        return self.query_with_payload(
            db_id, flags, num_results, len(data), io.BytesIO(data)
        )

    def query_file(
        self,
        db_id: int,
        flags: int | QueryFlag,
        num_results: int,
        path: str | Path,
    ) -> list[QueryResult]:
        """Query with a local image file, uploaded as the payload."""
        path = Path(path)
        size = path.stat().st_size
        logger.debug("Uploading %s (%d bytes)", path, size)
        with path.open("rb") as f:
            return self.query_with_payload(db_id, flags, num_results, size, f)


def connect(address: str, timeout: float | None = None) -> Client:
    """Open a client connected to ``address`` (``host:port``).

    Raises:
        ConnectionError: If the server cannot be reached.
    """
    return Client(address, timeout=timeout).open()
