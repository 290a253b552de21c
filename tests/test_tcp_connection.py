"""Tests for the TCP connection, using a scripted fake socket."""

from __future__ import annotations

import io
from unittest.mock import patch

import pytest

from iqdb_mcp.errors import ProtocolParseError, TransportError
from iqdb_mcp.protocol.framing import Response
from iqdb_mcp.transport.tcp_connection import (
    DEFAULT_PORT,
    ServerAddress,
    TCPConnection,
    parse_address,
)


class FakeSocket:
    """Records writes and replays scripted reads."""

    def __init__(self, replies: list[bytes] | None = None) -> None:
        self.replies = list(replies or [])
        self.sent = bytearray()
        self.writes: list[bytes] = []
        self.closed = False
        self.fail_send = False
        self.fail_recv = False

    def sendall(self, data: bytes) -> None:
        if self.fail_send:
            raise BrokenPipeError("broken pipe")
        self.sent += data
        self.writes.append(bytes(data))

    def recv(self, size: int) -> bytes:
        if self.fail_recv:
            raise ConnectionResetError("reset by peer")
        if not self.replies:
            return b""
        chunk = self.replies.pop(0)
        assert len(chunk) <= size
        return chunk

    def close(self) -> None:
        self.closed = True


def _open(sock: FakeSocket, **kwargs) -> TCPConnection:
    conn = TCPConnection("iqdb.local", 5588, **kwargs)
    with patch("socket.create_connection", return_value=sock):
        conn.open()
    return conn


class FailingSource:
    def __init__(self) -> None:
        self.calls = 0

    def read(self, size: int) -> bytes:
        self.calls += 1
        if self.calls > 1:
            raise OSError("disk error")
        return b"abc"


def test_parse_address():
    assert parse_address("example.org:1234") == ServerAddress("example.org", 1234)
    assert parse_address("example.org") == ServerAddress("example.org", DEFAULT_PORT)
    assert parse_address(":9000") == ServerAddress("localhost", 9000)
    assert str(parse_address("[::1]:5588")) == "::1:5588"


def test_parse_address_bad_port():
    with pytest.raises(ValueError):
        parse_address("host:http")
    with pytest.raises(ValueError):
        parse_address("host:70000")


def test_open_failure_raises_connection_error():
    conn = TCPConnection("nowhere", 1)
    with patch("socket.create_connection", side_effect=ConnectionRefusedError("refused")):
        with pytest.raises(ConnectionError) as excinfo:
            conn.open()
    assert "nowhere:1" in str(excinfo.value)
    assert not conn.connected


def test_open_passes_timeout():
    conn = TCPConnection("h", 1, timeout=2.5)
    with patch("socket.create_connection", return_value=FakeSocket()) as create:
        conn.open()
    create.assert_called_once_with(("h", 1), timeout=2.5)


def test_close_idempotent():
    sock = FakeSocket()
    conn = _open(sock)
    assert conn.connected
    conn.close()
    conn.close()
    assert sock.closed
    assert not conn.connected


def test_use_before_open():
    conn = TCPConnection()
    with pytest.raises(ConnectionError):
        conn.write_line("query 0 0 1 a")
    with pytest.raises(ConnectionError):
        conn.read_chunk()


def test_send_command_writes_crlf_and_frames_reply():
    sock = FakeSocket([b"200 1a 0.95 100 ", b"200\n000 \n"])
    conn = _open(sock)
    responses = conn.send_command("query 0 0 1 a.jpg")
    assert bytes(sock.sent) == b"query 0 0 1 a.jpg\r\n"
    assert responses == [Response(code=200, content="1a 0.95 100 200")]


def test_send_command_consecutive_cycles_start_empty():
    """Each command cycle starts from a fresh buffer."""
    sock = FakeSocket([b"100 one\n000 \n", b"100 two\n000 \n"])
    conn = _open(sock)
    assert conn.send_command("a") == [Response(100, "one")]
    assert conn.send_command("b") == [Response(100, "two")]


def test_read_until_terminator_over_many_chunks():
    reply = b"".join(f"200 {i:x} 1.0 1 1\n".encode() for i in range(500)) + b"000 \n"
    chunks = [reply[i : i + 37] for i in range(0, len(reply), 37)]
    conn = _open(FakeSocket(chunks), read_chunk_size=64)
    responses = conn.send_command("query 0 0 500 a")
    assert len(responses) == 500
    assert responses[-1].content == "1f3 1.0 1 1"


def test_closed_stream_before_terminator():
    """An orderly close before the terminator is a transport error."""
    conn = _open(FakeSocket([b"200 1a 0.95 100 200\n"]))
    with pytest.raises(TransportError):
        conn.send_command("query 0 0 1 a")


def test_read_failure():
    sock = FakeSocket()
    sock.fail_recv = True
    conn = _open(sock)
    with pytest.raises(TransportError):
        conn.send_command("query 0 0 1 a")


def test_write_failure():
    sock = FakeSocket()
    sock.fail_send = True
    conn = _open(sock)
    with pytest.raises(TransportError):
        conn.send_command("query 0 0 1 a")


def test_bad_code_in_reply():
    conn = _open(FakeSocket([b"2x0 junk\n000 \n"]))
    with pytest.raises(ProtocolParseError):
        conn.send_command("query 0 0 1 a")


def test_payload_upload_frame():
    """Command line, payload chunks, then a CRLF terminator."""
    payload = bytes(range(256)) * 4
    sock = FakeSocket([b"200 1 50.0 8 8\n000 \n"])
    conn = _open(sock, payload_chunk_size=300)
    responses = conn.send_payload_command("query 0 0 5", len(payload), io.BytesIO(payload))

    assert sock.writes[0] == b"query 0 0 5 :1024\r\n"
    assert b"".join(sock.writes[1:-1]) == payload
    assert [len(w) for w in sock.writes[1:-1]] == [300, 300, 300, 124]
    assert sock.writes[-1] == b"\r\n"
    assert responses == [Response(200, "1 50.0 8 8")]


def test_payload_upload_empty():
    """A zero-byte payload still sends the :0 prefix and the terminator."""
    sock = FakeSocket([b"000 \n"])
    conn = _open(sock)
    responses = conn.send_payload_command("query 0 0 5", 0, io.BytesIO(b""))
    assert sock.writes == [b"query 0 0 5 :0\r\n", b"\r\n"]
    assert responses == []


def test_payload_source_failure():
    sock = FakeSocket([b"000 \n"])
    conn = _open(sock)
    with pytest.raises(TransportError):
        conn.send_payload_command("query 0 0 5", 10, FailingSource())
    assert sock.writes == [b"query 0 0 5 :10\r\n", b"abc"]


def test_context_manager():
    sock = FakeSocket([b"100 hi\n000 \n"])
    with patch("socket.create_connection", return_value=sock):
        with TCPConnection("h", 1) as conn:
            assert conn.send_command("x") == [Response(100, "hi")]
    assert sock.closed


def test_terminator_line_split_across_reads():
    """A read boundary right after '000' does not leak into the next reply."""
    sock = FakeSocket([b"100 one\n000", b" \n", b"100 two\n000 \n"])
    conn = _open(sock)
    assert conn.send_command("a") == [Response(100, "one")]
    assert conn.send_command("b") == [Response(100, "two")]
