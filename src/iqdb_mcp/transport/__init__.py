"""Transport layer: the TCP connection to the iqdb server."""

from .tcp_connection import TCPConnection, ServerAddress, parse_address
