"""Exception types raised by the iqdb client.

Failing to dial the server raises the builtin ``ConnectionError``.
"""

from __future__ import annotations


class TransportError(OSError):
    """A read or write failed on an established connection.

    The connection is left in an undefined state and should be closed.
    """


class ProtocolParseError(ValueError):
    """A response line or result record could not be parsed."""
