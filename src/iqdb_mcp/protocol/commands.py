"""Command-line builders.

A command is a single ASCII line of space-separated arguments. Lines are
terminated with CRLF on the wire; the terminator is appended by the
transport, not by these builders.
"""

from __future__ import annotations

from .codes import QueryFlag

LINE_TERMINATOR = "\r\n"

CMD_QUERY = "query"


def build_command(name: str, *args: object) -> str:
    """Build a command line from a command name and its arguments.

    Arguments are formatted with ``str()`` and joined with single spaces.

    Raises:
        ValueError: If any part contains a line break.
    """
    parts = [name, *(str(arg) for arg in args)]
    for part in parts:
        if "\r" in part or "\n" in part:
            raise ValueError(f"Command arguments must not contain line breaks: {part!r}")
    return " ".join(parts)


def _check_query_args(db_id: int, flags: int, num_results: int) -> None:
    if db_id < 0:
        raise ValueError(f"Database id must be >= 0, got {db_id}")
    if flags < 0:
        raise ValueError(f"Query flags must be >= 0, got {flags}")
    if num_results < 1:
        raise ValueError(f"Number of results must be >= 1, got {num_results}")


def build_query(
    db_id: int, flags: int | QueryFlag, num_results: int, filename: str
) -> str:
    """Build ``query <dbID> <flags> <maxResults> <filename>``.

    The filename is a path readable by the server, not by the client.
    """
    _check_query_args(db_id, flags, num_results)
    return build_command(CMD_QUERY, db_id, int(flags), num_results, filename)


def build_payload_command(prefix: str, payload_size: int) -> str:
    """Build ``<prefix> :<payloadSize>`` for a command followed by raw bytes."""
    if payload_size < 0:
        raise ValueError(f"Payload size must be >= 0, got {payload_size}")
    return f"{prefix} :{payload_size}"


def build_query_prefix(db_id: int, flags: int | QueryFlag, num_results: int) -> str:
    """Build the query command without its image argument.

    Used with :func:`build_payload_command` when the image is uploaded.
    """
    _check_query_args(db_id, flags, num_results)
    return build_command(CMD_QUERY, db_id, int(flags), num_results)


def build_query_payload(
    db_id: int, flags: int | QueryFlag, num_results: int, payload_size: int
) -> str:
    """Build ``query <dbID> <flags> <maxResults> :<size>``."""
    return build_payload_command(
        build_query_prefix(db_id, flags, num_results), payload_size
    )
