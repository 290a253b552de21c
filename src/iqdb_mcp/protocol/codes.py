"""Response codes and query flags of the iqdb protocol.

Every reply line starts with a three-digit code:

- 1xx: informational / metadata
- 2xx: query results
- 3xx: errors

A reply ends with a line whose code is ``000``.
"""

from __future__ import annotations

from enum import IntEnum, IntFlag


class ResponseCode(IntEnum):
    """Status codes prefixing each reply line."""

    END = 0
    INFO = 100
    KEY_VALUE = 101
    DB_LIST = 102
    QUERY = 200
    MULTI_QUERY = 201
    DUPLICATE = 202
    ERR_GENERIC = 300
    ERR_NON_FATAL = 301
    ERR_FATAL = 302


def is_info(code: int) -> bool:
    return 100 <= code <= 199


def is_result(code: int) -> bool:
    return 200 <= code <= 299


def is_error(code: int) -> bool:
    return 300 <= code <= 399


class QueryFlag(IntFlag):
    """Option bits for the ``query`` command.

    Bit 2 (value 4) is unused by the server.
    """

    NONE = 0
    SKETCH = 1
    GRAYSCALE = 2
    WIDTH_AS_ID = 8
    DISCARD_COMMON = 16

    @classmethod
    def parse(cls, names: list[str] | None) -> QueryFlag:
        """Combine flag names (case-insensitive) into a single flag value.

        Raises:
            ValueError: If a name is not a known flag.
        """
        flags = cls.NONE
        for name in names or []:
            key = name.strip().upper().replace("-", "_")
            if key not in cls.__members__ or key == "NONE":
                valid = [m.lower() for m in cls.__members__ if m != "NONE"]
                raise ValueError(f"Unknown query flag '{name}'. Valid: {valid}")
            flags |= cls[key]
        return flags


# Human-readable descriptions, exposed as an MCP resource
FLAG_DESCRIPTIONS: dict[QueryFlag, str] = {
    QueryFlag.SKETCH: "Query image is a sketch",
    QueryFlag.GRAYSCALE: "Ignore color information",
    QueryFlag.WIDTH_AS_ID: "Report image width in place of the image id",
    QueryFlag.DISCARD_COMMON: "Discard common signature coefficients",
}
