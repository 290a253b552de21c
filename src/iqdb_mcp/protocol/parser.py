"""Typed decoding of reply lines.

Each response code maps to one record shape. Image ids are sent as
hexadecimal, scores as floating point, everything else as decimal.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ProtocolParseError
from .codes import ResponseCode, is_error
from .framing import Response


@dataclass
class InfoResponse:
    """Parsed informational (100) line."""

    message: str


@dataclass
class KeyValueResponse:
    """Parsed ``key=value`` (101) line."""

    key: str
    value: str


@dataclass
class DBListResponse:
    """Parsed loaded-database (102) line."""

    db_id: int
    filename: str


@dataclass
class QueryResult:
    """One query match (200)."""

    image_id: int
    score: float
    width: int
    height: int

    def to_dict(self) -> dict:
        return {
            "image_id": self.image_id,
            "image_id_hex": f"{self.image_id:x}",
            "score": self.score,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class MultiQueryResult(QueryResult):
    """A query match from one of several queried databases (201)."""

    db_id: int = 0

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["db_id"] = self.db_id
        return result


@dataclass
class DuplicateResult:
    """A duplicate-detection match (202)."""

    image_id: int
    score: float


@dataclass
class ErrorResponse:
    """An error line (3xx) embedded in a reply."""

    code: int
    message: str

    @property
    def fatal(self) -> bool:
        return self.code == ResponseCode.ERR_FATAL


def _fields(content: str, count: int, kind: str) -> list[str]:
    fields = content.split()
    if len(fields) != count:
        raise ProtocolParseError(
            f"{kind} record must have {count} fields, got {len(fields)}: {content!r}"
        )
    return fields


def _parse_int(text: str, base: int, name: str) -> int:
    try:
        return int(text, base)
    except ValueError as e:
        raise ProtocolParseError(f"Invalid {name}: {text!r}") from e


def _parse_float(text: str, name: str) -> float:
    try:
        return float(text)
    except ValueError as e:
        raise ProtocolParseError(f"Invalid {name}: {text!r}") from e


def parse_query_match(content: str) -> QueryResult:
    """Parse ``<hex image id> <score> <width> <height>``.

    Raises:
        ProtocolParseError: If the field count is wrong or a field is not numeric.
    """
    image_id, score, width, height = _fields(content, 4, "Query match")
    return QueryResult(
        image_id=_parse_int(image_id, 16, "image id"),
        score=_parse_float(score, "score"),
        width=_parse_int(width, 10, "width"),
        height=_parse_int(height, 10, "height"),
    )


def parse_multi_query_match(content: str) -> MultiQueryResult:
    """Parse ``<db id> <hex image id> <score> <width> <height>``."""
    db_id, *rest = _fields(content, 5, "Multi-query match")
    match = parse_query_match(" ".join(rest))
    return MultiQueryResult(
        image_id=match.image_id,
        score=match.score,
        width=match.width,
        height=match.height,
        db_id=_parse_int(db_id, 10, "database id"),
    )


def parse_duplicate(content: str) -> DuplicateResult:
    """Parse ``<hex image id> <score>``."""
    image_id, score = _fields(content, 2, "Duplicate")
    return DuplicateResult(
        image_id=_parse_int(image_id, 16, "image id"),
        score=_parse_float(score, "score"),
    )


def parse_info(content: str) -> InfoResponse:
    return InfoResponse(message=content)


def parse_key_value(content: str) -> KeyValueResponse:
    key, _, value = content.partition("=")
    return KeyValueResponse(key=key.strip(), value=value.strip())


def parse_db_list(content: str) -> DBListResponse:
    """Parse ``<db id> <filename>``; the filename may contain spaces."""
    parts = content.split(None, 1)
    if not parts:
        raise ProtocolParseError("Empty database list record")
    filename = parts[1] if len(parts) > 1 else ""
    return DBListResponse(db_id=_parse_int(parts[0], 10, "database id"), filename=filename)


def parse_error(response: Response) -> ErrorResponse:
    return ErrorResponse(code=response.code, message=response.content)


def parse_response(response: Response):
    """Auto-dispatch a response to the decoder for its code.

    Returns the parsed record dataclass, or the raw Response if no
    decoder exists for the code.

    Raises:
        ProtocolParseError: If the content does not match its code's layout.
    """
    parsers = {
        ResponseCode.INFO: parse_info,
        ResponseCode.KEY_VALUE: parse_key_value,
        ResponseCode.DB_LIST: parse_db_list,
        ResponseCode.QUERY: parse_query_match,
        ResponseCode.MULTI_QUERY: parse_multi_query_match,
        ResponseCode.DUPLICATE: parse_duplicate,
    }
    parser = parsers.get(response.code)
    if parser:
        return parser(response.content)
    if is_error(response.code):
        return parse_error(response)
    return response


def decode_query_results(responses: list[Response]) -> list[QueryResult]:
    """Decode every query match (200) in a reply, in order.

    Other codes, embedded errors included, are skipped. A single malformed
    match aborts the whole decode.

    Raises:
        ProtocolParseError: If any match record is malformed.
    """
    return [
        parse_query_match(r.content)
        for r in responses
        if r.code == ResponseCode.QUERY
    ]


def decode_multi_query_results(responses: list[Response]) -> list[MultiQueryResult]:
    """Decode every multi-database match (201) in a reply, in order."""
    return [
        parse_multi_query_match(r.content)
        for r in responses
        if r.code == ResponseCode.MULTI_QUERY
    ]


def collect_errors(responses: list[Response]) -> list[ErrorResponse]:
    """Return the error (3xx) lines of a reply."""
    return [parse_error(r) for r in responses if is_error(r.code)]
