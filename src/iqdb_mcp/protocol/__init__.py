"""Protocol layer: response codes, command builders, reply framing, and typed decoding."""

from .codes import QueryFlag, ResponseCode
from .commands import build_command, build_query, build_query_payload
from .framing import Response, ResponseAccumulator, parse_responses
from .parser import decode_query_results, parse_response
