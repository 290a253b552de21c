"""Client and MCP server for the iqdb image-similarity database."""

from .client import Client, connect
from .errors import ProtocolParseError, TransportError
from .protocol.codes import QueryFlag, ResponseCode
from .protocol.framing import Response
from .protocol.parser import MultiQueryResult, QueryResult

__version__ = "0.1.0"
