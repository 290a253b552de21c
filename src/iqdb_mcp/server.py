"""MCP server entry point for iqdb.

Exposes image-similarity queries against an iqdb server as tools,
resources, and prompts via the Model Context Protocol using the official
Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import Client
from .errors import ProtocolParseError, TransportError
from .protocol.codes import FLAG_DESCRIPTIONS, QueryFlag, ResponseCode
from .protocol.commands import build_query
from .protocol.parser import collect_errors, decode_query_results, parse_response

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "localhost:5588"
ADDRESS_ENV_VAR = "IQDB_ADDRESS"
MAX_RESULTS = 100

mcp = FastMCP(
    "iqdb",
    instructions="MCP server for querying an iqdb image-similarity database",
)

# Global connection state
_client: Client | None = None


def _get_client() -> Client:
    """Get the active client, raising if not connected."""
    if _client is None or not _client.connected:
        raise RuntimeError(
            "Not connected to iqdb. Use the 'connect' tool first."
        )
    return _client


def _default_address() -> str:
    return os.environ.get(ADDRESS_ENV_VAR, DEFAULT_ADDRESS)


def _check_query_args(db_id: int, num_results: int) -> str | None:
    if db_id < 0:
        return "db_id must be >= 0"
    if not 1 <= num_results <= MAX_RESULTS:
        return f"num_results must be 1-{MAX_RESULTS}"
    return None


def _disconnect_after_failure() -> None:
    """Drop a connection left in an undefined state by a transport error."""
    global _client
    if _client is not None:
        logger.warning("Closing connection to %s after transport failure", _client.address)
        _client.close()
        _client = None


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(address: str | None = None) -> dict[str, Any]:
    """Open a TCP connection to an iqdb server.

    Args:
        address: Server address as host:port. Defaults to the IQDB_ADDRESS
                 environment variable, or localhost:5588.
    """
    global _client
    if _client is not None and _client.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "address": _client.address,
        }

    try:
        client = Client(address or _default_address())
        client.open()
    except (ValueError, ConnectionError) as e:
        return {"connected": False, "error": str(e)}

    _client = client
    return {"connected": True, "address": client.address}


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the connection to the iqdb server."""
    global _client
    if _client is None:
        return {"disconnected": True}
    _client.close()
    _client = None
    return {"disconnected": True}


# ─── QUERY TOOLS ──────────────────────────────────────────────────────

@mcp.tool()
def query_image(
    file_path: str,
    db_id: int = 0,
    flags: list[str] | None = None,
    num_results: int = 10,
) -> dict[str, Any]:
    """Find images similar to a local image file.

    The file is uploaded to the server as part of the query.

    Args:
        file_path: Path to a JPEG/PNG/GIF image on this machine.
        db_id: Database index on the server (default 0).
        flags: Optional query flags: sketch, grayscale, width_as_id,
               discard_common.
        num_results: Maximum number of matches (1-100, default 10).
    """
    problem = _check_query_args(db_id, num_results)
    if problem:
        return {"error": problem}

    path = Path(file_path)
    if not path.is_file():
        return {"error": f"File not found: {file_path}"}

    try:
        query_flags = QueryFlag.parse(flags)
    except ValueError as e:
        return {"error": str(e)}

    client = _get_client()
    try:
        results = client.query_file(db_id, query_flags, num_results, path)
    except TransportError as e:
        _disconnect_after_failure()
        return {"error": f"Connection lost: {e}"}
    except ProtocolParseError as e:
        return {"error": f"Malformed server reply: {e}"}

    return {
        "file": str(path),
        "db_id": db_id,
        "flags": int(query_flags),
        "count": len(results),
        "results": [r.to_dict() for r in results],
    }


@mcp.tool()
def query_server_file(
    filename: str,
    db_id: int = 0,
    flags: list[str] | None = None,
    num_results: int = 10,
) -> dict[str, Any]:
    """Find images similar to an image file stored on the iqdb server host.

    Args:
        filename: Path to the image as seen by the server.
        db_id: Database index on the server (default 0).
        flags: Optional query flags (see query_image).
        num_results: Maximum number of matches (1-100, default 10).
    """
    problem = _check_query_args(db_id, num_results)
    if problem:
        return {"error": problem}

    try:
        query_flags = QueryFlag.parse(flags)
    except ValueError as e:
        return {"error": str(e)}

    client = _get_client()
    try:
        responses = client.command(
            build_query(db_id, query_flags, num_results, filename)
        )
        results = decode_query_results(responses)
    except TransportError as e:
        _disconnect_after_failure()
        return {"error": f"Connection lost: {e}"}
    except ProtocolParseError as e:
        return {"error": f"Malformed server reply: {e}"}
    except ValueError as e:
        return {"error": str(e)}

    result: dict[str, Any] = {
        "filename": filename,
        "db_id": db_id,
        "count": len(results),
        "results": [r.to_dict() for r in results],
    }
    errors = collect_errors(responses)
    if errors:
        result["server_errors"] = [e.message for e in errors]
    return result


@mcp.tool()
def send_command(command: str) -> dict[str, Any]:
    """Send a raw protocol command and return every reply line.

    Args:
        command: A single iqdb command line, e.g. "list_info 0".
    """
    if not command.strip() or "\n" in command or "\r" in command:
        return {"error": "Command must be a single non-empty line"}

    client = _get_client()
    try:
        responses = client.command(command.strip())
    except TransportError as e:
        _disconnect_after_failure()
        return {"error": f"Connection lost: {e}"}
    except ProtocolParseError as e:
        return {"error": f"Malformed server reply: {e}"}

    lines = []
    for response in responses:
        line: dict[str, Any] = {"code": response.code, "content": response.content}
        try:
            parsed = parse_response(response)
        except ProtocolParseError as e:
            line["parse_error"] = str(e)
        else:
            if parsed is not response:
                line["type"] = type(parsed).__name__
        lines.append(line)

    return {"command": command.strip(), "responses": lines}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("iqdb://connection/status")
def resource_connection_status() -> str:
    """Connection state and server address."""
    if _client is None or not _client.connected:
        return json.dumps({"connected": False, "default_address": _default_address()})
    return json.dumps({"connected": True, "address": _client.address})


@mcp.resource("iqdb://catalog/flags")
def resource_flags_catalog() -> str:
    """Query flags with their bit values."""
    return json.dumps({
        flag.name.lower(): {"value": int(flag), "description": description}
        for flag, description in FLAG_DESCRIPTIONS.items()
    }, indent=2)


@mcp.resource("iqdb://catalog/codes")
def resource_codes_catalog() -> str:
    """Response codes of the iqdb protocol."""
    return json.dumps({f"{code.value:03d}": code.name for code in ResponseCode}, indent=2)


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def find_similar(file_path: str) -> str:
    """Search the database for images similar to a local file.

    Args:
        file_path: Path to the image to search for.
    """
    return f"""Connect to the iqdb server (use the connect tool if not connected),
then run query_image on {file_path} with num_results=10.

Report the matches ordered by score, highest first. Treat scores above 90
as near-duplicates. If nothing scores above 50, retry with the grayscale
flag in case the image was recolored, and say which query found what."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
