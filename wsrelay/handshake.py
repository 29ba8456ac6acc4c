"""
handshake.py — HTTP upgrade negotiation and the plain-HTTP fallback.

Server side:
- `read_head` pulls the request line and headers off the stream.
- `negotiate` turns upgrade headers into the `101 Switching Protocols`
  bytes, or raises HandshakeRejected.
- `fallback_response` is what a browser gets when it just GETs the port.

Client side:
- `client_request` builds the upgrade request RelayClient sends.
- `check_response` validates the server's answer.

Nothing here writes to a socket; callers write and drain.
"""

import asyncio
from typing import Dict, Mapping, Tuple

from . import crypto
from .errors import EndOfStream, HandshakeRejected

MAX_HEADER_LINE = 8192


def _lookup(headers: Mapping[str, str], name: str):
    """Case-insensitive header lookup; returns None when absent."""
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def is_upgrade_request(headers: Mapping[str, str]) -> bool:
    """
    True for `Upgrade: websocket` plus a Connection header that mentions
    "upgrade" anywhere, so "keep-alive, Upgrade" is accepted too.
    """
    upgrade = _lookup(headers, "upgrade")
    connection = _lookup(headers, "connection")
    if upgrade is None or connection is None:
        return False
    return upgrade.strip().lower() == "websocket" and "upgrade" in connection.lower()


def negotiate(headers: Mapping[str, str]) -> bytes:
    """
    Build the 101 response for a valid upgrade request.

    Raises:
        HandshakeRejected: not an upgrade, or no Sec-WebSocket-Key.
    """
    if not is_upgrade_request(headers):
        raise HandshakeRejected("not a websocket upgrade request")

    nonce = _lookup(headers, "sec-websocket-key")
    if not nonce:
        raise HandshakeRejected("missing Sec-WebSocket-Key")

    response = (
        "HTTP/1.1 101 Switching Protocols\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Accept: {crypto.accept_token(nonce.strip())}\r\n"
        "Access-Control-Allow-Origin: *\r\n"
        "\r\n"
    )
    return response.encode("utf-8")


def fallback_response(port: int) -> bytes:
    """Static page for plain HTTP requests on the relay port."""
    body = (
        "<html><body><h1>WebSocket Chat Relay</h1>"
        f"<p>Relay is running on port {port}</p>"
        "<p>Use a WebSocket connection to chat</p></body></html>"
    )
    response = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: text/html\r\n"
        "Access-Control-Allow-Origin: *\r\n"
        "Access-Control-Allow-Methods: GET, POST, OPTIONS\r\n"
        "Access-Control-Allow-Headers: *\r\n"
        "\r\n"
        + body
    )
    return response.encode("utf-8")


async def _read_line(reader: asyncio.StreamReader) -> str:
    try:
        line = await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as exc:
        raise EndOfStream("stream ended inside the HTTP head") from exc
    except asyncio.LimitOverrunError as exc:
        raise HandshakeRejected("request header line too long") from exc
    except ConnectionError as exc:
        raise EndOfStream(str(exc)) from exc
    if len(line) > MAX_HEADER_LINE:
        raise HandshakeRejected("request header line too long")
    return line.decode("latin-1").rstrip("\r\n")


async def read_head(reader: asyncio.StreamReader) -> Tuple[str, Dict[str, str]]:
    """
    Read the first line (request or status line) and the header block.

    Header names are lowercased. Lines that are not `Name: value` are
    skipped rather than rejected.

    Raises:
        EndOfStream: if the peer hangs up before the head is complete.
    """
    first_line = await _read_line(reader)
    headers: Dict[str, str] = {}
    while True:
        line = await _read_line(reader)
        if not line:
            break
        name, sep, value = line.partition(": ")
        if not sep:
            continue
        headers[name.lower()] = value
    return first_line, headers


def client_request(host: str, port: int, nonce: str, path: str = "/") -> bytes:
    """Upgrade request a client sends to open the framed channel."""
    request = (
        f"GET {path} HTTP/1.1\r\n"
        f"Host: {host}:{port}\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Key: {nonce}\r\n"
        "Sec-WebSocket-Version: 13\r\n"
        "\r\n"
    )
    return request.encode("utf-8")


def check_response(status_line: str, headers: Mapping[str, str], nonce: str) -> None:
    """
    Validate the server's reply to `client_request`.

    Raises:
        HandshakeRejected: wrong status or accept token.
    """
    parts = status_line.split(" ", 2)
    if len(parts) < 2 or parts[1] != "101":
        raise HandshakeRejected(f"server refused upgrade: {status_line!r}")
    accept = _lookup(headers, "sec-websocket-accept")
    if accept is None or accept.strip() != crypto.accept_token(nonce):
        raise HandshakeRejected("server sent a bad Sec-WebSocket-Accept")
