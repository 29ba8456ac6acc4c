import pytest

from wsrelay import crypto, handshake
from wsrelay.errors import EndOfStream, HandshakeRejected
from .conftest import make_reader

SAMPLE_NONCE = "dGhlIHNhbXBsZSBub25jZQ=="
SAMPLE_ACCEPT = "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="


def upgrade_headers(**overrides):
    headers = {
        "upgrade": "websocket",
        "connection": "Upgrade",
        "sec-websocket-key": SAMPLE_NONCE,
    }
    headers.update(overrides)
    return headers


def test_accept_token_known_answer():
    assert crypto.accept_token(SAMPLE_NONCE) == SAMPLE_ACCEPT


def test_nonce_round_trips_through_accept():
    nonce = crypto.new_nonce()
    assert len(crypto.accept_token(nonce)) == 28
    assert crypto.accept_token(nonce) == crypto.accept_token(nonce)


def test_negotiate_response():
    response = handshake.negotiate(upgrade_headers()).decode("utf-8")
    assert response.startswith("HTTP/1.1 101 Switching Protocols\r\n")
    assert "Upgrade: websocket\r\n" in response
    assert "Connection: Upgrade\r\n" in response
    assert f"Sec-WebSocket-Accept: {SAMPLE_ACCEPT}\r\n" in response
    assert response.endswith("\r\n\r\n")


def test_negotiate_header_names_and_values_ignore_case():
    headers = {
        "Upgrade": "WebSocket",
        "CONNECTION": "keep-alive, Upgrade",
        "Sec-WebSocket-Key": SAMPLE_NONCE,
    }
    assert SAMPLE_ACCEPT.encode() in handshake.negotiate(headers)


def test_negotiate_without_nonce_is_rejected():
    headers = upgrade_headers()
    del headers["sec-websocket-key"]
    with pytest.raises(HandshakeRejected):
        handshake.negotiate(headers)


@pytest.mark.parametrize("overrides", [
    {"upgrade": "h2c"},
    {"connection": "keep-alive"},
])
def test_negotiate_non_upgrade_is_rejected(overrides):
    with pytest.raises(HandshakeRejected):
        handshake.negotiate(upgrade_headers(**overrides))


def test_is_upgrade_request():
    assert handshake.is_upgrade_request(upgrade_headers())
    assert not handshake.is_upgrade_request({"host": "example"})


def test_fallback_response_is_static_html():
    response = handshake.fallback_response(8080).decode("utf-8")
    assert response.startswith("HTTP/1.1 200 OK\r\n")
    assert "Access-Control-Allow-Origin: *\r\n" in response
    assert "Access-Control-Allow-Methods: GET, POST, OPTIONS\r\n" in response
    assert "8080" in response


@pytest.mark.asyncio
async def test_read_head_parses_headers_and_leaves_frames():
    raw = (
        b"GET /chat HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Upgrade: websocket\r\n"
        b"garbage-line\r\n"
        b"Sec-WebSocket-Key: " + SAMPLE_NONCE.encode() + b"\r\n"
        b"\r\n"
        b"\x81\x00"
    )
    reader = make_reader(raw)
    first_line, headers = await handshake.read_head(reader)
    assert first_line == "GET /chat HTTP/1.1"
    assert headers["upgrade"] == "websocket"
    assert headers["sec-websocket-key"] == SAMPLE_NONCE
    assert "garbage-line" not in headers
    assert await reader.read() == b"\x81\x00"


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [b"", b"GET / HTTP/1.1\r\nHost: x\r\n"])
async def test_read_head_truncated(raw):
    with pytest.raises(EndOfStream):
        await handshake.read_head(make_reader(raw))


def test_client_request_is_acceptable_to_negotiate():
    request = handshake.client_request("localhost", 8080, SAMPLE_NONCE).decode()
    lines = request.split("\r\n")
    assert lines[0] == "GET / HTTP/1.1"
    headers = dict(line.split(": ", 1) for line in lines[1:] if line)
    assert SAMPLE_ACCEPT.encode() in handshake.negotiate(headers)


def test_check_response():
    handshake.check_response(
        "HTTP/1.1 101 Switching Protocols",
        {"sec-websocket-accept": SAMPLE_ACCEPT},
        SAMPLE_NONCE,
    )
    with pytest.raises(HandshakeRejected):
        handshake.check_response("HTTP/1.1 200 OK", {}, SAMPLE_NONCE)
    with pytest.raises(HandshakeRejected):
        handshake.check_response(
            "HTTP/1.1 101 Switching Protocols",
            {"sec-websocket-accept": "bogus"},
            SAMPLE_NONCE,
        )
