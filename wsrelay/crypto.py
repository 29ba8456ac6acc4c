"""
crypto.py — the one digest the handshake needs.

Why this exists:
- The upgrade handshake proves the server read the client's nonce by
  returning base64(SHA-1(nonce + magic)). That computation is fixed by
  the WebSocket wire contract; it is not a security feature.
- Keep the hashing bits in one place so handshake.py and the client can
  both call `accept_token` without caring how the digest is produced.
"""

import base64
import os

from cryptography.hazmat.primitives import hashes

# Fixed GUID every WebSocket peer appends to the nonce.
WS_MAGIC = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"


def b64encode(data: bytes) -> str:
    """Standard Base64 (with padding), as the handshake headers expect."""
    return base64.b64encode(data).decode("ascii")


def sha1(data: bytes) -> bytes:
    """160-bit SHA-1 digest of raw bytes."""
    digest = hashes.Hash(hashes.SHA1())
    digest.update(data)
    return digest.finalize()


def accept_token(nonce: str) -> str:
    """
    Derive the `Sec-WebSocket-Accept` value for a client nonce.

    >>> accept_token("dGhlIHNhbXBsZSBub25jZQ==")
    's3pPLMBiTxaQ9kYGzzhZRbK+xOo='
    """
    return b64encode(sha1((nonce + WS_MAGIC).encode("utf-8")))


def new_nonce() -> str:
    """Random 16-byte nonce, Base64 encoded, for the client side of the handshake."""
    return b64encode(os.urandom(16))


def new_mask_key() -> bytes:
    """Fresh 4-byte masking key for a client-to-server frame."""
    return os.urandom(4)
