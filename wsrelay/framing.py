"""
framing.py — WebSocket-style frames over asyncio streams.

Protocol subset (kept small on purpose):
- Byte 0: FIN bit (0x80) + 4-bit opcode. We speak TEXT (1) and CLOSE (8).
- Byte 1: MASK bit (0x80) + 7-bit length. 126 means "2-byte big-endian
  length follows"; 127 means "8-byte length follows", which we read and
  then treat as an empty payload (64-bit payloads are out of scope).
- Optional 4-byte masking key, then the payload.
- Client-to-server frames are masked; server-to-client frames never are.

Every read is exact; a stream that ends early surfaces as EndOfStream.
"""

import asyncio
import enum
import struct
from typing import NamedTuple, Optional

from .errors import EndOfStream, FrameTooLarge

FIN_BIT = 0x80
MASK_BIT = 0x80
OPCODE_MASK = 0x0F
LENGTH_MASK = 0x7F

LENGTH_16 = 126
LENGTH_64 = 127
MAX_PAYLOAD = 0xFFFF  # largest length the 16-bit form can carry

LENGTH_16_STRUCT = struct.Struct(">H")


class Opcode(enum.Enum):
    TEXT = 0x1
    CLOSE = 0x8
    OTHER = None

    @classmethod
    def from_bits(cls, bits: int) -> "Opcode":
        if bits == cls.TEXT.value:
            return cls.TEXT
        if bits == cls.CLOSE.value:
            return cls.CLOSE
        return cls.OTHER


class Frame(NamedTuple):
    final: bool
    opcode: Opcode
    payload: bytes

    @property
    def text(self) -> str:
        # Malformed UTF-8 still reaches the router; it just won't parse.
        return self.payload.decode("utf-8", errors="replace")


async def read_exactly(reader: asyncio.StreamReader, n: int) -> bytes:
    """Read exactly n bytes or raise EndOfStream."""
    if n == 0:
        return b""
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as exc:
        raise EndOfStream(f"stream ended after {len(exc.partial)} of {n} bytes") from exc
    except ConnectionError as exc:
        raise EndOfStream(str(exc)) from exc


def apply_mask(data: bytes, key: bytes) -> bytes:
    """XOR `data` with the repeating 4-byte `key`. Masking and unmasking are the same call."""
    if not data:
        return b""
    return bytes(b ^ key[i % 4] for i, b in enumerate(data))


async def read_frame(reader: asyncio.StreamReader) -> Frame:
    """
    Read one frame from the stream.

    A CLOSE frame is returned as soon as its first byte is seen; the rest
    of it is never read because the caller is about to hang up anyway.

    Raises:
        EndOfStream: if the stream ends before the frame is complete.
    """
    # 1) FIN + opcode.
    (first,) = await read_exactly(reader, 1)
    final = bool(first & FIN_BIT)
    opcode = Opcode.from_bits(first & OPCODE_MASK)
    if opcode is Opcode.CLOSE:
        return Frame(final, opcode, b"")

    # 2) MASK + base length.
    (second,) = await read_exactly(reader, 1)
    masked = bool(second & MASK_BIT)
    length = second & LENGTH_MASK

    # 3) Extended lengths.
    if length == LENGTH_16:
        (length,) = LENGTH_16_STRUCT.unpack(await read_exactly(reader, 2))
    elif length == LENGTH_64:
        await read_exactly(reader, 8)
        length = 0

    # 4) Masking key, then 5) the payload itself.
    key: Optional[bytes] = await read_exactly(reader, 4) if masked else None
    payload = await read_exactly(reader, length)
    if key is not None:
        payload = apply_mask(payload, key)

    return Frame(final, opcode, payload)


def encode_text(message: str, mask_key: Optional[bytes] = None) -> bytes:
    """
    Encode a final TEXT frame.

    Servers call this without `mask_key`. RelayClient passes a fresh
    4-byte key, which sets the MASK bit and masks the payload.

    Raises:
        FrameTooLarge: if the UTF-8 payload does not fit in 16 bits.
    """
    payload = message.encode("utf-8")
    length = len(payload)
    if length > MAX_PAYLOAD:
        raise FrameTooLarge(f"payload of {length} bytes exceeds {MAX_PAYLOAD}")

    mask_bit = MASK_BIT if mask_key is not None else 0
    header = bytearray([FIN_BIT | Opcode.TEXT.value])
    if length < LENGTH_16:
        header.append(mask_bit | length)
    else:
        header.append(mask_bit | LENGTH_16)
        header += LENGTH_16_STRUCT.pack(length)

    if mask_key is not None:
        header += mask_key
        payload = apply_mask(payload, mask_key)

    return bytes(header) + payload


def encode_close(mask_key: Optional[bytes] = None) -> bytes:
    """Empty final CLOSE frame (masked when sent by a client)."""
    if mask_key is None:
        return bytes([FIN_BIT | Opcode.CLOSE.value, 0])
    return bytes([FIN_BIT | Opcode.CLOSE.value, MASK_BIT]) + mask_key
