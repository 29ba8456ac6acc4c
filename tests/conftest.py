"""Shared helpers: in-memory streams standing in for sockets."""
import asyncio

import pytest

from wsrelay.framing import read_frame
from wsrelay.node import ClientRegistry, ConnectionSession


class FakeWriter:
    """Records everything written; `fail=True` makes drain() blow up."""

    def __init__(self, peer=("127.0.0.1", 50000), fail=False):
        self.buffer = bytearray()
        self.peer = peer
        self.fail = fail
        self.closed = False

    def write(self, data):
        self.buffer += data

    async def drain(self):
        if self.fail:
            raise ConnectionResetError("simulated reset")

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return self.peer
        return default

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


def make_reader(data=b"", eof=True):
    """StreamReader pre-loaded with `data`. Call from inside a running loop."""
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


def make_session(port=50000, fail=False, upgraded=True):
    session = ConnectionSession(make_reader(), FakeWriter(("127.0.0.1", port), fail=fail))
    session.upgraded = upgraded
    return session


async def sent_texts(session):
    """Decode every frame a fake session has been sent."""
    reader = make_reader(bytes(session.writer.buffer))
    texts = []
    while not reader.at_eof():
        frame = await read_frame(reader)
        texts.append(frame.text)
    return texts


@pytest.fixture
def registry():
    return ClientRegistry()
