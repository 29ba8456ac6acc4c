import asyncio
import logging
from typing import Dict, List, Optional

from . import crypto
from . import handshake
from . import messages as m
from .errors import DeliveryFailure, EndOfStream, FrameTooLarge, HandshakeRejected
from .framing import Opcode, encode_close, encode_text, read_frame

"""
node.py — relay server, its client registry, and a small client.

What lives here:
- ConnectionSession: one accepted connection (streams, identity, write lock).
- ClientRegistry: identity → session directory with best-effort broadcast.
- MessageRouter: turns envelopes into register/broadcast calls.
- RelayServer: accept loop + per-connection lifecycle.
- RelayClient: the other end of the wire, used by run_node and tests.

Notes:
- Everything runs on one event loop. Each connection gets its own task;
  the registry is the only state those tasks share.
- Broadcast writes land on other sessions' writers, so every session
  funnels its output through its own asyncio.Lock.
"""

logger = logging.getLogger(__name__)


class ConnectionSession:
    """Reader/writer pair plus what we've learned about the peer."""
    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        self.identity: Optional[str] = None
        self.upgraded = False
        self._write_lock = asyncio.Lock()

    @property
    def peername(self) -> str:
        return str(self.writer.get_extra_info("peername"))

    async def send_raw(self, data: bytes) -> None:
        """Write bytes and drain, one writer at a time."""
        async with self._write_lock:
            self.writer.write(data)
            await self.writer.drain()

    async def send_text(self, text: str) -> None:
        await self.send_raw(encode_text(text))

    def __repr__(self) -> str:
        return f"<ConnectionSession {self.identity or '?'} {self.peername}>"


class ClientRegistry:
    """
    In-memory directory: identity → live session.

    The registry only looks sessions up; it never closes them. A second
    join under the same identity replaces the first entry and leaves the
    older session connected but unreachable by broadcast.
    """
    def __init__(self) -> None:
        self._sessions: Dict[str, ConnectionSession] = {}

    def register(self, identity: str, session: ConnectionSession) -> Optional[ConnectionSession]:
        """Insert or replace; returns the superseded session, if any."""
        previous = self._sessions.get(identity)
        self._sessions[identity] = session
        if previous is session:
            return None
        return previous

    def unregister(self, identity: str, session: ConnectionSession) -> bool:
        """Remove `identity` only if it still points at `session`."""
        if self._sessions.get(identity) is not session:
            return False
        del self._sessions[identity]
        return True

    def get(self, identity: str) -> Optional[ConnectionSession]:
        return self._sessions.get(identity)

    def identities(self) -> List[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, identity: object) -> bool:
        return identity in self._sessions

    async def broadcast(self, sender: Optional[ConnectionSession], payload: str) -> int:
        """
        Deliver `payload` as a text frame to every registered session except
        `sender`. Recipients are written to concurrently; a failed write is
        logged and skipped. Returns how many deliveries succeeded.
        """
        try:
            frame = encode_text(payload)
        except FrameTooLarge as exc:
            logger.warning("Dropping broadcast: %s", exc)
            return 0

        # Snapshot first: joins/leaves may land while we await writes.
        recipients = [
            (identity, session)
            for identity, session in list(self._sessions.items())
            if session is not sender and session.upgraded
        ]
        if not recipients:
            return 0

        results = await asyncio.gather(
            *(session.send_raw(frame) for _identity, session in recipients),
            return_exceptions=True,
        )

        delivered = 0
        for (identity, _session), result in zip(recipients, results):
            if isinstance(result, Exception):
                logger.warning("%s", DeliveryFailure(identity, result))
            else:
                delivered += 1
        return delivered


class MessageRouter:
    """Reads the envelope type and drives the registry accordingly."""
    def __init__(self, registry: ClientRegistry) -> None:
        self.registry = registry

    async def route(self, session: ConnectionSession, text: str) -> None:
        envelope = m.parse_envelope(text)

        if isinstance(envelope, m.Join):
            # Renaming drops the old name so it can't linger in the registry.
            if session.identity and session.identity != envelope.username:
                self.registry.unregister(session.identity, session)
            session.identity = envelope.username
            superseded = self.registry.register(envelope.username, session)
            if superseded is not None:
                logger.warning("%s re-joined; previous session %s superseded",
                               envelope.username, superseded.peername)
            logger.info("%s joined the chat", envelope.username)
            return

        if isinstance(envelope, m.Message):
            delivered = await self.registry.broadcast(session, envelope.raw)
            # Body is opaque (often encrypted); only the name is logged.
            logger.info("%s: [message] -> %d recipient(s)",
                        envelope.username or session.identity or "?", delivered)
            return

        logger.debug("Ignoring unrecognised envelope from %s", session.peername)


class RelayServer:
    """
    Accept loop for the relay:
      - Plain GETs get a static HTML page.
      - Upgrade requests get the 101 handshake, then a frame loop.
      - One misbehaving connection only ever ends itself.
    """
    def __init__(self, host: str, port: int, registry: Optional[ClientRegistry] = None) -> None:
        self.host = host
        self.port = port
        self.registry = registry if registry is not None else ClientRegistry()
        self.router = MessageRouter(self.registry)
        self._server: Optional[asyncio.AbstractServer] = None

    async def listen(self) -> asyncio.AbstractServer:
        """Bind the listening socket; port 0 picks a free one."""
        self._server = await asyncio.start_server(self.handle_conn, self.host, self.port)
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        addrs = ", ".join(str(sock.getsockname()) for sock in sockets)
        logger.info("Relay listening on %s (ws://%s:%d)", addrs, self.host, self.port)
        return self._server

    async def start(self) -> None:
        """Listen and serve forever."""
        server = await self.listen()
        async with server:
            await server.serve_forever()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def handle_conn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Per-connection task: run the session, then always clean up."""
        session = ConnectionSession(reader, writer)
        logger.debug("New connection from %s", session.peername)
        try:
            await self.serve_session(session)
        except (EndOfStream, ConnectionError):
            # Peer went away; nothing to report.
            pass
        except HandshakeRejected as exc:
            logger.info("Rejected handshake from %s: %s", session.peername, exc)
        except Exception:
            logger.exception("Session error for %s", session)
        finally:
            if session.identity and self.registry.unregister(session.identity, session):
                logger.info("%s left the chat", session.identity)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as exc:
                logger.debug("Error closing %s: %s", session.peername, exc)

    async def serve_session(self, session: ConnectionSession) -> None:
        """Handshake (or fallback), then read frames until close or EOF."""
        request_line, headers = await handshake.read_head(session.reader)
        method = request_line.split(" ", 1)[0]
        if method != "GET":
            logger.debug("Ignoring %r from %s", request_line, session.peername)
            return

        if not handshake.is_upgrade_request(headers):
            await session.send_raw(handshake.fallback_response(self.port))
            return

        await session.send_raw(handshake.negotiate(headers))
        session.upgraded = True
        logger.debug("Handshake complete with %s", session.peername)

        while True:
            frame = await read_frame(session.reader)
            if frame.opcode is Opcode.CLOSE:
                break
            await self.router.route(session, frame.text)


class RelayClient:
    """
    Client end of the relay:
      - Sends the upgrade request and checks the accept token.
      - Announces itself with a join envelope.
      - Masks every frame it sends.
    """
    def __init__(self, username: str, host: str, port: int) -> None:
        self.username = username
        self.host = host
        self.port = port
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None

    async def connect(self) -> None:
        """Open the connection, upgrade it, and join."""
        self.reader, self.writer = await asyncio.open_connection(self.host, self.port)
        nonce = crypto.new_nonce()
        self.writer.write(handshake.client_request(self.host, self.port, nonce))
        await self.writer.drain()

        status_line, headers = await handshake.read_head(self.reader)
        handshake.check_response(status_line, headers, nonce)
        await self.send_text(m.join_envelope(self.username))

    async def send_text(self, text: str) -> None:
        self.writer.write(encode_text(text, mask_key=crypto.new_mask_key()))
        await self.writer.drain()

    async def send(self, body: str, **extra) -> str:
        """Send a chat message; returns the exact envelope text sent."""
        text = m.message_envelope(self.username, body, **extra)
        await self.send_text(text)
        return text

    async def receive(self) -> Optional[str]:
        """Next text payload from the relay, or None once the stream is done."""
        try:
            frame = await read_frame(self.reader)
        except EndOfStream:
            return None
        if frame.opcode is Opcode.CLOSE:
            return None
        return frame.text

    async def close(self) -> None:
        if self.writer is None:
            return
        try:
            self.writer.write(encode_close(mask_key=crypto.new_mask_key()))
            await self.writer.drain()
        except ConnectionError:
            pass
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass
        self.writer = None
