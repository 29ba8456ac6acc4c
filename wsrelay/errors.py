"""
errors.py — exception types shared by the relay.

Nothing here crashes the process: each error is caught at the session
boundary (node.py) and only ends the connection it belongs to.
"""


class RelayError(Exception):
    """Base class for everything the relay raises on purpose."""


class EndOfStream(RelayError):
    """Peer closed the stream (or it broke) before a full unit was read."""


class ProtocolError(RelayError):
    """Bytes on the wire do not fit the framing we support."""


class FrameTooLarge(ProtocolError):
    """Outbound payload needs the 64-bit length form, which we do not send."""


class HandshakeRejected(RelayError):
    """Upgrade request is missing headers or is not an upgrade at all."""


class DeliveryFailure(RelayError):
    """Writing a broadcast frame to one recipient failed."""

    def __init__(self, identity, cause: BaseException) -> None:
        super().__init__(f"delivery to {identity!r} failed: {cause}")
        self.identity = identity
        self.cause = cause
