"""
messages.py — chat envelopes carried inside text frames.

What this module does:
- Names the two envelope types the relay understands ("join", "message").
- Parses a frame's text into a typed envelope: Join, Message or Unknown.
- Builds envelopes for the client side.

The relay never rewrites a message: Message keeps the exact text it was
parsed from so it can be forwarded byte-for-byte.
"""

import json
import time
from typing import Any, Dict, NamedTuple, Optional, Union

# -----------------------
# Public message type tags
# -----------------------
JOIN = "join"
MESSAGE = "message"


class Join(NamedTuple):
    username: str


class Message(NamedTuple):
    username: Optional[str]
    raw: str


class Unknown(NamedTuple):
    raw: str


Envelope = Union[Join, Message, Unknown]


def now_ms() -> int:
    """Current time in milliseconds (used for the `ts` field)."""
    return int(time.time() * 1000)


def _username(obj: Dict[str, Any]) -> Optional[str]:
    name = obj.get("username")
    if isinstance(name, str) and name:
        return name
    return None


def parse_envelope(text: str) -> Envelope:
    """
    Turn frame text into an envelope.

    JSON parsing tolerates surrounding whitespace and extra fields. A join
    without a usable username, invalid JSON, a non-object or an unknown
    `type` all come back as Unknown; nothing here raises.
    """
    try:
        obj = json.loads(text)
    except ValueError:
        return Unknown(text)
    if not isinstance(obj, dict):
        return Unknown(text)

    msg_type = obj.get("type")
    if msg_type == JOIN:
        name = _username(obj)
        if name is None:
            return Unknown(text)
        return Join(name)
    if msg_type == MESSAGE:
        return Message(_username(obj), text)
    return Unknown(text)


def _dumps(obj: Dict[str, Any]) -> str:
    # Compact JSON, non-ASCII kept as UTF-8.
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def join_envelope(username: str) -> str:
    """Envelope a client sends right after the handshake."""
    return _dumps({"type": JOIN, "username": username})


def message_envelope(username: str, body: str, **extra: Any) -> str:
    """
    Chat message envelope. `extra` fields ride along untouched; the relay
    forwards the whole text as-is.
    """
    env = {"type": MESSAGE, "username": username, "body": body, "ts": now_ms()}
    env.update(extra)
    return _dumps(env)
