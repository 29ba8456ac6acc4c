"""
config.py — where the relay listens and how loud it logs.

Defaults can be overridden by environment variables, and run_node's
command-line flags override both:

    WSRELAY_HOST       bind address (default 0.0.0.0)
    WSRELAY_PORT       TCP port (default 8080)
    WSRELAY_LOG_LEVEL  logging level name (default INFO)
"""

import os
from typing import Mapping, NamedTuple, Optional

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_LOG_LEVEL = "INFO"


class RelayConfig(NamedTuple):
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RelayConfig":
        """
        Build a config from WSRELAY_* variables.

        Raises:
            ValueError: if WSRELAY_PORT is not an integer in 0..65535.
        """
        env = os.environ if environ is None else environ
        port_text = env.get("WSRELAY_PORT")
        port = DEFAULT_PORT if not port_text else parse_port(port_text)
        return cls(
            host=env.get("WSRELAY_HOST") or DEFAULT_HOST,
            port=port,
            log_level=(env.get("WSRELAY_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
        )


def parse_port(text: str) -> int:
    port = int(text)
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range: {port}")
    return port
