import argparse
import asyncio
import json
import logging
import sys
from typing import Optional, Sequence

from . import messages as m
from .config import RelayConfig, parse_port
from .node import RelayClient, RelayServer

"""
run_node.py — single entry point for the relay.

What you can do here:
- Server:   run the relay and serve forever on host:port
- Client:   join as a name, print what others say, send stdin lines

Config precedence: command-line flag > WSRELAY_* environment > default.
"""

logger = logging.getLogger(__name__)


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def run_server(host: str, port: int) -> None:
    """Spin up the relay and serve forever on host:port."""
    server = RelayServer(host, port)
    await server.start()


def format_incoming(text: str) -> str:
    """One-line summary of a relayed envelope for the terminal."""
    try:
        env = json.loads(text)
    except ValueError:
        return text
    if isinstance(env, dict) and env.get("type") == m.MESSAGE:
        return f"[{env.get('username', '?')}] {env.get('body', '')}"
    return text


async def run_client(username: str, host: str, port: int) -> None:
    """
    Connect, join, then pump both directions: frames from the relay are
    printed, lines typed on stdin are sent as message envelopes.
    """
    client = RelayClient(username, host, port)
    await client.connect()
    print(f"Joined ws://{host}:{port} as {username}")

    async def pump_incoming() -> None:
        while True:
            text = await client.receive()
            if text is None:
                print("Relay closed the connection")
                return
            print(format_incoming(text))

    reader_task = asyncio.create_task(pump_incoming())
    loop = asyncio.get_running_loop()
    try:
        while not reader_task.done():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.rstrip("\n")
            if line:
                await client.send(line)
    finally:
        reader_task.cancel()
        await client.close()


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """
    Parse modes and options.

    Quick examples:
      Server:  python -m wsrelay.run_node --mode server --port 8080
      Client:  python -m wsrelay.run_node --mode client --id alice --server 127.0.0.1:8080
    """
    p = argparse.ArgumentParser(prog="wsrelay-node")
    p.add_argument("--mode", choices=["server", "client"], required=True)
    p.add_argument("--host", help="bind address (server mode)")
    p.add_argument("--port", type=parse_port, help="listen port (server mode)")
    p.add_argument("--id", dest="ident", help="username to join as (client mode)")
    p.add_argument("--server", help="HOST:PORT of the relay (client mode)")
    p.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    return p.parse_args(argv)


def split_hostport(value: str):
    host, _, port = value.rpartition(":")
    if not host:
        raise SystemExit(f"Expected HOST:PORT, got {value!r}")
    return host, parse_port(port)


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[Sequence[str]] = None) -> None:
    """Dispatch into the chosen mode; keep top-level code very small."""
    args = parse_args(argv)
    try:
        config = RelayConfig.from_env()
    except ValueError as exc:
        raise SystemExit(f"Bad WSRELAY_* configuration: {exc}")

    level = (args.log_level or config.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.mode == "server":
            host = args.host or config.host
            port = args.port if args.port is not None else config.port
            asyncio.run(run_server(host, port))

        elif args.mode == "client":
            if not args.ident or not args.server:
                raise SystemExit("--id and --server are required for client mode")
            host, port = split_hostport(args.server)
            asyncio.run(run_client(args.ident, host, port))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
