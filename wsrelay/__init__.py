"""
wsrelay — a small WebSocket chat relay on asyncio.

Clients upgrade a plain TCP connection with the WebSocket handshake,
join under a username, and every "message" envelope they send is relayed
unchanged to all other joined clients.

Run a relay with:  python -m wsrelay.run_node --mode server --port 8080
"""
__all__ = ["config", "crypto", "errors", "framing", "handshake", "messages", "node", "run_node"]
