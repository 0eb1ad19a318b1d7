"""Tiny line-based TCP server and client for poking at scan targets.

The server answers each line either with ``Echo: <line>`` (reply mode
``ECHO``) or with a fixed reply. A client line reading ``EOF`` closes the
session.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, List

logger = logging.getLogger(__name__)

ECHO = "ECHO"
END_OF_SESSION = "EOF"


def _reply_for(line: str, reply: str) -> str:
    if reply == ECHO:
        return f"Echo: {line}\n"
    return f"{reply}\n"


def make_handler(reply: str = ECHO):
    """Return a stream handler answering every line according to ``reply``."""

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        logger.info("Client connected from %s", peer)
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.decode(errors="replace").rstrip("\r\n")
                if line == END_OF_SESSION:
                    break
                logger.debug("<- %s", line)
                writer.write(_reply_for(line, reply).encode())
                await writer.drain()
        except ConnectionError as exc:
            logger.info("Client %s dropped: %s", peer, exc)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass
            logger.info("Client %s disconnected", peer)

    return handle


async def start_server(
    port: int = 5000, reply: str = ECHO, host: str | None = None
) -> asyncio.AbstractServer:
    """Start listening and return the server; port ``0`` picks a free port."""

    server = await asyncio.start_server(make_handler(reply), host, port)
    sockets = server.sockets or ()
    bound = ", ".join(str(s.getsockname()) for s in sockets)
    logger.info("TCP test server listening on %s (reply: %s)", bound, reply)
    return server


async def serve_forever(port: int = 5000, reply: str = ECHO, host: str | None = None) -> None:
    server = await start_server(port, reply, host)
    async with server:
        await server.serve_forever()


async def exchange(
    host: str,
    port: int,
    lines: Iterable[str],
    *,
    timeout: float = 5.0,
    on_reply: Callable[[str], None] | None = None,
) -> List[str]:
    """Send each line to ``host:port`` and return the reply to each one."""

    reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    replies: List[str] = []
    try:
        for line in lines:
            writer.write(f"{line}\n".encode())
            await writer.drain()
            raw = await asyncio.wait_for(reader.readline(), timeout)
            if not raw:
                break
            reply = raw.decode(errors="replace").rstrip("\r\n")
            replies.append(reply)
            if on_reply is not None:
                on_reply(reply)
        writer.write(f"{END_OF_SESSION}\n".encode())
        await writer.drain()
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except ConnectionError:
            pass
    return replies


__all__ = ["ECHO", "END_OF_SESSION", "exchange", "make_handler", "serve_forever", "start_server"]
