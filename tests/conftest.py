import asyncio
import socket
import socketserver
import threading

import pytest


class _Handler(socketserver.BaseRequestHandler):
    def handle(self):
        self.request.recv(1)


@pytest.fixture
def tcp_listener():
    """Yield the port of a listening TCP server on 127.0.0.1."""
    with socketserver.TCPServer(("127.0.0.1", 0), _Handler) as server:
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        try:
            yield server.server_address[1]
        finally:
            server.shutdown()
            thread.join()


@pytest.fixture
def free_port():
    """Return a port on 127.0.0.1 that nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class FakeEchoTransport:
    """Simulated network answering echo requests for ``responders``.

    ``responders`` maps an address to the delay in seconds before its
    reply arrives. Addresses in ``fail_on`` make ``send_echo`` raise.
    """

    def __init__(self, responders=None, *, fail_on=(), duplicates=False, recv_error=None):
        self.responders = dict(responders or {})
        self.fail_on = set(fail_on)
        self.duplicates = duplicates
        self.recv_error = recv_error
        self.sent: list[str] = []
        self.closed = False
        self._replies = None

    def _queue(self):
        if self._replies is None:
            self._replies = asyncio.Queue()
        return self._replies

    async def send_echo(self, address, identifier, sequence):
        self.sent.append(address)
        if address in self.fail_on:
            raise PermissionError(13, "Permission denied")
        delay = self.responders.get(address)
        if delay is None:
            return
        loop = asyncio.get_running_loop()
        queue = self._queue()
        loop.call_later(delay, queue.put_nowait, (address, sequence))
        if self.duplicates:
            loop.call_later(delay * 2, queue.put_nowait, (address, sequence))

    async def recv_reply(self, identifier):
        if self.recv_error is not None:
            await asyncio.sleep(0.01)
            raise self.recv_error
        return await self._queue().get()

    def close(self):
        self.closed = True


@pytest.fixture
def fake_transport():
    return FakeEchoTransport
