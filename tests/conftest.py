"""
Shared fixtures for paranoid_http tests.

Everything here is offline: resolvers are fakes, and connections either go
to an httpcore mock backend that records the dialed address or to a local
HTTP server reached by allow-listing 127.0.0.1.
"""

import asyncio
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpcore
import pytest

from paranoid_http import PolicyBuilder

OK_RESPONSE = [
    b"HTTP/1.1 200 OK\r\n",
    b"Content-Type: text/plain\r\n",
    b"Content-Length: 13\r\n",
    b"\r\n",
    b"Hello, world!",
]


class FakeResolver:
    """Resolver answering from a fixed table and recording lookups."""

    def __init__(self, table=None):
        self.table = dict(table or {})
        self.lookups = []

    def resolve(self, host):
        self.lookups.append(host)
        if host not in self.table:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return list(self.table[host])


class AsyncFakeResolver(FakeResolver):
    async def resolve(self, host):
        return FakeResolver.resolve(self, host)


class SlowResolver(FakeResolver):
    """Resolver that answers only after `delay` seconds."""

    def __init__(self, table=None, delay=1.0):
        super().__init__(table)
        self.delay = delay

    def resolve(self, host):
        time.sleep(self.delay)
        return super().resolve(host)


class HangingResolver:
    """Async resolver whose lookup never finishes."""

    def __init__(self):
        self.started = False

    async def resolve(self, host):
        self.started = True
        await asyncio.sleep(3600)
        return []


class RecordingBackend(httpcore.MockBackend):
    """MockBackend that remembers every connect_tcp call."""

    def __init__(self, buffer=None, http2=False):
        super().__init__(list(buffer if buffer is not None else OK_RESPONSE), http2=http2)
        self.connections = []

    def connect_tcp(self, host, port, timeout=None, local_address=None, socket_options=None):
        self.connections.append(
            {"host": host, "port": port, "timeout": timeout, "socket_options": list(socket_options or [])}
        )
        return super().connect_tcp(host, port, timeout=timeout, local_address=local_address, socket_options=socket_options)


class AsyncRecordingBackend(httpcore.AsyncMockBackend):
    def __init__(self, buffer=None, http2=False):
        super().__init__(list(buffer if buffer is not None else OK_RESPONSE), http2=http2)
        self.connections = []

    async def connect_tcp(self, host, port, timeout=None, local_address=None, socket_options=None):
        self.connections.append(
            {"host": host, "port": port, "timeout": timeout, "socket_options": list(socket_options or [])}
        )
        return await super().connect_tcp(
            host, port, timeout=timeout, local_address=local_address, socket_options=socket_options
        )


@pytest.fixture
def public_resolver():
    return FakeResolver({
        "example.org": ["93.184.216.34", "93.184.216.35"],
        "dual.example.org": ["2606:2800:220:1:248:1893:25c8:1946", "93.184.216.34"],
    })


@pytest.fixture
def recording_backend():
    return RecordingBackend()


@pytest.fixture
def loopback_policy():
    """Default policy plus an exception for 127.0.0.1, for local servers."""
    return PolicyBuilder().allow_cidr("127.0.0.1/32").build()


class _EchoHostHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        body = self.headers.get("Host", "").encode()
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def local_server():
    """A local HTTP server answering with the Host header it received.

    Yields the port it listens on (127.0.0.1 only).
    """
    server = ThreadingHTTPServer(("127.0.0.1", 0), _EchoHostHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server.server_address[1]
    finally:
        server.shutdown()
        server.server_close()
