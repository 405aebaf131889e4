"""
Tests for btccore.network
"""

import asyncio

import pytest

from btccore.network import (
    ClosedError,
    ConnectionError,
    Endpoint,
    TCPConnection,
    TransportProtocol,
    open_connection,
)


class TestEndpoint:
    def test_from_url(self):
        endpoint = Endpoint.from_url("ssl://electrum.example.org:50002")
        assert endpoint.host == "electrum.example.org"
        assert endpoint.port == 50002
        assert endpoint.protocol is TransportProtocol.SSL
        assert endpoint.uses_tls
        assert not endpoint.is_websocket

    def test_websocket_url_keeps_path(self):
        endpoint = Endpoint.from_url("wss://example.org:443/electrum")
        assert endpoint.is_websocket
        assert endpoint.uses_tls
        assert endpoint.path == "/electrum"
        assert endpoint.url == "wss://example.org:443/electrum"

    def test_plain_tcp(self):
        endpoint = Endpoint(host="127.0.0.1", port=50001)
        assert endpoint.protocol is TransportProtocol.TCP
        assert not endpoint.uses_tls
        assert str(endpoint) == "tcp://127.0.0.1:50001"

    def test_invalid_url(self):
        with pytest.raises(ValueError):
            Endpoint.from_url("electrum.example.org")
        with pytest.raises(ValueError):
            Endpoint.from_url("tcp://electrum.example.org")
        with pytest.raises(ValueError):
            Endpoint.from_url("ftp://electrum.example.org:21")


async def _echo_server():
    async def handle(reader, writer):
        try:
            while True:
                line = await reader.readuntil(b"\n")
                writer.write(line)
                await writer.drain()
        except asyncio.IncompleteReadError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


@pytest.mark.asyncio
async def test_tcp_connection_newline_framing():
    server, port = await _echo_server()
    try:
        connection = await open_connection(Endpoint(host="127.0.0.1", port=port), timeout=5)
        assert isinstance(connection, TCPConnection)
        assert connection.is_connected()

        await connection.send(b'{"id": 1}')
        assert await connection.receive() == b'{"id": 1}'

        await connection.close()
        assert not connection.is_connected()
        with pytest.raises(ClosedError):
            await connection.send(b"{}")
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_tcp_connection_peer_close():
    async def handle(reader, writer):
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        connection = await open_connection(Endpoint(host="127.0.0.1", port=port), timeout=5)
        with pytest.raises(ClosedError):
            await connection.receive()
        assert not connection.is_connected()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_open_connection_refused():
    # Grab a free port, then release it so nothing is listening
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()

    with pytest.raises(ConnectionError):
        await open_connection(Endpoint(host="127.0.0.1", port=port), timeout=5)


def test_closed_error_is_connection_error():
    assert issubclass(ClosedError, ConnectionError)
