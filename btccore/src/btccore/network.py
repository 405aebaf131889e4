"""
Network primitives and connection management.
"""

from __future__ import annotations

import asyncio
import ssl
from abc import ABC, abstractmethod
from enum import Enum
from urllib.parse import urlsplit

import websockets
import websockets.exceptions
from loguru import logger
from pydantic import BaseModel, Field

# Electrum responses (raw transactions, long histories) can be large
DEFAULT_MAX_MESSAGE_SIZE = 16 * 1024 * 1024


class ConnectionError(Exception):
    pass


class ClosedError(ConnectionError):
    pass


class TransportProtocol(str, Enum):
    TCP = "tcp"
    TLS = "tls"
    SSL = "ssl"
    WS = "ws"
    WSS = "wss"


class Endpoint(BaseModel):
    host: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    protocol: TransportProtocol = TransportProtocol.TCP
    path: str = ""
    verify_tls: bool = True

    model_config = {"frozen": True}

    @classmethod
    def from_url(cls, url: str, verify_tls: bool = True) -> Endpoint:
        """Parse ``tcp://host:port``, ``ssl://host:port``, ``wss://host:port/path`` etc."""
        parts = urlsplit(url)
        if not parts.scheme or not parts.hostname or parts.port is None:
            raise ValueError(f"Invalid Electrum endpoint URL: {url}")
        return cls(
            host=parts.hostname,
            port=parts.port,
            protocol=TransportProtocol(parts.scheme.lower()),
            path=parts.path,
            verify_tls=verify_tls,
        )

    @property
    def uses_tls(self) -> bool:
        return self.protocol in (TransportProtocol.TLS, TransportProtocol.SSL, TransportProtocol.WSS)

    @property
    def is_websocket(self) -> bool:
        return self.protocol in (TransportProtocol.WS, TransportProtocol.WSS)

    @property
    def url(self) -> str:
        return f"{self.protocol.value}://{self.host}:{self.port}{self.path}"

    def __str__(self) -> str:
        return self.url


class Connection(ABC):
    @abstractmethod
    async def send(self, data: bytes) -> None:
        pass

    @abstractmethod
    async def receive(self) -> bytes:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass


class TCPConnection(Connection):
    """Newline-delimited stream connection, plain TCP or TLS."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ):
        self.reader = reader
        self.writer = writer
        self.max_message_size = max_message_size
        self._connected = True

    async def send(self, data: bytes) -> None:
        if not self._connected:
            raise ClosedError("Connection closed")
        if len(data) > self.max_message_size:
            raise ValueError(f"Message too large: {len(data)} > {self.max_message_size}")

        self.writer.write(data + b"\n")
        try:
            await self.writer.drain()
        except OSError as e:
            self._connected = False
            raise ClosedError(f"Write failed: {e}") from e

    async def receive(self) -> bytes:
        if not self._connected:
            raise ClosedError("Connection closed")

        try:
            data = await self.reader.readuntil(b"\n")
            return data.rstrip(b"\r\n")
        except asyncio.LimitOverrunError as e:
            logger.error(f"Message too large (>{self.max_message_size} bytes)")
            raise ConnectionError("Message too large") from e
        except asyncio.IncompleteReadError as e:
            self._connected = False
            logger.debug("TCPConnection.receive: connection closed by peer")
            raise ClosedError("Connection closed by peer") from e
        except OSError as e:
            self._connected = False
            raise ClosedError(f"Connection lost: {e}") from e

    async def close(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logger.debug(f"TCPConnection.close: {e}")

    def is_connected(self) -> bool:
        return self._connected


class WebSocketConnection(Connection):
    """One JSON message per WebSocket frame."""

    def __init__(self, websocket, max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE):
        self.websocket = websocket
        self.max_message_size = max_message_size
        self._connected = True

    async def send(self, data: bytes) -> None:
        if not self._connected:
            raise ClosedError("Connection closed")
        if len(data) > self.max_message_size:
            raise ValueError(f"Message too large: {len(data)} > {self.max_message_size}")
        try:
            await self.websocket.send(data.decode("utf-8"))
        except websockets.exceptions.ConnectionClosed as e:
            self._connected = False
            raise ClosedError(f"WebSocket closed: {e}") from e

    async def receive(self) -> bytes:
        if not self._connected:
            raise ClosedError("Connection closed")
        try:
            message = await self.websocket.recv()
        except websockets.exceptions.ConnectionClosed as e:
            self._connected = False
            raise ClosedError(f"WebSocket closed: {e}") from e
        if isinstance(message, str):
            return message.encode("utf-8")
        return message

    async def close(self) -> None:
        if not self._connected:
            return
        self._connected = False
        await self.websocket.close()

    def is_connected(self) -> bool:
        return self._connected


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify:
        # Most public Electrum servers use self-signed certificates
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


async def open_connection(
    endpoint: Endpoint,
    timeout: float = 15.0,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
) -> Connection:
    """
    Open a connection to an Electrum endpoint.

    Raises:
        ConnectionError: On refusal, DNS failure, TLS handshake failure or timeout
    """
    ssl_context = create_ssl_context(endpoint.verify_tls) if endpoint.uses_tls else None
    logger.debug(f"Opening {endpoint.protocol.value} connection to {endpoint.host}:{endpoint.port}")

    try:
        if endpoint.is_websocket:
            kwargs = {"open_timeout": timeout, "max_size": max_message_size}
            if ssl_context is not None:
                kwargs["ssl"] = ssl_context
            websocket = await asyncio.wait_for(
                websockets.connect(endpoint.url, **kwargs), timeout=timeout + 1.0
            )
            return WebSocketConnection(websocket, max_message_size)

        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(
                endpoint.host, endpoint.port, ssl=ssl_context, limit=max_message_size
            ),
            timeout=timeout,
        )
        return TCPConnection(reader, writer, max_message_size)

    except asyncio.TimeoutError as e:
        raise ConnectionError(f"Timed out connecting to {endpoint}") from e
    except (OSError, websockets.exceptions.WebSocketException) as e:
        raise ConnectionError(f"Failed to connect to {endpoint}: {e}") from e
