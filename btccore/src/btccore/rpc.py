"""
Electrum JSON-RPC session over a single duplex connection.

Requests are correlated to responses strictly by id, so several calls can be
in flight on one session and the server may answer them in any order (or in
a single batch array).
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from loguru import logger

from btccore.network import (
    DEFAULT_MAX_MESSAGE_SIZE,
    ClosedError,
    Connection,
    ConnectionError,
    Endpoint,
    open_connection,
)

DEFAULT_REQUEST_TIMEOUT = 15.0
DEFAULT_CONNECT_TIMEOUT = 15.0

# WARNING: Enabling this will log raw requests/responses (addresses, transactions)
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")

ConnectionFactory = Callable[[Endpoint, float], Awaitable[Connection]]


class TimeoutError(ConnectionError):
    pass


class RpcError(Exception):
    """Error object returned by the server for a single request."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code

    @classmethod
    def from_payload(cls, error: Any) -> RpcError:
        if isinstance(error, dict):
            return cls(str(error.get("message", json.dumps(error))), error.get("code"))
        return cls(str(error))


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


async def _default_connection_factory(endpoint: Endpoint, timeout: float) -> Connection:
    return await open_connection(endpoint, timeout, DEFAULT_MAX_MESSAGE_SIZE)


class ElectrumSession:
    """
    One connection to one Electrum server.

    The session does not reconnect or retry; a dropped connection rejects all
    pending calls with ClosedError and leaves the session CLOSED. Recovery is
    the owning client's job.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        connection_factory: ConnectionFactory | None = None,
        on_disconnect: Callable[[Exception], None] | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.on_disconnect = on_disconnect
        self.state = SessionState.DISCONNECTED
        self.connection: Connection | None = None

        self._connection_factory = connection_factory or _default_connection_factory
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._request_id = 0
        self._reader_task: asyncio.Task[None] | None = None

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def connect(self) -> None:
        """
        Open the underlying connection and start dispatching responses.

        Raises:
            ConnectionError: If the connection cannot be established
        """
        self.state = SessionState.CONNECTING
        try:
            self.connection = await self._connection_factory(self.endpoint, self.connect_timeout)
        except ConnectionError:
            self.state = SessionState.DISCONNECTED
            raise

        self.state = SessionState.READY
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.debug(f"Electrum session ready: {self.endpoint}")

    async def send(self, method: str, params: list[Any] | None = None, timeout: float | None = None) -> Any:
        """
        Send one request and wait for its correlated response.

        Raises:
            ConnectionError: If the session is not connected or the write fails
            TimeoutError: If no response arrives within the timeout
            ClosedError: If the session is closed while waiting
            RpcError: If the server answers with an error object
        """
        if self.state is not SessionState.READY or self.connection is None:
            raise ConnectionError(f"Session to {self.endpoint} is not connected")

        self._request_id += 1
        request_id = self._request_id
        request = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        payload = json.dumps(request).encode("utf-8")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        if SENSITIVE_LOGGING:
            logger.debug(f"Electrum request: {request}")
        else:
            logger.debug(f"Electrum request {request_id}: {method}")

        try:
            await self.connection.send(payload)
            return await asyncio.wait_for(future, timeout or self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Electrum request timed out: {method} (id={request_id})")
            raise TimeoutError(f"Electrum request timed out: {method}") from e
        finally:
            self._pending.pop(request_id, None)

    async def close(self) -> None:
        """Tear down the connection and reject every pending call. Safe to call repeatedly."""
        self.state = SessionState.CLOSED

        task, self._reader_task = self._reader_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        connection, self.connection = self.connection, None
        if connection is not None:
            try:
                await connection.close()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Error while closing connection to {self.endpoint}: {e}")

        self._fail_pending("Session closed")

    async def _read_loop(self) -> None:
        connection = self.connection
        if connection is None:
            return
        try:
            while True:
                data = await connection.receive()
                if data:
                    self._handle_data(data)
        except ConnectionError as e:
            logger.warning(f"Electrum connection to {self.endpoint} lost: {e}")
            self.state = SessionState.CLOSED
            self._fail_pending(f"Connection lost: {e}")
            if self.on_disconnect is not None:
                self.on_disconnect(e)

    def _handle_data(self, data: bytes) -> None:
        try:
            message = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse Electrum response: {e}")
            return

        if SENSITIVE_LOGGING:
            logger.debug(f"Electrum response: {message}")

        if isinstance(message, list):
            for item in message:
                self._dispatch(item)
        else:
            self._dispatch(message)

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.warning(f"Unexpected Electrum message type: {type(message).__name__}")
            return

        request_id = message.get("id")
        if request_id is None:
            # Subscription notifications carry a method and no id
            logger.debug(f"Ignoring Electrum notification: {message.get('method')}")
            return

        future = self._pending.pop(request_id, None)
        if future is None:
            logger.warning(f"Received response for unknown request: {request_id}")
            return
        if future.done():
            return

        error = message.get("error")
        if error:
            future.set_exception(RpcError.from_payload(error))
        else:
            future.set_result(message.get("result"))

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(ClosedError(reason))
