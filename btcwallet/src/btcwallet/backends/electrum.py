"""
Persistent Electrum client.

Wraps an ElectrumSession with lazy first-call initialization, bounded linear
reconnection and keep-alive pings, so callers see an always-connected RPC
facade. No socket work happens at construction time.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from functools import partial
from typing import Any

from btccore.models import Balance, HistoryEntry, UnspentOutput
from btccore.network import ClosedError, ConnectionError, Endpoint
from btccore.rpc import DEFAULT_REQUEST_TIMEOUT, ElectrumSession, RpcError
from loguru import logger

from btcwallet.backends.base import ElectrumBackend
from btcwallet.config import ElectrumSettings, PersistencePolicy
from btcwallet.errors import BroadcastRejectedError, ExhaustedRetriesError, WalletError

CLIENT_NAME = "btcwallet"
PROTOCOL_VERSION = "1.4"

# Fallback when the server has no estimate for the target (returns -1)
DEFAULT_FEE_RATE = 10  # sat/vB

SessionFactory = Callable[[], ElectrumSession]


class ClientState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class PersistentElectrumClient(ElectrumBackend):
    """
    Electrum backend that (re)connects on demand.

    Every public RPC first awaits one shared "ensure ready" task, created once
    per client and replaced only by close(), reconnect() or a detected
    connection loss, so concurrent first calls never race into duplicate
    connects. Connection-level failures (socket errors, timeouts, half-closes)
    trigger a reconnect governed by the PersistencePolicy; when it is exhausted
    the client stays FAILED until reconnect() is called.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        policy: PersistencePolicy | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        client_name: str = CLIENT_NAME,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.policy = policy or PersistencePolicy()
        self.timeout = timeout
        self.client_name = client_name

        self.state = ClientState.UNINITIALIZED
        self.retries = 0
        self.last_error: BaseException | None = None

        self._session_factory = session_factory or self._create_session
        self._session: ElectrumSession | None = None
        self._ready: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        settings: ElectrumSettings,
        on_exhausted: Callable[[BaseException | None], None] | None = None,
    ) -> PersistentElectrumClient:
        return cls(settings.endpoint(), settings.policy(on_exhausted), timeout=settings.timeout)

    async def __aenter__(self) -> PersistentElectrumClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _create_session(self) -> ElectrumSession:
        return ElectrumSession(self.endpoint, timeout=self.timeout, connect_timeout=self.timeout)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def _ensure(self) -> ElectrumSession:
        if self.state is ClientState.FAILED:
            raise ExhaustedRetriesError(self.last_error)

        if self._ready is None:
            self.state = ClientState.CONNECTING
            self._ready = self._spawn_connect()

        await self._wait_ready(self._ready)

        if self._session is None:
            raise ClosedError("Electrum client was closed")
        return self._session

    async def _wait_ready(self, ready: asyncio.Task[None]) -> None:
        """
        Await the shared connect task without letting its cancellation leak.

        A connect cancelled by close() or reconnect() surfaces as ClosedError;
        CancelledError is re-raised only when the calling task itself is being cancelled.
        """
        try:
            await asyncio.shield(ready)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not ready.cancelled() or (current is not None and current.cancelling()):
                raise
            raise ClosedError("Electrum client was closed") from None

    def _spawn_connect(self, stale: ElectrumSession | None = None) -> asyncio.Task[None]:
        task = asyncio.create_task(self._connect_with_retry(stale))
        task.add_done_callback(self._on_connect_done)
        return task

    def _on_connect_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not isinstance(error, ExhaustedRetriesError) and self._ready is task:
            # Not a connection-level failure (e.g. handshake rejected): start over on next call
            self._ready = None
            self.state = ClientState.UNINITIALIZED

    async def _connect_with_retry(self, stale: ElectrumSession | None = None) -> None:
        if stale is not None:
            await stale.close()

        while True:
            session = self._session_factory()
            session.on_disconnect = partial(self._connection_lost, session)
            self._session = session
            try:
                await session.connect()
                await session.send("server.version", [self.client_name, PROTOCOL_VERSION])
            except ConnectionError as e:
                await session.close()
                self._session = None
                self.last_error = e

                if self.retries >= self.policy.max_retry:
                    self._exhaust(e)
                    raise ExhaustedRetriesError(e) from e

                self.retries += 1
                logger.warning(
                    f"Electrum connection to {self.endpoint} failed: {e}, retrying in "
                    f"{self.policy.retry_period}s (attempt {self.retries}/{self.policy.max_retry})"
                )
                await asyncio.sleep(self.policy.retry_period)
                continue
            except RpcError:
                await session.close()
                self._session = None
                raise

            self.retries = 0
            self.state = ClientState.READY
            self._start_keepalive(session)
            logger.info(f"Connected to Electrum server {self.endpoint}")
            return

    def _exhaust(self, error: BaseException) -> None:
        self.state = ClientState.FAILED
        logger.error(
            f"Giving up on Electrum server {self.endpoint} after "
            f"{self.policy.max_retry + 1} attempts: {error}"
        )
        if self.policy.on_exhausted is not None:
            self.policy.on_exhausted(error)

    def _connection_lost(self, session: ElectrumSession, error: BaseException) -> None:
        """Start a reconnect unless one is already running for this session."""
        if session is not self._session or self.state is not ClientState.READY:
            return

        logger.warning(f"Electrum connection lost ({error}), reconnecting")
        self.last_error = error
        self.state = ClientState.RECONNECTING
        self._stop_keepalive()
        self._session = None
        self._ready = self._spawn_connect(stale=session)

    def _start_keepalive(self, session: ElectrumSession) -> None:
        self._stop_keepalive()
        self._keepalive_task = asyncio.create_task(self._keepalive(session))

    def _stop_keepalive(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _keepalive(self, session: ElectrumSession) -> None:
        while True:
            await asyncio.sleep(self.policy.ping_period)
            if session is not self._session:
                return
            try:
                await session.send("server.ping", [])
            except ConnectionError as e:
                logger.warning(f"Electrum keep-alive ping failed: {e}")
                self._connection_lost(session, e)
                return
            except RpcError as e:
                # The server answered, so the connection itself is alive
                logger.debug(f"Electrum server rejected ping: {e}")
            self.retries = 0

    async def _teardown(self) -> None:
        self._stop_keepalive()

        ready, self._ready = self._ready, None
        if ready is not None and not ready.done():
            ready.cancel()
            try:
                await ready
            except asyncio.CancelledError:
                pass
            except (WalletError, RpcError) as e:
                logger.debug(f"Pending Electrum connect finished with: {e}")

        session, self._session = self._session, None
        if session is not None:
            await session.close()

    async def reconnect(self) -> None:
        """Drop the current session (if any) and connect again, also leaving FAILED."""
        logger.info(f"Reconnecting to Electrum server {self.endpoint}")
        await self._teardown()
        self.retries = 0
        self.last_error = None
        self.state = ClientState.CONNECTING
        self._ready = self._spawn_connect()
        await self._wait_ready(self._ready)

    async def close(self) -> None:
        """Stop keep-alive and close the session. The next call connects lazily again."""
        await self._teardown()
        self.state = ClientState.UNINITIALIZED
        logger.debug(f"Electrum client for {self.endpoint} closed")

    async def _call(self, method: str, params: list[Any]) -> Any:
        failures = 0
        while True:
            session = await self._ensure()
            try:
                result = await session.send(method, params)
            except ConnectionError as e:
                failures += 1
                logger.warning(f"Electrum call {method} failed: {e}")
                self._connection_lost(session, e)
                if failures > self.policy.max_retry:
                    raise
                continue

            self.retries = 0
            return result

    # ------------------------------------------------------------------
    # RPC surface
    # ------------------------------------------------------------------

    async def ping(self) -> None:
        await self._call("server.ping", [])

    async def get_balance(self, scripthash: str) -> Balance:
        result = await self._call("blockchain.scripthash.get_balance", [scripthash])
        return Balance.from_electrum(result)

    async def list_unspent(self, scripthash: str) -> list[UnspentOutput]:
        result = await self._call("blockchain.scripthash.listunspent", [scripthash])
        return [UnspentOutput.from_electrum(item) for item in result]

    async def get_history(self, scripthash: str) -> list[HistoryEntry]:
        result = await self._call("blockchain.scripthash.get_history", [scripthash])
        return [HistoryEntry.from_electrum(item) for item in result]

    async def get_transaction(self, tx_hash: str) -> str:
        return await self._call("blockchain.transaction.get", [tx_hash, False])

    async def broadcast(self, raw_tx: str) -> str:
        try:
            txid = await self._call("blockchain.transaction.broadcast", [raw_tx])
        except RpcError as e:
            logger.error(f"Broadcast rejected: {e.message}")
            raise BroadcastRejectedError(e.message, e.code) from e

        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def estimate_fee(self, target_blocks: int) -> float:
        result = await self._call("blockchain.estimatefee", [target_blocks])
        return float(result)

    async def get_fee_rate(self, target_blocks: int = 1) -> int:
        """Fee estimate converted to sat/vB (rounded up, at least 1)."""
        btc_per_kb = await self.estimate_fee(target_blocks)
        if btc_per_kb <= 0:
            logger.warning(f"Fee estimation unavailable for {target_blocks} blocks, using fallback")
            return DEFAULT_FEE_RATE

        sat_per_vbyte = max(math.ceil(Decimal(str(btc_per_kb)) * 100_000), 1)
        logger.debug(f"Estimated fee for {target_blocks} blocks: {sat_per_vbyte} sat/vB")
        return sat_per_vbyte
