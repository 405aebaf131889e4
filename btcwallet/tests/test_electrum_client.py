"""
Tests for the persistent Electrum client, driven by an in-memory fake server.
"""

import asyncio

import pytest
from btccore.models import Balance, HistoryEntry, UnspentOutput
from btccore.network import ClosedError, ConnectionError, Endpoint
from btccore.rpc import RpcError, TimeoutError

from btcwallet.backends.electrum import (
    CLIENT_NAME,
    DEFAULT_FEE_RATE,
    PROTOCOL_VERSION,
    ClientState,
    PersistentElectrumClient,
)
from btcwallet.config import PersistencePolicy
from btcwallet.errors import BroadcastRejectedError, ExhaustedRetriesError

SCRIPTHASH = "8b01df4e368ea28f8dc0423bcf7a4923e3a12d307c875e47a0cfbf90b5c39161"
TXID = "f4184fc596403b9d638783cf57adfe4c75c605f6356fbc91338530e9831e9e16"


class FakeServer:
    """Shared state behind every FakeSession the client opens."""

    def __init__(self):
        self.connect_attempts = 0
        self.refuse_always = False
        self.refuse_next = 0
        self.calls: list[tuple[str, list]] = []
        self.results: dict[str, object] = {
            "server.version": ["FakeElectrum 1.0", PROTOCOL_VERSION],
            "server.ping": None,
        }
        self.failures: dict[str, list[Exception]] = {}
        self.sessions: list["FakeSession"] = []

    def session(self) -> "FakeSession":
        session = FakeSession(self)
        self.sessions.append(session)
        return session

    def calls_to(self, method: str) -> list[list]:
        return [params for name, params in self.calls if name == method]


class FakeSession:
    def __init__(self, server: FakeServer):
        self.server = server
        self.closed = False
        self.on_disconnect = None

    async def connect(self) -> None:
        self.server.connect_attempts += 1
        await asyncio.sleep(0.01)
        if self.server.refuse_always:
            raise ConnectionError("Connection refused")
        if self.server.refuse_next > 0:
            self.server.refuse_next -= 1
            raise ConnectionError("Connection refused")

    async def send(self, method, params=None, timeout=None):
        if self.closed:
            raise ClosedError("Session closed")
        self.server.calls.append((method, params))
        await asyncio.sleep(0)

        pending_failures = self.server.failures.get(method)
        if pending_failures:
            error = pending_failures.pop(0)
            if isinstance(error, ConnectionError):
                self.closed = True
            raise error

        result = self.server.results.get(method)
        return result(params) if callable(result) else result

    async def close(self) -> None:
        self.closed = True

    def drop(self) -> None:
        """Server-side close of an idle connection, as seen by the session reader."""
        self.closed = True
        if self.on_disconnect is not None:
            self.on_disconnect(ClosedError("Connection lost: reset by peer"))


@pytest.fixture
def server():
    return FakeServer()


def make_client(server: FakeServer, **policy) -> PersistentElectrumClient:
    return PersistentElectrumClient(
        Endpoint(host="electrum.test", port=50001),
        PersistencePolicy(**policy),
        session_factory=server.session,
    )


class TestLazyInitialization:
    @pytest.mark.asyncio
    async def test_no_connection_at_construction(self, server):
        client = make_client(server)
        await asyncio.sleep(0.02)

        assert client.state is ClientState.UNINITIALIZED
        assert server.connect_attempts == 0

    @pytest.mark.asyncio
    async def test_first_call_connects_with_handshake(self, server):
        server.results["blockchain.scripthash.get_balance"] = {"confirmed": 1000, "unconfirmed": 50}
        client = make_client(server)

        balance = await client.get_balance(SCRIPTHASH)

        assert balance == Balance(confirmed=1000, unconfirmed=50)
        assert client.state is ClientState.READY
        assert server.calls[0] == ("server.version", [CLIENT_NAME, PROTOCOL_VERSION])
        assert server.calls[1] == ("blockchain.scripthash.get_balance", [SCRIPTHASH])
        await client.close()

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_share_one_connect(self, server):
        server.results["blockchain.scripthash.get_balance"] = {"confirmed": 1}
        client = make_client(server)

        results = await asyncio.gather(*(client.get_balance(SCRIPTHASH) for _ in range(5)))

        assert all(result.confirmed == 1 for result in results)
        assert server.connect_attempts == 1
        assert len(server.calls_to("server.version")) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_explicit_reconnect_bypasses_laziness(self, server):
        client = make_client(server)

        await client.reconnect()

        assert client.state is ClientState.READY
        assert server.connect_attempts == 1
        await client.close()


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_exhaustion_after_max_retry(self, server):
        server.refuse_always = True
        exhausted = []
        client = make_client(server, max_retry=2, retry_period=0.1, on_exhausted=exhausted.append)

        with pytest.raises(ExhaustedRetriesError) as exc_info:
            await client.get_balance(SCRIPTHASH)

        assert server.connect_attempts == 3
        assert client.state is ClientState.FAILED
        assert len(exhausted) == 1
        assert isinstance(exc_info.value.last_error, ConnectionError)
        assert "Connection refused" in str(exc_info.value)

        # FAILED is sticky: no new attempts, no second callback
        with pytest.raises(ExhaustedRetriesError):
            await client.list_unspent(SCRIPTHASH)
        assert server.connect_attempts == 3
        assert len(exhausted) == 1

    @pytest.mark.asyncio
    async def test_queued_calls_all_fail_with_one_callback(self, server):
        server.refuse_always = True
        exhausted = []
        client = make_client(server, max_retry=1, retry_period=0.01, on_exhausted=exhausted.append)

        results = await asyncio.gather(
            client.get_balance(SCRIPTHASH),
            client.get_history(SCRIPTHASH),
            client.estimate_fee(2),
            return_exceptions=True,
        )

        assert all(isinstance(result, ExhaustedRetriesError) for result in results)
        assert server.connect_attempts == 2
        assert len(exhausted) == 1

    @pytest.mark.asyncio
    async def test_reconnect_leaves_failed_state(self, server):
        server.refuse_always = True
        client = make_client(server, max_retry=0, retry_period=0.01)

        with pytest.raises(ExhaustedRetriesError):
            await client.get_balance(SCRIPTHASH)
        assert client.state is ClientState.FAILED

        server.refuse_always = False
        server.results["blockchain.scripthash.get_balance"] = {"confirmed": 7}
        await client.reconnect()

        assert client.state is ClientState.READY
        assert (await client.get_balance(SCRIPTHASH)).confirmed == 7
        await client.close()

    @pytest.mark.asyncio
    async def test_transient_failure_then_success_resets_counter(self, server):
        server.refuse_next = 2
        client = make_client(server, max_retry=2, retry_period=0.01)

        await client.ping()

        assert server.connect_attempts == 3
        assert client.state is ClientState.READY
        assert client.retries == 0
        await client.close()


class TestConnectionLoss:
    @pytest.mark.asyncio
    async def test_call_reissued_after_reconnect(self, server):
        server.results["blockchain.scripthash.get_balance"] = {"confirmed": 42}
        server.failures["blockchain.scripthash.get_balance"] = [ClosedError("Connection lost")]
        client = make_client(server, retry_period=0.01)

        balance = await client.get_balance(SCRIPTHASH)

        assert balance.confirmed == 42
        assert server.connect_attempts == 2
        assert len(server.calls_to("blockchain.scripthash.get_balance")) == 2
        assert server.sessions[0].closed
        assert client.state is ClientState.READY
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout_triggers_reconnect(self, server):
        server.results["blockchain.transaction.get"] = "0200"
        server.failures["blockchain.transaction.get"] = [TimeoutError("timed out")]
        client = make_client(server, retry_period=0.01)

        assert await client.get_transaction(TXID) == "0200"
        assert server.connect_attempts == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_call_gives_up_after_max_retry_failures(self, server):
        server.failures["server.ping"] = [ClosedError("lost"), ClosedError("lost again")]
        client = make_client(server, max_retry=1, retry_period=0.01)

        with pytest.raises(ClosedError):
            await client.ping()
        await client.close()

    @pytest.mark.asyncio
    async def test_keepalive_pings(self, server):
        client = make_client(server, ping_period=0.05)

        await client.reconnect()
        await asyncio.sleep(0.2)

        assert len(server.calls_to("server.ping")) >= 2
        await client.close()

    @pytest.mark.asyncio
    async def test_failed_ping_reconnects(self, server):
        server.failures["server.ping"] = [ClosedError("half-closed")]
        client = make_client(server, ping_period=0.05, retry_period=0.01)

        await client.reconnect()
        await asyncio.sleep(0.2)

        assert server.connect_attempts == 2
        assert client.state is ClientState.READY
        await client.close()

    @pytest.mark.asyncio
    async def test_idle_drop_reconnects_without_a_call(self, server):
        server.results["blockchain.scripthash.get_balance"] = {"confirmed": 7}
        client = make_client(server, max_retry=0, retry_period=0.01)
        await client.get_balance(SCRIPTHASH)

        server.sessions[0].drop()

        assert client.state is ClientState.RECONNECTING
        await asyncio.sleep(0.05)
        assert client.state is ClientState.READY
        assert server.connect_attempts == 2

        balance = await client.get_balance(SCRIPTHASH)
        assert balance.confirmed == 7
        await client.close()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_during_first_connect(self, server):
        server.results["blockchain.scripthash.get_balance"] = {"confirmed": 3}
        client = make_client(server)

        call = asyncio.create_task(client.get_balance(SCRIPTHASH))
        await asyncio.sleep(0.001)
        assert server.connect_attempts == 1

        await client.close()

        with pytest.raises(ClosedError, match="closed"):
            await call
        assert not call.cancelled()
        assert client.state is ClientState.UNINITIALIZED

        balance = await client.get_balance(SCRIPTHASH)
        assert balance.confirmed == 3
        await client.close()

    @pytest.mark.asyncio
    async def test_close_then_lazy_reinit(self, server):
        client = make_client(server)
        await client.ping()

        await client.close()
        assert client.state is ClientState.UNINITIALIZED
        assert server.sessions[0].closed

        await client.ping()
        assert client.state is ClientState.READY
        assert server.connect_attempts == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, server):
        client = make_client(server)
        await client.close()
        await client.close()
        assert client.state is ClientState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, server):
        async with make_client(server) as client:
            await client.ping()
        assert client.state is ClientState.UNINITIALIZED
        assert server.sessions[0].closed


class TestRpcSurface:
    @pytest.mark.asyncio
    async def test_list_unspent_and_history(self, server):
        server.results["blockchain.scripthash.listunspent"] = [
            {"tx_hash": TXID, "tx_pos": 0, "value": 5000, "height": 100},
        ]
        server.results["blockchain.scripthash.get_history"] = [
            {"tx_hash": TXID, "height": 100},
            {"tx_hash": "aa" * 32, "height": 0, "fee": 300},
        ]
        client = make_client(server)

        utxos = await client.list_unspent(SCRIPTHASH)
        history = await client.get_history(SCRIPTHASH)

        assert utxos == [UnspentOutput(tx_hash=TXID, tx_pos=0, value=5000, height=100)]
        assert history[0] == HistoryEntry(tx_hash=TXID, height=100)
        assert history[1].fee == 300
        await client.close()

    @pytest.mark.asyncio
    async def test_get_transaction_requests_raw_hex(self, server):
        server.results["blockchain.transaction.get"] = "01000000"
        client = make_client(server)

        assert await client.get_transaction(TXID) == "01000000"
        assert server.calls_to("blockchain.transaction.get") == [[TXID, False]]
        await client.close()

    @pytest.mark.asyncio
    async def test_broadcast_returns_txid(self, server):
        server.results["blockchain.transaction.broadcast"] = TXID
        client = make_client(server)

        assert await client.broadcast("0200") == TXID
        await client.close()

    @pytest.mark.asyncio
    async def test_broadcast_rejection_keeps_reason(self, server):
        reason = "the transaction was rejected by network rules.\n\nmin relay fee not met"
        server.failures["blockchain.transaction.broadcast"] = [RpcError(reason, 1)]
        client = make_client(server)

        with pytest.raises(BroadcastRejectedError) as exc_info:
            await client.broadcast("0200")

        assert exc_info.value.reason == reason
        assert exc_info.value.code == 1
        # Server-side rejection is not a connection problem
        assert client.state is ClientState.READY
        assert server.connect_attempts == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_fee_rate_conversion(self, server):
        estimates = {1: 0.00012, 2: 0.000011, 3: 0.000001, 25: -1}
        server.results["blockchain.estimatefee"] = lambda params: estimates[params[0]]
        client = make_client(server)

        assert await client.estimate_fee(1) == pytest.approx(0.00012)
        assert await client.get_fee_rate(1) == 12
        assert await client.get_fee_rate(2) == 2
        assert await client.get_fee_rate(3) == 1
        assert await client.get_fee_rate(25) == DEFAULT_FEE_RATE
        await client.close()
