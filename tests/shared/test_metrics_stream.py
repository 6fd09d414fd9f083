# tests/shared/test_metrics_stream.py
import asyncio

import pytest
from unittest.mock import AsyncMock
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from hostwatch.shared.clients.metrics_stream import MetricsStreamClient
from hostwatch.shared.core.config import StreamClientConfig
from hostwatch.shared.core.enums import CloseCode, ConnectionStatus
from hostwatch.shared.messaging.schemas import encode_history, encode_metrics


class FakeConnection:
    """Scripted client connection: frames and exceptions are fed through `incoming`"""

    def __init__(self, *frames):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.close_calls: list[tuple[int, str]] = []
        for frame in frames:
            self.incoming.put_nowait(frame)

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))


class FakeConnector:
    """Hands out prepared connections in order, then refuses"""

    def __init__(self, *connections):
        self._connections = list(connections)
        self.calls: list[str] = []

    async def __call__(self, url: str, **kwargs):
        self.calls.append(url)
        if not self._connections:
            raise OSError("connection refused")
        return self._connections.pop(0)


def abnormal_closure(code: int = 1011) -> ConnectionClosedError:
    return ConnectionClosedError(Close(code, "boom"), None)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
async def make_client(stream_config):
    """Client factory; every client is stopped after the test"""
    clients: list[MetricsStreamClient] = []

    def _make(connector, config: StreamClientConfig = stream_config, **handlers) -> MetricsStreamClient:
        statuses: list[ConnectionStatus] = []
        client = MetricsStreamClient(config, on_status=statuses.append, connector=connector, **handlers)
        client.statuses = statuses
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.stop()


@pytest.mark.asyncio
async def test_dispatches_history_and_metrics(make_client, make_snapshot):
    snapshots = [make_snapshot(captured_at=1), make_snapshot(captured_at=2)]
    connector = FakeConnector(FakeConnection(encode_history(snapshots), encode_metrics(snapshots[-1])))
    on_history, on_metrics = AsyncMock(), AsyncMock()
    client = make_client(connector, on_history=on_history, on_metrics=on_metrics)

    await client.start()
    await wait_until(lambda: on_metrics.await_count == 1)

    on_history.assert_awaited_once_with(snapshots)
    on_metrics.assert_awaited_once_with(snapshots[-1])
    assert client.status == ConnectionStatus.CONNECTED
    assert client.statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
    assert connector.calls == ["ws://aggregator.test/ws"]


@pytest.mark.asyncio
async def test_ignores_unknown_and_malformed_frames(make_client, make_snapshot):
    connection = FakeConnection(
        "not json",
        "[1, 2, 3]",
        '{"type": "pong"}',
        '{"type": "metrics", "data": "broken"}',
        encode_metrics(make_snapshot())
    )
    on_metrics = AsyncMock()
    client = make_client(FakeConnector(connection), on_metrics=on_metrics)

    await client.start()
    await wait_until(lambda: on_metrics.await_count == 1)

    assert client.status == ConnectionStatus.CONNECTED
    assert not client.reconnect_pending


@pytest.mark.asyncio
async def test_handler_errors_do_not_drop_connection(make_client, make_snapshot):
    connection = FakeConnection(encode_metrics(make_snapshot()), encode_metrics(make_snapshot()))
    on_metrics = AsyncMock(side_effect=[RuntimeError("render failed"), None])
    client = make_client(FakeConnector(connection), on_metrics=on_metrics)

    await client.start()
    await wait_until(lambda: on_metrics.await_count == 2)

    assert client.status == ConnectionStatus.CONNECTED


@pytest.mark.asyncio
async def test_abnormal_closure_reconnects_after_backoff(make_client):
    first = FakeConnection(abnormal_closure())
    second = FakeConnection()
    connector = FakeConnector(first, second)
    client = make_client(connector)

    await client.start()
    await wait_until(lambda: len(connector.calls) == 2 and client.status == ConnectionStatus.CONNECTED)

    assert client.statuses == [
        ConnectionStatus.CONNECTING,
        ConnectionStatus.CONNECTED,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.CONNECTING,
        ConnectionStatus.CONNECTED,
    ]
    assert client.reconnect_count == 1


@pytest.mark.asyncio
async def test_server_shutdown_also_reconnects(make_client):
    connector = FakeConnector(FakeConnection(ConnectionClosedOK(Close(1000, "server shutdown"), None)))
    client = make_client(connector)

    await client.start()
    await wait_until(lambda: client.status == ConnectionStatus.DISCONNECTED)

    assert client.reconnect_pending


@pytest.mark.asyncio
async def test_two_closures_schedule_one_reconnect(make_client, stream_config):
    stream_config.reconnect_backoff_ms = 10_000
    connection = FakeConnection()
    client = make_client(FakeConnector(connection), config=stream_config)

    await client.start()
    await wait_until(lambda: client.status == ConnectionStatus.CONNECTED)

    connection.incoming.put_nowait(abnormal_closure())
    await wait_until(lambda: client.status == ConnectionStatus.DISCONNECTED)
    assert client.reconnect_pending

    # A second closure report for the same socket and an explicit request are both no-ops
    client._connection_lost(connection, CloseCode.ABNORMAL)
    assert client.schedule_reconnect() is False

    assert client.reconnect_count == 1
    assert client.reconnect_pending


@pytest.mark.asyncio
async def test_failed_attempts_retry_forever(make_client):
    connector = FakeConnector()
    client = make_client(connector)

    await client.start()
    await wait_until(lambda: len(connector.calls) >= 3)

    assert client.status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.CONNECTING)
    assert client.reconnect_count >= 2


@pytest.mark.asyncio
async def test_liveness_watchdog_forces_reconnect(make_client, stream_config, make_snapshot):
    stream_config.liveness_ms = 100
    stream_config.reconnect_backoff_ms = 10_000
    connection = FakeConnection(encode_history([make_snapshot()]))
    client = make_client(FakeConnector(connection), config=stream_config)

    await client.start()
    await wait_until(lambda: connection.close_calls, timeout=1.0)

    assert connection.close_calls == [(CloseCode.LIVENESS_TIMEOUT, "liveness timeout")]
    assert client.status == ConnectionStatus.DISCONNECTED
    assert client.reconnect_pending


@pytest.mark.asyncio
async def test_metrics_keep_connection_alive(make_client, stream_config, make_snapshot):
    stream_config.liveness_ms = 150
    connection = FakeConnection()
    client = make_client(FakeConnector(connection), config=stream_config)

    await client.start()
    for _ in range(8):
        connection.incoming.put_nowait(encode_metrics(make_snapshot()))
        await asyncio.sleep(0.05)

    assert connection.close_calls == []
    assert client.status == ConnectionStatus.CONNECTED


@pytest.mark.asyncio
async def test_stop_closes_normally_and_stays_closed(make_client):
    connection = FakeConnection()
    connector = FakeConnector(connection, FakeConnection())
    client = make_client(connector)

    await client.start()
    await wait_until(lambda: client.status == ConnectionStatus.CONNECTED)
    await client.stop()
    await asyncio.sleep(0.15)

    assert connection.close_calls == [(CloseCode.NORMAL, "client stop")]
    assert client.status == ConnectionStatus.CLOSED
    assert not client.reconnect_pending
    assert client.schedule_reconnect() is False
    assert connector.calls == ["ws://aggregator.test/ws"]


@pytest.mark.asyncio
async def test_stop_cancels_pending_reconnect(make_client):
    connector = FakeConnector()
    client = make_client(connector)

    await client.start()
    await wait_until(lambda: client.reconnect_pending and len(connector.calls) == 1)
    await client.stop()
    await asyncio.sleep(0.15)

    assert connector.calls == ["ws://aggregator.test/ws"]
    assert client.status == ConnectionStatus.CLOSED
