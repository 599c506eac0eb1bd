"""
NATS transport adapter tests

The nats-py client is mocked, so no nats-server is needed.
"""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from nats.errors import NoRespondersError, NoServersError
from nats.errors import TimeoutError as NatsTimeoutError

from meshcall.adapters.nats import NatsTransport
from meshcall.errors import RequestTimeoutError, TransportConnectionError, TransportError


def make_client():
    """Mock NATS client with the attributes the adapter relies on"""
    nc = MagicMock()
    nc.is_connected = True
    nc.is_closed = False
    nc.connected_url = None
    nc.request = AsyncMock()
    nc.publish = AsyncMock()
    nc.subscribe = AsyncMock()
    nc.flush = AsyncMock()
    nc.close = AsyncMock()
    return nc


@pytest.fixture
def nc():
    return make_client()


@pytest.fixture
def transport(nc):
    with patch("meshcall.adapters.nats.transport.nats.connect", new=AsyncMock(return_value=nc)) as connect:
        transport = NatsTransport(servers=["nats://a:4222"], timeout_ms=300, name="demo.server")
        transport.connect_mock = connect
        yield transport


class TestConnect:
    """Connection setup"""

    @pytest.mark.asyncio
    async def test_connect_options(self, transport):
        await transport.connect()

        options = transport.connect_mock.call_args.kwargs
        assert options["servers"] == ["nats://a:4222"]
        assert options["name"] == "demo.server"
        assert options["connect_timeout"] == 2.0
        assert callable(options["disconnected_cb"])
        assert callable(options["reconnected_cb"])
        assert callable(options["error_cb"])
        assert callable(options["closed_cb"])
        assert transport.is_connected

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, transport):
        await transport.connect()
        await transport.connect()
        assert transport.connect_mock.await_count == 1

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        with patch("meshcall.adapters.nats.transport.nats.connect",
                   new=AsyncMock(side_effect=NoServersError())):
            transport = NatsTransport(servers=["nats://nowhere:4222"])
            with pytest.raises(TransportConnectionError, match="Could not connect to NATS server on start"):
                await transport.connect()

    @pytest.mark.asyncio
    async def test_refused_connection(self):
        with patch("meshcall.adapters.nats.transport.nats.connect",
                   new=AsyncMock(side_effect=ConnectionRefusedError("refused"))):
            transport = NatsTransport()
            with pytest.raises(TransportConnectionError):
                await transport.connect()

    @pytest.mark.asyncio
    async def test_lifecycle_callbacks_are_coroutines(self, transport):
        await transport._on_error(Exception("boom"))
        await transport._on_disconnected()
        await transport._on_reconnected()
        await transport._on_closed()

    def test_default_servers(self):
        assert NatsTransport().servers == ["nats://localhost:4222"]


class TestRequests:
    """Request/reply and publishing"""

    @pytest.mark.asyncio
    async def test_send_request(self, transport, nc):
        nc.request.return_value = MagicMock(data=b'{"statusCode": 200}')
        await transport.connect()

        reply = await transport.send_request({"subject": "svc.echo", "args": [1]})

        assert reply == {"statusCode": 200}
        subject, data = nc.request.call_args.args
        assert subject == "svc.echo"
        assert json.loads(data) == {"subject": "svc.echo", "args": [1]}
        assert nc.request.call_args.kwargs["timeout"] == 0.3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [NatsTimeoutError(), NoRespondersError()])
    async def test_unanswered_request_times_out(self, transport, nc, error):
        nc.request.side_effect = error
        await transport.connect()

        with pytest.raises(RequestTimeoutError, match="svc.echo"):
            await transport.send_request({"subject": "svc.echo"})

    @pytest.mark.asyncio
    async def test_invalid_reply(self, transport, nc):
        nc.request.return_value = MagicMock(data=b"<html>")
        await transport.connect()

        with pytest.raises(TransportError, match="Invalid reply"):
            await transport.send_request({"subject": "svc.echo"})

    @pytest.mark.asyncio
    async def test_send_notice_and_response(self, transport, nc):
        await transport.connect()

        await transport.send_notice({"subject": "svc.evt", "payload": 1})
        await transport.send_response("_INBOX.abc", {"statusCode": 200})

        assert nc.publish.await_args_list[0].args[0] == "svc.evt"
        assert nc.publish.await_args_list[1].args[0] == "_INBOX.abc"

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        transport = NatsTransport()
        with pytest.raises(TransportError, match="not open"):
            await transport.send_notice({"subject": "svc.evt"})


class TestSubscriptions:
    """expose and observe"""

    @pytest.mark.asyncio
    async def test_expose_subscribes_with_queue(self, transport, nc):
        await transport.connect()
        on_request = AsyncMock()

        await transport.expose("svc.echo", "svc.__EXPOSE__", on_request)

        call = nc.subscribe.call_args
        assert call.args[0] == "svc.echo"
        assert call.kwargs["queue"] == "svc.__EXPOSE__"
        nc.flush.assert_awaited()

        handler = call.kwargs["cb"]
        await handler(MagicMock(subject="svc.echo", reply="_INBOX.1", data=b'{"args": []}'))
        on_request.assert_awaited_once_with({"args": []}, "_INBOX.1")

    @pytest.mark.asyncio
    async def test_expose_discards_messages_without_reply(self, transport, nc):
        await transport.connect()
        on_request = AsyncMock()
        await transport.expose("svc.echo", "svc.__EXPOSE__", on_request)

        handler = nc.subscribe.call_args.kwargs["cb"]
        await handler(MagicMock(subject="svc.echo", reply="", data=b"{}"))

        on_request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_observe_discards_undecodable_messages(self, transport, nc):
        await transport.connect()
        received = []
        await transport.observe("svc.evt", "watcher.__OBSERVE__", received.append)

        handler = nc.subscribe.call_args.kwargs["cb"]
        await handler(MagicMock(subject="svc.evt", reply="", data=b"\x00garbage"))
        await handler(MagicMock(subject="svc.evt", reply="", data=b'{"payload": 1}'))

        assert received == [{"payload": 1}]


class TestShutdown:
    """shutdown"""

    @pytest.mark.asyncio
    async def test_shutdown_unsubscribes_and_closes(self, transport, nc):
        sub = MagicMock()
        sub.unsubscribe = AsyncMock()
        nc.subscribe.return_value = sub
        await transport.connect()
        await transport.observe("svc.evt", "q", MagicMock())

        await transport.shutdown()
        await transport.shutdown()

        sub.unsubscribe.assert_awaited_once()
        nc.close.assert_awaited_once()
        assert transport.subscriptions == []

    @pytest.mark.asyncio
    async def test_shutdown_without_connect(self):
        transport = NatsTransport()
        await transport.shutdown()
