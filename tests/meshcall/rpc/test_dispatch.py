"""
Dispatch engine tests, driving handlers directly with raw envelopes
"""

import pytest

from meshcall.adapters.memory import InMemoryBroker, InMemoryTransport
from meshcall.config import ServiceConfig
from meshcall.envelope import Notice, Request
from meshcall.errors import ConfigError
from meshcall.identity import ServiceIdentity
from meshcall.rpc.context import ServiceContext
from meshcall.rpc.dispatch import ExposeHandler, HandlerRegistration, ObserveHandler


@pytest.fixture
def context():
    config = ServiceConfig(name="server", enable_expose_log=False, enable_observe_log=False)
    return ServiceContext(ServiceIdentity("server"), config, InMemoryTransport(InMemoryBroker(record=True)))


class TestRegistration:
    """Handler registration validation and naming"""

    def test_base_registration_is_abstract(self):
        with pytest.raises(TypeError):
            HandlerRegistration("echo", lambda req: None, "server")

    def test_expose_subject_and_queue(self):
        handler = ExposeHandler("echo", lambda req: None, "demo.server")
        assert handler.full_subject == "demo.server.echo"
        assert handler.queue == "demo.server.__EXPOSE__"
        assert not handler.is_subscribed

    def test_observe_subject_and_queue(self):
        handler = ObserveHandler("other.evt", lambda notice: None, "demo.server")
        assert handler.full_subject == "other.evt"
        assert handler.queue == "demo.server.__OBSERVE__"

    def test_invalid_registration(self):
        with pytest.raises(ConfigError, match="subject is required"):
            ExposeHandler(None, lambda req: None, "server")
        with pytest.raises(ConfigError, match="handler is required and should be callable"):
            ExposeHandler("echo", None, "server")
        with pytest.raises(ConfigError, match="fullServiceName is required"):
            ObserveHandler("evt", lambda notice: None, "")
        with pytest.raises(ConfigError, match="middleware should be callable"):
            ExposeHandler("echo", lambda req: None, "server", middleware=["nope"])


class TestExposeHandle:
    """ExposeHandler.handle"""

    @pytest.mark.asyncio
    async def test_success_response_is_sent(self, context):
        await context.transport.connect()
        broker = context.transport.broker
        handler = ExposeHandler("echo", lambda req: req.get_args(), "server")
        request = Request(subject="server.echo", service="client", tx="tx-1", args=[1, 2])

        response = await handler.handle(context, request.to_dict(), "_INBOX.test")

        assert response.status_code == 200
        assert response.payload == [1, 2]
        assert response.tx == "tx-1"
        assert response.service == "server"
        assert response.to == "client"
        assert broker.published[-1].subject == "_INBOX.test"

    @pytest.mark.asyncio
    async def test_handler_error_becomes_error_response(self, context):
        await context.transport.connect()

        def fail(req):
            raise KeyError("missing")

        handler = ExposeHandler("echo", fail, "server")
        request = Request(subject="server.echo", service="client")

        response = await handler.handle(context, request.to_dict(), "_INBOX.test")

        assert response.status_code == 500
        assert response.error["name"] == "KeyError"

    @pytest.mark.asyncio
    async def test_non_request_is_discarded(self, context):
        await context.transport.connect()
        calls = []
        handler = ExposeHandler("echo", lambda req: calls.append(req), "server")
        notice = Notice(subject="server.echo", service="client", payload=1)

        assert await handler.handle(context, notice.to_dict(), "_INBOX.test") is None
        assert await handler.handle(context, {"subject": "server.echo"}, "_INBOX.test") is None
        assert calls == []
        assert context.transport.broker.published == []

    @pytest.mark.asyncio
    async def test_missing_reply_subject_is_discarded(self, context):
        calls = []
        handler = ExposeHandler("echo", lambda req: calls.append(req), "server")
        request = Request(subject="server.echo", service="client")

        assert await handler.handle(context, request.to_dict(), "") is None
        assert calls == []


class TestObserveHandle:
    """ObserveHandler.handle"""

    @pytest.mark.asyncio
    async def test_result_is_discarded(self, context):
        handler = ObserveHandler("pub.evt", lambda notice: "ignored", "server")
        notice = Notice(subject="pub.evt", service="pub", payload={"a": 1})

        response = await handler.handle(context, notice.to_dict())

        assert response.status_code == 200
        assert response.payload is None
        assert response.tx == notice.tx

    @pytest.mark.asyncio
    async def test_error_is_caught(self, context):
        def fail(notice):
            raise RuntimeError("observer failed")

        handler = ObserveHandler("pub.evt", fail, "server")
        notice = Notice(subject="pub.evt", service="pub", payload=1)

        response = await handler.handle(context, notice.to_dict())

        assert response.status_code == 500
        assert response.error["message"] == "observer failed"

    @pytest.mark.asyncio
    async def test_request_is_discarded(self, context):
        calls = []
        handler = ObserveHandler("pub.evt", lambda notice: calls.append(notice), "server")
        request = Request(subject="pub.evt", service="client")

        assert await handler.handle(context, request.to_dict()) is None
        assert calls == []
