"""
Dispatch engine

Handler registrations for exposed methods (request responders) and observed
subjects (notice listeners). A registration is created by ``Service.expose`` /
``Service.observe`` and subscribed to the transport when the service becomes
ready. Each inbound message is dispatched in its own task.
"""

import abc
import functools
import inspect
import logging
import time
from typing import Any, Callable, Iterable, Optional

from meshcall.adapters.adapter_interface import RawEnvelope
from meshcall.envelope import Response, parse_notice, parse_request
from meshcall.errors import ConfigError, ProtocolDiscardError, TransportError
from meshcall.identity import EXPOSE_QUEUE_SUFFIX, OBSERVE_QUEUE_SUFFIX, LogKind, is_log_subject
from meshcall.rpc.context import ServiceContext
from meshcall.rpc.incoming import IncomingNotice, IncomingRequest
from meshcall.rpc.middleware import Middleware, run_chain
from meshcall.rpc.outbound import emit_log, log_outcome
from meshcall.telemetry import tracer
from meshcall.telemetry.metrics import (
    DISCARDED,
    EXPOSE_LATENCY,
    NOTICES_HANDLED,
    REQUESTS_HANDLED,
    increment_counter,
    record_latency,
)

logger = logging.getLogger(__name__)


class HandlerRegistration(abc.ABC):
    """Common part of expose and observe registrations"""

    kind = ""

    def __init__(self, subject: str, handler: Callable[..., Any], full_service_name: str):
        if not subject or not isinstance(subject, str):
            raise ConfigError("subject is required and must be a string in a Handler")
        if not callable(handler):
            raise ConfigError("handler is required and should be callable")
        if not full_service_name or not isinstance(full_service_name, str):
            raise ConfigError("fullServiceName is required and must be a string in a Handler")

        self.subject = subject
        self.handler = handler
        self.full_service_name = full_service_name
        self.subscription = None

    @property
    @abc.abstractmethod
    def full_subject(self) -> str:
        """Subject the registration subscribes to"""

    @property
    @abc.abstractmethod
    def queue(self) -> str:
        """Queue group shared by every instance of the service"""

    @property
    def is_subscribed(self) -> bool:
        return self.subscription is not None

    @abc.abstractmethod
    async def activate(self, context: ServiceContext) -> None:
        """Subscribe on the transport of ``context``"""

    def __repr__(self):
        return f"{type(self).__name__}(subject={self.full_subject!r}, queue={self.queue!r})"


class ExposeHandler(HandlerRegistration):
    """Request responder for ``<service>.<subject>``"""

    kind = LogKind.EXPOSE

    def __init__(self, subject: str, handler: Callable[..., Any], full_service_name: str,
                 middleware: Optional[Iterable[Middleware]] = None):
        super().__init__(subject, handler, full_service_name)
        self.middleware = list(middleware or [])
        for mw in self.middleware:
            if not callable(mw):
                raise ConfigError("middleware should be callable")

    @property
    def full_subject(self) -> str:
        # exposed subjects always live in the service namespace
        return f"{self.full_service_name}.{self.subject}"

    @property
    def queue(self) -> str:
        return f"{self.full_service_name}.{EXPOSE_QUEUE_SUFFIX}"

    async def activate(self, context: ServiceContext) -> None:
        self.subscription = await context.transport.expose(
            self.full_subject, self.queue, functools.partial(self._on_request, context)
        )
        logger.info(f"Exposed {self.full_subject} (queue {self.queue})")

    def _on_request(self, context: ServiceContext, raw: RawEnvelope, reply_to: str) -> None:
        context.tasks.spawn(self.handle(context, raw, reply_to))

    async def handle(self, context: ServiceContext, raw: RawEnvelope, reply_to: str) -> Optional[Response]:
        """Run middleware and handler for one request, reply and log the exchange

        Returns:
            The Response sent back, None if the message was discarded
        """
        if not reply_to:
            logger.debug(f"Discarding request on {self.full_subject}: no reply subject")
            increment_counter(DISCARDED, 1, {"reason": "no_reply", "service": context.full_name})
            return None
        try:
            request = parse_request(raw)
        except ProtocolDiscardError as e:
            logger.debug(f"Discarding message on {self.full_subject}: {str(e)}")
            increment_counter(DISCARDED, 1, {"reason": "not_request", "service": context.full_name})
            return None

        full_name = context.full_name
        incoming = IncomingRequest(request, context)
        start_time = time.time()

        span_attributes = {
            tracer.ATTR_TX: request.tx,
            tracer.ATTR_SUBJECT: request.subject,
            tracer.ATTR_SERVICE: full_name,
        }
        with tracer.create_span(f"expose {self.full_subject}", span_attributes,
                                kind=tracer.trace.SpanKind.SERVER) as span:
            try:
                outcome = await run_chain(context.middleware + self.middleware, incoming)
                if outcome.ended:
                    result = outcome.value
                else:
                    result = self.handler(outcome.request)
                    if inspect.isawaitable(result):
                        result = await result
                response = Response.success(request, full_name, result, to=request.service)
            except Exception as e:
                response = Response.failure(request, full_name, e, to=request.service)
            span.set_attribute(tracer.ATTR_STATUS_CODE, response.status_code)

        try:
            await context.transport.send_response(reply_to, response.to_dict())
        except TransportError as e:
            logger.error(f"Could not send response for {request.subject} tx={request.tx}: {str(e)}")

        latency_ms = (time.time() - start_time) * 1000
        record_latency(EXPOSE_LATENCY, latency_ms, {"subject": self.full_subject})
        increment_counter(REQUESTS_HANDLED, 1, {"subject": self.full_subject,
                                                "status_code": response.status_code})
        log_outcome("expose", request, response)

        if context.config.enable_expose_log:
            await emit_log(context, LogKind.EXPOSE, self.subject, request, response)

        return response


class ObserveHandler(HandlerRegistration):
    """Notice listener for any subject, namespaced or not"""

    kind = LogKind.OBSERVE

    @property
    def full_subject(self) -> str:
        # observers are free to watch other services' subjects
        return self.subject

    @property
    def queue(self) -> str:
        return f"{self.full_service_name}.{OBSERVE_QUEUE_SUFFIX}"

    async def activate(self, context: ServiceContext) -> None:
        self.subscription = await context.transport.observe(
            self.full_subject, self.queue, functools.partial(self._on_notice, context)
        )
        logger.info(f"Observing {self.full_subject} (queue {self.queue})")

    def _on_notice(self, context: ServiceContext, raw: RawEnvelope) -> None:
        context.tasks.spawn(self.handle(context, raw))

    async def handle(self, context: ServiceContext, raw: RawEnvelope) -> Optional[Response]:
        """Run the handler for one notice. Its result is discarded and errors are only logged.

        Returns:
            Response mirroring the outcome (never sent back), None if discarded
        """
        try:
            notice = parse_notice(raw)
        except ProtocolDiscardError as e:
            logger.debug(f"Discarding message on {self.full_subject}: {str(e)}")
            increment_counter(DISCARDED, 1, {"reason": "not_notice", "service": context.full_name})
            return None

        full_name = context.full_name
        span_attributes = {
            tracer.ATTR_TX: notice.tx,
            tracer.ATTR_SUBJECT: notice.subject,
            tracer.ATTR_SERVICE: full_name,
        }
        with tracer.create_span(f"observe {notice.subject}", span_attributes,
                                kind=tracer.trace.SpanKind.CONSUMER):
            try:
                result = self.handler(IncomingNotice(notice, context))
                if inspect.isawaitable(result):
                    await result
                response = Response.success(notice, full_name, None)
            except Exception as e:
                logger.error(f"Observer of {notice.subject} failed for tx={notice.tx}: {str(e)}")
                response = Response.failure(notice, full_name, e)

        increment_counter(NOTICES_HANDLED, 1, {"subject": self.full_subject,
                                               "status_code": response.status_code})

        if context.config.enable_observe_log and not is_log_subject(self.full_subject):
            await emit_log(context, LogKind.OBSERVE, notice.subject, notice, response)

        return response
