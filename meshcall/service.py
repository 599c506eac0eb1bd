"""
Service

Public entry point: one named (optionally namespaced) participant on the bus.
A service exposes request handlers, observes notices, and sends requests and
notices of its own.

Usage:
    ```python
    service = Service(name="math", namespace="demo")
    service.expose("add", lambda req: sum(req.get_args()))
    await service.ready()
    ...
    await service.shutdown()
    ```
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from meshcall.adapters.adapter_factory import AdapterFactory
from meshcall.adapters.adapter_interface import TransportAdapterInterface
from meshcall.config import ServiceConfig
from meshcall.envelope import Notice
from meshcall.errors import ConfigError
from meshcall.identity import ServiceIdentity
from meshcall.rpc import outbound
from meshcall.rpc.context import ServiceContext
from meshcall.rpc.dispatch import ExposeHandler, HandlerRegistration, ObserveHandler
from meshcall.rpc.incoming import IncomingResponse
from meshcall.rpc.middleware import Middleware
from meshcall.telemetry import setup_metrics, setup_tracer
from meshcall.utils.log import configure_logging

logger = logging.getLogger(__name__)

# OpenTelemetry providers are process wide and can only be installed once
_telemetry_endpoint: Optional[str] = None


def _setup_telemetry(full_name: str, otlp_endpoint: str) -> None:
    global _telemetry_endpoint
    if _telemetry_endpoint is not None:
        if _telemetry_endpoint != otlp_endpoint:
            logger.warning(f"OpenTelemetry already exports to {_telemetry_endpoint}, "
                           f"ignoring {otlp_endpoint} for {full_name}")
        return
    setup_tracer(full_name, otlp_endpoint)
    setup_metrics(full_name, otlp_endpoint)
    _telemetry_endpoint = otlp_endpoint


def _parent_tx(parent: Any) -> Optional[str]:
    if parent is None:
        return None
    get_tx = getattr(parent, "get_tx", None)
    if not callable(get_tx):
        raise ConfigError("parent must be an envelope or an incoming envelope facade")
    return get_tx()


class Service:
    """A named participant exposing and observing subjects over one transport"""

    def __init__(self,
                 name: Optional[str] = None,
                 namespace: Optional[str] = None,
                 adapter: Optional[TransportAdapterInterface] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 **options):
        """Initialize a service

        Args:
            name: Service name, falls back to MESHCALL_NAME
            namespace: Optional namespace prefixed to the name
            adapter: Transport adapter; created from the configuration when omitted
            environ: Environment mapping used for configuration, ``os.environ`` when omitted
            **options: Any other ServiceConfig field (timeout_ms, servers, ...)

        Raises:
            ConfigError: Missing name or invalid configuration
        """
        self._config = ServiceConfig.resolve(environ, name=name, namespace=namespace, **options)
        configure_logging(self._config.log_level)

        self._identity = ServiceIdentity(self._config.name, self._config.namespace)
        transport = adapter or AdapterFactory.create_transport(self._config)
        self._context = ServiceContext(self._identity, self._config, transport)

        self._exposes: Dict[str, ExposeHandler] = {}
        self._observes: Dict[str, ObserveHandler] = {}
        self._ready = False
        self._closed = False

        logger.debug(f"Service {self.full_name} created with config {self._config.to_dict()}")

    @property
    def full_name(self) -> str:
        return self._identity.full_name

    @property
    def identity(self) -> ServiceIdentity:
        return self._identity

    @property
    def config(self) -> ServiceConfig:
        return self._config

    @property
    def transport(self) -> TransportAdapterInterface:
        return self._context.transport

    @property
    def is_ready(self) -> bool:
        return self._ready

    def _ensure_not_ready(self, action: str):
        if self._ready or self._closed:
            raise ConfigError(f"Cannot {action} after the service is ready")

    # Registration
    def expose(self, subject: str, handler: Callable[..., Any],
               middleware: Optional[Iterable[Middleware]] = None) -> "Service":
        """Register a request handler on ``<full_name>.<subject>``

        Raises:
            ConfigError: invalid subject or handler, or service already ready
        """
        self._ensure_not_ready("expose")
        registration = ExposeHandler(subject, handler, self.full_name, middleware)
        if subject in self._exposes:
            logger.warning(f"Replacing handler exposed on {registration.full_subject}")
        self._exposes[subject] = registration
        return self

    def observe(self, subject: str, handler: Callable[..., Any]) -> "Service":
        """Register a notice handler on ``subject`` (wildcards allowed)

        Raises:
            ConfigError: invalid subject or handler, or service already ready
        """
        self._ensure_not_ready("observe")
        registration = ObserveHandler(subject, handler, self.full_name)
        if subject in self._observes:
            logger.warning(f"Replacing observer of {subject}")
        self._observes[subject] = registration
        return self

    def use(self, middleware: Middleware) -> "Service":
        """Add a middleware run before every exposed handler"""
        self._ensure_not_ready("add middleware")
        if not callable(middleware):
            raise ConfigError("middleware should be callable")
        self._context.middleware.append(middleware)
        return self

    # Outbound
    async def request(self, envelope: Optional[Mapping[str, Any]] = None, parent: Any = None,
                      **fields) -> IncomingResponse:
        """Send a request and wait for its response

        Args:
            envelope: Mapping of request fields (subject, args, metadata, tx)
            parent: Envelope or facade whose tx is inherited
            **fields: Request fields, merged over ``envelope``

        Returns:
            IncomingResponse: Always returned, transport failures included

        Raises:
            ValidationError: Malformed request, nothing sent
        """
        response = await outbound.send_request(self._context, envelope,
                                               inherited_tx=_parent_tx(parent), **fields)
        return IncomingResponse(response, self._context)

    async def notice(self, envelope: Optional[Mapping[str, Any]] = None, parent: Any = None,
                     **fields) -> Notice:
        """Publish a notice on ``<full_name>.<subject>``

        Raises:
            ValidationError: Malformed notice, nothing sent
            TransportError: The broker did not accept the notice
        """
        return await outbound.send_notice(self._context, envelope,
                                          inherited_tx=_parent_tx(parent), **fields)

    invoke = request
    broadcast = notice

    # Lifecycle
    async def ready(self) -> None:
        """Connect and subscribe every registered handler

        Raises:
            TransportConnectionError: The broker could not be reached
        """
        if self._ready:
            logger.warning(f"Service {self.full_name} is already ready")
            return
        if self._closed:
            raise ConfigError(f"Service {self.full_name} was shut down")

        if self._config.otlp_endpoint:
            _setup_telemetry(self.full_name, self._config.otlp_endpoint)

        await self._context.transport.connect()
        await self._activate(self._exposes.values())
        await self._activate(self._observes.values())

        self._ready = True
        logger.info(f"Service {self.full_name} ready: {len(self._exposes)} exposed, "
                    f"{len(self._observes)} observed")

    async def _activate(self, registrations: Iterable[HandlerRegistration]) -> None:
        # registrations subscribed by an earlier, failed ready() are kept as they are
        pending = [reg for reg in registrations if not reg.is_subscribed]
        results = await asyncio.gather(*(reg.activate(self._context) for reg in pending),
                                       return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def shutdown(self) -> None:
        """Drain in-flight handlers, then close the transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        cancelled = await self._context.tasks.drain(self._config.drain_timeout_ms / 1000.0)
        await self._context.transport.shutdown()
        # handlers still replying during the close
        cancelled += await self._context.tasks.drain(0)

        for registration in list(self._exposes.values()) + list(self._observes.values()):
            registration.subscription = None

        self._ready = False
        logger.info(f"Service {self.full_name} shut down"
                    + (f", {cancelled} handler(s) cancelled" if cancelled else ""))

    async def __aenter__(self) -> "Service":
        await self.ready()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    def __repr__(self):
        return f"Service(full_name={self.full_name!r}, ready={self._ready})"
